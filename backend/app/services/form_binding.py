from app.schemas import AddressForm, Candidate

FORM_FIELDS = tuple(AddressForm.model_fields)


def apply_candidate(form: AddressForm, candidate: Candidate) -> AddressForm:
    """Write every address field of a candidate into the form.
    All fields are overwritten so nothing from an earlier selection survives."""
    for field in FORM_FIELDS:
        setattr(form, field, getattr(candidate, field) or "")
    return form


def clear_form(form: AddressForm) -> AddressForm:
    for field in FORM_FIELDS:
        setattr(form, field, "")
    return form
