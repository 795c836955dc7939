from enum import Enum

from pydantic import BaseModel, Field, field_validator

# Upper bound shared by the pipeline config and the proxy search endpoint
MAX_RESULT_LIMIT = 20


def normalize_locale_filter(value: str | list[str] | None) -> str:
    """Turn a country code or list of codes into Nominatim's `countrycodes` form.
    An empty result means unrestricted."""
    if value is None:
        return ""
    if isinstance(value, str):
        value = value.split(",")
    codes = [code.strip().lower() for code in value if code and code.strip()]
    return ",".join(dict.fromkeys(codes))


class PipelineState(str, Enum):
    IDLE = "idle"
    DEBOUNCING = "debouncing"
    LOADING = "loading"


class PipelineConfig(BaseModel):
    min_query_length: int = Field(3, ge=1)
    debounce_ms: int = Field(300, ge=0)
    result_limit: int = Field(10, ge=1, le=MAX_RESULT_LIMIT)
    locale_filter: str = "us"
    request_timeout_ms: int = Field(10000, gt=0)

    @field_validator("locale_filter", mode="before")
    @classmethod
    def normalize_locale(cls, v: str | list[str] | None) -> str:
        return normalize_locale_filter(v)

    @property
    def debounce_s(self) -> float:
        return self.debounce_ms / 1000

    @property
    def request_timeout_s(self) -> float:
        return self.request_timeout_ms / 1000


class Candidate(BaseModel):
    """One structured address suggestion returned by a geocoding provider."""

    house_number: str = ""
    street1: str = ""
    street2: str = ""
    city: str = ""
    state: str = ""
    country: str = ""
    postal_code: str = ""
    display_label: str
    provider_id: str

    model_config = {"frozen": True}

    @field_validator("house_number", "street1", "street2", "city", "state", "country", "postal_code", mode="before")
    @classmethod
    def normalize_component(cls, v: str | None) -> str:
        if v is None:
            return ""
        return " ".join(str(v).strip().split())


class AddressForm(BaseModel):
    house_number: str = ""
    street1: str = ""
    street2: str = ""
    city: str = ""
    state: str = ""
    country: str = ""
    postal_code: str = ""

    model_config = {"validate_assignment": True}


class AddressSearchResponse(BaseModel):
    query: str
    results: list[Candidate]
    total: int
    message: str | None = None
