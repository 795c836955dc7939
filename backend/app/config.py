import logging
import os
from pathlib import Path

from dotenv import load_dotenv

from app.schemas import PipelineConfig

# Load environment variables from .env file
env_path = Path(__file__).parent.parent.parent / ".env"
load_dotenv(env_path)

logger = logging.getLogger(__name__)

NOMINATIM_URL = os.getenv("NOMINATIM_URL", "https://nominatim.openstreetmap.org").rstrip("/")
CONTACT_EMAIL = os.getenv("CONTACT_EMAIL", "address-autocomplete@localhost.local")
USER_AGENT = f"AddressAutocomplete/1.0 ({CONTACT_EMAIL})"
MOCK_GEOCODING = os.getenv("MOCK_GEOCODING", "false").lower() == "true"
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",")


def load_pipeline_config() -> PipelineConfig:
    """Build the suggestion pipeline settings from the environment.
    Raises pydantic.ValidationError for malformed values."""
    config = PipelineConfig(
        min_query_length=os.getenv("ADDRESS_MIN_QUERY_LENGTH", "3"),
        debounce_ms=os.getenv("ADDRESS_DEBOUNCE_MS", "300"),
        result_limit=os.getenv("ADDRESS_RESULT_LIMIT", "10"),
        locale_filter=os.getenv("ADDRESS_COUNTRY_CODES", "us"),
        request_timeout_ms=os.getenv("ADDRESS_REQUEST_TIMEOUT_MS", "10000"),
    )
    logger.info(
        f"Pipeline config: min_query_length={config.min_query_length}, "
        f"debounce_ms={config.debounce_ms}, result_limit={config.result_limit}, "
        f"locale_filter='{config.locale_filter}', request_timeout_ms={config.request_timeout_ms}"
    )
    return config
