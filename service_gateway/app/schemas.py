"""Request bodies for the gateway's owner and purchase endpoints."""

from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .identity import is_valid_identity
from .ledger.backend import MAX_BACKEND_URL_BYTES, MAX_NAME_LENGTH


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


def _check_address(value: str, label: str) -> str:
    if not is_valid_identity(value):
        raise ValueError(f"Invalid {label}")
    return value


class RegisterRequest(_CamelModel):
    """Register a backend API for sale."""

    name: str = Field(min_length=1, max_length=MAX_NAME_LENGTH)
    backend_url: str = Field(alias="backendUrl")
    rate_limit: int = Field(alias="rateLimit", ge=1, le=10000, strict=True)
    price_per_call: int = Field(alias="pricePerCall", ge=0, strict=True)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Name cannot be blank")
        return v

    @field_validator("backend_url")
    @classmethod
    def validate_backend_url(cls, v: str) -> str:
        if len(v.encode("utf-8")) > MAX_BACKEND_URL_BYTES:
            raise ValueError(f"Backend URL must be {MAX_BACKEND_URL_BYTES} bytes or less")
        parsed = urlparse(v)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError("Backend URL must be valid")
        return v


class ApiIdRequest(_CamelModel):
    api_id: str = Field(alias="apiId")

    @field_validator("api_id")
    @classmethod
    def validate_api_id(cls, v: str) -> str:
        return _check_address(v, "API ID")


class PurchaseRequest(ApiIdRequest):
    """Buy an access key for an API."""


class WithdrawRequest(ApiIdRequest):
    """Withdraw accrued earnings, in lamports."""

    amount: int = Field(gt=0, strict=True)


class RevokeRequest(ApiIdRequest):
    """Deactivate a holder's access key."""

    holder: str

    @field_validator("holder")
    @classmethod
    def validate_holder(cls, v: str) -> str:
        return _check_address(v, "holder wallet")
