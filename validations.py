"""
Input validation for server-side operations.

Request models are plain Pydantic models. Services call validate_input()
and get back the normalized result dict used everywhere else:

    result = validate_input(UpdateProfileRequest, data)
    if result["is_error"]:
        return {"error": result["error"], "is_error": True}
    profile_data = result["data"]
"""
import re
import uuid
from typing import Any, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ValidationError, field_validator

from database_models import UserPlan, UserRole

EMAIL_PATTERN = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')


# ============================================================================
# COMMON PATTERNS
# ============================================================================

def is_non_empty_string(value: Any) -> bool:
    return isinstance(value, str) and len(value) > 0


def is_uuid(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True


def is_email(value: Any) -> bool:
    return isinstance(value, str) and EMAIL_PATTERN.match(value) is not None


def is_url(value: Any) -> bool:
    """http(s) URL with a host"""
    if not isinstance(value, str):
        return False
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def is_positive_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def is_non_negative_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def _check_length(value: Optional[str], limit: int, message: str) -> Optional[str]:
    if value is not None and len(value) > limit:
        raise ValueError(message)
    return value


# ============================================================================
# USER PROFILE
# ============================================================================

class UpdateProfileRequest(BaseModel):
    """All fields optional. An empty website clears it."""
    bio: Optional[str] = None
    location: Optional[str] = None
    website: Optional[str] = None

    @field_validator("bio")
    @classmethod
    def bio_length(cls, v):
        return _check_length(v, 500, "Bio must be 500 characters or less")

    @field_validator("location")
    @classmethod
    def location_length(cls, v):
        return _check_length(v, 100, "Location must be 100 characters or less")

    @field_validator("website")
    @classmethod
    def website_url(cls, v):
        if v is None or v == "":
            return v
        if not is_url(v):
            raise ValueError("Must be a valid URL")
        return _check_length(v, 255, "URL must be 255 characters or less")


class CreateProfileRequest(UpdateProfileRequest):
    user_id: str

    @field_validator("user_id")
    @classmethod
    def user_id_required(cls, v):
        if not is_non_empty_string(v):
            raise ValueError("User ID is required")
        return v


# ============================================================================
# ROLES & PLANS
# ============================================================================

def parse_role(value: Any) -> UserRole:
    try:
        return UserRole(value)
    except ValueError:
        raise ValueError("Invalid role")


def parse_plan(value: Any) -> UserPlan:
    try:
        return UserPlan(value)
    except ValueError:
        raise ValueError("Invalid plan")


class UpdateUserRoleRequest(BaseModel):
    """Admin action: change another user's role."""
    user_id: str
    role: UserRole

    @field_validator("user_id")
    @classmethod
    def user_id_required(cls, v):
        if not is_non_empty_string(v):
            raise ValueError("User ID is required")
        return v

    @field_validator("role", mode="before")
    @classmethod
    def role_valid(cls, v):
        return parse_role(v)


class RecordDonationRequest(BaseModel):
    """Internal: donation recorded from a webhook."""
    user_id: str
    amount_in_cents: int

    @field_validator("user_id")
    @classmethod
    def user_id_required(cls, v):
        if not is_non_empty_string(v):
            raise ValueError("User ID is required")
        return v

    @field_validator("amount_in_cents", mode="before")
    @classmethod
    def amount_positive(cls, v):
        if not is_positive_int(v):
            raise ValueError("Amount must be positive")
        return v


# ============================================================================
# VALIDATION ENTRY POINT
# ============================================================================

def format_validation_error(error: ValidationError) -> str:
    """Render pydantic errors as "field: message, field: message"."""
    parts = []
    for issue in error.errors():
        path = ".".join(str(p) for p in issue.get("loc", ()))
        message = issue.get("msg", "")
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        parts.append(f"{path}: {message}" if path else message)
    return ", ".join(parts) or "Validation failed"


def validate_input(model: type, data: Any) -> dict:
    """
    Validate data against a request model.

    Returns:
        {"data": model_instance, "is_error": False} or {"error": str, "is_error": True}
    """
    if isinstance(data, BaseModel) and not isinstance(data, model):
        data = data.model_dump()
    try:
        return {"data": model.model_validate(data), "is_error": False}
    except ValidationError as e:
        return {"error": format_validation_error(e), "is_error": True}
