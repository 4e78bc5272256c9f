"""
Request schemas

Each mutating endpoint declares its field rules here as a pydantic model.
Field names on the wire are camelCase; failures are turned into
{field, message, value} entries by security.validate_request.
"""

import re
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, validate_email
from pydantic_core import PydanticCustomError

from database import ACCOUNT_PLATFORM, AUTOMATION_TYPES, CLIENT_PLANS, CLIENT_STATUSES, FILE_CATEGORIES, PLATFORMS

NAME_PATTERN = re.compile(r"^[a-zA-Z\s]+$")
STRONG_PASSWORD = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[@$!%*?&])[A-Za-z\d@$!%*?&]")


def _normalize_email(value):
    try:
        _, email = validate_email(str(value or "").strip())
    except PydanticCustomError:
        raise ValueError("Please provide a valid email address")
    return email.lower()


def _strong_password(value):
    if len(value) < 8:
        raise ValueError("Password must be at least 8 characters long")
    if not STRONG_PASSWORD.match(value):
        raise ValueError(
            "Password must contain at least one uppercase letter, one lowercase letter, "
            "one number, and one special character"
        )
    return value


def _choice(value, choices, message):
    if value not in choices:
        raise ValueError(message)
    return value


class RequestSchema(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ClientRegistration(RequestSchema):
    name: str
    email: str
    password: str
    confirm_password: str = Field(alias="confirmPassword")

    @field_validator("name")
    @classmethod
    def _name(cls, value):
        value = value.strip()
        if not 2 <= len(value) <= 50:
            raise ValueError("Name must be between 2 and 50 characters")
        if not NAME_PATTERN.match(value):
            raise ValueError("Name can only contain letters and spaces")
        return value

    @field_validator("email")
    @classmethod
    def _email(cls, value):
        return _normalize_email(value)

    @field_validator("password")
    @classmethod
    def _password(cls, value):
        return _strong_password(value)

    @field_validator("confirm_password")
    @classmethod
    def _confirm(cls, value, info):
        password = info.data.get("password")
        if password is not None and value != password:
            raise ValueError("Passwords do not match")
        return value


class ClientLogin(RequestSchema):
    email: str
    password: str

    @field_validator("email")
    @classmethod
    def _email(cls, value):
        return _normalize_email(value)

    @field_validator("password")
    @classmethod
    def _password(cls, value):
        if not value:
            raise ValueError("Password is required")
        return value


class AdminLogin(RequestSchema):
    username: str
    password: str

    @field_validator("username")
    @classmethod
    def _username(cls, value):
        value = value.strip()
        if not value:
            raise ValueError("Username is required")
        return value

    @field_validator("password")
    @classmethod
    def _password(cls, value):
        if not value:
            raise ValueError("Password is required")
        return value


class MessageIn(RequestSchema):
    message: str

    @field_validator("message")
    @classmethod
    def _message(cls, value):
        value = value.strip()
        if not 1 <= len(value) <= 1000:
            raise ValueError("Message must be between 1 and 1000 characters")
        return value


class AdminMessageIn(MessageIn):
    client_id: str = Field(alias="clientId")

    @field_validator("client_id")
    @classmethod
    def _client_id(cls, value):
        value = value.strip()
        if not value:
            raise ValueError("Client ID is required")
        return value


class CredentialIn(RequestSchema):
    platform: str
    username: str
    password: str

    @field_validator("platform")
    @classmethod
    def _platform(cls, value):
        return _choice(value, PLATFORMS, "Invalid platform selected")

    @field_validator("username")
    @classmethod
    def _username(cls, value):
        value = value.strip()
        if not 3 <= len(value) <= 100:
            raise ValueError("Username must be between 3 and 100 characters")
        return value

    @field_validator("password")
    @classmethod
    def _password(cls, value, info):
        if info.data.get("platform") == ACCOUNT_PLATFORM:  # the client's own login
            return _strong_password(value)
        if len(value) < 6:
            raise ValueError("Password must be at least 6 characters long")
        return value


class CampaignConfigIn(RequestSchema):
    campaign_name: str = Field(alias="campaignName")
    automation_type: str = Field(alias="automationType")
    instructions: str = ""

    @field_validator("campaign_name")
    @classmethod
    def _name(cls, value):
        value = value.strip()
        if not 1 <= len(value) <= 100:
            raise ValueError("Campaign name must be between 1 and 100 characters")
        return value

    @field_validator("automation_type")
    @classmethod
    def _type(cls, value):
        return _choice(value, AUTOMATION_TYPES, "Invalid automation type selected")

    @field_validator("instructions")
    @classmethod
    def _instructions(cls, value):
        value = (value or "").strip()
        if len(value) > 2000:
            raise ValueError("Instructions must be at most 2000 characters")
        return value


class AdminClientCreate(RequestSchema):
    name: str
    email: str
    password: Optional[str] = None
    plan: str = "free"
    status: str = "active"

    @field_validator("name")
    @classmethod
    def _name(cls, value):
        value = value.strip()
        if not 2 <= len(value) <= 50:
            raise ValueError("Name must be between 2 and 50 characters")
        return value

    @field_validator("email")
    @classmethod
    def _email(cls, value):
        return _normalize_email(value)

    @field_validator("password")
    @classmethod
    def _password(cls, value):
        if value is None or value == "":
            return None
        return _strong_password(value)

    @field_validator("plan")
    @classmethod
    def _plan(cls, value):
        return _choice(value, CLIENT_PLANS, "Invalid plan selected")

    @field_validator("status")
    @classmethod
    def _status(cls, value):
        return _choice(value, CLIENT_STATUSES, "Invalid status selected")


class ClientStatusUpdate(RequestSchema):
    status: Literal["active", "inactive", "suspended"]
    reason: str = ""

    @field_validator("status", mode="before")
    @classmethod
    def _status(cls, value):
        return _choice(value, ("active", "inactive", "suspended"), "Status must be active, inactive or suspended")


class SendFileIn(RequestSchema):
    client_id: str = Field(alias="clientId")
    category: str = "other"
    message: str = ""

    @field_validator("client_id")
    @classmethod
    def _client_id(cls, value):
        value = value.strip()
        if not value:
            raise ValueError("Client ID is required")
        return value

    @field_validator("category")
    @classmethod
    def _category(cls, value):
        return _choice(value or "other", FILE_CATEGORIES, "Invalid file category")

    @field_validator("message")
    @classmethod
    def _message(cls, value):
        value = (value or "").strip()
        if len(value) > 1000:
            raise ValueError("Message must be at most 1000 characters")
        return value


class PasswordResetRequest(RequestSchema):
    email: str

    @field_validator("email")
    @classmethod
    def _email(cls, value):
        return _normalize_email(value)


class PasswordReset(RequestSchema):
    password: str
    confirm_password: Optional[str] = Field(default=None, alias="confirmPassword")

    @field_validator("password")
    @classmethod
    def _password(cls, value):
        return _strong_password(value)

    @field_validator("confirm_password")
    @classmethod
    def _confirm(cls, value, info):
        password = info.data.get("password")
        if value is not None and password is not None and value != password:
            raise ValueError("Passwords do not match")
        return value


class AdminSettingsIn(RequestSchema):
    third_party_api_key: Optional[str] = Field(default=None, alias="thirdPartyApiKey")
    email: Optional[str] = None

    @field_validator("email")
    @classmethod
    def _email(cls, value):
        if value in (None, ""):
            return None
        return _normalize_email(value)
