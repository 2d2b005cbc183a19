from datetime import datetime

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel


class TelegramAuthRequest(BaseModel):
    init_data: str | None = Field(default=None, alias="initData")

    model_config = {"populate_by_name": True}


class TelegramProfile(BaseModel):
    """The ``user`` object of Telegram initData (snake_case on the wire)."""

    id: int
    first_name: str = ""
    last_name: str | None = None
    username: str | None = None
    language_code: str | None = None
    is_premium: bool = False
    photo_url: str | None = None

    model_config = {"extra": "ignore"}


class UserPublic(BaseModel):
    id: int
    first_name: str
    last_name: str | None = None
    username: str | None = None
    language_code: str | None = None
    is_premium: bool = False
    photo_url: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {
        "alias_generator": to_camel,
        "populate_by_name": True,
        "from_attributes": True,
    }


class AuthResponse(UserPublic):
    token: str
