from datetime import datetime
from enum import Enum
from typing import Annotated

from pydantic import BaseModel, Field, field_validator
from pydantic.alias_generators import to_camel

# Largest id a signed 64-bit INTEGER column can hold.
ROW_ID_MAX = 2**63 - 1

_camel = {
    "alias_generator": to_camel,
    "populate_by_name": True,
    "from_attributes": True,
}


class UserBrief(BaseModel):
    id: int
    first_name: str
    last_name: str | None = None
    username: str | None = None
    photo_url: str | None = None

    model_config = _camel


class ItemPublic(BaseModel):
    id: int
    text: str
    links: list[str] = []
    photos: list[str] = []
    created_by: int
    created_at: datetime | None = None
    updated_at: datetime | None = None
    reserved_at: datetime | None = None
    is_reserved: bool = False
    reserved_by: UserBrief | None = None

    model_config = _camel


class WishlistPublic(BaseModel):
    id: int
    share_id: str
    title: str
    created_at: datetime | None = None
    updated_at: datetime | None = None
    created_by: UserBrief
    items: list[ItemPublic] = []

    model_config = _camel


class ItemInput(BaseModel):
    id: Annotated[int, Field(ge=1, le=ROW_ID_MAX)] | None = None
    text: str | None = Field(default=None, max_length=4000)
    links: list[str] = Field(default_factory=list, max_length=50)
    photos: list[str] = Field(default_factory=list, max_length=50)

    model_config = {"populate_by_name": True}

    @field_validator("text")
    @classmethod
    def _text_strip(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip()

    @field_validator("links", "photos")
    @classmethod
    def _drop_blank(cls, values: list[str]) -> list[str]:
        return [value.strip() for value in values if value and value.strip()]

    def is_blank(self) -> bool:
        return not self.text and not self.links and not self.photos


class ItemsReplaceRequest(BaseModel):
    items: list[ItemInput] = Field(max_length=500)


class ReservationStatus(str, Enum):
    RESERVED = "reserved"
    ALREADY_RESERVED = "already_reserved"
    CANCELLED = "cancelled"


class ReservationResponse(BaseModel):
    item_id: int
    status: ReservationStatus

    model_config = _camel
