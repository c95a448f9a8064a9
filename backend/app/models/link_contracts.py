from __future__ import annotations

from datetime import datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from backend.app.repositories.link_repository import LinkRecord
from backend.app.services.link_metadata import LinkMetadata


def _normalize_optional_text(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    if not normalized:
        return None
    return normalized


class LinkCreateRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    url: str = Field(max_length=2048)
    list_id: int

    @field_validator("url")
    @classmethod
    def _validate_url(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("url must not be empty")
        if any(ord(character) < 32 for character in normalized):
            raise ValueError("url contains control characters")
        return normalized


class LinkUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    url: str | None = Field(default=None, max_length=2048)
    title: str | None = Field(default=None, max_length=500)
    description: str | None = Field(default=None, max_length=4000)

    @field_validator("url", "title", mode="before")
    @classmethod
    def _normalize_optional_fields(cls, value: object) -> str | None:
        return _normalize_optional_text(value)


class LinkReorderRequest(BaseModel):
    """Reorder payload: `{"orderedIds": [...], "list_id": ...}`; `listId` is accepted too."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    ordered_ids: list[int] = Field(alias="orderedIds")
    list_id: int = Field(validation_alias=AliasChoices("list_id", "listId"))


class LinkMoveRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    list_id: int
    link_id: int
    from_index: int = Field(ge=0)
    to_index: int = Field(ge=0)


class LinkRead(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: int
    list_id: int
    url: str
    title: str
    description: str
    image: str | None
    position: int | None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_record(cls, record: LinkRecord) -> LinkRead:
        return cls(
            id=record.link_id,
            list_id=record.list_id,
            url=record.url,
            title=record.title,
            description=record.description,
            image=record.image,
            position=record.position,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


class LinkReorderResponse(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    success: bool
    ordered_ids: list[int] = Field(serialization_alias="orderedIds")


class LinkMoveResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    moved: bool
    ordered_ids: list[int]


class MetadataPreview(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str
    description: str
    image: str | None = None
    error: str | None = None

    @classmethod
    def from_metadata(cls, metadata: LinkMetadata, *, error: str | None = None) -> MetadataPreview:
        return cls(
            title=metadata.title,
            description=metadata.description,
            image=metadata.image,
            error=error,
        )
