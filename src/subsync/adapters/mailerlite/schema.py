"""Pydantic models describing the MailerLite subscriber API payloads."""

from __future__ import annotations

from collections.abc import Mapping
from typing import cast

from pydantic import BaseModel, ConfigDict, Field, field_validator


class MailerLiteBaseModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class GroupPayload(MailerLiteBaseModel):
    id: str
    name: str

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: object) -> object:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


class SubscriberPayload(MailerLiteBaseModel):
    id: str
    email: str
    status: str | None = None
    fields: dict[str, object] = Field(default_factory=dict)
    groups: list[GroupPayload] | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: object) -> object:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("fields", mode="before")
    @classmethod
    def _null_fields_to_empty(cls, value: object) -> object:
        # MailerLite returns [] instead of {} for subscribers without custom fields
        if value is None or value == []:
            return {}
        if isinstance(value, Mapping):
            return dict(cast(Mapping[str, object], value))
        return value


class PageMeta(MailerLiteBaseModel):
    next_cursor: str | None = None
    per_page: int | None = None


class SubscriberListResponse(MailerLiteBaseModel):
    data: list[SubscriberPayload] = Field(default_factory=list)
    meta: PageMeta = Field(default_factory=PageMeta)


class SubscriberResponse(MailerLiteBaseModel):
    data: SubscriberPayload


class ErrorResponse(MailerLiteBaseModel):
    message: str = "unknown error"
    errors: dict[str, list[str]] = Field(default_factory=dict)

    def describe(self) -> str:
        if not self.errors:
            return self.message
        details = "; ".join(
            f"{field}: {', '.join(messages)}" for field, messages in self.errors.items()
        )
        return f"{self.message} ({details})"


class GroupPageLinks(MailerLiteBaseModel):
    next: str | None = None


class GroupListResponse(MailerLiteBaseModel):
    data: list[GroupPayload] = Field(default_factory=list)
    links: GroupPageLinks = Field(default_factory=GroupPageLinks)
