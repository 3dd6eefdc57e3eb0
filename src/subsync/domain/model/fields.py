"""Field values, type coercion and the per-side field mapping table."""

from __future__ import annotations

import math
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from datetime import date, datetime
from typing import Final

from subsync.domain.errors import FieldTypeError, ValidationError

from .enums import FieldType, Side

type FieldValue = str | int | float | bool | date | None
type JsonValue = str | int | float | bool | None

EMAIL_FIELD: Final[str] = "email"
STATUS_FIELD: Final[str] = "status"
GROUPS_FIELD: Final[str] = "groups"
# owned by the subscriber service; never mapped or written through `fields`
RESERVED_SECONDARY_FIELDS: Final[frozenset[str]] = frozenset({STATUS_FIELD, GROUPS_FIELD})

_TRUE_WORDS: Final[frozenset[str]] = frozenset({"true", "1", "yes", "y", "on"})
_FALSE_WORDS: Final[frozenset[str]] = frozenset({"false", "0", "no", "n", "off"})


def normalize_email(value: str) -> str:
    return value.strip().lower()


def is_valid_email(value: str) -> bool:
    local, sep, domain = value.partition("@")
    return bool(sep and local and "." in domain and " " not in value and "@" not in domain)


def _coerce_text(value: object) -> str | None:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, (str, int, float)):
        text = str(value).strip()
        return text or None
    raise FieldTypeError(f"cannot use {type(value).__name__} as text")


def _coerce_email(value: object) -> str | None:
    if not isinstance(value, str):
        raise FieldTypeError(f"cannot use {type(value).__name__} as email")
    email = normalize_email(value)
    if not email:
        return None
    if not is_valid_email(email):
        raise FieldTypeError(f"invalid email address: {value!r}")
    return email


def _coerce_number(value: object) -> int | float | None:
    if isinstance(value, bool):
        raise FieldTypeError("cannot use a boolean as a number")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise FieldTypeError(f"non-finite number: {value!r}")
        return int(value) if value.is_integer() else value
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return int(text)
        except ValueError:
            pass
        try:
            return _coerce_number(float(text))
        except ValueError as exc:
            raise FieldTypeError(f"not a number: {value!r}") from exc
    raise FieldTypeError(f"cannot use {type(value).__name__} as a number")


def _coerce_boolean(value: object) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        word = value.strip().lower()
        if not word:
            return None
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
    raise FieldTypeError(f"not a boolean: {value!r}")


def _coerce_date(value: object) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return date.fromisoformat(text[:10])
        except ValueError as exc:
            raise FieldTypeError(f"not an ISO date: {value!r}") from exc
    raise FieldTypeError(f"cannot use {type(value).__name__} as a date")


_COERCERS = {
    FieldType.TEXT: _coerce_text,
    FieldType.EMAIL: _coerce_email,
    FieldType.NUMBER: _coerce_number,
    FieldType.BOOLEAN: _coerce_boolean,
    FieldType.DATE: _coerce_date,
}


def coerce(value: object, field_type: FieldType) -> FieldValue:
    """Coerce an untyped side value to the closed ``FieldValue`` variant.

    ``None`` passes through for every type and blank strings collapse to ``None``.
    Anything that does not fit the declared type raises ``FieldTypeError``.
    """

    if value is None:
        return None
    return _COERCERS[field_type](value)


def normalize_for_compare(value: object, field_type: FieldType) -> FieldValue:
    """Return the comparison key used by the three-way diff."""

    coerced = coerce(value, field_type)
    if isinstance(coerced, str):
        return coerced.casefold()
    return coerced


def to_json_value(value: FieldValue) -> JsonValue:
    if isinstance(value, date):
        return value.isoformat()
    return value


@dataclass(slots=True, frozen=True, kw_only=True)
class FieldMapping:
    """How one domain field is named and typed on each side."""

    name: str
    primary_field: str
    secondary_field: str
    type: FieldType = FieldType.TEXT
    required: bool = False
    default: FieldValue = None

    def field_for(self, side: Side) -> str:
        return self.primary_field if side is Side.PRIMARY else self.secondary_field

    def coerce(self, value: object) -> FieldValue:
        try:
            return coerce(value, self.type)
        except FieldTypeError as exc:
            raise FieldTypeError(f"{self.name}: {exc}", field=self.name) from exc


DEFAULT_FIELD_MAPPINGS: Final[tuple[FieldMapping, ...]] = (
    FieldMapping(
        name=EMAIL_FIELD,
        primary_field="email",
        secondary_field="email",
        type=FieldType.EMAIL,
        required=True,
    ),
    FieldMapping(name="first_name", primary_field="first_name", secondary_field="name"),
    FieldMapping(name="last_name", primary_field="last_name", secondary_field="last_name"),
    FieldMapping(name="phone", primary_field="phone", secondary_field="phone"),
    FieldMapping(name="city", primary_field="city", secondary_field="city"),
    FieldMapping(name="country", primary_field="country", secondary_field="country"),
)


class FieldMappingTable:
    """Declared field mappings; the only path between side payloads and domain values."""

    def __init__(self, mappings: Iterable[FieldMapping] = DEFAULT_FIELD_MAPPINGS) -> None:
        self._by_name: dict[str, FieldMapping] = {}
        for mapping in mappings:
            if mapping.name in self._by_name:
                raise ValidationError(f"duplicate field mapping: {mapping.name}")
            self._by_name[mapping.name] = mapping
        if EMAIL_FIELD not in self._by_name:
            raise ValidationError("field mapping table must map the email field")
        for side in Side:
            side_names = [mapping.field_for(side) for mapping in self._by_name.values()]
            if len(side_names) != len(set(side_names)):
                raise ValidationError(f"duplicate {side} field names in mapping table")

    def __iter__(self) -> Iterator[FieldMapping]:
        return iter(self._by_name.values())

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def get(self, name: str) -> FieldMapping:
        try:
            return self._by_name[name]
        except KeyError:
            raise ValidationError(f"unmapped field: {name}") from None

    @property
    def data_fields(self) -> tuple[FieldMapping, ...]:
        """Mapped fields other than the email key."""

        return tuple(mapping for mapping in self if mapping.name != EMAIL_FIELD)

    def from_side(self, side: Side, payload: Mapping[str, object]) -> dict[str, FieldValue]:
        """Translate a side-native payload into domain values.

        Keys the table does not declare are ignored; declared keys are coerced strictly.
        """

        values: dict[str, FieldValue] = {}
        for mapping in self.data_fields:
            values[mapping.name] = mapping.coerce(payload.get(mapping.field_for(side)))
        return values

    def to_side(self, side: Side, values: Mapping[str, FieldValue]) -> dict[str, JsonValue]:
        """Translate domain values into a side-native payload, rejecting unmapped fields."""

        payload: dict[str, JsonValue] = {}
        for name, value in values.items():
            mapping = self.get(name)
            payload[mapping.field_for(side)] = to_json_value(mapping.coerce(value))
        return payload

    def for_create(self, email: str, values: Mapping[str, FieldValue]) -> dict[str, FieldValue]:
        """Return the full value set for a new record: email plus defaults for gaps."""

        complete: dict[str, FieldValue] = {EMAIL_FIELD: normalize_email(email)}
        for mapping in self.data_fields:
            value = values.get(mapping.name)
            if value is None:
                value = mapping.default
            if value is None and mapping.required:
                raise ValidationError(f"missing required field {mapping.name} for {email}")
            if value is not None:
                complete[mapping.name] = mapping.coerce(value)
        return complete
