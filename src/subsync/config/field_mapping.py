"""Load the per-side field mapping table from a TOML file."""

from __future__ import annotations

import os
import tomllib
from collections.abc import Mapping
from dataclasses import replace
from pathlib import Path
from typing import cast

from subsync.domain.errors import ValidationError
from subsync.domain.model import (
    DEFAULT_FIELD_MAPPINGS,
    EMAIL_FIELD,
    RESERVED_SECONDARY_FIELDS,
    FieldMapping,
    FieldMappingTable,
    FieldType,
)

from .errors import ConfigurationError

FIELD_MAPPING_ENV = "SUBSYNC_FIELD_MAPPING"


def _parse_entry(entry: Mapping[str, object], position: int) -> FieldMapping:
    name = entry.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ConfigurationError(f"field #{position} needs a non-empty name")
    primary = entry.get("primary", name)
    secondary = entry.get("secondary", name)
    if not isinstance(primary, str) or not isinstance(secondary, str):
        raise ConfigurationError(f"field {name}: primary/secondary must be strings")
    if secondary in RESERVED_SECONDARY_FIELDS:
        raise ConfigurationError(
            f"field {name}: secondary field {secondary!r} is managed by the service "
            "and cannot be mapped"
        )
    raw_type = entry.get("type", FieldType.TEXT.value)
    try:
        field_type = FieldType(raw_type)
    except ValueError:
        allowed = ", ".join(member.value for member in FieldType)
        raise ConfigurationError(
            f"field {name}: unknown type {raw_type!r} (expected one of {allowed})"
        ) from None
    required = entry.get("required", False)
    if not isinstance(required, bool):
        raise ConfigurationError(f"field {name}: required must be true or false")
    mapping = FieldMapping(
        name=name,
        primary_field=primary,
        secondary_field=secondary,
        type=field_type,
        required=required,
    )
    if "default" in entry:
        try:
            default = mapping.coerce(entry["default"])
        except ValidationError as exc:
            raise ConfigurationError(f"field {name}: invalid default: {exc}") from exc
        mapping = replace(mapping, default=default)
    return mapping


def parse_field_mapping(document: Mapping[str, object]) -> FieldMappingTable:
    """Build a table from a parsed ``[[field]]`` document.

    The email key is added with its default mapping when the document omits it.
    """

    raw_fields = document.get("field", [])
    if not isinstance(raw_fields, list) or not raw_fields:
        raise ConfigurationError("field mapping needs at least one [[field]] table")
    mappings: list[FieldMapping] = []
    for position, entry in enumerate(cast(list[object], raw_fields), start=1):
        if not isinstance(entry, Mapping):
            raise ConfigurationError(f"field #{position} must be a table")
        mappings.append(_parse_entry(cast(Mapping[str, object], entry), position))
    if all(mapping.name != EMAIL_FIELD for mapping in mappings):
        mappings.insert(0, DEFAULT_FIELD_MAPPINGS[0])
    try:
        return FieldMappingTable(mappings)
    except ValidationError as exc:
        raise ConfigurationError(str(exc)) from exc


def load_field_mapping(path: Path | str | None = None) -> FieldMappingTable:
    """Load mappings from ``path`` or ``SUBSYNC_FIELD_MAPPING``; defaults otherwise."""

    source = path or os.getenv(FIELD_MAPPING_ENV)
    if not source:
        return FieldMappingTable()
    mapping_path = Path(source).expanduser()
    try:
        with mapping_path.open("rb") as handle:
            document = tomllib.load(handle)
    except FileNotFoundError as exc:
        raise ConfigurationError(f"field mapping file not found: {mapping_path}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigurationError(f"invalid field mapping file {mapping_path}: {exc}") from exc
    return parse_field_mapping(document)
