"""Three-way comparison of current values against the last-synced shadow."""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import StrEnum
from typing import TYPE_CHECKING

from subsync.domain.model import ConflictKind, Side, normalize_for_compare

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from subsync.domain.model import (
        FieldMapping,
        FieldMappingTable,
        FieldValue,
        JsonValue,
        ShadowSnapshot,
    )


class Decision(StrEnum):
    SKIP = "skip"
    SHADOW_ONLY = "shadow_only"
    TO_SECONDARY = "to_secondary"
    TO_PRIMARY = "to_primary"
    CONFLICT = "conflict"


@dataclass(slots=True, frozen=True, kw_only=True)
class FieldDiff:
    field: str
    decision: Decision
    primary_value: FieldValue
    secondary_value: FieldValue
    conflict_kind: ConflictKind | None = None

    @property
    def winning_value(self) -> FieldValue:
        """Value both sides should hold once this decision is applied."""

        if self.decision is Decision.TO_PRIMARY:
            return self.secondary_value
        return self.primary_value

    def value_for(self, side: Side) -> FieldValue:
        return self.primary_value if side is Side.PRIMARY else self.secondary_value

    @property
    def target(self) -> Side | None:
        if self.decision is Decision.TO_SECONDARY:
            return Side.SECONDARY
        if self.decision is Decision.TO_PRIMARY:
            return Side.PRIMARY
        return None


def _conflict_kind(primary: FieldValue, secondary: FieldValue) -> ConflictKind:
    if primary is None:
        return ConflictKind.MISSING_PRIMARY
    if secondary is None:
        return ConflictKind.MISSING_SECONDARY
    return ConflictKind.VALUE_MISMATCH


def diff_field(
    mapping: FieldMapping,
    *,
    primary: FieldValue,
    secondary: FieldValue,
    primary_base: JsonValue,
    secondary_base: JsonValue,
) -> FieldDiff:
    """Decide what to do with one field given both current values and their bases."""

    current_a = normalize_for_compare(primary, mapping.type)
    current_b = normalize_for_compare(secondary, mapping.type)
    base_a = normalize_for_compare(primary_base, mapping.type)
    base_b = normalize_for_compare(secondary_base, mapping.type)

    def result(decision: Decision, kind: ConflictKind | None = None) -> FieldDiff:
        return FieldDiff(
            field=mapping.name,
            decision=decision,
            primary_value=primary,
            secondary_value=secondary,
            conflict_kind=kind,
        )

    if current_a == current_b:
        if base_a == current_a and base_b == current_b:
            return result(Decision.SKIP)
        return result(Decision.SHADOW_ONLY)

    changed_a = current_a != base_a
    changed_b = current_b != base_b
    if changed_a and not changed_b:
        # a blank never overwrites a value
        return result(Decision.SKIP if current_a is None else Decision.TO_SECONDARY)
    if changed_b and not changed_a:
        return result(Decision.SKIP if current_b is None else Decision.TO_PRIMARY)
    if not changed_a and not changed_b:
        # sides already disagreed at the last sync; leave the divergence alone
        return result(Decision.SKIP)
    return result(Decision.CONFLICT, _conflict_kind(primary, secondary))


def diff_record(
    table: FieldMappingTable,
    *,
    primary: Mapping[str, FieldValue],
    secondary: Mapping[str, FieldValue],
    shadow: ShadowSnapshot | None,
) -> list[FieldDiff]:
    """Diff every mapped data field. A missing shadow counts as an all-empty base."""

    diffs: list[FieldDiff] = []
    for mapping in table.data_fields:
        diffs.append(
            diff_field(
                mapping,
                primary=primary.get(mapping.name),
                secondary=secondary.get(mapping.name),
                primary_base=shadow.value_for(Side.PRIMARY, mapping.name) if shadow else None,
                secondary_base=(
                    shadow.value_for(Side.SECONDARY, mapping.name) if shadow else None
                ),
            )
        )
    return diffs


def repair_diffs(diffs: Iterable[FieldDiff]) -> list[FieldDiff]:
    """Rewrite decisions for a repair pass.

    Blank primary values are filled from the secondary whatever the shadow says.
    Other writes towards the primary and all conflicts are dropped, so a repair
    never overwrites a primary value and never records a conflict.
    """

    repaired: list[FieldDiff] = []
    for diff in diffs:
        if diff.primary_value is None and diff.secondary_value is not None:
            decision = Decision.TO_PRIMARY
        elif diff.decision in (Decision.TO_PRIMARY, Decision.CONFLICT):
            decision = Decision.SKIP
        else:
            repaired.append(diff)
            continue
        repaired.append(replace(diff, decision=decision, conflict_kind=None))
    return repaired
