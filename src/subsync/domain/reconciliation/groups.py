"""Group membership planning: the primary store decides, the secondary follows."""

from __future__ import annotations

from collections.abc import Collection, Set
from dataclasses import dataclass

from subsync.domain.errors import FieldTypeError
from subsync.domain.model import GROUPS_FIELD


def parse_groups(value: object) -> frozenset[str]:
    """Read group names from a list or a comma-separated string; blanks are dropped."""

    if value is None:
        return frozenset()
    if isinstance(value, str):
        names: Collection[object] = value.split(",")
    elif isinstance(value, (list, tuple, set, frozenset)):
        names = value
    else:
        raise FieldTypeError(
            f"cannot use {type(value).__name__} as a group list", field=GROUPS_FIELD
        )
    stripped = (str(name).strip() for name in names if name is not None)
    return frozenset(name for name in stripped if name)


@dataclass(slots=True, frozen=True, kw_only=True)
class GroupPlan:
    add: tuple[str, ...] = ()
    remove: tuple[str, ...] = ()
    unmanaged: tuple[str, ...] = ()

    @property
    def empty(self) -> bool:
        return not self.add and not self.remove

    def applied_to(self, current: Set[str]) -> list[str]:
        return sorted((current | set(self.add)) - set(self.remove))


def plan_groups(
    *, desired: Set[str], current: Set[str], managed: Set[str]
) -> GroupPlan:
    """Join every desired group; leave extra groups only when they are managed.

    Groups outside ``managed`` were assigned by someone else and are kept.
    """

    extra = current - desired
    return GroupPlan(
        add=tuple(sorted(desired - current)),
        remove=tuple(sorted(extra & managed)),
        unmanaged=tuple(sorted(extra - managed)),
    )
