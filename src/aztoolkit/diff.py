"""Keyed diffing and reconciliation policies.

DIRECTION:
``compute_diff(reference, current)`` describes how ``current`` departs from
``reference``. For reconciliation, pass the desired state as ``reference``
and the observed state as ``current``:

- Added:     key only in current (extra on the target)
- Removed:   key only in reference (missing on the target)
- Modified:  key in both, values differ (old = reference, new = current)
- Unchanged: key in both, values equal

POLICIES (what the target should look like afterwards):
- replace-all:   the reference, verbatim
- fill-missing:  current, plus reference values for Removed keys
- overwrite-all: current, plus reference values for Removed and Modified keys
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

DiffInput = Mapping[str, Any] | Iterable[tuple[str, Any]]


class ChangeKind(str, Enum):
    """Classification of one key in a diff."""

    ADDED = "Added"
    REMOVED = "Removed"
    MODIFIED = "Modified"
    UNCHANGED = "Unchanged"


class ReconcilePolicy(str, Enum):
    """How a reference collection is applied to a current one."""

    REPLACE_ALL = "replace-all"
    FILL_MISSING = "fill-missing"
    OVERWRITE_ALL = "overwrite-all"


class DiffConflict(Exception):
    """Raised when a key appears more than once on one side of a diff."""

    def __init__(self, side: str, keys: list[str]) -> None:
        super().__init__(f"Duplicate keys in {side}: {', '.join(keys)}")
        self.side = side
        self.keys = keys


@dataclass(frozen=True)
class DiffEntry:
    """One key's classification in a diff run."""

    key: str
    change_kind: ChangeKind
    old_value: Any = None
    new_value: Any = None


def deep_equal(a: Any, b: Any) -> bool:
    """Type-strict structural equality.

    Dicts compare by key set and values, lists and tuples element-wise.
    ``1`` and ``True`` are not equal.
    """
    if type(a) is not type(b):
        return False

    if isinstance(a, dict):
        if set(a.keys()) != set(b.keys()):
            return False
        return all(deep_equal(a[k], b[k]) for k in a)

    if isinstance(a, list | tuple):
        if len(a) != len(b):
            return False
        return all(deep_equal(x, y) for x, y in zip(a, b, strict=True))

    return a == b


def _to_mapping(side: str, items: DiffInput) -> dict[str, Any]:
    if isinstance(items, Mapping):
        return dict(items)

    pairs = list(items)
    counts = Counter(key for key, _ in pairs)
    duplicates = sorted(key for key, count in counts.items() if count > 1)
    if duplicates:
        raise DiffConflict(side, duplicates)
    return dict(pairs)


def compute_diff(reference: DiffInput, current: DiffInput) -> list[DiffEntry]:
    """Classify every key of reference and current.

    Args:
        reference: Desired (or "old") collection.
        current: Observed (or "new") collection.

    Returns:
        Entries sorted by key.

    Raises:
        DiffConflict: If a key is duplicated within one side.
    """
    ref = _to_mapping("reference", reference)
    cur = _to_mapping("current", current)

    entries: list[DiffEntry] = []
    for key in sorted(ref.keys() | cur.keys()):
        if key not in cur:
            entries.append(DiffEntry(key, ChangeKind.REMOVED, old_value=ref[key]))
        elif key not in ref:
            entries.append(DiffEntry(key, ChangeKind.ADDED, new_value=cur[key]))
        elif deep_equal(ref[key], cur[key]):
            entries.append(DiffEntry(key, ChangeKind.UNCHANGED, ref[key], cur[key]))
        else:
            entries.append(DiffEntry(key, ChangeKind.MODIFIED, ref[key], cur[key]))
    return entries


def apply_policy(
    reference: DiffInput,
    current: DiffInput,
    policy: ReconcilePolicy,
) -> dict[str, Any]:
    """Compute the collection a target should hold after reconciliation."""
    ref = _to_mapping("reference", reference)
    cur = _to_mapping("current", current)

    if policy == ReconcilePolicy.REPLACE_ALL:
        return dict(ref)

    apply_kinds = {ChangeKind.REMOVED}
    if policy == ReconcilePolicy.OVERWRITE_ALL:
        apply_kinds.add(ChangeKind.MODIFIED)

    result = dict(cur)
    for entry in compute_diff(ref, cur):
        if entry.change_kind in apply_kinds:
            result[entry.key] = entry.old_value
    return result


def summarize(entries: Iterable[DiffEntry]) -> dict[ChangeKind, int]:
    """Count entries per change kind (every kind present, zero included)."""
    counts = {kind: 0 for kind in ChangeKind}
    for entry in entries:
        counts[entry.change_kind] += 1
    return counts


def has_changes(entries: Iterable[DiffEntry]) -> bool:
    return any(entry.change_kind != ChangeKind.UNCHANGED for entry in entries)
