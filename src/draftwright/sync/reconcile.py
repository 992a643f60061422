"""Cross-reference a Draft's stored Scene order against the files present.

The stored order is authoritative: entries are only ever kept in place,
re-keyed in place, dropped, or appended to. Never re-sorted.

Collation policy for names differing only by case (``Chapter 1`` stored,
``chapter 1.md`` on disk):
- an exact match always wins;
- an entry with no exact file is re-keyed in place to a present file that
  matches it case-insensitively and is not itself listed; with several such
  files the smallest by :func:`collation_key` is chosen;
- present files never listed are appended sorted by :func:`collation_key`
  (case-insensitive first, exact spelling as the tie-break), so two files that
  collide case-insensitively on a case-sensitive store are both kept, in a
  deterministic order.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from draftwright.errors import ReconciliationInconsistency
from draftwright.model.drafts import collation_key


@dataclass(frozen=True, slots=True)
class ReconcileResult:
    scenes: tuple[str, ...]
    inconsistencies: tuple[ReconciliationInconsistency, ...]

    @property
    def corrected(self) -> bool:
        return bool(self.inconsistencies)


def reconcile_order(
    draft_path: str, order: Sequence[str], present: Iterable[str]
) -> ReconcileResult:
    present_set = set(present)
    listed = set(order)
    found: list[ReconciliationInconsistency] = []

    def note(kind: str, detail: str) -> None:
        found.append(ReconciliationInconsistency(draft_path=draft_path, kind=kind, detail=detail))

    scenes: list[str] = []
    seen: set[str] = set()
    for name in order:
        if name in seen:
            note("duplicate", name)
            continue
        if name in present_set:
            scenes.append(name)
            seen.add(name)
            continue
        candidates = sorted(
            (
                p
                for p in present_set
                if p.casefold() == name.casefold() and p not in listed and p not in seen
            ),
            key=collation_key,
        )
        if candidates:
            note("case-mismatch", f"{name} -> {candidates[0]}")
            scenes.append(candidates[0])
            seen.add(candidates[0])
        else:
            note("missing", name)

    for name in sorted(present_set - seen, key=collation_key):
        note("untracked", name)
        scenes.append(name)

    return ReconcileResult(scenes=tuple(scenes), inconsistencies=tuple(found))
