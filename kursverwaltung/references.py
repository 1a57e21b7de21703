from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional

from .models import EntityConfig, Record
from .parser import extract_record_id


PLACEHOLDER = "-"


class RefState(enum.Enum):
    UNSET = "unset"
    MISSING = "missing"
    FOUND = "found"


@dataclass(frozen=True)
class Resolution:
    state: RefState
    record_id: Optional[str] = None
    record: Optional[Record] = None

    @property
    def is_stale(self) -> bool:
        return self.state is RefState.MISSING


def find_record(records: Iterable[Record], record_id: Optional[str]) -> Optional[Record]:
    if not record_id:
        return None
    for rec in records:
        if rec.record_id == record_id:
            return rec
    return None


def resolve(ref: Any, records: Iterable[Record]) -> Resolution:
    """Resolve a reference URL against a loaded collection.

    UNSET when no record id can be read from the value, MISSING when the id
    is not in the collection (deleted or not loaded), FOUND otherwise.
    """
    rid = extract_record_id(ref)
    if rid is None:
        return Resolution(RefState.UNSET)
    rec = find_record(records, rid)
    if rec is None:
        return Resolution(RefState.MISSING, record_id=rid)
    return Resolution(RefState.FOUND, record_id=rid, record=rec)


def display(
    ref: Any, records: Iterable[Record], label: Callable[[Record], str]
) -> str:
    res = resolve(ref, records)
    if res.record is None:
        return PLACEHOLDER
    return label(res.record) or PLACEHOLDER


def delete_description(
    ent: EntityConfig, rec: Optional[Record], snapshot: dict[str, list[Record]], entities: dict[str, EntityConfig]
) -> str:
    if rec is None:
        return ""
    if ent.key == "anmeldungen":
        tn = display(rec.get("teilnehmer"), snapshot.get("teilnehmer", []), entities["teilnehmer"].display)
        kurs = display(rec.get("kurs"), snapshot.get("kurse", []), entities["kurse"].display)
        return f'Möchten Sie die Anmeldung von "{tn}" für den Kurs "{kurs}" wirklich löschen?'
    return f'Möchten Sie {ent.delete_noun} "{ent.display(rec)}" wirklich löschen?'
