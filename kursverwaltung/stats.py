from __future__ import annotations

from collections import Counter
from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Any, Dict, List

from .models import Record
from .parser import extract_record_id, format_euro, parse_flag, to_decimal


@dataclass
class DashboardStats:
    total_revenue: Decimal
    kurse: int
    anmeldungen: int
    paid: int
    open: int
    dozenten: int
    teilnehmer: int
    raeume: int

    @property
    def total_revenue_text(self) -> str:
        return format_euro(self.total_revenue)

    def as_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["total_revenue"] = float(self.total_revenue)
        return out


def total_revenue(kurse: List[Record], anmeldungen: List[Record]) -> Decimal:
    # Enrollments whose course is not loaded do not count
    per_kurs = Counter(extract_record_id(a.get("kurs")) for a in anmeldungen)
    total = Decimal(0)
    for k in kurse:
        total += per_kurs.get(k.record_id, 0) * to_decimal(k.get("preis"))
    return total


def paid_count(anmeldungen: List[Record]) -> int:
    return sum(1 for a in anmeldungen if parse_flag(a.get("bezahlt")))


def compute_stats(snapshot: Dict[str, List[Record]]) -> DashboardStats:
    kurse = snapshot.get("kurse", [])
    anmeldungen = snapshot.get("anmeldungen", [])
    paid = paid_count(anmeldungen)
    return DashboardStats(
        total_revenue=total_revenue(kurse, anmeldungen),
        kurse=len(kurse),
        anmeldungen=len(anmeldungen),
        paid=paid,
        open=len(anmeldungen) - paid,
        dozenten=len(snapshot.get("dozenten", [])),
        teilnehmer=len(snapshot.get("teilnehmer", [])),
        raeume=len(snapshot.get("raeume", [])),
    )
