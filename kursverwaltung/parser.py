from __future__ import annotations

import json
import logging
import re
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, List, Optional

from .models import Record


logger = logging.getLogger(__name__)


DEFAULT_BASE_URL = "https://my.living-apps.de/rest"

# LivingApps record ids are 24 hex digits at the end of the record URL
RECORD_ID_RE = re.compile(r"([a-f0-9]{24})/?$", re.IGNORECASE)


def extract_record_id(ref: Any) -> Optional[str]:
    if not isinstance(ref, str):
        return None
    m = RECORD_ID_RE.search(ref.strip())
    if not m:
        return None
    return m.group(1)


def build_record_url(app_id: str, record_id: str, base_url: str = DEFAULT_BASE_URL) -> str:
    return f"{base_url.rstrip('/')}/apps/{app_id}/records/{record_id}"


def _parse_timestamp(val: Any) -> Optional[datetime]:
    if not isinstance(val, str) or not val.strip():
        return None
    try:
        dt = datetime.fromisoformat(val.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def parse_any_date(val: Any) -> Optional[date]:
    if isinstance(val, datetime):
        return val.date()
    if isinstance(val, date):
        return val
    if not isinstance(val, str):
        return None
    s = val.strip()
    if not s:
        return None
    # LivingApps sends "2024-03-01" or "2024-03-01T09:00"
    try:
        return datetime.fromisoformat(s.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    for fmt in ("%Y-%m-%d %H:%M:%S", "%Y-%m-%d %H:%M", "%d.%m.%Y"):
        try:
            return datetime.strptime(s, fmt).date()
        except ValueError:
            continue
    return None


def format_date(val: Any) -> str:
    """Render a date as dd.mm.yyyy; empty -> "-", unparseable -> as is."""
    if val is None or val == "":
        return "-"
    d = parse_any_date(val)
    if d is None:
        return str(val)
    return d.strftime("%d.%m.%Y")


def to_decimal(val: Any) -> Decimal:
    if val is None or isinstance(val, bool):
        return Decimal(0)
    try:
        num = Decimal(str(val).strip().replace(",", "."))
    except (InvalidOperation, ValueError):
        return Decimal(0)
    # NaN and Infinity count as missing
    if not num.is_finite():
        return Decimal(0)
    return num


def parse_flag(val: Any) -> bool:
    """Checkbox values arrive as bools, 0/1 or strings depending on the client."""
    if isinstance(val, str):
        return val.strip().lower() in ("true", "1", "yes", "on", "ja")
    return bool(val)


def format_number_de(val: Any) -> str:
    # de-DE grouping: "." for thousands, "," for decimals, at most 3 fraction digits
    num = to_decimal(val)
    try:
        num = num.quantize(Decimal("0.001"))
    except InvalidOperation:
        # too many digits for the context precision; print unrounded
        pass
    sign = "-" if num < 0 else ""
    integer, _, fraction = f"{num.copy_abs():f}".partition(".")
    fraction = fraction.rstrip("0")
    groups: List[str] = []
    while len(integer) > 3:
        groups.insert(0, integer[-3:])
        integer = integer[:-3]
    groups.insert(0, integer)
    out = sign + ".".join(groups)
    if fraction:
        out += "," + fraction
    return out


def format_euro(val: Any) -> str:
    return f"{format_number_de(val)} €"


def coerce_record(record_id: Optional[str], it: Any) -> Optional[Record]:
    if not isinstance(it, dict):
        return None
    rid = record_id or it.get("id") or it.get("record_id")
    if not rid:
        return None
    fields = it.get("fields")
    if not isinstance(fields, dict):
        fields = {}
    return Record(
        record_id=str(rid),
        fields=dict(fields),
        created_at=_parse_timestamp(it.get("createdat")),
        updated_at=_parse_timestamp(it.get("updatedat")),
    )


def parse_records(data: Any) -> List[Record]:
    """Normalize a list response of the record gateway.

    The gateway answers with an object keyed by record id; a plain list of
    records (each carrying its own "id") is accepted as well. Gateway order
    is kept.
    """
    if isinstance(data, (bytes, str)):
        data = json.loads(data)
    records: list[Record] = []
    if isinstance(data, dict):
        items = [(str(k), v) for k, v in data.items()]
    elif isinstance(data, list):
        items = [(None, v) for v in data]
    else:
        raise ValueError(f"Unexpected record list payload: {type(data).__name__}")
    for rid, it in items:
        rec = coerce_record(rid, it)
        if rec is None:
            logger.debug("Skipping malformed record entry %r", rid)
            continue
        records.append(rec)
    return records


def parse_record(data: Any) -> Record:
    rec = coerce_record(None, data)
    if rec is None:
        raise ValueError("Response does not contain a record")
    return rec
