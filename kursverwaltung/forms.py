from __future__ import annotations

from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Mapping, Optional

from .models import EntityConfig, FieldSpec, Record
from .parser import DEFAULT_BASE_URL, build_record_url, extract_record_id, parse_flag


REQUIRED_MESSAGE = "Pflichtfeld"


class FormError(ValueError):
    def __init__(self, errors: Dict[str, str]) -> None:
        super().__init__("; ".join(f"{k}: {v}" for k, v in errors.items()))
        self.errors = errors


def default_values(ent: EntityConfig, today: Optional[date] = None) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for f in ent.fields:
        if f.kind == "date" and f.required and f.default is None:
            values[f.name] = (today or date.today()).isoformat()
        elif f.kind == "bool":
            values[f.name] = bool(f.default)
        else:
            values[f.name] = "" if f.default is None else f.default
    return values


def values_from_record(ent: EntityConfig, rec: Record, today: Optional[date] = None) -> Dict[str, Any]:
    values = default_values(ent, today)
    for f in ent.fields:
        raw = rec.get(f.name)
        if raw is None or raw == "":
            continue
        if f.kind == "ref":
            values[f.name] = extract_record_id(raw) or ""
        elif f.kind == "bool":
            values[f.name] = parse_flag(raw)
        else:
            values[f.name] = raw
    return values


def values_from_form(ent: EntityConfig, form: Mapping[str, Any]) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for f in ent.fields:
        if f.kind == "bool":
            values[f.name] = parse_flag(form.get(f.name, ""))
        else:
            raw = form.get(f.name)
            values[f.name] = "" if raw is None else str(raw).strip()
    return values


def _coerce(f: FieldSpec, raw: Any) -> Any:
    if f.kind == "int":
        return int(str(raw))
    if f.kind == "decimal":
        num = Decimal(str(raw).replace(",", "."))
        if not num.is_finite():
            raise ValueError(raw)
        return int(num) if num == num.to_integral_value() else float(num)
    return raw


def build_payload(
    ent: EntityConfig,
    values: Mapping[str, Any],
    entities: Mapping[str, EntityConfig],
    base_url: str = DEFAULT_BASE_URL,
) -> Dict[str, Any]:
    """Validate submitted form values and build the full field set.

    Raises FormError before anything is sent when a required value is
    missing or a number does not parse.
    """
    errors: Dict[str, str] = {}
    payload: Dict[str, Any] = {}
    for f in ent.fields:
        raw = values.get(f.name)
        if f.kind == "bool":
            payload[f.name] = bool(raw)
            continue
        if raw is None or raw == "":
            if f.required:
                errors[f.name] = REQUIRED_MESSAGE
            elif f.omit_empty:
                payload[f.name] = None
            else:
                payload[f.name] = ""
            continue
        if f.kind == "ref":
            assert f.ref_entity is not None
            rid = extract_record_id(str(raw))
            if rid is None:
                errors[f.name] = "Ungültige Auswahl"
                continue
            payload[f.name] = build_record_url(entities[f.ref_entity].app_id, rid, base_url)
            continue
        try:
            payload[f.name] = _coerce(f, raw)
        except (ValueError, InvalidOperation):
            errors[f.name] = "Bitte eine Zahl eingeben"
    if errors:
        raise FormError(errors)
    return payload
