from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional


@dataclass
class Record:
    record_id: str
    fields: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def get(self, name: str, default: Any = None) -> Any:
        value = self.fields.get(name)
        return default if value is None else value


@dataclass
class FieldSpec:
    name: str
    label: str
    kind: str = "text"  # text, email, tel, textarea, date, int, decimal, bool, ref
    required: bool = False
    default: Any = ""
    ref_entity: Optional[str] = None
    min: Optional[str] = None
    step: Optional[str] = None
    # Empty optional values are left out of the payload instead of sent as ""
    omit_empty: bool = False


@dataclass
class Column:
    label: str
    field: str
    kind: str = "text"  # text, date, period, euro, ref, bool, capacity
    ref_entity: Optional[str] = None
    strong: bool = False


@dataclass
class EntityConfig:
    key: str
    app_id: str
    singular: str
    plural: str
    new_title: str
    edit_title: str
    delete_title: str
    add_label: str
    fields: List[FieldSpec]
    columns: List[Column]
    display: Callable[[Record], str]
    delete_noun: str = ""
    empty_text: str = ""

    @property
    def ref_fields(self) -> List[FieldSpec]:
        return [f for f in self.fields if f.kind == "ref"]


def _name(rec: Record) -> str:
    return str(rec.get("name", ""))


def _raum(rec: Record) -> str:
    return f"{rec.get('raumname', '')} ({rec.get('gebaeude', '')})"


def _titel(rec: Record) -> str:
    return str(rec.get("titel", ""))


def _anmeldung(rec: Record) -> str:
    return rec.record_id


def build_entities(app_ids: Dict[str, str]) -> Dict[str, EntityConfig]:
    """Entity configurations in tab order, keyed by entity key."""
    entities = [
        EntityConfig(
            key="kurse",
            app_id=app_ids.get("kurse", "kurse"),
            singular="Kurs",
            plural="Kurse",
            new_title="Neuer Kurs",
            edit_title="Kurs bearbeiten",
            delete_title="Kurs löschen",
            add_label="Kurs hinzufügen",
            delete_noun="den Kurs",
            fields=[
                FieldSpec("titel", "Titel", required=True),
                FieldSpec("beschreibung", "Beschreibung", kind="textarea", omit_empty=True),
                FieldSpec("startdatum", "Startdatum", kind="date", required=True),
                FieldSpec("enddatum", "Enddatum", kind="date", required=True),
                FieldSpec("max_teilnehmer", "Max. Teilnehmer", kind="int", required=True, default=20, min="1"),
                FieldSpec("preis", "Preis (€)", kind="decimal", required=True, default=0, min="0", step="0.01"),
                FieldSpec("dozent", "Dozent", kind="ref", required=True, ref_entity="dozenten"),
                FieldSpec("raum", "Raum", kind="ref", required=True, ref_entity="raeume"),
            ],
            columns=[
                Column("Titel", "titel", strong=True),
                Column("Zeitraum", "startdatum", kind="period"),
                Column("Dozent", "dozent", kind="ref", ref_entity="dozenten"),
                Column("Raum", "raum", kind="ref", ref_entity="raeume"),
                Column("Max. TN", "max_teilnehmer"),
                Column("Preis", "preis", kind="euro"),
            ],
            display=_titel,
        ),
        EntityConfig(
            key="anmeldungen",
            app_id=app_ids.get("anmeldungen", "anmeldungen"),
            singular="Anmeldung",
            plural="Anmeldungen",
            new_title="Neue Anmeldung",
            edit_title="Anmeldung bearbeiten",
            delete_title="Anmeldung löschen",
            add_label="Anmeldung hinzufügen",
            delete_noun="die Anmeldung",
            fields=[
                FieldSpec("teilnehmer", "Teilnehmer", kind="ref", required=True, ref_entity="teilnehmer"),
                FieldSpec("kurs", "Kurs", kind="ref", required=True, ref_entity="kurse"),
                FieldSpec("anmeldedatum", "Anmeldedatum", kind="date", required=True, default=None),
                FieldSpec("bezahlt", "Bereits bezahlt", kind="bool", default=False),
            ],
            columns=[
                Column("Teilnehmer", "teilnehmer", kind="ref", ref_entity="teilnehmer", strong=True),
                Column("Kurs", "kurs", kind="ref", ref_entity="kurse"),
                Column("Anmeldedatum", "anmeldedatum", kind="date"),
                Column("Bezahlt", "bezahlt", kind="bool"),
            ],
            display=_anmeldung,
        ),
        EntityConfig(
            key="dozenten",
            app_id=app_ids.get("dozenten", "dozenten"),
            singular="Dozent",
            plural="Dozenten",
            new_title="Neuer Dozent",
            edit_title="Dozent bearbeiten",
            delete_title="Dozent löschen",
            add_label="Dozent hinzufügen",
            delete_noun="den Dozenten",
            fields=[
                FieldSpec("name", "Name", required=True),
                FieldSpec("email", "E-Mail", kind="email", required=True),
                FieldSpec("telefon", "Telefon", kind="tel"),
                FieldSpec("fachgebiet", "Fachgebiet"),
            ],
            columns=[
                Column("Name", "name", strong=True),
                Column("E-Mail", "email"),
                Column("Telefon", "telefon"),
                Column("Fachgebiet", "fachgebiet"),
            ],
            display=_name,
        ),
        EntityConfig(
            key="teilnehmer",
            app_id=app_ids.get("teilnehmer", "teilnehmer"),
            singular="Teilnehmer",
            plural="Teilnehmer",
            new_title="Neuer Teilnehmer",
            edit_title="Teilnehmer bearbeiten",
            delete_title="Teilnehmer löschen",
            add_label="Teilnehmer hinzufügen",
            delete_noun="den Teilnehmer",
            fields=[
                FieldSpec("name", "Name", required=True),
                FieldSpec("email", "E-Mail", kind="email", required=True),
                FieldSpec("telefon", "Telefon", kind="tel"),
                FieldSpec("geburtsdatum", "Geburtsdatum", kind="date", omit_empty=True),
            ],
            columns=[
                Column("Name", "name", strong=True),
                Column("E-Mail", "email"),
                Column("Telefon", "telefon"),
                Column("Geburtsdatum", "geburtsdatum", kind="date"),
            ],
            display=_name,
        ),
        EntityConfig(
            key="raeume",
            app_id=app_ids.get("raeume", "raeume"),
            singular="Raum",
            plural="Räume",
            new_title="Neuer Raum",
            edit_title="Raum bearbeiten",
            delete_title="Raum löschen",
            add_label="Raum hinzufügen",
            delete_noun="den Raum",
            fields=[
                FieldSpec("raumname", "Raumname", required=True),
                FieldSpec("gebaeude", "Gebäude", required=True),
                FieldSpec("kapazitaet", "Kapazität", kind="int", required=True, default=0, min="1"),
            ],
            columns=[
                Column("Raumname", "raumname", strong=True),
                Column("Gebäude", "gebaeude"),
                Column("Kapazität", "kapazitaet", kind="capacity"),
            ],
            display=_raum,
        ),
    ]
    for ent in entities:
        ent.empty_text = f"Noch keine {ent.plural} vorhanden"
    return {ent.key: ent for ent in entities}
