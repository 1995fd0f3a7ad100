"""
Field Normalizer - Reine Funktionen zur Normalisierung von Plattform-Payloads.

Die Plattform liefert dieselbe Ressource je nach Endpoint und API-Version in
unterschiedlichen Formen (Envelope-Varianten, Dauer als "MM:SS" oder Zahl,
IDs mit Präfix, Zahlen als String). Alles hier ist seiteneffektfrei bis auf
Logging und wirft bei unbrauchbaren Einzelwerten nie, sondern liefert einen
sicheren Default.
"""

import json
import logging
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from app.config import Limits

logger = logging.getLogger(__name__)

RawRecord = dict[str, Any]
Extractor = Callable[[RawRecord], Any]

# Envelope-Schlüssel in Prüf-Reihenfolge (nach Bare-List und <resource>_data)
GENERIC_ENVELOPE_KEYS: tuple[str, ...] = ("data", "items")
LEGACY_ENVELOPE_KEYS: tuple[str, ...] = (
    "call_logs",
    "logs",
    "results",
    "bots",
    "files",
    "phone_numbers",
    "bulk_calls",
)
TOTAL_KEYS: tuple[str, ...] = ("total", "total_records", "count")

ID_PREFIXES: tuple[str, ...] = ("phone_", "pn_", "file_", "agent_")
ZERO_DURATION_TOKENS: frozenset[str] = frozenset({"0:0", "00:00", "0:00"})
CALL_TIME_FORMAT = "%m/%d/%Y %H:%M:%S"

_MM_SS_PATTERN = re.compile(r"^(\d+):(\d+)$")
_NON_DIGITS = re.compile(r"\D")


@dataclass
class NormalizedBatch:
    """Ergebnis der Envelope-Normalisierung."""

    records: list[RawRecord] = field(default_factory=list)
    total_count: int | None = None
    recognized: bool = True
    envelope: str | None = None


# ── Envelope ─────────────────────────────────────────


def _extract_total(response: dict) -> int | None:
    """Liest die Gesamtanzahl aus total, total_records oder count."""
    for key in TOTAL_KEYS:
        value = response.get(key)
        if isinstance(value, bool):
            continue
        if isinstance(value, int):
            return value
        if isinstance(value, str) and value.strip().isdigit():
            return int(value.strip())
    return None


def _only_records(items: list) -> list[RawRecord]:
    records = [item for item in items if isinstance(item, dict)]
    dropped = len(items) - len(records)
    if dropped:
        logger.warning(f"Envelope: {dropped} Einträge ohne Objekt-Form verworfen")
    return records


def _envelope_keys(response: dict, resource_keys: Iterable[str]) -> list[str]:
    keys = list(resource_keys)
    keys += [k for k in GENERIC_ENVELOPE_KEYS if k not in keys]
    keys += [k for k in LEGACY_ENVELOPE_KEYS if k not in keys]
    # Unbekannte *_data-Schlüssel zuletzt, sonst gewinnt z.B. meta_data vor data
    keys += [k for k in response if k.endswith("_data") and k not in keys]
    return keys


def normalize_response(
    response: Any,
    resource_keys: Iterable[str] = (),
    _depth: int = 0,
) -> NormalizedBatch:
    """
    Normalisiert eine Listen-Response der Plattform.

    Geprüft wird in fester Reihenfolge: nackte Liste, Ressourcen-Schlüssel
    ({call_log_data: [...]}), {data: [...]}, {items: [...]}, Legacy-Schlüssel
    und zuletzt sonstige *_data-Schlüssel. Das erste
    Array-Feld gewinnt. Ein Objekt unter einem Envelope-Schlüssel wird
    einmal rekursiv entpackt ({data: {call_log_data: [...]}}).

    Args:
        response: Rohe JSON-Response
        resource_keys: Ressourcen-spezifische Schlüssel (z.B. "call_log_data")

    Returns:
        NormalizedBatch; bei unbekannter Form leer mit recognized=False
    """
    resource_keys = tuple(resource_keys)

    if isinstance(response, list):
        return NormalizedBatch(
            records=_only_records(response),
            total_count=len(response),
            envelope="list",
        )

    if not isinstance(response, dict):
        logger.warning(f"Envelope: unerwarteter Response-Typ {type(response).__name__}")
        return NormalizedBatch(recognized=False)

    for key in _envelope_keys(response, resource_keys):
        value = response.get(key)
        if isinstance(value, list):
            return NormalizedBatch(
                records=_only_records(value),
                total_count=_extract_total(response),
                envelope=key,
            )
        if isinstance(value, dict) and _depth == 0:
            nested = normalize_response(value, resource_keys, _depth=1)
            if nested.recognized:
                if nested.total_count is None:
                    nested.total_count = _extract_total(response)
                nested.envelope = f"{key}.{nested.envelope}"
                return nested

    if _depth == 0:
        logger.warning(
            f"Envelope: keine bekannte Form erkannt (Schlüssel: {sorted(response)[:10]})"
        )
    return NormalizedBatch(recognized=False)


# ── Einzelwerte ──────────────────────────────────────


def parse_duration(value: Any) -> int:
    """
    Parst eine Anrufdauer in Sekunden.

    Akzeptiert Integer, "MM:SS" (Minuten dürfen > 59 sein), reine Ziffern
    und das Null-Token "0:0". Alles andere ergibt 0 mit Warnung.
    """
    if value is None or value == "":
        return 0
    if isinstance(value, bool):
        logger.warning(f"Dauer nicht parsebar: {value!r}")
        return 0
    if isinstance(value, (int, float)):
        return max(int(value), 0)
    if isinstance(value, str):
        text = value.strip()
        if text in ZERO_DURATION_TOKENS:
            return 0
        match = _MM_SS_PATTERN.match(text)
        if match:
            return int(match.group(1)) * 60 + int(match.group(2))
        if text.isdigit():
            return int(text)
    logger.warning(f"Dauer nicht parsebar, verwende 0: {value!r}")
    return 0


def extract_remote_id(value: Any) -> str | None:
    """
    Extrahiert eine Remote-ID als String.

    Entfernt bekannte Präfixe (phone_, pn_, file_, agent_). Gibt nie einen
    Integer zurück, da Plattform-IDs den 32-bit-Bereich überschreiten können.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, dict):
        return extract_remote_id(value.get("id"))
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value).strip()
    for prefix in ID_PREFIXES:
        if text.startswith(prefix):
            text = text[len(prefix):]
            break
    return text or None


def to_remote_int(value: Any) -> int | None:
    """
    Wandelt eine Remote-ID für einen Plattform-Aufruf in einen Integer.

    Einzige Stelle mit int-Parse. Schlägt geschlossen fehl: nicht-numerische
    Werte und Werte über dem signed 32-bit Maximum ergeben None.
    """
    remote_id = extract_remote_id(value)
    if remote_id is None or not remote_id.isdigit():
        logger.warning(f"Remote-ID nicht numerisch, Aufruf wird übersprungen: {value!r}")
        return None
    number = int(remote_id)
    if number > Limits.REMOTE_ID_MAX:
        logger.warning(
            f"Remote-ID {remote_id} überschreitet {Limits.REMOTE_ID_MAX}, Aufruf wird übersprungen"
        )
        return None
    return number


def parse_float(value: Any, default: float | None = None) -> float | None:
    """Parst Kosten/Scores; unbrauchbare Werte ergeben den Default."""
    if value is None or value == "" or isinstance(value, bool):
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.warning(f"Zahl nicht parsebar: {value!r}")
        return default


def parse_int(value: Any, default: int = 0) -> int:
    """Parst Zähler; unbrauchbare Werte ergeben den Default."""
    number = parse_float(value)
    return default if number is None else int(number)


def normalize_phone_number(value: Any) -> str | None:
    """Nur Ziffern, davon die letzten 10. Leere Eingabe ergibt None."""
    if value is None:
        return None
    digits = _NON_DIGITS.sub("", str(value))
    if not digits:
        return None
    return digits[-10:]


def normalize_display_value(value: Any, preferred_keys: Iterable[str] = ()) -> str | None:
    """
    Macht aus einem beliebigen Wert einen anzeigbaren String.

    Listen werden mit ", " verbunden, Objekte über id, name oder die
    bevorzugten Schlüssel aufgelöst, sonst als JSON dargestellt.
    """
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, (list, tuple)):
        parts = [normalize_display_value(item, preferred_keys) for item in value]
        parts = [part for part in parts if part]
        return ", ".join(parts) if parts else None
    if isinstance(value, dict):
        for key in ("id", "name", *preferred_keys):
            candidate = value.get(key)
            if isinstance(candidate, (str, int, float)) and not isinstance(candidate, bool):
                return str(candidate)
        return json.dumps(value, sort_keys=True, default=str)
    return str(value)


def parse_call_time(value: Any) -> datetime | None:
    """
    Parst den Anrufzeitpunkt.

    Unterstützt "MM/DD/YYYY HH:MM:SS" (Plattform-Format), ISO-8601 und
    Epoch-Sekunden bzw. -Millisekunden. Ergebnis ist immer UTC-aware.
    """
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        seconds = value / 1000 if value > 10**12 else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    else:
        text = str(value).strip()
        try:
            parsed = datetime.strptime(text, CALL_TIME_FORMAT)
        except ValueError:
            try:
                parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
            except ValueError:
                logger.warning(f"Anrufzeit nicht parsebar: {value!r}")
                return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ── Extraktoren ──────────────────────────────────────


def key(name: str) -> Extractor:
    """Extraktor für einen Top-Level-Schlüssel."""
    return lambda raw: raw.get(name)


def path(*names: str | int) -> Extractor:
    """Extraktor für einen verschachtelten Pfad (Schlüssel oder Listen-Index)."""

    def _extract(raw: RawRecord) -> Any:
        current: Any = raw
        for name in names:
            if isinstance(name, int):
                if not isinstance(current, list) or len(current) <= name:
                    return None
                current = current[name]
            else:
                if not isinstance(current, dict):
                    return None
                current = current.get(name)
        return current

    return _extract


def keys(*names: str) -> tuple[Extractor, ...]:
    """Kurzform: Extraktor-Tupel für mehrere Top-Level-Schlüssel."""
    return tuple(key(name) for name in names)


def first_present(raw: RawRecord, extractors: Iterable[Extractor], default: Any = None) -> Any:
    """
    Probiert die Extraktoren der Reihe nach, der erste Nicht-Leer-Wert gewinnt.

    None und "" gelten als nicht vorhanden.
    """
    for extractor in extractors:
        value = extractor(raw)
        if value is not None and value != "":
            return value
    return default


def extract_fields(raw: RawRecord, table: dict[str, tuple[Extractor, ...]]) -> dict[str, Any]:
    """Wendet eine Feld-Tabelle {feld: extraktoren} auf einen Rohdatensatz an."""
    return {name: first_present(raw, extractors) for name, extractors in table.items()}


CREATED_ID_EXTRACTORS = keys("id", "phone_number_id", "bot_id", "agent_id")


def extract_created_record(response: Any) -> RawRecord | None:
    """
    Datensatz aus der Antwort auf einen Anlege- oder Import-Request.

    Die Plattform antwortet mit dem Objekt selbst, mit {data: {...}} oder
    nur mit {id: ...}. None, wenn keine Remote-ID enthalten ist.
    """
    if not isinstance(response, dict):
        return None
    for candidate in (response, response.get("data"), response.get("bot")):
        if isinstance(candidate, dict) and first_present(candidate, CREATED_ID_EXTRACTORS) is not None:
            return candidate
    return None
