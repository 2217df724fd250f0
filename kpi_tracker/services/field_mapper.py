"""
KPI Tracker
Field Mapper — loose report text → canonical enum values.

Every function here is total: any input (None, "", unknown token) yields a
valid enum member. Nothing raises.

    map_area("Infraestructura TI")       → "infrastructure"
    map_area_from_select("bi")           → "systems"
    map_indicator_status("En riesgo")    → "at_risk"
    map_activity_status("certificado")   → "completed"
    map_risk_status("alto", "media")     → "active"
    parse_numeric_token("1.234,5 €")     → 1234.5
"""

import math
import re

from kpi_tracker.models.dashboard import DEFAULT_AREA

# ── Area ─────────────────────────────────────────────────────────────────────

# Ordered: first match wins.
AREA_RULES = (
    (("calidad", "funcional"), "quality"),
    (("proyecto", "proceso"), "projects"),
    (("infraestructura", "infra"), "infrastructure"),
    (("sistema", "desarrollo"), "systems"),
    (("vp", "tecnología", "tecnologia"), "vp_tech"),
)

# Option values of the HTML report's ``#area`` select.
AREA_SELECT_VALUES = {
    "calidad-funcional": "quality",
    "infraestructura": "infrastructure",
    "desarrollo": "systems",
    "seguridad": "infrastructure",
    "soporte": "systems",
    "bi": "systems",
    "db": "infrastructure",
    "redes": "infrastructure",
    "proyectos": "projects",
    "procesos": "projects",
}


def _norm(raw) -> str:
    if raw is None:
        return ""
    return str(raw).strip().lower()


def map_area(raw) -> str:
    """Free-text area label → area code (default ``quality``)."""
    text = _norm(raw)
    if not text:
        return DEFAULT_AREA
    for needles, code in AREA_RULES:
        if any(n in text for n in needles):
            return code
    return DEFAULT_AREA


def map_area_from_select(value) -> str:
    """HTML ``<select id="area">`` value → area code."""
    return AREA_SELECT_VALUES.get(_norm(value)) or map_area(value)


# ── Indicator status ────────────────────────────────────────────────────────

INDICATOR_STATUS_RULES = (
    (("cumplido", "achieved", "verde"), "achieved"),
    (("riesgo", "risk", "amarillo"), "at_risk"),
    (("crítico", "critico", "critical", "rojo"), "critical"),
    (("curso", "progreso", "progress"), "in_progress"),
)


def map_indicator_status(raw) -> str:
    text = _norm(raw)
    for needles, status in INDICATOR_STATUS_RULES:
        if any(n in text for n in needles):
            return status
    return "at_risk"


# ── Activity status ─────────────────────────────────────────────────────────

# Exact tokens used by the HTML report's status select.
ACTIVITY_STATUS_TOKENS = {
    "pendiente": "pending",
    "en-progreso": "in_progress",
    "completada": "completed",
    "retrasada": "in_progress",
    "cancelada": "suspended",
    "certificado": "completed",
    "produccion": "completed",
    "suspendida": "suspended",
    "aplazada": "postponed",
}

# Substring fallback for free-text spreadsheet cells.
ACTIVITY_STATUS_RULES = (
    (("pendiente", "pending"), "pending"),
    (("curso", "progress", "proceso"), "in_progress"),
    (("finalizada", "completed", "terminada"), "completed"),
    (("suspendida", "suspended"), "suspended"),
    (("aplazada", "postponed", "diferida"), "postponed"),
)

# Raw tokens that mean the activity has actually finished.
FINISHED_TOKENS = {"completada", "certificado", "produccion"}


def map_activity_status(raw, default: str = "pending") -> str:
    """
    Exact token lookup, then substring rules, then ``default``.

    The HTML parser passes ``default="completed"``; the spreadsheet parser
    keeps ``pending``.
    """
    text = _norm(raw)
    if text in ACTIVITY_STATUS_TOKENS:
        return ACTIVITY_STATUS_TOKENS[text]
    for needles, status in ACTIVITY_STATUS_RULES:
        if any(n in text for n in needles):
            return status
    return default


# ── Risk fields ─────────────────────────────────────────────────────────────

_IMPACT_ALIASES = {
    "alto": "alto", "alta": "alto", "high": "alto",
    "medio": "medio", "media": "medio", "medium": "medio",
    "bajo": "bajo", "baja": "bajo", "low": "bajo",
}

_PROBABILITY_ALIASES = {
    "alta": "alta", "alto": "alta", "high": "alta",
    "media": "media", "medio": "media", "medium": "media",
    "baja": "baja", "bajo": "baja", "low": "baja",
}


def map_impact(raw) -> str:
    return _IMPACT_ALIASES.get(_norm(raw), "medio")


def map_probability(raw) -> str:
    return _PROBABILITY_ALIASES.get(_norm(raw), "media")


def map_risk_status(impact, probability) -> str:
    """
    (alto, alta) | (alto, media)       → active
    medio impact or media probability  → monitoring
    anything else                      → mitigated
    """
    impact = _norm(impact)
    probability = _norm(probability)
    if impact == "alto" and probability in ("alta", "media"):
        return "active"
    if impact == "medio" or probability == "media":
        return "monitoring"
    return "mitigated"


# ── Numbers ─────────────────────────────────────────────────────────────────

_SYMBOLS_RE = re.compile(r"[%$€\s]")


def parse_numeric_token(raw) -> float:
    """
    Lenient float parser for report cells. Returns 0.0 on anything unparseable.

    Handles "85%", "$1,200", "1.234,5 €" and plain numbers.
    """
    if raw is None or isinstance(raw, bool):
        return 0.0
    if isinstance(raw, (int, float)):
        value = float(raw)
        return 0.0 if math.isnan(value) or math.isinf(value) else value

    text = _SYMBOLS_RE.sub("", str(raw))
    if not text:
        return 0.0
    if "," in text and "." in text:
        # Whichever separator comes last is the decimal one.
        if text.rfind(",") > text.rfind("."):
            text = text.replace(".", "").replace(",", ".")
        else:
            text = text.replace(",", "")
    elif "," in text:
        head, _, tail = text.rpartition(",")
        if len(tail) == 3 and head.replace(",", "").lstrip("-").isdigit():
            text = text.replace(",", "")
        else:
            text = head.replace(",", "") + "." + tail
    try:
        value = float(text)
    except ValueError:
        return 0.0
    if math.isnan(value) or math.isinf(value):
        return 0.0
    return value
