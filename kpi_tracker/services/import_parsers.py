"""
KPI Tracker
Format Parsers — raw report bytes → ImportBatch.

Two parsers share one contract, ``parse(data: bytes) -> ImportBatch``:

  HTML report (BeautifulSoup)
    General fields:  #area (select), #responsable, #periodo, #fecha-reporte
    Tables by id:    tabla-actividades, tabla-kpis, tabla-riesgos

  Spreadsheet (openpyxl)
    Sheets by title: Indicadores, Actividades, Riesgos
    Row 1 is the header row; each field accepts two header spellings.

Both tolerate empty or partially-filled tables and return whatever could be
read. A ParseError is raised only for undecodable input or a document that
holds none of the three expected tables/sheets.
"""

import io
import logging
import os
import zipfile
from datetime import date
from xml.etree.ElementTree import ParseError as XMLParseError

from bs4 import BeautifulSoup
from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from kpi_tracker.core.exceptions import ParseError, UnsupportedFormatError
from kpi_tracker.models.dashboard import derive_indicator_status
from kpi_tracker.services.field_mapper import (
    FINISHED_TOKENS,
    map_activity_status,
    map_area,
    map_area_from_select,
    map_impact,
    map_indicator_status,
    map_probability,
    map_risk_status,
    parse_numeric_token,
)
from kpi_tracker.services.import_batch import (
    ImportBatch,
    ProtoActivity,
    ProtoIndicator,
    ProtoRisk,
)
from kpi_tracker.utils.helpers import clamp_progress, parse_date

logger = logging.getLogger(__name__)


# ── File type routing ───────────────────────────────────────────────────────

HTML_EXTENSIONS = (".html", ".htm")
SPREADSHEET_EXTENSIONS = (".xlsx", ".xls")


def detect_file_type(file_name: str) -> str:
    """Return ``"HTML"`` or ``"Excel"``; anything else is unsupported."""
    ext = os.path.splitext((file_name or "").lower())[1]
    if ext in HTML_EXTENSIONS:
        return "HTML"
    if ext in SPREADSHEET_EXTENSIONS:
        return "Excel"
    raise UnsupportedFormatError(file_name)


def get_parser(file_type: str):
    return PARSERS[file_type]


# ═════════════════════════════════════════════════════════════════════════════
# HTML report
# ═════════════════════════════════════════════════════════════════════════════

HTML_TABLES = ("tabla-actividades", "tabla-kpis", "tabla-riesgos")

DEFAULT_HTML_AREA = "calidad-funcional"
DEFAULT_START_DATE = date(2025, 4, 1)
DEFAULT_END_DATE = date(2025, 12, 31)
DEFAULT_HTML_ACTIVITY_STATUS = "completada"
DEFAULT_HTML_PROGRESS = 100


def _control_value(cell) -> str:
    """Value of the first form control in a cell, else the cell's text."""
    if cell is None:
        return ""
    select = cell.find("select")
    if select is not None:
        option = _selected_option(select)
        if option is None:
            return ""
        return (option.get("value") if option.has_attr("value") else option.get_text()).strip()
    control = cell.find(["input", "textarea"])
    if control is not None:
        if control.name == "textarea":
            return control.get_text().strip()
        return (control.get("value") or "").strip()
    return cell.get_text(" ", strip=True)


def _control_text(cell) -> str:
    """Display text of a select's chosen option, else the cell's text."""
    if cell is None:
        return ""
    select = cell.find("select")
    if select is not None:
        option = _selected_option(select)
        return option.get_text(" ", strip=True) if option is not None else ""
    return _control_value(cell)


def _selected_option(select):
    """Mimic ``HTMLSelectElement.value``: the selected option, else the first."""
    options = select.find_all("option")
    for option in options:
        if option.has_attr("selected"):
            return option
    return options[0] if options else None


def _field_by_id(soup, element_id) -> str:
    element = soup.find(id=element_id)
    if element is None:
        return ""
    if element.name == "select":
        option = _selected_option(element)
        if option is None:
            return ""
        return (option.get("value") if option.has_attr("value") else option.get_text()).strip()
    if element.name == "input":
        return (element.get("value") or "").strip()
    return element.get_text(" ", strip=True)


def _data_rows(table):
    rows = table.select("tbody tr")
    if not rows:
        rows = table.find_all("tr")
    for row in rows:
        yield row.find_all("td")


def parse_html_report(data: bytes, *, today: date | None = None) -> ImportBatch:
    """Scrape the monthly HTML report form into an ImportBatch."""
    today = today or date.today()
    try:
        soup = BeautifulSoup(data, "html.parser")
    except (TypeError, ValueError) as exc:
        raise ParseError(f"No se pudo leer el documento HTML: {exc}") from exc

    tables = {table_id: soup.find(id=table_id) for table_id in HTML_TABLES}
    missing = [t for t, el in tables.items() if el is None]
    if len(missing) == len(HTML_TABLES):
        raise ParseError(
            "El documento HTML no contiene ninguna de las tablas esperadas: "
            + ", ".join(missing),
            missing=missing,
        )

    area = map_area_from_select(_field_by_id(soup, "area") or DEFAULT_HTML_AREA)
    responsible = _field_by_id(soup, "responsable")
    period = _field_by_id(soup, "periodo")
    measurement_date = parse_date(_field_by_id(soup, "fecha-reporte")) or today

    logger.debug(
        "HTML report header: area=%s responsible=%r date=%s missing_tables=%s",
        area, responsible, measurement_date, missing,
    )

    batch = ImportBatch()

    # ── Activities ──
    if tables["tabla-actividades"] is not None:
        for index, cells in enumerate(_data_rows(tables["tabla-actividades"])):
            if len(cells) < 6:
                continue
            name = _control_value(cells[1])
            if not name:
                continue
            number = cells[0].get_text(strip=True) or str(index + 1)
            end_date = parse_date(_control_value(cells[3])) or DEFAULT_END_DATE
            raw_status = (_control_value(cells[4]) or DEFAULT_HTML_ACTIVITY_STATUS).lower()
            raw_progress = _control_value(cells[5])
            progress = parse_numeric_token(raw_progress) if raw_progress else DEFAULT_HTML_PROGRESS
            observations = f"Actividad {number} del reporte mensual"
            if period:
                observations += f" - {period}"
            batch.activities.append(ProtoActivity(
                name=name,
                area=area,
                status=map_activity_status(raw_status, default="completed"),
                progress=clamp_progress(progress),
                start_date=parse_date(_control_value(cells[2])) or DEFAULT_START_DATE,
                estimated_end_date=end_date,
                actual_end_date=end_date if raw_status in FINISHED_TOKENS else None,
                responsible=responsible,
                observations=observations,
            ))

    # ── KPIs ──
    if tables["tabla-kpis"] is not None:
        for index, cells in enumerate(_data_rows(tables["tabla-kpis"])):
            if len(cells) < 5:
                continue
            target = parse_numeric_token(_control_value(cells[1]))
            actual = parse_numeric_token(_control_value(cells[2]))
            if not (target > 0 and actual >= 0):
                continue
            batch.indicators.append(ProtoIndicator(
                name=_control_text(cells[0]) or f"KPI {index + 1}",
                area=area,
                target=target,
                actual=actual,
                measurement_date=measurement_date,
                responsible=responsible,
                status=derive_indicator_status(target, actual),
                observations=_control_value(cells[4]),
            ))

    # ── Risks ──
    if tables["tabla-riesgos"] is not None:
        for cells in _data_rows(tables["tabla-riesgos"]):
            if len(cells) < 6:
                continue
            name = _control_value(cells[1])
            if not name:
                continue
            impact = map_impact(_control_value(cells[3]) or "medio")
            probability = map_probability(_control_value(cells[4]) or "media")
            batch.risks.append(ProtoRisk(
                name=name,
                area=area,
                category=_control_value(cells[2]) or "operativo",
                impact=impact,
                probability=probability,
                mitigation_plan=_control_value(cells[5]),
                status=map_risk_status(impact, probability),
                responsible=responsible,
            ))

    logger.info("HTML report parsed: %s", batch.counts())
    return batch


# ═════════════════════════════════════════════════════════════════════════════
# Spreadsheet
# ═════════════════════════════════════════════════════════════════════════════

SHEET_INDICATORS = "Indicadores"
SHEET_ACTIVITIES = "Actividades"
SHEET_RISKS = "Riesgos"
SPREADSHEET_SHEETS = (SHEET_INDICATORS, SHEET_ACTIVITIES, SHEET_RISKS)


def _text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def _pick(row: dict, *headers):
    """First non-blank value among alternative header spellings."""
    for header in headers:
        value = row.get(header)
        if isinstance(value, str):
            value = value.strip()
        if value is not None and value != "":
            return value
    return None


def _sheet_rows(worksheet):
    """Yield header→value dicts for every non-blank row after the header."""
    rows = worksheet.iter_rows(values_only=True)
    header_row = next(rows, None)
    if header_row is None:
        return
    headers = [_text(h) for h in header_row]
    for values in rows:
        if all(v is None or (isinstance(v, str) and not v.strip()) for v in values):
            continue
        yield {h: v for h, v in zip(headers, values) if h}


def parse_spreadsheet(data: bytes, *, today: date | None = None) -> ImportBatch:
    """Read the three named sheets of a workbook into an ImportBatch."""
    today = today or date.today()
    try:
        workbook = load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError, ValueError) as exc:
        raise ParseError(f"No se pudo leer el libro Excel: {exc}") from exc

    try:
        present = set(workbook.sheetnames)
        missing = [s for s in SPREADSHEET_SHEETS if s not in present]
        if len(missing) == len(SPREADSHEET_SHEETS):
            raise ParseError(
                "El libro Excel no contiene ninguna de las hojas esperadas: "
                + ", ".join(missing),
                missing=missing,
            )

        batch = ImportBatch()

        if SHEET_INDICATORS in present:
            for row in _sheet_rows(workbook[SHEET_INDICATORS]):
                batch.indicators.append(ProtoIndicator(
                    name=_text(_pick(row, "Indicador", "Nombre")),
                    area=map_area(_pick(row, "Área", "Area")),
                    target=parse_numeric_token(_pick(row, "Meta", "Target")),
                    actual=parse_numeric_token(_pick(row, "Real", "Actual")),
                    measurement_date=parse_date(_pick(row, "Fecha", "Fecha de Medición")) or today,
                    responsible=_text(row.get("Responsable")),
                    status=map_indicator_status(_pick(row, "Estado", "Status")),
                    observations=_text(_pick(row, "Observaciones", "Comentarios")),
                ))

        if SHEET_ACTIVITIES in present:
            for row in _sheet_rows(workbook[SHEET_ACTIVITIES]):
                batch.activities.append(ProtoActivity(
                    name=_text(_pick(row, "Actividad", "Nombre")),
                    area=map_area(_pick(row, "Área", "Area")),
                    status=map_activity_status(_pick(row, "Estado", "Status"), default="pending"),
                    progress=clamp_progress(parse_numeric_token(_pick(row, "Progreso", "Progress"))),
                    start_date=parse_date(row.get("Fecha Inicio")) or today,
                    estimated_end_date=parse_date(row.get("Fecha Fin Estimada")) or today,
                    actual_end_date=parse_date(row.get("Fecha Fin Real")),
                    responsible=_text(row.get("Responsable")),
                    observations=_text(row.get("Observaciones")),
                    indicator_ref=_text(row.get("ID Indicador")) or None,
                ))

        if SHEET_RISKS in present:
            for row in _sheet_rows(workbook[SHEET_RISKS]):
                impact = map_impact(_pick(row, "Impacto", "Impact"))
                probability = map_probability(_pick(row, "Probabilidad", "Probability"))
                batch.risks.append(ProtoRisk(
                    name=_text(_pick(row, "Riesgo", "Nombre")),
                    area=map_area(_pick(row, "Área", "Area")),
                    category=_text(_pick(row, "Categoría", "Category")) or "operativo",
                    impact=impact,
                    probability=probability,
                    mitigation_plan=_text(_pick(row, "Plan de Mitigación", "Mitigation Plan")),
                    status=map_risk_status(impact, probability),
                    responsible=_text(row.get("Responsable")),
                ))
    except (XMLParseError, zipfile.BadZipFile, KeyError, OSError, ValueError) as exc:
        # worksheet XML is only read here, lazily, in read-only mode
        raise ParseError(f"Hoja ilegible: {exc}") from exc
    finally:
        workbook.close()

    logger.info("Spreadsheet parsed: %s (missing sheets: %s)", batch.counts(), missing or "none")
    return batch


PARSERS = {
    "HTML": parse_html_report,
    "Excel": parse_spreadsheet,
}
