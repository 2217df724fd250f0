"""
Shared pytest fixtures for the KPI Tracker test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - auth_headers: factory → {"Authorization": "Bearer <jwt>"} for a role
    - admin_headers / analyst_headers / consultant_headers: ready-made headers
"""

import pytest

from kpi_tracker import create_app
from kpi_tracker.models import db as _db
from kpi_tracker.services.jwt_service import generate_access_token


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Auth fixtures ────────────────────────────────────────────────────────


@pytest.fixture()
def auth_headers(app):
    """Build bearer headers for an arbitrary actor."""
    def _make(role="admin", *, actor_id="u-1", name="Ana Pérez", area=None):
        with app.app_context():
            token = generate_access_token(actor_id, name, role, area)
        return {"Authorization": f"Bearer {token}"}
    return _make


@pytest.fixture()
def admin_headers(auth_headers):
    return auth_headers("admin", actor_id="admin-1", name="Admin")


@pytest.fixture()
def analyst_headers(auth_headers):
    return auth_headers("analyst", actor_id="an-1", name="Luis Analista")


@pytest.fixture()
def consultant_headers(auth_headers):
    return auth_headers("consultant", actor_id="c-1", name="Carla Consultora")


# ── Report builders ──────────────────────────────────────────────────────

def _activity_row(n, name, start="2025-05-01", end="2025-06-30", status="completada", progress="100"):
    return (
        f"<tr><td>{n}</td>"
        f'<td><input type="text" value="{name}"></td>'
        f'<td><input type="date" value="{start}"></td>'
        f'<td><input type="date" value="{end}"></td>'
        f'<td><select><option value="pendiente">Pendiente</option>'
        f'<option value="{status}" selected>{status}</option></select></td>'
        f'<td><input type="number" value="{progress}"></td></tr>'
    )


def _kpi_row(name, target, actual, observations=""):
    return (
        f"<tr><td><select><option value='k1' selected>{name}</option></select></td>"
        f'<td><input value="{target}"></td>'
        f'<td><input value="{actual}"></td>'
        f"<td>%</td>"
        f"<td><textarea>{observations}</textarea></td></tr>"
    )


def _risk_row(n, name, category="técnico", impact="alto", probability="alta", plan="Plan B"):
    return (
        f"<tr><td>{n}</td>"
        f'<td><input value="{name}"></td>'
        f'<td><input value="{category}"></td>'
        f'<td><select><option value="{impact}" selected>{impact}</option></select></td>'
        f'<td><select><option value="{probability}" selected>{probability}</option></select></td>'
        f"<td><textarea>{plan}</textarea></td></tr>"
    )


def build_html_report(
    *,
    area="infraestructura",
    responsible="María López",
    period="Mayo 2025",
    report_date="2025-05-31",
    activities=(("Migrar servidores",),),
    kpis=(("Disponibilidad", "99", "98"),),
    risks=(("Caída del proveedor",),),
):
    """Monthly report form with one row per tuple (extra tuple items → row kwargs)."""
    activity_rows = "".join(_activity_row(i + 1, *a) for i, a in enumerate(activities))
    kpi_rows = "".join(_kpi_row(*k) for k in kpis)
    risk_rows = "".join(_risk_row(i + 1, *r) for i, r in enumerate(risks))
    html = f"""
    <html><body>
      <select id="area"><option value="calidad-funcional">Calidad</option>
        <option value="{area}" selected>{area}</option></select>
      <input id="responsable" value="{responsible}">
      <input id="periodo" value="{period}">
      <input id="fecha-reporte" type="date" value="{report_date}">
      <table id="tabla-actividades"><thead><tr><th>#</th><th>Actividad</th></tr></thead>
        <tbody>{activity_rows}</tbody></table>
      <table id="tabla-kpis"><tbody>{kpi_rows}</tbody></table>
      <table id="tabla-riesgos"><tbody>{risk_rows}</tbody></table>
    </body></html>
    """
    return html.encode("utf-8")


def build_workbook(sheets):
    """{"Indicadores": [header, row, ...], ...} → .xlsx bytes."""
    from io import BytesIO

    from openpyxl import Workbook

    wb = Workbook()
    wb.remove(wb.active)
    for title, rows in sheets.items():
        ws = wb.create_sheet(title)
        for row in rows:
            ws.append(list(row))
    buf = BytesIO()
    wb.save(buf)
    return buf.getvalue()


def truncate_worksheet(data, member="xl/worksheets/sheet1.xml"):
    """Rewrite an .xlsx with one worksheet part cut in half (unclosed XML)."""
    import zipfile
    from io import BytesIO

    src = zipfile.ZipFile(BytesIO(data))
    buf = BytesIO()
    with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as dst:
        for item in src.infolist():
            content = src.read(item.filename)
            if item.filename == member:
                content = content[: len(content) // 2]
            dst.writestr(item, content)
    return buf.getvalue()


INDICATOR_HEADER = ["Indicador", "Área", "Meta", "Real", "Fecha", "Responsable", "Estado", "Observaciones"]
ACTIVITY_HEADER = [
    "Actividad", "Área", "Estado", "Progreso", "Fecha Inicio", "Fecha Fin Estimada",
    "Fecha Fin Real", "Responsable", "Observaciones", "ID Indicador",
]
RISK_HEADER = ["Riesgo", "Área", "Categoría", "Impacto", "Probabilidad", "Plan de Mitigación", "Responsable"]


def sample_workbook(indicators=None, activities=None, risks=None):
    """A valid two-indicator workbook unless rows are overridden."""
    if indicators is None:
        indicators = [
            ["Disponibilidad", "Infraestructura", 99, 97, "2025-05-31", "Ana", "Cumplido", ""],
            ["Defectos", "Calidad Funcional", 10, 7, "2025-05-31", "Luis", "", "bajo umbral"],
        ]
    if activities is None:
        activities = [
            ["Migrar servidores", "Infraestructura", "En curso", 40, "2025-05-01", "2025-06-30", None, "Ana", "", None],
        ]
    if risks is None:
        risks = [
            ["Proveedor", "Infraestructura", "externo", "Alto", "Media", "Contrato alterno", "Ana"],
        ]
    return build_workbook({
        "Indicadores": [INDICATOR_HEADER, *indicators],
        "Actividades": [ACTIVITY_HEADER, *activities],
        "Riesgos": [RISK_HEADER, *risks],
    })


@pytest.fixture()
def html_report():
    return build_html_report


@pytest.fixture()
def xlsx_report():
    return sample_workbook


@pytest.fixture()
def workbook_bytes():
    return build_workbook
