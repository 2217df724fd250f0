"""
KPI Tracker
Import Validator — structural completeness checks on an ImportBatch.

Collects every defect (not fail-fast) so the user can fix the source file
in one pass. Never mutates the batch. Messages use 1-based record numbers:

    Indicador 1: Meta debe ser mayor a 0
    Actividad 3: Responsable requerido
"""

from __future__ import annotations

from dataclasses import dataclass, field

from kpi_tracker.services.import_batch import ImportBatch


@dataclass
class ValidationResult:
    is_valid: bool
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"is_valid": self.is_valid, "errors": list(self.errors)}


def _blank(value) -> bool:
    return value is None or not str(value).strip()


def _required(label: str, n: int, record, errors: list[str]) -> None:
    if _blank(record.name):
        errors.append(f"{label} {n}: Nombre requerido")
    if _blank(record.area):
        errors.append(f"{label} {n}: Área requerida")


def validate_batch(batch: ImportBatch) -> ValidationResult:
    errors: list[str] = []

    for n, indicator in enumerate(batch.indicators, start=1):
        _required("Indicador", n, indicator, errors)
        try:
            target_ok = float(indicator.target) > 0
        except (TypeError, ValueError):
            target_ok = False
        if not target_ok:
            errors.append(f"Indicador {n}: Meta debe ser mayor a 0")
        if _blank(indicator.responsible):
            errors.append(f"Indicador {n}: Responsable requerido")

    for n, activity in enumerate(batch.activities, start=1):
        _required("Actividad", n, activity, errors)
        if _blank(activity.responsible):
            errors.append(f"Actividad {n}: Responsable requerido")

    for n, risk in enumerate(batch.risks, start=1):
        _required("Riesgo", n, risk, errors)
        if _blank(risk.responsible):
            errors.append(f"Riesgo {n}: Responsable requerido")

    return ValidationResult(is_valid=not errors, errors=errors)
