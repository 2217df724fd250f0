"""
KPI Tracker
Tests — Reconciliation Engine.

Covers:
    - apportion(): ceiling split, overflow range
    - Every indicator ends up with ≥1 activity, every activity with one owner
    - Overflow activities get their own generated indicator
    - Explicit indicator links take precedence over apportionment
    - Default activity for indicators with nothing assigned
    - Status re-derivation, risk exposure over every impact/probability pair,
      merge order, id uniqueness
    - Determinism for a fixed clock
"""

from datetime import date, datetime, timezone

import pytest

from kpi_tracker.models.dashboard import calculate_risk_exposure
from kpi_tracker.services.import_batch import (
    ImportBatch,
    ProtoActivity,
    ProtoIndicator,
    ProtoRisk,
)
from kpi_tracker.services.reconciliation import apportion, reconcile

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)
STAMP = int(NOW.timestamp() * 1000)
DAY = date(2025, 5, 31)


def _ind(name="KPI", target=100.0, actual=95.0, status="at_risk", area="systems"):
    return ProtoIndicator(name=name, area=area, target=target, actual=actual,
                          measurement_date=DAY, responsible="Eva", status=status)


def _act(name="Tarea", status="pending", progress=10, area="quality", ref=None):
    return ProtoActivity(name=name, area=area, status=status, progress=progress,
                         start_date=date(2025, 5, 1), estimated_end_date=date(2025, 6, 30),
                         responsible="Eva", indicator_ref=ref)


def _all_ids(dataset):
    ids = []
    for indicator in dataset["indicators"]:
        ids.append(indicator["id"])
        ids.extend(a["id"] for a in indicator["activities"])
    ids.extend(r["id"] for r in dataset["risks"])
    return ids


class TestApportion:
    def test_ceiling_split(self):
        chunks, overflow = apportion(5, 2)
        assert [list(c) for c in chunks] == [[0, 1, 2], [3, 4]]
        assert list(overflow) == []

    def test_more_indicators_than_activities(self):
        chunks, overflow = apportion(2, 3)
        assert [len(c) for c in chunks] == [1, 1, 0]
        assert list(overflow) == []

    def test_no_indicators_everything_overflows(self):
        chunks, overflow = apportion(3, 0)
        assert chunks == []
        assert list(overflow) == [0, 1, 2]


class TestReconcile:
    def test_two_indicators_five_activities(self):
        batch = ImportBatch([_ind("A"), _ind("B")], [_act(f"t{i}") for i in range(5)])
        result = reconcile(batch, {"indicators": [], "risks": []}, now=NOW)

        first, second = result.new_indicators
        assert [a["name"] for a in first["activities"]] == ["t0", "t1", "t2"]
        assert [a["name"] for a in second["activities"]] == ["t3", "t4"]
        assert first["id"] == f"ind-{STAMP}-0"
        assert first["activities"][0]["id"] == f"act-ind-{STAMP}-0-0"
        # activities inherit their owner's area
        assert {a["area"] for a in first["activities"]} == {"systems"}
        assert result.counts == {"indicators": 2, "activities": 5, "risks": 0}

    def test_activities_without_indicators_get_generated_owners(self):
        batch = ImportBatch(activities=[
            _act("hecha", status="completed", progress=100),
            _act("en curso", status="in_progress", progress=40),
            _act("parada", status="suspended", progress=5),
        ])
        result = reconcile(batch, {"indicators": [], "risks": []}, now=NOW)

        assert len(result.new_indicators) == 3
        statuses = [i["status"] for i in result.new_indicators]
        assert statuses == ["achieved", "at_risk", "critical"]
        generated = result.new_indicators[1]
        assert generated["id"] == f"ind-activity-{STAMP}-1"
        assert generated["name"] == "Indicador para: en curso"
        assert generated["target"] == 100.0 and generated["actual"] == 40.0
        assert generated["area"] == "quality"
        assert [a["name"] for a in generated["activities"]] == ["en curso"]

    def test_indicator_without_activities_gets_default(self):
        batch = ImportBatch(indicators=[_ind("Solo")])
        result = reconcile(batch, {"indicators": [], "risks": []}, now=NOW)

        (activity,) = result.new_indicators[0]["activities"]
        assert activity["id"] == f"act-default-ind-{STAMP}-0"
        assert activity["status"] == "in_progress"
        assert activity["progress"] == 50
        assert activity["start_date"] == "2025-05-31"
        assert activity["estimated_end_date"] == "2025-08-29"

    def test_explicit_links_win(self):
        batch = ImportBatch(
            [_ind("Uptime"), _ind("Defectos")],
            [_act("por fila", ref="2"), _act("por nombre", ref="uptime"), _act("libre")],
        )
        result = reconcile(batch, {"indicators": [], "risks": []}, now=NOW)

        uptime, defectos = result.new_indicators
        assert [a["name"] for a in uptime["activities"]] == ["por nombre", "libre"]
        assert [a["name"] for a in defectos["activities"]] == ["por fila"]

    def test_unresolvable_link_falls_back_to_apportionment(self):
        batch = ImportBatch([_ind("A")], [_act("x", ref="99")])
        result = reconcile(batch, {"indicators": [], "risks": []}, now=NOW)
        assert [a["name"] for a in result.new_indicators[0]["activities"]] == ["x"]

    def test_status_is_rederived_except_in_progress(self):
        batch = ImportBatch([
            _ind("a", target=100, actual=95, status="critical"),
            _ind("b", target=100, actual=50, status="in_progress"),
        ])
        result = reconcile(batch, {"indicators": [], "risks": []}, now=NOW)
        assert [i["status"] for i in result.new_indicators] == ["achieved", "in_progress"]

    def test_risks_get_exposure(self):
        batch = ImportBatch(risks=[ProtoRisk(name="r", area="projects", impact="alto", probability="media",
                                             responsible="Eva")])
        result = reconcile(batch, {"indicators": [], "risks": []}, import_batch_id="e-1", now=NOW)
        (risk,) = result.new_risks
        assert risk["id"] == f"risk-{STAMP}-0"
        assert risk["exposure"] == 6
        assert risk["import_batch_id"] == "e-1"
        assert result.affected_areas == ["projects"]

    @pytest.mark.parametrize("impact, probability, expected", [
        ("bajo", "baja", 1), ("bajo", "media", 2), ("bajo", "alta", 3),
        ("medio", "baja", 2), ("medio", "media", 4), ("medio", "alta", 6),
        ("alto", "baja", 3), ("alto", "media", 6), ("alto", "alta", 9),
    ])
    def test_exposure_is_weight_product(self, impact, probability, expected):
        assert calculate_risk_exposure(impact, probability) == expected
        batch = ImportBatch(risks=[ProtoRisk(name="r", area="projects", impact=impact,
                                             probability=probability, responsible="Eva")])
        (risk,) = reconcile(batch, {"indicators": [], "risks": []}, now=NOW).new_risks
        assert risk["exposure"] == expected
        assert 1 <= risk["exposure"] <= 9

    def test_merge_appends_after_existing_records(self):
        existing = {
            "indicators": [{"id": "ind-old", "area": "quality", "activities": [{"id": "act-old"}]}],
            "risks": [{"id": "risk-old", "area": "quality"}],
        }
        batch = ImportBatch([_ind("nuevo")], [_act()], [ProtoRisk(name="r", area="systems", responsible="Eva")])
        result = reconcile(batch, existing, import_batch_id="e-9", now=NOW)

        assert [i["id"] for i in result.dataset["indicators"]] == ["ind-old", f"ind-{STAMP}-0"]
        assert [r["id"] for r in result.dataset["risks"]] == ["risk-old", f"risk-{STAMP}-0"]
        assert result.dataset["indicators"][1]["import_batch_id"] == "e-9"
        assert existing["indicators"] == [{"id": "ind-old", "area": "quality", "activities": [{"id": "act-old"}]}]

    def test_ids_never_collide_with_existing(self):
        existing = {"indicators": [{"id": f"ind-{STAMP}-0", "area": "quality", "activities": []}], "risks": []}
        result = reconcile(ImportBatch([_ind()]), existing, now=NOW)
        assert result.new_indicators[0]["id"] == f"ind-{STAMP}-0-2"
        ids = _all_ids(result.dataset)
        assert len(ids) == len(set(ids))

    def test_every_activity_has_exactly_one_owner(self):
        batch = ImportBatch([_ind("A"), _ind("B"), _ind("C")], [_act(f"t{i}") for i in range(7)])
        result = reconcile(batch, {"indicators": [], "risks": []}, now=NOW)
        names = [a["name"] for i in result.new_indicators for a in i["activities"]]
        assert sorted(names) == sorted(f"t{i}" for i in range(7))
        assert all(i["activities"] for i in result.new_indicators)
        for indicator in result.new_indicators:
            assert {a["indicator_id"] for a in indicator["activities"]} == {indicator["id"]}

    def test_deterministic_for_fixed_clock(self):
        batch = ImportBatch([_ind("A")], [_act("x"), _act("y")], [ProtoRisk(name="r", area="systems")])
        empty = {"indicators": [], "risks": []}
        assert reconcile(batch, empty, now=NOW).dataset == reconcile(batch, empty, now=NOW).dataset
