"""Tests for the canonical event store."""

from datetime import datetime, timezone

import pytest

from agents.reasoning import default_analysis
from backend.models import Actors, Category, ProphetNode, ThreatLevel
from conftest import make_sitrep
from fusion_engine.store import IntelligenceStore, filter_for_display

NOW = datetime(2025, 1, 1, tzinfo=timezone.utc)


class TestMerge:

    def test_merge_prepends(self):
        store = IntelligenceStore()
        store.set_initial_sitreps([make_sitrep(id="OLD", coordinates=(1.0, 1.0))])
        store.merge_sitreps([make_sitrep(id="NEW", coordinates=(2.0, 2.0))])
        assert [s.id for s in store.sitreps] == ["NEW", "OLD"]

    def test_merge_twice_is_idempotent(self):
        batch = [
            make_sitrep(id="A", coordinates=(1.0, 1.0)),
            make_sitrep(id="B", coordinates=(2.0, 2.0)),
        ]
        store = IntelligenceStore()
        store.merge_sitreps(batch)
        first = [s.id for s in store.sitreps]
        store.merge_sitreps(batch)
        assert [s.id for s in store.sitreps] == first

    def test_incoming_wins_coordinate_collision(self):
        store = IntelligenceStore()
        store.set_initial_sitreps([make_sitrep(id="OLD", coordinates=(1.0, 1.0))])
        survivors = store.merge_sitreps([make_sitrep(id="NEW", coordinates=(1.0004, 1.0))])
        assert [s.id for s in store.sitreps] == ["NEW"]
        assert [s.id for s in survivors] == ["NEW"]

    def test_forecast_does_not_suppress_confirmed(self):
        store = IntelligenceStore()
        store.merge_sitreps([make_sitrep(id="C", coordinates=(7.0, 7.0))])
        store.merge_sitreps([make_sitrep(id="P", coordinates=(7.0, 7.0), is_prophet_node=True)])
        assert {s.id for s in store.sitreps} == {"C", "P"}

    def test_repeated_id_keeps_one_record(self):
        store = IntelligenceStore()
        store.merge_sitreps([make_sitrep(id="1", coordinates=(12.6, 43.3), is_prophet_node=True)])
        store.merge_sitreps([make_sitrep(id="1", coordinates=(40.0, 44.0), is_prophet_node=True)])
        assert [s.coordinates for s in store.sitreps if s.id == "1"] == [(40.0, 44.0)]

    def test_set_prophet_nodes_replaces(self):
        store = IntelligenceStore()
        node = ProphetNode(id="PR-1", title="T", coordinates=(1, 1), timestamp="2024-01-01T00:00:00Z",
                           probability_analysis="p", confidence=50)
        store.set_prophet_nodes([node, node])
        store.set_prophet_nodes([node])
        assert len(store.prophet_nodes) == 1


class TestPutAnalysis:

    @pytest.mark.parametrize("risk, level", [
        (90, ThreatLevel.CRITICAL),
        (70, ThreatLevel.HIGH),
        (40, ThreatLevel.MEDIUM),
        (10, ThreatLevel.LOW),
        (85, ThreatLevel.CRITICAL),
        (84, ThreatLevel.HIGH),
        (60, ThreatLevel.HIGH),
        (59, ThreatLevel.MEDIUM),
        (30, ThreatLevel.MEDIUM),
        (29, ThreatLevel.LOW),
    ])
    def test_threat_level_from_risk(self, risk, level):
        store = IntelligenceStore()
        store.set_initial_sitreps([make_sitrep(id="A")])
        store.put_analysis("A", default_analysis().model_copy(update={"risk_score": risk}))
        sitrep = store.get_sitrep("A")
        assert sitrep.risk_score == risk
        assert sitrep.threat_level == level

    def test_actors_unioned_into_orgs(self):
        store = IntelligenceStore()
        store.set_initial_sitreps([make_sitrep(id="A")])
        analysis = default_analysis().model_copy(update={
            "actors": Actors(state=["Army", "OSINT Source"], non_state=["Militia"]),
        })
        store.put_analysis("A", analysis)
        assert store.get_sitrep("A").entities.orgs == ["OSINT Source", "Army", "Militia"]

    def test_unknown_id_still_caches(self):
        store = IntelligenceStore()
        store.put_analysis("missing", default_analysis())
        assert store.get_analysis("missing") is not None
        assert store.sitreps == []


class TestDisplayFilter:

    def test_filters_by_category_and_date(self):
        sitreps = [
            make_sitrep(id="OLD", coordinates=(1.0, 1.0), timestamp="2021-01-01T00:00:00Z"),
            make_sitrep(id="FUTURE", coordinates=(2.0, 2.0), timestamp="2030-01-01T00:00:00Z"),
            make_sitrep(id="CYBER", coordinates=(3.0, 3.0), category="CYBER"),
        ]
        visible = filter_for_display(sitreps, {Category.CONFLICT}, NOW)
        assert [s.id for s in visible] == ["OLD"]

    def test_unparseable_timestamp_hidden(self):
        sitreps = [make_sitrep(id="BAD", timestamp="recently")]
        assert filter_for_display(sitreps, set(Category), NOW) == []

    def test_visible_sitreps_uses_position(self):
        store = IntelligenceStore()
        store.set_initial_sitreps([make_sitrep(id="A", timestamp="2024-06-01T00:00:00Z")])
        assert store.visible_sitreps(now=NOW) != []
        assert store.visible_sitreps(position=0, now=NOW) == []
        assert len(store.sitreps) == 1

    def test_status_counts(self):
        store = IntelligenceStore()
        store.set_initial_sitreps([
            make_sitrep(id="A", coordinates=(1.0, 1.0)),
            make_sitrep(id="P", coordinates=(2.0, 2.0), is_prophet_node=True),
        ])
        status = store.status()
        assert status["sitrepCount"] == 2
        assert status["prophetSitrepCount"] == 1
        assert status["isSearching"] is False
