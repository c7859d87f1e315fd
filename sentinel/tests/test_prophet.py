"""Tests for the prophet (forecast) agent."""

import asyncio
import json

import pytest

from agents.llm import ModelChain, ModelChainExhaustedError, ModelUnavailableError
from agents.prophet import ProphetAgent, parse_indices, parse_prophet_nodes
from conftest import FakeCompleter, make_news


def agent(llm) -> ProphetAgent:
    return ProphetAgent(llm, ModelChain("gpt-4o-mini", None, ()), ModelChain("gpt-4o", None, ()))


def batch(count: int = 5):
    return [make_news(title=f"Item {n}", link=f"https://x/{n}") for n in range(count)]


class TestParseIndices:

    def test_one_based_and_filtered(self):
        result = parse_indices('{"indices": [2, 2, 9, 0, "x", 1.5, 4]}', 5)
        assert result.value == [1, 3]

    def test_bare_array(self):
        assert parse_indices("[1, 3]", 5).value == [0, 2]

    def test_missing_key(self):
        assert not parse_indices('{"picks": [1]}', 5).ok


class TestSelectCandidates:

    def test_empty_batch_no_call(self):
        llm = FakeCompleter('{"indices": [1]}')
        assert asyncio.run(agent(llm).select_candidates([])) == []
        assert llm.calls == []

    def test_selected_items(self):
        items = batch()
        picked = asyncio.run(agent(FakeCompleter('{"indices": [5, 1]}')).select_candidates(items))
        assert picked == [items[4], items[0]]

    def test_failure_falls_back_to_first_three(self):
        items = batch()
        picked = asyncio.run(agent(FakeCompleter(ModelUnavailableError("down"))).select_candidates(items))
        assert picked == items[:3]

    def test_parse_failure_falls_back_to_first_three(self):
        items = batch()
        picked = asyncio.run(agent(FakeCompleter("no json")).select_candidates(items))
        assert picked == items[:3]


class TestPredict:

    def test_nodes(self):
        payload = {"prophetNodes": [{
            "title": "Port blockade risk", "coordinates": [12.6, 43.3], "confidence": 140,
            "probabilityAnalysis": "Rising tension", "leadingIndicators": ["naval drills"],
            "sourceLinks": ["https://x/1"],
        }]}
        nodes = asyncio.run(agent(FakeCompleter(json.dumps(payload))).predict(batch(2), "2024-05-02"))
        assert len(nodes) == 1
        node = nodes[0]
        assert node.confidence == 100
        assert node.coordinates == (12.6, 43.3)
        assert node.timestamp == "2024-05-02T00:00:00Z"
        assert node.id == ""

    def test_non_numeric_confidence_defaults(self):
        text = json.dumps({"prophetNodes": [{"title": "t", "coordinates": [1, 2], "confidence": "high"}]})
        assert parse_prophet_nodes(text, "2024-05-02").value[0].confidence == 50

    def test_parse_failure_is_empty(self):
        assert asyncio.run(agent(FakeCompleter("nothing useful")).predict(batch(2), "2024-05-02")) == []

    def test_provider_failure_propagates(self):
        with pytest.raises(ModelChainExhaustedError):
            asyncio.run(agent(FakeCompleter(ModelUnavailableError("down"))).predict(batch(1), "2024-05-02"))
