"""
Unit tests for the federated search executor.

Runs against the seeded SQLite knowledge base from conftest.
"""
from unittest.mock import patch

import pytest

from diagnostic_kb.services.entity_store import EntityStore
from diagnostic_kb.services.error_handler import (
    EmptyKeywordsError,
    InvalidQueryError,
    SearchExecutionError,
    error_handler,
)
from diagnostic_kb.services.search_executor import FederatedSearchExecutor


@pytest.mark.asyncio
async def test_dtc_search_hits_dtc_group(seeded_db):
    bundle = await FederatedSearchExecutor().execute(["p0171", "P0171"])

    assert [row["dtc_code"] for row in bundle.dtc_codes] == ["P0171"]
    assert bundle.has_results
    # The parent problem travels with the DTC
    assert bundle.dtc_codes[0]["problem"]["problem_id"] == "prob-lean"


@pytest.mark.asyncio
async def test_nonsense_keywords_find_nothing(seeded_db):
    bundle = await FederatedSearchExecutor().execute(["xyzzy", "qwfq"])

    assert bundle.problems == []
    assert bundle.symptoms == []
    assert bundle.dtc_codes == []
    assert bundle.sensors == []
    assert bundle.actuators == []
    assert bundle.has_results is False


@pytest.mark.asyncio
async def test_matching_is_case_insensitive_substring(seeded_db):
    bundle = await FederatedSearchExecutor().execute(["KAMPAS"])
    assert [row["problem_id"] for row in bundle.problems] == ["prob-brake"]


@pytest.mark.asyncio
async def test_any_keyword_any_field(seeded_db):
    # "dingin" only occurs in symptoms.occurrence_condition, "maf" only in a sensor name
    bundle = await FederatedSearchExecutor().execute(["dingin", "maf"])
    assert [row["symptom_id"] for row in bundle.symptoms] == ["sym-idle"]
    assert [row["sensor_id"] for row in bundle.sensors] == ["sen-maf"]
    assert bundle.problems == []


@pytest.mark.asyncio
async def test_problem_carries_children(seeded_db):
    bundle = await FederatedSearchExecutor().execute(["kurus"])

    assert len(bundle.problems) == 1
    problem = bundle.problems[0]
    assert [s["solution_id"] for s in problem["solutions"]] == ["sol-1", "sol-2"]
    assert [t["tool_name"] for t in problem["solutions"][0]["tools"]] == ["OBD2 scanner"]
    assert problem["solutions"][1]["tools"] == []
    assert [d["dtc_code"] for d in problem["dtc_codes"]] == ["P0171"]
    assert [s["symptom_id"] for s in problem["symptoms"]] == ["sym-idle"]
    assert [s["sensor_id"] for s in problem["sensors"]] == ["sen-maf"]
    assert [a["actuator_id"] for a in problem["actuators"]] == ["act-injector"]
    for child in ("parts_factors", "technical_theory", "safety_precautions", "cost_estimation"):
        assert problem[child] == []


@pytest.mark.asyncio
async def test_like_wildcards_match_literally(seeded_db):
    bundle = await FederatedSearchExecutor().execute(["%"])
    assert bundle.has_results is False


@pytest.mark.asyncio
async def test_results_are_capped(db_engine):
    store = EntityStore()
    for i in range(12):
        await store.insert("problems", {
            "problem_code": f"ENG-{i:03d}",
            "problem_name": f"Mesin overheat {i}",
            "system_category": "Cooling",
            "severity_level": "High",
        })

    bundle = await FederatedSearchExecutor().execute(["overheat"])
    assert len(bundle.problems) == 10

    bundle = await FederatedSearchExecutor(limit=3).execute(["overheat"])
    assert len(bundle.problems) == 3


@pytest.mark.asyncio
async def test_empty_keywords_are_rejected(seeded_db):
    with pytest.raises(EmptyKeywordsError):
        await FederatedSearchExecutor().execute([])


@pytest.mark.asyncio
async def test_blank_keyword_is_rejected(seeded_db):
    with pytest.raises(InvalidQueryError):
        await FederatedSearchExecutor().execute(["rem", " "])


def _failing_search_any(failing_entity):
    original = EntityStore.search_any

    async def search_any(self, conn, entity, fields, keywords, limit):
        if entity == failing_entity:
            raise RuntimeError("relation does not exist")
        return await original(self, conn, entity, fields, keywords, limit)

    return search_any


@pytest.mark.asyncio
async def test_one_failing_collection_fails_the_search(seeded_db):
    with patch.object(EntityStore, "search_any", _failing_search_any("sensors")):
        with pytest.raises(SearchExecutionError) as exc_info:
            await FederatedSearchExecutor().execute(["p0171"])

    assert exc_info.value.collection == "sensors"
    assert isinstance(exc_info.value.cause, RuntimeError)
    assert error_handler.get_error_stats()["error_types"] == {"search.search_execution": 1}


@pytest.mark.asyncio
async def test_partial_search_keeps_other_groups(seeded_db):
    with patch.object(EntityStore, "search_any", _failing_search_any("sensors")):
        bundle = await FederatedSearchExecutor().execute(["p0171"], allow_partial=True)

    assert bundle.failed_collections == ["sensors"]
    assert bundle.sensors == []
    assert [row["dtc_code"] for row in bundle.dtc_codes] == ["P0171"]
    assert bundle.has_results
