"""
Integration tests for curator views, dashboard statistics and the entity catalogue.
"""
import pytest


@pytest.mark.asyncio
async def test_popular_and_gap_views(client):
    for query in ("P0171", "p0171", "xyzzy qwfq"):
        assert (await client.post("/search", json={"query": query})).status_code == 200

    popular = (await client.get("/analytics/popular")).json()["queries"]
    assert [(q["original_query"], q["search_count"]) for q in popular] == [("P0171", 2)]
    assert popular[0]["keyword_preview"] == popular[0]["translated_keywords"][:3]

    gaps = (await client.get("/analytics/gaps")).json()["queries"]
    assert [q["original_query"] for q in gaps] == ["xyzzy qwfq"]
    assert gaps[0]["has_results"] is False


@pytest.mark.asyncio
async def test_delete_search_query(client):
    await client.post("/search", json={"query": "xyzzy qwfq"})
    record_id = (await client.get("/analytics/gaps")).json()["queries"][0]["id"]

    response = await client.delete(f"/analytics/{record_id}")
    assert response.status_code == 200
    assert (await client.get("/analytics/gaps")).json()["queries"] == []

    response = await client.delete(f"/analytics/{record_id}")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_limit_is_validated(client):
    response = await client.get("/analytics/popular", params={"limit": 0})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_stats(client):
    response = await client.get("/stats")
    assert response.status_code == 200
    counts = response.json()["counts"]
    assert counts == {
        "vehicle_models": 0,
        "problems": 2,
        "symptoms": 1,
        "dtc_codes": 1,
        "sensors": 1,
        "actuators": 1,
        "parts_factors": 0,
    }


@pytest.mark.asyncio
async def test_entity_crud(client):
    response = await client.post("/entities/dtc_codes", json={
        "problem_id": "prob-brake",
        "dtc_code": "C0035",
        "dtc_description": "Left Front Wheel Speed Sensor Circuit",
        "dtc_type": "Chassis",
    })
    assert response.status_code == 201
    created = response.json()
    dtc_id = created["dtc_id"]
    assert created["dtc_code"] == "C0035"

    response = await client.get(f"/entities/dtc_codes/{dtc_id}")
    assert response.status_code == 200
    assert response.json()["dtc_type"] == "Chassis"

    response = await client.patch(f"/entities/dtc_codes/{dtc_id}", json={"obd_standard": "OBD-II"})
    assert response.status_code == 200
    assert response.json()["obd_standard"] == "OBD-II"

    rows = (await client.get("/entities/dtc_codes")).json()["rows"]
    assert {row["dtc_code"] for row in rows} == {"P0171", "C0035"}

    # Newly created records are searchable right away
    search = (await client.post("/search", json={"query": "kode C0035"})).json()
    assert [row["dtc_code"] for row in search["results"]["dtc_codes"]] == ["C0035"]

    response = await client.delete(f"/entities/dtc_codes/{dtc_id}")
    assert response.status_code == 200
    assert (await client.get(f"/entities/dtc_codes/{dtc_id}")).status_code == 404


@pytest.mark.asyncio
async def test_entity_errors(client):
    assert (await client.get("/entities/fleets")).status_code == 404
    assert (await client.get("/entities/problems/missing")).status_code == 404
    assert (await client.delete("/entities/problems/missing")).status_code == 404

    response = await client.post("/entities/problems", json={"problem_name": "x", "color": "red"})
    assert response.status_code == 422

    response = await client.patch("/entities/problems/prob-lean", json={"problem_id": "other"})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_missing_required_field(client):
    response = await client.post("/entities/problems", json={"problem_name": "Aki soak"})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_dtc_lookup(client):
    response = await client.get("/dtc/p0171")
    assert response.status_code == 200
    assert response.json()["dtc_id"] == "dtc-p0171"

    response = await client.get("/dtc/P0300")
    assert response.status_code == 404
