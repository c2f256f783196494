import uuid

import pytest
from httpx import AsyncClient

from app.models.meter import Meter, MeterKind
from app.models.property import Building, Unit
from app.core.errors import PersistenceFailure
from app.services.store import SqlAlchemyStore

API = "/api/v1"


async def _post_reading(client: AsyncClient, meter_id, reading_date, value):
	response = await client.post(
		f"{API}/meters/{meter_id}/readings",
		json={"reading_value": value, "reading_date": reading_date},
	)
	assert response.status_code == 201, response.text
	return response.json()


SWAP_ERAS = [
	{
		"label": "Meter 1 (2023-06-01 to 2023-12-01)",
		"readings": [{"date": "2023-06-01", "value": 4000}, {"date": "2023-12-01", "value": 4100}],
	},
	{
		"label": "Meter 2 (2024-01-01 to 2024-02-01)",
		"swap_note": "Zählerwechsel",
		"readings": [{"date": "2024-01-01", "value": 238}, {"date": "2024-02-01", "value": 310}],
	},
]


async def test_create_building_and_unit(client: AsyncClient):
	response = await client.post(f"{API}/buildings/", json={"name": "Hauptstraße 5", "city": "Leipzig"})
	assert response.status_code == 201
	building = response.json()
	assert building["country"] == "DE"

	response = await client.post(f"{API}/buildings/{building['id']}/units", json={"unit_number": "EG rechts", "floor": 0})
	assert response.status_code == 201
	assert response.json()["building_id"] == building["id"]

	response = await client.get(f"{API}/buildings/{building['id']}/units")
	assert [u["unit_number"] for u in response.json()] == ["EG rechts"]


async def test_unknown_building(client: AsyncClient):
	response = await client.get(f"{API}/buildings/{uuid.uuid4()}")
	assert response.status_code == 404
	assert response.json()["error"] == "NotFound"


async def test_create_meter(client: AsyncClient, unit: Unit):
	"""Test creating a meter on a unit"""
	response = await client.post(
		f"{API}/meters/",
		json={"unit_id": str(unit.id), "meter_number": " W-100 ", "meter_kind": "water_cold"},
	)
	assert response.status_code == 201
	data = response.json()
	assert data["meter_number"] == "W-100"
	assert data["meter_kind"] == "water_cold"
	assert data["replaced_by_id"] is None
	assert data["lineage_position"] == 0


async def test_create_building_meter(client: AsyncClient, building: Building):
	response = await client.post(
		f"{API}/meters/",
		json={"building_id": str(building.id), "meter_number": "H-1", "meter_kind": "heating"},
	)
	assert response.status_code == 201
	assert response.json()["unit_id"] is None


@pytest.mark.parametrize("payload", [
	{"meter_kind": "gas"},
	{"meter_number": "", "meter_kind": "gas"},
])
async def test_create_meter_without_number(client: AsyncClient, unit: Unit, payload):
	response = await client.post(f"{API}/meters/", json={"unit_id": str(unit.id), **payload})
	assert response.status_code == 400
	assert response.json()["error"] == "MissingRequiredField"


async def test_create_meter_needs_one_owner(client: AsyncClient, unit: Unit, building: Building):
	response = await client.post(f"{API}/meters/", json={"meter_number": "X", "meter_kind": "gas"})
	assert response.status_code == 400

	response = await client.post(
		f"{API}/meters/",
		json={"unit_id": str(unit.id), "building_id": str(building.id), "meter_number": "X", "meter_kind": "gas"},
	)
	assert response.status_code == 400


async def test_create_meter_on_unknown_unit(client: AsyncClient):
	response = await client.post(
		f"{API}/meters/",
		json={"unit_id": str(uuid.uuid4()), "meter_number": "X", "meter_kind": "gas"},
	)
	assert response.status_code == 404


async def test_list_meters_requires_filter(client: AsyncClient):
	response = await client.get(f"{API}/meters/")
	assert response.status_code == 400


async def test_list_meters_with_last_reading(client: AsyncClient, unit: Unit, meter: Meter):
	"""Summary carries the newest reading and its delta"""
	await _post_reading(client, meter.id, "2024-01-01", 1000)
	await _post_reading(client, meter.id, "2024-02-01", 1150.5)

	response = await client.get(f"{API}/meters/", params={"unit_id": str(unit.id)})
	assert response.status_code == 200
	data = response.json()
	assert data["total"] == 1
	summary = data["data"][0]
	assert summary["meter_number"] == "E-4711"
	assert summary["unit"] == "kWh"
	assert summary["last_reading"]["reading_date"] == "2024-02-01"
	assert summary["consumption"] == pytest.approx(150.5)
	assert summary["show_consumption"] is True


async def test_list_meters_hides_negative_consumption(client: AsyncClient, unit: Unit, meter: Meter):
	await _post_reading(client, meter.id, "2024-01-01", 1000)
	await _post_reading(client, meter.id, "2024-02-01", 900)

	summary = (await client.get(f"{API}/meters/", params={"unit_id": str(unit.id)})).json()["data"][0]
	assert summary["consumption"] == pytest.approx(-100)
	assert summary["show_consumption"] is False


async def test_get_meter_detail(client: AsyncClient, meter: Meter):
	await _post_reading(client, meter.id, "2024-01-01", 1000)
	await _post_reading(client, meter.id, "2024-03-01", 1200)

	response = await client.get(f"{API}/meters/{meter.id}")
	assert response.status_code == 200
	data = response.json()
	assert [r["reading_date"] for r in data["readings"]] == ["2024-03-01", "2024-01-01"]
	assert [c["consumption"] for c in data["consumption"]] == [200, None]


async def test_delete_meter_removes_readings(client: AsyncClient, meter: Meter):
	reading = (await _post_reading(client, meter.id, "2024-01-01", 1000))["reading"]

	response = await client.delete(f"{API}/meters/{meter.id}")
	assert response.status_code == 204

	assert (await client.get(f"{API}/meters/{meter.id}")).status_code == 404
	assert (await client.delete(f"{API}/readings/{reading['id']}")).status_code == 404


async def test_swap_chain(client: AsyncClient, unit: Unit):
	"""Two eras become two linked meters with their own readings"""
	response = await client.post(
		f"{API}/meters/swap-chain",
		json={
			"unit_id": str(unit.id),
			"meter_kind": "electricity",
			"current_meter_number": "1ESY1160",
			"eras": SWAP_ERAS,
		},
	)
	assert response.status_code == 201, response.text
	data = response.json()
	old, new = [era["meter"] for era in data["eras"]]

	assert old["meter_number"] == "1ESY1160-1"
	assert new["meter_number"] == "1ESY1160"
	assert old["replaced_by_id"] == new["id"]
	assert data["current_meter_id"] == new["id"]
	assert old["lineage_id"] == new["lineage_id"] == data["lineage_id"]
	assert [era["imported"] for era in data["eras"]] == [2, 2]
	assert data["message"] == "2 meters chained: 4 imported, 0 overwritten, 0 skipped"

	readings = (await client.get(f"{API}/meters/{new['id']}/readings")).json()
	assert [r["source"] for r in readings["data"]] == ["ocr", "ocr"]

	listed = (await client.get(f"{API}/meters/", params={"unit_id": str(unit.id)})).json()
	assert [m["meter_number"] for m in listed["data"]] == ["1ESY1160-1", "1ESY1160"]


async def test_swap_chain_needs_current_number(client: AsyncClient, unit: Unit):
	response = await client.post(
		f"{API}/meters/swap-chain",
		json={"unit_id": str(unit.id), "meter_kind": "electricity", "current_meter_number": " ", "eras": SWAP_ERAS},
	)
	assert response.status_code == 400
	assert response.json()["error"] == "MissingRequiredField"


async def test_lineage_consumption_spans_the_swap(client: AsyncClient, unit: Unit):
	data = (await client.post(
		f"{API}/meters/swap-chain",
		json={"unit_id": str(unit.id), "meter_kind": "electricity", "current_meter_number": "Z9", "eras": SWAP_ERAS},
	)).json()
	old_id = data["eras"][0]["meter"]["id"]

	response = await client.get(f"{API}/meters/{old_id}/lineage")
	assert response.status_code == 200
	lineage = response.json()
	assert [m["meter_number"] for m in lineage["meters"]] == ["Z9-1", "Z9"]
	assert lineage["current_meter_id"] == data["current_meter_id"]

	entries = lineage["consumption"]
	assert [e["reading_value"] for e in entries] == [310, 238, 4100, 4000]
	assert [e["consumption"] for e in entries] == [72, -3862, 100, None]
	# the boundary pair is computed but never displayed
	assert [e["display"] for e in entries] == [True, False, True, False]


async def test_link_successor_and_repair(client: AsyncClient, db_session, unit: Unit, meter: Meter):
	successor = Meter(unit_id=unit.id, meter_number="E-4712", meter_kind=meter.meter_kind)
	db_session.add(successor)
	await db_session.flush()

	response = await client.post(f"{API}/meters/{meter.id}/successor", json={"successor_id": str(successor.id)})
	assert response.status_code == 200
	assert response.json()["replaced_by_id"] == str(successor.id)

	# already linked: repair is a no-op
	response = await client.post(f"{API}/meters/repair-chain", json={"meter_ids": [str(meter.id), str(successor.id)]})
	assert response.status_code == 200
	assert [m["lineage_position"] for m in response.json()] == [0, 1]

	response = await client.post(f"{API}/meters/{successor.id}/successor", json={"successor_id": str(meter.id)})
	assert response.status_code == 422
	assert response.json()["error"] == "InvalidValue"


async def test_link_successor_rejects_other_kind(client: AsyncClient, db_session, unit: Unit, meter: Meter):
	gas = Meter(unit_id=unit.id, meter_number="G-1", meter_kind=MeterKind.GAS)
	db_session.add(gas)
	await db_session.flush()

	response = await client.post(f"{API}/meters/{meter.id}/successor", json={"successor_id": str(gas.id)})
	assert response.status_code == 422


async def test_repair_chain_unknown_meter(client: AsyncClient, meter: Meter):
	response = await client.post(f"{API}/meters/repair-chain", json={"meter_ids": [str(meter.id), str(uuid.uuid4())]})
	assert response.status_code == 404


async def test_link_onto_head_of_existing_chain(client: AsyncClient, db_session, unit: Unit, meter: Meter):
	"""Linking A to B, where B already heads B -> C, puts all three in one lineage"""
	b = Meter(unit_id=unit.id, meter_number="E-B", meter_kind=meter.meter_kind)
	c = Meter(unit_id=unit.id, meter_number="E-C", meter_kind=meter.meter_kind)
	db_session.add_all([b, c])
	await db_session.flush()

	assert (await client.post(f"{API}/meters/{b.id}/successor", json={"successor_id": str(c.id)})).status_code == 200
	assert (await client.post(f"{API}/meters/{meter.id}/successor", json={"successor_id": str(b.id)})).status_code == 200

	lineage = (await client.get(f"{API}/meters/{c.id}/lineage")).json()
	assert [m["meter_number"] for m in lineage["meters"]] == ["E-4711", "E-B", "E-C"]
	assert {m["lineage_id"] for m in lineage["meters"]} == {str(meter.lineage_id)}
	assert [m["lineage_position"] for m in lineage["meters"]] == [0, 1, 2]

	listed = (await client.get(f"{API}/meters/", params={"unit_id": str(unit.id)})).json()
	assert [m["meter_number"] for m in listed["data"]] == ["E-4711", "E-B", "E-C"]


async def test_swap_chain_rejects_eras_newest_first(client: AsyncClient, unit: Unit):
	response = await client.post(
		f"{API}/meters/swap-chain",
		json={
			"unit_id": str(unit.id),
			"meter_kind": "electricity",
			"current_meter_number": "Z9",
			"eras": list(reversed(SWAP_ERAS)),
		},
	)
	assert response.status_code == 422
	assert response.json()["error"] == "InvalidValue"

	listed = (await client.get(f"{API}/meters/", params={"unit_id": str(unit.id)})).json()
	assert listed["total"] == 0


async def test_swap_chain_link_failure_saves_nothing(client: AsyncClient, unit: Unit, monkeypatch):
	async def fail_link(self, meter_id, successor_id):
		raise PersistenceFailure("link failed")

	monkeypatch.setattr(SqlAlchemyStore, "link_successor", fail_link)

	response = await client.post(
		f"{API}/meters/swap-chain",
		json={"unit_id": str(unit.id), "meter_kind": "electricity", "current_meter_number": "Z9", "eras": SWAP_ERAS},
	)
	assert response.status_code == 409
	data = response.json()
	assert data["error"] == "PartialChainFailure"
	assert data["rolled_back"] is True
	assert "meter_ids" not in data
	assert "nothing was saved" in data["detail"]

	listed = (await client.get(f"{API}/meters/", params={"unit_id": str(unit.id)})).json()
	assert listed["total"] == 0
