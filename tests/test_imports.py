import uuid

import pytest
from httpx import AsyncClient

from app.config import settings
from app.models.meter import Meter

API = "/api/v1"

CSV = "Datum;Zählerstand\n01.01.2024;1000\n01.02.2024;1100,5\n31.02.2024;5\n"
MAPPING = {"date_column": "Datum", "value_column": "Zählerstand"}


async def _parse(client: AsyncClient, meter_id, content=CSV.encode("utf-8"), filename="readings.csv", content_type="text/csv"):
	return await client.post(
		f"{API}/imports/parse",
		files={"file": (filename, content, content_type)},
		data={"meter_id": str(meter_id)},
	)


async def test_parse_csv(client: AsyncClient, meter: Meter):
	"""Test parsing suggests the date and value columns"""
	response = await _parse(client, meter.id)
	assert response.status_code == 200
	data = response.json()
	assert data["token"]
	assert data["columns"] == ["Datum", "Zählerstand"]
	assert data["row_count"] == 3
	assert data["suggested_date_column"] == "Datum"
	assert data["suggested_value_column"] == "Zählerstand"
	assert data["sample"][0] == {"Datum": "01.01.2024", "Zählerstand": "1000"}


async def test_parse_windows_encoded_csv(client: AsyncClient, meter: Meter):
	response = await _parse(client, meter.id, content=CSV.encode("cp1252"))
	assert response.status_code == 200
	assert response.json()["suggested_value_column"] == "Zählerstand"


async def test_parse_unsupported_format(client: AsyncClient, meter: Meter):
	response = await _parse(client, meter.id, content=b"data", filename="readings.doc", content_type="application/msword")
	assert response.status_code == 422


async def test_parse_for_unknown_meter(client: AsyncClient):
	response = await _parse(client, uuid.uuid4())
	assert response.status_code == 404


async def test_parse_xls_goes_through_table_extraction(client: AsyncClient, meter: Meter, oracle):
	oracle.table = (["Datum", "Stand"], [{"Datum": "01.01.2024", "Stand": "100"}])

	response = await _parse(client, meter.id, content=b"\xd0\xcf\x11\xe0", filename="Ablesung.XLS", content_type="application/vnd.ms-excel")
	assert response.status_code == 200
	assert response.json()["row_count"] == 1
	assert oracle.calls == [("table", "application/vnd.ms-excel")]


async def test_parse_pdf_when_extraction_fails(client: AsyncClient, meter: Meter, oracle):
	oracle.error = "Extraction service answered 500"

	response = await _parse(client, meter.id, content=b"%PDF-1.4", filename="protocol.pdf", content_type="application/pdf")
	assert response.status_code == 502
	assert response.json()["fallback"] == "manual_entry"


async def test_preview_counts_duplicates_and_dropped(client: AsyncClient, meter: Meter):
	await client.post(f"{API}/meters/{meter.id}/readings", json={"reading_value": 1090, "reading_date": "2024-02-01"})
	token = (await _parse(client, meter.id)).json()["token"]

	response = await client.post(f"{API}/imports/{token}/preview", json=MAPPING)
	assert response.status_code == 200
	data = response.json()
	assert data["total"] == 2
	assert data["duplicates"] == 1
	assert data["dropped"] == 1
	assert data["rows"] == [{"date": "2024-01-01", "value": 1000.0}, {"date": "2024-02-01", "value": 1100.5}]


async def test_preview_needs_both_columns(client: AsyncClient, meter: Meter):
	token = (await _parse(client, meter.id)).json()["token"]
	response = await client.post(f"{API}/imports/{token}/preview", json={"date_column": "Datum"})
	assert response.status_code == 400
	assert response.json()["error"] == "MissingRequiredField"


async def test_commit_import(client: AsyncClient, meter: Meter):
	"""Test committing writes readings and reports the tally"""
	await client.post(f"{API}/meters/{meter.id}/readings", json={"reading_value": 1090, "reading_date": "2024-02-01"})
	token = (await _parse(client, meter.id)).json()["token"]

	response = await client.post(f"{API}/imports/{token}/commit", json=MAPPING)
	assert response.status_code == 200
	data = response.json()
	assert data["status"] == "completed"
	summary = data["summary"]
	assert (summary["imported"], summary["overwritten"], summary["skipped"]) == (1, 1, 1)
	assert summary["total"] == 3
	assert summary["message"] == "1 imported, 1 overwritten, 1 skipped"

	readings = (await client.get(f"{API}/meters/{meter.id}/readings")).json()
	assert [(r["reading_date"], r["reading_value"], r["source"]) for r in readings["data"]] == [
		("2024-02-01", 1100.5, "imported"),
		("2024-01-01", 1000.0, "imported"),
	]

	# the wizard state is gone after commit
	response = await client.post(f"{API}/imports/{token}/preview", json=MAPPING)
	assert response.status_code == 404


async def test_commit_large_import_is_queued(client: AsyncClient, meter: Meter, monkeypatch):
	queued = []

	def fake_enqueue(task_id, meter_id, rows, number_format, dropped=0):
		queued.append((task_id, meter_id, rows, number_format, dropped))

	monkeypatch.setattr("app.api.v1.imports.enqueue_import", fake_enqueue)
	monkeypatch.setattr(settings, "IMPORT_ASYNC_THRESHOLD", 1)
	token = (await _parse(client, meter.id)).json()["token"]

	response = await client.post(f"{API}/imports/{token}/commit", json=MAPPING)
	assert response.status_code == 200
	data = response.json()
	assert data["status"] == "queued"
	assert data["status_url"] == f"{API}/tasks/{data['task_id']}"

	task_id, meter_id, rows, number_format, dropped = queued[0]
	assert task_id == data["task_id"]
	assert meter_id == meter.id
	assert rows == [{"date": "2024-01-01", "value": 1000.0}, {"date": "2024-02-01", "value": 1100.5}]
	assert (number_format, dropped) == ("auto", 1)

	task = (await client.get(data["status_url"])).json()
	assert task["status"] == "pending"
	assert task["task_name"] == "import_readings"


async def test_unknown_token(client: AsyncClient):
	response = await client.post(f"{API}/imports/does-not-exist/commit", json=MAPPING)
	assert response.status_code == 404
	assert "expired" in response.json()["detail"]


@pytest.mark.parametrize("number_format, expected", [
	("decimal_comma", 1234.5),
	("decimal_point", 1234.0),
])
async def test_commit_with_number_format(client: AsyncClient, meter: Meter, number_format, expected):
	content = "Datum;Stand\n01.01.2024;\"1.234,5\"\n".encode("utf-8")
	if number_format == "decimal_point":
		content = "Datum;Stand\n01.01.2024;\"1,234\"\n".encode("utf-8")
	token = (await _parse(client, meter.id, content=content)).json()["token"]

	response = await client.post(
		f"{API}/imports/{token}/commit",
		json={"date_column": "Datum", "value_column": "Stand", "number_format": number_format},
	)
	assert response.json()["summary"]["imported"] == 1
	readings = (await client.get(f"{API}/meters/{meter.id}/readings")).json()
	assert readings["data"][0]["reading_value"] == expected
