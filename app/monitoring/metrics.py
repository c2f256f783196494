from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter
from fastapi.responses import Response

router = APIRouter()

# Define metrics
request_count = Counter(
	'http_requests_total',
	'Total HTTP requests',
	['method', 'endpoint', 'status']
)

request_duration = Histogram(
	'http_request_duration_seconds',
	'HTTP request duration',
	['method', 'endpoint'],
	buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)
)

active_requests = Gauge(
	'http_requests_active',
	'Number of active HTTP requests'
)

reading_writes = Counter(
	'reading_writes_total',
	'Reading writes by resolver action',
	['action']  # insert, overwrite, skipped
)

oracle_requests = Counter(
	'oracle_requests_total',
	'Calls to the OCR / document extraction service',
	['operation', 'outcome']
)

oracle_duration = Histogram(
	'oracle_request_duration_seconds',
	'OCR / document extraction latency',
	['operation'],
	buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0)
)

swap_chains = Counter(
	'meter_swap_chains_total',
	'Meter lineages materialized from detected swaps',
	['outcome']
)


@router.get("/metrics")
async def metrics():
	"""Prometheus metrics endpoint"""
	return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
