import uuid
from datetime import date
from typing import AsyncGenerator, Dict, List, Optional, Set, Tuple

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from app.main import app
from app.database import Base, get_session
from app.core.errors import OracleUnavailable, PersistenceFailure
from app.models.reading import Reading  # noqa: F401
from app.models.task import TaskResult  # noqa: F401
from app.models.meter import Meter, MeterKind
from app.models.property import Building, Unit
from app.schemas.oracle import DocumentExtraction, SingleValueReading
from app.services.import_session import ImportSessionStore, get_import_sessions
from app.services.oracle_client import get_oracle_client
from app.services.storage_service import get_storage_service

# In-memory database, one per test
TEST_DATABASE_URL = "sqlite+aiosqlite://"


@pytest.fixture
async def engine():
	"""Create test database engine"""
	engine = create_async_engine(
		TEST_DATABASE_URL,
		poolclass=StaticPool,
		connect_args={"check_same_thread": False},
	)

	@event.listens_for(engine.sync_engine, "connect")
	def _on_connect(dbapi_connection, connection_record):
		# SAVEPOINT support: let SQLAlchemy emit BEGIN itself
		dbapi_connection.isolation_level = None
		cursor = dbapi_connection.cursor()
		cursor.execute("PRAGMA foreign_keys=ON")
		cursor.close()

	@event.listens_for(engine.sync_engine, "begin")
	def _on_begin(conn):
		conn.exec_driver_sql("BEGIN")

	async with engine.begin() as conn:
		await conn.run_sync(Base.metadata.create_all)

	yield engine

	await engine.dispose()


@pytest.fixture
async def db_session(engine) -> AsyncGenerator[AsyncSession, None]:
	"""Create a test database session"""
	async_session = async_sessionmaker(
		engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
	)

	async with async_session() as session:
		yield session
		await session.rollback()


# =====================================
# Fakes for external services
# =====================================
class FakeOracle:
	"""Stands in for OracleClient; set the canned answers or ``error``"""

	def __init__(self):
		self.single: Optional[SingleValueReading] = SingleValueReading(value=12345, confidence=92)
		self.document: DocumentExtraction = DocumentExtraction()
		self.table: Tuple[List[str], List[Dict[str, str]]] = ([], [])
		self.error: Optional[str] = None
		self.calls: List[Tuple[str, str]] = []

	def _check(self, operation: str, mime_type: str):
		self.calls.append((operation, mime_type))
		if self.error:
			raise OracleUnavailable(self.error)

	async def read_meter_value(self, content, mime_type, meter_kind=None):
		self._check("single_value", mime_type)
		return self.single.model_copy()

	async def extract_document(self, content, mime_type, policy=None):
		self._check("document", mime_type)
		return self.document

	async def extract_table(self, content, mime_type):
		self._check("table", mime_type)
		return self.table


class FakeRedis:
	def __init__(self):
		self.data: Dict[str, str] = {}

	async def set(self, key, value, ex=None):
		self.data[key] = value

	async def get(self, key):
		return self.data.get(key)

	async def delete(self, key):
		self.data.pop(key, None)


class FakeStorage:
	def __init__(self):
		self.uploads: List[str] = []

	async def upload_evidence(self, content, filename, content_type=None, meter_id=None):
		self.uploads.append(filename)
		return f"https://evidence.test/readings/{meter_id}/{filename}"


@pytest.fixture
def oracle() -> FakeOracle:
	return FakeOracle()


@pytest.fixture
def import_sessions() -> ImportSessionStore:
	return ImportSessionStore(FakeRedis(), ttl=60)


@pytest.fixture
def storage() -> FakeStorage:
	return FakeStorage()


@pytest.fixture
async def client(db_session: AsyncSession, oracle, import_sessions, storage) -> AsyncGenerator[AsyncClient, None]:
	"""Create a test client"""

	async def override_get_session():
		yield db_session

	app.dependency_overrides[get_session] = override_get_session
	app.dependency_overrides[get_oracle_client] = lambda: oracle
	app.dependency_overrides[get_import_sessions] = lambda: import_sessions
	app.dependency_overrides[get_storage_service] = lambda: storage

	async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
		yield client

	app.dependency_overrides.clear()


# =====================================
# Domain fixtures
# =====================================
@pytest.fixture
async def building(db_session: AsyncSession) -> Building:
	building = Building(name="Lindenstraße 12", address="Lindenstraße 12", city="Berlin", postal_code="10969")
	db_session.add(building)
	await db_session.flush()
	return building


@pytest.fixture
async def unit(db_session: AsyncSession, building: Building) -> Unit:
	unit = Unit(building_id=building.id, unit_number="2.OG links", floor=2, area=74.5)
	db_session.add(unit)
	await db_session.flush()
	return unit


@pytest.fixture
async def meter(db_session: AsyncSession, unit: Unit) -> Meter:
	meter = Meter(unit_id=unit.id, meter_number="E-4711", meter_kind=MeterKind.ELECTRICITY)
	db_session.add(meter)
	await db_session.flush()
	return meter


# =====================================
# In-memory store for engine tests
# =====================================
class FakeMeter:
	def __init__(self, **fields):
		self.id = uuid.uuid4()
		self.replaced_by_id = None
		self.installation_date = None
		self.unit_id = None
		self.building_id = None
		self.lineage_id = uuid.uuid4()
		self.lineage_position = 0
		for key, value in fields.items():
			setattr(self, key, value)


class FakeReading:
	def __init__(self, draft):
		self.id = uuid.uuid4()
		self.meter_id = draft.meter_id
		self.reading_date = draft.reading_date
		self.reading_value = draft.reading_value
		self.source = draft.source
		self.confidence = draft.confidence
		self.image_url = draft.image_url
		self.notes = draft.notes


class InMemoryStore:
	"""
	Persistence double with failure injection:
	fail_meter_at: index of the create_meter call that fails (0-based)
	fail_links: (meter_id, successor_id) pairs whose link fails
	fail_dates: reading dates whose write fails
	"""

	def __init__(self, fail_meter_at: Optional[int] = None, fail_links: Optional[Set] = None, fail_dates: Optional[Set[date]] = None):
		self.meters: Dict[uuid.UUID, FakeMeter] = {}
		self.readings: Dict[Tuple[uuid.UUID, date], FakeReading] = {}
		self.fail_meter_at = fail_meter_at
		self.fail_links = fail_links or set()
		self.fail_dates = fail_dates or set()
		self.create_calls = 0
		self.deleted: List[uuid.UUID] = []

	async def create_meter(self, **fields):
		call = self.create_calls
		self.create_calls += 1
		if call == self.fail_meter_at:
			raise PersistenceFailure("database unavailable")
		meter = FakeMeter(**fields)
		self.meters[meter.id] = meter
		return meter

	async def create_reading(self, draft):
		if draft.reading_date in self.fail_dates:
			raise PersistenceFailure(f"write of {draft.reading_date} failed")
		reading = FakeReading(draft)
		self.readings[(draft.meter_id, draft.reading_date)] = reading
		return reading

	async def link_successor(self, meter_id, successor_id):
		if (meter_id, successor_id) in self.fail_links:
			raise PersistenceFailure("link failed")
		meter = self.meters[meter_id]
		meter.replaced_by_id = successor_id
		position, current = meter.lineage_position + 1, self.meters.get(successor_id)
		while current is not None and current.id != meter_id:
			current.lineage_id = meter.lineage_id
			current.lineage_position = position
			position += 1
			current = self.meters.get(current.replaced_by_id)

	async def delete_meter(self, meter_id):
		self.meters.pop(meter_id)
		self.deleted.append(meter_id)
		for key in [k for k in self.readings if k[0] == meter_id]:
			del self.readings[key]
		for other in self.meters.values():
			if other.replaced_by_id == meter_id:
				other.replaced_by_id = None

	async def get_meter(self, meter_id):
		return self.meters.get(meter_id)

	async def get_predecessor(self, meter_id):
		for other in self.meters.values():
			if other.replaced_by_id == meter_id:
				return other
		return None

	async def list_readings(self, meter_id):
		readings = [r for (m, _), r in self.readings.items() if m == meter_id]
		return sorted(readings, key=lambda r: r.reading_date, reverse=True)


@pytest.fixture
def store() -> InMemoryStore:
	return InMemoryStore()


@pytest.fixture
def make_store():
	"""InMemoryStore factory for tests that inject failures"""
	return InMemoryStore
