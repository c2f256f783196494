import logging
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import NotFound
from app.database import get_session
from app.models.property import Building, Unit
from app.schemas.property import BuildingCreate, BuildingResponse, BuildingListResponse, UnitCreate, UnitResponse

router = APIRouter()
logger = logging.getLogger(__name__)


async def _get_building(db: AsyncSession, building_id: UUID) -> Building:
    building = await db.get(Building, building_id)
    if building is None:
        raise NotFound(f"Building {building_id} not found")
    return building


@router.post("/", response_model=BuildingResponse, status_code=status.HTTP_201_CREATED)
async def create_building(
        building_data: BuildingCreate,
        db: AsyncSession = Depends(get_session),
):
    """Register a building"""
    building = Building(**building_data.model_dump())
    db.add(building)
    await db.flush()

    logger.info(f"Building created: {building.name}")
    return BuildingResponse.model_validate(building)


@router.get("/", response_model=BuildingListResponse)
async def list_buildings(
        skip: int = Query(0, ge=0),
        limit: int = Query(100, ge=1, le=1000),
        db: AsyncSession = Depends(get_session),
):
    """List buildings, alphabetically"""
    total = await db.scalar(select(func.count()).select_from(Building))
    result = await db.execute(select(Building).order_by(Building.name).offset(skip).limit(limit))
    return BuildingListResponse(
        total=total,
        data=[BuildingResponse.model_validate(b) for b in result.scalars().all()]
    )


@router.get("/{building_id}", response_model=BuildingResponse)
async def get_building(
        building_id: UUID,
        db: AsyncSession = Depends(get_session),
):
    return BuildingResponse.model_validate(await _get_building(db, building_id))


@router.post("/{building_id}/units", response_model=UnitResponse, status_code=status.HTTP_201_CREATED)
async def create_unit(
        building_id: UUID,
        unit_data: UnitCreate,
        db: AsyncSession = Depends(get_session),
):
    """Add a unit (apartment, office) to a building"""
    await _get_building(db, building_id)
    unit = Unit(building_id=building_id, **unit_data.model_dump())
    db.add(unit)
    await db.flush()

    logger.info(f"Unit created: {unit.unit_number} in building {building_id}")
    return UnitResponse.model_validate(unit)


@router.get("/{building_id}/units", response_model=List[UnitResponse])
async def list_units(
        building_id: UUID,
        db: AsyncSession = Depends(get_session),
):
    await _get_building(db, building_id)
    result = await db.execute(select(Unit).where(Unit.building_id == building_id).order_by(Unit.unit_number))
    return [UnitResponse.model_validate(u) for u in result.scalars().all()]
