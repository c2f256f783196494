import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Query, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import MissingRequiredField
from app.database import get_session
from app.schemas.meter import (
    LineageResponse,
    MeterCreate,
    MeterDetailResponse,
    MeterListResponse,
    MeterResponse,
    RepairChainRequest,
    SuccessorLinkRequest,
    SwapChainRequest,
    SwapChainResponse,
)
from app.services.meter_service import MeterService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/", response_model=MeterResponse, status_code=status.HTTP_201_CREATED)
async def create_meter(
        meter_data: MeterCreate,
        session: AsyncSession = Depends(get_session),
):
    """Create a meter on a unit or on the building itself"""
    meter = await MeterService(session).create_meter(meter_data)
    return MeterResponse.model_validate(meter)


@router.get("/", response_model=MeterListResponse)
async def list_meters(
        unit_id: Optional[UUID] = Query(None),
        building_id: Optional[UUID] = Query(None),
        session: AsyncSession = Depends(get_session),
):
    """Meters of a unit or a building with last reading and latest consumption"""
    if unit_id is None and building_id is None:
        raise MissingRequiredField("unit_id", "Filter by unit_id or building_id")
    meters = await MeterService(session).list_meters(unit_id=unit_id, building_id=building_id)
    return MeterListResponse(total=len(meters), data=meters)


@router.post("/swap-chain", response_model=SwapChainResponse, status_code=status.HTTP_201_CREATED)
async def create_swap_chain(
        request: SwapChainRequest,
        session: AsyncSession = Depends(get_session),
):
    """
    Materialize the eras of a document with a detected meter exchange:
    one meter per era, readings attached, replacement links set.
    """
    result = await MeterService(session).create_swap_chain(request)
    logger.info(f"Swap chain created: {result.message}")
    return result


@router.post("/repair-chain", response_model=List[MeterResponse])
async def repair_chain(
        request: RepairChainRequest,
        session: AsyncSession = Depends(get_session),
):
    """Write missing replacement links between the given meters, oldest first"""
    meters = await MeterService(session).repair_chain(request.meter_ids)
    return [MeterResponse.model_validate(m) for m in meters]


@router.get("/{meter_id}", response_model=MeterDetailResponse)
async def get_meter(
        meter_id: UUID,
        session: AsyncSession = Depends(get_session),
):
    """Meter with its readings (newest first) and consumption per reading"""
    return await MeterService(session).get_meter_detail(meter_id)


@router.delete("/{meter_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_meter(
        meter_id: UUID,
        session: AsyncSession = Depends(get_session),
):
    """Delete a meter and its readings"""
    await MeterService(session).delete_meter(meter_id)


@router.get("/{meter_id}/lineage", response_model=LineageResponse)
async def get_lineage(
        meter_id: UUID,
        session: AsyncSession = Depends(get_session),
):
    """Every meter of the replacement chain and consumption across the swaps"""
    return await MeterService(session).get_lineage(meter_id)


@router.post("/{meter_id}/successor", response_model=MeterResponse)
async def link_successor(
        meter_id: UUID,
        request: SuccessorLinkRequest,
        session: AsyncSession = Depends(get_session),
):
    """Record that another meter replaced this one"""
    meter = await MeterService(session).link_successor(meter_id, request.successor_id)
    return MeterResponse.model_validate(meter)
