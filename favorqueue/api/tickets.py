from __future__ import annotations
import logging
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from favorqueue.core.exceptions import BusinessLogicError, business_exception_to_http
from favorqueue.db.session import get_db
from favorqueue.schemas.tickets import (
    CreateTicketRequest,
    ErrorResponse,
    NextNumbersResponse,
    OperationResponse,
    QueueSnapshotResponse,
    SyncResponse,
    TagRequest,
    TicketPositionResponse,
    TicketResponse,
)
from favorqueue.services.ticket import TicketService
from favorqueue.services.ticket_engine import TicketEngineService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["tickets"])

ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Invalid input data"},
    404: {"model": ErrorResponse, "description": "Ticket not found"},
    409: {"model": ErrorResponse, "description": "Invalid state transition"},
    503: {"model": ErrorResponse, "description": "Ticket numbering unavailable"},
}


def get_ticket_service() -> TicketService:
    return TicketService()


def get_engine_service() -> TicketEngineService:
    return TicketEngineService()


@router.post(
    "/tickets",
    response_model=TicketResponse,
    status_code=201,
    responses=ERROR_RESPONSES,
    summary="Submit a favor",
)
async def create_ticket(
    payload: CreateTicketRequest,
    session: AsyncSession = Depends(get_db),
    svc: TicketService = Depends(get_ticket_service),
) -> TicketResponse:
    try:
        ticket = await svc.create(
            session=session,
            creator_slug=payload.creator_slug,
            lane=payload.lane.value,
            title=payload.title,
            message=payload.message,
            tip_cents=payload.tip_cents,
            requester_name=payload.requester_name,
            requester_email=payload.requester_email,
            awaiting_payment=payload.awaiting_payment,
        )
        await session.commit()
    except BusinessLogicError as e:
        logger.warning(f"Business logic error creating ticket: {e}")
        raise business_exception_to_http(e)
    return TicketResponse.model_validate(ticket)


@router.get("/tickets/{ref}", response_model=TicketResponse, responses=ERROR_RESPONSES)
async def get_ticket(
    ref: str,
    session: AsyncSession = Depends(get_db),
    svc: TicketService = Depends(get_ticket_service),
) -> TicketResponse:
    try:
        ticket = await svc.get_by_ref(session, ref)
    except BusinessLogicError as e:
        raise business_exception_to_http(e)
    return TicketResponse.model_validate(ticket)


@router.get("/tickets/{ref}/position", response_model=TicketPositionResponse, responses=ERROR_RESPONSES)
async def get_ticket_position(
    ref: str,
    session: AsyncSession = Depends(get_db),
    engine: TicketEngineService = Depends(get_engine_service),
) -> TicketPositionResponse:
    try:
        position = await engine.ticket_position(session, ref)
    except BusinessLogicError as e:
        raise business_exception_to_http(e)
    return TicketPositionResponse.model_validate(position)


@router.post("/tickets/{ref}/payment-confirmed", response_model=OperationResponse, responses=ERROR_RESPONSES)
async def confirm_payment(
    ref: str,
    session: AsyncSession = Depends(get_db),
    svc: TicketService = Depends(get_ticket_service),
) -> OperationResponse:
    try:
        result = await svc.confirm_payment(session, ref)
        await session.commit()
    except BusinessLogicError as e:
        logger.warning(f"Payment confirmation rejected for {ref}: {e}")
        raise business_exception_to_http(e)
    return OperationResponse.model_validate(result)


@router.post(
    "/tickets/{ref}/approve",
    response_model=OperationResponse,
    responses=ERROR_RESPONSES,
    summary="Approve a ticket",
    description="Moves an open ticket to approved, assigns its numbers and recomputes the creator's workflow tags.",
)
async def approve_ticket(
    ref: str,
    session: AsyncSession = Depends(get_db),
    svc: TicketService = Depends(get_ticket_service),
) -> OperationResponse:
    try:
        result = await svc.approve(session, ref)
        await session.commit()
    except BusinessLogicError as e:
        logger.warning(f"Approval failed for {ref}: {e}")
        raise business_exception_to_http(e)
    return OperationResponse.model_validate(result)


@router.post("/tickets/{ref}/reject", response_model=OperationResponse, responses=ERROR_RESPONSES)
async def reject_ticket(
    ref: str,
    session: AsyncSession = Depends(get_db),
    svc: TicketService = Depends(get_ticket_service),
) -> OperationResponse:
    try:
        result = await svc.reject(session, ref)
        await session.commit()
    except BusinessLogicError as e:
        logger.warning(f"Rejection failed for {ref}: {e}")
        raise business_exception_to_http(e)
    return OperationResponse.model_validate(result)


@router.post("/tickets/{ref}/finish", response_model=OperationResponse, responses=ERROR_RESPONSES)
async def finish_ticket(
    ref: str,
    session: AsyncSession = Depends(get_db),
    svc: TicketService = Depends(get_ticket_service),
) -> OperationResponse:
    try:
        result = await svc.finish(session, ref)
        await session.commit()
    except BusinessLogicError as e:
        logger.warning(f"Finish failed for {ref}: {e}")
        raise business_exception_to_http(e)
    return OperationResponse.model_validate(result)


@router.post(
    "/tickets/{ref}/toggle-feedback",
    response_model=OperationResponse,
    responses=ERROR_RESPONSES,
    summary="Toggle between current and awaiting feedback",
)
async def toggle_feedback(
    ref: str,
    session: AsyncSession = Depends(get_db),
    svc: TicketService = Depends(get_ticket_service),
) -> OperationResponse:
    try:
        result = await svc.toggle_feedback(session, ref)
        await session.commit()
    except BusinessLogicError as e:
        logger.warning(f"Feedback toggle refused for {ref}: {e}")
        raise business_exception_to_http(e)
    return OperationResponse.model_validate(result)


@router.post("/tickets/{ref}/tags", response_model=OperationResponse, responses=ERROR_RESPONSES)
async def add_tag(
    ref: str,
    payload: TagRequest,
    session: AsyncSession = Depends(get_db),
    svc: TicketService = Depends(get_ticket_service),
) -> OperationResponse:
    try:
        result = await svc.add_tag(session, ref, payload.tag)
        await session.commit()
    except BusinessLogicError as e:
        raise business_exception_to_http(e)
    return OperationResponse.model_validate(result)


@router.delete("/tickets/{ref}/tags/{tag}", response_model=OperationResponse, responses=ERROR_RESPONSES)
async def remove_tag(
    ref: str,
    tag: str,
    session: AsyncSession = Depends(get_db),
    svc: TicketService = Depends(get_ticket_service),
) -> OperationResponse:
    try:
        result = await svc.remove_tag(session, ref, tag)
        await session.commit()
    except BusinessLogicError as e:
        raise business_exception_to_http(e)
    return OperationResponse.model_validate(result)


@router.get(
    "/creators/{creator_slug}/queue",
    response_model=QueueSnapshotResponse,
    summary="Queue metrics per lane",
)
async def get_queue_snapshot(
    creator_slug: str,
    session: AsyncSession = Depends(get_db),
    engine: TicketEngineService = Depends(get_engine_service),
) -> QueueSnapshotResponse:
    snapshot = await engine.snapshot(session, creator_slug)
    return QueueSnapshotResponse.model_validate(snapshot)


@router.get("/creators/{creator_slug}/positions", response_model=List[TicketPositionResponse])
async def list_positions(
    creator_slug: str,
    session: AsyncSession = Depends(get_db),
    engine: TicketEngineService = Depends(get_engine_service),
) -> List[TicketPositionResponse]:
    positions = await engine.active_positions(session, creator_slug)
    return [TicketPositionResponse.model_validate(p) for p in positions]


@router.get("/creators/{creator_slug}/next-numbers", response_model=NextNumbersResponse)
async def get_next_numbers(
    creator_slug: str,
    session: AsyncSession = Depends(get_db),
    engine: TicketEngineService = Depends(get_engine_service),
) -> NextNumbersResponse:
    return NextNumbersResponse(**await engine.next_numbers(session, creator_slug))


@router.post("/creators/{creator_slug}/retag", response_model=SyncResponse, responses=ERROR_RESPONSES)
async def retag_creator(
    creator_slug: str,
    session: AsyncSession = Depends(get_db),
    svc: TicketService = Depends(get_ticket_service),
) -> SyncResponse:
    try:
        result = await svc.retag(session, creator_slug)
        await session.commit()
    except BusinessLogicError as e:
        raise business_exception_to_http(e)
    return SyncResponse.model_validate(result)
