from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request

from app.casetrack.core.deps import get_permission_cache, require_request_context
from app.casetrack.core.error_catalog import AppError, ErrorCatalog
from app.casetrack.core.metrics import metrics
from app.casetrack.core.periods import PeriodKey
from app.casetrack.db.session import get_db
from app.casetrack.repos.status import StatusListFilters
from app.casetrack.schemas.errors import STATUS_ERROR_RESPONSES
from app.casetrack.schemas.status import (
    BulkStatusItemResult,
    BulkStatusUpdateRequest,
    BulkStatusUpdateResponse,
    ClientPeriodStatusResponse,
    StatusEventResponse,
    StatusHistoryResponse,
    StatusListResponse,
    StatusReasonResponse,
    StatusSummaryResponse,
    StatusTypeListResponse,
    StatusTypeResponse,
    StatusUpdateItem,
    StatusUpdateResponse,
)
from app.casetrack.services.bulk_update import BulkUpdateService
from app.casetrack.services.status_queries import StatusQueryService
from app.casetrack.services.status_update import StatusUpdateService

router = APIRouter()


def _trace_id(request: Request) -> str:
    return getattr(request.state, "trace_id", "")


def _str_or_none(value) -> str | None:
    return str(value) if value is not None else None


def _build_period(
    period_type: str | None,
    period_year: int | None,
    period_month: int | None,
    period_quarter: int | None,
    *,
    required: bool,
) -> PeriodKey | None:
    if period_type is None and period_year is None and not required:
        return None
    if period_type is None or period_year is None:
        raise AppError(
            ErrorCatalog.VALIDATION_ERROR,
            details={"errors": [{"field": "period_type", "message": "period_type and period_year are required"}]},
        )
    try:
        return PeriodKey(period_type=period_type, year=period_year, month=period_month, quarter=period_quarter)
    except ValueError as exc:
        raise AppError(
            ErrorCatalog.VALIDATION_ERROR,
            details={"errors": [{"field": "period", "message": str(exc)}]},
        ) from exc


def _status_response(record) -> ClientPeriodStatusResponse:
    return ClientPeriodStatusResponse(
        id=str(record.id),
        client_id=str(record.client_id),
        period_type=record.period_type,
        period_year=record.period_year,
        period_month=record.period_month,
        period_quarter=record.period_quarter,
        period_key=record.period_key,
        status_type_id=str(record.status_type_id),
        status_code=record.status_type.code if record.status_type else None,
        status_name=record.status_type.name if record.status_type else None,
        reason_id=_str_or_none(record.reason_id),
        reason_code=record.reason.code if record.reason else None,
        remarks=record.remarks,
        has_payment=record.has_payment,
        update_count=record.update_count,
        is_terminal=record.is_terminal,
        updated_by=_str_or_none(record.updated_by),
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


def _event_response(event, status) -> StatusEventResponse:
    return StatusEventResponse(
        id=str(event.id),
        client_period_status_id=str(event.client_period_status_id),
        period_key=status.period_key,
        status_type_id=str(event.status_type_id),
        status_code=event.status_type.code if event.status_type else None,
        reason_id=_str_or_none(event.reason_id),
        reason_code=event.reason.code if event.reason else None,
        remarks=event.remarks,
        has_payment=event.has_payment,
        event_sequence=event.event_sequence,
        created_by=_str_or_none(event.created_by),
        created_at=event.created_at,
    )


@router.get("/status/types", response_model=StatusTypeListResponse, responses=STATUS_ERROR_RESPONSES)
def list_status_types(
    request: Request,
    context=Depends(require_request_context),
    db=Depends(get_db),
):
    service = StatusQueryService(db, cache=get_permission_cache(request))
    status_types = service.list_status_types(context)
    return StatusTypeListResponse(
        rows=[
            StatusTypeResponse(
                id=str(status_type.id),
                code=status_type.code,
                name=status_type.name,
                sequence=status_type.sequence,
                organization_id=_str_or_none(status_type.organization_id),
                is_terminal=status_type.is_terminal,
                requires_reason=status_type.requires_reason,
                reasons=[
                    StatusReasonResponse(
                        id=str(reason.id),
                        code=reason.code,
                        name=reason.name,
                        is_terminal=reason.is_terminal,
                        requires_remarks=reason.requires_remarks,
                    )
                    for reason in status_type.reasons
                    if reason.is_active
                ],
            )
            for status_type in status_types
        ]
    )


@router.get("/status/summary", response_model=StatusSummaryResponse, responses=STATUS_ERROR_RESPONSES)
def status_summary(
    request: Request,
    period_type: str = Query(...),
    period_year: int = Query(...),
    period_month: int | None = Query(None),
    period_quarter: int | None = Query(None),
    context=Depends(require_request_context),
    db=Depends(get_db),
):
    period = _build_period(period_type, period_year, period_month, period_quarter, required=True)
    service = StatusQueryService(db, cache=get_permission_cache(request))
    return StatusSummaryResponse(**service.get_summary(context, period))


@router.get("/status", response_model=StatusListResponse, responses=STATUS_ERROR_RESPONSES)
def list_statuses(
    request: Request,
    period_type: str | None = Query(None),
    period_year: int | None = Query(None),
    period_month: int | None = Query(None),
    period_quarter: int | None = Query(None),
    status_type_id: UUID | None = Query(None),
    reason_id: UUID | None = Query(None),
    branch_id: UUID | None = Query(None),
    has_payment: bool | None = Query(None),
    is_terminal: bool | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    context=Depends(require_request_context),
    db=Depends(get_db),
):
    filters = StatusListFilters(
        period=_build_period(period_type, period_year, period_month, period_quarter, required=False),
        status_type_id=_str_or_none(status_type_id),
        reason_id=_str_or_none(reason_id),
        has_payment=has_payment,
        is_terminal=is_terminal,
        branch_id=_str_or_none(branch_id),
    )
    service = StatusQueryService(db, cache=get_permission_cache(request))
    rows, total = service.list_statuses(context, filters, limit=limit, offset=offset)
    return StatusListResponse(
        rows=[_status_response(row) for row in rows],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get(
    "/status/{client_id}",
    response_model=ClientPeriodStatusResponse,
    responses=STATUS_ERROR_RESPONSES,
)
def get_current_status(
    request: Request,
    client_id: UUID,
    period_type: str = Query(...),
    period_year: int = Query(...),
    period_month: int | None = Query(None),
    period_quarter: int | None = Query(None),
    context=Depends(require_request_context),
    db=Depends(get_db),
):
    period = _build_period(period_type, period_year, period_month, period_quarter, required=True)
    service = StatusQueryService(db, cache=get_permission_cache(request))
    return _status_response(service.get_current_status(context, str(client_id), period))


@router.get(
    "/status/{client_id}/history",
    response_model=StatusHistoryResponse,
    responses=STATUS_ERROR_RESPONSES,
)
def get_status_history(
    request: Request,
    client_id: UUID,
    limit: int | None = Query(None),
    period_type: str | None = Query(None),
    period_year: int | None = Query(None),
    period_month: int | None = Query(None),
    period_quarter: int | None = Query(None),
    context=Depends(require_request_context),
    db=Depends(get_db),
):
    period = _build_period(period_type, period_year, period_month, period_quarter, required=False)
    service = StatusQueryService(db, cache=get_permission_cache(request))
    rows = service.get_status_history(context, str(client_id), limit=limit, period=period)
    return StatusHistoryResponse(
        client_id=str(client_id),
        events=[_event_response(event, status) for event, status in rows],
    )


@router.post("/status/update", response_model=StatusUpdateResponse, responses=STATUS_ERROR_RESPONSES)
def update_status(
    request: Request,
    payload: StatusUpdateItem,
    context=Depends(require_request_context),
    db=Depends(get_db),
):
    service = StatusUpdateService(db, cache=get_permission_cache(request))
    result = service.apply(context, payload.to_request())
    metrics.record_status_update("SUCCESS" if result.success else result.code)
    if not result.success:
        raise AppError(result.error, details=result.details or None, message=result.message)
    return StatusUpdateResponse(
        client_id=result.client_id,
        status_id=result.status_id,
        event_id=result.event_id,
        event_sequence=result.event_sequence,
        update_count=result.update_count,
        is_terminal=result.is_terminal,
        trace_id=_trace_id(request),
    )


@router.post("/status/bulk-update", response_model=BulkStatusUpdateResponse, responses=STATUS_ERROR_RESPONSES)
def bulk_update_status(
    request: Request,
    payload: BulkStatusUpdateRequest,
    context=Depends(require_request_context),
    db=Depends(get_db),
):
    service = BulkUpdateService(db, cache=get_permission_cache(request))
    result = service.apply_bulk(context, [item.to_request() for item in payload.updates])
    summary = result.as_dict()
    return BulkStatusUpdateResponse(
        successful=summary["successful"],
        failed=summary["failed"],
        results=[BulkStatusItemResult(**item) for item in summary["results"]],
        trace_id=_trace_id(request),
    )
