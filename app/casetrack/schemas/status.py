from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from app.casetrack.core.periods import PeriodKey
from app.casetrack.services.status_update import StatusUpdateRequest


class PeriodFields(BaseModel):
    period_type: Literal["monthly", "quarterly"]
    period_year: int = Field(ge=2000, le=2100)
    period_month: int | None = Field(default=None, ge=1, le=12)
    period_quarter: int | None = Field(default=None, ge=1, le=4)

    @model_validator(mode="after")
    def _check_period(self):
        self.to_period()
        return self

    def to_period(self) -> PeriodKey:
        return PeriodKey(
            period_type=self.period_type,
            year=self.period_year,
            month=self.period_month,
            quarter=self.period_quarter,
        )


class StatusUpdateItem(PeriodFields):
    client_id: UUID
    status_type_id: UUID
    reason_id: UUID | None = None
    remarks: str | None = Field(default=None, max_length=2000)
    has_payment: bool = False

    model_config = {
        "json_schema_extra": {
            "example": {
                "client_id": "5f0c1c8e-4a55-4d8e-9a0f-1f3f8f5b2c11",
                "period_type": "monthly",
                "period_year": 2024,
                "period_month": 1,
                "status_type_id": "0b7f3b0e-3a4c-4e0b-8d57-7f1b5f0ad001",
                "reason_id": None,
                "remarks": "Client will visit the branch next week",
                "has_payment": False,
            }
        }
    }

    def to_request(self) -> StatusUpdateRequest:
        return StatusUpdateRequest(
            client_id=str(self.client_id),
            period=self.to_period(),
            status_type_id=str(self.status_type_id),
            reason_id=str(self.reason_id) if self.reason_id else None,
            remarks=self.remarks,
            has_payment=self.has_payment,
        )


class BulkStatusUpdateRequest(BaseModel):
    updates: list[StatusUpdateItem] = Field(min_length=1)


class StatusUpdateResponse(BaseModel):
    success: bool = True
    client_id: str
    status_id: str
    event_id: str
    event_sequence: int
    update_count: int
    is_terminal: bool
    trace_id: str | None = None


class BulkStatusItemResult(BaseModel):
    success: bool
    client_id: str
    status_id: str | None = None
    event_id: str | None = None
    event_sequence: int | None = None
    error_code: str | None = None
    message: str | None = None
    details: dict | None = None


class BulkStatusUpdateResponse(BaseModel):
    successful: int
    failed: int
    results: list[BulkStatusItemResult]
    trace_id: str | None = None


class StatusReasonResponse(BaseModel):
    id: str
    code: str
    name: str
    is_terminal: bool
    requires_remarks: bool


class StatusTypeResponse(BaseModel):
    id: str
    code: str
    name: str
    sequence: int
    organization_id: str | None
    is_terminal: bool
    requires_reason: bool
    reasons: list[StatusReasonResponse]


class StatusTypeListResponse(BaseModel):
    rows: list[StatusTypeResponse]


class ClientPeriodStatusResponse(BaseModel):
    id: str
    client_id: str
    period_type: str
    period_year: int
    period_month: int | None
    period_quarter: int | None
    period_key: str
    status_type_id: str
    status_code: str | None
    status_name: str | None
    reason_id: str | None
    reason_code: str | None
    remarks: str | None
    has_payment: bool
    update_count: int
    is_terminal: bool
    updated_by: str | None
    created_at: datetime
    updated_at: datetime


class StatusEventResponse(BaseModel):
    id: str
    client_period_status_id: str
    period_key: str
    status_type_id: str
    status_code: str | None
    reason_id: str | None
    reason_code: str | None
    remarks: str | None
    has_payment: bool
    event_sequence: int
    created_by: str | None
    created_at: datetime


class StatusHistoryResponse(BaseModel):
    client_id: str
    events: list[StatusEventResponse]


class StatusListResponse(BaseModel):
    rows: list[ClientPeriodStatusResponse]
    total: int
    limit: int
    offset: int


class StatusSummaryItem(BaseModel):
    status_type_id: str
    code: str
    name: str
    count: int


class StatusSummaryResponse(BaseModel):
    period: dict
    scope: str
    total_clients: int
    tracked_clients: int
    untracked_clients: int
    payment_count: int
    terminal_count: int
    by_status: list[StatusSummaryItem]
