from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import case, func, select
from sqlalchemy.orm import joinedload

from app.casetrack.core.periods import PeriodKey
from app.casetrack.db.models import Client, ClientPeriodStatus, Product, StatusEvent


@dataclass(frozen=True)
class StatusListFilters:
    period: PeriodKey | None = None
    status_type_id: str | None = None
    reason_id: str | None = None
    has_payment: bool | None = None
    is_terminal: bool | None = None
    branch_id: str | None = None


class ClientStatusRepository:
    def __init__(self, db):
        self.db = db

    def get_current(self, client_id, period: PeriodKey, *, for_update: bool = False):
        stmt = select(ClientPeriodStatus).where(
            ClientPeriodStatus.client_id == client_id,
            ClientPeriodStatus.period_key == period.key,
        )
        if for_update:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalars().first()

    def next_event_sequence(self, status_id) -> int:
        stmt = select(func.max(StatusEvent.event_sequence)).where(
            StatusEvent.client_period_status_id == status_id
        )
        current = self.db.execute(stmt).scalar()
        return (current or 0) + 1

    def create_status(
        self,
        *,
        client_id,
        period: PeriodKey,
        status_type_id,
        reason_id,
        remarks: str | None,
        has_payment: bool,
        is_terminal: bool,
        updated_by,
        now: datetime,
    ) -> ClientPeriodStatus:
        record = ClientPeriodStatus(
            client_id=client_id,
            period_type=period.period_type,
            period_year=period.year,
            period_month=period.month,
            period_quarter=period.quarter,
            period_key=period.key,
            status_type_id=status_type_id,
            reason_id=reason_id,
            remarks=remarks,
            has_payment=has_payment,
            is_terminal=is_terminal,
            updated_by=updated_by,
            created_at=now,
            updated_at=now,
        )
        self.db.add(record)
        self.db.flush()
        return record

    def update_status(
        self,
        record: ClientPeriodStatus,
        *,
        status_type_id,
        reason_id,
        remarks: str | None,
        has_payment: bool,
        is_terminal: bool,
        updated_by,
        now: datetime,
    ) -> ClientPeriodStatus:
        record.status_type_id = status_type_id
        record.reason_id = reason_id
        record.remarks = remarks
        record.has_payment = has_payment
        record.is_terminal = is_terminal
        record.updated_by = updated_by
        record.updated_at = now
        self.db.flush()
        return record

    def append_event(
        self,
        record: ClientPeriodStatus,
        *,
        event_sequence: int,
        created_by,
        now: datetime,
    ) -> StatusEvent:
        event = StatusEvent(
            client_period_status_id=record.id,
            status_type_id=record.status_type_id,
            reason_id=record.reason_id,
            remarks=record.remarks,
            has_payment=record.has_payment,
            event_sequence=event_sequence,
            created_by=created_by,
            created_at=now,
        )
        self.db.add(event)
        self.db.flush()
        return event

    def list_history(self, client_id, *, limit: int, period: PeriodKey | None = None):
        stmt = (
            select(StatusEvent, ClientPeriodStatus)
            .join(ClientPeriodStatus, ClientPeriodStatus.id == StatusEvent.client_period_status_id)
            .options(joinedload(StatusEvent.status_type), joinedload(StatusEvent.reason))
            .where(ClientPeriodStatus.client_id == client_id)
        )
        if period is not None:
            stmt = stmt.where(ClientPeriodStatus.period_key == period.key)
        stmt = stmt.order_by(StatusEvent.created_at.desc(), StatusEvent.event_sequence.desc()).limit(limit)
        return self.db.execute(stmt).all()

    def _scoped_current(self, *, organization_id, branch_ids: frozenset | None, filters: StatusListFilters):
        stmt = (
            select(ClientPeriodStatus)
            .join(Client, Client.id == ClientPeriodStatus.client_id)
            .join(Product, Product.id == Client.product_id)
            .where(Product.organization_id == organization_id, Client.deleted_at.is_(None))
        )
        if branch_ids is not None:
            stmt = stmt.where(Client.branch_id.in_(list(branch_ids)))
        if filters.period is not None:
            stmt = stmt.where(ClientPeriodStatus.period_key == filters.period.key)
        if filters.status_type_id is not None:
            stmt = stmt.where(ClientPeriodStatus.status_type_id == filters.status_type_id)
        if filters.reason_id is not None:
            stmt = stmt.where(ClientPeriodStatus.reason_id == filters.reason_id)
        if filters.has_payment is not None:
            stmt = stmt.where(ClientPeriodStatus.has_payment.is_(filters.has_payment))
        if filters.is_terminal is not None:
            stmt = stmt.where(ClientPeriodStatus.is_terminal.is_(filters.is_terminal))
        if filters.branch_id is not None:
            stmt = stmt.where(Client.branch_id == filters.branch_id)
        return stmt

    def list_current(
        self,
        *,
        organization_id,
        branch_ids: frozenset | None,
        filters: StatusListFilters,
        limit: int,
        offset: int,
    ):
        stmt = self._scoped_current(organization_id=organization_id, branch_ids=branch_ids, filters=filters)
        count_stmt = select(func.count()).select_from(stmt.subquery())
        total = self.db.execute(count_stmt).scalar_one()
        stmt = (
            stmt.options(joinedload(ClientPeriodStatus.status_type), joinedload(ClientPeriodStatus.reason))
            .order_by(ClientPeriodStatus.updated_at.desc(), ClientPeriodStatus.id)
            .limit(limit)
            .offset(offset)
        )
        return self.db.execute(stmt).scalars().all(), total

    def count_by_status_type(self, *, organization_id, branch_ids: frozenset | None, period: PeriodKey):
        scoped = self._scoped_current(
            organization_id=organization_id,
            branch_ids=branch_ids,
            filters=StatusListFilters(period=period),
        ).subquery()
        stmt = (
            select(
                scoped.c.status_type_id,
                func.count(),
                func.sum(case((scoped.c.has_payment.is_(True), 1), else_=0)),
                func.sum(case((scoped.c.is_terminal.is_(True), 1), else_=0)),
            )
            .group_by(scoped.c.status_type_id)
        )
        return [
            (status_type_id, count, int(payments or 0), int(terminal or 0))
            for status_type_id, count, payments, terminal in self.db.execute(stmt).all()
        ]

    def count_clients(
        self, *, organization_id, branch_ids: frozenset | None, tracking_cycle: str | None = None
    ) -> int:
        stmt = (
            select(func.count())
            .select_from(Client)
            .join(Product, Product.id == Client.product_id)
            .where(
                Product.organization_id == organization_id,
                Client.deleted_at.is_(None),
                Client.is_active.is_(True),
            )
        )
        if branch_ids is not None:
            stmt = stmt.where(Client.branch_id.in_(list(branch_ids)))
        if tracking_cycle is not None:
            stmt = stmt.where(Product.tracking_cycle == tracking_cycle)
        return self.db.execute(stmt).scalar_one()