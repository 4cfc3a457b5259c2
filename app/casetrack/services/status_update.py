from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from app.casetrack.core.config import settings
from app.casetrack.core.context import RequestContext
from app.casetrack.core.error_catalog import ErrorCatalog, ErrorDefinition
from app.casetrack.core.errors import is_lock_timeout
from app.casetrack.core.logging import log_json
from app.casetrack.core.metrics import metrics
from app.casetrack.core.periods import PeriodKey
from app.casetrack.repos.catalog import StatusCatalogRepository
from app.casetrack.repos.clients import ClientRepository
from app.casetrack.repos.status import ClientStatusRepository
from app.casetrack.services.permissions import PermissionService, split_permission_key
from app.casetrack.services.territory import SCOPE_NONE, TerritoryResolver
from app.casetrack.services.transitions import (
    ConfiguredTransitionPolicy,
    CurrentStatus,
    ReasonSnapshot,
    StatusTypeSnapshot,
    TransitionPolicy,
    validate_transition,
)

logger = logging.getLogger("casetrack.status")

STATUS_UPDATE_PERMISSION = "status:update"


@dataclass(frozen=True)
class StatusUpdateRequest:
    client_id: str
    period: PeriodKey
    status_type_id: str
    reason_id: str | None = None
    remarks: str | None = None
    has_payment: bool = False


@dataclass(frozen=True)
class StatusUpdateSuccess:
    client_id: str
    status_id: str
    event_id: str
    event_sequence: int
    update_count: int
    is_terminal: bool

    success = True

    def as_dict(self) -> dict:
        return {
            "success": True,
            "client_id": self.client_id,
            "status_id": self.status_id,
            "event_id": self.event_id,
            "event_sequence": self.event_sequence,
        }


@dataclass(frozen=True)
class StatusUpdateFailure:
    client_id: str
    error: ErrorDefinition
    message: str
    details: dict = field(default_factory=dict)

    success = False

    @property
    def code(self) -> str:
        return self.error.code

    def as_dict(self) -> dict:
        return {
            "success": False,
            "client_id": self.client_id,
            "error_code": self.error.code,
            "message": self.message,
            "details": self.details or None,
        }


StatusUpdateResult = StatusUpdateSuccess | StatusUpdateFailure


class _RetryableWrite(Exception):
    pass


class StatusUpdateService:
    """Single writer of client period statuses and their events."""

    def __init__(
        self,
        db,
        cache: dict | None = None,
        *,
        policy: TransitionPolicy | None = None,
        max_attempts: int | None = None,
    ):
        self.db = db
        self.cache = cache if cache is not None else {}
        self.permissions = PermissionService(db, cache=self.cache)
        self.territory = TerritoryResolver(db, cache=self.cache)
        self.clients = ClientRepository(db)
        self.catalog = StatusCatalogRepository(db)
        self.status_repo = ClientStatusRepository(db)
        self.policy = policy
        self.max_attempts = max(1, max_attempts or settings.STATUS_WRITE_MAX_ATTEMPTS)

    def apply(
        self,
        actor: RequestContext,
        request: StatusUpdateRequest,
        *,
        required_permission: str = STATUS_UPDATE_PERMISSION,
    ) -> StatusUpdateResult:
        client_id = str(request.client_id)
        if not self.permissions.has_permission(
            actor.user_id, actor.organization_id, *split_permission_key(required_permission)
        ):
            return self._failure(
                client_id,
                ErrorCatalog.FORBIDDEN,
                details={"permission": required_permission},
            )

        branch_filter = self.territory.resolve(actor.user_id, actor.organization_id)
        if branch_filter.scope == SCOPE_NONE:
            metrics.increment_territory_denied()
            return self._failure(
                client_id,
                ErrorCatalog.FORBIDDEN,
                message="No territory access",
                details={"scope": SCOPE_NONE},
            )

        client = self.clients.get_by_id(request.client_id)
        if client is None:
            return self._failure(
                client_id,
                ErrorCatalog.NOT_FOUND,
                message="Client not found",
                details={"client_id": client_id},
            )
        if not branch_filter.allows(client.branch_id):
            metrics.increment_territory_denied()
            return self._failure(
                client_id,
                ErrorCatalog.FORBIDDEN,
                message="Client is outside your territory",
                details={"scope": branch_filter.scope, "branch_id": _str_or_none(client.branch_id)},
            )

        organization_id = self.clients.resolve_organization_id(client)
        if organization_id is None:
            return self._failure(
                client_id,
                ErrorCatalog.NOT_FOUND,
                message="Client organization not found",
                details={"client_id": client_id, "product_id": _str_or_none(client.product_id)},
            )
        if str(organization_id) != str(actor.organization_id):
            return self._failure(
                client_id,
                ErrorCatalog.FORBIDDEN,
                message="Client belongs to another organization",
                details={"organization_id": str(actor.organization_id)},
            )

        return self._write_with_retry(actor, request, client.id, str(organization_id))

    def _write_with_retry(self, actor, request, client_pk, organization_id: str) -> StatusUpdateResult:
        client_id = str(request.client_id)
        for attempt in range(1, self.max_attempts + 1):
            try:
                return self._write_once(actor, request, client_pk, organization_id)
            except _RetryableWrite as exc:
                if attempt == self.max_attempts:
                    log_json(
                        logger,
                        {
                            "event": "status_update_conflict",
                            "user_id": actor.user_id,
                            "client_id": client_id,
                            "period_key": request.period.key,
                            "attempts": attempt,
                            "error_class": exc.__cause__.__class__.__name__,
                            "trace_id": actor.trace_id,
                        },
                        level=logging.WARNING,
                    )
                    break
                metrics.increment_status_write_retry()
            except Exception as exc:
                self.db.rollback()
                log_json(
                    logger,
                    {
                        "event": "status_update_failed",
                        "trace_id": actor.trace_id,
                        "user_id": actor.user_id,
                        "client_id": client_id,
                        "period_key": request.period.key,
                        "status_type_id": str(request.status_type_id),
                        "error_class": exc.__class__.__name__,
                    },
                    level=logging.ERROR,
                    exc_info=exc,
                )
                raise
        return self._failure(
            client_id,
            ErrorCatalog.CONFLICT,
            details={"period_key": request.period.key, "attempts": self.max_attempts},
        )

    def _write_once(self, actor, request, client_pk, organization_id: str) -> StatusUpdateResult:
        try:
            current = self.status_repo.get_current(client_pk, request.period, for_update=True)
            decision = validate_transition(
                self._current_snapshot(current),
                self._status_snapshot(request.status_type_id),
                self._reason_snapshot(request.reason_id),
                request.remarks,
                organization_id,
                actor.user_id,
                self._policy_for(organization_id),
                target_status_id=str(request.status_type_id),
                reason_id=_str_or_none(request.reason_id),
            )
            if not decision.valid:
                self.db.rollback()
                return self._failure(
                    str(request.client_id),
                    decision.error,
                    message=decision.message,
                    details=decision.details,
                )

            from_status_id = _str_or_none(current.status_type_id) if current is not None else None
            now = datetime.utcnow()
            fields = dict(
                status_type_id=request.status_type_id,
                reason_id=request.reason_id,
                remarks=request.remarks,
                has_payment=request.has_payment,
                is_terminal=decision.is_terminal,
                updated_by=actor.user_id,
                now=now,
            )
            if current is None:
                record = self.status_repo.create_status(client_id=client_pk, period=request.period, **fields)
            else:
                record = self.status_repo.update_status(current, **fields)
            sequence = self.status_repo.next_event_sequence(record.id)
            event = self.status_repo.append_event(record, event_sequence=sequence, created_by=actor.user_id, now=now)
            result = StatusUpdateSuccess(
                client_id=str(request.client_id),
                status_id=str(record.id),
                event_id=str(event.id),
                event_sequence=sequence,
                update_count=record.update_count,
                is_terminal=decision.is_terminal,
            )
            self.db.commit()
        except (IntegrityError, StaleDataError) as exc:
            self.db.rollback()
            raise _RetryableWrite() from exc
        except OperationalError as exc:
            self.db.rollback()
            if not is_lock_timeout(exc):
                raise
            metrics.increment_lock_wait_timeout()
            raise _RetryableWrite() from exc

        log_json(
            logger,
            {
                "event": "status_update",
                "trace_id": actor.trace_id,
                "user_id": actor.user_id,
                "organization_id": organization_id,
                "client_id": result.client_id,
                "period_key": request.period.key,
                "from_status_id": from_status_id,
                "to_status_id": str(request.status_type_id),
                "event_sequence": result.event_sequence,
                "is_terminal": result.is_terminal,
            },
        )
        return result

    def _current_snapshot(self, current) -> CurrentStatus | None:
        if current is None:
            return None
        status_type = self.catalog.get_status_type(current.status_type_id)
        return CurrentStatus(
            status_type_id=str(current.status_type_id),
            status_code=status_type.code if status_type is not None else "",
            is_terminal=bool(current.is_terminal),
        )

    def _status_snapshot(self, status_type_id) -> StatusTypeSnapshot | None:
        status_type = self.catalog.get_status_type(status_type_id)
        return StatusTypeSnapshot.from_model(status_type) if status_type is not None else None

    def _reason_snapshot(self, reason_id) -> ReasonSnapshot | None:
        if reason_id is None:
            return None
        reason = self.catalog.get_reason(reason_id)
        return ReasonSnapshot.from_model(reason) if reason is not None else None

    def _policy_for(self, organization_id: str) -> TransitionPolicy:
        if self.policy is not None:
            return self.policy
        cache_key = ("transition_policy", organization_id)
        if cache_key not in self.cache:
            rows = self.catalog.list_transition_rules(organization_id)
            self.cache[cache_key] = ConfiguredTransitionPolicy.from_rows(organization_id, rows)
        return self.cache[cache_key]

    @staticmethod
    def _failure(
        client_id: str,
        error: ErrorDefinition,
        *,
        message: str | None = None,
        details: dict | None = None,
    ) -> StatusUpdateFailure:
        return StatusUpdateFailure(
            client_id=client_id,
            error=error,
            message=message or error.message,
            details=details or {},
        )


def _str_or_none(value) -> str | None:
    return str(value) if value is not None else None
