from __future__ import annotations

import logging
from dataclasses import dataclass, field

from app.casetrack.core.config import settings
from app.casetrack.core.context import RequestContext
from app.casetrack.core.error_catalog import AppError, ErrorCatalog
from app.casetrack.core.logging import log_json
from app.casetrack.core.metrics import metrics
from app.casetrack.services.permissions import split_permission_key
from app.casetrack.services.status_update import (
    StatusUpdateFailure,
    StatusUpdateRequest,
    StatusUpdateResult,
    StatusUpdateService,
)
from app.casetrack.services.territory import SCOPE_NONE

logger = logging.getLogger("casetrack.status.bulk")

BULK_UPDATE_PERMISSION = "status:bulk_update"


@dataclass
class BulkUpdateResult:
    results: list[StatusUpdateResult] = field(default_factory=list)

    @property
    def successful(self) -> int:
        return sum(1 for result in self.results if result.success)

    @property
    def failed(self) -> int:
        return sum(1 for result in self.results if not result.success)

    def as_dict(self) -> dict:
        return {
            "successful": self.successful,
            "failed": self.failed,
            "results": [result.as_dict() for result in self.results],
        }


class BulkUpdateService:
    def __init__(self, db, cache: dict | None = None, *, status_service: StatusUpdateService | None = None):
        self.db = db
        self.cache = cache if cache is not None else {}
        self.status_service = status_service or StatusUpdateService(db, cache=self.cache)

    def apply_bulk(self, actor: RequestContext, updates: list[StatusUpdateRequest]) -> BulkUpdateResult:
        max_items = settings.BULK_UPDATE_MAX_ITEMS
        if not 1 <= len(updates) <= max_items:
            raise AppError(
                ErrorCatalog.VALIDATION_ERROR,
                details={"field": "updates", "min_items": 1, "max_items": max_items, "received": len(updates)},
                message=f"Bulk update accepts between 1 and {max_items} items",
            )
        permissions = self.status_service.permissions
        if not permissions.has_permission(
            actor.user_id, actor.organization_id, *split_permission_key(BULK_UPDATE_PERMISSION)
        ):
            raise AppError(ErrorCatalog.FORBIDDEN, details={"permission": BULK_UPDATE_PERMISSION})

        result = BulkUpdateResult()
        branch_filter = self.status_service.territory.resolve(actor.user_id, actor.organization_id)
        if branch_filter.scope == SCOPE_NONE:
            metrics.increment_territory_denied(len(updates))
            for update in updates:
                result.results.append(
                    StatusUpdateFailure(
                        client_id=str(update.client_id),
                        error=ErrorCatalog.FORBIDDEN,
                        message="No territory access",
                        details={"scope": SCOPE_NONE},
                    )
                )
        else:
            for index, update in enumerate(updates):
                result.results.append(self._apply_item(actor, update, index))

        for item in result.results:
            metrics.record_bulk_item("SUCCESS" if item.success else item.code)
        log_json(
            logger,
            {
                "event": "status_bulk_update",
                "trace_id": actor.trace_id,
                "user_id": actor.user_id,
                "organization_id": actor.organization_id,
                "items": len(updates),
                "successful": result.successful,
                "failed": result.failed,
                "scope": branch_filter.scope,
            },
        )
        return result

    def _apply_item(self, actor: RequestContext, update: StatusUpdateRequest, index: int) -> StatusUpdateResult:
        try:
            return self.status_service.apply(actor, update, required_permission=BULK_UPDATE_PERMISSION)
        except Exception as exc:
            self.db.rollback()
            log_json(
                logger,
                {
                    "event": "status_bulk_item_failed",
                    "trace_id": actor.trace_id,
                    "user_id": actor.user_id,
                    "client_id": str(update.client_id),
                    "period_key": update.period.key,
                    "status_type_id": str(update.status_type_id),
                    "item_index": index,
                    "error_class": exc.__class__.__name__,
                },
                level=logging.ERROR,
                exc_info=exc,
            )
            return StatusUpdateFailure(
                client_id=str(update.client_id),
                error=ErrorCatalog.INTERNAL_ERROR,
                message=ErrorCatalog.INTERNAL_ERROR.message,
                details={"type": exc.__class__.__name__},
            )
