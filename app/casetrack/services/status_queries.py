from __future__ import annotations

from app.casetrack.core.config import settings
from app.casetrack.core.context import RequestContext
from app.casetrack.core.error_catalog import AppError, ErrorCatalog
from app.casetrack.core.metrics import metrics
from app.casetrack.core.periods import PeriodKey
from app.casetrack.repos.catalog import StatusCatalogRepository
from app.casetrack.repos.clients import ClientRepository
from app.casetrack.repos.status import ClientStatusRepository, StatusListFilters
from app.casetrack.services.permissions import PermissionService, split_permission_key
from app.casetrack.services.territory import SCOPE_NONE, BranchFilter, TerritoryResolver

STATUS_READ_PERMISSION = "status:read"


class StatusQueryService:
    def __init__(self, db, cache: dict | None = None):
        self.cache = cache if cache is not None else {}
        self.permissions = PermissionService(db, cache=self.cache)
        self.territory = TerritoryResolver(db, cache=self.cache)
        self.clients = ClientRepository(db)
        self.catalog = StatusCatalogRepository(db)
        self.status_repo = ClientStatusRepository(db)

    def effective_territory(self, actor: RequestContext) -> BranchFilter:
        return self.territory.resolve(actor.user_id, actor.organization_id)

    def list_status_types(self, actor: RequestContext):
        self._require_read(actor)
        return self.catalog.list_status_types(organization_id=actor.organization_id)

    def get_current_status(self, actor: RequestContext, client_id, period: PeriodKey):
        client = self._authorize_client(actor, client_id)
        record = self.status_repo.get_current(client.id, period)
        if record is None:
            raise AppError(
                ErrorCatalog.NOT_FOUND,
                details={"client_id": str(client_id), "period_key": period.key},
                message="Status not found for period",
            )
        return record

    def get_status_history(
        self,
        actor: RequestContext,
        client_id,
        *,
        limit: int | None = None,
        period: PeriodKey | None = None,
    ):
        if limit is None:
            limit = settings.STATUS_HISTORY_DEFAULT_LIMIT
        if not 1 <= limit <= settings.STATUS_HISTORY_MAX_LIMIT:
            raise AppError(
                ErrorCatalog.VALIDATION_ERROR,
                details={"field": "limit", "max": settings.STATUS_HISTORY_MAX_LIMIT},
                message=f"limit must be between 1 and {settings.STATUS_HISTORY_MAX_LIMIT}",
            )
        client = self._authorize_client(actor, client_id)
        return self.status_repo.list_history(client.id, limit=limit, period=period)

    def list_statuses(
        self,
        actor: RequestContext,
        filters: StatusListFilters,
        *,
        limit: int = 50,
        offset: int = 0,
    ):
        self._require_read(actor)
        branch_filter = self.effective_territory(actor)
        if branch_filter.scope == SCOPE_NONE:
            return [], 0
        return self.status_repo.list_current(
            organization_id=actor.organization_id,
            branch_ids=branch_filter.query_branch_ids(),
            filters=filters,
            limit=limit,
            offset=offset,
        )

    def get_summary(self, actor: RequestContext, period: PeriodKey) -> dict:
        self._require_read(actor)
        branch_filter = self.effective_territory(actor)
        status_types = self.catalog.list_status_types(organization_id=actor.organization_id)
        counts = {}
        total_clients = 0
        if branch_filter.scope != SCOPE_NONE:
            branch_ids = branch_filter.query_branch_ids()
            counts = {
                str(status_type_id): (count, payments, terminal)
                for status_type_id, count, payments, terminal in self.status_repo.count_by_status_type(
                    organization_id=actor.organization_id,
                    branch_ids=branch_ids,
                    period=period,
                )
            }
            total_clients = self.status_repo.count_clients(
                organization_id=actor.organization_id,
                branch_ids=branch_ids,
                tracking_cycle=period.period_type,
            )

        by_status = []
        for status_type in status_types:
            count, _payments, _terminal = counts.get(str(status_type.id), (0, 0, 0))
            by_status.append(
                {
                    "status_type_id": str(status_type.id),
                    "code": status_type.code,
                    "name": status_type.name,
                    "count": count,
                }
            )
        tracked = sum(count for count, _payments, _terminal in counts.values())
        return {
            "period": period.as_dict(),
            "scope": branch_filter.scope,
            "total_clients": total_clients,
            "tracked_clients": tracked,
            "untracked_clients": max(total_clients - tracked, 0),
            "payment_count": sum(payments for _count, payments, _terminal in counts.values()),
            "terminal_count": sum(terminal for _count, _payments, terminal in counts.values()),
            "by_status": by_status,
        }

    def _require_read(self, actor: RequestContext) -> None:
        if not self.permissions.has_permission(
            actor.user_id, actor.organization_id, *split_permission_key(STATUS_READ_PERMISSION)
        ):
            raise AppError(ErrorCatalog.FORBIDDEN, details={"permission": STATUS_READ_PERMISSION})

    def _authorize_client(self, actor: RequestContext, client_id):
        self._require_read(actor)
        branch_filter = self.effective_territory(actor)
        if branch_filter.scope == SCOPE_NONE:
            metrics.increment_territory_denied()
            raise AppError(ErrorCatalog.FORBIDDEN, details={"scope": SCOPE_NONE}, message="No territory access")
        client = self.clients.get_by_id(client_id)
        if client is None:
            raise AppError(ErrorCatalog.NOT_FOUND, details={"client_id": str(client_id)}, message="Client not found")
        if not branch_filter.allows(client.branch_id):
            metrics.increment_territory_denied()
            raise AppError(
                ErrorCatalog.FORBIDDEN,
                details={"scope": branch_filter.scope},
                message="Client is outside your territory",
            )
        organization_id = self.clients.resolve_organization_id(client)
        if organization_id is None or str(organization_id) != str(actor.organization_id):
            raise AppError(
                ErrorCatalog.FORBIDDEN,
                details={"organization_id": str(actor.organization_id)},
                message="Client belongs to another organization",
            )
        return client
