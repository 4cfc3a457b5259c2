from fastapi import APIRouter, Depends, Request

from app.casetrack.core.deps import get_permission_cache, require_request_context
from app.casetrack.db.session import get_db
from app.casetrack.schemas.access import TerritoryResponse
from app.casetrack.services.status_queries import StatusQueryService

router = APIRouter()


@router.get("/territory", response_model=TerritoryResponse)
def effective_territory(
    request: Request,
    context=Depends(require_request_context),
    db=Depends(get_db),
):
    service = StatusQueryService(db, cache=get_permission_cache(request))
    branch_filter = service.effective_territory(context)
    return TerritoryResponse(
        user_id=context.user_id,
        organization_id=context.organization_id,
        scope=branch_filter.scope,
        branch_ids=sorted(branch_filter.branch_ids),
        trace_id=getattr(request.state, "trace_id", ""),
    )
