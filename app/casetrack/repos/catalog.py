from sqlalchemy import or_, select
from sqlalchemy.orm import selectinload

from app.casetrack.db.models import StatusReason, StatusTransitionRule, StatusType


class StatusCatalogRepository:
    def __init__(self, db):
        self.db = db

    def get_status_type(self, status_type_id):
        return self.db.get(StatusType, status_type_id)

    def get_reason(self, reason_id):
        return self.db.get(StatusReason, reason_id)

    def list_status_types(self, *, organization_id=None, include_inactive: bool = False):
        stmt = select(StatusType).options(selectinload(StatusType.reasons)).order_by(StatusType.sequence)
        if organization_id is not None:
            stmt = stmt.where(
                or_(StatusType.organization_id.is_(None), StatusType.organization_id == organization_id)
            )
        if not include_inactive:
            stmt = stmt.where(StatusType.is_active.is_(True))
        return self.db.execute(stmt).scalars().all()

    def list_transition_rules(self, organization_id):
        stmt = select(StatusTransitionRule).where(StatusTransitionRule.organization_id == organization_id)
        return self.db.execute(stmt).scalars().all()
