from sqlalchemy import select

from app.casetrack.db.models import (
    Area,
    AreaBranch,
    Branch,
    Permission,
    UserArea,
    UserBranch,
    UserPermission,
)


class PermissionGrantRepository:
    def __init__(self, db):
        self.db = db

    def list_permission_catalog(self):
        stmt = select(Permission).order_by(Permission.code)
        return self.db.execute(stmt).scalars().all()

    def list_user_grants(self, *, user_id: str, organization_id: str) -> list[tuple[str, str]]:
        stmt = (
            select(Permission.code, UserPermission.scope)
            .join(UserPermission, UserPermission.permission_id == Permission.id)
            .where(
                UserPermission.user_id == user_id,
                UserPermission.organization_id == organization_id,
            )
        )
        return [(code, scope) for code, scope in self.db.execute(stmt).all()]

    def list_granted_branch_ids(self, *, user_id: str) -> set:
        stmt = (
            select(UserBranch.branch_id)
            .join(Branch, Branch.id == UserBranch.branch_id)
            .where(UserBranch.user_id == user_id, Branch.is_active.is_(True))
        )
        return set(self.db.execute(stmt).scalars().all())

    def list_area_branch_ids(self, *, user_id: str, organization_id: str) -> set:
        stmt = (
            select(AreaBranch.branch_id)
            .join(Area, Area.id == AreaBranch.area_id)
            .join(UserArea, UserArea.area_id == Area.id)
            .join(Branch, Branch.id == AreaBranch.branch_id)
            .where(
                UserArea.user_id == user_id,
                Area.organization_id == organization_id,
                Area.is_active.is_(True),
                Branch.is_active.is_(True),
            )
        )
        return set(self.db.execute(stmt).scalars().all())
