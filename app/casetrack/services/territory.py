from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from app.casetrack.core.config import settings
from app.casetrack.repos.permissions import PermissionGrantRepository
from app.casetrack.services.permissions import SCOPE_ALL, PermissionService

SCOPE_NONE = "none"
SCOPE_TERRITORY = "territory"


@dataclass(frozen=True)
class BranchFilter:
    scope: str
    branch_ids: frozenset = field(default_factory=frozenset)

    @classmethod
    def none(cls) -> "BranchFilter":
        return cls(scope=SCOPE_NONE)

    @classmethod
    def all(cls) -> "BranchFilter":
        return cls(scope=SCOPE_ALL)

    @classmethod
    def territory(cls, branch_ids: Iterable) -> "BranchFilter":
        return cls(scope=SCOPE_TERRITORY, branch_ids=frozenset(str(branch_id) for branch_id in branch_ids))

    def allows(self, branch_id) -> bool:
        if self.scope == SCOPE_ALL:
            return True
        if self.scope == SCOPE_TERRITORY:
            return branch_id is not None and str(branch_id) in self.branch_ids
        return False

    def query_branch_ids(self) -> frozenset | None:
        """Branch restriction for list queries; None means unrestricted."""
        if self.scope == SCOPE_ALL:
            return None
        return self.branch_ids


class TerritoryResolver:
    def __init__(self, db, cache: dict | None = None, permission: str | None = None):
        self.repo = PermissionGrantRepository(db)
        self.cache = cache if cache is not None else {}
        self.permissions = PermissionService(db, cache=self.cache)
        self.permission = permission or settings.TERRITORY_PERMISSION

    def resolve(self, user_id, organization_id) -> BranchFilter:
        if user_id is None or organization_id is None:
            return BranchFilter.none()
        cache_key = ("territory", str(user_id), str(organization_id), self.permission)
        if cache_key not in self.cache:
            self.cache[cache_key] = self._resolve(user_id, organization_id)
        return self.cache[cache_key]

    def can_access_branch(self, user_id, organization_id, branch_id) -> bool:
        return self.resolve(user_id, organization_id).allows(branch_id)

    def filter_branch_ids(self, user_id, organization_id, branch_ids: Iterable) -> list:
        branch_filter = self.resolve(user_id, organization_id)
        return [branch_id for branch_id in branch_ids if branch_filter.allows(branch_id)]

    def _resolve(self, user_id, organization_id) -> BranchFilter:
        if self.permissions.scope_for(user_id, organization_id, self.permission) == SCOPE_ALL:
            return BranchFilter.all()
        branch_ids = self.repo.list_granted_branch_ids(user_id=user_id)
        branch_ids |= self.repo.list_area_branch_ids(user_id=user_id, organization_id=organization_id)
        if not branch_ids:
            return BranchFilter.none()
        return BranchFilter.territory(branch_ids)
