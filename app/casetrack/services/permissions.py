from __future__ import annotations

from dataclasses import dataclass

from app.casetrack.repos.permissions import PermissionGrantRepository

SCOPE_SELF = "self"
SCOPE_BRANCH = "branch"
SCOPE_AREA = "area"
SCOPE_ALL = "all"
GRANT_SCOPES = (SCOPE_SELF, SCOPE_BRANCH, SCOPE_AREA, SCOPE_ALL)
_SCOPE_RANK = {scope: rank for rank, scope in enumerate(GRANT_SCOPES)}


@dataclass(frozen=True)
class PermissionDecision:
    key: str
    allowed: bool
    source: str
    scope: str | None = None


def permission_key(resource: str, action: str) -> str:
    return f"{resource.strip()}:{action.strip()}"


def split_permission_key(key: str) -> tuple[str, str]:
    resource, _, action = key.strip().partition(":")
    return resource, action


class PermissionService:
    def __init__(self, db, cache: dict | None = None):
        self.repo = PermissionGrantRepository(db)
        self.cache = cache if cache is not None else {}

    def evaluate(self, user_id, organization_id, key: str) -> PermissionDecision:
        normalized_key = key.strip()
        if user_id is None or organization_id is None:
            return PermissionDecision(key=normalized_key, allowed=False, source="anonymous")
        if normalized_key not in self._get_catalog():
            return PermissionDecision(key=normalized_key, allowed=False, source="unknown_permission")
        grants = self._get_grants(user_id, organization_id)
        scope = grants.get(normalized_key)
        if scope is None:
            return PermissionDecision(key=normalized_key, allowed=False, source="default_deny")
        return PermissionDecision(key=normalized_key, allowed=True, source="user_grant", scope=scope)

    def has_permission(self, user_id, organization_id, resource: str, action: str) -> bool:
        return self.evaluate(user_id, organization_id, permission_key(resource, action)).allowed

    def scope_for(self, user_id, organization_id, key: str) -> str | None:
        return self.evaluate(user_id, organization_id, key).scope

    def _get_catalog(self) -> set[str]:
        cache_key = ("catalog",)
        if cache_key not in self.cache:
            self.cache[cache_key] = {perm.code for perm in self.repo.list_permission_catalog()}
        return self.cache[cache_key]

    def _get_grants(self, user_id, organization_id) -> dict[str, str]:
        cache_key = ("grants", str(user_id), str(organization_id))
        if cache_key not in self.cache:
            grants: dict[str, str] = {}
            for code, scope in self.repo.list_user_grants(user_id=user_id, organization_id=organization_id):
                # Duplicate grants keep the broadest scope.
                current = grants.get(code)
                if current is None or _SCOPE_RANK.get(scope, -1) > _SCOPE_RANK.get(current, -1):
                    grants[code] = scope
            self.cache[cache_key] = grants
        return self.cache[cache_key]
