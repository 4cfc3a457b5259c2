import uuid

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials
from jose import JWTError
from pydantic import ValidationError

from app.casetrack.core.context import RequestContext, build_request_context
from app.casetrack.core.error_catalog import AppError, ErrorCatalog
from app.casetrack.core.security import TokenData, bearer_scheme, decode_token
from app.casetrack.db.session import get_db
from app.casetrack.repos.users import UserRepository


def get_current_token_data(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> TokenData:
    if credentials is None or not credentials.credentials:
        raise AppError(ErrorCatalog.INVALID_TOKEN)
    try:
        payload = decode_token(credentials.credentials)
        return TokenData(**payload)
    except (JWTError, ValidationError, TypeError) as exc:
        raise AppError(ErrorCatalog.INVALID_TOKEN) from exc


def require_active_user(token_data: TokenData = Depends(get_current_token_data), db=Depends(get_db)):
    try:
        user_id = uuid.UUID(token_data.sub)
        uuid.UUID(token_data.organization_id)
    except ValueError as exc:
        raise AppError(ErrorCatalog.INVALID_TOKEN) from exc
    user = UserRepository(db).get_by_id(user_id)
    if user is None:
        raise AppError(ErrorCatalog.INVALID_TOKEN)
    if not user.is_active:
        raise AppError(ErrorCatalog.FORBIDDEN, message="User is inactive")
    return user


def require_request_context(
    request: Request,
    token_data: TokenData = Depends(get_current_token_data),
    _user=Depends(require_active_user),
) -> RequestContext:
    trace_id = getattr(request.state, "trace_id", "")
    context = build_request_context(
        user_id=token_data.sub,
        organization_id=token_data.organization_id,
        trace_id=trace_id,
    )
    request.state.context = context
    return context


def get_permission_cache(request: Request) -> dict:
    cache = getattr(request.state, "permission_cache", None)
    if cache is None:
        cache = {}
        request.state.permission_cache = cache
    return cache


__all__ = [
    "get_current_token_data",
    "require_active_user",
    "require_request_context",
    "get_permission_cache",
]
