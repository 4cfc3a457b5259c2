from jose import JWTError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from app.casetrack.core.context import build_request_context
from app.casetrack.core.security import decode_token


class OrganizationContextMiddleware(BaseHTTPMiddleware):
    """Best-effort organization/user tagging for logs; authorization happens in the route dependencies."""

    async def dispatch(self, request: Request, call_next):
        request.state.organization_id = None
        request.state.user_id = None

        auth_header = request.headers.get("Authorization")
        if auth_header and auth_header.lower().startswith("bearer "):
            token = auth_header.split(" ", 1)[1]
            try:
                payload = decode_token(token)
            except JWTError:
                payload = {}
            request.state.organization_id = payload.get("organization_id")
            request.state.user_id = payload.get("sub")

        request.state.context = build_request_context(
            user_id=request.state.user_id,
            organization_id=request.state.organization_id,
            trace_id=getattr(request.state, "trace_id", ""),
        )

        return await call_next(request)
