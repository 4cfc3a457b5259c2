from dataclasses import dataclass


@dataclass(frozen=True)
class RequestContext:
    """Acting user for one request.

    Passed explicitly into every service call instead of being looked up from
    framework state inside the services.
    """

    user_id: str | None
    organization_id: str | None
    trace_id: str


def build_request_context(
    *,
    user_id: str | None,
    organization_id: str | None,
    trace_id: str,
) -> RequestContext:
    return RequestContext(
        user_id=user_id,
        organization_id=organization_id,
        trace_id=trace_id,
    )

