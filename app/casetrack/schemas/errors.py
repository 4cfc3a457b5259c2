from pydantic import BaseModel


class ApiErrorResponse(BaseModel):
    code: str
    message: str
    details: dict | None = None
    trace_id: str | None = None


class ApiValidationErrorItem(BaseModel):
    field: str | None = None
    message: str
    type: str
    loc: list[str | int] | None = None


class ApiValidationErrorDetails(BaseModel):
    errors: list[ApiValidationErrorItem]


class ApiValidationErrorResponse(ApiErrorResponse):
    details: ApiValidationErrorDetails | dict | None = None


class TransitionErrorDetails(BaseModel):
    rule: str
    status_type_id: str | None = None
    status_code: str | None = None
    reason_id: str | None = None
    reason_code: str | None = None

    model_config = {"extra": "allow"}


class TransitionErrorResponse(ApiErrorResponse):
    details: TransitionErrorDetails | dict | None = None


STATUS_ERROR_RESPONSES = {
    401: {"model": ApiErrorResponse, "description": "Missing or invalid token"},
    403: {"model": ApiErrorResponse, "description": "Permission or territory denied"},
    404: {"model": ApiErrorResponse, "description": "Client or status not found"},
    409: {"model": TransitionErrorResponse, "description": "Invalid transition or write conflict"},
    422: {"model": ApiValidationErrorResponse, "description": "Validation error"},
}
