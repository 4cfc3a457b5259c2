from typing import Literal

from pydantic import BaseModel


class TerritoryResponse(BaseModel):
    user_id: str
    organization_id: str
    scope: Literal["none", "territory", "all"]
    branch_ids: list[str]
    trace_id: str | None = None
