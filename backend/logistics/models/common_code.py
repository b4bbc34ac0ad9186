"""Common code model (configuration store rows)."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class CommonCode(BaseModel):
    """One row of the common code table.

    Rows are keyed by (group_code, code). Group ``PG_PROC`` holds the
    processing steps: sort_order drives run order and is_used enables or
    disables a step.
    """

    model_config = ConfigDict(from_attributes=True)

    group_code: str
    code: str
    code_name: str
    description: str | None = None
    sort_order: int = 0
    is_used: bool = True
    attribute1: str | None = None
    attribute2: str | None = None
    created_by: str | None = None
    created_at: datetime | None = None
    updated_by: str | None = None
    updated_at: datetime | None = None
