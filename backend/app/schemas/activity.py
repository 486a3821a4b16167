from datetime import datetime

from pydantic import BaseModel, Field

from app.models.activity_log import ActivityAction


class ActivityLogOut(BaseModel):
    id: str
    user_id: str | None
    action: ActivityAction
    entity_type: str | None
    entity_id: str | None
    operation_id: str | None = None
    details: dict = Field(default_factory=dict)
    created_at: datetime

    model_config = {"from_attributes": True}
