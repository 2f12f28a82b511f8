from typing import Optional

from pydantic import BaseModel, Field


class InviteIssueRequest(BaseModel):
    template_id: Optional[int] = Field(default=None, alias="templateId")
    expires_in_days: Optional[int] = Field(default=None, ge=1, le=90, alias="expiresInDays")

    model_config = {"populate_by_name": True}
