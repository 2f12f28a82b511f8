from typing import List, Optional

from pydantic import BaseModel, Field


class AttemptStartRequest(BaseModel):
    token: str = Field(min_length=1, max_length=256)


class AnswerRequest(BaseModel):
    question_id: int = Field(alias="questionId")
    selected_options: List[str] = Field(default_factory=list, max_length=50, alias="selectedOptions")
    time_spent_seconds: Optional[int] = Field(default=None, ge=0, alias="timeSpentSeconds")

    model_config = {"populate_by_name": True}
