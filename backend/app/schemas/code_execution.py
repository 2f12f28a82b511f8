from pydantic import BaseModel, Field


class CodeExecutionRequest(BaseModel):
    attempt_id: int = Field(alias="attemptId")
    question_id: int = Field(alias="questionId")
    # length is checked against MAX_CODE_CHARS in the service
    code: str = Field(min_length=1)
    language: str = Field(min_length=1, max_length=32)
    is_submission: bool = Field(default=False, alias="isSubmission")

    model_config = {"populate_by_name": True}
