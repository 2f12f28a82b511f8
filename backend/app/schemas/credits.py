from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..models.assessment_template import AssessmentDifficulty, AssessmentType
from ..models.credit_ledger import LedgerStatus


class LedgerEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    invite_id: int
    kind: str
    cycle: int
    status: LedgerStatus
    amount: float
    reserved_amount: Optional[float] = None
    charged_amount: Optional[float] = None
    refunded_amount: Optional[float] = None
    assessment_type: Optional[AssessmentType] = None
    difficulty: Optional[AssessmentDifficulty] = None
    meta: Optional[Dict[str, Any]] = Field(default=None, validation_alias="entry_metadata")
    created_at: Optional[datetime] = None
