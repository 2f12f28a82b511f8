from .attempt import AnswerRequest, AttemptStartRequest
from .code_execution import CodeExecutionRequest
from .credits import LedgerEntryResponse
from .invite import InviteIssueRequest
from .proctoring import ProctoringBatch, ProctoringEventIn
