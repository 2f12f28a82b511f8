from .company import Company
from .user import User
from .job import Application, Job, JobAssessment
from .assessment_template import (
    AssessmentDifficulty,
    AssessmentQuestion,
    AssessmentTemplate,
    AssessmentType,
    QuestionType,
    TestCase,
)
from .invite import AssessmentInvite, InviteStatus
from .attempt import AssessmentAttempt, AttemptAnswer, AttemptStatus, ProctoringSeverity
from .credit_ledger import CreditLedgerEntry, LedgerStatus
from .proctoring_event import ProctoringEvent
from .code_execution import CodeExecution

__all__ = [
    "Company",
    "User",
    "Application",
    "Job",
    "JobAssessment",
    "AssessmentDifficulty",
    "AssessmentQuestion",
    "AssessmentTemplate",
    "AssessmentType",
    "QuestionType",
    "TestCase",
    "AssessmentInvite",
    "InviteStatus",
    "AssessmentAttempt",
    "AttemptAnswer",
    "AttemptStatus",
    "ProctoringSeverity",
    "CreditLedgerEntry",
    "LedgerStatus",
    "ProctoringEvent",
    "CodeExecution",
]
