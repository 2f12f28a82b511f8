from __future__ import annotations

from typing import Optional, Protocol

from ...components.code_execution.judge0_client import Judge0Client, SandboxRun
from ...components.notifications.email_client import InviteEmail, build_invite_mailer
from ...platform.config import settings


class SandboxAdapter(Protocol):
    def run_test_case(
        self,
        code: str,
        language_id: int,
        stdin: str,
        expected_output: str,
        *,
        timeout_ms: int = 5000,
        memory_limit_mb: int = 256,
        deadline: float | None = None,
    ) -> SandboxRun: ...


class EmailAdapter(Protocol):
    def send_assessment_invite(self, message: InviteEmail) -> dict: ...


def build_sandbox_adapter() -> Judge0Client:
    return Judge0Client(
        settings.JUDGE0_API_URL,
        settings.JUDGE0_API_KEY,
        settings.JUDGE0_RAPIDAPI_HOST,
        timeout=settings.JUDGE0_REQUEST_TIMEOUT_SECONDS,
        poll_interval=settings.JUDGE0_POLL_INTERVAL_SECONDS,
        max_poll_attempts=settings.JUDGE0_POLL_MAX_ATTEMPTS,
    )


def build_email_adapter() -> Optional[EmailAdapter]:
    """None when email delivery is not configured; invites then report ``skipped``."""
    return build_invite_mailer()
