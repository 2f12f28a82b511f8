"""
Judge0 client for sandboxed code execution.

Submits candidate code with stdin and the expected output to a Judge0
instance (hosted through RapidAPI or self-hosted), then polls the submission
token until the sandbox reports a terminal status.
"""

from __future__ import annotations

import base64
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

import httpx

logger = logging.getLogger(__name__)

# Language ID mapping for Judge0 CE
LANGUAGE_IDS: dict[str, int] = {
    "javascript": 63,  # Node.js
    "typescript": 74,
    "python": 71,  # Python 3
    "java": 62,
    "cpp": 54,  # C++ (GCC 9.2.0)
    "c": 50,  # C (GCC 9.2.0)
    "csharp": 51,
    "go": 60,
    "rust": 73,
    "ruby": 72,
    "php": 68,
    "swift": 83,
    "kotlin": 78,
}

LANGUAGE_DISPLAY_NAMES: dict[str, str] = {
    "javascript": "JavaScript (Node.js)",
    "typescript": "TypeScript",
    "python": "Python 3",
    "java": "Java",
    "cpp": "C++",
    "c": "C",
    "csharp": "C#",
    "go": "Go",
    "rust": "Rust",
    "ruby": "Ruby",
    "php": "PHP",
    "swift": "Swift",
    "kotlin": "Kotlin",
}

STATUS_IN_QUEUE = 1
STATUS_PROCESSING = 2
STATUS_ACCEPTED = 3


class Judge0Error(RuntimeError):
    """Judge0 rejected a request or never produced a terminal result."""


def supported_languages() -> list[str]:
    return list(LANGUAGE_IDS.keys())


def is_language_supported(language: str) -> bool:
    return language in LANGUAGE_IDS


def language_display_name(language: str) -> str:
    return LANGUAGE_DISPLAY_NAMES.get(language, language)


def _b64encode(value: str | None) -> str:
    return base64.b64encode((value or "").encode("utf-8")).decode("ascii")


def _b64decode(value: str | None) -> str | None:
    if not value:
        return None
    try:
        return base64.b64decode(value).decode("utf-8", errors="replace")
    except (ValueError, TypeError):
        return value


@dataclass
class SandboxRun:
    passed: bool
    output: Optional[str] = None
    error: Optional[str] = None
    execution_time_ms: Optional[float] = None
    memory_used_mb: Optional[float] = None
    status_id: Optional[int] = None
    status_description: Optional[str] = None


class Judge0Client:
    """Thin synchronous Judge0 API client with a bounded polling loop."""

    def __init__(
        self,
        api_url: str,
        api_key: str = "",
        rapidapi_host: str = "",
        *,
        timeout: float = 30.0,
        poll_interval: float = 0.5,
        max_poll_attempts: int = 20,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialise the Judge0 client.

        Args:
            api_url: Base URL of the Judge0 API.
            api_key: RapidAPI key; leave empty for a self-hosted instance.
            rapidapi_host: RapidAPI host header value.
            timeout: Per HTTP request timeout in seconds.
            poll_interval: Seconds between result polls.
            max_poll_attempts: Hard ceiling on polls per submission.
            transport: Optional httpx transport (used by tests).
        """
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.rapidapi_host = rapidapi_host
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.max_poll_attempts = max_poll_attempts
        self._transport = transport
        self._sleep = sleep
        self.clock = clock

    @property
    def headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key and self.rapidapi_host:
            headers["X-RapidAPI-Key"] = self.api_key
            headers["X-RapidAPI-Host"] = self.rapidapi_host
        return headers

    def _request(self, method: str, path: str, *, json: dict | None = None, params: dict | None = None) -> dict:
        url = f"{self.api_url}{path}"
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.request(method, url, json=json, params=params, headers=self.headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            body = exc.response.text[:500] if exc.response is not None else ""
            logger.error("Judge0 %s %s failed: status=%s body=%s", method, path, exc.response.status_code, body)
            raise Judge0Error(f"Judge0 API error ({exc.response.status_code})") from exc
        except httpx.HTTPError as exc:
            logger.error("Judge0 %s %s unreachable: %s", method, path, exc)
            raise Judge0Error(f"Judge0 unreachable: {exc.__class__.__name__}") from exc
        return response.json() if response.content else {}

    def create_submission(
        self,
        *,
        source_code: str,
        language_id: int,
        stdin: str,
        expected_output: str,
        cpu_time_limit: float,
        memory_limit: int,
    ) -> str:
        """
        Create a submission without waiting for it.

        Args:
            cpu_time_limit: Seconds.
            memory_limit: Kilobytes.

        Returns:
            The submission token to poll.
        """
        payload = {
            "source_code": _b64encode(source_code),
            "language_id": language_id,
            "stdin": _b64encode(stdin),
            "expected_output": _b64encode(expected_output),
            "cpu_time_limit": cpu_time_limit,
            "memory_limit": memory_limit,
        }
        data = self._request(
            "POST",
            "/submissions",
            json=payload,
            params={"base64_encoded": "true", "wait": "false"},
        )
        token = data.get("token")
        if not token:
            raise Judge0Error("Judge0 did not return a submission token")
        return str(token)

    def get_submission(self, token: str) -> dict:
        return self._request(
            "GET",
            f"/submissions/{token}",
            params={"base64_encoded": "true", "fields": "*"},
        )

    def wait_for_result(self, token: str, deadline: float | None = None) -> dict:
        """
        Poll until Judge0 reports a terminal status.

        Args:
            token: Submission token.
            deadline: Optional ``clock()`` value after which polling stops early.

        Raises:
            Judge0Error: When the poll budget or the deadline runs out.
        """
        for attempt in range(self.max_poll_attempts):
            result = self.get_submission(token)
            status_id = int((result.get("status") or {}).get("id") or 0)
            if status_id not in (STATUS_IN_QUEUE, STATUS_PROCESSING):
                return result
            if attempt == self.max_poll_attempts - 1:
                break
            if deadline is not None and self.clock() + self.poll_interval > deadline:
                raise Judge0Error("Execution deadline exceeded while waiting for the sandbox")
            self._sleep(self.poll_interval)
        raise Judge0Error("Execution timeout - polling exceeded max attempts")

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
    ) -> SandboxRun:
        """
        Execute one test case end to end. Never raises for sandbox failures.

        Returns:
            SandboxRun with ``passed`` true only when Judge0 reports Accepted.
        """
        try:
            token = self.create_submission(
                source_code=code,
                language_id=language_id,
                stdin=stdin,
                expected_output=expected_output,
                cpu_time_limit=timeout_ms / 1000,
                memory_limit=int(memory_limit_mb * 1024),
            )
            result = self.wait_for_result(token, deadline=deadline)
        except Judge0Error as exc:
            logger.warning("Test case execution failed: %s", exc)
            return SandboxRun(passed=False, error=str(exc))

        status = result.get("status") or {}
        status_id = int(status.get("id") or 0)
        description = status.get("description")
        stdout = _b64decode(result.get("stdout"))
        stderr = _b64decode(result.get("stderr"))
        compile_output = _b64decode(result.get("compile_output"))
        accepted = status_id == STATUS_ACCEPTED

        error = compile_output or stderr or (None if accepted else description)
        time_raw = result.get("time")
        memory_raw = result.get("memory")
        try:
            execution_time_ms = float(time_raw) * 1000 if time_raw not in (None, "") else None
        except (TypeError, ValueError):
            execution_time_ms = None
        try:
            memory_used_mb = float(memory_raw) / 1024 if memory_raw not in (None, "") else None
        except (TypeError, ValueError):
            memory_used_mb = None

        return SandboxRun(
            passed=accepted,
            output=stdout if stdout is not None else (stderr or ""),
            error=error,
            execution_time_ms=execution_time_ms,
            memory_used_mb=memory_used_mb,
            status_id=status_id,
            status_description=description,
        )
