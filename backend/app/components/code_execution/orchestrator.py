"""Run a candidate's code against a question's test cases and aggregate the outcome."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Sequence

from .judge0_client import LANGUAGE_IDS, Judge0Client

logger = logging.getLogger(__name__)

STATUS_SUCCESS = "SUCCESS"
STATUS_RUNTIME_ERROR = "RUNTIME_ERROR"
STATUS_ERROR = "ERROR"

MAX_OUTPUT_CHARS = 8000
MAX_CASE_TEXT_CHARS = 2000
TRUNCATION_MARKER = "\n…[truncated]"
OUTPUT_SEPARATOR = "\n---\n"
DEADLINE_EXCEEDED = "Execution deadline exceeded"
HIDDEN_CASE_FAILED = "One or more hidden test cases failed"


@dataclass
class TestCaseSpec:
    __test__ = False

    id: int
    input: str
    expected_output: str
    is_hidden: bool = False
    points: float = 0.0
    timeout_ms: Optional[int] = None
    memory_limit_mb: Optional[int] = None


@dataclass
class TestCaseResult:
    __test__ = False

    test_case_id: int
    passed: bool
    hidden: bool
    input: Optional[str] = None
    expected_output: Optional[str] = None
    actual_output: Optional[str] = None
    error: Optional[str] = None
    execution_time_ms: Optional[float] = None
    memory_used_mb: Optional[float] = None
    points: float = 0.0


@dataclass
class ExecutionResult:
    success: bool
    status: str
    output: str
    error: Optional[str]
    execution_time_ms: float
    memory_used_mb: float
    test_results: list[TestCaseResult] = field(default_factory=list)

    @property
    def passed_tests(self) -> int:
        return sum(1 for r in self.test_results if r.passed)

    @property
    def total_tests(self) -> int:
        return len(self.test_results)


def truncate_text(value: Optional[str], limit: int) -> Optional[str]:
    if value is None or len(value) <= limit:
        return value
    return value[:limit] + TRUNCATION_MARKER


def execute_test_cases(
    client: Judge0Client,
    code: str,
    language: str,
    test_cases: Sequence[TestCaseSpec],
    *,
    default_timeout_ms: int = 5000,
    default_memory_mb: int = 256,
    deadline: Optional[float] = None,
    clock: Optional[Callable[[], float]] = None,
) -> ExecutionResult:
    """Execute test cases one after another and aggregate their results.

    A failing case (sandbox error, timeout, unreachable API) is recorded on
    that case and the remaining cases still run. Once ``deadline`` passes the
    remaining cases are marked failed without contacting the sandbox.
    """
    language_id = LANGUAGE_IDS[language]
    clock = clock or client.clock
    results: list[TestCaseResult] = []

    for case in test_cases:
        if deadline is not None and clock() >= deadline:
            results.append(TestCaseResult(test_case_id=case.id, passed=False, hidden=case.is_hidden,
                                          input=case.input, expected_output=case.expected_output,
                                          error=DEADLINE_EXCEEDED, points=case.points))
            continue
        run = client.run_test_case(
            code,
            language_id,
            case.input or "",
            case.expected_output or "",
            timeout_ms=case.timeout_ms or default_timeout_ms,
            memory_limit_mb=case.memory_limit_mb or default_memory_mb,
            deadline=deadline,
        )
        results.append(
            TestCaseResult(
                test_case_id=case.id,
                passed=run.passed,
                hidden=case.is_hidden,
                input=case.input,
                expected_output=case.expected_output,
                actual_output=run.output,
                error=run.error,
                execution_time_ms=run.execution_time_ms,
                memory_used_mb=run.memory_used_mb,
                points=case.points,
            )
        )

    all_passed = bool(results) and all(r.passed for r in results)
    if all_passed:
        status = STATUS_SUCCESS
    elif any(r.actual_output is not None for r in results):
        status = STATUS_RUNTIME_ERROR
    else:
        # nothing ever came back from the sandbox
        status = STATUS_ERROR

    # hidden cases never contribute text to the aggregate output or error
    output = OUTPUT_SEPARATOR.join(r.actual_output for r in results if r.actual_output and not r.hidden)
    visible_errors = [r.error for r in results if r.error and not r.hidden]
    if visible_errors:
        error = visible_errors[0]
    elif any(r.error for r in results if r.hidden):
        error = HIDDEN_CASE_FAILED
    else:
        error = None

    logger.info(
        "Executed %d test cases language=%s passed=%d status=%s",
        len(results), language, sum(1 for r in results if r.passed), status,
    )
    return ExecutionResult(
        success=all_passed,
        status=status,
        output=output,
        error=error,
        execution_time_ms=sum(r.execution_time_ms or 0.0 for r in results),
        memory_used_mb=max((r.memory_used_mb or 0.0 for r in results), default=0.0),
        test_results=results,
    )


def compute_points(result: ExecutionResult) -> float:
    return round(sum(r.points for r in result.test_results if r.passed), 2)


def redact_test_results(results: Sequence[TestCaseResult], is_submission: bool) -> list[dict[str, Any]]:
    """Serialize test results for the candidate.

    Hidden cases never expose inputs or outputs. On submission visible cases
    are reduced the same way; dry runs show visible cases in full.
    """
    payload: list[dict[str, Any]] = []
    for r in results:
        item: dict[str, Any] = {
            "testCaseId": r.test_case_id,
            "passed": r.passed,
            "hidden": r.hidden,
            "error": truncate_text(r.error, MAX_CASE_TEXT_CHARS),
            "executionTimeMs": r.execution_time_ms,
        }
        if not r.hidden and not is_submission:
            item.update(
                {
                    "input": truncate_text(r.input, MAX_CASE_TEXT_CHARS),
                    "expectedOutput": truncate_text(r.expected_output, MAX_CASE_TEXT_CHARS),
                    "actualOutput": truncate_text(r.actual_output, MAX_CASE_TEXT_CHARS),
                    "memoryUsedMb": r.memory_used_mb,
                }
            )
        payload.append(item)
    return payload


def stored_test_results(results: Sequence[TestCaseResult]) -> list[dict[str, Any]]:
    """Full per-case detail for the audit log, truncated but never redacted."""
    return [
        {
            "testCaseId": r.test_case_id,
            "passed": r.passed,
            "hidden": r.hidden,
            "actualOutput": truncate_text(r.actual_output, MAX_CASE_TEXT_CHARS),
            "error": truncate_text(r.error, MAX_CASE_TEXT_CHARS),
            "executionTimeMs": r.execution_time_ms,
            "memoryUsedMb": r.memory_used_mb,
            "points": r.points,
        }
        for r in results
    ]
