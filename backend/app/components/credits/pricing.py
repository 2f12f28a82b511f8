"""Credit pricing per assessment kind and difficulty.

- reserve: credits held when the invitation is sent
- complete: credits added on completion
- total: reserve + complete, what a completed assessment costs
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable

from ...models.assessment_template import AssessmentDifficulty, AssessmentType


@dataclass(frozen=True)
class AssessmentPricing:
    reserve: Decimal
    complete: Decimal
    total: Decimal

    def as_dict(self) -> dict[str, str]:
        return {"reserve": str(self.reserve), "complete": str(self.complete), "total": str(self.total)}


def _price(reserve: str, complete: str) -> AssessmentPricing:
    r, c = Decimal(reserve), Decimal(complete)
    return AssessmentPricing(reserve=r, complete=c, total=r + c)


ASSESSMENT_PRICING: dict[AssessmentType, dict[AssessmentDifficulty, AssessmentPricing]] = {
    # Auto-graded, no sandbox cost
    AssessmentType.MCQ: {
        AssessmentDifficulty.JUNIOR: _price("0.5", "0.5"),
        AssessmentDifficulty.MID: _price("0.5", "0.5"),
        AssessmentDifficulty.SENIOR: _price("0.5", "0.5"),
    },
    AssessmentType.CODING: {
        AssessmentDifficulty.JUNIOR: _price("0.5", "2.0"),
        AssessmentDifficulty.MID: _price("0.5", "2.5"),
        AssessmentDifficulty.SENIOR: _price("0.5", "3.5"),
    },
    AssessmentType.MIXED: {
        AssessmentDifficulty.JUNIOR: _price("0.5", "2.5"),
        AssessmentDifficulty.MID: _price("0.5", "3.0"),
        AssessmentDifficulty.SENIOR: _price("0.5", "4.0"),
    },
}


def get_assessment_cost(assessment_type: AssessmentType | str, difficulty: AssessmentDifficulty | str) -> AssessmentPricing:
    return ASSESSMENT_PRICING[AssessmentType(assessment_type)][AssessmentDifficulty(difficulty)]


def calculate_total_cost(assessments: Iterable[tuple[AssessmentType | str, AssessmentDifficulty | str]]) -> Decimal:
    """Cost of completing every (type, difficulty) pair."""
    total = Decimal("0")
    for assessment_type, difficulty in assessments:
        total += get_assessment_cost(assessment_type, difficulty).total
    return total


def estimate_credits_needed(
    assessment_type: AssessmentType | str,
    difficulty: AssessmentDifficulty | str,
    candidate_count: int,
) -> Decimal:
    return get_assessment_cost(assessment_type, difficulty).total * max(0, int(candidate_count))


def needs_more_credits(effective_balance: Decimal | float, threshold: Decimal | float = Decimal("5")) -> bool:
    return Decimal(str(effective_balance)) < Decimal(str(threshold))


def current_billing_cycle(now: datetime | None = None) -> int:
    """Billing cycle as YYYYMM, used to group ledger entries by month."""
    now = now or datetime.now(timezone.utc)
    return now.year * 100 + now.month


def format_credits(credits: Decimal | float) -> str:
    return f"{Decimal(str(credits)):.1f}"
