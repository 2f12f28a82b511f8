"""Attempt scoring: MCQ grading and section/overall aggregation.

The engine is pure. Callers load the template, questions and answers, and
persist the returned :class:`AttemptScore`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Sequence

from ...models.assessment_template import AssessmentQuestion, AssessmentTemplate, QuestionType
from .rules import (
    CODING_FALLBACK_MAX_POINTS,
    MCQ_CORRECT_POINTS,
    MCQ_WRONG_PENALTY,
    TOO_FAST_AVG_SECONDS,
)


@dataclass
class McqGrade:
    is_correct: bool
    points_earned: float


@dataclass
class AttemptScore:
    total_score: int
    section_scores: Dict[str, int]
    passed: bool
    passing_score: int
    earned_points: float
    max_points: float
    time_spent_seconds: int
    flags: Dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "totalScore": self.total_score,
            "sectionScores": self.section_scores,
            "passed": self.passed,
            "passingScore": self.passing_score,
            "earnedPoints": self.earned_points,
            "maxPoints": self.max_points,
            "timeSpent": self.time_spent_seconds,
        }


def grade_mcq(options: Sequence[Mapping[str, Any]] | None, selected: Iterable[str], penalize_wrong: bool) -> McqGrade:
    """Exact set match against the options flagged correct."""
    correct = {str(o.get("id")) for o in (options or []) if isinstance(o, Mapping) and o.get("isCorrect")}
    chosen = {str(s) for s in selected}
    is_correct = bool(correct) and chosen == correct
    if is_correct:
        return McqGrade(is_correct=True, points_earned=MCQ_CORRECT_POINTS)
    return McqGrade(is_correct=False, points_earned=MCQ_WRONG_PENALTY if penalize_wrong else 0.0)


def question_max_points(question: AssessmentQuestion, coding_max_points: Mapping[int, float]) -> float:
    if question.type == QuestionType.CODING:
        return float(coding_max_points.get(question.id) or CODING_FALLBACK_MAX_POINTS)
    return MCQ_CORRECT_POINTS


def _percent(earned: float, maximum: float) -> int:
    if maximum <= 0:
        return 0
    return max(0, int(round(earned / maximum * 100)))


def score_attempt(
    template: AssessmentTemplate,
    questions: List[AssessmentQuestion],
    answers: List[Any],
    coding_max_points: Mapping[int, float] | None = None,
) -> AttemptScore:
    """Combine MCQ and coding points into overall and per-section percentages.

    ``answers`` are AttemptAnswer rows (anything with question_id,
    points_earned and time_spent_seconds). ``coding_max_points`` maps a coding
    question id to the sum of its test case points.
    """
    coding_max_points = coding_max_points or {}
    by_question = {a.question_id: a for a in answers}

    earned_total = 0.0
    max_total = 0.0
    section_earned: Dict[str, float] = {}
    section_max: Dict[str, float] = {}
    for question in questions:
        maximum = question_max_points(question, coding_max_points)
        answer = by_question.get(question.id)
        earned = float(answer.points_earned or 0.0) if answer else 0.0
        max_total += maximum
        earned_total += earned
        if question.section:
            section_earned[question.section] = section_earned.get(question.section, 0.0) + earned
            section_max[question.section] = section_max.get(question.section, 0.0) + maximum

    # Declared sections always appear, even with no questions answered
    section_names = [str(s.get("name")) for s in (template.sections or []) if isinstance(s, Mapping) and s.get("name")]
    for name in section_max:
        if name not in section_names:
            section_names.append(name)
    section_scores = {
        name: _percent(section_earned.get(name, 0.0), section_max.get(name, 0.0)) for name in section_names
    }

    total_score = _percent(earned_total, max_total)
    passing_score = int(template.passing_score or 0)
    time_spent = sum(int(a.time_spent_seconds or 0) for a in answers)

    flags: Dict[str, Any] = {}
    timed = [a for a in answers if a.time_spent_seconds is not None]
    if timed and sum(int(a.time_spent_seconds) for a in timed) / len(timed) < TOO_FAST_AVG_SECONDS:
        flags["tooFast"] = True

    return AttemptScore(
        total_score=total_score,
        section_scores=section_scores,
        passed=total_score >= passing_score,
        passing_score=passing_score,
        earned_points=round(earned_total, 2),
        max_points=round(max_total, 2),
        time_spent_seconds=time_spent,
        flags=flags,
    )
