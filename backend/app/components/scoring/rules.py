"""Scoring constants: answer points, penalties, and timing thresholds."""

MCQ_CORRECT_POINTS = 1.0
# Applied instead of 0 when the template penalizes wrong answers
MCQ_WRONG_PENALTY = -0.25

# A coding question with no test cases configured still counts as one point
CODING_FALLBACK_MAX_POINTS = 1.0

# Average seconds per answered question below which the attempt is flagged
TOO_FAST_AVG_SECONDS = 5

CODE_SUBMITTED_SENTINEL = "__CODE_SUBMITTED__"
