"""
Milestone Evaluator - pure quiz scoring.

No I/O except the JSON loaders, no clock, no randomness: the same
submission and rubric always produce the same result.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from ..canon.schemas import SchemaRegistry, load_json
from .models import QuizResult, QuizSubmission, Rubric


def evaluate(submission: QuizSubmission, rubric: Rubric) -> QuizResult:
    """
    Score a quiz submission.

    The score is the percentage of rubric questions answered with the
    correct option; unanswered questions count as wrong and answers to
    questions the rubric does not know are ignored.  The submission passes
    when the score reaches ``rubric.pass_percentage`` and the stripped code
    answer is at least ``rubric.min_code_length`` characters long.
    """
    total = rubric.question_count
    correct = sum(
        1 for question, option in rubric.correct_options.items()
        if submission.answers.get(question) == option
    )
    # Integer comparison avoids rounding at the threshold
    score_ok = correct * 100 >= rubric.pass_percentage * total
    code_ok = len(submission.code.strip()) >= rubric.min_code_length
    return QuizResult(passed=score_ok and code_ok, score=round(correct * 100 / total, 2))


def load_rubric(path: Path, registry: Optional[SchemaRegistry] = None) -> Rubric:
    registry = registry or SchemaRegistry.default()
    payload = load_json(path)
    registry.validate_instance(payload, "quiz.rubric.schema.json")
    return Rubric.from_dict(payload)


def load_submission(path: Path, registry: Optional[SchemaRegistry] = None) -> QuizSubmission:
    registry = registry or SchemaRegistry.default()
    payload = load_json(path)
    registry.validate_instance(payload, "quiz.submission.schema.json")
    return QuizSubmission.from_dict(payload)
