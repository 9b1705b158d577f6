"""Tests for covenant/evaluator.py: quiz scoring and rubric loading."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from codestake.canon.schemas import SchemaValidationError
from codestake.covenant.evaluator import evaluate, load_rubric, load_submission
from codestake.covenant.models import QuizSubmission, Rubric

CODE = "def fib(n):\n    return n if n < 2 else fib(n - 1) + fib(n - 2)\n"


def _answers(*options: int) -> dict[int, int]:
    return dict(enumerate(options))


def test_three_of_five_with_short_code_fails():
    result = evaluate(QuizSubmission(_answers(0, 0, 0, 1, 1), "print(1)xx"), Rubric.default(5))
    assert result.score == 60.0
    assert not result.passed


def test_three_of_five_with_code_passes():
    result = evaluate(QuizSubmission(_answers(0, 0, 0, 1, 1), CODE), Rubric.default(5))
    assert result.passed
    assert result.score == 60.0


def test_two_of_five_fails():
    result = evaluate(QuizSubmission(_answers(0, 0, 1, 1, 1), CODE), Rubric.default(5))
    assert not result.passed
    assert result.score == 40.0


def test_code_length_boundary():
    rubric = Rubric.default(1)
    assert not evaluate(QuizSubmission({0: 0}, "x" * 50), rubric).passed
    assert evaluate(QuizSubmission({0: 0}, "x" * 51), rubric).passed
    # Surrounding whitespace does not count
    assert not evaluate(QuizSubmission({0: 0}, "   " + "x" * 50 + "\n\n"), rubric).passed


def test_threshold_is_exact():
    rubric = Rubric({0: 1, 1: 1, 2: 1}, pass_percentage=66.67, min_code_length=0)
    assert not evaluate(QuizSubmission({0: 1, 1: 1}), rubric).passed
    rubric = Rubric({0: 1, 1: 1, 2: 1}, pass_percentage=66.66, min_code_length=0)
    result = evaluate(QuizSubmission({0: 1, 1: 1}), rubric)
    assert result.passed
    assert result.score == 66.67


def test_unknown_and_missing_answers():
    rubric = Rubric({0: 2, 1: 3}, pass_percentage=50, min_code_length=0)
    result = evaluate(QuizSubmission({1: 3, 7: 0}), rubric)
    assert result.score == 50.0
    assert result.passed


def test_evaluation_is_idempotent():
    submission = QuizSubmission(_answers(0, 1, 0, 0, 2), CODE)
    rubric = Rubric.default(5)
    assert evaluate(submission, rubric) == evaluate(submission, rubric)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"correct_options": {}, "pass_percentage": 60, "min_code_length": 0},
        {"correct_options": {0: 0}, "pass_percentage": 101, "min_code_length": 0},
        {"correct_options": {0: 0}, "pass_percentage": 60, "min_code_length": -1},
    ],
)
def test_invalid_rubric(kwargs):
    with pytest.raises(ValueError):
        Rubric(**kwargs)


def test_default_rubric_needs_questions():
    with pytest.raises(ValueError):
        Rubric.default(0)


def test_load_rubric_and_submission(tmp_path: Path):
    rubric_path = tmp_path / "rubric.json"
    rubric_path.write_text(
        json.dumps({"title": "Week 1", "correct_options": {"0": 2, "1": 0}, "pass_percentage": 50, "min_code_length": 10})
    )
    answers_path = tmp_path / "answers.json"
    answers_path.write_text(json.dumps({"answers": {"0": 2, "1": 1}, "code": "print('hello')"}))

    rubric = load_rubric(rubric_path)
    submission = load_submission(answers_path)

    assert rubric.title == "Week 1"
    assert rubric.correct_options == {0: 2, 1: 0}
    assert evaluate(submission, rubric).passed


def test_load_rubric_rejects_bad_schema(tmp_path: Path):
    path = tmp_path / "rubric.json"
    path.write_text(json.dumps({"correct_options": {"a": 1}, "pass_percentage": 150, "min_code_length": 1}))

    with pytest.raises(SchemaValidationError) as exc_info:
        load_rubric(path)
    assert len(exc_info.value.errors) >= 2


def test_load_submission_rejects_bad_schema(tmp_path: Path):
    path = tmp_path / "answers.json"
    path.write_text(json.dumps({"answers": {"0": "b"}}))

    with pytest.raises(SchemaValidationError):
        load_submission(path)
