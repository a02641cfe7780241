"""Auto-grading for objective question types."""
import json
from dataclasses import dataclass
from typing import Optional

from homework_sync.answers import GridAnswer, MalformedAnswer, SelectionAnswer, TextAnswer, to_answer
from homework_sync.models import Question, QuestionType


@dataclass(frozen=True)
class GradeResult:
    is_correct: Optional[bool]  # None when the question is not auto-graded
    points_earned: int = 0


UNGRADED = GradeResult(is_correct=None, points_earned=0)
INCORRECT = GradeResult(is_correct=False, points_earned=0)


def normalize_text(value: str) -> str:
    return value.strip().lower()


def _correct_selection(correct_answer) -> frozenset[str] | None:
    if isinstance(correct_answer, str):
        try:
            correct_answer = json.loads(correct_answer or "[]")
        except json.JSONDecodeError:
            return None
    if not isinstance(correct_answer, (list, tuple)):
        return None
    if not all(isinstance(item, str) for item in correct_answer):
        return None
    return frozenset(correct_answer)


def _correct_grid(correct_answer) -> dict[int, int] | None:
    if not isinstance(correct_answer, dict):
        return None
    try:
        return {int(row): int(col) for row, col in correct_answer.items()}
    except (TypeError, ValueError):
        return None


def grade(question: Question, raw_answer) -> GradeResult:
    """Grade a student's answer. Never raises.

    * ``multiple-choice`` -- trimmed, case-insensitive match against the
      single correct answer.
    * ``tickbox`` -- the selected set must equal the correct set exactly;
      selection order is irrelevant and there is no partial credit.
    * ``grid`` -- every row must select the keyed column.
    * ``short-answer`` / ``long-answer`` -- not auto-graded.

    A payload that does not fit the question type, or a question with an
    unusable answer key, grades as incorrect with zero points.
    """
    if question.question_type in (QuestionType.SHORT_ANSWER, QuestionType.LONG_ANSWER):
        return UNGRADED
    if question.correct_answer is None:
        return UNGRADED
    try:
        answer = to_answer(question, raw_answer)
    except MalformedAnswer:
        return INCORRECT

    if isinstance(answer, TextAnswer):
        if not isinstance(question.correct_answer, str):
            return INCORRECT
        correct = normalize_text(answer.text) == normalize_text(question.correct_answer)
    elif isinstance(answer, SelectionAnswer):
        expected = _correct_selection(question.correct_answer)
        if expected is None:
            return INCORRECT
        correct = frozenset(answer.selected) == expected
    elif isinstance(answer, GridAnswer):
        expected = _correct_grid(question.correct_answer)
        if expected is None:
            return INCORRECT
        correct = answer.cells == expected
    else:
        return INCORRECT

    return GradeResult(is_correct=correct, points_earned=question.points if correct else 0)
