"""Answer payloads as a tagged union, one serialization strategy per variant.

Raw answers arrive in three shapes depending on the question type: free text
(multiple-choice, short and long answer), a multi-select list (tickbox) or a
row -> column mapping (grid).  They are converted to typed answers once, at
the boundary, so the grader and the synchronizer never inspect raw shapes.
"""
import json
from dataclasses import dataclass
from typing import ClassVar, Union

from homework_sync.models import GridOptions, Option, Question, QuestionType


class MalformedAnswer(ValueError):
    """The raw payload does not fit the question type."""


@dataclass(frozen=True)
class TextAnswer:
    text: str
    kind: ClassVar[str] = "text"


@dataclass(frozen=True)
class SelectionAnswer:
    selected: tuple[str, ...]  # in the order the student ticked them
    kind: ClassVar[str] = "selection"


@dataclass(frozen=True)
class GridAnswer:
    cells: dict[int, int]  # row index -> column index
    kind: ClassVar[str] = "grid"


Answer = Union[TextAnswer, SelectionAnswer, GridAnswer]

_KIND_BY_TYPE = {
    QuestionType.MULTIPLE_CHOICE: TextAnswer,
    QuestionType.SHORT_ANSWER: TextAnswer,
    QuestionType.LONG_ANSWER: TextAnswer,
    QuestionType.TICKBOX: SelectionAnswer,
    QuestionType.GRID: GridAnswer,
}

_IMAGE_URL_PREFIXES = ("http://", "https://", "/", "data:")


def answer_class(question_type: QuestionType) -> type:
    return _KIND_BY_TYPE[question_type]


def _selection_from(raw) -> SelectionAnswer:
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise MalformedAnswer(f"Tickbox answer is not a JSON list: {raw!r}") from exc
    if not isinstance(raw, (list, tuple, set, frozenset)):
        raise MalformedAnswer(f"Tickbox answer must be a list, got {type(raw).__name__}")
    selected = []
    for item in raw:
        text = item.text if isinstance(item, Option) else item
        if not isinstance(text, str):
            raise MalformedAnswer(f"Tickbox selections must be strings, got {type(text).__name__}")
        if text not in selected:
            selected.append(text)
    return SelectionAnswer(selected=tuple(selected))


def _grid_from(raw) -> GridAnswer:
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise MalformedAnswer(f"Grid answer is not a JSON object: {raw!r}") from exc
    if not isinstance(raw, dict):
        raise MalformedAnswer(f"Grid answer must be a mapping, got {type(raw).__name__}")
    cells = {}
    for row, column in raw.items():
        try:
            row_index = int(row)
        except (TypeError, ValueError) as exc:
            raise MalformedAnswer(f"Grid row key is not an index: {row!r}") from exc
        if isinstance(column, bool) or not isinstance(column, int):
            raise MalformedAnswer(f"Grid column for row {row!r} must be an integer")
        cells[row_index] = column
    return GridAnswer(cells=cells)


def to_answer(question: Question, raw) -> Answer:
    """Convert a raw payload into the answer variant for ``question``.

    Raises ``MalformedAnswer`` when the payload cannot represent an answer to
    this question type.
    """
    expected = answer_class(question.question_type)
    if isinstance(raw, (TextAnswer, SelectionAnswer, GridAnswer)):
        if not isinstance(raw, expected):
            raise MalformedAnswer(
                f"{type(raw).__name__} does not answer a {question.question_type.value} question"
            )
        return raw
    if expected is TextAnswer:
        if isinstance(raw, Option):
            return TextAnswer(raw.text)
        if not isinstance(raw, str):
            raise MalformedAnswer(f"Text answer must be a string, got {type(raw).__name__}")
        return TextAnswer(raw)
    if expected is SelectionAnswer:
        return _selection_from(raw)
    return _grid_from(raw)


def serialize_answer(answer: Answer) -> str:
    if isinstance(answer, TextAnswer):
        return answer.text
    if isinstance(answer, SelectionAnswer):
        return json.dumps(list(answer.selected))
    return json.dumps({str(row): col for row, col in sorted(answer.cells.items())})


def deserialize_answer(response_text: str, kind: str) -> Answer:
    if kind == SelectionAnswer.kind:
        return _selection_from(response_text)
    if kind == GridAnswer.kind:
        return _grid_from(response_text)
    return TextAnswer(response_text)


def answer_payload(answer: Answer) -> str | list[str] | dict[str, int]:
    """Plain payload handed to the presentation layer."""
    if isinstance(answer, TextAnswer):
        return answer.text
    if isinstance(answer, SelectionAnswer):
        return list(answer.selected)
    return {str(row): col for row, col in answer.cells.items()}


def toggle_selection(answer: SelectionAnswer | None, option_text: str) -> SelectionAnswer:
    selected = list(answer.selected) if answer else []
    if option_text in selected:
        selected.remove(option_text)
    else:
        selected.append(option_text)
    return SelectionAnswer(selected=tuple(selected))


def set_grid_cell(answer: GridAnswer | None, row: int, column: int) -> GridAnswer:
    cells = dict(answer.cells) if answer else {}
    cells[row] = column
    return GridAnswer(cells=cells)


def is_answered(question: Question, answer: Answer | None) -> bool:
    if answer is None:
        return False
    if isinstance(answer, TextAnswer):
        return answer.text.strip() != ""
    if isinstance(answer, SelectionAnswer):
        return len(answer.selected) > 0
    if isinstance(question.options, GridOptions):
        return all(row in answer.cells for row in range(len(question.options.rows)))
    return bool(answer.cells)


def option_image_url(option: Option) -> str | None:
    """Return the option's image URL if it is one the image loader can fetch."""
    if not option.image_url:
        return None
    url = option.image_url.strip()
    if url.startswith(_IMAGE_URL_PREFIXES):
        return url
    return None


def question_image_urls(question: Question) -> list[str]:
    """All images for a question, the primary ``image_url`` first, without duplicates."""
    urls = []
    for url in (question.image_url, *question.image_urls):
        if url and url not in urls:
            urls.append(url)
    return urls
