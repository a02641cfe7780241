"""Import assignments from YAML or JSON files."""
import json
import logging
from pathlib import Path

import yaml

from homework_sync.backends import StoreBackend
from homework_sync.models import (
    Assignment,
    GridOptions,
    Question,
    QuestionType,
    assignment_to_record,
    parse_options,
    question_to_record,
)

logger = logging.getLogger(__name__)

CHOICE_TYPES = (QuestionType.MULTIPLE_CHOICE, QuestionType.TICKBOX)
TYPE_NAMES = [t.value for t in QuestionType]


def read_assignment_file(file_path: str | Path) -> dict:
    path = Path(file_path)
    suffix = path.suffix.lower()

    if suffix == ".json":
        data = json.loads(path.read_text())
    elif suffix in (".yaml", ".yml"):
        data = yaml.safe_load(path.read_text())
    else:
        raise ValueError(f"Unsupported assignment file type: {suffix or path.name}")
    if not isinstance(data, dict):
        raise ValueError(f"{path.name} must contain a mapping at the top level")
    return data


def _option_texts(raw) -> list[str]:
    texts = []
    for item in raw or []:
        if isinstance(item, dict):
            texts.append(item.get("text"))
        else:
            texts.append(item)
    return texts


def _validate_question(q, label: str) -> list[str]:
    if not isinstance(q, dict):
        return [f"{label}: must be a mapping"]
    errors = []
    if not isinstance(q.get("id"), str) or not q["id"].strip():
        errors.append(f"{label}: missing id")
    if not isinstance(q.get("question_text"), str) or not q["question_text"].strip():
        errors.append(f"{label}: missing question_text")
    points = q.get("points", 0)
    if isinstance(points, bool) or not isinstance(points, int) or points < 0:
        errors.append(f"{label}: points must be a non-negative integer")

    qtype = q.get("question_type")
    if qtype not in TYPE_NAMES:
        errors.append(f"{label}: question_type must be one of {', '.join(TYPE_NAMES)}")
        return errors
    qtype = QuestionType(qtype)
    correct = q.get("correct_answer")

    if qtype in CHOICE_TYPES:
        texts = _option_texts(q.get("options"))
        if len(texts) < 2 or not all(isinstance(t, str) and t for t in texts):
            errors.append(f"{label}: {qtype.value} needs at least two text options")
        elif qtype is QuestionType.MULTIPLE_CHOICE and correct is not None and correct not in texts:
            errors.append(f"{label}: correct_answer {correct!r} is not one of the options")
        elif qtype is QuestionType.TICKBOX and correct is not None:
            if not isinstance(correct, list) or not all(isinstance(c, str) for c in correct):
                errors.append(f"{label}: correct_answer must be a list of options")
            elif not set(correct) <= set(texts):
                errors.append(f"{label}: correct_answer includes items that are not options")
    elif qtype is QuestionType.GRID:
        options = q.get("options")
        if not isinstance(options, dict) or not options.get("rows") or not options.get("columns"):
            errors.append(f"{label}: grid needs options with rows and columns")
        elif correct is not None:
            rows, columns = len(options["rows"]), len(options["columns"])
            if not isinstance(correct, dict):
                errors.append(f"{label}: grid correct_answer must map rows to columns")
            else:
                for row, column in correct.items():
                    if not str(row).isdecimal() or int(row) >= rows:
                        errors.append(f"{label}: grid answer row {row!r} out of range")
                    if isinstance(column, bool) or not isinstance(column, int) or not 0 <= column < columns:
                        errors.append(f"{label}: grid answer column for row {row!r} out of range")
    elif correct is not None and not isinstance(correct, str):
        errors.append(f"{label}: correct_answer must be text")
    return errors


def validate_assignment(data: dict) -> tuple[bool, list[str]]:
    """Check an assignment payload. Returns (valid, list of problems)."""
    errors = []
    assignment_id = data.get("id")
    if isinstance(assignment_id, bool) or not isinstance(assignment_id, int) or assignment_id <= 0:
        errors.append("id must be a positive integer")
    if not isinstance(data.get("title"), str) or not data["title"].strip():
        errors.append("title is required")

    questions = data.get("questions")
    if not isinstance(questions, list) or not questions:
        errors.append("at least one question is required")
        return False, errors

    seen = set()
    for i, q in enumerate(questions, start=1):
        errors.extend(_validate_question(q, f"question {i}"))
        if isinstance(q, dict) and isinstance(q.get("id"), str):
            if q["id"] in seen:
                errors.append(f"question {i}: duplicate id {q['id']!r}")
            seen.add(q["id"])

    total = data.get("total_points")
    if total is not None and (isinstance(total, bool) or not isinstance(total, int) or total < 0):
        errors.append("total_points must be a non-negative integer")
    return len(errors) == 0, errors


def build_assignment(data: dict) -> Assignment:
    """Turn a validated payload into an ``Assignment``.

    ``question_order`` defaults to the position in the file and
    ``total_points`` to the sum of the question points.
    """
    assignment_id = data["id"]
    questions = []
    for i, q in enumerate(data["questions"]):
        qtype = QuestionType(q["question_type"])
        questions.append(Question(
            id=q["id"],
            assignment_id=assignment_id,
            question_type=qtype,
            question_text=q["question_text"],
            points=q.get("points", 0),
            question_order=q.get("question_order", i),
            options=parse_options(qtype, q.get("options")) if q.get("options") is not None else (
                GridOptions(rows=(), columns=()) if qtype is QuestionType.GRID else ()
            ),
            correct_answer=q.get("correct_answer"),
            sample_answer=q.get("sample_answer"),
            image_url=q.get("image_url"),
            image_urls=tuple(q.get("image_urls") or ()),
            context_text=q.get("context_text"),
            context_image_url=q.get("context_image_url"),
        ))
    questions.sort(key=lambda q: q.question_order)
    total = data.get("total_points")
    return Assignment(
        id=assignment_id,
        title=data["title"],
        questions=tuple(questions),
        total_points=sum(q.points for q in questions) if total is None else total,
        description=data.get("description") or "",
        due_date=data.get("due_date"),
        class_code=data.get("class_code") or "",
    )


async def write_assignment(backend: StoreBackend, assignment: Assignment) -> None:
    """Store an assignment and its questions, replacing any earlier copy with the same ids."""
    await backend.upsert("assignments", assignment_to_record(assignment), ("id",))
    for question in assignment.questions:
        await backend.upsert("questions", question_to_record(question), ("id",))


async def import_assignment(backend: StoreBackend, file_path: str | Path) -> Assignment:
    """Read, validate and store an assignment file.

    Raises ``ValueError`` listing every problem when the file is invalid.
    """
    data = read_assignment_file(file_path)
    valid, errors = validate_assignment(data)
    if not valid:
        raise ValueError(f"Invalid assignment in {Path(file_path).name}: " + "; ".join(errors))
    assignment = build_assignment(data)
    await write_assignment(backend, assignment)
    logger.info("Imported assignment %s (%s) with %d questions",
                assignment.id, assignment.title, len(assignment.questions))
    return assignment
