"""Data classes for the homework domain model and their store records."""
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class QuestionType(str, Enum):
    MULTIPLE_CHOICE = "multiple-choice"
    SHORT_ANSWER = "short-answer"
    LONG_ANSWER = "long-answer"
    TICKBOX = "tickbox"
    GRID = "grid"


@dataclass(frozen=True)
class Option:
    text: str
    image_url: Optional[str] = None


@dataclass(frozen=True)
class GridOptions:
    rows: tuple[str, ...]
    columns: tuple[str, ...]


@dataclass(frozen=True)
class Question:
    id: str
    assignment_id: int
    question_type: QuestionType
    question_text: str
    points: int = 0
    question_order: int = 0
    options: tuple[Option, ...] | GridOptions = ()
    correct_answer: str | list[str] | dict[str, int] | None = None
    sample_answer: Optional[str] = None
    image_url: Optional[str] = None
    image_urls: tuple[str, ...] = ()
    context_text: Optional[str] = None
    context_image_url: Optional[str] = None


@dataclass(frozen=True)
class Assignment:
    id: int
    title: str
    questions: tuple[Question, ...] = ()
    total_points: int = 0
    description: str = ""
    due_date: Optional[str] = None
    class_code: str = ""

    def get_question(self, question_id: str) -> Question | None:
        for q in self.questions:
            if q.id == question_id:
                return q
        return None


@dataclass
class Session:
    id: str
    student_id: str
    assignment_id: int
    current_question_index: int = 0
    is_completed: bool = False
    started_at: Optional[str] = None
    last_activity: Optional[str] = None
    completed_at: Optional[str] = None


@dataclass
class Response:
    student_id: str
    question_id: str
    assignment_id: int
    response_text: str
    answer_kind: str = "text"
    is_correct: Optional[bool] = None
    points_earned: int = 0
    session_id: Optional[str] = None
    revision: int = 0
    updated_at: Optional[str] = None


@dataclass
class Submission:
    student_id: str
    assignment_id: int
    score: float
    points_earned: int = 0
    total_points: int = 0
    submitted_at: Optional[str] = None


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _load_json(value, default):
    if value is None or value == "":
        return default
    if isinstance(value, str):
        return json.loads(value)
    return value


def parse_options(question_type: QuestionType, raw) -> tuple[Option, ...] | GridOptions:
    """Normalize a raw option payload (strings or {text, image_url} objects) to typed options."""
    if question_type is QuestionType.GRID:
        if not isinstance(raw, dict) or not isinstance(raw.get("rows"), list) or not isinstance(raw.get("columns"), list):
            return GridOptions(rows=(), columns=())
        return GridOptions(rows=tuple(str(r) for r in raw["rows"]), columns=tuple(str(c) for c in raw["columns"]))
    options = []
    for item in raw or []:
        if isinstance(item, str):
            options.append(Option(text=item))
        elif isinstance(item, dict) and isinstance(item.get("text"), str):
            options.append(Option(text=item["text"], image_url=item.get("image_url")))
        else:
            options.append(Option(text=str(item)))
    return tuple(options)


def dump_options(options: tuple[Option, ...] | GridOptions):
    if isinstance(options, GridOptions):
        return {"rows": list(options.rows), "columns": list(options.columns)}
    return [
        {"text": o.text, "image_url": o.image_url} if o.image_url else o.text
        for o in options
    ]


def question_from_record(row: dict) -> Question:
    question_type = QuestionType(row["question_type"])
    return Question(
        id=str(row["id"]),
        assignment_id=int(row["assignment_id"]),
        question_type=question_type,
        question_text=row["question_text"],
        points=int(row.get("points") or 0),
        question_order=int(row.get("question_order") or 0),
        options=parse_options(question_type, _load_json(row.get("options"), None)),
        correct_answer=_load_json(row.get("correct_answer"), None),
        sample_answer=row.get("sample_answer"),
        image_url=row.get("image_url"),
        image_urls=tuple(_load_json(row.get("image_urls"), [])),
        context_text=row.get("context_text"),
        context_image_url=row.get("context_image_url"),
    )


def question_to_record(q: Question) -> dict:
    return {
        "id": q.id,
        "assignment_id": q.assignment_id,
        "question_type": q.question_type.value,
        "question_text": q.question_text,
        "options": json.dumps(dump_options(q.options)),
        "correct_answer": None if q.correct_answer is None else json.dumps(q.correct_answer),
        "sample_answer": q.sample_answer,
        "image_url": q.image_url,
        "image_urls": json.dumps(list(q.image_urls)),
        "question_order": q.question_order,
        "points": q.points,
        "context_text": q.context_text,
        "context_image_url": q.context_image_url,
    }


def assignment_from_record(row: dict, question_rows: list[dict]) -> Assignment:
    questions = sorted(
        (question_from_record(r) for r in question_rows),
        key=lambda q: q.question_order,
    )
    return Assignment(
        id=int(row["id"]),
        title=row["title"],
        questions=tuple(questions),
        total_points=int(row.get("total_points") or 0),
        description=row.get("description") or "",
        due_date=row.get("due_date"),
        class_code=row.get("class_code") or "",
    )


def assignment_to_record(a: Assignment) -> dict:
    return {
        "id": a.id,
        "title": a.title,
        "description": a.description,
        "due_date": a.due_date,
        "class_code": a.class_code,
        "total_points": a.total_points,
    }


def session_from_record(row: dict) -> Session:
    return Session(
        id=str(row["id"]),
        student_id=row["student_id"],
        assignment_id=int(row["assignment_id"]),
        current_question_index=int(row.get("current_question_index") or 0),
        is_completed=bool(row.get("is_completed")),
        started_at=row.get("started_at"),
        last_activity=row.get("last_activity"),
        completed_at=row.get("completed_at"),
    )


def response_from_record(row: dict) -> Response:
    is_correct = row.get("is_correct")
    return Response(
        student_id=row["student_id"],
        question_id=str(row["question_id"]),
        assignment_id=int(row["assignment_id"]),
        response_text=row["response_text"],
        answer_kind=row.get("answer_kind") or "text",
        is_correct=None if is_correct is None else bool(is_correct),
        points_earned=int(row.get("points_earned") or 0),
        session_id=row.get("session_id"),
        revision=int(row.get("revision") or 0),
        updated_at=row.get("updated_at"),
    )


def response_to_record(r: Response) -> dict:
    return {
        "student_id": r.student_id,
        "question_id": r.question_id,
        "assignment_id": r.assignment_id,
        "session_id": r.session_id,
        "response_text": r.response_text,
        "answer_kind": r.answer_kind,
        "is_correct": None if r.is_correct is None else int(r.is_correct),
        "points_earned": r.points_earned,
        "revision": r.revision,
        "updated_at": r.updated_at,
    }


def submission_from_record(row: dict) -> Submission:
    return Submission(
        student_id=row["student_id"],
        assignment_id=int(row["assignment_id"]),
        score=float(row["score"]),
        points_earned=int(row.get("points_earned") or 0),
        total_points=int(row.get("total_points") or 0),
        submitted_at=row.get("submitted_at"),
    )


def submission_to_record(s: Submission) -> dict:
    return {
        "student_id": s.student_id,
        "assignment_id": s.assignment_id,
        "score": s.score,
        "points_earned": s.points_earned,
        "total_points": s.total_points,
        "submitted_at": s.submitted_at,
    }
