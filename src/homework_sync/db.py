"""Database schema and connection management."""
import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = str(Path.home() / ".homework_sync" / "homework.db")

SCHEMA = """
CREATE TABLE IF NOT EXISTS assignments (
    id INTEGER PRIMARY KEY,
    title TEXT NOT NULL,
    description TEXT,
    due_date TEXT,
    class_code TEXT,
    total_points INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS questions (
    id TEXT PRIMARY KEY,
    assignment_id INTEGER NOT NULL REFERENCES assignments(id),
    question_type TEXT NOT NULL,
    question_text TEXT NOT NULL,
    options TEXT,
    correct_answer TEXT,
    sample_answer TEXT,
    image_url TEXT,
    image_urls TEXT DEFAULT '[]',
    question_order INTEGER NOT NULL DEFAULT 0,
    points INTEGER NOT NULL DEFAULT 0,
    context_text TEXT,
    context_image_url TEXT
);

CREATE TABLE IF NOT EXISTS homework_sessions (
    id TEXT PRIMARY KEY,
    student_id TEXT NOT NULL,
    assignment_id INTEGER NOT NULL,
    current_question_index INTEGER NOT NULL DEFAULT 0,
    is_completed INTEGER NOT NULL DEFAULT 0,
    started_at TEXT,
    last_activity TEXT,
    completed_at TEXT,
    UNIQUE(student_id, assignment_id)
);

CREATE TABLE IF NOT EXISTS homework_responses (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    student_id TEXT NOT NULL,
    question_id TEXT NOT NULL,
    assignment_id INTEGER NOT NULL,
    session_id TEXT,
    response_text TEXT NOT NULL,
    answer_kind TEXT NOT NULL DEFAULT 'text',
    is_correct INTEGER,
    points_earned INTEGER NOT NULL DEFAULT 0,
    revision INTEGER NOT NULL DEFAULT 0,
    updated_at TEXT,
    UNIQUE(student_id, question_id, assignment_id)
);

CREATE TABLE IF NOT EXISTS submissions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    student_id TEXT NOT NULL,
    assignment_id INTEGER NOT NULL,
    score REAL NOT NULL,
    points_earned INTEGER NOT NULL DEFAULT 0,
    total_points INTEGER NOT NULL DEFAULT 0,
    submitted_at TEXT,
    UNIQUE(student_id, assignment_id)
);
"""

# Composite keys the store treats as unique, mirrored by MemoryBackend.
UNIQUE_KEYS = {
    "assignments": [("id",)],
    "questions": [("id",)],
    "homework_sessions": [("id",), ("student_id", "assignment_id")],
    "homework_responses": [("id",), ("student_id", "question_id", "assignment_id")],
    "submissions": [("id",), ("student_id", "assignment_id")],
}

TABLES = tuple(UNIQUE_KEYS)


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Return a SQLite connection with row factory and foreign keys enabled."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def init_db(db_path: str = DEFAULT_DB_PATH) -> None:
    """Initialize the database, creating all tables if they don't exist."""
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = get_connection(db_path)
    conn.executescript(SCHEMA)
    conn.commit()
    conn.close()
