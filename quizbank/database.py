"""
SQLite Database Layer
=====================
Persistent storage for imported question banks and practice history.

Tables:
    question_banks    named banks with their question count
    questions         parsed questions (options/answer stored as JSON)
    practice_records  one row per answered attempt
    wrong_questions   questions answered wrong, with a counter
    settings          key/value application settings (JSON values)

Every public function opens its own connection; a failed call leaves
the database unchanged.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import time
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Optional

from .models import Question

logger = logging.getLogger(__name__)

_DEFAULT_DB_PATH = "quizbank.sqlite"

EXPORT_FORMAT_VERSION = 1


def get_db_path() -> str:
    """Return the configured database path."""
    return os.environ.get("QUIZBANK_DB_PATH", _DEFAULT_DB_PATH)


@contextmanager
def get_connection(db_path: str = None):
    """
    Context manager for database connections.
    Ensures proper commit/rollback and connection cleanup.
    """
    db_path = db_path or get_db_path()
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def init_db(db_path: str = None):
    """
    Initialize the database schema.
    Safe to call multiple times (uses IF NOT EXISTS).
    """
    db_path = db_path or get_db_path()
    logger.info(f"Initializing database at: {db_path}")

    with get_connection(db_path) as conn:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS question_banks (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                question_count INTEGER DEFAULT 0,
                created_at REAL NOT NULL
            );

            CREATE TABLE IF NOT EXISTS questions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                bank_id INTEGER NOT NULL,
                type TEXT NOT NULL,
                content TEXT NOT NULL,
                options_json TEXT DEFAULT '[]',
                answer_json TEXT DEFAULT '""',
                order_index INTEGER DEFAULT 0,
                is_favorite INTEGER DEFAULT 0,
                FOREIGN KEY(bank_id) REFERENCES question_banks(id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS practice_records (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                question_id INTEGER NOT NULL,
                bank_id INTEGER NOT NULL,
                user_answer_json TEXT DEFAULT '""',
                is_correct INTEGER NOT NULL,
                time_spent INTEGER DEFAULT 0,
                created_at REAL NOT NULL,
                FOREIGN KEY(question_id) REFERENCES questions(id) ON DELETE CASCADE,
                FOREIGN KEY(bank_id) REFERENCES question_banks(id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS wrong_questions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                question_id INTEGER NOT NULL UNIQUE,
                bank_id INTEGER NOT NULL,
                wrong_count INTEGER DEFAULT 1,
                last_wrong_at REAL NOT NULL,
                created_at REAL NOT NULL,
                FOREIGN KEY(question_id) REFERENCES questions(id) ON DELETE CASCADE,
                FOREIGN KEY(bank_id) REFERENCES question_banks(id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS settings (
                key TEXT PRIMARY KEY,
                value_json TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_questions_bank_id
                ON questions(bank_id, order_index);
            CREATE INDEX IF NOT EXISTS idx_questions_favorite
                ON questions(is_favorite);
            CREATE INDEX IF NOT EXISTS idx_records_bank_id
                ON practice_records(bank_id, created_at);
            CREATE INDEX IF NOT EXISTS idx_wrong_bank_id
                ON wrong_questions(bank_id);
        """)

    logger.info("Database schema initialized successfully")


# ─── Bank CRUD ────────────────────────────────────────────────────────────────


def create_bank_with_questions(
    name: str, questions: list[Question], db_path: str = None
) -> int:
    """
    Create a bank and insert all of its questions in a single transaction.
    Either both land or neither does. Returns the bank_id.
    """
    with get_connection(db_path) as conn:
        bank_id = _insert_bank(conn, name)
        _insert_questions(conn, bank_id, questions)
        logger.info(
            f"Created bank id={bank_id} name={name!r} "
            f"with {len(questions)} questions"
        )
        return bank_id


def get_bank(bank_id: int, db_path: str = None) -> Optional[dict]:
    """Fetch a single bank by ID."""
    with get_connection(db_path) as conn:
        row = conn.execute(
            "SELECT * FROM question_banks WHERE id = ?", (bank_id,)
        ).fetchone()
        return dict(row) if row else None


def list_banks(db_path: str = None) -> list[dict]:
    """List all banks, newest first."""
    with get_connection(db_path) as conn:
        rows = conn.execute(
            "SELECT * FROM question_banks ORDER BY created_at DESC, id DESC"
        ).fetchall()
        return [dict(r) for r in rows]


def update_bank(bank_id: int, db_path: str = None, **fields) -> bool:
    """Update bank fields. Returns True if row was found."""
    allowed = {"name", "question_count"}
    fields = {k: v for k, v in fields.items() if k in allowed}
    if not fields:
        return False

    set_clause = ", ".join(f"{k} = ?" for k in fields)
    values = list(fields.values()) + [bank_id]

    with get_connection(db_path) as conn:
        cursor = conn.execute(
            f"UPDATE question_banks SET {set_clause} WHERE id = ?", values
        )
        return cursor.rowcount > 0


def delete_bank(bank_id: int, db_path: str = None) -> bool:
    """Delete a bank and all cascading data. Returns True if row existed."""
    with get_connection(db_path) as conn:
        cursor = conn.execute(
            "DELETE FROM question_banks WHERE id = ?", (bank_id,)
        )
        return cursor.rowcount > 0


# ─── Question CRUD ────────────────────────────────────────────────────────────


def bulk_insert_questions(
    bank_id: int, questions: list[Question], db_path: str = None
):
    """
    Bulk insert questions for an existing bank in a single transaction.
    Assigns order_index by position and refreshes the bank's question_count.
    """
    with get_connection(db_path) as conn:
        _insert_questions(conn, bank_id, questions)
        logger.info(
            f"Bulk-inserted {len(questions)} questions for bank_id={bank_id}"
        )


def count_bank_questions(bank_id: int, db_path: str = None) -> int:
    """Return the count of questions stored in DB for a bank."""
    with get_connection(db_path) as conn:
        row = conn.execute(
            "SELECT COUNT(*) as cnt FROM questions WHERE bank_id = ?",
            (bank_id,),
        ).fetchone()
        return row["cnt"] if row else 0


def get_question(question_id: int, db_path: str = None) -> Optional[dict]:
    """Fetch a single question."""
    with get_connection(db_path) as conn:
        row = conn.execute(
            "SELECT * FROM questions WHERE id = ?", (question_id,)
        ).fetchone()
        return _hydrate_question(dict(row)) if row else None


def get_bank_questions(bank_id: int, db_path: str = None) -> list[dict]:
    """Fetch all questions for a bank, in import order."""
    with get_connection(db_path) as conn:
        rows = conn.execute(
            """SELECT * FROM questions
               WHERE bank_id = ?
               ORDER BY order_index""",
            (bank_id,),
        ).fetchall()
        return [_hydrate_question(dict(r)) for r in rows]


def toggle_favorite(question_id: int, db_path: str = None) -> bool:
    """Flip a question's favorite flag. Returns the new flag (False if missing)."""
    with get_connection(db_path) as conn:
        row = conn.execute(
            "SELECT is_favorite FROM questions WHERE id = ?", (question_id,)
        ).fetchone()
        if not row:
            return False
        new_value = not bool(row["is_favorite"])
        conn.execute(
            "UPDATE questions SET is_favorite = ? WHERE id = ?",
            (1 if new_value else 0, question_id),
        )
        return new_value


def get_favorites(bank_id: int = None, db_path: str = None) -> list[dict]:
    """Favorite questions, optionally limited to one bank."""
    with get_connection(db_path) as conn:
        if bank_id is not None:
            rows = conn.execute(
                """SELECT * FROM questions
                   WHERE bank_id = ? AND is_favorite = 1
                   ORDER BY order_index""",
                (bank_id,),
            ).fetchall()
        else:
            rows = conn.execute(
                """SELECT * FROM questions
                   WHERE is_favorite = 1
                   ORDER BY bank_id, order_index"""
            ).fetchall()
        return [_hydrate_question(dict(r)) for r in rows]


def get_random_questions(
    bank_id: int, count: int, db_path: str = None
) -> list[dict]:
    """Up to `count` questions from a bank in random order."""
    with get_connection(db_path) as conn:
        rows = conn.execute(
            """SELECT * FROM questions
               WHERE bank_id = ?
               ORDER BY RANDOM() LIMIT ?""",
            (bank_id, count),
        ).fetchall()
        return [_hydrate_question(dict(r)) for r in rows]


# ─── Practice Records ─────────────────────────────────────────────────────────


def add_practice_record(
    question_id: int,
    bank_id: int,
    user_answer: Any,
    is_correct: bool,
    time_spent: int = 0,
    db_path: str = None,
) -> int:
    """Insert a practice attempt. Returns record_id."""
    with get_connection(db_path) as conn:
        cursor = conn.execute(
            """INSERT INTO practice_records
               (question_id, bank_id, user_answer_json, is_correct,
                time_spent, created_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (question_id, bank_id, json.dumps(user_answer, ensure_ascii=False),
             1 if is_correct else 0, time_spent, time.time()),
        )
        return cursor.lastrowid


def get_practice_records(bank_id: int = None, db_path: str = None) -> list[dict]:
    """Practice records, newest first."""
    with get_connection(db_path) as conn:
        if bank_id is not None:
            rows = conn.execute(
                """SELECT * FROM practice_records WHERE bank_id = ?
                   ORDER BY created_at DESC, id DESC""",
                (bank_id,),
            ).fetchall()
        else:
            rows = conn.execute(
                """SELECT * FROM practice_records
                   ORDER BY created_at DESC, id DESC"""
            ).fetchall()
        return [_hydrate_record(dict(r)) for r in rows]


def get_practice_stats(bank_id: int = None, db_path: str = None) -> dict:
    """Totals, accuracy (percent, 1 decimal) and time spent."""
    records = get_practice_records(bank_id, db_path=db_path)
    stats = _summarize_records(records)
    stats["total_time"] = sum(r["time_spent"] or 0 for r in records)
    return stats


def get_today_stats(bank_id: int = None, db_path: str = None) -> dict:
    """Same as get_practice_stats, restricted to records since local midnight."""
    start_of_day = datetime.now().replace(
        hour=0, minute=0, second=0, microsecond=0
    ).timestamp()
    records = [
        r for r in get_practice_records(bank_id, db_path=db_path)
        if r["created_at"] >= start_of_day
    ]
    return _summarize_records(records)


def _summarize_records(records: list[dict]) -> dict:
    total = len(records)
    correct = sum(1 for r in records if r["is_correct"])
    return {
        "total": total,
        "correct": correct,
        "wrong": total - correct,
        "accuracy": round(correct / total * 100, 1) if total else 0.0,
    }


# ─── Wrong Questions ──────────────────────────────────────────────────────────


def add_wrong_question(question_id: int, bank_id: int, db_path: str = None) -> int:
    """Record a wrong answer. Returns the question's wrong_count."""
    now = time.time()
    with get_connection(db_path) as conn:
        row = conn.execute(
            "SELECT id, wrong_count FROM wrong_questions WHERE question_id = ?",
            (question_id,),
        ).fetchone()
        if row:
            wrong_count = row["wrong_count"] + 1
            conn.execute(
                """UPDATE wrong_questions
                   SET wrong_count = ?, last_wrong_at = ? WHERE id = ?""",
                (wrong_count, now, row["id"]),
            )
            return wrong_count

        conn.execute(
            """INSERT INTO wrong_questions
               (question_id, bank_id, wrong_count, last_wrong_at, created_at)
               VALUES (?, ?, 1, ?, ?)""",
            (question_id, bank_id, now, now),
        )
        return 1


def remove_wrong_question(question_id: int, db_path: str = None) -> bool:
    """Clear a question from the wrong list."""
    with get_connection(db_path) as conn:
        cursor = conn.execute(
            "DELETE FROM wrong_questions WHERE question_id = ?", (question_id,)
        )
        return cursor.rowcount > 0


def get_wrong_questions(bank_id: int = None, db_path: str = None) -> list[dict]:
    """Wrong questions joined with their counters, most recent first."""
    query = """SELECT q.*, w.wrong_count, w.last_wrong_at
               FROM wrong_questions w
               JOIN questions q ON q.id = w.question_id"""
    params: tuple = ()
    if bank_id is not None:
        query += " WHERE w.bank_id = ?"
        params = (bank_id,)
    query += " ORDER BY w.last_wrong_at DESC, w.id DESC"

    with get_connection(db_path) as conn:
        rows = conn.execute(query, params).fetchall()

    questions = []
    for r in rows:
        q = dict(r)
        wrong_info = {
            "wrong_count": q.pop("wrong_count"),
            "last_wrong_at": q.pop("last_wrong_at"),
        }
        q = _hydrate_question(q)
        q["wrong_info"] = wrong_info
        questions.append(q)
    return questions


def count_wrong_questions(bank_id: int = None, db_path: str = None) -> int:
    with get_connection(db_path) as conn:
        if bank_id is not None:
            row = conn.execute(
                "SELECT COUNT(*) AS cnt FROM wrong_questions WHERE bank_id = ?",
                (bank_id,),
            ).fetchone()
        else:
            row = conn.execute(
                "SELECT COUNT(*) AS cnt FROM wrong_questions"
            ).fetchone()
        return row["cnt"]


# ─── Settings ─────────────────────────────────────────────────────────────────


def get_setting(key: str, default: Any = None, db_path: str = None) -> Any:
    with get_connection(db_path) as conn:
        row = conn.execute(
            "SELECT value_json FROM settings WHERE key = ?", (key,)
        ).fetchone()
        return json.loads(row["value_json"]) if row else default


def set_setting(key: str, value: Any, db_path: str = None):
    with get_connection(db_path) as conn:
        conn.execute(
            """INSERT INTO settings (key, value_json) VALUES (?, ?)
               ON CONFLICT(key) DO UPDATE SET value_json = excluded.value_json""",
            (key, json.dumps(value, ensure_ascii=False)),
        )


# ─── Export / Import ─────────────────────────────────────────────────────────

# Table → columns, in foreign-key dependency order
_EXPORT_TABLES = {
    "question_banks": ("id", "name", "question_count", "created_at"),
    "questions": (
        "id", "bank_id", "type", "content", "options_json", "answer_json",
        "order_index", "is_favorite",
    ),
    "practice_records": (
        "id", "question_id", "bank_id", "user_answer_json", "is_correct",
        "time_spent", "created_at",
    ),
    "wrong_questions": (
        "id", "question_id", "bank_id", "wrong_count", "last_wrong_at",
        "created_at",
    ),
    "settings": ("key", "value_json"),
}


def export_all(db_path: str = None) -> dict:
    """Dump every table as raw rows."""
    data = {}
    with get_connection(db_path) as conn:
        for table in _EXPORT_TABLES:
            rows = conn.execute(f"SELECT * FROM {table}").fetchall()
            data[table] = [dict(r) for r in rows]
    return {
        "version": EXPORT_FORMAT_VERSION,
        "exported_at": time.time(),
        "data": data,
    }


def export_bank(bank_id: int, db_path: str = None) -> Optional[dict]:
    """Dump one bank with its questions and history. None if unknown."""
    with get_connection(db_path) as conn:
        bank = conn.execute(
            "SELECT * FROM question_banks WHERE id = ?", (bank_id,)
        ).fetchone()
        if not bank:
            return None
        data = {"question_banks": [dict(bank)]}
        for table in ("questions", "practice_records", "wrong_questions"):
            rows = conn.execute(
                f"SELECT * FROM {table} WHERE bank_id = ?", (bank_id,)
            ).fetchall()
            data[table] = [dict(r) for r in rows]
    return {
        "version": EXPORT_FORMAT_VERSION,
        "exported_at": time.time(),
        "data": data,
    }


def import_data(payload: dict, db_path: str = None) -> dict[str, int]:
    """
    Upsert rows from an export payload in a single transaction.
    Returns the number of rows written per table.

    Raises:
        ValueError: On an unsupported version or rows the schema rejects
            (missing columns, dangling foreign keys); nothing is written.
    """
    version = payload.get("version", 0)
    if not isinstance(version, int) or version > EXPORT_FORMAT_VERSION:
        raise ValueError(f"Unsupported export format version: {version!r}")

    data = payload.get("data") or {}
    written: dict[str, int] = {}

    try:
        with get_connection(db_path) as conn:
            for table, columns in _EXPORT_TABLES.items():
                rows = data.get(table) or []
                key = columns[0]
                placeholders = ", ".join("?" for _ in columns)
                updates = ", ".join(
                    f"{c} = excluded.{c}" for c in columns if c != key
                )
                sql = (
                    f"INSERT INTO {table} ({', '.join(columns)}) "
                    f"VALUES ({placeholders}) "
                    f"ON CONFLICT({key}) DO UPDATE SET {updates}"
                )
                for row in rows:
                    if not isinstance(row, dict):
                        raise ValueError(f"Malformed {table} row: {row!r}")
                    conn.execute(sql, tuple(row.get(c) for c in columns))
                written[table] = len(rows)
    except sqlite3.Error as e:
        logger.error(f"Import rolled back: {e}")
        raise ValueError(f"Backup could not be restored: {e}") from e

    logger.info(f"Imported rows: {written}")
    return written


# ─── Helpers ──────────────────────────────────────────────────────────────────


def _insert_bank(conn: sqlite3.Connection, name: str) -> int:
    cursor = conn.execute(
        """INSERT INTO question_banks (name, question_count, created_at)
           VALUES (?, 0, ?)""",
        (name, time.time()),
    )
    return cursor.lastrowid


def _insert_questions(
    conn: sqlite3.Connection, bank_id: int, questions: list[Question]
):
    start = conn.execute(
        "SELECT COUNT(*) AS cnt FROM questions WHERE bank_id = ?", (bank_id,)
    ).fetchone()["cnt"]

    conn.executemany(
        """INSERT INTO questions
           (bank_id, type, content, options_json, answer_json,
            order_index, is_favorite)
           VALUES (?, ?, ?, ?, ?, ?, 0)""",
        [
            (
                bank_id,
                q.type.value,
                q.content,
                json.dumps(
                    [opt.model_dump() for opt in q.options], ensure_ascii=False
                ),
                json.dumps(q.answer, ensure_ascii=False),
                start + index,
            )
            for index, q in enumerate(questions)
        ],
    )
    conn.execute(
        "UPDATE question_banks SET question_count = ? WHERE id = ?",
        (start + len(questions), bank_id),
    )


def _hydrate_question(question: dict) -> dict:
    """
    Decode JSON columns into the structure consumers expect:
        id, bank_id, type, content, options[], answer, order_index,
        is_favorite
    """
    question["options"] = json.loads(question.pop("options_json") or "[]")
    question["answer"] = json.loads(question.pop("answer_json") or '""')
    question["is_favorite"] = bool(question["is_favorite"])
    return question


def _hydrate_record(record: dict) -> dict:
    record["user_answer"] = json.loads(record.pop("user_answer_json") or '""')
    record["is_correct"] = bool(record["is_correct"])
    return record
