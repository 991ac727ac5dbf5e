"""
CRUD Service Layer
==================
High-level operations that coordinate the parser and SQLite.
This is the layer the CLI calls; it owns the import workflow and
answer checking.
"""

from __future__ import annotations

import json
import logging
import os
import re
import sqlite3
from pathlib import Path
from typing import Any, Optional

from . import database as db
from .engine import parse_txt_file, read_text_file
from .models import Question, QuestionType, question_from_row
from .stats import get_type_stats
from .validator import validate_questions

logger = logging.getLogger(__name__)

SESSION_KEY_PREFIX = "session:"


# ─── Import (Main Flow) ──────────────────────────────────────────────────────


def import_txt(
    txt_path: str,
    bank_name: str = "",
    force: bool = False,
    db_path: str = None,
    append_to: Optional[int] = None,
) -> dict:
    """
    Full read→parse→validate→persist pipeline.

    Steps:
        1. Read the TXT file (UTF-8)
        2. Parse into questions
        3. Validate; reject empty parses and (unless forced) errors
        4. Create the bank (or extend `append_to`) atomically
        5. Verify stored count and return a summary

    Args:
        txt_path: Path to the exported question bank.
        bank_name: Bank name (defaults to the file stem).
        force: Import even when validation reports errors.
        db_path: Optional database path override.
        append_to: Existing bank to add the questions to.

    Returns:
        dict with bank_id, parsed/stored counts, stats and warnings.

    Raises:
        FileNotFoundError: If the file doesn't exist.
        ValueError: If nothing could be parsed, validation failed or
            `append_to` is unknown.
        RuntimeError: If the database could not be opened or the insert
            failed (nothing is stored).
    """
    txt_path = os.path.abspath(txt_path)
    if not os.path.exists(txt_path):
        raise FileNotFoundError(f"TXT file not found: {txt_path}")

    name = (bank_name or Path(txt_path).stem).strip()
    logger.info(f"[import_txt] Starting import of {txt_path} as {name!r}")

    # ── Step 1 + 2: Read and parse ────────────────────────────────────
    questions = parse_txt_file(read_text_file(txt_path))
    parsed_count = len(questions)
    logger.info(f"[import_txt] Parsed question count: {parsed_count}")

    # ── Step 3: Validation ───────────────────────────────────────────
    if parsed_count == 0:
        logger.error("[import_txt] Parser returned ZERO questions, aborting")
        raise ValueError(
            "No questions could be parsed. The file may be empty or not "
            "in the supported export format."
        )

    validation = validate_questions(questions)
    if not validation.is_valid and not force:
        raise ValueError(
            f"Validation failed with {len(validation.errors)} errors: "
            + "; ".join(validation.errors[:5])
        )

    # ── Step 4: Insert into SQLite (atomic) ──────────────────────────
    try:
        db.init_db(db_path)
        target = (
            db.get_bank(append_to, db_path=db_path)
            if append_to is not None else None
        )
    except sqlite3.Error as e:
        logger.error(f"[import_txt] Cannot open database: {e}")
        raise RuntimeError(f"Cannot open database: {e}") from e

    if append_to is not None and target is None:
        raise ValueError(f"Bank {append_to} not found")

    try:
        if target is None:
            existing = 0
            bank_id = db.create_bank_with_questions(
                name, questions, db_path=db_path
            )
        else:
            bank_id, name = target["id"], target["name"]
            existing = db.count_bank_questions(bank_id, db_path=db_path)
            db.bulk_insert_questions(bank_id, questions, db_path=db_path)
    except Exception as e:
        logger.error(f"[import_txt] DB insert failed: {e}", exc_info=True)
        raise RuntimeError(f"Database insert failed, rolled back: {e}") from e

    # ── Step 5: Verify stored count ──────────────────────────────────
    stored_count = db.count_bank_questions(bank_id, db_path=db_path) - existing
    if stored_count != parsed_count:
        logger.error(
            f"[import_txt] MISMATCH: parsed {parsed_count} but "
            f"{stored_count} stored for bank_id={bank_id}"
        )

    return {
        "bank_id": bank_id,
        "bank_name": name,
        "parsed_questions": parsed_count,
        "stored_questions": stored_count,
        "stats": get_type_stats(questions).model_dump(),
        "warnings": validation.warnings,
    }


# ─── Read Operations ─────────────────────────────────────────────────────────


def get_bank_detail(bank_id: int, db_path: str = None) -> Optional[dict]:
    """Bank row with its questions and per-type stats. None if unknown."""
    bank = db.get_bank(bank_id, db_path=db_path)
    if not bank:
        return None

    rows = db.get_bank_questions(bank_id, db_path=db_path)
    questions = [question_from_row(r) for r in rows]
    return {
        "bank": bank,
        "questions": rows,
        "stats": get_type_stats(questions).model_dump(),
        "wrong_count": db.count_wrong_questions(bank_id, db_path=db_path),
    }


def list_banks(db_path: str = None) -> list[dict]:
    """List all banks (summary)."""
    return db.list_banks(db_path=db_path)


def delete_bank(bank_id: int, db_path: str = None) -> bool:
    """Delete a bank with its questions and history."""
    deleted = db.delete_bank(bank_id, db_path=db_path)
    if deleted:
        clear_session(bank_id, db_path=db_path)
        logger.info(f"Deleted bank id={bank_id}")
    return deleted


# ─── Practice ────────────────────────────────────────────────────────────────


def check_answer(question: Question, user_answer: Any) -> bool:
    """
    Compare a user's answer with the stored one.
    Multiple choice compares letter sets; other types compare the letter.
    """
    if isinstance(user_answer, (list, tuple)):
        given = "".join(user_answer)
    else:
        given = str(user_answer or "")
    # "A,B" / "a b" / "A、C" all reduce to the bare letters
    given = re.sub(r"[^A-Z]", "", given.upper())

    if question.type == QuestionType.MULTIPLE:
        return bool(given) and sorted(set(given)) == sorted(
            set(question.answer_letters)
        )
    return given == "".join(question.answer_letters)


def record_answer(
    question_id: int,
    user_answer: Any,
    time_spent: int = 0,
    db_path: str = None,
) -> dict:
    """
    Check an answer, store the attempt and update the wrong list.

    Raises:
        KeyError: If the question doesn't exist.
    """
    row = db.get_question(question_id, db_path=db_path)
    if row is None:
        raise KeyError(question_id)

    question = question_from_row(row)
    is_correct = check_answer(question, user_answer)

    db.add_practice_record(
        question_id,
        row["bank_id"],
        user_answer,
        is_correct,
        time_spent=time_spent,
        db_path=db_path,
    )

    wrong_count = 0
    if not is_correct:
        wrong_count = db.add_wrong_question(
            question_id, row["bank_id"], db_path=db_path
        )

    return {
        "is_correct": is_correct,
        "correct_answer": question.answer,
        "wrong_count": wrong_count,
    }


def save_session(bank_id: int, state: dict, db_path: str = None):
    """Persist practice progress (mode, index, answers) for a bank."""
    db.set_setting(f"{SESSION_KEY_PREFIX}{bank_id}", state, db_path=db_path)


def get_session(bank_id: int, db_path: str = None) -> Optional[dict]:
    return db.get_setting(f"{SESSION_KEY_PREFIX}{bank_id}", db_path=db_path)


def clear_session(bank_id: int, db_path: str = None):
    db.set_setting(f"{SESSION_KEY_PREFIX}{bank_id}", None, db_path=db_path)


def start_practice(
    bank_id: int,
    shuffle: bool = False,
    count: int = 0,
    resume: bool = True,
    db_path: str = None,
) -> tuple[list[dict], dict]:
    """
    Questions for a practice run and the session tracking it.

    A saved, unfinished session of the same mode is resumed with its
    question order and position. Otherwise a new session is started from
    the bank in import order (or shuffled), limited to `count` questions
    when given.

    Raises:
        KeyError: If the bank doesn't exist.
    """
    if db.get_bank(bank_id, db_path=db_path) is None:
        raise KeyError(bank_id)

    mode = "random" if shuffle else "sequential"
    session = get_session(bank_id, db_path=db_path) if resume else None
    if session and session.get("mode") == mode:
        rows = [
            db.get_question(question_id, db_path=db_path)
            for question_id in session.get("question_ids", [])
        ]
        rows = [r for r in rows if r is not None]
        if session.get("index", 0) < len(rows):
            logger.info(
                f"Resuming {mode} practice for bank_id={bank_id} "
                f"at {session['index']}/{len(rows)}"
            )
            session["question_ids"] = [r["id"] for r in rows]
            session.setdefault("answers", {})
            return rows, session

    if shuffle:
        limit = count or db.count_bank_questions(bank_id, db_path=db_path)
        rows = db.get_random_questions(bank_id, limit, db_path=db_path)
    else:
        rows = db.get_bank_questions(bank_id, db_path=db_path)
        if count:
            rows = rows[:count]

    session = {
        "mode": mode,
        "question_ids": [r["id"] for r in rows],
        "index": 0,
        "answers": {},
    }
    save_session(bank_id, session, db_path=db_path)
    return rows, session


def answer_in_session(
    bank_id: int,
    session: dict,
    question_id: int,
    user_answer: Any,
    time_spent: int = 0,
    db_path: str = None,
) -> dict:
    """
    Record one answer and move the saved session past it.
    The session is cleared once its last question is answered.
    """
    outcome = record_answer(
        question_id, user_answer, time_spent=time_spent, db_path=db_path
    )
    session["answers"][str(question_id)] = {
        "answer": user_answer,
        "is_correct": outcome["is_correct"],
    }
    session["index"] += 1

    if session["index"] >= len(session["question_ids"]):
        clear_session(bank_id, db_path=db_path)
    else:
        save_session(bank_id, session, db_path=db_path)
    return outcome


# ─── Backup ──────────────────────────────────────────────────────────────────


def export_to_file(
    export_path: str, bank_id: int = None, db_path: str = None
) -> dict:
    """
    Write a JSON backup of the whole database or a single bank.

    Raises:
        KeyError: If `bank_id` is given but unknown.
    """
    if bank_id is not None:
        payload = db.export_bank(bank_id, db_path=db_path)
        if payload is None:
            raise KeyError(bank_id)
    else:
        payload = db.export_all(db_path=db_path)

    path = Path(export_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8"
    )
    counts = {table: len(rows) for table, rows in payload["data"].items()}
    logger.info(f"Exported {counts} to {path}")
    return counts


def import_from_file(import_path: str, db_path: str = None) -> dict[str, int]:
    """
    Restore a JSON backup written by export_to_file.

    Raises:
        ValueError: If the file is not a backup object or its rows cannot
            be written (nothing is restored).
    """
    raw = json.loads(Path(import_path).read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError("Import file root must be a JSON object.")
    try:
        db.init_db(db_path)
    except sqlite3.Error as e:
        raise ValueError(f"Cannot open database: {e}") from e
    return db.import_data(raw, db_path=db_path)
