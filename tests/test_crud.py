"""
Test Suite for the CRUD Service Layer
=====================================
Import workflow, answer checking, sessions and file backups.
"""

from __future__ import annotations

import json

import pytest

from quizbank import crud
from quizbank import database as db
from quizbank.models import Question, QuestionType


BANK_TEXT = """一. 单选题
1. (单选题, 2.0 分) 1+1=?
A. 1
B. 2
我的答案:B

二. 多选题
2. (多选题, 3.0 分) 选出偶数
A. 2
B. 3
C. 4
我的答案:AC

三. 判断题
3. 地球是圆的
我的答案:A
"""


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "quizbank.sqlite")


@pytest.fixture
def txt_path(tmp_path):
    path = tmp_path / "期末复习.txt"
    path.write_text(BANK_TEXT, encoding="utf-8")
    return str(path)


@pytest.fixture
def imported(txt_path, db_path):
    return crud.import_txt(txt_path, db_path=db_path)


# ═══════════════════════════════════════════════════════════════════════════════
# IMPORT TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestImportTxt:
    """Test the read → parse → validate → persist workflow."""

    def test_summary(self, imported):
        assert imported["bank_name"] == "期末复习"
        assert imported["parsed_questions"] == 3
        assert imported["stored_questions"] == 3
        assert imported["stats"] == {
            "total": 3, "single": 1, "multiple": 1, "judge": 1,
        }
        assert imported["warnings"] == []

    def test_explicit_bank_name(self, txt_path, db_path):
        summary = crud.import_txt(txt_path, bank_name="  自定义  ", db_path=db_path)
        assert summary["bank_name"] == "自定义"
        assert db.get_bank(summary["bank_id"], db_path=db_path)["name"] == "自定义"

    def test_stored_questions_match_parse(self, imported, db_path):
        rows = db.get_bank_questions(imported["bank_id"], db_path=db_path)
        assert [r["answer"] for r in rows] == ["B", ["A", "C"], "A"]
        assert rows[2]["options"] == [
            {"key": "A", "text": "正确"},
            {"key": "B", "text": "错误"},
        ]

    def test_missing_file(self, tmp_path, db_path):
        with pytest.raises(FileNotFoundError):
            crud.import_txt(str(tmp_path / "missing.txt"), db_path=db_path)

    def test_zero_questions_is_rejected(self, tmp_path, db_path):
        path = tmp_path / "empty.txt"
        path.write_text("这不是题库\n只是一些文字", encoding="utf-8")
        with pytest.raises(ValueError):
            crud.import_txt(str(path), db_path=db_path)

    def test_database_failure_stores_nothing(self, txt_path, db_path, monkeypatch):
        def boom(conn, bank_id, questions):
            raise RuntimeError("disk full")

        monkeypatch.setattr(db, "_insert_questions", boom)
        with pytest.raises(RuntimeError, match="rolled back"):
            crud.import_txt(txt_path, db_path=db_path)
        assert db.list_banks(db_path=db_path) == []

    def test_warnings_do_not_block_import(self, tmp_path, db_path):
        path = tmp_path / "warn.txt"
        path.write_text(
            "一. 单选题\n1. 只有一个选项\nA. 唯一\n我的答案:A\n",
            encoding="utf-8",
        )
        summary = crud.import_txt(str(path), db_path=db_path)
        assert summary["stored_questions"] == 1
        assert summary["warnings"] == ["第 1 题：选项数量少于 2"]

    def test_unopenable_database(self, txt_path, tmp_path):
        target = str(tmp_path / "missing_dir" / "x.sqlite")
        with pytest.raises(RuntimeError, match="Cannot open database"):
            crud.import_txt(txt_path, db_path=target)

    def test_append_to_existing_bank(self, imported, txt_path, db_path):
        bank_id = imported["bank_id"]
        summary = crud.import_txt(txt_path, db_path=db_path, append_to=bank_id)

        assert summary["bank_id"] == bank_id
        assert summary["bank_name"] == "期末复习"
        assert summary["stored_questions"] == 3
        rows = db.get_bank_questions(bank_id, db_path=db_path)
        assert [r["order_index"] for r in rows] == [0, 1, 2, 3, 4, 5]
        assert db.get_bank(bank_id, db_path=db_path)["question_count"] == 6
        assert len(db.list_banks(db_path=db_path)) == 1

    def test_append_to_unknown_bank(self, txt_path, db_path):
        with pytest.raises(ValueError, match="Bank 42 not found"):
            crud.import_txt(txt_path, db_path=db_path, append_to=42)
        assert db.list_banks(db_path=db_path) == []


class TestBankDetail:
    """Test bank read and delete operations."""

    def test_detail(self, imported, db_path):
        detail = crud.get_bank_detail(imported["bank_id"], db_path=db_path)
        assert detail["bank"]["question_count"] == 3
        assert len(detail["questions"]) == 3
        assert detail["stats"]["judge"] == 1
        assert detail["wrong_count"] == 0

    def test_unknown_bank(self, db_path):
        db.init_db(db_path)
        assert crud.get_bank_detail(5, db_path=db_path) is None

    def test_delete_clears_session(self, imported, db_path):
        bank_id = imported["bank_id"]
        crud.save_session(bank_id, {"mode": "sequential", "index": 2}, db_path=db_path)
        assert crud.delete_bank(bank_id, db_path=db_path) is True
        assert crud.get_session(bank_id, db_path=db_path) is None
        assert crud.list_banks(db_path=db_path) == []


# ═══════════════════════════════════════════════════════════════════════════════
# PRACTICE TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestCheckAnswer:
    """Test answer comparison."""

    def test_single(self):
        q = Question(type=QuestionType.SINGLE, content="题", answer="B")
        assert crud.check_answer(q, "B")
        assert crud.check_answer(q, "b")
        assert not crud.check_answer(q, "A")
        assert not crud.check_answer(q, "")

    def test_multiple_ignores_order(self):
        q = Question(type=QuestionType.MULTIPLE, content="题", answer=["A", "C"])
        assert crud.check_answer(q, "CA")
        assert crud.check_answer(q, ["C", "A"])
        assert not crud.check_answer(q, "A")
        assert not crud.check_answer(q, "ABC")
        assert not crud.check_answer(q, None)

    def test_judge(self):
        q = Question(type=QuestionType.JUDGE, content="题", answer="A")
        assert crud.check_answer(q, "A")
        assert not crud.check_answer(q, "B")

    def test_separators_are_ignored(self):
        multiple = Question(type=QuestionType.MULTIPLE, content="题", answer=["A", "B"])
        assert crud.check_answer(multiple, "A,B")
        assert crud.check_answer(multiple, "A B")
        assert crud.check_answer(multiple, "b、a")
        assert not crud.check_answer(multiple, ", ")

        single = Question(type=QuestionType.SINGLE, content="题", answer="C")
        assert crud.check_answer(single, " c ")
        assert crud.check_answer(single, "C.")


class TestRecordAnswer:
    """Test attempt recording and the wrong list."""

    def test_correct_answer(self, imported, db_path):
        question_id = db.get_bank_questions(imported["bank_id"], db_path=db_path)[0]["id"]
        outcome = crud.record_answer(question_id, "B", time_spent=3, db_path=db_path)
        assert outcome == {"is_correct": True, "correct_answer": "B", "wrong_count": 0}
        assert db.count_wrong_questions(db_path=db_path) == 0

    def test_wrong_answers_accumulate(self, imported, db_path):
        bank_id = imported["bank_id"]
        question_id = db.get_bank_questions(bank_id, db_path=db_path)[1]["id"]

        first = crud.record_answer(question_id, "A", db_path=db_path)
        second = crud.record_answer(question_id, ["B"], db_path=db_path)

        assert first["is_correct"] is False
        assert first["correct_answer"] == ["A", "C"]
        assert second["wrong_count"] == 2
        assert db.get_practice_stats(bank_id, db_path=db_path)["wrong"] == 2

    def test_unknown_question(self, imported, db_path):
        with pytest.raises(KeyError):
            crud.record_answer(999, "A", db_path=db_path)


class TestSessions:
    """Test persisted practice sessions."""

    def test_save_and_get(self, imported, db_path):
        state = {"mode": "random", "index": 1, "answers": {"1": "B"}}
        crud.save_session(imported["bank_id"], state, db_path=db_path)
        assert crud.get_session(imported["bank_id"], db_path=db_path) == state

    def test_missing_session(self, imported, db_path):
        assert crud.get_session(imported["bank_id"], db_path=db_path) is None

    def test_clear(self, imported, db_path):
        crud.save_session(imported["bank_id"], {"index": 0}, db_path=db_path)
        crud.clear_session(imported["bank_id"], db_path=db_path)
        assert crud.get_session(imported["bank_id"], db_path=db_path) is None


class TestPracticeRun:
    """Test start_practice / answer_in_session."""

    def test_sequential_order(self, imported, db_path):
        queue, session = crud.start_practice(imported["bank_id"], db_path=db_path)
        assert [q["content"] for q in queue] == ["1+1=?", "选出偶数", "地球是圆的"]
        assert session["mode"] == "sequential"
        assert session["index"] == 0
        assert crud.get_session(imported["bank_id"], db_path=db_path) == session

    def test_resume_keeps_position(self, imported, db_path):
        bank_id = imported["bank_id"]
        queue, session = crud.start_practice(bank_id, db_path=db_path)
        crud.answer_in_session(bank_id, session, queue[0]["id"], "B", db_path=db_path)

        resumed_queue, resumed = crud.start_practice(bank_id, db_path=db_path)
        assert resumed["index"] == 1
        assert [q["id"] for q in resumed_queue] == [q["id"] for q in queue]
        assert resumed["answers"][str(queue[0]["id"])]["is_correct"] is True

    def test_restart_and_mode_change_start_fresh(self, imported, db_path):
        bank_id = imported["bank_id"]
        queue, session = crud.start_practice(bank_id, db_path=db_path)
        crud.answer_in_session(bank_id, session, queue[0]["id"], "B", db_path=db_path)

        _, restarted = crud.start_practice(bank_id, resume=False, db_path=db_path)
        assert restarted["index"] == 0

        crud.answer_in_session(bank_id, restarted, queue[0]["id"], "B", db_path=db_path)
        _, shuffled = crud.start_practice(bank_id, shuffle=True, db_path=db_path)
        assert shuffled["mode"] == "random"
        assert shuffled["index"] == 0

    def test_session_cleared_at_end(self, imported, db_path):
        bank_id = imported["bank_id"]
        queue, session = crud.start_practice(bank_id, db_path=db_path)
        for question, answer in zip(queue, ["B", "A,C", "B"]):
            crud.answer_in_session(bank_id, session, question["id"], answer, db_path=db_path)

        assert crud.get_session(bank_id, db_path=db_path) is None
        assert db.get_practice_stats(bank_id, db_path=db_path)["correct"] == 2
        assert db.count_wrong_questions(bank_id, db_path=db_path) == 1

    def test_random_count(self, imported, db_path):
        queue, session = crud.start_practice(
            imported["bank_id"], shuffle=True, count=2, db_path=db_path
        )
        assert len(queue) == 2
        assert len(set(session["question_ids"])) == 2

    def test_unknown_bank(self, db_path):
        db.init_db(db_path)
        with pytest.raises(KeyError):
            crud.start_practice(7, db_path=db_path)


# ═══════════════════════════════════════════════════════════════════════════════
# BACKUP TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestBackup:
    """Test export_to_file / import_from_file."""

    def test_export_and_restore(self, imported, db_path, tmp_path):
        out = tmp_path / "backup" / "all.json"
        counts = crud.export_to_file(str(out), db_path=db_path)
        assert counts["question_banks"] == 1
        assert counts["questions"] == 3

        target = str(tmp_path / "restored.sqlite")
        written = crud.import_from_file(str(out), db_path=target)
        assert written["questions"] == 3
        assert crud.get_bank_detail(imported["bank_id"], db_path=target)["stats"]["total"] == 3

    def test_export_single_bank(self, imported, db_path, tmp_path):
        out = tmp_path / "one.json"
        counts = crud.export_to_file(str(out), bank_id=imported["bank_id"], db_path=db_path)
        assert "settings" not in counts
        data = json.loads(out.read_text(encoding="utf-8"))
        assert data["data"]["question_banks"][0]["name"] == "期末复习"

    def test_export_unknown_bank(self, imported, db_path, tmp_path):
        with pytest.raises(KeyError):
            crud.export_to_file(str(tmp_path / "x.json"), bank_id=99, db_path=db_path)

    def test_restore_rejects_non_object(self, tmp_path, db_path):
        path = tmp_path / "bad.json"
        path.write_text("[1, 2, 3]", encoding="utf-8")
        with pytest.raises(ValueError):
            crud.import_from_file(str(path), db_path=db_path)

    def test_restore_dangling_reference_restores_nothing(self, imported, db_path, tmp_path):
        out = tmp_path / "all.json"
        crud.export_to_file(str(out), db_path=db_path)
        payload = json.loads(out.read_text(encoding="utf-8"))
        payload["data"]["questions"][0]["bank_id"] = 99
        out.write_text(json.dumps(payload), encoding="utf-8")

        target = str(tmp_path / "restored.sqlite")
        with pytest.raises(ValueError, match="could not be restored"):
            crud.import_from_file(str(out), db_path=target)
        assert db.list_banks(db_path=target) == []

    def test_restore_into_missing_directory(self, imported, db_path, tmp_path):
        out = tmp_path / "all.json"
        crud.export_to_file(str(out), db_path=db_path)
        with pytest.raises(ValueError, match="Cannot open database"):
            crud.import_from_file(str(out), db_path=str(tmp_path / "nope" / "x.sqlite"))


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
