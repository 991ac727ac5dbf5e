"""
Validation Engine
=================
Post-parse sanity checks.

Errors:
    - empty question content
    - empty answer
Warnings:
    - non-judge question with fewer than 2 options
    - single-choice question whose answer has more than one letter

Questions are never modified or discarded here; the caller decides
whether warnings are acceptable.
"""

from __future__ import annotations

import logging

from .models import Question, QuestionType, ValidationResult

logger = logging.getLogger(__name__)


class ValidationEngine:
    """
    Validates parsed questions and produces a ValidationResult.
    """

    def validate(self, questions: list[Question]) -> ValidationResult:
        """
        Run all checks on parsed questions.

        Args:
            questions: Questions to validate (1-based numbering in messages).

        Returns:
            ValidationResult with accumulated errors and warnings.
        """
        result = ValidationResult()

        if not questions:
            logger.warning("No questions to validate")
            return result

        for index, q in enumerate(questions, start=1):
            label = f"第 {index} 题"

            if not q.content:
                result.errors.append(f"{label}：题目内容为空")

            if not q.answer_letters:
                result.errors.append(f"{label}：答案为空")

            if q.type != QuestionType.JUDGE and len(q.options) < 2:
                result.warnings.append(f"{label}：选项数量少于 2")

            if q.type == QuestionType.SINGLE and len(q.answer_letters) > 1:
                result.warnings.append(f"{label}：单选题但答案包含多个选项")

        logger.info(
            f"Validated {len(questions)} questions: "
            f"{len(result.errors)} errors, {len(result.warnings)} warnings"
        )
        for message in result.errors:
            logger.debug(f"  error: {message}")
        for message in result.warnings:
            logger.debug(f"  warning: {message}")

        return result


def validate_questions(questions: list[Question]) -> ValidationResult:
    """Validate a list of questions with a default engine."""
    return ValidationEngine().validate(questions)
