"""Per-type question counts."""

from __future__ import annotations

from collections import Counter

from .models import Question, QuestionType, TypeStats


def get_type_stats(questions: list[Question]) -> TypeStats:
    """Count questions in total and per type."""
    counts = Counter(q.type for q in questions)
    return TypeStats(
        total=len(questions),
        single=counts[QuestionType.SINGLE],
        multiple=counts[QuestionType.MULTIPLE],
        judge=counts[QuestionType.JUDGE],
    )
