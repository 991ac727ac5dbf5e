"""
Type Classifier
===============
Two-tier question type inference.

1. Header keywords ("单选题", "多选", "判断题", ...) found anywhere in a
   block set the persistent type for that block and every later block,
   until another header overrides it.
2. When no persistent type exists, an ordered list of content rules is
   tried; the first rule that returns a type wins.
"""

from __future__ import annotations

import logging
import re
from typing import Callable, Optional

from .models import QuestionOption, QuestionType

logger = logging.getLogger(__name__)

# ─── Keyword Tables ───────────────────────────────────────────────────────────

# Iteration order matters: type first, then keyword
TYPE_KEYWORDS: dict[QuestionType, tuple[str, ...]] = {
    QuestionType.SINGLE: ("单选题", "单项选择", "单选"),
    QuestionType.MULTIPLE: ("多选题", "多项选择", "多选", "不定项选择"),
    QuestionType.JUDGE: ("判断题", "判断", "是非题"),
}

# Option text pairs that mark a true/false question (either order)
JUDGE_OPTION_PAIRS: tuple[tuple[str, str], ...] = (
    ("对", "错"),
    ("正确", "错误"),
    ("√", "×"),
    ("是", "否"),
    ("A", "B"),
)

# "一. 单选题（共 50 题，100.0 分）"
SECTION_HEADER_PATTERN = re.compile(r"^[一二三四五六七八九十]+[.、．]")


def detect_type_from_header(text: str) -> Optional[QuestionType]:
    """Return the first type whose keyword appears in `text`."""
    for qtype, keywords in TYPE_KEYWORDS.items():
        for keyword in keywords:
            if keyword in text:
                return qtype
    return None


def is_section_header(block: str) -> bool:
    """True for header-only blocks, which never produce a question."""
    return bool(SECTION_HEADER_PATTERN.match(block))


# ─── Content Rules ────────────────────────────────────────────────────────────

ContentRule = Callable[[list[QuestionOption], str], Optional[QuestionType]]


def judge_option_rule(
    options: list[QuestionOption], answer: str
) -> Optional[QuestionType]:
    """Exactly two options forming a known true/false pair."""
    if len(options) != 2:
        return None
    texts = (options[0].text.strip(), options[1].text.strip())
    for first, second in JUDGE_OPTION_PAIRS:
        if texts == (first, second) or texts == (second, first):
            return QuestionType.JUDGE
    return None


def multi_letter_answer_rule(
    options: list[QuestionOption], answer: str
) -> Optional[QuestionType]:
    """More than one answer letter means multiple choice."""
    letters = re.sub(r"[^A-Z]", "", answer.upper())
    if len(letters) > 1:
        return QuestionType.MULTIPLE
    return None


def default_single_rule(
    options: list[QuestionOption], answer: str
) -> Optional[QuestionType]:
    return QuestionType.SINGLE


CONTENT_RULES: tuple[ContentRule, ...] = (
    judge_option_rule,
    multi_letter_answer_rule,
    default_single_rule,
)


def detect_type_from_content(
    options: list[QuestionOption],
    answer: str,
    rules: tuple[ContentRule, ...] = CONTENT_RULES,
) -> QuestionType:
    """
    Infer a question type from its options and raw answer string.

    Args:
        options: Parsed options of the question.
        answer: Raw answer letters as extracted from the block.
        rules: Ordered rules; the first non-None result wins.

    Returns:
        The inferred QuestionType (SINGLE if no rule matches).
    """
    for rule in rules:
        qtype = rule(options, answer)
        if qtype is not None:
            logger.debug(f"Content rule {rule.__name__} -> {qtype.value}")
            return qtype
    return QuestionType.SINGLE
