"""
State Machine Parser
====================
Deterministic line-oriented parser that turns one question block into a
Question record.

Every line is first classified into a LineKind (question number, option,
answer, section header, plain text); the parser then walks the lines
through CONTENT → OPTIONS → DONE states.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional

from .classifier import (
    SECTION_HEADER_PATTERN,
    detect_type_from_content,
    detect_type_from_header,
    is_section_header,
)
from .models import Question, QuestionOption, QuestionType

logger = logging.getLogger(__name__)

# ─── Line Patterns ────────────────────────────────────────────────────────────

# "12." / "12、" / "12．" at start of line
QUESTION_NUMBER_PATTERN = re.compile(r"^\d+[.、．]\s*")

# "A. 选项", "b、选项", "C：选项"
OPTION_PATTERN = re.compile(r"^([A-Za-z])[.、．:：]\s*(\S.*)$")

# Line beginning with an answer marker followed by a colon, letters or nothing;
# "正确答案的说法是" is stem text
ANSWER_LINE_PATTERN = re.compile(
    r"^(?:我的答案|正确答案)(?:[:：]|\s*[A-Za-z]|\s*$)"
)

# Answer marker anywhere in a line, followed by the answer letters
ANSWER_PATTERN = re.compile(r"(?:我的答案|正确答案)[:：]?\s*([A-Za-z]+)")

# "(单选题, 2.0 分)" / "（多选题，3 分）"
TYPE_ANNOTATION_PATTERN = re.compile(
    r"[(（][单多判][选断]题[,，]\s*[\d.]+\s*分[)）]\s*"
)

JUDGE_DEFAULT_OPTIONS = (("A", "正确"), ("B", "错误"))


class LineKind(Enum):
    """Structural role of a single line."""
    QUESTION_NUMBER = "question_number"
    OPTION = "option"
    ANSWER = "answer"
    SECTION_HEADER = "section_header"
    TEXT = "text"


def classify_line(line: str) -> LineKind:
    """Classify one stripped line."""
    if ANSWER_LINE_PATTERN.match(line):
        return LineKind.ANSWER
    if SECTION_HEADER_PATTERN.match(line):
        return LineKind.SECTION_HEADER
    if QUESTION_NUMBER_PATTERN.match(line):
        return LineKind.QUESTION_NUMBER
    if OPTION_PATTERN.match(line):
        return LineKind.OPTION
    return LineKind.TEXT


def extract_answer(lines: list[str]) -> str:
    """First answer found in document order, uppercased; "" if none."""
    for line in lines:
        match = ANSWER_PATTERN.search(line)
        if match:
            return match.group(1).upper()
    return ""


def clean_content_line(line: str) -> str:
    """Strip the leading question number and inline type/score annotations."""
    line = QUESTION_NUMBER_PATTERN.sub("", line, count=1)
    return TYPE_ANNOTATION_PATTERN.sub("", line).strip()


# ─── Parse Context ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ParseContext:
    """Classification state threaded through the block loop."""
    current_type: Optional[QuestionType] = None
    blocks_seen: int = 0
    questions_emitted: int = 0
    blocks_dropped: int = 0


class ParserState(Enum):
    """Internal states of the block parser."""
    CONTENT = "CONTENT"
    OPTIONS = "OPTIONS"
    DONE = "DONE"


class BlockParser:
    """
    Finite state machine that extracts content, options and answer
    from the lines of a single question block.
    """

    def __init__(self):
        self.state = ParserState.CONTENT
        self.content_parts: list[str] = []
        self.options: list[QuestionOption] = []

    def reset(self):
        """Reset the state machine for a fresh block."""
        self.state = ParserState.CONTENT
        self.content_parts = []
        self.options = []

    def parse(
        self, block: str, current_type: Optional[QuestionType]
    ) -> Optional[Question]:
        """
        Parse one non-header block.

        Args:
            block: Block text as produced by the splitter.
            current_type: Persistent type from the latest header, if any.

        Returns:
            A Question, or None when content or answer is missing.
        """
        self.reset()
        lines = [ln.strip() for ln in block.split("\n")]
        lines = [ln for ln in lines if ln]
        if not lines:
            return None

        for line in lines:
            if self.state == ParserState.DONE:
                break
            self._process_line(line, classify_line(line))

        content = " ".join(self.content_parts)
        answer = extract_answer(lines)

        if not content or not answer:
            logger.debug(
                f"Dropping block (content={bool(content)}, "
                f"answer={bool(answer)}): {lines[0][:40]!r}"
            )
            return None

        qtype = current_type or detect_type_from_content(self.options, answer)
        options = list(self.options)

        if qtype == QuestionType.JUDGE and not options:
            options = [
                QuestionOption(key=key, text=text)
                for key, text in JUDGE_DEFAULT_OPTIONS
            ]

        return Question(
            type=qtype,
            content=content,
            options=options,
            answer=_shape_answer(answer, qtype),
        )

    def _process_line(self, line: str, kind: LineKind):
        if self.state == ParserState.CONTENT:
            if kind == LineKind.OPTION:
                self._start_new_option(line)
                self.state = ParserState.OPTIONS
            elif kind == LineKind.ANSWER:
                self.state = ParserState.DONE
            else:
                cleaned = clean_content_line(line)
                if cleaned:
                    self.content_parts.append(cleaned)

        elif self.state == ParserState.OPTIONS:
            if kind in (LineKind.ANSWER, LineKind.QUESTION_NUMBER):
                self.state = ParserState.DONE
            elif kind == LineKind.OPTION:
                self._start_new_option(line)
            else:
                # Continuation of the most recent option
                last = self.options[-1]
                self.options[-1] = QuestionOption(
                    key=last.key, text=f"{last.text} {line}"
                )

    def _start_new_option(self, line: str):
        match = OPTION_PATTERN.match(line)
        self.options.append(QuestionOption(
            key=match.group(1).upper(),
            text=match.group(2).strip(),
        ))


def _shape_answer(answer: str, qtype: QuestionType):
    """Multiple choice answers become a de-duplicated list of letters."""
    if qtype != QuestionType.MULTIPLE:
        return answer
    letters: list[str] = []
    for letter in answer:
        if letter not in letters:
            letters.append(letter)
    return letters


def parse_block(
    block: str, context: ParseContext
) -> tuple[Optional[Question], ParseContext]:
    """
    Classify and parse one block.

    Returns the question (or None) together with the updated context;
    the input context is never mutated.
    """
    current_type = detect_type_from_header(block) or context.current_type
    context = replace(
        context,
        current_type=current_type,
        blocks_seen=context.blocks_seen + 1,
    )

    if is_section_header(block):
        logger.debug(
            f"Section header -> {current_type.value if current_type else None}"
        )
        return None, context

    question = BlockParser().parse(block, current_type)
    if question is None:
        return None, replace(context, blocks_dropped=context.blocks_dropped + 1)
    return question, replace(
        context, questions_emitted=context.questions_emitted + 1
    )
