"""
Block Splitter
==============
Normalizes raw exported text and partitions it into one block per
question or section header.

Exporters sometimes join two questions onto one physical line
("我的答案:A  9. 下一题..."); the preprocessor restores the missing
line break so the splitter can see the question boundary.
"""

from __future__ import annotations

import logging
import re

from .classifier import TYPE_KEYWORDS

logger = logging.getLogger(__name__)

# ─── Boundary Patterns ────────────────────────────────────────────────────────

# "我的答案:A  9." → answer marker, letters, whitespace, next question number
RUN_ON_ANSWER_PATTERN = re.compile(
    r"((?:我的答案|正确答案)[:：]?\s*[A-Za-z]+)\s+(\d+[.、．]\s*)"
)

# Zero-width split point before a question number line ("12." / "12、")
# or a section header line that names a question type ("二. 多选题")
BLOCK_BOUNDARY_PATTERN = re.compile(
    r"(?=^[ \t　]*(?:\d+[.、．]|[一二三四五六七八九十]+[.、．][^\n]*(?:"
    + "|".join(
        re.escape(keyword)
        for keywords in TYPE_KEYWORDS.values()
        for keyword in keywords
    )
    + r")))",
    re.MULTILINE,
)


def preprocess(text: str) -> str:
    """
    Normalize line endings and break run-on answer/question lines.

    Applying this twice gives the same result as applying it once.
    """
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    return RUN_ON_ANSWER_PATTERN.sub(r"\1\n\2", text)


def split_blocks(text: str) -> list[str]:
    """
    Split preprocessed text into trimmed, non-empty blocks.

    The delimiter-bearing line stays at the top of the block it starts,
    so source order is preserved.
    """
    blocks = [
        chunk.strip()
        for chunk in BLOCK_BOUNDARY_PATTERN.split(text)
    ]
    blocks = [b for b in blocks if b]
    logger.debug(f"Split text into {len(blocks)} blocks")
    return blocks
