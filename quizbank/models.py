"""
Data Models
===========
Pydantic models for parsed question banks.
All models are serializable to JSON for storage and export.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, Field, computed_field


# ─── Enums ────────────────────────────────────────────────────────────────────


class QuestionType(str, Enum):
    """Supported question formats."""
    SINGLE = "single"
    MULTIPLE = "multiple"
    JUDGE = "judge"

    @property
    def display_name(self) -> str:
        return TYPE_NAMES[self]


TYPE_NAMES = {
    QuestionType.SINGLE: "单选题",
    QuestionType.MULTIPLE: "多选题",
    QuestionType.JUDGE: "判断题",
}


# ─── Question Models ─────────────────────────────────────────────────────────


class QuestionOption(BaseModel):
    """One lettered option of a question."""
    key: str = Field(pattern=r"^[A-Z]$")
    text: str = Field(min_length=1)


class Question(BaseModel):
    """
    A parsed question record.

    `answer` is a string for single/judge questions and a list of
    letters for multiple-choice questions.
    """
    type: QuestionType
    content: str = ""
    options: list[QuestionOption] = Field(default_factory=list)
    answer: Union[str, list[str]] = ""

    @property
    def answer_letters(self) -> list[str]:
        """Answer as a list of individual letters, whatever its shape."""
        if isinstance(self.answer, list):
            return [letter for part in self.answer for letter in part]
        return list(self.answer)

    @property
    def option_keys(self) -> list[str]:
        return [opt.key for opt in self.options]


# ─── Report Models ────────────────────────────────────────────────────────────


class TypeStats(BaseModel):
    """Question counts per type."""
    total: int = 0
    single: int = 0
    multiple: int = 0
    judge: int = 0


class ValidationResult(BaseModel):
    """Post-parse validation outcome. Warnings never block an import."""
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @computed_field
    @property
    def is_valid(self) -> bool:
        return not self.errors


class SourceMetadata(BaseModel):
    """Metadata about the imported text file."""
    name: str = ""
    source_file: str = ""
    file_hash: str = ""
    file_size_bytes: int = 0


class ParseResult(BaseModel):
    """
    Complete output of a parse run.
    This is the top-level JSON structure written by the engine.
    """
    source: SourceMetadata = Field(default_factory=SourceMetadata)
    parser_version: str = "1.0.0"
    parse_timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    block_count: int = 0
    questions: list[Question] = Field(default_factory=list)
    validation: ValidationResult = Field(default_factory=ValidationResult)
    stats: TypeStats = Field(default_factory=TypeStats)


def question_from_row(row: dict) -> Optional[Question]:
    """Rebuild a Question from a hydrated database row."""
    if not row:
        return None
    return Question(
        type=row["type"],
        content=row["content"],
        options=row["options"],
        answer=row["answer"],
    )
