"""
Question Bank Parser Engine
===========================
Main orchestrator that combines preprocessing, block splitting, type
classification, block parsing, validation and statistics into a
complete TXT parsing pipeline.

Usage:
    engine = ImporterEngine(config)
    result = engine.parse("path/to/bank.txt")
    # result is a ParseResult with structured JSON output

Architecture:
    TXT → preprocess → split_blocks → parse_block (per block, with
    ParseContext) → Questions → ValidationEngine + get_type_stats →
    ParseResult (JSON)
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from . import __version__
from .block_splitter import preprocess, split_blocks
from .models import ParseResult, Question, SourceMetadata
from .state_machine import ParseContext, parse_block
from .stats import get_type_stats
from .validator import ValidationEngine

logger = logging.getLogger(__name__)

LOG_FORMAT = "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def parse_txt_file(text: str) -> list[Question]:
    """
    Parse an exported question bank into Question records.

    Blocks missing content or an answer are dropped; malformed input
    never raises, it only yields fewer questions.
    """
    questions, _ = _parse_blocks(split_blocks(preprocess(text)))
    return questions


def _parse_blocks(blocks: list[str]) -> tuple[list[Question], ParseContext]:
    questions: list[Question] = []
    context = ParseContext()
    for block in blocks:
        question, context = parse_block(block, context)
        if question is not None:
            questions.append(question)

    logger.debug(
        f"Parsed {context.questions_emitted} questions from "
        f"{context.blocks_seen} blocks ({context.blocks_dropped} dropped)"
    )
    return questions, context


@dataclass
class ImporterConfig:
    """Configuration for the parser engine."""

    # Output settings
    output_dir: str = "output"
    save_output: bool = False

    # Bank metadata
    bank_name: str = ""

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None


class ImporterEngine:
    """
    Main TXT parsing engine.

    Orchestrates the full pipeline:
        1. Preprocessing (run-on line repair)
        2. Block splitting
        3. Type classification and block parsing
        4. Validation
        5. Statistics and output formatting
    """

    def __init__(self, config: Optional[ImporterConfig] = None):
        self.config = config or ImporterConfig()
        self._setup_logging()

    def _setup_logging(self):
        """Configure logging based on config."""
        setup_logging(self.config.log_level, self.config.log_file)

    def parse_text(self, text: str, source: Optional[SourceMetadata] = None) -> ParseResult:
        """Run the full pipeline over in-memory text."""
        blocks = split_blocks(preprocess(text))
        questions, _ = _parse_blocks(blocks)

        validation = ValidationEngine().validate(questions)
        stats = get_type_stats(questions)

        return ParseResult(
            source=source or SourceMetadata(name=self.config.bank_name),
            parser_version=__version__,
            block_count=len(blocks),
            questions=questions,
            validation=validation,
            stats=stats,
        )

    def parse(self, txt_path: str) -> ParseResult:
        """
        Parse a TXT question bank file.

        Args:
            txt_path: Path to the UTF-8 text file.

        Returns:
            ParseResult containing questions, validation and stats.

        Raises:
            FileNotFoundError: If the file doesn't exist.
            UnicodeDecodeError: If the file is not valid UTF-8.
        """
        txt_path = os.path.abspath(txt_path)

        if not os.path.exists(txt_path):
            raise FileNotFoundError(f"TXT file not found: {txt_path}")

        start_time = time.time()
        logger.info(f"Starting parse of: {txt_path}")

        text = read_text_file(txt_path)
        result = self.parse_text(text, self._build_source_metadata(txt_path))

        elapsed = time.time() - start_time
        logger.info(
            f"Parse complete in {elapsed:.2f}s: "
            f"{len(result.questions)} questions from "
            f"{result.block_count} blocks"
        )

        if self.config.save_output:
            output_dir = Path(self.config.output_dir)
            output_dir.mkdir(parents=True, exist_ok=True)
            output_file = output_dir / f"{Path(txt_path).stem}_parsed.json"
            self._save_json(result, output_file)

        return result

    def _build_source_metadata(self, txt_path: str) -> SourceMetadata:
        """Build source metadata from file info and config."""
        return SourceMetadata(
            name=self.config.bank_name or Path(txt_path).stem,
            source_file=os.path.basename(txt_path),
            file_hash=self._compute_file_hash(txt_path),
            file_size_bytes=os.path.getsize(txt_path),
        )

    def _compute_file_hash(self, filepath: str) -> str:
        """Compute SHA-256 hash of a file."""
        sha256 = hashlib.sha256()
        with open(filepath, "rb") as f:
            for chunk in iter(lambda: f.read(8192), b""):
                sha256.update(chunk)
        return sha256.hexdigest()

    def _save_json(self, result: ParseResult, filepath: Path):
        """Save ParseResult to JSON file."""
        try:
            data = result.model_dump(mode="json")
            with open(filepath, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            logger.info(f"Saved JSON output: {filepath}")
        except OSError as e:
            logger.error(f"Failed to save JSON: {e}")


def setup_logging(level: str = "INFO", log_file: Optional[str] = None):
    """Attach console (and optional file) handlers to the package logger."""
    log_level = getattr(logging, level.upper(), logging.INFO)

    # Configure root logger for the quizbank package
    package_logger = logging.getLogger("quizbank")
    package_logger.setLevel(log_level)

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    # Console handler
    if not package_logger.handlers:
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        package_logger.addHandler(console)
    for handler in package_logger.handlers:
        handler.setLevel(log_level)

    # File handler
    if log_file:
        log_path = Path(log_file).resolve()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        if not any(
            isinstance(h, logging.FileHandler)
            and Path(h.baseFilename) == log_path
            for h in package_logger.handlers
        ):
            file_handler = logging.FileHandler(log_path, encoding="utf-8")
            file_handler.setLevel(log_level)
            file_handler.setFormatter(formatter)
            package_logger.addHandler(file_handler)


def read_text_file(path: str) -> str:
    """Read a UTF-8 text file, tolerating a byte-order mark."""
    with open(path, "r", encoding="utf-8-sig") as f:
        return f.read()
