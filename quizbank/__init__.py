"""
Question Bank Importer
======================
Offline parser and local store for plain-text exam question banks.

Architecture:
    - Block Splitter: Repairs run-on lines and splits text into blocks
    - Classifier: Header keywords + ordered content rules for question type
    - State Machine: Extracts content, options and answer per block
    - Validator: Flags empty content/answers and weak structure
    - Database / CRUD: SQLite persistence for banks and practice history

Version: 1.0.0
"""

__version__ = "1.0.0"

from .engine import parse_txt_file  # noqa: E402
from .stats import get_type_stats  # noqa: E402
from .validator import validate_questions  # noqa: E402

__all__ = [
    "__version__",
    "get_type_stats",
    "parse_txt_file",
    "validate_questions",
]
