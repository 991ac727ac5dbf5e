"""
Module entry point for: python -m quizbank

Allows running the CLI directly as a module:
    python -m quizbank parse <txt_path> [options]
    python -m quizbank import <txt_path> [options]
    python -m quizbank banks
"""

from .cli import cli


def main():
    cli()


if __name__ == "__main__":
    main()
