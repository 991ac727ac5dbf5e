"""
CLI Interface
=============
Command-line interface for the question bank importer.

Usage:
    python -m quizbank parse <txt_path> [options]
    python -m quizbank validate <txt_path>
    python -m quizbank import <txt_path> [--name NAME] [--append-to ID]
    python -m quizbank banks
    python -m quizbank show <bank_id>
    python -m quizbank rename <bank_id> <name>
    python -m quizbank delete <bank_id>
    python -m quizbank practice <bank_id> [--random] [--count N] [--restart]
    python -m quizbank wrong [bank_id] [--remove QUESTION_ID]
    python -m quizbank favorite <question_id>
    python -m quizbank favorites [--bank-id ID]
    python -m quizbank stats [bank_id] [--today]
    python -m quizbank history [bank_id] [--limit N]
    python -m quizbank export <out_path> [--bank-id ID]
    python -m quizbank restore <json_path>
"""

from __future__ import annotations

import json
import os
import sqlite3
import sys
import time
from datetime import datetime

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from . import __version__
from . import crud
from . import database as db
from .engine import ImporterConfig, ImporterEngine, setup_logging
from .models import QuestionType

console = Console()

db_option = click.option(
    "--db",
    "db_path",
    default=None,
    help="SQLite database path (defaults to $QUIZBANK_DB_PATH or quizbank.sqlite)",
)


@click.group()
@click.version_option(version=__version__, prog_name="quizbank")
@click.option(
    "--log-level",
    default="WARNING",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    help="Logging level",
)
@click.option(
    "--log-file",
    default=None,
    help="Path to log file",
)
@click.pass_context
def cli(ctx: click.Context, log_level: str, log_file: str):
    """Question bank importer: parse and store exported TXT exams."""
    ctx.ensure_object(dict)
    ctx.obj["log_level"] = log_level
    ctx.obj["log_file"] = log_file
    setup_logging(log_level, log_file)


@cli.command()
@click.argument("txt_path", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--output", "-o",
    default=None,
    help="Also save the parse result JSON into this directory",
)
@click.option(
    "--json-output",
    is_flag=True,
    default=False,
    help="Output only JSON result to stdout (for programmatic use)",
)
@click.option(
    "--limit",
    default=10,
    type=int,
    help="Number of questions to preview",
)
@click.pass_context
def parse(ctx: click.Context, txt_path: str, output: str, json_output: bool, limit: int):
    """Parse a TXT question bank and show what was found."""
    log_level = "ERROR" if json_output else ctx.obj["log_level"]

    config = ImporterConfig(
        output_dir=output or "output",
        save_output=output is not None,
        log_level=log_level,
        log_file=ctx.obj["log_file"],
    )

    try:
        result = ImporterEngine(config).parse(txt_path)
    except (FileNotFoundError, UnicodeDecodeError) as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(1)

    if json_output:
        print(json.dumps(
            result.model_dump(mode="json"),
            indent=2,
            ensure_ascii=False,
        ))
        return

    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]Question Bank Parser v{__version__}[/]\n"
            f"[dim]Parsed: {os.path.basename(txt_path)}[/]",
            border_style="cyan",
        )
    )
    _display_stats_table(result.stats.model_dump())
    _display_validation(result.validation.errors, result.validation.warnings)
    _display_questions(
        [q.model_dump(mode="json") for q in result.questions[:limit]],
        title=f"First {min(limit, len(result.questions))} Questions",
    )
    console.print(
        f"[dim]Parser v{result.parser_version} | "
        f"Blocks: {result.block_count} | "
        f"Questions: {len(result.questions)} | "
        f"Timestamp: {result.parse_timestamp}[/]"
    )
    console.print()


@cli.command()
@click.argument("txt_path", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def validate(ctx: click.Context, txt_path: str):
    """Validate a TXT question bank; exit 1 when errors are found."""
    config = ImporterConfig(
        log_level=ctx.obj["log_level"],
        log_file=ctx.obj["log_file"],
    )
    try:
        result = ImporterEngine(config).parse(txt_path)
    except (FileNotFoundError, UnicodeDecodeError) as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(1)

    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]Validation Report[/]\n"
            f"[dim]File: {txt_path}[/]",
            border_style="cyan",
        )
    )
    _display_stats_table(result.stats.model_dump())
    _display_validation(result.validation.errors, result.validation.warnings)

    if not result.questions:
        console.print("[red]No questions could be parsed.[/]")
        sys.exit(1)
    if not result.validation.is_valid:
        sys.exit(1)


@cli.command("import")
@click.argument("txt_path", type=click.Path(exists=True, dir_okay=False))
@click.option("--name", "-n", default="", help="Bank name (defaults to filename)")
@click.option(
    "--force",
    is_flag=True,
    default=False,
    help="Import even if validation reports errors",
)
@click.option(
    "--append-to",
    default=None,
    type=int,
    help="Add the questions to an existing bank instead of creating one",
)
@db_option
def import_bank(
    txt_path: str, name: str, force: bool, append_to: int, db_path: str
):
    """Parse a TXT question bank and store it as a new bank."""
    try:
        summary = crud.import_txt(
            txt_path,
            bank_name=name,
            force=force,
            db_path=db_path,
            append_to=append_to,
        )
    except (FileNotFoundError, ValueError, RuntimeError) as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(1)

    verb = "Extended" if append_to is not None else "Imported"
    console.print()
    console.print(
        Panel.fit(
            f"[bold green]{verb} bank #{summary['bank_id']}[/] "
            f"{summary['bank_name']}\n"
            f"[dim]{summary['stored_questions']} questions stored[/]",
            border_style="green",
        )
    )
    _display_stats_table(summary["stats"])
    if summary["warnings"]:
        _display_validation([], summary["warnings"])


@cli.command()
@db_option
def banks(db_path: str):
    """List imported banks."""
    _open_db(db_path)
    rows = crud.list_banks(db_path=db_path)

    if not rows:
        console.print("[yellow]No banks imported yet.[/]")
        return

    table = Table(title="Question Banks", border_style="cyan")
    table.add_column("ID", justify="right", style="bold")
    table.add_column("Name")
    table.add_column("Questions", justify="right")
    table.add_column("Wrong", justify="right")
    table.add_column("Created")

    for bank in rows:
        table.add_row(
            str(bank["id"]),
            bank["name"],
            str(bank["question_count"]),
            str(db.count_wrong_questions(bank["id"], db_path=db_path)),
            _format_time(bank["created_at"]),
        )

    console.print(table)


@cli.command()
@click.argument("bank_id", type=int)
@click.option("--limit", default=0, type=int, help="Max questions to list (0 = all)")
@db_option
def show(bank_id: int, limit: int, db_path: str):
    """Show one bank's questions and statistics."""
    _open_db(db_path)
    detail = crud.get_bank_detail(bank_id, db_path=db_path)
    if detail is None:
        console.print(f"[red]Error:[/] bank {bank_id} not found")
        sys.exit(1)

    questions = detail["questions"]
    if limit:
        questions = questions[:limit]

    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]{detail['bank']['name']}[/]\n"
            f"[dim]Bank #{bank_id} | {detail['wrong_count']} in wrong list[/]",
            border_style="cyan",
        )
    )
    _display_stats_table(detail["stats"])
    _display_questions(questions, title="Questions")


@cli.command()
@click.argument("bank_id", type=int)
@click.argument("name")
@db_option
def rename(bank_id: int, name: str, db_path: str):
    """Rename a bank."""
    _open_db(db_path)
    name = name.strip()
    if not name:
        console.print("[red]Error:[/] bank name must not be empty")
        sys.exit(1)
    if not db.update_bank(bank_id, db_path=db_path, name=name):
        console.print(f"[red]Error:[/] bank {bank_id} not found")
        sys.exit(1)
    console.print(f"[green]✓[/] Renamed bank {bank_id} to {name}")


@cli.command()
@click.argument("bank_id", type=int)
@click.option("--yes", "-y", is_flag=True, default=False, help="Skip confirmation")
@db_option
def delete(bank_id: int, yes: bool, db_path: str):
    """Delete a bank with its questions and practice history."""
    _open_db(db_path)
    if not yes:
        click.confirm(f"Delete bank {bank_id}?", abort=True)

    if not crud.delete_bank(bank_id, db_path=db_path):
        console.print(f"[red]Error:[/] bank {bank_id} not found")
        sys.exit(1)
    console.print(f"[green]✓[/] Deleted bank {bank_id}")


# ─── Practice ─────────────────────────────────────────────────────────────────


@cli.command()
@click.argument("bank_id", type=int)
@click.option("--random", "shuffle", is_flag=True, default=False, help="Shuffle the questions")
@click.option("--count", "-c", default=0, type=int, help="Number of questions (0 = all)")
@click.option("--restart", is_flag=True, default=False, help="Ignore saved progress")
@db_option
def practice(bank_id: int, shuffle: bool, count: int, restart: bool, db_path: str):
    """Answer a bank's questions interactively; progress is saved."""
    _open_db(db_path)
    try:
        queue, session = crud.start_practice(
            bank_id,
            shuffle=shuffle,
            count=count,
            resume=not restart,
            db_path=db_path,
        )
    except KeyError:
        console.print(f"[red]Error:[/] bank {bank_id} not found")
        sys.exit(1)

    if not queue:
        console.print("[yellow]No questions to practice.[/]")
        return

    start = session["index"]
    if start:
        console.print(f"[dim]Resuming at question {start + 1}/{len(queue)}[/]")

    correct = 0
    for position in range(start, len(queue)):
        question = queue[position]
        _display_question_card(question, position + 1, len(queue))

        started = time.time()
        raw = click.prompt("Answer (q to quit)").strip()
        if raw.lower() == "q":
            console.print(f"[dim]Progress saved at {position}/{len(queue)}[/]")
            return

        outcome = crud.answer_in_session(
            bank_id,
            session,
            question["id"],
            raw.upper(),
            time_spent=int(time.time() - started),
            db_path=db_path,
        )
        if outcome["is_correct"]:
            correct += 1
            console.print("[green]✓ Correct[/]")
        else:
            console.print(
                f"[red]✗ Wrong[/], answer: "
                f"{_format_answer(outcome['correct_answer'])} "
                f"[dim](wrong {outcome['wrong_count']}x)[/]"
            )
        console.print()

    answered = len(queue) - start
    console.print(
        Panel.fit(
            f"[bold cyan]Practice complete[/]\n"
            f"{correct}/{answered} correct",
            border_style="cyan",
        )
    )


@cli.command()
@click.argument("bank_id", type=int, required=False)
@click.option(
    "--remove",
    "remove_id",
    default=None,
    type=int,
    help="Clear one question from the wrong list",
)
@db_option
def wrong(bank_id: int, remove_id: int, db_path: str):
    """List questions answered wrong, optionally for one bank."""
    _open_db(db_path)
    if remove_id is not None:
        if not db.remove_wrong_question(remove_id, db_path=db_path):
            console.print(f"[red]Error:[/] question {remove_id} is not in the wrong list")
            sys.exit(1)
        console.print(f"[green]✓[/] Removed question {remove_id} from the wrong list")
        return

    rows = db.get_wrong_questions(bank_id, db_path=db_path)
    if not rows:
        console.print("[green]No wrong questions.[/]")
        return

    table = Table(title="Wrong Questions", border_style="red", show_lines=True)
    table.add_column("ID", justify="right", style="bold")
    table.add_column("Bank", justify="right")
    table.add_column("Type")
    table.add_column("Content")
    table.add_column("Answer", justify="center")
    table.add_column("Times", justify="right")
    table.add_column("Last wrong")

    for q in rows:
        table.add_row(
            str(q["id"]),
            str(q["bank_id"]),
            QuestionType(q["type"]).display_name,
            q["content"],
            _format_answer(q["answer"]),
            str(q["wrong_info"]["wrong_count"]),
            _format_time(q["wrong_info"]["last_wrong_at"]),
        )

    console.print(table)


@cli.command()
@click.argument("question_id", type=int)
@db_option
def favorite(question_id: int, db_path: str):
    """Toggle a question's favorite flag."""
    _open_db(db_path)
    if db.get_question(question_id, db_path=db_path) is None:
        console.print(f"[red]Error:[/] question {question_id} not found")
        sys.exit(1)

    if db.toggle_favorite(question_id, db_path=db_path):
        console.print(f"[yellow]★[/] Question {question_id} added to favorites")
    else:
        console.print(f"[dim]Question {question_id} removed from favorites[/]")


@cli.command()
@click.option("--bank-id", default=None, type=int, help="Only one bank")
@db_option
def favorites(bank_id: int, db_path: str):
    """List favorite questions."""
    _open_db(db_path)
    rows = db.get_favorites(bank_id, db_path=db_path)
    if not rows:
        console.print("[yellow]No favorite questions.[/]")
        return
    _display_questions(rows, title="Favorites")


@cli.command()
@click.argument("bank_id", type=int, required=False)
@click.option("--today", is_flag=True, default=False, help="Only today's answers")
@db_option
def stats(bank_id: int, today: bool, db_path: str):
    """Show practice totals and accuracy."""
    _open_db(db_path)
    if today:
        summary = db.get_today_stats(bank_id, db_path=db_path)
    else:
        summary = db.get_practice_stats(bank_id, db_path=db_path)

    scope = f"Bank #{bank_id}" if bank_id is not None else "All banks"
    table = Table(
        title=f"Practice Stats ({scope}{', today' if today else ''})",
        border_style="cyan",
    )
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Answered", str(summary["total"]))
    table.add_row("Correct", f"[green]{summary['correct']}[/]")
    table.add_row("Wrong", f"[red]{summary['wrong']}[/]")
    table.add_row("Accuracy", f"{summary['accuracy']}%")
    if "total_time" in summary:
        table.add_row("Time spent", f"{summary['total_time']}s")

    console.print(table)


@cli.command()
@click.argument("bank_id", type=int, required=False)
@click.option("--limit", default=20, type=int, help="Max records to list")
@db_option
def history(bank_id: int, limit: int, db_path: str):
    """List recent practice records, newest first."""
    _open_db(db_path)
    records = db.get_practice_records(bank_id, db_path=db_path)[:limit]
    if not records:
        console.print("[yellow]No practice records yet.[/]")
        return

    table = Table(title="Practice History", border_style="cyan")
    table.add_column("When")
    table.add_column("Bank", justify="right")
    table.add_column("Question", justify="right")
    table.add_column("Answer", justify="center")
    table.add_column("Result", justify="center")
    table.add_column("Time", justify="right")

    for record in records:
        table.add_row(
            _format_time(record["created_at"]),
            str(record["bank_id"]),
            str(record["question_id"]),
            _format_answer(record["user_answer"]),
            "[green]✓[/]" if record["is_correct"] else "[red]✗[/]",
            f"{record['time_spent']}s",
        )

    console.print(table)


# ─── Backup ───────────────────────────────────────────────────────────────────


@cli.command()
@click.argument("out_path", type=click.Path(dir_okay=False))
@click.option("--bank-id", default=None, type=int, help="Export a single bank")
@db_option
def export(out_path: str, bank_id: int, db_path: str):
    """Write a JSON backup of all banks (or one bank)."""
    _open_db(db_path)
    try:
        counts = crud.export_to_file(out_path, bank_id=bank_id, db_path=db_path)
    except KeyError:
        console.print(f"[red]Error:[/] bank {bank_id} not found")
        sys.exit(1)

    _display_counts(counts, title=f"Exported to {out_path}")


@cli.command()
@click.argument("json_path", type=click.Path(exists=True, dir_okay=False))
@db_option
def restore(json_path: str, db_path: str):
    """Restore a JSON backup written by `export`."""
    try:
        counts = crud.import_from_file(json_path, db_path=db_path)
    except ValueError as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(1)

    _display_counts(counts, title=f"Restored from {json_path}")


def _open_db(db_path: str):
    """Create the schema if needed; exit 1 when the database can't be opened."""
    try:
        db.init_db(db_path)
    except sqlite3.Error as e:
        console.print(f"[red]Error:[/] cannot open database: {e}")
        sys.exit(1)


# ─── Display Helpers ──────────────────────────────────────────────────────────


def _display_stats_table(stats: dict):
    """Display per-type counts as a rich table."""
    table = Table(title="Question Types", border_style="green")
    table.add_column("Type", style="bold")
    table.add_column("Count", justify="right")

    for qtype in QuestionType:
        table.add_row(qtype.display_name, str(stats.get(qtype.value, 0)))
    table.add_row("[bold]合计[/]", f"[bold]{stats.get('total', 0)}[/]")

    console.print(table)
    console.print()


def _display_validation(errors: list[str], warnings: list[str]):
    """Display validation messages, or a success line."""
    if not errors and not warnings:
        console.print("[green]✓[/] No validation issues")
        console.print()
        return

    table = Table(title="Validation Issues", border_style="yellow")
    table.add_column("Level", justify="center")
    table.add_column("Message")

    for message in errors:
        table.add_row("[red]✗ error[/]", message)
    for message in warnings:
        table.add_row("[yellow]⚠ warning[/]", message)

    console.print(table)
    console.print()


def _display_questions(questions: list[dict], title: str):
    """Display question rows (dicts with type/content/options/answer)."""
    if not questions:
        return

    table = Table(title=title, border_style="cyan", show_lines=True)
    table.add_column("#", justify="right", style="bold")
    table.add_column("Type")
    table.add_column("Content")
    table.add_column("Options")
    table.add_column("Answer", justify="center")

    for index, q in enumerate(questions, start=1):
        answer = q["answer"]
        if isinstance(answer, list):
            answer = "".join(answer)
        options = "\n".join(f"{o['key']}. {o['text']}" for o in q["options"])
        table.add_row(
            str(q.get("id", index)),
            QuestionType(q["type"]).display_name,
            q["content"],
            options,
            answer,
        )

    console.print(table)
    console.print()


def _display_question_card(question: dict, position: int, total: int):
    """Display one question with its options for practice."""
    qtype = QuestionType(question["type"])
    options = "\n".join(f"{o['key']}. {o['text']}" for o in question["options"])
    hint = "  [dim](several letters)[/]" if qtype == QuestionType.MULTIPLE else ""
    console.print(
        Panel(
            f"{question['content']}\n\n{options}",
            title=f"{position}/{total} · {qtype.display_name}{hint}",
            title_align="left",
            border_style="cyan",
        )
    )


def _format_answer(answer) -> str:
    if isinstance(answer, list):
        return "".join(answer)
    return str(answer or "-")


def _format_time(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp).strftime("%Y-%m-%d %H:%M")


def _display_counts(counts: dict, title: str):
    table = Table(title=title, border_style="cyan")
    table.add_column("Table", style="bold")
    table.add_column("Rows", justify="right")
    for name, count in counts.items():
        table.add_row(name, str(count))
    console.print(table)


# ─── Entry point (for python -m quizbank.cli) ─────────────────────────────────


if __name__ == "__main__":
    cli()
