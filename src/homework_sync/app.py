"""Interactive CLI for taking an assignment."""
import asyncio
import sys

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from homework_sync.answers import answer_payload, option_image_url, question_image_urls
from homework_sync.config import EngineConfig, load_config
from homework_sync.engine import AssignmentRun, HomeworkEngine, build_backend, open_store
from homework_sync.errors import InvalidInput, NotFound, PartialFailure, PersistFailure, TransientFailure
from homework_sync.logging_config import configure_logging
from homework_sync.models import GridOptions, Question, QuestionType
from homework_sync.responses import ResponseKey, SaveState
from homework_sync.seed import SAMPLE_ASSIGNMENT_ID, SAMPLE_STUDENT_ID, is_seeded, seed_sample_assignment
from homework_sync.submission import SubmissionResult

console = Console()

EXIT_WORDS = ("q", "quit", "menu")


class SessionExitRequested(Exception):
    """Raised when the student types q/quit/menu at a prompt."""


def session_prompt(prompt: str, **kwargs) -> str:
    answer = Prompt.ask(prompt, **kwargs)
    if answer.strip().lower() in EXIT_WORDS:
        raise SessionExitRequested()
    return answer


async def ask(prompt: str, **kwargs) -> str:
    """Prompt in a worker thread so queued saves keep running while the student types."""
    return await asyncio.to_thread(session_prompt, prompt, **kwargs)


def parse_answer_input(question: Question, text: str):
    """Turn what the student typed into an answer payload for ``question``.

    Multiple choice takes an option number or its text, tickbox a comma
    separated list of option numbers, grid ``row:column`` pairs (1-based).
    """
    text = text.strip()
    if question.question_type in (QuestionType.SHORT_ANSWER, QuestionType.LONG_ANSWER):
        return text

    if question.question_type is QuestionType.GRID:
        grid = question.options
        if not isinstance(grid, GridOptions):
            raise InvalidInput("This grid question has no rows")
        cells = {}
        for pair in text.split(","):
            row, _, column = pair.partition(":")
            if not row.strip().isdecimal() or not column.strip().isdecimal():
                raise InvalidInput(f"Expected row:column, got {pair.strip()!r}")
            row_index, column_index = int(row) - 1, int(column) - 1
            if not 0 <= row_index < len(grid.rows) or not 0 <= column_index < len(grid.columns):
                raise InvalidInput(f"No cell at {pair.strip()}")
            cells[str(row_index)] = column_index
        return cells

    texts = [o.text for o in question.options]
    if question.question_type is QuestionType.TICKBOX:
        selected = []
        for part in text.split(","):
            part = part.strip()
            if not part.isdecimal() or not 1 <= int(part) <= len(texts):
                raise InvalidInput(f"Pick option numbers between 1 and {len(texts)}")
            selected.append(texts[int(part) - 1])
        return selected

    if text.isdecimal() and 1 <= int(text) <= len(texts):
        return texts[int(text) - 1]
    for option in texts:
        if option.lower() == text.lower():
            return option
    raise InvalidInput(f"Pick an option between 1 and {len(texts)}")


def format_save_state(state: SaveState | None) -> str:
    if state is SaveState.SAVING:
        return "[yellow]Saving...[/yellow]"
    if state is SaveState.SAVED:
        return "[green]Saved[/green]"
    if state is SaveState.FAILED:
        return "[bold red]Not saved[/bold red]"
    return ""


def show_save_failure(key: ResponseKey, state: SaveState, error: Exception | None) -> None:
    if state is SaveState.FAILED:
        console.print(Panel(
            f"Your answer to question [bold]{key.question_id}[/bold] was not saved.\n"
            "[dim]Type 'retry' to try again.[/dim]",
            title="Not saved", border_style="red",
        ))


def show_welcome():
    console.print(Panel(
        "[bold]Homework[/bold]\n[dim]Answers save automatically as you go[/dim]",
        title="Welcome", border_style="blue",
    ))


def show_question(run: AssignmentRun) -> None:
    question = run.question
    total = len(run.assignment.questions)
    lines = []
    if question.context_text:
        lines.append(f"[dim]{question.context_text}[/dim]\n")
    lines.append(f"[bold]{question.question_text}[/bold]")
    for url in question_image_urls(question):
        lines.append(f"[dim]Image: {url}[/dim]")

    if isinstance(question.options, GridOptions):
        lines.append("\nColumns: " + ", ".join(
            f"[cyan]{i}[/cyan]) {c}" for i, c in enumerate(question.options.columns, 1)
        ))
        for i, row in enumerate(question.options.rows, 1):
            lines.append(f"  Row [cyan]{i}[/cyan]: {row}")
    elif question.options:
        lines.append("")
        for i, option in enumerate(question.options, 1):
            image = option_image_url(option)
            lines.append(f"  [cyan]{i})[/cyan] {option.text}" + (f" [dim]({image})[/dim]" if image else ""))

    answer = run.answers.get(question.id)
    if answer is not None:
        lines.append(f"\nYour answer: [bold]{answer_payload(answer)}[/bold]  {format_save_state(run.save_state(question.id))}")

    console.print(Panel(
        "\n".join(lines),
        title=f"Question {run.current_index + 1}/{total} ({question.points} pts)",
        subtitle=question.question_type.value,
        border_style="cyan",
    ))


def show_result(run: AssignmentRun, result: SubmissionResult) -> None:
    submission = result.submission
    table = Table(title=run.assignment.title)
    table.add_column("Points", justify="right")
    table.add_column("Score", justify="right")
    table.add_row(
        f"{submission.points_earned}/{submission.total_points}",
        f"{submission.score * 100:.0f}%",
    )
    console.print(table)
    if not result.session_completed:
        console.print("[dim]Finishing up in the background...[/dim]")


async def submit_run(run: AssignmentRun) -> SubmissionResult | None:
    missing = run.unanswered_questions()
    if missing:
        console.print(f"[yellow]Answer every question before submitting ({len(missing)} left).[/yellow]")
        return None
    try:
        with console.status("Submitting..."):
            result = await run.submit()
    except PersistFailure:
        console.print(Panel(
            "Some answers are still not saved. Type 'retry', then submit again.",
            title="Not submitted", border_style="red",
        ))
        return None
    except PartialFailure:
        console.print(Panel("Submission failed - retry?", title="Not submitted", border_style="red"))
        return None
    show_result(run, result)
    return result


async def run_assignment(run: AssignmentRun) -> SubmissionResult | None:
    if run.completed:
        console.print("[green]You've already submitted this assignment.[/green]")
        return None
    if not run.assignment.questions:
        console.print("[yellow]This assignment has no questions.[/yellow]")
        return None
    if run.fast_forward_to is not None:
        jump = await ask(f"Continue from question {run.fast_forward_to + 1}?", choices=["y", "n"], default="y")
        if jump == "y":
            run.accept_fast_forward()

    while True:
        show_question(run)
        text = await ask("[bold]>[/bold] answer, or n/p/retry/submit/q")
        command = text.strip().lower()
        if command == "n":
            run.next()
        elif command == "p":
            run.previous()
        elif command == "retry":
            try:
                await run.retry_failed()
                console.print("[green]All answers saved.[/green]")
            except PersistFailure as e:
                console.print(f"[red]Still not saved: {e}[/red]")
        elif command == "submit":
            result = await submit_run(run)
            if result is not None:
                return result
        else:
            try:
                run.answer(run.question.id, parse_answer_input(run.question, text))
            except InvalidInput as e:
                console.print(f"[red]{e}[/red]")


async def open_run(engine: HomeworkEngine, student_id: str, assignment_id: str) -> AssignmentRun | None:
    try:
        with console.status("Loading assignment..."):
            return await AssignmentRun.open(engine, student_id, assignment_id)
    except (InvalidInput, NotFound) as e:
        console.print(f"[red]{e}[/red]")
    except TransientFailure:
        console.print(Panel(
            "Couldn't reach the server. Enter the assignment ID again to retry.",
            title="Loading failed", border_style="red",
        ))
    return None


async def run_cli(config: EngineConfig) -> None:
    store = open_store(config)
    if not await is_seeded(store):
        console.print("[dim]Setting up for first use...[/dim]")
        await seed_sample_assignment(store)

    async with HomeworkEngine(config, backend=build_backend(config, store)) as engine:
        engine.responses.add_listener(show_save_failure)
        show_welcome()
        try:
            student_id = await ask("Student ID", default=SAMPLE_STUDENT_ID)
        except SessionExitRequested:
            return
        while True:
            try:
                assignment_id = await ask("\nAssignment ID (q to quit)", default=str(SAMPLE_ASSIGNMENT_ID))
            except SessionExitRequested:
                console.print("[dim]Bye![/dim]")
                break
            run = await open_run(engine, student_id, assignment_id)
            if run is None:
                continue
            try:
                await run_assignment(run)
            except SessionExitRequested:
                pending = run.unsaved_questions()
                if pending:
                    console.print(f"[yellow]{len(pending)} answer(s) still saving...[/yellow]")


def main(argv: list[str] | None = None):
    args = sys.argv[1:] if argv is None else argv
    config = load_config(args[0] if args else None)
    configure_logging(config.log_level)
    try:
        asyncio.run(run_cli(config))
    except KeyboardInterrupt:
        console.print("\n[dim]Interrupted.[/dim]")


if __name__ == "__main__":
    main()
