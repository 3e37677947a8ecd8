from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from rich.console import Console
from rich.logging import RichHandler

from chatbridge.ai.errors import StreamFailure
from chatbridge.ai.stream import complete, create_orchestrator
from chatbridge.config.loader import load_settings

if TYPE_CHECKING:
    from chatbridge.ai.orchestrator import CaptureImage, TurnOrchestrator
    from chatbridge.ai.session_store import StreamSession
    from chatbridge.ai.types import Content, StreamResult
    from chatbridge.config.settings import Settings

console = Console()
err_console = Console(stderr=True)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def _file_capture(path: Path) -> CaptureImage:
    """Capture collaborator that returns the bytes of a fixed image file."""

    async def capture(source: str) -> bytes | None:
        logging.getLogger(__name__).info("Capturing %s from %s", source, path)
        return await asyncio.to_thread(path.read_bytes)

    return capture


def _show_tags(tags: dict[str, str], session: StreamSession) -> None:
    for name, payload in tags.items():
        err_console.print(f"[dim]<{name}> {payload}[/dim]")


def _print_result(result: StreamResult) -> None:
    if result.function_call is not None:
        call = result.function_call
        console.print(f"[cyan]function call[/cyan] {call.name}({call.raw_arguments})")
    else:
        console.print(result.text)


def _apply_overrides(
    settings: Settings,
    model: str | None,
    timeout: float | None,
    verbose: bool,
) -> Settings:
    gemini = settings.gemini.model_copy(update={"model": model}) if model else settings.gemini
    stream = (
        settings.stream.model_copy(update={"no_data_timeout_sec": timeout})
        if timeout is not None
        else settings.stream
    )
    return settings.model_copy(update={
        "gemini": gemini,
        "stream": stream,
        "debug": settings.debug or verbose,
    })


async def _ask(
    orchestrator: TurnOrchestrator,
    prompt: str,
    history: list[Content],
    use_functions: bool,
) -> bool:
    try:
        result = await complete(orchestrator, prompt, history=history, use_functions=use_functions)
    except StreamFailure as e:
        err_console.print(f"[red]{e.kind}:[/red] {e}")
        return False
    _print_result(result)
    return True


async def run_chat(
    model: str | None = None,
    prompt: str | None = None,
    capture_file: Path | None = None,
    timeout: float | None = None,
    use_functions: bool = True,
    verbose: bool = False,
) -> int:
    """Run the chat command.  Returns the process exit code."""
    _configure_logging(verbose)
    settings = await load_settings(project_dir=Path.cwd(), user_dir=Path.home())
    settings = _apply_overrides(settings, model, timeout, verbose)

    try:
        orchestrator = create_orchestrator(
            settings,
            capture_image=_file_capture(capture_file) if capture_file else None,
            on_tags_extracted=_show_tags,
        )
    except ValueError as e:
        err_console.print(f"[red]{e}[/red]")
        return 2

    history: list[Content] = []

    if prompt:
        return 0 if await _ask(orchestrator, prompt, history, use_functions) else 1

    if not sys.stdin.isatty():
        stdin_content = sys.stdin.read()
        if not stdin_content.strip():
            return 0
        return 0 if await _ask(orchestrator, stdin_content, history, use_functions) else 1

    # Interactive mode
    console.print(f"[dim]{settings.gemini.model} (Ctrl-D to quit)[/dim]")
    while True:
        try:
            line = await asyncio.to_thread(console.input, "[bold green]> [/bold green]")
        except EOFError:
            return 0
        if line.strip():
            await _ask(orchestrator, line, history, use_functions)


def main() -> None:
    """CLI entry point."""
    from chatbridge.cli.args import cli
    cli()


if __name__ == "__main__":
    main()
