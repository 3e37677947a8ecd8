from __future__ import annotations

import asyncio
from pathlib import Path

import click

from chatbridge import __version__


@click.group(invoke_without_command=True)
@click.version_option(version=__version__, prog_name="chatbridge")
@click.pass_context
def cli(ctx: click.Context) -> None:
    """chatbridge: streaming Gemini chat with vision directives."""
    if ctx.invoked_subcommand is None:
        # Default to chat
        ctx.invoke(chat)


@cli.command()
@click.option("--model", "-m", help="Gemini model to use.")
@click.option("--prompt", "-p", help="Prompt to send (non-interactive mode).")
@click.option(
    "--capture-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Image returned when the model asks for vision.",
)
@click.option("--timeout", type=float, default=None, help="No-data timeout in seconds.")
@click.option("--no-functions", is_flag=True, help="Do not send function declarations.")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output.")
def chat(
    model: str | None = None,
    prompt: str | None = None,
    capture_file: Path | None = None,
    timeout: float | None = None,
    no_functions: bool = False,
    verbose: bool = False,
) -> None:
    """Chat with Gemini, one-shot or interactively."""
    from chatbridge.cli.main import run_chat

    exit_code = asyncio.run(run_chat(
        model=model,
        prompt=prompt,
        capture_file=capture_file,
        timeout=timeout,
        use_functions=not no_functions,
        verbose=verbose,
    ))
    if exit_code:
        raise SystemExit(exit_code)
