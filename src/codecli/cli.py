"""
Command-line interface for CodeCLI.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

import structlog
from rich.console import Console
from rich.markup import escape

from .agent.session import SessionNotFoundError, SessionStore
from .config import PROVIDERS, get_settings
from .llm.base import ProviderError

logger = structlog.get_logger()

console = Console(stderr=True)


def configure_logging(level: str) -> None:
    """Route structlog through stdlib logging on stderr."""
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=level.upper())
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="codecli",
        description="CodeCLI - AI-powered coding assistant in the terminal",
        epilog="Run 'codecli sessions' to list saved sessions.",
    )
    parser.add_argument("prompt", nargs="?", help="Initial prompt to start with")
    parser.add_argument("-c", "--continue", dest="continue_session", action="store_true",
                        help="Continue the most recent conversation")
    parser.add_argument("-r", "--resume", metavar="SESSION_ID", help="Resume a specific session by ID")
    parser.add_argument("-p", "--provider", choices=PROVIDERS, help="Provider to use")
    parser.add_argument("-m", "--model", help="Model to use")
    parser.add_argument("--system-prompt", help="Set a custom system prompt")
    parser.add_argument("--system-prompt-file", type=Path, help="Load the system prompt from a file")
    parser.add_argument("--append-system-prompt", help="Append to the system prompt")
    parser.add_argument("--output-format", choices=["text", "json"], default="text",
                        help="Headless output format")
    parser.add_argument("--headless", action="store_true", help="Run a single prompt non-interactively")
    parser.add_argument("--god-mode", action="store_true",
                        help="Auto-approve all operations in the working directory")
    parser.add_argument("--image", type=Path, action="append", help="Include an image for analysis")
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging")
    return parser


def list_sessions() -> None:
    """Print saved sessions, newest first."""
    settings = get_settings()
    sessions = SessionStore(settings.sessions_dir).list_sessions()

    if not sessions:
        console.print("[dim]No saved sessions.[/]")
        return

    console.print("[bold]Saved Sessions:[/]")
    for s in sessions:
        console.print(
            f"  [cyan]{s.id[:8]}[/]  [dim]{s.updated_at.isoformat()}[/]  "
            f"{s.provider}  [dim]{escape(s.cwd)}[/]"
        )


async def run(args: argparse.Namespace, system_prompt: str | None) -> int:
    """Dispatch parsed arguments to the application."""
    from .app import CodeCLI

    app = CodeCLI(
        provider=args.provider,
        model=args.model,
        system_prompt=system_prompt,
        append_system_prompt=args.append_system_prompt,
        god_mode=args.god_mode,
        console=console,
    )

    try:
        if args.continue_session:
            await app.continue_session()
        elif args.resume:
            await app.resume_session(args.resume)
        elif args.headless:
            output = await app.run_headless(args.prompt, args.output_format, images=args.image)
            print(output)
            if app.last_result and app.last_result.error:
                return 1
        else:
            await app.start_interactive(args.prompt, images=args.image)
    finally:
        await app.aclose()
    return 0


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the CLI."""
    argv = sys.argv[1:] if argv is None else argv

    if argv[:1] == ["sessions"]:
        configure_logging(get_settings().log_level)
        list_sessions()
        return

    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging("DEBUG" if args.verbose else get_settings().log_level)

    if args.headless and not args.prompt:
        parser.error("--headless requires a prompt")

    for image in args.image or []:
        if not image.is_file():
            console.print(f"[red]Image not found: {escape(str(image))}[/]")
            sys.exit(1)

    system_prompt = args.system_prompt
    if args.system_prompt_file:
        if not args.system_prompt_file.is_file():
            console.print(f"[red]System prompt file not found: {escape(str(args.system_prompt_file))}[/]")
            sys.exit(1)
        system_prompt = args.system_prompt_file.read_text(encoding="utf-8")

    try:
        code = asyncio.run(run(args, system_prompt))
    except (SessionNotFoundError, ProviderError, ValueError) as e:
        logger.debug("Fatal error", exc_info=True)
        console.print(f"[bold red]Error:[/] {escape(str(e))}")
        sys.exit(1)
    except KeyboardInterrupt:
        sys.exit(130)

    sys.exit(code)


if __name__ == "__main__":
    main()
