from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
import signal
import sys
from pathlib import Path

from redline import __version__
from redline.diagnostics import format_change_summary, format_error_with_hint
from redline.errors import RedlineConfigError, RedlineError, RedlineValidationError
from redline.files import InMemoryOpenFiles
from redline.hunks import DEFAULT_CONTEXT_LINES, diff_stat, file_headers, render_file_diff
from redline.ledger import is_noop
from redline.paths import resolve_in_project
from redline.status import StatusLine

EXIT_OK = 0
EXIT_DIFFERENT = 1
EXIT_CONFIG_OR_VALIDATION = 2
EXIT_TURN_FAILED = 3
EXIT_CANCELED = 130


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="redline")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    subparsers = parser.add_subparsers(dest="command", required=True)

    chat_p = subparsers.add_parser("chat", help="Run one agent turn against a project.")
    chat_p.add_argument(
        "--root",
        type=str,
        default=None,
        help="Project root (defaults to searching upward from cwd for redline.toml, else cwd).",
    )
    chat_p.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to redline.toml (defaults to <root>/redline.toml).",
    )
    chat_p.add_argument("--provider", type=str, default=None, help="Override llm.provider.")
    chat_p.add_argument("--model", type=str, default=None, help="Override llm.model.")
    chat_p.add_argument(
        "--open",
        action="append",
        default=[],
        metavar="PATH",
        help="Treat a project file as an open buffer (repeatable).",
    )
    chat_p.add_argument("--no-diff", action="store_true", help="Do not print the diff.")
    chat_p.add_argument("--no-status", action="store_true", help="Disable the status line.")
    chat_p.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    chat_p.add_argument("prompt", help="Prompt text for the agent.")

    diff_p = subparsers.add_parser("diff", help="Render a unified diff between two files.")
    diff_p.add_argument(
        "--context",
        type=int,
        default=DEFAULT_CONTEXT_LINES,
        help=f"Context lines around each change (default {DEFAULT_CONTEXT_LINES}).",
    )
    diff_p.add_argument(
        "--label", type=str, default=None, help="Path shown in the headers (defaults to AFTER)."
    )
    diff_p.add_argument("before", help="Original file (may be missing).")
    diff_p.add_argument("after", help="Updated file (may be missing).")

    return parser


def parse_args(argv: list[str]) -> argparse.Namespace:
    return _build_parser().parse_args(argv)


def _eprint(msg: str) -> None:
    print(msg, file=sys.stderr)


def _print_error(e: BaseException) -> None:
    _eprint(format_error_with_hint(e))


def _resolve_root(args: argparse.Namespace) -> tuple[Path, Path | None]:
    from redline.config import find_project_root

    config_path = Path(args.config).resolve() if args.config else None
    if args.root:
        return Path(args.root).resolve(), config_path
    if config_path is not None:
        return config_path.parent, config_path
    try:
        return find_project_root(Path.cwd()), None
    except RedlineConfigError:
        return Path.cwd().resolve(), None


def _load_config(args: argparse.Namespace):
    from redline.config import DEFAULT_API_KEY_ENVS, load_config, normalize_model
    from redline.providers import canonical_provider

    root, config_path = _resolve_root(args)
    cfg = load_config(root=root, config_path=config_path, allow_missing=config_path is None)

    llm = cfg.llm
    if args.provider:
        provider = canonical_provider(args.provider)
        if provider != llm.provider:
            llm = dataclasses.replace(
                llm,
                provider=provider,
                model=normalize_model(provider, llm.model),
                api_key_env=DEFAULT_API_KEY_ENVS[provider],
            )
    if args.model:
        llm = dataclasses.replace(llm, model=normalize_model(llm.provider, args.model))
    return root, dataclasses.replace(cfg, llm=llm)


def _read_optional(path: Path) -> str | None:
    if not path.exists():
        return None
    if path.is_dir():
        raise IsADirectoryError(f"expected file path, found directory: {path}")
    with open(path, encoding="utf-8", newline="") as f:
        return f.read()


def _install_abort_handler(session) -> bool:
    try:
        loop = asyncio.get_running_loop()
        loop.add_signal_handler(signal.SIGINT, session.abort)
    except (NotImplementedError, RuntimeError):
        return False
    return True


async def _run_chat(args: argparse.Namespace, session, status: StatusLine):
    installed = _install_abort_handler(session)

    def on_delta(text: str) -> None:
        status.finish()
        sys.stdout.write(text)
        sys.stdout.flush()

    try:
        return await session.send(args.prompt, on_delta=on_delta, on_status=status.update)
    finally:
        if installed:
            asyncio.get_running_loop().remove_signal_handler(signal.SIGINT)


def cmd_chat(args: argparse.Namespace) -> int:
    from redline.turn import ChatSession, TurnState

    if args.verbose:
        logging.basicConfig(
            level=logging.DEBUG, stream=sys.stderr, format="%(levelname)s %(name)s: %(message)s"
        )

    try:
        root, cfg = _load_config(args)
        open_files = InMemoryOpenFiles()
        for rel in args.open:
            content = _read_optional(resolve_in_project(root, rel))
            if content is None:
                raise RedlineValidationError(f"--open file not found: {rel}")
            open_files.open(rel, content)
        session = ChatSession.from_config(root, cfg, open_files=open_files)
    except (RedlineError, OSError) as e:
        _print_error(e)
        return EXIT_CONFIG_OR_VALIDATION

    status = StatusLine(enabled=not args.no_status and sys.stderr.isatty())
    try:
        result = asyncio.run(_run_chat(args, session, status))
    except RedlineValidationError as e:
        status.finish()
        _print_error(e)
        return EXIT_CONFIG_OR_VALIDATION
    except KeyboardInterrupt:
        status.finish()
        _eprint("canceled")
        return EXIT_CANCELED
    status.finish()

    if result.message is not None and result.message.content and not result.message.failed:
        print()

    if result.state is TurnState.CANCELED:
        _eprint("canceled")
    elif result.state is TurnState.FAILED:
        _eprint(f"error: {result.error}")

    stats = [(r.path, r.kind, *diff_stat(r)) for r in result.changes]
    if stats or result.state is TurnState.COMPLETED:
        print(format_change_summary(stats))
    if stats and not args.no_diff:
        print()
        print(session.diff_text())

    if result.state is TurnState.CANCELED:
        return EXIT_CANCELED
    if result.state is TurnState.FAILED:
        return EXIT_TURN_FAILED
    return EXIT_OK


def cmd_diff(args: argparse.Namespace) -> int:
    if args.context < 0:
        _eprint("error: --context must be >= 0")
        return EXIT_CONFIG_OR_VALIDATION

    before_path = Path(args.before)
    after_path = Path(args.after)
    try:
        before = _read_optional(before_path)
        after = _read_optional(after_path)
    except (OSError, UnicodeDecodeError) as e:
        _print_error(e)
        return EXIT_CONFIG_OR_VALIDATION
    if before is None and after is None:
        _eprint(f"error: neither {args.before} nor {args.after} exists")
        return EXIT_CONFIG_OR_VALIDATION

    if is_noop(before, after):
        return EXIT_OK

    label = args.label or (args.after if after is not None else args.before)
    body = render_file_diff(label, before, after, context_lines=args.context)
    if not body:
        # Same lines, different bytes (e.g. line endings, an empty created file).
        body = "\n".join(file_headers(label, before, after))
    print(body)
    return EXIT_DIFFERENT


def main(argv: list[str] | None = None) -> int:
    try:
        args = parse_args(list(sys.argv[1:] if argv is None else argv))
    except SystemExit as e:
        # argparse uses SystemExit for --help/--version and parse errors.
        code = e.code
        return int(code) if isinstance(code, int) else EXIT_CONFIG_OR_VALIDATION

    if args.command == "chat":
        return cmd_chat(args)
    if args.command == "diff":
        return cmd_diff(args)

    return EXIT_CONFIG_OR_VALIDATION


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
