"""
Command-line interface: `msl parse` validates a script, `msl run` executes it.
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
from collections import Counter
from pathlib import Path
from typing import List, Optional

from msl.config import load_settings
from msl.engine import Engine, ExecutionSummary
from msl.errors import ConfigError, ScriptSyntaxError
from msl.fetcher import HttpFetcher
from msl.model import Script, format_script, node_to_dict
from msl.parser import parse
from msl.storage import DryRunStorage, FileStorage

EXIT_OK = 0
EXIT_PARTIAL = 1
EXIT_USAGE = 2


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def print_summary(summary: ExecutionSummary) -> None:
    """Print run summary to stderr."""
    sys.stderr.write("=" * 50 + "\n")
    sys.stderr.write("RUN SUMMARY\n")
    sys.stderr.write("=" * 50 + "\n\n")

    sys.stderr.write(f"Branches executed:      {len(summary.branches)}\n")
    sys.stderr.write(f"Branches succeeded:     {len(summary.succeeded)}\n")
    sys.stderr.write(f"Branches failed:        {len(summary.failed)}\n")
    sys.stderr.write(f"Media saved:            {len(summary.saves)}\n\n")

    if summary.failed:
        counts = Counter(b.error.kind for b in summary.failed if b.error is not None)
        sys.stderr.write("Errors by type:\n")
        for kind, count in sorted(counts.items()):
            sys.stderr.write(f"  {kind}: {count}\n")
        sys.stderr.write("\nFailed branches:\n")
        for branch in summary.failed:
            sys.stderr.write(f"  {branch.path}\n    {branch.error}\n")
    else:
        sys.stderr.write("No errors encountered.\n")

    sys.stderr.write("\n")


def load_script(path: str) -> Script:
    """Read and parse a script file; errors are reported by the caller."""
    text = Path(path).read_text(encoding="utf-8")
    return parse(text)


def _report_syntax_error(path: str, error: ScriptSyntaxError) -> None:
    sys.stderr.write(f"{path}:{error.line}:{error.column}: syntax error: {error.reason}\n")


def cmd_parse(args: argparse.Namespace) -> int:
    try:
        script = load_script(args.script)
    except OSError as e:
        sys.stderr.write(f"Cannot read {args.script}: {e}\n")
        return EXIT_USAGE
    except ScriptSyntaxError as e:
        _report_syntax_error(args.script, e)
        return EXIT_USAGE

    if args.json:
        print(json.dumps(node_to_dict(script), ensure_ascii=False, indent=2))
    else:
        sys.stdout.write(format_script(script))
    return EXIT_OK


def cmd_run(args: argparse.Namespace) -> int:
    try:
        settings = load_settings(
            max_concurrency=args.max_concurrency,
            timeout_s=args.timeout,
            user_agent=args.user_agent,
            output_root=args.output_root,
        )
    except ConfigError as e:
        sys.stderr.write(f"Configuration error: {e.message}\n")
        return EXIT_USAGE

    try:
        script = load_script(args.script)
    except OSError as e:
        sys.stderr.write(f"Cannot read {args.script}: {e}\n")
        return EXIT_USAGE
    except ScriptSyntaxError as e:
        _report_syntax_error(args.script, e)
        return EXIT_USAGE

    fetcher = HttpFetcher(timeout_s=settings.timeout_s, user_agent=settings.user_agent)
    storage = DryRunStorage() if args.dry_run else FileStorage(settings.output_root, timeout_s=settings.timeout_s)
    try:
        summary = Engine(fetcher, storage, settings.max_concurrency).execute(script)
    finally:
        fetcher.close()
        if isinstance(storage, FileStorage):
            storage.close()

    print_summary(summary)
    if args.dry_run:
        for save in summary.saves:
            print(f"{save.source_url}\t{save.destination}")
    return EXIT_OK if summary.ok else EXIT_PARTIAL


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="msl",
        description="Run MediaScrapeLang scripts: follow links, extract variables and save media.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p_parse = sub.add_parser("parse", help="Parse and validate a script without executing it")
    p_parse.add_argument("script", help="Path to the script file")
    p_parse.add_argument("--json", action="store_true", help="Print the AST as JSON instead of canonical text")
    p_parse.set_defaults(func=cmd_parse)

    p_run = sub.add_parser("run", help="Execute a script")
    p_run.add_argument("script", help="Path to the script file")
    p_run.add_argument("--max-concurrency", type=int, help="Maximum concurrent fetches/downloads (default: 4)")
    p_run.add_argument("--timeout", type=float, help="Request timeout in seconds (default: 15)")
    p_run.add_argument("--user-agent", help="User-Agent header")
    p_run.add_argument("--output-root", help="Directory that save paths are relative to (default: .)")
    p_run.add_argument("--dry-run", action="store_true", help="List media that would be saved without downloading")
    p_run.add_argument("--verbose", action="store_true", help="Show debug logging")
    p_run.set_defaults(func=cmd_run)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the msl CLI."""
    args = build_parser().parse_args(argv)
    configure_logging(getattr(args, "verbose", False))
    return args.func(args)


if __name__ == "__main__":
    raise SystemExit(main())
