"""Command line interface for moldsmith."""
from __future__ import annotations

from argparse import ArgumentParser, Namespace
from pathlib import Path
from typing import Iterable
import sys

from core.command_runner import CommandError
from core.template import TemplateError

from .cast import CastOptions, cast
from .console import Console
from .errors import MoldsmithError
from .reader import MoldReader
from .temper import temper


def _parse_arguments(argv: Iterable[str]) -> Namespace:
    parser = ArgumentParser(prog="moldsmith", description="Render molds of templated documents into a project")
    parser.add_argument(
        "--log",
        "-l",
        choices=sorted(Console.LEVELS, key=Console.LEVELS.__getitem__),
        default="info",
        help="Set log level (default: info)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    cast_parser = subparsers.add_parser("cast", help="Render a mold into a target directory")
    cast_parser.add_argument("mold", type=Path, help="Mold directory")
    cast_parser.add_argument(
        "--target",
        "-o",
        type=Path,
        default=None,
        help="Directory receiving the rendered files (default: current directory)",
    )
    cast_parser.add_argument(
        "--set",
        dest="overrides",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Override a flux value (repeatable, dotted keys allowed)",
    )
    cast_parser.add_argument(
        "--values",
        "-f",
        dest="value_files",
        action="append",
        type=Path,
        default=[],
        help="YAML file of flux values (repeatable, later files win)",
    )
    cast_parser.add_argument(
        "--ingot-path",
        dest="ingot_roots",
        action="append",
        type=Path,
        default=[],
        help="Additional directory searched for ingots",
    )
    cast_parser.add_argument("--dry-run", "-n", action="store_true", help="Show what would be written")

    temper_parser = subparsers.add_parser("temper", help="Validate a mold or ingot without rendering")
    temper_parser.add_argument("path", type=Path, nargs="?", default=Path("."), help="Mold or ingot directory")

    return parser.parse_args(list(argv))


def main(argv: Iterable[str] | None = None) -> int:
    args = _parse_arguments(sys.argv[1:] if argv is None else argv)
    console = Console(level=args.log, dry_run=getattr(args, "dry_run", False))

    if args.command == "cast":
        return _handle_cast(args, console)
    if args.command == "temper":
        return _handle_temper(args, console)
    raise ValueError(f"Unknown command: {args.command}")


def _handle_cast(args: Namespace, console: Console) -> int:
    reader = MoldReader(args.mold)
    if not reader.has_mold():
        print(f"Error: no mold.yaml found in {args.mold}", file=sys.stderr)
        return 2

    options = CastOptions(
        target=args.target or Path.cwd(),
        value_files=args.value_files,
        overrides=args.overrides,
        ingot_roots=args.ingot_roots,
        dry_run=args.dry_run,
    )
    try:
        cast(reader, options, console=console)
    except (MoldsmithError, TemplateError, CommandError, OSError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 0


def _handle_temper(args: Namespace, console: Console) -> int:
    result = temper(MoldReader(args.path))
    for diagnostic in result.diagnostics:
        console.diagnostic(diagnostic)

    label = result.kind or "package"
    errors = len(result.errors())
    warnings = len(result.warnings())
    if result.has_errors():
        print(f"Error: {label} {result.name or args.path} failed validation with {errors} error(s)", file=sys.stderr)
        return 1
    console.info(f"{label} {result.name} {result.version} is valid ({warnings} warning(s))")
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
