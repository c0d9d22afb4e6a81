"""Command line interface for sitepress."""
from __future__ import annotations

from argparse import ArgumentParser, Namespace
from pathlib import Path
from typing import Iterable
import sys

from .console import Console
from .environment import BuildEnvironment, EnvironmentOptions, sweep_directories
from .errors import SitepressError
from .site import Site


def _parse_arguments(argv: Iterable[str]) -> Namespace:
    parser = ArgumentParser(prog="sitepress", description="Materialize a deployable site tree")
    subparsers = parser.add_subparsers(dest="command", required=True)

    build_parser = subparsers.add_parser("build", help="Populate, compile and copy a site")
    build_parser.add_argument("name", help="Site name")
    origin = build_parser.add_mutually_exclusive_group(required=True)
    origin.add_argument("--repository", help="Git locator of the site's repository")
    origin.add_argument("--source", help="Local directory holding the site's files")
    build_parser.add_argument("--reference", default="main", help="Branch, tag or commit to build")
    build_parser.add_argument("--destination", help="Directory receiving the compiled site")
    build_parser.add_argument("--mirror", action="store_true", help="Delete destination files missing from the build")
    build_parser.add_argument("--keep", action="store_true", help="Keep the working directory and print its path")
    build_parser.add_argument("--cache-root", help="Directory holding mirrored repositories")
    build_parser.add_argument("--tmp-dir", help="Directory under which working directories are created")
    build_parser.add_argument(
        "--log-level",
        choices=list(Console.LEVELS),
        default="warning",
        help="Console verbosity",
    )

    sweep_parser = subparsers.add_parser("sweep", help="Remove leftover working directories")
    sweep_parser.add_argument("--tmp-dir", help="Directory to sweep")

    return parser.parse_args(list(argv))


def _options(args: Namespace) -> EnvironmentOptions:
    overrides = {}
    if getattr(args, "cache_root", None):
        overrides["repo_cache_root"] = Path(args.cache_root)
    if getattr(args, "tmp_dir", None):
        overrides["tmp_dir"] = Path(args.tmp_dir)
    return EnvironmentOptions().merge(**overrides)


def main(argv: Iterable[str] | None = None) -> int:
    args = _parse_arguments(sys.argv[1:] if argv is None else argv)

    try:
        if args.command == "build":
            return _handle_build(args)
        if args.command == "sweep":
            return _handle_sweep(args)
    except SitepressError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    raise ValueError(f"Unknown command: {args.command}")


def _handle_build(args: Namespace) -> int:
    console = Console(args.log_level)
    site = Site(
        name=args.name,
        repository=args.repository,
        source=Path(args.source) if args.source else None,
        path=Path(args.destination) if args.destination else None,
    )
    environment = BuildEnvironment(site, args.reference, options=_options(args), console=console)
    try:
        environment.populate().compile()
        if site.path is not None:
            environment.copy(mirror=args.mirror)
        if args.keep:
            print(environment.directory)
    finally:
        if not args.keep:
            environment.cleanup()
    return 0


def _handle_sweep(args: Namespace) -> int:
    for path in sweep_directories(_options(args)):
        print(f"Removed {path}")
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
