"""
Command-line interface for rusty-tags.

``rusty-tags vi`` or ``rusty-tags emacs`` inside a cargo project writes a
tags file into the project and into the source tree of every dependency.

I hop between your crates so your editor can, too.
"""

import argparse
import json
import logging
import shutil
import sys
from pathlib import Path
from typing import List, Optional

from rusty_tags import __version__
from rusty_tags.config import RunOptions, RustyTagsConfig
from rusty_tags.types import TagsKind

logger = logging.getLogger(__name__)


def _setup_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Configure logging for CLI output."""
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.WARNING
    else:
        level = logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s" if not verbose else "%(levelname)s: %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _get_config(args: argparse.Namespace) -> RustyTagsConfig:
    """Build RustyTagsConfig from CLI args."""
    base_path = getattr(args, "base_path", None)
    if base_path:
        return RustyTagsConfig(base_path=Path(base_path))
    return RustyTagsConfig()


def _print_json(data: object) -> None:
    """Print data as formatted JSON to stdout."""
    print(json.dumps(data, indent=2, default=str))


def _print_report(report, quiet: bool = False) -> None:
    result = report.result

    missing = [node for node in report.missing_sources if node.error is None]
    if missing and not quiet:
        print("  ⚠️  Missing sources of optional or platform specific dependencies:")
        for node in missing:
            print(f"     {node.package}")

    if result.errors:
        for error in result.errors:
            print(f"  ❌ {error}")
        if any(error.error_type.endswith("SourceError") for error in result.errors):
            print("     Try 'cargo fetch' or 'cargo build' to download missing sources.")

    if result.cancelled:
        print(f"  Interrupted, {len(result.skipped)} package(s) skipped, tags files may be incomplete.")

    if quiet:
        return

    print(
        f"\n  Done: {result.built_count} tags files written "
        f"({len(report.rebuilt)} rebuilt, {len(report.reused)} cached, {len(result.errors)} failed)"
    )


# ─── Command Handlers ────────────────────────────────────────────────

def cmd_update(args: argparse.Namespace) -> int:
    """Create or update the tags of the project and its dependencies."""
    from rusty_tags.updater import TagsUpdater

    config = _get_config(args)
    options = RunOptions(
        tags_kind=TagsKind(args.command),
        start_dir=Path(args.start_dir) if args.start_dir else None,
        force_recreate=args.force_recreate,
        omit_deps=args.omit_deps,
        num_threads=args.num_threads,
        output=args.output,
        quiet=getattr(args, "quiet", False),
        verbose=getattr(args, "verbose", False),
    )

    if not options.quiet:
        print(f"🦀 Updating {options.tags_kind.value} tags ...")

    report = TagsUpdater(config, options).run()
    _print_report(report, quiet=options.quiet)

    if report.result.cancelled:
        return 130
    return 0 if report.success else 1


def cmd_status(args: argparse.Namespace) -> int:
    """Show configuration and cache locations."""
    config = _get_config(args)
    status = config.get_status()
    status["cached_entries"] = len(list(config.cache_dir.glob("*.json"))) if config.cache_dir.exists() else 0
    _print_json(status)
    return 0


def cmd_clean(args: argparse.Namespace) -> int:
    """Delete the tag cache."""
    config = _get_config(args)

    if config.cache_dir.exists():
        shutil.rmtree(config.cache_dir)
        config.cache_dir.mkdir(parents=True, exist_ok=True)
        print("  🗑️  Cache cleared")
    else:
        print("  Cache directory doesn't exist")

    for kind in TagsKind:
        std_tags = config.std_lib_tags_file(kind)
        if std_tags.exists():
            std_tags.unlink()
            print(f"  🗑️  Removed {std_tags}")

    return 0


# ─── Argument Parser ─────────────────────────────────────────────────

def _add_update_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-s", "--start-dir", dest="start_dir",
        help="Start directory for the search of the Cargo.toml (default: current directory)",
    )
    parser.add_argument(
        "-f", "--force-recreate", dest="force_recreate", action="store_true",
        help="Forces the recreation of the tags of all dependencies",
    )
    parser.add_argument(
        "-o", "--omit-deps", dest="omit_deps", action="store_true",
        help="Do not generate tags for dependencies",
    )
    parser.add_argument(
        "-n", "--num-threads", dest="num_threads", type=int,
        help="Number of threads used for the tags creation (default: number of CPUs)",
    )
    parser.add_argument(
        "-O", "--output", dest="output",
        help="Name of the output tags file",
    )
    # SUPPRESS keeps a global -v/-q from being reset by the subcommand defaults
    parser.add_argument(
        "-v", "--verbose", action="store_true", default=argparse.SUPPRESS,
        help="Verbose output about all operations",
    )
    parser.add_argument(
        "-q", "--quiet", action="store_true", default=argparse.SUPPRESS,
        help="Don't print anything but errors",
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="rusty-tags",
        description="🦀 rusty-tags — Create ctags/etags for a cargo project and all of its dependencies",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  rusty-tags vi                 # Tags for vi in the current project\n"
            "  rusty-tags emacs -s ~/myproj  # Emacs tags for another project\n"
            "  rusty-tags vi -f              # Recreate all tags, ignore the cache\n"
            "  rusty-tags vi -o              # Only tag the project itself\n"
            "  rusty-tags status             # Show configuration\n"
            "  rusty-tags clean              # Delete the tag cache\n"
        ),
    )

    parser.add_argument(
        "--version", action="version", version=f"rusty-tags {__version__}"
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable verbose output"
    )
    parser.add_argument(
        "-q", "--quiet", action="store_true", help="Don't print anything but errors"
    )
    parser.add_argument(
        "--base-path", dest="base_path", help="Override rusty-tags base directory"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # ─── vi / emacs ───────────────────────────
    vi_parser = subparsers.add_parser("vi", help="Create tags for vi")
    _add_update_arguments(vi_parser)

    emacs_parser = subparsers.add_parser("emacs", help="Create tags for emacs")
    _add_update_arguments(emacs_parser)

    # ─── status ───────────────────────────────
    subparsers.add_parser("status", help="Show configuration and cache locations")

    # ─── clean ────────────────────────────────
    subparsers.add_parser("clean", help="Delete the tag cache")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    _setup_logging(verbose=getattr(args, "verbose", False), quiet=getattr(args, "quiet", False))

    command = args.command

    if not command:
        parser.print_help()
        return 0

    handlers = {
        "vi": cmd_update,
        "emacs": cmd_update,
        "status": cmd_status,
        "clean": cmd_clean,
    }

    handler = handlers.get(command)
    if not handler:
        parser.print_help()
        return 1

    try:
        return handler(args)
    except KeyboardInterrupt:
        print("\n\nInterrupted.")
        return 130
    except Exception as e:
        if getattr(args, "verbose", False):
            logger.exception("Error: %s", e)
        else:
            print(f"\n❌ Error: {e}")
            print("   Run with -v for details.")
        return 1


if __name__ == "__main__":
    sys.exit(main())
