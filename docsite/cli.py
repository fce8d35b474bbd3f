"""CLI entrypoints for docsite commands."""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import List

from .config import DEVELOPMENT, PRODUCTION, resolve_config
from .errors import ConfigError, MarkdownCompileError, PluginHookError, RouteCollisionError
from .logging import configure_logging, get_logger
from .pipeline import BuildResult, build_site

_BUILD_ERRORS = (ConfigError, MarkdownCompileError, PluginHookError, RouteCollisionError)


def _add_verbose_option(
    parser: argparse.ArgumentParser, *, suppress_default: bool = False
) -> None:
    kwargs: dict[str, object] = {
        "action": "store_true",
        "help": "Increase log verbosity for troubleshooting.",
    }
    if suppress_default:
        kwargs["default"] = argparse.SUPPRESS
    else:
        kwargs["default"] = False
    parser.add_argument(
        "-v",
        "--verbose",
        **kwargs,
    )


def _add_root_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "root",
        nargs="?",
        default=".",
        help="Path to the site root containing .docsite.yml (defaults to current directory).",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="docsite",
        description="Build routed documentation sites from Markdown sources.",
    )
    _add_verbose_option(parser)
    parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        help="Also write detailed log records to this file.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    build_parser = subparsers.add_parser(
        "build",
        help="Build the site for production into the output directory.",
    )
    _add_verbose_option(build_parser, suppress_default=True)
    _add_root_argument(build_parser)

    dev_parser = subparsers.add_parser(
        "dev",
        help="Build, watch sources and serve snapshots for development.",
    )
    _add_verbose_option(dev_parser, suppress_default=True)
    _add_root_argument(dev_parser)
    dev_parser.add_argument("--host", default="127.0.0.1", help="Interface for the snapshot API.")
    dev_parser.add_argument("--port", type=int, default=5173, help="Port for the snapshot API.")

    routes_parser = subparsers.add_parser(
        "routes",
        help="Print the route table without writing artifacts.",
    )
    _add_verbose_option(routes_parser, suppress_default=True)
    _add_root_argument(routes_parser)
    routes_parser.add_argument(
        "--json",
        action="store_true",
        help="Print the route table as JSON.",
    )

    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entrypoint for docsite commands."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    configure_logging(
        verbose=bool(args.verbose), log_file=args.log_file, dev=args.command == "dev"
    )
    root = Path(args.root)

    if args.command == "build":
        try:
            result = asyncio.run(build_site(root, mode=PRODUCTION))
        except _BUILD_ERRORS as exc:
            parser.exit(1, _describe_failure("build", exc))
        except FileNotFoundError as exc:
            parser.exit(1, f"{exc}\n")
        print(
            f"Built {len(result.pages)} pages ({len(result.routes)} routes) "
            f"into {_relativize(result.config.out_dir)}"
        )
    elif args.command == "routes":
        try:
            result = asyncio.run(build_site(root, mode=PRODUCTION, write=False))
        except _BUILD_ERRORS as exc:
            parser.exit(1, _describe_failure("routes", exc))
        if args.json:
            sys.stdout.write(result.routes.to_json())
        else:
            for line in _route_lines(result):
                print(line)
    elif args.command == "dev":
        try:
            asyncio.run(_run_dev(root, host=args.host, port=args.port))
        except _BUILD_ERRORS as exc:
            parser.exit(1, _describe_failure("dev", exc))
        except KeyboardInterrupt:  # pragma: no cover - interactive path
            pass
    else:  # pragma: no cover - argparse enforces choices
        parser.exit(1, "Unknown command\n")


async def _run_dev(root: Path, *, host: str, port: int) -> None:  # pragma: no cover - integration path
    from .dev import RebuildController, SourceWatcher
    from .service import create_app, serve_app

    logger = get_logger("cli")
    config = await resolve_config(root, mode=DEVELOPMENT, command="dev")
    controller = RebuildController(config)
    controller.subscribe_errors(
        lambda path, exc: logger.error("Rebuild failed for %s: %s", path, exc)
    )
    snapshot = await controller.start()
    logger.info("Serving %d routes from %s", len(snapshot.routes), config.src_dir)

    watcher = SourceWatcher(controller)
    watcher.start()
    app = create_app(
        lambda: controller.snapshot,
        errors_provider=lambda: controller.errors,
        rebuild=controller.reload_config,
    )
    try:
        await serve_app(app, host=host, port=port)
    finally:
        watcher.stop()
        await controller.stop()


def _describe_failure(command: str, exc: BaseException) -> str:
    lines = [f"docsite {command} failed: {exc}"]
    origin = exc.__cause__ if isinstance(exc, ConfigError) and exc.__cause__ else exc
    file = getattr(origin, "file", None)
    plugin = getattr(origin, "plugin", None)
    if isinstance(origin, RouteCollisionError):
        lines.append(f"  files: {', '.join(origin.sources)}")
    elif file:
        lines.append(f"  file: {file}")
    if plugin:
        lines.append(f"  plugin: {plugin}")
    lines.append("Run with --verbose for more details.")
    return "\n".join(lines) + "\n"


def _route_lines(result: BuildResult) -> List[str]:
    lines = []
    for entry in result.routes.entries:
        target = entry.relative_path or entry.component
        lines.append(f"{entry.path}\t{target}")
    return lines


def _relativize(path: Path) -> str:
    try:
        return str(path.relative_to(Path.cwd()))
    except ValueError:
        return str(path)


if __name__ == "__main__":
    main(sys.argv[1:])
