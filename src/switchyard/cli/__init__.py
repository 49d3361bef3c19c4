"""Switchyard CLI — route table introspection.

Entry point registered as ``switchyard`` in ``pyproject.toml``::

    [project.scripts]
    switchyard = "switchyard.cli:main"
"""

import argparse
import sys


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for the ``switchyard`` command."""
    parser = argparse.ArgumentParser(
        prog="switchyard",
        description="Switchyard — HTTP path routing and middleware dispatch.",
    )
    subparsers = parser.add_subparsers(dest="command")

    # -- switchyard routes -------------------------------------------------
    routes_parser = subparsers.add_parser("routes", help="List registered routes")
    routes_parser.add_argument("app", help="Import string (e.g. myapp:app)")

    # -- switchyard match --------------------------------------------------
    match_parser = subparsers.add_parser("match", help="Show which route answers a request")
    match_parser.add_argument("app", help="Import string (e.g. myapp:app)")
    match_parser.add_argument("method", help="HTTP method, e.g. GET")
    match_parser.add_argument("path", help="Request path, e.g. /users/42")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    if args.command == "routes":
        from switchyard.cli._routes import run_routes

        run_routes(args)
    elif args.command == "match":
        from switchyard.cli._routes import run_match

        run_match(args)
