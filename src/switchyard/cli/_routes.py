"""``switchyard routes`` and ``switchyard match`` — route table introspection."""

import argparse
import sys

from switchyard.app import App
from switchyard.cli._resolve import resolve_app


def _load(import_string: str) -> App:
    try:
        app = resolve_app(import_string)
    except (ModuleNotFoundError, AttributeError, TypeError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc
    app._ensure_frozen()
    return app


def run_routes(args: argparse.Namespace) -> None:
    """Print a table of METHOD, PATH and handler names, in dispatch order."""
    app = _load(args.app)
    routes = app.routes()
    if not routes:
        print("No routes registered.")
        return

    rows: list[tuple[str, str, str]] = []
    for info in routes:
        methods_str = "*" if info.methods is None else ", ".join(sorted(info.methods))
        rows.append((methods_str, info.path, ", ".join(info.handlers)))

    max_methods = max(max(len(r[0]) for r in rows), 6)  # "METHOD" header
    max_path = max(max(len(r[1]) for r in rows), 4)  # "PATH" header

    fmt = f"{{:<{max_methods}}}  {{:<{max_path}}}  {{}}"
    print(fmt.format("METHOD", "PATH", "HANDLER"))
    sep_len = max_methods + max_path + 4 + max((len(r[2]) for r in rows), default=0)
    print("-" * min(sep_len, 80))
    for methods_str, path, handlers in rows:
        print(fmt.format(methods_str, path, handlers))


def run_match(args: argparse.Namespace) -> None:
    """Print the route that would answer ``args.method args.path``.

    Exits with status 1 when nothing matches.
    """
    app = _load(args.app)
    found = app.router.match(args.method, args.path)
    if found is None:
        print(f"No route matches {args.method.upper()} {args.path}")
        raise SystemExit(1)
    handlers = ", ".join(ref.name for ref in found.route.chain)
    print(f"route:   {found.route.path}")
    print(f"handler: {handlers}")
    for name, value in found.params.items():
        print(f"param:   {name} = {value}")
