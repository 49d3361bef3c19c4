"""Routing — path patterns, layer tables and mountable routers.

Routes are registered during setup and compiled into immutable matchers
when the app freezes.
"""

from switchyard.routing.pattern import PathMatch, PathPattern, compile_pattern, parse
from switchyard.routing.route import ErrorHandler, Handler, RouteEntry, RouteMatch
from switchyard.routing.router import RouteBuilder, RouteInfo, Router

__all__ = [
    "ErrorHandler",
    "Handler",
    "PathMatch",
    "PathPattern",
    "RouteBuilder",
    "RouteEntry",
    "RouteInfo",
    "RouteMatch",
    "Router",
    "compile_pattern",
    "parse",
]
