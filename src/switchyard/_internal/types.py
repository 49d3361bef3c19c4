"""Shared type aliases used across switchyard modules."""

from collections.abc import Callable
from typing import Any, TypeAlias

# Normal handler or middleware — receives the RequestContext
HandlerFunc: TypeAlias = Callable[..., Any]

# Error-handling handler — receives (error, RequestContext)
ErrorHandlerFunc: TypeAlias = Callable[..., Any]

# Param preprocessor — receives (RequestContext, value, name)
ParamFunc: TypeAlias = Callable[..., Any]
