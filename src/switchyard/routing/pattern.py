"""Path pattern parsing and compilation.

Route paths are parsed once at registration time (so malformed specs
fail fast with ``ConfigurationError``) and compiled into regular
expressions when the router tree freezes, once the case-sensitivity and
strict-slash options are known.

Syntax::

    /users/:id                 named parameter, one segment
    /flights/:from-:to         several parameters inside one segment
    /files/:name.:ext          ...split at the literal text between them
    /users/:"user id"          quoted parameter name
    /posts{/:page}             optional group, separator included
    /posts/{:page}             optional group, separator required
    /static/*path              named wildcard, spans slashes
    /static/*                  unnamed wildcard, bound as "0"
    /price/\\$:amount          backslash escapes the next character

A compiled ``re.Pattern`` can be passed instead of a string; it is used
as-is (searched, not anchored) and its captures become parameters.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from typing import Protocol, TypeAlias
from urllib.parse import unquote

from switchyard.errors import ConfigurationError, HTTPError

logger = logging.getLogger("switchyard.routing")

PathSpec: TypeAlias = str | re.Pattern[str] | Sequence[str | re.Pattern[str]]

DELIMITER = "/"
_RESERVED = frozenset("()[]?+!")


# -- Tokens --


@dataclass(frozen=True, slots=True)
class Text:
    """Literal text, compared exactly (or ASCII-case-insensitively)."""

    value: str


@dataclass(frozen=True, slots=True)
class Param:
    """``:name`` — matches non-slash characters inside one segment."""

    name: str


@dataclass(frozen=True, slots=True)
class Wildcard:
    """``*name`` — matches one or more characters, slashes included.

    ``name`` is ``None`` for a bare ``*``; its value is bound under a
    numeric key.
    """

    name: str | None = None


@dataclass(frozen=True, slots=True)
class Group:
    """``{...}`` — optional sub-pattern, matched zero or one time."""

    tokens: tuple[Token, ...]


Token: TypeAlias = Text | Param | Wildcard | Group


@dataclass(frozen=True, slots=True)
class PathPattern:
    """A parsed route path. Produced by ``parse()``; compile with ``.compile()``."""

    source: str
    tokens: tuple[Token, ...]

    @property
    def keys(self) -> tuple[str, ...]:
        """Parameter names in order of first appearance."""
        names: list[str] = []
        for seq in _flatten(self.tokens):
            for key in _sequence_keys(seq):
                if key not in names:
                    names.append(key)
        return tuple(names)

    def compile(
        self,
        *,
        case_sensitive: bool = False,
        strict: bool = False,
        end: bool = True,
    ) -> PatternMatcher:
        """Build the regular expression for this pattern.

        ``end=False`` compiles a prefix matcher: the pattern must match a
        leading part of the path that ends at a ``/`` or at the end.
        """
        tokens = self.tokens
        if not strict:
            tokens = _strip_trailing_delimiter(tokens)
        keys: list[str] = []
        alternatives = [_sequence_source(seq, keys, self.source) for seq in _flatten(tokens)]
        source = f"^(?:{'|'.join(alternatives)})"
        if not strict:
            source += f"(?:{re.escape(DELIMITER)}\\Z)?"
        source += r"\Z" if end else f"(?={re.escape(DELIMITER)}|\\Z)"
        flags = 0 if case_sensitive else re.IGNORECASE | re.ASCII
        logger.debug("compiled %r -> %s", self.source, source)
        return PatternMatcher(
            source=self.source,
            regex=re.compile(source, flags),
            keys=tuple(keys),
        )


# -- Match results --


@dataclass(frozen=True, slots=True)
class PathMatch:
    """Result of a successful path match.

    ``path`` is the matched part of the request path, ``remainder`` what
    follows it (always empty for end-anchored patterns).
    """

    params: dict[str, str] = field(default_factory=dict)
    path: str = ""
    remainder: str = ""


class Matcher(Protocol):
    """Anything that tests a request path and yields bindings."""

    source: str

    def match(self, path: str) -> PathMatch | None: ...


@dataclass(frozen=True, slots=True)
class PatternMatcher:
    """Compiled matcher for a string pattern."""

    source: str
    regex: re.Pattern[str]
    keys: tuple[str, ...]

    def match(self, path: str) -> PathMatch | None:
        m = self.regex.match(path)
        if m is None:
            return None
        params: dict[str, str] = {}
        for index, key in enumerate(self.keys, start=1):
            value = m.group(index)
            if value is not None:
                params[key] = decode_param(value)
        matched = m.group(0)
        return PathMatch(params=params, path=matched, remainder=path[len(matched) :])


@dataclass(frozen=True, slots=True)
class RegexMatcher:
    """Matcher for a user-supplied regular expression.

    Route patterns (``end=True``) are searched anywhere in the path.
    Prefix patterns must match at the start of the path.
    """

    regex: re.Pattern[str]
    end: bool = True

    @property
    def source(self) -> str:
        return self.regex.pattern

    def match(self, path: str) -> PathMatch | None:
        m = self.regex.search(path) if self.end else self.regex.match(path)
        if m is None:
            return None
        names = {index: name for name, index in self.regex.groupindex.items()}
        params: dict[str, str] = {}
        position = 0
        for index in range(1, (self.regex.groups or 0) + 1):
            name = names.get(index)
            if name is None:
                name = str(position)
                position += 1
            value = m.group(index)
            if value is not None:
                params[name] = decode_param(value)
        return PathMatch(params=params, path=m.group(0), remainder=path[m.end() :])


@dataclass(frozen=True, slots=True)
class AnyMatcher:
    """Tries several matchers in order; the first match wins."""

    matchers: tuple[Matcher, ...]

    @property
    def source(self) -> str:
        return ", ".join(m.source for m in self.matchers)

    def match(self, path: str) -> PathMatch | None:
        for matcher in self.matchers:
            result = matcher.match(path)
            if result is not None:
                return result
        return None


# -- Public API --


def parse(spec: str) -> PathPattern:
    """Parse a route path string.

    Raises ``ConfigurationError`` for unbalanced braces, reserved
    characters, missing parameter names, duplicate names, and parameters
    that directly follow another parameter.
    """
    if not isinstance(spec, str):
        msg = f"Route path must be a string or compiled regex, got {type(spec).__name__}"
        raise ConfigurationError(msg)
    if spec and not spec.startswith(DELIMITER):
        msg = f"Route path must start with '/': {spec!r}"
        raise ConfigurationError(msg)
    tokens = _Parser(spec).parse()
    pattern = PathPattern(source=spec, tokens=tokens)
    # Validate every alternative now so the failure surfaces at registration.
    keys: list[str] = []
    for seq in _flatten(tokens):
        _sequence_source(seq, keys, spec)
    return pattern


def compile_pattern(
    spec: PathSpec | PathPattern,
    *,
    case_sensitive: bool = False,
    strict: bool = False,
    end: bool = True,
) -> Matcher:
    """Parse and compile *spec* in one step.

    Accepts a path string, a parsed ``PathPattern``, a compiled regex, or
    a sequence of those (matched in order).
    """
    if isinstance(spec, PathPattern):
        return spec.compile(case_sensitive=case_sensitive, strict=strict, end=end)
    if isinstance(spec, re.Pattern):
        return RegexMatcher(spec, end=end)
    if isinstance(spec, str):
        return parse(spec).compile(case_sensitive=case_sensitive, strict=strict, end=end)
    if isinstance(spec, Sequence) and spec:
        return AnyMatcher(
            tuple(
                compile_pattern(item, case_sensitive=case_sensitive, strict=strict, end=end)
                for item in spec
            )
        )
    msg = f"Invalid route path: {spec!r}"
    raise ConfigurationError(msg)


def decode_param(value: str) -> str:
    """Percent-decode a captured value.

    Raises ``HTTPError(400)`` when the escapes are not valid UTF-8.
    """
    if "%" not in value:
        return value
    try:
        return unquote(value, errors="strict")
    except UnicodeDecodeError as exc:
        raise HTTPError(400, f"Failed to decode param {value!r}") from exc


# -- Parsing --


def _is_name_start(char: str) -> bool:
    return char in "$_" or char.isalpha()


def _is_name_char(char: str) -> bool:
    return char in "$_" or char.isalnum()


class _Parser:
    """Recursive-descent parser over the raw path string."""

    __slots__ = ("_pos", "_spec")

    def __init__(self, spec: str) -> None:
        self._spec = spec
        self._pos = 0

    def parse(self) -> tuple[Token, ...]:
        tokens = self._parse_until(closing=False)
        return tokens

    def _error(self, message: str) -> ConfigurationError:
        return ConfigurationError(f"{message} at index {self._pos} in {self._spec!r}")

    def _parse_until(self, *, closing: bool) -> tuple[Token, ...]:
        tokens: list[Token] = []
        text: list[str] = []

        def flush() -> None:
            if text:
                tokens.append(Text("".join(text)))
                text.clear()

        spec = self._spec
        while self._pos < len(spec):
            char = spec[self._pos]
            if char == "\\":
                if self._pos + 1 >= len(spec):
                    raise self._error("Dangling escape")
                text.append(spec[self._pos + 1])
                self._pos += 2
            elif char == "{":
                flush()
                self._pos += 1
                tokens.append(Group(self._parse_until(closing=True)))
            elif char == "}":
                if not closing:
                    raise self._error("Unexpected '}'")
                flush()
                self._pos += 1
                return tuple(tokens)
            elif char == ":":
                flush()
                self._pos += 1
                name = self._read_name()
                if name is None:
                    raise self._error("Missing parameter name")
                tokens.append(Param(name))
            elif char == "*":
                flush()
                self._pos += 1
                tokens.append(Wildcard(self._read_name()))
            elif char in _RESERVED:
                raise self._error(f"Unexpected {char!r}")
            else:
                text.append(char)
                self._pos += 1

        if closing:
            raise self._error("Unterminated group, expected '}'")
        flush()
        return tuple(tokens)

    def _read_name(self) -> str | None:
        spec = self._spec
        if self._pos < len(spec) and spec[self._pos] == '"':
            end = spec.find('"', self._pos + 1)
            if end == -1 or end == self._pos + 1:
                raise self._error("Unterminated or empty quoted name")
            name = spec[self._pos + 1 : end]
            self._pos = end + 1
            return name
        if self._pos >= len(spec) or not _is_name_start(spec[self._pos]):
            return None
        start = self._pos
        self._pos += 1
        while self._pos < len(spec) and _is_name_char(spec[self._pos]):
            self._pos += 1
        return spec[start : self._pos]


# -- Compilation --


_Sequence: TypeAlias = tuple[Text | Param | Wildcard, ...]


def _flatten(tokens: tuple[Token, ...], index: int = 0, init: _Sequence = ()) -> Iterator[_Sequence]:
    """Expand optional groups into every alternative, longest first."""
    if index == len(tokens):
        yield init
        return
    token = tokens[index]
    if isinstance(token, Group):
        for seq in _flatten(token.tokens, 0, init):
            yield from _flatten(tokens, index + 1, seq)
        yield from _flatten(tokens, index + 1, init)
    else:
        yield from _flatten(tokens, index + 1, (*init, token))


def _sequence_keys(seq: _Sequence) -> list[str]:
    keys: list[str] = []
    unnamed = 0
    for token in seq:
        if isinstance(token, Param):
            keys.append(token.name)
        elif isinstance(token, Wildcard):
            if token.name is None:
                keys.append(str(unnamed))
                unnamed += 1
            else:
                keys.append(token.name)
    return keys


def _sequence_source(seq: _Sequence, keys: list[str], spec: str) -> str:
    """Regex source for one flattened alternative; appends its keys.

    A parameter that starts a segment excludes only ``/``. One that
    follows literal text inside the segment also excludes that text, so
    ``:from-:to`` splits ``NYC-LAX`` at the dash.
    """
    seq_keys = _sequence_keys(seq)
    duplicates = {k for k in seq_keys if seq_keys.count(k) > 1}
    if duplicates:
        msg = f"Duplicate parameter name {sorted(duplicates)[0]!r} in {spec!r}"
        raise ConfigurationError(msg)

    parts: list[str] = []
    backtrack = ""
    segment_start = True
    key_iter = iter(seq_keys)
    for token in seq:
        if isinstance(token, Text):
            parts.append(re.escape(token.value))
            backtrack += token.value
            segment_start = segment_start or DELIMITER in token.value
            continue
        key = next(key_iter)
        if not segment_start and not backtrack:
            msg = f"Missing text before parameter {key!r} in {spec!r}"
            raise ConfigurationError(msg)
        if isinstance(token, Param):
            parts.append(f"({_negate('' if segment_start else backtrack)}+)")
        else:
            parts.append(r"([\s\S]+)")
        keys.append(key)
        backtrack = ""
        segment_start = False
    return "".join(parts)


def _negate(backtrack: str) -> str:
    """Character class for a parameter: no delimiter, no preceding text."""
    if len(backtrack) < 2:
        return f"[^{re.escape(DELIMITER + backtrack)}]"
    return f"(?:(?!{re.escape(backtrack)})[^{re.escape(DELIMITER)}])"


def _strip_trailing_delimiter(tokens: tuple[Token, ...]) -> tuple[Token, ...]:
    """Drop one trailing ``/`` so non-strict patterns accept both forms."""
    if not tokens:
        return tokens
    last = tokens[-1]
    if not isinstance(last, Text) or not last.value.endswith(DELIMITER):
        return tokens
    if len(tokens) == 1 and last.value == DELIMITER:
        return tokens
    trimmed = last.value[:-1]
    if trimmed:
        return (*tokens[:-1], Text(trimmed))
    return tokens[:-1]
