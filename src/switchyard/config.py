"""Application settings and per-router options.

``Settings`` is the process-wide key/value store an ``App`` owns. It is
mutable during setup and frozen when the app freezes, so every dispatch
reads the same values without locking.

``RouterOptions`` is a frozen dataclass. Fields left as ``None`` fall back
to the matching setting when the router tree is compiled; anything set on
the router itself always wins.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, replace
from typing import TypeAlias

SettingValue: TypeAlias = str | bool | int | float | None

CASE_SENSITIVE_ROUTING = "case sensitive routing"
STRICT_ROUTING = "strict routing"
JSON_SPACES = "json spaces"

DEFAULT_SETTINGS: dict[str, SettingValue] = {
    CASE_SENSITIVE_ROUTING: False,
    STRICT_ROUTING: False,
    JSON_SPACES: None,  # Indent width for JSON bodies; None means compact
}


class Settings(Mapping[str, SettingValue]):
    """Key/value configuration consulted by routers and serializers.

    Recognized names are the module constants ``CASE_SENSITIVE_ROUTING``,
    ``STRICT_ROUTING`` and ``JSON_SPACES``. Unknown names are stored as
    given so applications can keep their own values alongside::

        settings = Settings()
        settings.set("strict routing", True)
        settings.enable("case sensitive routing")
        settings.get("json spaces")  # None

    Writes are only allowed before ``freeze()``.
    """

    __slots__ = ("_frozen", "_values")

    def __init__(self, values: Mapping[str, SettingValue] | None = None) -> None:
        self._values: dict[str, SettingValue] = dict(DEFAULT_SETTINGS)
        self._frozen = False
        if values:
            for name, value in values.items():
                self.set(name, value)

    def __getitem__(self, name: str) -> SettingValue:
        return self._values[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"Settings({self._values!r})"

    def get(self, name: str, default: SettingValue = None) -> SettingValue:  # type: ignore[override]
        """Return the value for *name*, or *default* if it was never set."""
        return self._values.get(name, default)

    def set(self, name: str, value: SettingValue) -> None:
        """Store *value* under *name*."""
        if self._frozen:
            msg = (
                f"Cannot change setting {name!r} after the app has started "
                "dispatching requests."
            )
            raise RuntimeError(msg)
        self._values[name] = value

    def enable(self, name: str) -> None:
        """Set *name* to ``True``."""
        self.set(name, True)

    def disable(self, name: str) -> None:
        """Set *name* to ``False``."""
        self.set(name, False)

    def enabled(self, name: str) -> bool:
        return bool(self._values.get(name))

    def disabled(self, name: str) -> bool:
        return not self._values.get(name)

    def freeze(self) -> None:
        """Reject further writes. Idempotent."""
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen


@dataclass(frozen=True, slots=True)
class RouterOptions:
    """Matching behavior for one router. Immutable after creation.

    ``None`` means "use the app setting"::

        RouterOptions(case_sensitive=True)  # strict comes from settings
    """

    case_sensitive: bool | None = None
    strict: bool | None = None
    merge_params: bool = False

    def resolve(self, settings: Mapping[str, SettingValue]) -> RouterOptions:
        """Fill unset fields from *settings*. Local values always win."""
        case_sensitive = self.case_sensitive
        if case_sensitive is None:
            case_sensitive = bool(settings.get(CASE_SENSITIVE_ROUTING, False))
        strict = self.strict
        if strict is None:
            strict = bool(settings.get(STRICT_ROUTING, False))
        return replace(self, case_sensitive=case_sensitive, strict=strict)
