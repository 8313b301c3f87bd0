from __future__ import annotations

from dataclasses import dataclass

STRATEGIES = frozenset({"id", "name", "css", "link_text", "xpath"})


@dataclass(frozen=True, slots=True)
class Locator:
    """How to find an element: a strategy tag plus a selector string."""

    by: str
    value: str

    def __post_init__(self) -> None:
        if self.by not in STRATEGIES:
            raise ValueError(f"Unsupported locator strategy: {self.by!r}")
        if not isinstance(self.value, str) or not self.value.strip():
            raise ValueError(f"Locator value must be a non-empty string, got {self.value!r}")

    def __str__(self) -> str:
        return f"{self.by}={self.value!r}"

    @classmethod
    def id(cls, value: str) -> Locator:
        return cls("id", value)

    @classmethod
    def name(cls, value: str) -> Locator:
        return cls("name", value)

    @classmethod
    def css(cls, value: str) -> Locator:
        return cls("css", value)

    @classmethod
    def link_text(cls, value: str) -> Locator:
        return cls("link_text", value)

    @classmethod
    def xpath(cls, value: str) -> Locator:
        return cls("xpath", value)
