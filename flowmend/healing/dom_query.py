"""HTML snapshot querying behind a small interface."""

from __future__ import annotations

from typing import Protocol

from bs4 import BeautifulSoup, Tag

from flowmend.core.errors import SnapshotUnavailableError

# Locator syntaxes that only a live Playwright page can evaluate
_PLAYWRIGHT_ONLY_PREFIXES: tuple[str, ...] = ("text=", "xpath=", "role=", "//", "..")
_PLAYWRIGHT_ONLY_MARKERS: tuple[str, ...] = (">>", ":has-text(", ":text(", ":text-is(", ":visible")


class DomQueryable(Protocol):
    """Anything that can answer CSS queries over a parsed document."""

    def query(self, selector: str, limit: int = 0) -> list[Tag]: ...


class SoupDocument:
    """BeautifulSoup-backed DomQueryable."""

    def __init__(self, soup: BeautifulSoup) -> None:
        self.soup = soup

    def query(self, selector: str, limit: int = 0) -> list[Tag]:
        """
        Run a CSS query. Raises ``soupsieve.SelectorSyntaxError`` for selectors
        the backend cannot compile; callers decide whether that is fatal.
        """
        return list(self.soup.select(selector, limit=limit))

    @property
    def scope(self) -> Tag | BeautifulSoup:
        """The element whose descendants count as page content (``<body>`` when present)."""
        return self.soup.body or self.soup

    def html(self) -> str:
        return str(self.soup)


def load_document(html: object) -> SoupDocument | None:
    """Parse html, returning None for anything that is not a non-empty string."""
    if not isinstance(html, str) or not html.strip():
        return None
    try:
        return SoupDocument(BeautifulSoup(html, "html.parser"))
    except Exception:  # the parser is lenient; anything raised here means unusable input
        return None


def require_document(html: object) -> SoupDocument:
    doc = load_document(html)
    if doc is None:
        raise SnapshotUnavailableError("DOM snapshot unavailable")
    return doc


def normalize_selector(selector: object) -> str | None:
    """Return the selector trimmed, or None when the HTML backend cannot evaluate it."""
    if not isinstance(selector, str):
        return None
    trimmed = selector.strip()
    if not trimmed:
        return None
    if trimmed.startswith(_PLAYWRIGHT_ONLY_PREFIXES):
        return None
    if any(marker in trimmed for marker in _PLAYWRIGHT_ONLY_MARKERS):
        return None
    return trimmed
