"""Domain allow-listing for navigation and interaction targets."""

from __future__ import annotations

from typing import Iterable, Sequence
from urllib.parse import urlsplit

from flowmend.core.errors import DomainBlockedError, WorkflowValidationError

WILDCARD = "*"


def _hostname(url: str) -> str | None:
    try:
        host = urlsplit(url).hostname
    except ValueError:
        return None
    if not host:
        return None
    host = host.lower()
    if host.startswith("www."):
        host = host[4:]
    return host or None


def normalize_domain(text: str | None) -> str | None:
    """Reduce a bare hostname or a URL to its comparable hostname."""
    candidate = str(text or "").strip().lower()
    if not candidate:
        return None
    if "://" not in candidate:
        candidate = f"https://{candidate}"
    return _hostname(candidate)


def normalize_domains(domains: Iterable[str | None]) -> list[str]:
    result: list[str] = []
    for domain in domains:
        normalized = normalize_domain(domain)
        if normalized is not None and normalized not in result:
            result.append(normalized)
    return result


def is_allowed(url: str, allow_list: Sequence[str]) -> bool:
    """
    True when ``url``'s hostname equals an allow-list entry or is a subdomain of one.

    An empty allow-list is unrestricted. Malformed URLs are never allowed.
    """
    if not allow_list:
        return True
    host = _hostname(str(url or ""))
    if host is None:
        return False
    domains = [d.strip().lower() for d in allow_list if d and d.strip()]
    return any(host == domain or host.endswith(f".{domain}") for domain in domains)


def merge_allowed_domains(
    requested: Iterable[str] | None,
    configured: Iterable[str] | None,
) -> list[str]:
    """
    Combine a request's allow-list with the configured one.

    A ``*`` on either side lifts the restriction (returns ``[]``). When both
    sides are given, only their intersection is allowed.
    """
    requested_raw = [str(d).strip() for d in (requested or [])]
    configured_raw = [str(d).strip() for d in (configured or [])]
    if WILDCARD in requested_raw or WILDCARD in configured_raw:
        return []

    requested_norm = normalize_domains(requested_raw)
    configured_norm = normalize_domains(configured_raw)

    if requested_norm and configured_norm:
        merged = [d for d in requested_norm if d in configured_norm]
        if not merged:
            raise WorkflowValidationError(
                "Requested domains are outside the configured allow-list: "
                + ", ".join(requested_norm)
            )
        return merged
    return configured_norm or requested_norm


class DomainGuard:
    """An allow-list bound to one run."""

    def __init__(self, allow_list: Iterable[str] | None = None) -> None:
        self.allow_list = normalize_domains(allow_list or [])

    @property
    def unrestricted(self) -> bool:
        return not self.allow_list

    def is_allowed(self, url: str) -> bool:
        return is_allowed(url, self.allow_list)

    def check(self, url: str, message: str) -> None:
        if not self.is_allowed(url):
            raise DomainBlockedError(f"{message} ({url})", url=url)
