"""Snapshot store: the before/after/current DOM snapshots of one run."""

from __future__ import annotations

import html as html_lib
import logging
import re
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Mapping

from bs4 import Tag

from flowmend.core.types import DomSnapshot, HealingSummary, SnapshotStage
from flowmend.healing.diagnostics import coerce_selector_map
from flowmend.healing.dom_query import SoupDocument, load_document
from flowmend.healing.resolver import SelectorResolver

if TYPE_CHECKING:
    from flowmend.runner.session import BrowserSession

logger = logging.getLogger(__name__)

STAGE_ATTR = "data-flowmend-stage"
RUN_ATTR = "data-flowmend-run"

# Upper bound on elements marked in a synthesized "after" snapshot
_MAX_SYNTHETIC_MARKS = 5

_EMAIL_VALUE = re.compile(r"email\s*[:=]\s*([^\s,]+)", re.IGNORECASE)
_PASSWORD_VALUE = re.compile(r"password\s*[:=]\s*([^\s,]+)", re.IGNORECASE)
_CLICK_LOGIN = re.compile(r"click.*(login|sign in|log in)|submit", re.IGNORECASE)
_NEEDS_LOGIN = re.compile(r"(login|sign in|log in|email|password)", re.IGNORECASE)

_EMAIL_FIELDS = (
    'input[type="email"]',
    'input[name="email"]',
    'input[name*="email"]',
    'input[id*="email"]',
    'input[name*="user"]',
    'input[id*="user"]',
)
_PASSWORD_FIELDS = (
    'input[type="password"]',
    'input[name="password"]',
    'input[name*="pass"]',
    'input[id*="pass"]',
)
_SUBMIT_CONTROLS = ('button[type="submit"]', 'input[type="submit"]', "button", '[role="button"]')


@dataclass(frozen=True)
class LoginIntent:
    """What a free-text instruction says about signing in."""

    email: str = "{{email}}"
    password: str = "{{password}}"
    click_login: bool = False
    needs_login: bool = False


def parse_login_instruction(instruction: str | None) -> LoginIntent:
    """Pull login credentials and intent out of an instruction like "login with email: a@b.c"."""
    text = instruction or ""
    email = _EMAIL_VALUE.search(text)
    password = _PASSWORD_VALUE.search(text)
    return LoginIntent(
        email=email.group(1) if email else "{{email}}",
        password=password.group(1) if password else "{{password}}",
        click_login=bool(_CLICK_LOGIN.search(text)),
        needs_login=bool(_NEEDS_LOGIN.search(text)),
    )


def build_fallback_dom(label: str) -> str:
    return (
        "<!doctype html><html><head><meta charset=\"utf-8\">"
        "<title>Self-Healing Snapshot</title></head>"
        "<body data-flowmend-fallback=\"true\"><main>"
        f"<h1>{html_lib.escape(label)}</h1></main></body></html>"
    )


def stamp_html(html: str, stage: SnapshotStage, run_id: str) -> str:
    """
    Tag html with its lifecycle stage and run id.

    Documents with a ``<body>`` get data attributes on it; anything else gets
    a trailing comment. Stamping the same stage twice is idempotent.
    """
    doc = load_document(html)
    if doc is not None and doc.soup.body is not None:
        doc.soup.body[STAGE_ATTR] = stage.value
        doc.soup.body[RUN_ATTR] = run_id
        return doc.html()
    marker = f"<!-- flowmend-stage:{stage.value};run:{run_id} -->"
    base = html.rstrip()
    if base.endswith(marker):
        return base
    return f"{base}\n{marker}"


class SnapshotStore:
    """
    Holds one snapshot per stage for a single run.

    Stored snapshots are pairwise distinct so a diff between any two stages
    is always computable and traceable to a stage.
    """

    def __init__(self, run_id: str | None = None) -> None:
        self.run_id = run_id or uuid.uuid4().hex[:12]
        self._snapshots: dict[SnapshotStage, DomSnapshot] = {}

    def put(self, stage: SnapshotStage | str, html: str | None) -> DomSnapshot:
        stage = SnapshotStage(stage)
        source = html if isinstance(html, str) and html.strip() else build_fallback_dom(
            f"DOM {stage.value}"
        )
        stamped = stamp_html(source, stage, self.run_id)

        for other_stage, other in self._snapshots.items():
            if other_stage is stage:
                continue
            if stamped.strip() == other.html.strip():
                logger.debug(
                    "Snapshot %s collides with %s; adding marker", stage.value, other_stage.value
                )
                stamped = f"{stamped}\n<!-- flowmend-distinct:{stage.value}:{self.run_id} -->"

        snapshot = DomSnapshot(html=stamped, stage=stage, run_id=self.run_id)
        self._snapshots[stage] = snapshot
        return snapshot

    async def capture(self, stage: SnapshotStage | str, session: BrowserSession) -> DomSnapshot:
        """Store the live page content of ``session`` as ``stage``."""
        return self.put(stage, await session.content())

    def get(self, stage: SnapshotStage | str) -> DomSnapshot | None:
        return self._snapshots.get(SnapshotStage(stage))

    def html(self, stage: SnapshotStage | str) -> str | None:
        snapshot = self.get(stage)
        return snapshot.html if snapshot is not None else None

    def as_dict(self) -> dict[str, str]:
        return {stage.value: snap.html for stage, snap in self._snapshots.items()}

    def is_pairwise_distinct(self) -> bool:
        values = [s.html.strip() for s in self._snapshots.values()]
        return len(values) == len(set(values))

    def reset(self) -> None:
        self._snapshots.clear()


def _first_match(doc: SoupDocument, selectors: tuple[str, ...]) -> Tag | None:
    for selector in selectors:
        found = doc.query(selector, limit=1)
        if found:
            return found[0]
    return None


def _apply_login_effects(doc: SoupDocument, intent: LoginIntent) -> None:
    """Fill credential fields and mark the submit control the instruction would press."""
    email_field = _first_match(doc, _EMAIL_FIELDS)
    if email_field is not None:
        email_field["value"] = intent.email
        email_field["data-flowmend-input"] = "email"

    password_field = _first_match(doc, _PASSWORD_FIELDS)
    if password_field is not None:
        password_field["value"] = intent.password
        password_field["data-flowmend-input"] = "password"

    submit = _first_match(doc, _SUBMIT_CONTROLS) if intent.click_login else None
    if submit is not None:
        submit["data-flowmend-action"] = "clicked"

    effects = doc.soup.new_tag(
        "section",
        attrs={
            "id": "flowmend-instruction-effects",
            "data-email-filled": str(email_field is not None).lower(),
            "data-password-filled": str(password_field is not None).lower(),
            "data-submit-marked": str(submit is not None).lower(),
        },
    )
    effects.string = "login-effects-applied"
    doc.scope.append(effects)


def synthesize_after(
    before_html: str,
    selector_map: Mapping[str, Any] | None,
    instruction: str = "",
) -> str:
    """
    Derive an "after" snapshot when the caller did not capture one.

    Elements that resolve from the selector map are marked, and the instruction
    is recorded on ``<body>``. Login instructions also fill the credential
    fields and mark the submit control. If nothing resolves, a marker element
    is appended.
    """
    doc = load_document(before_html)
    if doc is None:
        return build_fallback_dom("DOM after (synthetic)")

    resolver = SelectorResolver()
    marked = 0
    for exact, entry in coerce_selector_map(selector_map).items():
        if marked >= _MAX_SYNTHETIC_MARKS:
            break
        resolution = resolver.resolve(entry, doc)
        if resolution.used_selector is None:
            continue
        node = doc.query(resolution.used_selector, limit=1)[0]
        node["data-flowmend-mark"] = "after"
        node["data-flowmend-selector"] = exact
        marked += 1

    body = doc.soup.body
    if body is not None:
        body["data-flowmend-instruction"] = instruction[:160]

    intent = parse_login_instruction(instruction)
    if intent.needs_login:
        _apply_login_effects(doc, intent)

    if marked == 0:
        marker = doc.soup.new_tag("div", attrs={"id": "flowmend-marker"})
        marker.string = "synthetic-after-state"
        doc.scope.append(marker)

    return doc.html()


def synthesize_current(
    after_html: str,
    summary: HealingSummary,
    instruction: str = "",
) -> str:
    """
    Derive a diagnostic "current" snapshot from the "after" one.

    The result carries a ``section#flowmend-diagnostic-current`` recording the
    login intent and ``summary``, the selector map resolved against ``after_html``.
    """
    doc = load_document(after_html)
    if doc is None:
        return build_fallback_dom("DOM current (diagnostic)")

    intent = parse_login_instruction(instruction)

    body = doc.soup.body
    if body is not None:
        body["data-flowmend-state"] = "current-diagnostic"

    section = doc.soup.new_tag(
        "section",
        attrs={
            "id": "flowmend-diagnostic-current",
            "data-needs-login": str(intent.needs_login).lower(),
            "data-click-login": str(intent.click_login).lower(),
            "data-primary-matched": str(summary.primary_matched),
            "data-healed": str(summary.healed),
            "data-unresolved": str(summary.unresolved),
        },
    )
    section.string = "diagnostic-current-state"
    doc.scope.append(section)
    return doc.html()
