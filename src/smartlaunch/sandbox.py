"""Scripted sign-in for the Epic public sandbox.

The host supplies a :class:`BrowserSurface` (an embedded web view, a
headless browser, ...). :class:`SandboxBridge` loads the authorization URL
into it, replays a declarative step table (login, next, consent) on every
DOM mutation or navigation event, and resolves once the surface tries to
navigate to the app's callback scheme.

Step table, evaluated in order; a pass stops at the first step that fires:

    login    fill ``#Login``/``#Password`` and press ``#submit`` (once)
    next     press ``#nextButton`` (at most every 0.8 s)
    consent  press the allow/authorize control (at most every 0.9 s)
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Protocol
from urllib.parse import urlsplit

from pydantic import BaseModel, ValidationError

from smartlaunch.config import Settings, settings
from smartlaunch.errors import InvalidHtmlCaptureError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Host surface
# ---------------------------------------------------------------------------


class EventKind(str, Enum):
    LOAD = "load"
    MUTATION = "mutation"
    NAVIGATION = "navigation"
    PAGE_CHANGE = "page_change"
    CLICK = "click"
    CONTINUE = "continue"
    CANCEL = "cancel"


class SurfaceElement(Protocol):
    id: str | None
    name: str | None
    tag: str | None
    type: str | None
    value: str | None
    text: str | None
    disabled: bool


@dataclass
class SurfaceEvent:
    """Something that happened in the surface or in the operator controls.

    ``NAVIGATION`` events are reported before the target URL loads.
    """

    kind: EventKind
    url: str | None = None
    element: SurfaceElement | None = None


class BrowserSurface(Protocol):
    async def load(self, url: str) -> None: ...

    async def next_event(self, timeout: float | None) -> SurfaceEvent | None:
        """Wait for the next event; ``None`` when *timeout* seconds pass."""
        ...

    async def query(self, selector: str) -> SurfaceElement | None: ...

    async def query_all(self, selector: str) -> list[SurfaceElement]: ...

    async def fill(self, element: SurfaceElement, value: str) -> None: ...

    async def click(self, element: SurfaceElement) -> None: ...

    async def capture(self) -> str:
        """Return ``{"html": ..., "elements": {...}}`` as a JSON string."""
        ...

    async def close(self) -> None: ...


SurfaceFactory = Callable[[], Awaitable[BrowserSurface]]


# ---------------------------------------------------------------------------
# Step table
# ---------------------------------------------------------------------------


class StepAction(str, Enum):
    LOGIN = "login"
    CLICK = "click"


@dataclass(frozen=True)
class AutomationStep:
    """One entry of the automation table.

    For ``LOGIN`` steps *selectors* are ``(username, password, submit)``.
    For ``CLICK`` steps *selectors* are tried in order, then every element
    matching *candidates* is scored against *keywords*.
    """

    name: str
    action: StepAction
    selectors: tuple[str, ...]
    keywords: tuple[str, ...] = ()
    candidates: str = ""
    min_interval: float = 0.0
    once: bool = False


CONSENT_SELECTORS = (
    "#allowDataSharing",
    "#authorize",
    "#authorizeButton",
    "#AuthorizeButton",
    "button[name='authorize']",
    "input[name='authorize']",
    "button[data-action='authorize']",
    "input[data-action='authorize']",
)

DEFAULT_STEPS: tuple[AutomationStep, ...] = (
    AutomationStep(
        name="login",
        action=StepAction.LOGIN,
        selectors=("#Login", "#Password", "#submit"),
        once=True,
    ),
    AutomationStep(
        name="next",
        action=StepAction.CLICK,
        selectors=("#nextButton",),
        min_interval=0.8,
    ),
    AutomationStep(
        name="consent",
        action=StepAction.CLICK,
        selectors=CONSENT_SELECTORS,
        keywords=("allow", "authorize", "grant", "accept"),
        candidates="button, input[type='submit'], input[type='button']",
        min_interval=0.9,
    ),
)


def normalize_text(value: str | None) -> str:
    return " ".join((value or "").lower().split())


class SandboxAutomation:
    """Evaluates the step table against a surface, one pass at a time."""

    def __init__(
        self,
        username: str,
        password: str,
        steps: tuple[AutomationStep, ...] = DEFAULT_STEPS,
        clock: Callable[[], float] = time.monotonic,
        run_interval: float = 0.1,
    ) -> None:
        self._username = username
        self._password = password
        self.steps = steps
        self._clock = clock
        self._run_interval = run_interval
        self._last_run_at: float | None = None
        self._last_fired_at: dict[str, float] = {}
        self._done: set[str] = set()
        self.history: list[str] = []

    async def run_pass(self, surface: BrowserSurface) -> str | None:
        """Fire at most one step; return its name or ``None``."""
        now = self._clock()
        if self._last_run_at is not None and now - self._last_run_at < self._run_interval:
            return None
        self._last_run_at = now

        for step in self.steps:
            if step.once and step.name in self._done:
                continue
            last = self._last_fired_at.get(step.name)
            if last is not None and now - last < step.min_interval:
                continue
            if await self._attempt(step, surface):
                self._last_fired_at[step.name] = now
                if step.once:
                    self._done.add(step.name)
                self.history.append(step.name)
                return step.name
        return None

    async def _attempt(self, step: AutomationStep, surface: BrowserSurface) -> bool:
        if step.action is StepAction.LOGIN:
            return await self._login(step, surface)
        return await self._click(step, surface)

    async def _login(self, step: AutomationStep, surface: BrowserSurface) -> bool:
        user_selector, password_selector, submit_selector = step.selectors
        username = await surface.query(user_selector)
        password = await surface.query(password_selector)
        submit = await surface.query(submit_selector)
        if username is None or submit is None or submit.disabled:
            return False

        await surface.fill(username, self._username)
        if password is not None:
            await surface.fill(password, self._password)
            logger.info("[Sandbox] submitted username + password")
        else:
            logger.info("[Sandbox] submitted username only")
        await surface.click(submit)
        return True

    async def _click(self, step: AutomationStep, surface: BrowserSurface) -> bool:
        target = await self._find_target(step, surface)
        if target is None or target.disabled:
            return False
        await surface.click(target)
        logger.info("[Sandbox] %s: clicked %s", step.name, _element_label(target))
        return True

    async def _find_target(
        self, step: AutomationStep, surface: BrowserSurface
    ) -> SurfaceElement | None:
        for selector in step.selectors:
            element = await surface.query(selector)
            if element is not None:
                return element

        if not step.keywords or not step.candidates:
            return None
        for candidate in await surface.query_all(step.candidates):
            if candidate.disabled:
                continue
            text = normalize_text(candidate.text or candidate.value)
            if any(keyword in text for keyword in step.keywords):
                return candidate
        return None


# ---------------------------------------------------------------------------
# Page capture
# ---------------------------------------------------------------------------


class ElementInfo(BaseModel):
    label: str | None = None
    tag: str | None = None
    id: str | None = None
    name: str | None = None
    type: str | None = None
    value: str | None = None
    placeholder: str | None = None
    text: str | None = None


class AuthElementReport(BaseModel):
    username: ElementInfo | None = None
    password: ElementInfo | None = None
    login: ElementInfo | None = None


class AuthCapturePayload(BaseModel):
    html: str
    elements: AuthElementReport | None = None


def describe_element(info: ElementInfo | SurfaceElement, label: str) -> str:
    """One log line describing an element, with password values redacted."""
    value = "<redacted>" if info.type == "password" else (info.value or "<none>")
    return (
        f"[Sandbox] {label} element -> id={info.id or '<none>'} "
        f"name={info.name or '<none>'} type={info.type or '<none>'} value={value} "
        f"text={info.text or '<none>'}"
    )


def _element_label(element: SurfaceElement) -> str:
    return element.id or element.name or element.value or element.text or "<unknown>"


# ---------------------------------------------------------------------------
# Bridge
# ---------------------------------------------------------------------------


class OutcomeKind(str, Enum):
    COMPLETED = "completed"
    CONTINUE = "continue"
    CANCELLED = "cancelled"


@dataclass
class SandboxOutcome:
    kind: OutcomeKind
    callback_url: str | None = None
    actions: list[str] = field(default_factory=list)


AUTOMATION_TRIGGERS = {
    EventKind.LOAD,
    EventKind.MUTATION,
    EventKind.PAGE_CHANGE,
    EventKind.NAVIGATION,
    EventKind.CLICK,
}


class SandboxBridge:
    """Drives a :class:`BrowserSurface` until the OAuth callback is reached.

    The operator may post ``CANCEL`` (the launch fails as cancelled) or
    ``CONTINUE`` (the launch falls back to the regular browser presenter
    with the same URL).
    """

    def __init__(
        self,
        surface_factory: SurfaceFactory,
        config: Settings | None = None,
        steps: tuple[AutomationStep, ...] = DEFAULT_STEPS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or settings
        self._surface_factory = surface_factory
        self._steps = steps
        self._clock = clock

    def is_callback(self, url: str | None) -> bool:
        return bool(url) and urlsplit(url).scheme == self.config.callback_scheme

    async def run(self, authorization_url: str) -> SandboxOutcome:
        automation = SandboxAutomation(
            self.config.sandbox_username,
            self.config.sandbox_password.get_secret_value(),
            steps=self._steps,
            clock=self._clock,
        )
        surface = await self._surface_factory()
        try:
            return await self._drive(surface, automation, authorization_url)
        finally:
            await surface.close()

    async def _drive(
        self,
        surface: BrowserSurface,
        automation: SandboxAutomation,
        authorization_url: str,
    ) -> SandboxOutcome:
        poll_interval = self.config.sandbox_poll_interval
        # Automation stops for good once the poll window closes, busy page or not.
        deadline = self._clock() + poll_interval * self.config.sandbox_max_poll_attempts
        ready = False
        observing = True

        logger.info("[Sandbox] loading %s", authorization_url)
        await surface.load(authorization_url)

        while True:
            event = await surface.next_event(timeout=poll_interval if observing else None)

            if observing and self._clock() >= deadline:
                observing = False
                logger.info("[Sandbox] fallback poll cap reached; automation stopped")

            if event is None:
                if observing and ready:
                    await automation.run_pass(surface)
                continue

            if event.kind is EventKind.CANCEL:
                logger.info("[Sandbox] cancelled by operator")
                return SandboxOutcome(OutcomeKind.CANCELLED, actions=automation.history)
            if event.kind is EventKind.CONTINUE:
                logger.info("[Sandbox] operator chose the system browser")
                return SandboxOutcome(OutcomeKind.CONTINUE, actions=automation.history)

            if event.kind in (EventKind.NAVIGATION, EventKind.PAGE_CHANGE):
                if self.is_callback(event.url):
                    logger.info("[Sandbox] callback reached")
                    return SandboxOutcome(
                        OutcomeKind.COMPLETED, callback_url=event.url, actions=automation.history
                    )
                logger.debug("[Sandbox] %s: %s", event.kind.value, event.url)

            if event.kind is EventKind.CLICK and event.element is not None:
                logger.debug(describe_element(event.element, "Clicked"))

            if event.kind is EventKind.LOAD and not ready:
                await self._capture(surface)
                await asyncio.sleep(self.config.sandbox_first_load_delay)
                ready = True

            if ready and observing and event.kind in AUTOMATION_TRIGGERS:
                await automation.run_pass(surface)

    async def _capture(self, surface: BrowserSurface) -> None:
        """Log the discovered sign-in elements and optionally save the page."""
        try:
            payload = _decode_capture(await surface.capture())
        except InvalidHtmlCaptureError as exc:
            logger.warning("[Sandbox] page capture failed: %s", exc)
            return

        report = payload.elements
        if report is None:
            logger.info("[Sandbox] element discovery returned no data")
        else:
            for label, info in (
                ("Username", report.username),
                ("Password", report.password),
                ("Log in", report.login),
            ):
                if info is None:
                    logger.info("[Sandbox] %s element not found", label)
                else:
                    logger.info(describe_element(info, label))

        if self.config.sandbox_capture_dir is not None:
            path = save_html(payload.html, self.config.sandbox_capture_dir)
            logger.info("[Sandbox] saved sign-in page to %s", path)


def _decode_capture(raw: str) -> AuthCapturePayload:
    try:
        return AuthCapturePayload.model_validate_json(raw)
    except (ValidationError, TypeError) as exc:
        raise InvalidHtmlCaptureError() from exc


def save_html(html: str, directory: Path, filename: str = "sandbox_auth_page.html") -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / filename
    path.write_text(html, encoding="utf-8")
    return path

