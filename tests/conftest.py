"""Shared fixtures and payloads for the test suite."""

from __future__ import annotations

import json
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

import httpx
import pytest

from smartlaunch.config import Settings
from smartlaunch.credentials import CredentialCorrelator, MemorySecretStore
from smartlaunch.gateway import TransportGateway
from smartlaunch.sandbox import EventKind, SurfaceEvent

BACKEND = "https://backend.test"
EPIC_ISS = "https://fhir.epic.com/interconnect-fhir-oauth/api/FHIR/R4"
DUKE_ISS = "https://health-apis.duke.edu/FHIR/api/FHIR/R4"
REDIRECT_URI = "myapp://oauth-callback"

AUTHORIZE_PAYLOAD = {
    "authorization_url": "https://idp.example/auth?client_id=app&state=s1",
    "state": "s1",
    "code_verifier": "v1",
    "iss": EPIC_ISS,
    "redirect_uri": REDIRECT_URI,
}

TOKEN_PAYLOAD = {
    "access_token": "at-123",
    "token_type": "Bearer",
    "scope": "patient/*.read launch/patient",
    "expires_in": 3600,
    "patient": "erXuFYUfucBZaryVksYEcMg3",
}

PATIENT_PAYLOAD = {
    "resourceType": "Patient",
    "id": "erXuFYUfucBZaryVksYEcMg3",
    "name": [{"use": "official", "text": "Camila Maria Lopez", "family": "Lopez", "given": ["Camila", "Maria"]}],
    "gender": "female",
    "birthDate": "1987-09-12",
    "identifier": [
        {"system": "urn:oid:1.2.840.114350.1.13.0.1.7.5.737384.0", "value": "E3826"},
        {"value": "203713"},
        {"system": "urn:oid:2.16.840.1.113883.4.1"},
    ],
}

CONDITION_BUNDLE = {
    "resourceType": "Bundle",
    "type": "searchset",
    "entry": [
        {
            "resource": {
                "resourceType": "Condition",
                "id": "cond-1",
                "clinicalStatus": {"coding": [{"code": "active", "display": "Active"}]},
                "code": {"text": "Hypertension"},
                "onsetDateTime": "2019-05-01",
            }
        },
        {
            "resource": {
                "resourceType": "Condition",
                "id": "cond-2",
                "verificationStatus": {"coding": [{"code": "confirmed"}]},
                "code": {"coding": [{"system": "http://snomed.info/sct", "code": "44054006", "display": "Type 2 diabetes mellitus"}]},
                "recordedDate": "2020-01-15",
            }
        },
        {
            "search": {"mode": "outcome"},
            "resource": {
                "resourceType": "OperationOutcome",
                "issue": [{"severity": "warning", "code": "informational"}],
            },
        },
    ],
}


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Settings isolated from the environment; the sandbox poll window is 10 s."""
    return Settings(
        _env_file=None,
        backend_base_url=BACKEND,
        redirect_uri=REDIRECT_URI,
        callback_scheme="myapp",
        sandbox_iss=EPIC_ISS,
        sandbox_username="fhircamila",
        sandbox_password="epicepic1",
        sandbox_poll_interval=1.0,
        sandbox_max_poll_attempts=10,
        sandbox_first_load_delay=0,
        credential_file=tmp_path / "credentials.json",
    )


@pytest.fixture
def correlator() -> CredentialCorrelator:
    """A correlator over two in-memory stores."""
    return CredentialCorrelator(primary=MemorySecretStore(), fallback=MemorySecretStore())


@pytest.fixture
def mock_gateway() -> Callable[[Callable[[httpx.Request], httpx.Response]], TransportGateway]:
    """Factory building a TransportGateway whose HTTP traffic goes to *handler*."""

    def _build(handler: Callable[[httpx.Request], httpx.Response]) -> TransportGateway:
        return TransportGateway(
            base_url=BACKEND,
            timeout=5.0,
            transport=httpx.MockTransport(handler),
        )

    return _build


def json_response(payload: object, status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, content=json.dumps(payload).encode("utf-8"))


# ------------------------------------------------------------------
# Sandbox surface doubles
# ------------------------------------------------------------------


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass
class FakeElement:
    id: str | None = None
    name: str | None = None
    tag: str | None = "button"
    type: str | None = None
    value: str | None = None
    text: str | None = None
    disabled: bool = False


# Selector used by FakeSurface.query_all for keyword candidates.
BUTTONS = "buttons"


class FakeSurface:
    """Scripted BrowserSurface.

    *pages* maps selectors to elements (``BUTTONS`` maps to a list for
    ``query_all``); clicking any element moves to the next page, if any.
    *events* are returned in order by ``next_event``; a callable entry is
    run against the surface and reported as a timeout. Once the script is
    exhausted, timed waits report ``None`` and an untimed wait reports
    ``CANCEL``.
    """

    def __init__(
        self,
        events: list,
        pages: list[dict] | None = None,
        capture: str | None = None,
        clock: FakeClock | None = None,
        tick: float = 1.0,
    ) -> None:
        self.events = deque(events)
        self.pages = pages or [{}]
        self.page_index = 0
        self.capture_payload = capture if capture is not None else json.dumps({"html": "<html></html>"})
        self.clock = clock
        self.tick = tick
        self.loaded: list[str] = []
        self.filled: list[tuple[str | None, str]] = []
        self.clicked: list[FakeElement] = []
        self.timeouts: list[float | None] = []
        self.closed = False

    @property
    def page(self) -> dict:
        return self.pages[self.page_index]

    def show(self, page: dict) -> None:
        self.pages[self.page_index] = page

    async def load(self, url: str) -> None:
        self.loaded.append(url)

    async def next_event(self, timeout: float | None) -> SurfaceEvent | None:
        self.timeouts.append(timeout)
        if self.clock is not None:
            self.clock.advance(self.tick)
        if self.events:
            event = self.events.popleft()
            if callable(event):
                event(self)
                return None
            return event
        if timeout is None:
            return SurfaceEvent(EventKind.CANCEL)
        return None

    async def query(self, selector: str) -> FakeElement | None:
        return self.page.get(selector)

    async def query_all(self, selector: str) -> list[FakeElement]:
        return list(self.page.get(BUTTONS, []))

    async def fill(self, element: FakeElement, value: str) -> None:
        self.filled.append((element.id, value))

    async def click(self, element: FakeElement) -> None:
        self.clicked.append(element)
        if self.page_index < len(self.pages) - 1:
            self.page_index += 1

    async def capture(self) -> str:
        return self.capture_payload

    async def close(self) -> None:
        self.closed = True


LOGIN_PAGE = {
    "#Login": FakeElement(id="Login", tag="input", type="text"),
    "#Password": FakeElement(id="Password", tag="input", type="password"),
    "#submit": FakeElement(id="submit", type="submit", text="Log In"),
}
NEXT_PAGE = {"#nextButton": FakeElement(id="nextButton", text="Next")}
CONSENT_PAGE = {
    BUTTONS: [
        FakeElement(id="deny", text="Deny"),
        FakeElement(id="allow", text="  Allow   Access "),
    ]
}


def sandbox_pages() -> list[dict]:
    """Login, next and consent pages, followed by a blank page."""
    return [dict(LOGIN_PAGE), dict(NEXT_PAGE), dict(CONSENT_PAGE), {}]
