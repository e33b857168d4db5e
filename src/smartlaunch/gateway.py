"""HTTP gateway to the SMART backend broker and the FHIR server.

Every call goes through one ``httpx.AsyncClient``. Non-2xx responses become
:class:`~smartlaunch.errors.HttpError`; transport failures propagate as
``httpx.HTTPError``.

Usage::

    async with TransportGateway() as gateway:
        auth = await gateway.authorize(iss, redirect_uri)
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from smartlaunch.config import settings
from smartlaunch.errors import (
    FhirOperationOutcomeError,
    HttpError,
    UnexpectedFhirResponseError,
)
from smartlaunch.models import (
    AuthorizeResult,
    ConditionBundle,
    ConditionRecord,
    OperationOutcome,
    OrgMatch,
    PatientRecord,
    TokenResult,
    decode_org_matches,
)

logger = logging.getLogger(__name__)

FHIR_JSON = "application/fhir+json"

# Characters of an undecodable FHIR body kept in the error message.
SNIPPET_LENGTH = 400


class TransportGateway:
    """Async client for the five network operations of a launch.

    Args:
        base_url:  Backend broker base URL. Defaults to
                   ``settings.backend_base_url``.
        timeout:   Per-request timeout in seconds. Defaults to
                   ``settings.http_timeout``.
        transport: Optional ``httpx`` transport, e.g. ``httpx.MockTransport``.
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or settings.backend_base_url).rstrip("/")
        self.timeout = settings.http_timeout if timeout is None else timeout
        self._transport = transport
        self._http: httpx.AsyncClient | None = None

    # ── Lifecycle ────────────────────────────────────────────────────────────

    async def connect(self) -> httpx.AsyncClient:
        """Open the underlying HTTP connection pool and return the client."""
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
            logger.debug("TransportGateway: HTTP client opened for %s", self.base_url)
        return self._http

    async def close(self) -> None:
        """Close the underlying HTTP connection pool."""
        if self._http is not None:
            await self._http.aclose()
            self._http = None
            logger.debug("TransportGateway: HTTP client closed.")

    async def __aenter__(self) -> TransportGateway:
        await self.connect()
        return self

    async def __aexit__(self, *_: Any) -> None:
        await self.close()

    # ── Backend operations ───────────────────────────────────────────────────

    async def authorize(
        self,
        iss: str,
        redirect_uri: str,
        scope: str | None = None,
        aud: str | None = None,
        vendor: str | None = None,
    ) -> AuthorizeResult:
        """Ask the broker for an authorization URL and a fresh PKCE pair."""
        params = {"iss": iss, "mode": "json", "redirect_uri": redirect_uri}
        for key, value in (("scope", scope), ("aud", aud), ("vendor", vendor)):
            if value is not None:
                params[key] = value

        response = await self._request("GET", self._url("/api/smart/authorize"), params=params)
        return AuthorizeResult.model_validate_json(response.content)

    async def exchange(
        self,
        code: str,
        iss: str,
        code_verifier: str,
        redirect_uri: str,
        vendor: str | None = None,
    ) -> TokenResult:
        """Trade an authorization code for tokens through the broker."""
        body = {
            "code": code,
            "iss": iss,
            "code_verifier": code_verifier,
            "redirect_uri": redirect_uri,
        }
        if vendor is not None:
            body["vendor"] = vendor

        response = await self._request("POST", self._url("/api/smart/exchange"), json=body)
        return TokenResult.model_validate_json(response.content)

    async def fetch_patient(self, iss: str, patient_id: str, access_token: str) -> PatientRecord:
        """Read the launch patient through the broker's FHIR proxy."""
        response = await self._request(
            "GET",
            self._url("/api/fhir/patient"),
            params={"iss": iss, "patient": patient_id},
            headers=_bearer(access_token),
        )
        return PatientRecord.model_validate_json(response.content)

    async def resolve_organizations(self, query: str) -> list[OrgMatch]:
        """Search the broker's organization directory."""
        response = await self._request("GET", self._url("/api/epic/resolve"), params={"q": query})
        return decode_org_matches(response.content)

    # ── FHIR server ──────────────────────────────────────────────────────────

    async def fetch_conditions(
        self, fhir_base: str, patient_id: str, access_token: str
    ) -> list[ConditionRecord]:
        """Search Conditions for a patient directly on the FHIR server."""
        response = await self._request(
            "GET",
            f"{fhir_base.rstrip('/')}/Condition",
            params={"patient": patient_id, "_format": "json"},
            headers={**_bearer(access_token), "Accept": FHIR_JSON},
        )
        return _decode_condition_bundle(response.content)

    # ── Internal helpers ─────────────────────────────────────────────────────

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        http = await self.connect()
        logger.debug("%s %s", method, url)
        response = await http.request(method, url, **kwargs)
        _raise_for_status(response)
        return response


def _bearer(access_token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {access_token}"}


def _raise_for_status(response: httpx.Response) -> None:
    if 200 <= response.status_code <= 299:
        return
    try:
        body: str | None = response.content.decode("utf-8")
    except UnicodeDecodeError:
        body = None
    logger.debug("HTTP %s from %s", response.status_code, response.request.url)
    raise HttpError(response.status_code, body)


def _decode_condition_bundle(raw: bytes) -> list[ConditionRecord]:
    """Decode a Condition Bundle, classifying anything else the server sent.

    An OperationOutcome becomes :class:`FhirOperationOutcomeError`; any other
    non-empty body becomes :class:`UnexpectedFhirResponseError`; an empty
    body re-raises the original decode error.
    """
    try:
        return ConditionBundle.model_validate_json(raw).conditions()
    except ValidationError:
        if not raw:
            raise
        try:
            outcome = OperationOutcome.model_validate_json(raw)
        except ValidationError:
            outcome = None

        detail = outcome.issue_text() if outcome is not None else ""
        if detail:
            raise FhirOperationOutcomeError(detail) from None

        text = raw.decode("utf-8", errors="replace")
        raise UnexpectedFhirResponseError(text[:SNIPPET_LENGTH]) from None
