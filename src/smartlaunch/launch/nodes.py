"""Processing nodes for the launch graph.

Each node is a coroutine that receives the current ``LaunchState`` plus the
run config (which carries the :class:`LaunchContext`) and returns a dict
with the keys it wants to update. Failures raise :class:`FlowError`
subclasses and abort the run, except in ``fetch_conditions``, whose errors
are reported in the state.
"""

from __future__ import annotations

import hmac
import logging
from typing import Any
from urllib.parse import urlsplit

import httpx
from langchain_core.runnables import RunnableConfig

from smartlaunch.errors import (
    AuthSessionFailedError,
    FlowError,
    InvalidUrlError,
    MissingPatientError,
    MissingVerifierError,
    StateMismatchError,
    UserCancelledError,
    describe_error,
)
from smartlaunch.launch.state import LaunchContext, LaunchState
from smartlaunch.models import CallbackResult
from smartlaunch.sandbox import OutcomeKind

logger = logging.getLogger(__name__)


def _context(config: RunnableConfig) -> LaunchContext:
    return config["configurable"]["context"]


def _checked_url(url: str) -> str:
    """Return *url* if it is an absolute http(s) URL, else raise ``InvalidUrlError``."""
    try:
        parts = urlsplit(url)
    except ValueError as exc:
        raise InvalidUrlError() from exc
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise InvalidUrlError()
    return url


def _same_issuer(a: str, b: str) -> bool:
    return a.rstrip("/") == b.rstrip("/")


# ------------------------------------------------------------------
# Node functions
# ------------------------------------------------------------------


async def authorize(state: LaunchState, config: RunnableConfig) -> dict[str, Any]:
    """Get an authorization URL and persist the PKCE pair before anything is shown."""
    ctx = _context(config)
    iss = state["iss"]
    auth = await ctx.gateway.authorize(
        iss,
        ctx.config.redirect_uri,
        scope=ctx.config.smart_scope,
        aud=ctx.config.smart_aud,
        vendor=ctx.config.smart_vendor,
    )
    ctx.correlator.store(auth.state, auth.code_verifier)
    logger.info("Authorization prepared for %s", auth.iss)

    use_sandbox = ctx.sandbox_bridge is not None and _same_issuer(auth.iss, ctx.config.sandbox_iss)
    return {"auth": auth, "use_sandbox": use_sandbox}


async def present_sandbox(state: LaunchState, config: RunnableConfig) -> dict[str, Any]:
    """Run the scripted sandbox sign-in."""
    ctx = _context(config)
    if ctx.sandbox_bridge is None:
        raise AuthSessionFailedError("No sandbox sign-in is configured.")
    url = _checked_url(state["auth"].authorization_url)

    outcome = await ctx.sandbox_bridge.run(url)
    if outcome.kind is OutcomeKind.CANCELLED:
        raise UserCancelledError()
    if outcome.kind is OutcomeKind.CONTINUE:
        return {"use_sandbox": False}
    return {"callback_url": outcome.callback_url}


async def present_browser(state: LaunchState, config: RunnableConfig) -> dict[str, Any]:
    """Hand the authorization URL to the browser presenter and wait for the callback."""
    ctx = _context(config)
    url = _checked_url(state["auth"].authorization_url)
    callback_url = await ctx.authenticator.authenticate(url, ctx.config.callback_scheme)
    return {"callback_url": callback_url}


async def validate_callback(state: LaunchState, config: RunnableConfig) -> dict[str, Any]:
    """Check the callback ``state`` against the stored one and load the verifier.

    The pending pair is cleared whatever the outcome, so a replayed callback
    cannot match it later.
    """
    ctx = _context(config)
    try:
        callback = CallbackResult.from_url(state["callback_url"])

        stored_state = ctx.correlator.load_state()
        if stored_state is None or not hmac.compare_digest(
            stored_state.encode("utf-8"), callback.state.encode("utf-8")
        ):
            raise StateMismatchError()

        verifier = ctx.correlator.load_code_verifier()
        if verifier is None:
            raise MissingVerifierError()
    finally:
        ctx.correlator.clear()

    return {"callback": callback, "code_verifier": verifier}


async def exchange_token(state: LaunchState, config: RunnableConfig) -> dict[str, Any]:
    """Trade the code for tokens; the launch needs a patient in the token response."""
    ctx = _context(config)
    auth = state["auth"]
    token = await ctx.gateway.exchange(
        state["callback"].code,
        auth.iss,
        state["code_verifier"],
        ctx.config.redirect_uri,
        vendor=auth.vendor or ctx.config.smart_vendor,
    )
    if not token.patient:
        raise MissingPatientError()

    fhir_base = token.fhir_base or auth.iss
    logger.info("Token issued for patient %s (FHIR base %s)", token.patient, fhir_base)
    return {"token": token, "fhir_base": fhir_base}


async def fetch_patient(state: LaunchState, config: RunnableConfig) -> dict[str, Any]:
    """Read the launch patient."""
    ctx = _context(config)
    token = state["token"]
    patient = await ctx.gateway.fetch_patient(state["fhir_base"], token.patient, token.access_token)
    return {"patient": patient}


async def fetch_conditions(state: LaunchState, config: RunnableConfig) -> dict[str, Any]:
    """Read the patient's Conditions; a failure here never undoes the patient."""
    ctx = _context(config)
    token = state["token"]
    try:
        conditions = await ctx.gateway.fetch_conditions(
            state["fhir_base"], token.patient, token.access_token
        )
    except (FlowError, httpx.HTTPError, ValueError) as exc:
        logger.warning("Condition fetch failed: %s", describe_error(exc))
        return {"conditions": [], "conditions_error": describe_error(exc)}

    logger.info("Fetched %d conditions", len(conditions))
    return {"conditions": conditions, "conditions_error": None}
