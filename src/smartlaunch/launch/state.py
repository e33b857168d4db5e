"""Launch state schema — the typed dictionary that flows through the graph."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TypedDict

from smartlaunch.browser import BrowserAuthenticator
from smartlaunch.config import Settings
from smartlaunch.credentials import CredentialCorrelator
from smartlaunch.gateway import TransportGateway
from smartlaunch.models import (
    AuthorizeResult,
    CallbackResult,
    ConditionRecord,
    PatientRecord,
    TokenResult,
)
from smartlaunch.sandbox import SandboxBridge


class FlowPhase(str, Enum):
    IDLE = "idle"
    AUTHORIZING = "authorizing"
    AWAITING_CALLBACK = "awaiting_callback"
    EXCHANGING_TOKEN = "exchanging_token"
    FETCHING_PATIENT = "fetching_patient"
    FETCHING_CONDITIONS = "fetching_conditions"
    DONE = "done"
    FAILED = "failed"


class LaunchState(TypedDict, total=False):
    """State that flows through every node of the launch graph.

    Fields use ``total=False`` so nodes can return partial updates
    (only the keys they modify).
    """

    # Input
    iss: str

    # After authorize
    auth: AuthorizeResult
    use_sandbox: bool

    # After present_sandbox / present_browser
    callback_url: str

    # After validate_callback
    callback: CallbackResult
    code_verifier: str

    # After exchange_token
    token: TokenResult
    fhir_base: str

    # After fetch_patient
    patient: PatientRecord

    # After fetch_conditions
    conditions: list[ConditionRecord]
    conditions_error: str | None


@dataclass
class LaunchContext:
    """Collaborators handed to every node through the run config."""

    gateway: TransportGateway
    correlator: CredentialCorrelator
    authenticator: BrowserAuthenticator
    config: Settings
    sandbox_bridge: SandboxBridge | None = None
