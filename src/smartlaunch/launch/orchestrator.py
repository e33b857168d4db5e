"""Observable front door for the launch flow and organization search."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from smartlaunch.browser import BrowserAuthenticator
from smartlaunch.config import Settings, settings
from smartlaunch.credentials import CredentialCorrelator
from smartlaunch.errors import FlowError, describe_error
from smartlaunch.gateway import TransportGateway
from smartlaunch.launch.graph import build_graph
from smartlaunch.launch.state import FlowPhase, LaunchContext
from smartlaunch.models import ConditionRecord, OrgMatch, PatientRecord
from smartlaunch.sandbox import SandboxBridge

logger = logging.getLogger(__name__)

# Phase entered once the named node has finished.
_PHASE_AFTER = {
    "authorize": FlowPhase.AWAITING_CALLBACK,
    "present_sandbox": FlowPhase.EXCHANGING_TOKEN,
    "present_browser": FlowPhase.EXCHANGING_TOKEN,
    "validate_callback": FlowPhase.EXCHANGING_TOKEN,
    "exchange_token": FlowPhase.FETCHING_PATIENT,
    "fetch_patient": FlowPhase.FETCHING_CONDITIONS,
    "fetch_conditions": FlowPhase.DONE,
}

# Errors published as the launch's error message instead of propagating.
_REPORTED_ERRORS = (FlowError, httpx.HTTPError, ValueError)


class Orchestrator:
    """Runs one SMART standalone launch at a time and exposes its results.

    Observable attributes:

    - ``phase``, ``is_loading``: progress of the current launch
    - ``error_message``: why the last launch or search failed
    - ``patient``, ``conditions``, ``conditions_error``: launch results; a
      conditions failure never clears ``patient``
    - ``org_query``, ``org_results``, ``is_searching``: organization search
    """

    def __init__(
        self,
        gateway: TransportGateway,
        correlator: CredentialCorrelator,
        authenticator: BrowserAuthenticator,
        sandbox_bridge: SandboxBridge | None = None,
        config: Settings | None = None,
    ) -> None:
        self.config = config or settings
        self.gateway = gateway
        self.correlator = correlator
        self._context = LaunchContext(
            gateway=gateway,
            correlator=correlator,
            authenticator=authenticator,
            config=self.config,
            sandbox_bridge=sandbox_bridge,
        )
        self._graph = build_graph()

        self.phase = FlowPhase.IDLE
        self.is_loading = False
        self.is_loading_conditions = False
        self.error_message: str | None = None
        self.patient: PatientRecord | None = None
        self.conditions: list[ConditionRecord] = []
        self.conditions_error: str | None = None

        self.org_query = ""
        self.org_results: list[OrgMatch] = []
        self.is_searching = False

    # ------------------------------------------------------------------
    # Launch
    # ------------------------------------------------------------------

    async def start_flow(self, iss: str) -> None:
        """Launch against *iss*. Ignored while another launch is running."""
        if self.is_loading:
            logger.debug("Launch already in progress; ignoring %s", iss)
            return

        self.error_message = None
        self.patient = None
        self.conditions = []
        self.conditions_error = None
        self.is_loading = True
        self.phase = FlowPhase.AUTHORIZING
        logger.info("Starting launch for %s", iss)

        try:
            async for update in self._graph.astream(
                {"iss": iss},
                config={"configurable": {"context": self._context}},
                stream_mode="updates",
            ):
                for node, values in update.items():
                    self._apply(node, values or {})
        except _REPORTED_ERRORS as exc:
            logger.warning("Launch for %s failed: %s", iss, describe_error(exc))
            self.error_message = describe_error(exc)
            self.phase = FlowPhase.FAILED
        finally:
            self.is_loading = False
            self.is_loading_conditions = False

    def _apply(self, node: str, values: dict[str, Any]) -> None:
        """Publish one node's update."""
        if "patient" in values:
            self.patient = values["patient"]
            self.is_loading_conditions = True
        if "conditions" in values:
            self.conditions = values["conditions"]
            self.conditions_error = values.get("conditions_error")
            self.is_loading_conditions = False

        if node == "present_sandbox" and not values.get("callback_url"):
            return
        next_phase = _PHASE_AFTER.get(node)
        if next_phase is None:
            return
        logger.debug("Launch phase %s -> %s", self.phase.value, next_phase.value)
        self.phase = next_phase

    # ------------------------------------------------------------------
    # Organization search
    # ------------------------------------------------------------------

    async def search_organizations(self, query: str | None = None) -> None:
        """Search organizations for *query* (defaults to ``org_query``)."""
        if query is not None:
            self.org_query = query
        query = self.org_query.strip()
        if not query:
            self.org_results = []
            return

        self.error_message = None
        self.is_searching = True
        try:
            self.org_results = await self.gateway.resolve_organizations(query)
        except _REPORTED_ERRORS as exc:
            logger.warning("Organization search for %r failed: %s", query, describe_error(exc))
            self.error_message = describe_error(exc)
        finally:
            self.is_searching = False
