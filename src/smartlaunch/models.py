"""Typed records for backend and FHIR payloads.

Wire models ignore unknown fields. Derived display values (organization
names, issuer aliases, condition titles) use explicit first-present-wins
properties rather than extra stored fields.
"""

from __future__ import annotations

from typing import Literal
from urllib.parse import unquote, urlsplit

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from smartlaunch.errors import InvalidUrlError, MissingCodeError, MissingStateError


class _WireModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


def _first_present(*values: str | None) -> str | None:
    """Return the first value that is not ``None``."""
    for value in values:
        if value is not None:
            return value
    return None


# ------------------------------------------------------------------
# Backend broker
# ------------------------------------------------------------------


class AuthorizeResult(_WireModel):
    """Response of ``GET /api/smart/authorize?mode=json``."""

    authorization_url: str
    state: str
    code_verifier: str
    iss: str
    redirect_uri: str
    vendor: str | None = None


class TokenResult(_WireModel):
    """Response of ``POST /api/smart/exchange``."""

    access_token: str
    token_type: str | None = None
    scope: str | None = None
    expires_in: int | None = None
    refresh_token: str | None = None
    id_token: str | None = None
    patient: str | None = None
    fhir_base: str | None = None


class PendingCredential(_WireModel):
    """The one in-flight ``state``/``code_verifier`` pair."""

    state: str
    code_verifier: str


class OrgMatch(_WireModel):
    """One organization candidate from ``/api/epic/resolve``."""

    name: str | None = None
    iss: str | None = None
    fhir_base: str | None = None
    url: str | None = None
    org: str | None = None
    organization: str | None = None
    brand: str | None = None

    @property
    def display_name(self) -> str:
        return (
            _first_present(self.name, self.organization, self.org, self.brand)
            or "Unknown Organization"
        )

    @property
    def resolved_iss(self) -> str | None:
        return _first_present(self.iss, self.fhir_base, self.url)

    @property
    def selectable(self) -> bool:
        return self.resolved_iss is not None


class OrgSearchWrapper(_WireModel):
    matches: list[OrgMatch] | None = None
    results: list[OrgMatch] | None = None
    organizations: list[OrgMatch] | None = None
    data: list[OrgMatch] | None = None

    def first_list(self) -> list[OrgMatch]:
        for candidates in (self.matches, self.results, self.organizations, self.data):
            if candidates is not None:
                return candidates
        return []


_ORG_LIST = TypeAdapter(list[OrgMatch])


def decode_org_matches(raw: bytes | str) -> list[OrgMatch]:
    """Decode an organization search response.

    The backend answers either with a bare JSON array or with an object
    wrapping the array under ``matches``, ``results``, ``organizations`` or
    ``data`` (checked in that order).
    """
    try:
        return _ORG_LIST.validate_json(raw)
    except ValidationError:
        return OrgSearchWrapper.model_validate_json(raw).first_list()


# ------------------------------------------------------------------
# FHIR datatypes
# ------------------------------------------------------------------


class Coding(_WireModel):
    system: str | None = None
    code: str | None = None
    display: str | None = None


class CodeableConcept(_WireModel):
    text: str | None = None
    coding: list[Coding] | None = None

    @property
    def display_text(self) -> str | None:
        """Non-empty ``text``, else the first coding's display or code."""
        if self.text:
            return self.text
        if self.coding:
            first = self.coding[0]
            return _first_present(first.display, first.code)
        return None


class HumanName(_WireModel):
    text: str | None = None
    family: str | None = None
    given: list[str] | None = None


class Identifier(_WireModel):
    system: str | None = None
    value: str | None = None


# ------------------------------------------------------------------
# FHIR resources
# ------------------------------------------------------------------


class PatientRecord(_WireModel):
    """Projection of a FHIR Patient."""

    resource_type: str | None = Field(default=None, alias="resourceType")
    id: str | None = None
    name: list[HumanName] | None = None
    gender: str | None = None
    birth_date: str | None = Field(default=None, alias="birthDate")
    identifier: list[Identifier] | None = None

    @property
    def display_name(self) -> str:
        """First name entry as ``text``, else ``'Given Family'``, else ``'Unknown'``."""
        if not self.name:
            return "Unknown"
        first = self.name[0]
        if first.text:
            return first.text
        given = " ".join(first.given or [])
        parts = [part for part in (given, first.family or "") if part]
        return " ".join(parts) or "Unknown"

    @property
    def identifier_display(self) -> list[str]:
        lines = []
        for ident in self.identifier or []:
            if not ident.value:
                continue
            if ident.system:
                lines.append(f"{ident.system}: {ident.value}")
            else:
                lines.append(ident.value)
        return lines


class ConditionRecord(_WireModel):
    """Projection of a FHIR Condition."""

    resource_type: str | None = Field(default=None, alias="resourceType")
    id: str | None = None
    clinical_status: CodeableConcept | None = Field(default=None, alias="clinicalStatus")
    verification_status: CodeableConcept | None = Field(
        default=None, alias="verificationStatus"
    )
    category: list[CodeableConcept] | None = None
    code: CodeableConcept | None = None
    onset_date_time: str | None = Field(default=None, alias="onsetDateTime")
    recorded_date: str | None = Field(default=None, alias="recordedDate")

    @property
    def title(self) -> str:
        return (self.code.display_text if self.code else None) or "Condition"

    @property
    def status(self) -> str | None:
        return _first_present(
            self.clinical_status.display_text if self.clinical_status else None,
            self.verification_status.display_text if self.verification_status else None,
        )

    @property
    def onset(self) -> str | None:
        return _first_present(self.onset_date_time, self.recorded_date)


class ConditionBundleEntry(_WireModel):
    resource: ConditionRecord | None = None


class ConditionBundle(_WireModel):
    """A searchset Bundle of Conditions."""

    resource_type: Literal["Bundle"] | None = Field(default=None, alias="resourceType")
    entry: list[ConditionBundleEntry] | None = None

    def conditions(self) -> list[ConditionRecord]:
        """Return the Condition resources, skipping outcome entries and blanks."""
        return [
            e.resource
            for e in self.entry or []
            if e.resource is not None
            and e.resource.resource_type in (None, "Condition")
        ]


class OperationOutcomeIssue(_WireModel):
    severity: str | None = None
    code: str | None = None
    details: CodeableConcept | None = None
    diagnostics: str | None = None

    @property
    def summary(self) -> str | None:
        return _first_present(
            self.diagnostics,
            self.details.text if self.details else None,
            self.code,
        )


class OperationOutcome(_WireModel):
    resource_type: Literal["OperationOutcome"] | None = Field(
        default=None, alias="resourceType"
    )
    issue: list[OperationOutcomeIssue] | None = None

    def issue_text(self) -> str:
        """Join every issue summary with ``' | '``."""
        return " | ".join(
            summary for issue in self.issue or [] if (summary := issue.summary)
        )


# ------------------------------------------------------------------
# OAuth callback
# ------------------------------------------------------------------


class CallbackResult(_WireModel):
    """``code`` and ``state`` parsed off the OAuth redirect."""

    code: str
    state: str

    @classmethod
    def from_url(cls, url: str) -> CallbackResult:
        try:
            query = urlsplit(url).query
        except ValueError as exc:
            raise InvalidUrlError() from exc

        # Percent escapes are decoded; "+" is kept literally.
        params: dict[str, str] = {}
        for pair in query.split("&"):
            if not pair:
                continue
            key, _, value = pair.partition("=")
            params.setdefault(unquote(key), unquote(value))

        code = params.get("code", "")
        state = params.get("state", "")
        if not code:
            raise MissingCodeError()
        if not state:
            raise MissingStateError()
        return cls(code=code, state=state)
