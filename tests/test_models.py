"""Unit tests for smartlaunch.models — payload decoding and derived fields."""

from __future__ import annotations

import json

import pytest
from pydantic import ValidationError

from smartlaunch.errors import MissingCodeError, MissingStateError
from smartlaunch.models import (
    AuthorizeResult,
    CallbackResult,
    CodeableConcept,
    ConditionBundle,
    ConditionRecord,
    OperationOutcome,
    OrgMatch,
    PatientRecord,
    TokenResult,
    decode_org_matches,
)

from tests.conftest import AUTHORIZE_PAYLOAD, CONDITION_BUNDLE, PATIENT_PAYLOAD, TOKEN_PAYLOAD

ORGS = [
    {"name": "Duke Health", "iss": "https://x"},
    {"organization": "UCLA Health", "fhir_base": "https://ucla/fhir"},
    {"brand": "MyChart Central", "url": "https://central/fhir"},
    {"org": "No Endpoint Clinic"},
]


# ------------------------------------------------------------------
# Organization search
# ------------------------------------------------------------------


class TestDecodeOrgMatches:
    """Bare arrays and every wrapper shape decode to the same matches."""

    def test_bare_array(self):
        matches = decode_org_matches(json.dumps(ORGS))
        assert [m.display_name for m in matches] == [
            "Duke Health",
            "UCLA Health",
            "MyChart Central",
            "No Endpoint Clinic",
        ]

    @pytest.mark.parametrize("key", ["matches", "results", "organizations", "data"])
    def test_wrapper_shapes_match_bare_array(self, key):
        bare = decode_org_matches(json.dumps(ORGS))
        wrapped = decode_org_matches(json.dumps({key: ORGS}))
        assert wrapped == bare

    def test_wrapper_priority_order(self):
        payload = {
            "data": [{"name": "from data"}],
            "organizations": [{"name": "from organizations"}],
            "results": [{"name": "from results"}],
        }
        matches = decode_org_matches(json.dumps(payload))
        assert [m.display_name for m in matches] == ["from results"]

    def test_unknown_wrapper_is_empty(self):
        assert decode_org_matches(b'{"items": [{"name": "x"}]}') == []

    def test_duke_scenario(self):
        matches = decode_org_matches(b'{"organizations":[{"name":"Duke Health","iss":"https://x"}]}')
        assert len(matches) == 1
        assert matches[0].display_name == "Duke Health"
        assert matches[0].resolved_iss == "https://x"

    def test_invalid_json_raises(self):
        with pytest.raises(ValidationError):
            decode_org_matches(b"<html>nope</html>")


class TestOrgMatch:
    """First-present-wins derivation for organization aliases."""

    def test_display_name_priority(self):
        match = OrgMatch(name="N", organization="O", org="G", brand="B")
        assert match.display_name == "N"
        assert OrgMatch(organization="O", org="G", brand="B").display_name == "O"
        assert OrgMatch(org="G", brand="B").display_name == "G"
        assert OrgMatch(brand="B").display_name == "B"

    def test_display_name_fallback(self):
        assert OrgMatch().display_name == "Unknown Organization"

    def test_resolved_iss_priority(self):
        assert OrgMatch(iss="a", fhir_base="b", url="c").resolved_iss == "a"
        assert OrgMatch(fhir_base="b", url="c").resolved_iss == "b"
        assert OrgMatch(url="c").resolved_iss == "c"

    def test_without_issuer_is_not_selectable(self):
        match = OrgMatch(name="Clinic")
        assert match.resolved_iss is None
        assert match.selectable is False


# ------------------------------------------------------------------
# Broker payloads
# ------------------------------------------------------------------


class TestBrokerPayloads:
    def test_authorize_result(self):
        auth = AuthorizeResult.model_validate(AUTHORIZE_PAYLOAD)
        assert auth.state == "s1"
        assert auth.code_verifier == "v1"
        assert auth.vendor is None

    def test_authorize_result_requires_verifier(self):
        payload = {k: v for k, v in AUTHORIZE_PAYLOAD.items() if k != "code_verifier"}
        with pytest.raises(ValidationError):
            AuthorizeResult.model_validate(payload)

    def test_token_result_optional_fields(self):
        token = TokenResult.model_validate({"access_token": "at"})
        assert token.patient is None
        assert token.fhir_base is None
        assert token.refresh_token is None

    def test_token_result_full(self):
        token = TokenResult.model_validate({**TOKEN_PAYLOAD, "fhir_base": "https://fhir/R4"})
        assert token.patient == "erXuFYUfucBZaryVksYEcMg3"
        assert token.expires_in == 3600
        assert token.fhir_base == "https://fhir/R4"


# ------------------------------------------------------------------
# FHIR resources
# ------------------------------------------------------------------


class TestPatientRecord:
    def test_display_name_uses_text(self):
        patient = PatientRecord.model_validate(PATIENT_PAYLOAD)
        assert patient.display_name == "Camila Maria Lopez"
        assert patient.birth_date == "1987-09-12"
        assert patient.gender == "female"

    def test_display_name_given_family(self):
        patient = PatientRecord.model_validate({"name": [{"given": ["Ana", "B."], "family": "Silva"}]})
        assert patient.display_name == "Ana B. Silva"

    def test_display_name_empty_text_falls_through(self):
        patient = PatientRecord.model_validate({"name": [{"text": "", "family": "Silva"}]})
        assert patient.display_name == "Silva"

    def test_display_name_unknown(self):
        assert PatientRecord.model_validate({}).display_name == "Unknown"
        assert PatientRecord.model_validate({"name": []}).display_name == "Unknown"
        assert PatientRecord.model_validate({"name": [{}]}).display_name == "Unknown"

    def test_identifier_display(self):
        patient = PatientRecord.model_validate(PATIENT_PAYLOAD)
        assert patient.identifier_display == [
            "urn:oid:1.2.840.114350.1.13.0.1.7.5.737384.0: E3826",
            "203713",
        ]


class TestConditionRecord:
    def test_title_from_text(self):
        condition = ConditionRecord.model_validate({"code": {"text": "Asthma"}})
        assert condition.title == "Asthma"

    def test_title_from_coding_display_then_code(self):
        assert ConditionRecord.model_validate(
            {"code": {"coding": [{"code": "J45", "display": "Asthma"}]}}
        ).title == "Asthma"
        assert ConditionRecord.model_validate({"code": {"coding": [{"code": "J45"}]}}).title == "J45"

    def test_title_fallback(self):
        assert ConditionRecord.model_validate({}).title == "Condition"

    def test_status_prefers_clinical(self):
        condition = ConditionRecord.model_validate(
            {
                "clinicalStatus": {"text": "Active"},
                "verificationStatus": {"text": "Confirmed"},
            }
        )
        assert condition.status == "Active"

    def test_status_falls_back_to_verification(self):
        condition = ConditionRecord.model_validate({"verificationStatus": {"coding": [{"code": "confirmed"}]}})
        assert condition.status == "confirmed"

    def test_onset_falls_back_to_recorded_date(self):
        assert ConditionRecord.model_validate({"recordedDate": "2020-01-15"}).onset == "2020-01-15"
        assert ConditionRecord.model_validate(
            {"onsetDateTime": "2019-05-01", "recordedDate": "2020-01-15"}
        ).onset == "2019-05-01"

    def test_codeable_concept_empty(self):
        assert CodeableConcept().display_text is None


class TestBundles:
    def test_condition_bundle_skips_outcome_entries(self):
        bundle = ConditionBundle.model_validate(CONDITION_BUNDLE)
        conditions = bundle.conditions()
        assert [c.id for c in conditions] == ["cond-1", "cond-2"]

    def test_bundle_without_entries(self):
        assert ConditionBundle.model_validate({"resourceType": "Bundle"}).conditions() == []

    def test_operation_outcome_is_not_a_bundle(self):
        with pytest.raises(ValidationError):
            ConditionBundle.model_validate({"resourceType": "OperationOutcome", "issue": []})

    def test_operation_outcome_issue_text(self):
        outcome = OperationOutcome.model_validate(
            {
                "resourceType": "OperationOutcome",
                "issue": [
                    {"code": "processing", "diagnostics": "Patient not found", "details": {"text": "ignored"}},
                    {"code": "security", "details": {"text": "Access denied"}},
                    {"code": "informational"},
                    {},
                ],
            }
        )
        assert outcome.issue_text() == "Patient not found | Access denied | informational"


# ------------------------------------------------------------------
# OAuth callback
# ------------------------------------------------------------------


class TestCallbackResult:
    def test_parses_code_and_state(self):
        callback = CallbackResult.from_url("myapp://oauth-callback?code=c1&state=s1")
        assert callback.code == "c1"
        assert callback.state == "s1"

    def test_decodes_percent_escapes(self):
        callback = CallbackResult.from_url("myapp://oauth-callback?code=a%2Bb&state=x%20y")
        assert callback.code == "a+b"
        assert callback.state == "x y"

    def test_plus_kept_literally(self):
        callback = CallbackResult.from_url("myapp://oauth-callback?code=c+1&state=ab+cd")
        assert callback.code == "c+1"
        assert callback.state == "ab+cd"

    def test_reserved_characters_decoded(self):
        callback = CallbackResult.from_url("myapp://oauth-callback?code=c1&state=a%26b%3Dc%2F%2B")
        assert callback.state == "a&b=c/+"

    def test_value_may_contain_equals(self):
        callback = CallbackResult.from_url("myapp://oauth-callback?code=c1&state=abc==")
        assert callback.state == "abc=="

    def test_bare_keys_ignored(self):
        callback = CallbackResult.from_url("myapp://oauth-callback?flag&&code=c1&state=s1#frag")
        assert callback.code == "c1"
        assert callback.state == "s1"

    def test_first_value_wins(self):
        callback = CallbackResult.from_url("myapp://oauth-callback?code=c1&state=s1&state=s2")
        assert callback.state == "s1"

    def test_missing_code(self):
        with pytest.raises(MissingCodeError):
            CallbackResult.from_url("myapp://oauth-callback?state=s1")

    def test_empty_code(self):
        with pytest.raises(MissingCodeError):
            CallbackResult.from_url("myapp://oauth-callback?code=&state=s1")

    def test_missing_state(self):
        with pytest.raises(MissingStateError):
            CallbackResult.from_url("myapp://oauth-callback?code=c1")

    def test_error_redirect_has_no_code(self):
        with pytest.raises(MissingCodeError):
            CallbackResult.from_url("myapp://oauth-callback?error=access_denied&state=s1")
