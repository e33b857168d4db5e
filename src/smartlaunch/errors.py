"""Classified failures raised by the launch flow."""

from __future__ import annotations


class FlowError(Exception):
    """Base class for every classified launch failure.

    ``kind`` is a stable machine-readable tag; ``str(error)`` is the message
    shown to the user.
    """

    kind = "flow_error"
    message = "Launch failed."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)


class InvalidUrlError(FlowError):
    kind = "invalid_url"
    message = "Invalid URL."


class AuthSessionFailedError(FlowError):
    kind = "auth_session_failed"
    message = "Failed to start web authentication session."


class MissingCallbackError(FlowError):
    kind = "missing_callback"
    message = "Missing OAuth callback."


class MissingCodeError(FlowError):
    kind = "missing_code"
    message = "Missing authorization code."


class MissingStateError(FlowError):
    kind = "missing_state"
    message = "Missing OAuth state."


class StateMismatchError(FlowError):
    kind = "state_mismatch"
    message = "State mismatch. Please try again."


class MissingVerifierError(FlowError):
    kind = "missing_verifier"
    message = "Missing code verifier."


class MissingPatientError(FlowError):
    kind = "missing_patient"
    message = "Token response did not include a patient."


class UserCancelledError(FlowError):
    kind = "user_cancelled"
    message = "Sign-in was cancelled."


class InvalidHtmlCaptureError(FlowError):
    kind = "invalid_html_capture"
    message = "Unable to capture HTML content."


class FhirOperationOutcomeError(FlowError):
    """The FHIR server answered with an OperationOutcome instead of data."""

    kind = "fhir_operation_outcome"

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(f"FHIR error: {detail}")


class UnexpectedFhirResponseError(FlowError):
    """The FHIR server answered with something that is neither data nor an outcome."""

    kind = "unexpected_fhir_response"

    def __init__(self, snippet: str) -> None:
        self.snippet = snippet
        super().__init__(f"Unexpected FHIR response: {snippet}")


class HttpError(FlowError):
    """Raised when a backend or FHIR call returns a non-2xx response."""

    kind = "http_error"

    def __init__(self, status: int, body: str | None = None) -> None:
        self.status = status
        self.body = body
        if body:
            super().__init__(f"Server error ({status}): {body}")
        else:
            super().__init__(f"Server error ({status}).")


def describe_error(exc: BaseException) -> str:
    """User-facing message for *exc*; never empty."""
    return str(exc) or type(exc).__name__
