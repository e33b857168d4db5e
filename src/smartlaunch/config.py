"""Application settings loaded from environment variables."""

from pathlib import Path

from pydantic import BaseModel, SecretStr
from pydantic_settings import BaseSettings


class QuickPick(BaseModel):
    """A preconfigured organization shortcut."""

    name: str
    iss: str


DEFAULT_QUICK_PICKS = [
    QuickPick(name="Sandbox", iss="https://fhir.epic.com/interconnect-fhir-oauth/api/FHIR/R4"),
    QuickPick(name="Duke", iss="https://health-apis.duke.edu/FHIR/api/FHIR/R4"),
    QuickPick(name="UCLA", iss="https://arrprox.mednet.ucla.edu/FHIRPRD/api/FHIR/R4"),
]


class Settings(BaseSettings):
    """Central configuration — values come from .env or environment variables."""

    # Backend broker
    backend_base_url: str = "https://fhirbackend-ptloh.ondigitalocean.app"
    http_timeout: float = 30.0

    # OAuth redirect
    redirect_uri: str = "myapp://oauth-callback"
    callback_scheme: str = "myapp"
    smart_scope: str | None = None
    smart_aud: str | None = None
    smart_vendor: str | None = None

    # Epic public sandbox
    sandbox_iss: str = "https://fhir.epic.com/interconnect-fhir-oauth/api/FHIR/R4"
    sandbox_username: str = "fhircamila"
    sandbox_password: SecretStr = SecretStr("epicepic1")
    sandbox_poll_interval: float = 1.5
    sandbox_max_poll_attempts: int = 60
    sandbox_first_load_delay: float = 0.5
    sandbox_capture_dir: Path | None = None

    # Pending PKCE credential file (relative to project root)
    credential_file: Path = Path("data/credentials.json")

    log_level: str = "INFO"

    quick_picks: list[QuickPick] = DEFAULT_QUICK_PICKS

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
