from __future__ import annotations

from dataclasses import dataclass

from pydantic_settings import BaseSettings, SettingsConfigDict

from paygate.errors import ConfigurationError


class Settings(BaseSettings):
    """Application configuration read from environment variables."""

    # General
    api_bearer_token: str = "testtoken"
    app_url: str = "http://localhost:8000"

    # Gateway credentials
    hdfc_api_key: str = ""
    hdfc_merchant_id: str = ""
    hdfc_response_key: str = ""
    hdfc_payment_page_client_id: str = ""
    hdfc_environment: str = "sandbox"
    hdfc_sandbox_url: str = "https://smartgatewayuat.hdfcbank.com"
    hdfc_production_url: str = "https://smartgateway.hdfcbank.com"
    gateway_timeout_seconds: float = 7.0

    # Browser-facing URLs; empty values derive from app_url
    payment_return_url: str = ""
    payment_success_url: str = ""
    payment_failure_url: str = ""
    payment_pending_url: str = ""
    payment_error_url: str = ""

    # Database (PostgreSQL)
    db_host: str = ""
    db_port: int = 5432
    db_user: str = ""
    db_password: str = ""
    db_name: str = ""
    db_schema: str = "payments"

    @property
    def db_enabled(self) -> bool:
        return bool(self.db_host and self.db_user and self.db_name)

    @property
    def db_dsn(self) -> str:
        if not self.db_enabled:
            return ""
        return f"postgresql://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


@dataclass(frozen=True)
class RedirectUrls:
    """Front-end pages the browser is sent to after the gateway callback."""

    success: str
    failure: str
    pending: str
    error: str


@dataclass(frozen=True)
class GatewayConfig:
    """Immutable gateway configuration carried by every client.

    Built explicitly (usually through :meth:`from_settings`) so several
    independently configured clients, e.g. sandbox and production, can live
    in one process.
    """

    api_key: str
    merchant_id: str
    response_key: str
    base_url: str
    return_url: str
    redirects: RedirectUrls
    payment_page_client_id: str = ""
    environment: str = "sandbox"
    timeout: float = 7.0

    def __post_init__(self) -> None:
        missing = [
            name
            for name, value in (
                ("api_key", self.api_key),
                ("merchant_id", self.merchant_id),
                ("response_key", self.response_key),
                ("base_url", self.base_url),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(f"Missing gateway configuration: {', '.join(missing)}")
        if self.timeout <= 0:
            raise ConfigurationError("Gateway timeout must be a positive number of seconds")

    @property
    def client_id(self) -> str:
        return self.payment_page_client_id or self.merchant_id

    @classmethod
    def from_settings(cls, settings: Settings) -> "GatewayConfig":
        environment = (settings.hdfc_environment or "sandbox").lower()
        if environment not in {"sandbox", "production"}:
            raise ConfigurationError(f"Unknown gateway environment {settings.hdfc_environment!r}")
        base_url = settings.hdfc_production_url if environment == "production" else settings.hdfc_sandbox_url
        app_url = settings.app_url.rstrip("/")
        redirects = RedirectUrls(
            success=settings.payment_success_url or f"{app_url}/payment/success",
            failure=settings.payment_failure_url or f"{app_url}/payment/failure",
            pending=settings.payment_pending_url or f"{app_url}/payment/pending",
            error=settings.payment_error_url or f"{app_url}/payment/error",
        )
        return cls(
            api_key=settings.hdfc_api_key,
            merchant_id=settings.hdfc_merchant_id,
            response_key=settings.hdfc_response_key,
            base_url=base_url.rstrip("/"),
            return_url=settings.payment_return_url or f"{app_url}/api/payment/response",
            redirects=redirects,
            payment_page_client_id=settings.hdfc_payment_page_client_id,
            environment=environment,
            timeout=settings.gateway_timeout_seconds,
        )
