"""
Configuration management for the course checkout / enrollment service.

Loads settings from .env via pydantic-settings.

Security notes:
    - gateway_key_secret signs every payment proof; the service refuses to
      start without it (require_payment_secret()).
    - validate_production_settings() enforces strict CORS, real gateway calls
      and configured secrets in production.
"""
import logging

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List

from exceptions import SignatureConfigError

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # ── Database ────────────────────────────────────────────────────
    database_url: str = "sqlite:///./data/enrollments.db"

    # ── Payment Gateway ─────────────────────────────────────────────
    gateway_base_url: str = "https://api.razorpay.com/v1"
    gateway_key_id: str = ""
    gateway_key_secret: str = ""       # HMAC key for orderId|paymentId proofs
    gateway_webhook_secret: str = ""   # HMAC key for webhook bodies
    gateway_timeout_seconds: float = 10.0
    gateway_retry_backoff_seconds: float = 0.5

    # ── Orders ──────────────────────────────────────────────────────
    order_ttl_minutes: int = 30

    # ── Sweeper (expiry + Verified re-drive) ────────────────────────
    sweeper_enabled: bool = True
    sweep_interval_seconds: int = 60
    reconcile_grace_seconds: int = 120
    max_resume_attempts: int = 5

    # ── Application ─────────────────────────────────────────────────
    environment: str = "development"
    simulation_mode: bool = True  # local gateway order ids, no network calls

    # ── Auth (JWT) ──────────────────────────────────────────────────
    jwt_secret: str = ""
    jwt_issuer: str = "enrollment-api"
    jwt_access_ttl_minutes: int = 15

    # ── CORS ────────────────────────────────────────────────────────
    cors_origins: str = "http://localhost:3000,http://127.0.0.1:3000,http://localhost:5173,http://127.0.0.1:5173"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    def require_payment_secret(self) -> str:
        """
        Return the gateway key secret or fail startup.

        A missing secret is a deployment error, never a per-request one:
        without it no payment proof can be checked.
        """
        if not self.gateway_key_secret:
            raise SignatureConfigError(
                "GATEWAY_KEY_SECRET not set in .env - payment proofs cannot be verified"
            )
        return self.gateway_key_secret

    def validate_production_settings(self):
        """
        Validate settings for production safety.

        Called during app startup.
        """
        self.require_payment_secret()

        if self.environment == "production":
            if "*" in self.cors_origins:
                raise ValueError(
                    "CORS_ORIGINS must not contain '*' in production. "
                    "Set explicit allowed origins."
                )
            if self.simulation_mode:
                raise ValueError(
                    "SIMULATION_MODE must be false in production. "
                    "Simulated gateway orders are never paid for."
                )
            if not self.jwt_secret:
                raise ValueError(
                    "JWT_SECRET must be set in production. "
                    "It is used to verify access tokens."
                )
            if not self.gateway_webhook_secret:
                raise ValueError(
                    "GATEWAY_WEBHOOK_SECRET must be set in production. "
                    "Webhook deliveries are rejected without it."
                )
            logger.info("✅ Production settings validated")
        else:
            warnings = []
            if self.simulation_mode:
                warnings.append("SIMULATION_MODE=true (gateway calls are simulated)")
            if not self.gateway_webhook_secret:
                warnings.append("GATEWAY_WEBHOOK_SECRET empty (webhooks will be rejected)")
            if "*" in self.cors_origins:
                warnings.append("CORS_ORIGINS contains '*' (open access)")
            for w in warnings:
                logger.warning(f"⚠️  {w}")


# Global settings instance
settings = Settings()
