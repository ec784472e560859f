"""Application configuration management."""

from typing import Any

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.constants import Environment, PlanType

# Meta (Facebook) published egress ranges used for WhatsApp Cloud API webhooks
META_WEBHOOK_NETWORKS = [
    "31.13.24.0/21",
    "31.13.64.0/18",
    "45.64.40.0/22",
    "66.220.144.0/20",
    "69.63.176.0/20",
    "69.171.224.0/19",
    "74.119.76.0/22",
    "102.132.96.0/20",
    "103.4.96.0/22",
    "129.134.0.0/17",
    "157.240.0.0/17",
    "173.252.64.0/18",
    "179.60.192.0/22",
    "185.60.216.0/22",
    "185.89.216.0/22",
    "204.15.20.0/22",
    "2a03:2880::/32",
]


class Settings(BaseSettings):
    """Application settings."""

    # Application
    app_name: str = Field(default="KineAI API", description="Application name")
    debug: bool = Field(default=False, description="Debug mode")
    version: str = Field(default="0.1.0", description="Application version")
    environment: Environment = Field(
        default=Environment.PRODUCTION,
        description="Deployment environment",
        alias="ENVIRONMENT",
    )
    frontend_url: str = Field(
        default="http://localhost:3000",
        description="Public URL of the web frontend",
        alias="FRONTEND_URL",
    )

    # Server
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", alias="PORT")

    # Firebase authentication
    firebase_project_id: str = Field(
        ..., description="Firebase project ID", alias="FIREBASE_PROJECT_ID"
    )
    firebase_issuer: str = Field(
        default="", description="Token issuer (auto-generated from project ID)"
    )
    firebase_jwks_url: str = Field(
        default="https://www.googleapis.com/service_accounts/v1/jwk/securetoken@system.gserviceaccount.com",
        description="Google JWKS endpoint for Firebase ID tokens",
    )

    # Rate Limiting
    rate_limit_requests: int = Field(
        default=60, description="General rate limit: requests per window"
    )
    rate_limit_window: int = Field(
        default=60, description="General rate limit: time window in seconds"
    )
    trust_proxy_headers: bool = Field(
        default=False,
        description="Resolve the client address from X-Forwarded-For set by trusted proxies",
    )
    trusted_proxies: list[str] = Field(
        default=["127.0.0.1/32", "::1/128"],
        description="Networks of the reverse proxies allowed to set X-Forwarded-For",
    )

    # OpenAI API
    openai_api_key: str = Field(
        ..., description="OpenAI API key", alias="OPENAI_API_KEY"
    )
    openai_chat_model: str = Field(
        default="gpt-4o-mini", description="Model used by the kiné assistant"
    )
    chat_history_limit: int = Field(
        default=20, description="Previous chat messages sent as context"
    )

    # Stripe Configuration
    stripe_api_key: str = Field(
        ..., description="Stripe secret API key", alias="STRIPE_API_KEY"
    )
    stripe_webhook_secret: str = Field(
        ..., description="Stripe webhook signing secret", alias="STRIPE_WEBHOOK_SECRET"
    )
    stripe_webhook_tolerance: int = Field(
        default=300,
        description="Maximum age in seconds of a signed webhook timestamp",
    )
    stripe_price_id_declic: str = Field(
        ..., description="Stripe price ID for the Déclic plan", alias="STRIPE_PRICE_ID_DECLIC"
    )
    stripe_price_id_pratique: str = Field(
        ...,
        description="Stripe price ID for the Pratique plan",
        alias="STRIPE_PRICE_ID_PRATIQUE",
    )
    stripe_price_id_pionnier: str = Field(
        ...,
        description="Stripe price ID for the Pionnier plan",
        alias="STRIPE_PRICE_ID_PIONNIER",
    )
    stripe_price_id_expert: str = Field(
        ..., description="Stripe price ID for the Expert plan", alias="STRIPE_PRICE_ID_EXPERT"
    )
    stripe_currency: str = Field(default="eur", description="Billing currency")
    stripe_success_url: str = Field(
        default="http://localhost:3000/dashboard/kine/upgrade/success",
        description="Checkout success redirect URL",
        alias="STRIPE_SUCCESS_URL",
    )
    stripe_cancel_url: str = Field(
        default="http://localhost:3000/dashboard/kine/upgrade",
        description="Checkout cancel redirect URL",
        alias="STRIPE_CANCEL_URL",
    )

    # WhatsApp Cloud API
    whatsapp_access_token: str = Field(
        default="", description="WhatsApp Cloud API token", alias="WHATSAPP_ACCESS_TOKEN"
    )
    whatsapp_phone_id: str = Field(
        default="", description="WhatsApp sender phone number ID", alias="WHATSAPP_PHONE_ID"
    )
    whatsapp_api_version: str = Field(default="v18.0", description="Graph API version")
    whatsapp_webhook_token: str = Field(
        ...,
        description="Verify token echoed during the webhook handshake",
        alias="WHATSAPP_WEBHOOK_TOKEN",
    )
    whatsapp_allowed_networks: list[str] = Field(
        default=META_WEBHOOK_NETWORKS,
        description="Networks allowed to call the WhatsApp webhook",
    )
    whatsapp_link_template: str = Field(
        default="programme_link",
        description="Template carrying the patient chat deep link",
    )
    whatsapp_fallback_template: str = Field(
        default="programme_ready", description="Generic fallback template"
    )
    whatsapp_template_language: str = Field(default="fr", description="Template language")
    phone_default_country_code: str = Field(
        default="33", description="Country code replacing a leading 0"
    )

    # Database Configuration
    database_url: str = Field(
        ..., description="Database connection URL", alias="DATABASE_URL"
    )
    database_pool_size: int = Field(
        default=20, description="Database connection pool size"
    )
    database_max_overflow: int = Field(
        default=30, description="Database connection pool max overflow"
    )
    use_null_pool: bool = Field(
        default=True, description="Use NullPool for serverless databases"
    )

    # Hosts and CORS
    allowed_hosts: list[str] = Field(
        default=["localhost", "127.0.0.1", "*.railway.app", "*.up.railway.app"],
        description="Hosts accepted by TrustedHostMiddleware",
    )
    allowed_origins: list[str] = Field(
        default=[
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ],
        description="CORS allowed origins",
    )
    allowed_methods: list[str] = Field(
        default=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        description="CORS allowed methods",
    )
    allowed_headers: list[str] = Field(
        default=["*"], description="CORS allowed headers"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    def __init__(self, **kwargs: Any) -> None:
        """Initialize settings and derive the Firebase issuer."""
        super().__init__(**kwargs)

        if not self.firebase_issuer and self.firebase_project_id:
            self.firebase_issuer = (
                f"https://securetoken.google.com/{self.firebase_project_id}"
            )

    @property
    def is_development(self) -> bool:
        """True when running with the development environment flag."""
        return self.environment == Environment.DEVELOPMENT

    @property
    def whatsapp_messages_url(self) -> str:
        """Cloud API endpoint used to send messages."""
        return (
            f"https://graph.facebook.com/{self.whatsapp_api_version}/"
            f"{self.whatsapp_phone_id}/messages"
        )

    def proxy_networks(self) -> list[str]:
        """Proxies whose X-Forwarded-For is honoured; empty when proxy headers are off."""
        return self.trusted_proxies if self.trust_proxy_headers else []

    def stripe_price_ids(self) -> dict[PlanType, str]:
        """Stripe price ID configured for each plan."""
        return {
            PlanType.DECLIC: self.stripe_price_id_declic,
            PlanType.PRATIQUE: self.stripe_price_id_pratique,
            PlanType.PIONNIER: self.stripe_price_id_pionnier,
            PlanType.EXPERT: self.stripe_price_id_expert,
        }


# Global settings instance
settings = Settings()
