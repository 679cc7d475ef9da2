"""Configuration settings for the storefront service."""
import os
from dataclasses import dataclass, replace

SERVICE_NAME = "storefront-service"
API_VERSION = "1.0.0"

PAYMENT_FAILURE_POLICIES = ("hold", "release")


def _env(key: str, default: str) -> str:
    value = os.getenv(key)
    if value:
        return value
    return default


def _env_bool(key: str, default: bool) -> bool:
    return _env(key, "true" if default else "false").lower() in ("1", "true", "yes")


def _database_url() -> str:
    url = os.getenv("DATABASE_URL")
    if url:
        return url
    user = _env("DB_USER", "postgres")
    password = _env("DB_PASSWORD", "")
    host = _env("DB_HOST", "localhost")
    port = _env("DB_PORT", "5432")
    name = _env("DB_NAME", "nexora")
    credentials = f"{user}:{password}" if password else user
    return f"postgresql://{credentials}@{host}:{port}/{name}"


@dataclass(frozen=True)
class Settings:
    """
    Service configuration.

    Built once at startup and handed to every component that needs it;
    nothing in the service reads the environment after that.
    """

    port: int = 8080
    env: str = "development"
    log_level: str = "INFO"

    # Persistence
    database_url: str = "postgresql://postgres@localhost:5432/nexora"
    redis_url: str = "redis://localhost:6379"
    seed_demo_data: bool = False

    # Authentication
    jwt_secret: str = "secret"
    token_ttl_hours: int = 24 * 7
    bcrypt_rounds: int = 12
    google_client_id: str = ""
    google_client_secret: str = ""
    google_redirect_url: str = "http://localhost:8080/api/auth/google/callback"

    # Payment processor (Midtrans Snap)
    midtrans_server_key: str = ""
    midtrans_client_key: str = ""
    midtrans_is_production: bool = False
    payment_order_prefix: str = "NEXORA"
    payment_failure_policy: str = "hold"
    http_timeout_seconds: float = 30.0

    # Storefront
    frontend_url: str = "http://localhost:3000"
    free_shipping_threshold: float = 500000.0
    flat_shipping_fee: float = 15000.0

    # Observability
    otel_enabled: bool = False
    otel_exporter_otlp_endpoint: str = "http://localhost:4317"
    pyroscope_enabled: bool = False
    pyroscope_server: str = "http://localhost:4040"

    # Rate limiting
    rate_limit_enabled: bool = True
    rate_limit_per_minute_ip: int = 1000
    rate_limit_per_minute_user: int = 300

    @classmethod
    def from_env(cls) -> "Settings":
        """Read settings from environment variables."""
        settings = cls(
            port=int(_env("PORT", "8080")),
            env=_env("ENV", "development"),
            log_level=_env("LOG_LEVEL", "INFO").upper(),
            database_url=_database_url(),
            redis_url=_env("REDIS_URL", "redis://localhost:6379"),
            seed_demo_data=_env_bool("SEED_DEMO_DATA", False),
            jwt_secret=_env("JWT_SECRET", "secret"),
            token_ttl_hours=int(_env("TOKEN_TTL_HOURS", str(24 * 7))),
            bcrypt_rounds=int(_env("BCRYPT_ROUNDS", "12")),
            google_client_id=_env("GOOGLE_CLIENT_ID", ""),
            google_client_secret=_env("GOOGLE_CLIENT_SECRET", ""),
            google_redirect_url=_env(
                "GOOGLE_REDIRECT_URL", "http://localhost:8080/api/auth/google/callback"
            ),
            midtrans_server_key=_env("MIDTRANS_SERVER_KEY", ""),
            midtrans_client_key=_env("MIDTRANS_CLIENT_KEY", ""),
            midtrans_is_production=_env_bool("MIDTRANS_IS_PRODUCTION", False),
            payment_order_prefix=_env("PAYMENT_ORDER_PREFIX", "NEXORA"),
            payment_failure_policy=_env("PAYMENT_FAILURE_POLICY", "hold").lower(),
            http_timeout_seconds=float(_env("HTTP_TIMEOUT_SECONDS", "30")),
            frontend_url=_env("FRONTEND_URL", "http://localhost:3000").rstrip("/"),
            free_shipping_threshold=float(_env("FREE_SHIPPING_THRESHOLD", "500000")),
            flat_shipping_fee=float(_env("FLAT_SHIPPING_FEE", "15000")),
            otel_enabled=_env_bool("OTEL_ENABLED", False),
            otel_exporter_otlp_endpoint=_env(
                "OTEL_EXPORTER_OTLP_ENDPOINT", "http://localhost:4317"
            ),
            pyroscope_enabled=_env_bool("PYROSCOPE_ENABLED", False),
            pyroscope_server=_env("PYROSCOPE_SERVER_ADDRESS", "http://localhost:4040"),
            rate_limit_enabled=_env_bool("RATE_LIMIT_ENABLED", True),
            rate_limit_per_minute_ip=int(_env("RATE_LIMIT_PER_MINUTE_IP", "1000")),
            rate_limit_per_minute_user=int(_env("RATE_LIMIT_PER_MINUTE_USER", "300")),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        """
        Reject settings the service cannot run with.

        Raises:
            ValueError: If a setting is out of range
        """
        if self.payment_failure_policy not in PAYMENT_FAILURE_POLICIES:
            raise ValueError(
                f"PAYMENT_FAILURE_POLICY must be one of {PAYMENT_FAILURE_POLICIES}, "
                f"got {self.payment_failure_policy!r}"
            )
        if self.flat_shipping_fee < 0 or self.free_shipping_threshold < 0:
            raise ValueError("Shipping threshold and fee must be non-negative")
        if not 4 <= self.bcrypt_rounds <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31")

    @property
    def is_production(self) -> bool:
        return self.env == "production"

    @property
    def snap_url(self) -> str:
        if self.midtrans_is_production:
            return "https://app.midtrans.com/snap/v1/transactions"
        return "https://app.sandbox.midtrans.com/snap/v1/transactions"

    def with_overrides(self, **changes) -> "Settings":
        """Return a copy with some fields replaced."""
        settings = replace(self, **changes)
        settings.validate()
        return settings
