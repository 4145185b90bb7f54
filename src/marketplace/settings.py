"""Runtime settings for the marketplace service."""

import os
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path

# Local data directory within the project checkout.
# Can be overridden via MARKETPLACE_DATA_DIR environment variable.
_default_data_dir = Path(__file__).parent.parent.parent / "data"

# Only for tests and local tooling; `marketplace serve` refuses to start with it.
DEFAULT_TOKEN_SECRET = "dev-secret-change-me"


def _split_origins(value: str) -> tuple[str, ...]:
    return tuple(o.strip() for o in value.split(",") if o.strip())


@dataclass(frozen=True)
class PricingPolicy:
    """Tax and shipping constants used at checkout."""

    tax_rate: Decimal = Decimal("0.15")
    free_shipping_threshold: Decimal = Decimal("200")
    flat_shipping_fee: Decimal = Decimal("25")


@dataclass(frozen=True)
class Settings:
    """Explicit configuration passed to stores, the workflow and the API."""

    data_dir: Path = _default_data_dir
    token_secret: str = DEFAULT_TOKEN_SECRET
    token_ttl: int = 86400  # seconds
    lock_timeout: float = 5.0  # seconds
    log_level: str = "INFO"
    cors_origins: tuple[str, ...] = ("*",)
    pricing: PricingPolicy = field(default_factory=PricingPolicy)

    @property
    def has_default_token_secret(self) -> bool:
        """True when no signing secret was configured."""
        return self.token_secret == DEFAULT_TOKEN_SECRET

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "Settings":
        """
        Build settings from MARKETPLACE_* environment variables.

        Args:
            environ: Mapping to read instead of os.environ (for testing).
        """
        env = os.environ if environ is None else environ
        pricing = PricingPolicy(
            tax_rate=Decimal(env.get("MARKETPLACE_TAX_RATE", "0.15")),
            free_shipping_threshold=Decimal(
                env.get("MARKETPLACE_FREE_SHIPPING_THRESHOLD", "200")
            ),
            flat_shipping_fee=Decimal(env.get("MARKETPLACE_FLAT_SHIPPING_FEE", "25")),
        )
        return cls(
            data_dir=Path(env.get("MARKETPLACE_DATA_DIR", _default_data_dir)),
            token_secret=env.get("MARKETPLACE_TOKEN_SECRET") or DEFAULT_TOKEN_SECRET,
            token_ttl=int(env.get("MARKETPLACE_TOKEN_TTL", "86400")),
            lock_timeout=float(env.get("MARKETPLACE_LOCK_TIMEOUT", "5")),
            log_level=env.get("MARKETPLACE_LOG_LEVEL", "INFO").upper(),
            cors_origins=_split_origins(env.get("MARKETPLACE_CORS_ORIGINS", "*")) or ("*",),
            pricing=pricing,
        )
