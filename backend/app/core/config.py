from functools import lru_cache
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from pydantic import AnyUrl, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _ensure_sqlalchemy_postgres_scheme(value: str) -> str:
    if not value.lower().startswith("postgres"):
        return value

    parsed = urlparse(value)
    scheme = parsed.scheme.lower()

    if scheme == "postgres":
        scheme = "postgresql"

    if scheme == "postgresql":
        scheme = "postgresql+psycopg"

    if scheme not in {"postgresql+psycopg", "postgresql+asyncpg"}:
        scheme = "postgresql+psycopg"

    query_params = dict(parse_qsl(parsed.query, keep_blank_values=True))
    query_params.setdefault("sslmode", "require")
    new_query = urlencode(query_params, doseq=True)

    return urlunparse(parsed._replace(scheme=scheme, query=new_query))


def _split_csv(value: Any) -> Any:
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return value


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    debug: bool = Field(False, description="Enable FastAPI debug mode")
    environment: str = Field(
        default="development",
        description="Runtime environment (development|staging|production)",
    )
    database_url: AnyUrl | str = Field(
        default="sqlite:///../data/settlement.db",
        description="SQLAlchemy compatible database URL",
    )
    production_database_url: AnyUrl | str | None = Field(
        default=None,
        description="Postgres connection string required when ENVIRONMENT=production",
    )

    admin_address: str = Field(
        default="0x00000000000000000000000000000000000000a1",
        description="Principal allowed to mint, create and resolve markets",
    )
    token_address: str = Field(
        default="0x000000000000000000000000000000000000d001",
        description="Principal of the transparent token ledger",
    )
    confidential_ledger_address: str = Field(
        default="0x000000000000000000000000000000000000d002",
        description="Principal of the confidential balance ledger",
    )
    market_ledger_address: str = Field(
        default="0x000000000000000000000000000000000000d003",
        description="Principal of the market ledger; holds the staked pool",
    )

    token_decimals: int = Field(
        default=18, ge=0, description="Decimals of the transparent token"
    )
    confidential_decimals: int = Field(
        default=6, ge=0, description="Decimals of confidential balances"
    )
    enforce_voting_window: bool = Field(
        default=False,
        description="Reject bets placed at or after a market's votingEndsAt",
    )

    kms_signers: list[str] | str = Field(
        default_factory=list,
        description="Addresses whose signatures make up a valid decryption proof",
    )
    kms_threshold: int = Field(
        default=1, ge=1, description="Distinct KMS signatures required per proof"
    )
    local_kms_private_keys: list[str] | str = Field(
        default_factory=list,
        description="Hex keys of the in-process KMS used when no relayer is configured",
    )

    oracle_base_url: AnyUrl | str | None = Field(
        default=None,
        description="Relayer base URL for public decryption; local KMS is used when unset",
    )
    oracle_public_decrypt_path: str = Field(
        default="/v1/public-decrypt",
        description="Relative path of the public decryption endpoint",
    )
    oracle_timeout_seconds: float = Field(
        default=30.0, gt=0, description="Timeout for a single decryption round-trip"
    )
    settlement_max_attempts: int = Field(
        default=20, ge=1, description="Decryption attempts before a reveal gives up"
    )
    settlement_retry_backoff_seconds: list[float] | tuple[float, ...] | str = Field(
        default_factory=lambda: [5.0, 15.0, 30.0],
        description="Comma-separated list or array of delays between reveal attempts",
    )

    @field_validator("kms_signers", "local_kms_private_keys", mode="before")
    @classmethod
    def _parse_key_list(cls, value: Any) -> list[str]:
        if value in (None, "", []):
            return []
        value = _split_csv(value)
        if isinstance(value, (list, tuple, set)):
            return [str(item).strip() for item in value if str(item).strip()]
        raise ValueError("KMS key lists must be provided as a list or comma-separated string")

    @field_validator("settlement_retry_backoff_seconds", mode="before")
    @classmethod
    def _parse_retry_backoff(cls, value: Any) -> list[float]:
        if value in (None, "", []):
            return [5.0, 15.0, 30.0]
        value = _split_csv(value)
        if isinstance(value, (list, tuple)):
            backoff: list[float] = []
            for item in value:
                try:
                    delay = float(item)
                except (TypeError, ValueError) as exc:
                    raise ValueError(
                        "SETTLEMENT_RETRY_BACKOFF_SECONDS entries must be numeric"
                    ) from exc
                if delay < 0:
                    raise ValueError(
                        "SETTLEMENT_RETRY_BACKOFF_SECONDS entries must not be negative"
                    )
                backoff.append(delay)
            if not backoff:
                raise ValueError(
                    "SETTLEMENT_RETRY_BACKOFF_SECONDS must contain at least one value"
                )
            return backoff
        raise ValueError(
            "SETTLEMENT_RETRY_BACKOFF_SECONDS must be provided as a comma-separated string or list of numbers"
        )

    @model_validator(mode="after")
    def _check_denominations(self) -> "Settings":
        if self.confidential_decimals > self.token_decimals:
            raise ValueError("confidential_decimals cannot exceed token_decimals")
        if self.kms_signers and self.kms_threshold > len(self.kms_signers):
            raise ValueError("kms_threshold cannot exceed the number of kms_signers")
        return self

    @property
    def wrap_rate(self) -> int:
        """Transparent units per confidential unit."""

        return 10 ** (self.token_decimals - self.confidential_decimals)

    @property
    def resolved_database_url(self) -> str:
        environment = self.environment.lower()
        if environment == "production":
            if not self.production_database_url:
                raise ValueError(
                    "PRODUCTION_DATABASE_URL must be set when ENVIRONMENT=production"
                )
            return _ensure_sqlalchemy_postgres_scheme(str(self.production_database_url))
        return _ensure_sqlalchemy_postgres_scheme(str(self.database_url))

    @property
    def settlement_backoff_schedule(self) -> tuple[float, ...]:
        sequence = tuple(float(value) for value in self.settlement_retry_backoff_seconds)
        if not sequence:
            return (0.0,)
        return sequence


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
