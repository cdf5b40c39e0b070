"""Application settings and configuration.

This module defines all configuration options for the VeriCred Gate service.
Settings are loaded from environment variables with sensible defaults.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    """

    # Application metadata
    app_name: str = Field(default="VeriCred Gate", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Database configuration
    database_url: str = Field(default="sqlite:///./vericred.db", alias="DATABASE_URL")
    test_database_url: str | None = Field(default=None, alias="TEST_DATABASE_URL")
    use_testing_database: bool = Field(default=False, alias="USE_TEST_DATABASE")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")
    db_auto_create: bool = Field(default=True, alias="DB_AUTO_CREATE")

    # Redis configuration for risk assessment caching
    redis_url: str | None = Field(default=None, alias="REDIS_URL")
    risk_cache_ttl_seconds: int = Field(default=86_400, alias="RISK_CACHE_TTL_SECONDS")

    # Signature authentication
    auth_max_age_seconds: int = Field(default=30 * 60, alias="AUTH_MAX_AGE_SECONDS")
    auth_max_clock_skew_seconds: int = Field(default=5 * 60, alias="AUTH_MAX_CLOCK_SKEW_SECONDS")

    # Rate limit policies (requests per window)
    rate_limit_window_seconds: int = Field(default=60, alias="RATE_LIMIT_WINDOW_SECONDS")
    rate_limit_ai_analysis: int = Field(default=10, alias="RATE_LIMIT_AI_ANALYSIS")
    rate_limit_issuance: int = Field(default=20, alias="RATE_LIMIT_ISSUANCE")
    rate_limit_verification: int = Field(default=100, alias="RATE_LIMIT_VERIFICATION")
    rate_limit_default: int = Field(default=50, alias="RATE_LIMIT_DEFAULT")

    # Delegation defaults
    delegation_default_max_calls: int = Field(default=100, alias="DELEGATION_DEFAULT_MAX_CALLS")
    delegation_default_ttl_days: int = Field(default=30, alias="DELEGATION_DEFAULT_TTL_DAYS")
    backend_delegation_address: str | None = Field(
        default=None,
        alias="BACKEND_DELEGATION_ADDRESS",
    )

    # Indexer (risk data source)
    indexer_url: str | None = Field(default=None, alias="ENVIO_API_URL")
    indexer_timeout_seconds: float = Field(default=5.0, alias="ENVIO_TIMEOUT_SECONDS")

    # Language-model risk analysis
    openai_api_key: str | None = Field(default=None, alias="OPENAI_API_KEY")
    openai_model: str = Field(default="gpt-4o-mini", alias="OPENAI_MODEL")
    openai_base_url: str = Field(default="https://api.openai.com/v1", alias="OPENAI_BASE_URL")
    openai_timeout_seconds: float = Field(default=15.0, alias="OPENAI_TIMEOUT_SECONDS")

    # Metadata publishing (Pinata)
    pinata_api_key: str | None = Field(default=None, alias="PINATA_API_KEY")
    pinata_secret_key: str | None = Field(default=None, alias="PINATA_SECRET_KEY")
    pinata_base_url: str = Field(default="https://api.pinata.cloud", alias="PINATA_BASE_URL")
    pinata_timeout_seconds: float = Field(default=30.0, alias="PINATA_TIMEOUT_SECONDS")
    ipfs_gateway_url: str = Field(
        default="https://gateway.pinata.cloud/ipfs/",
        alias="IPFS_GATEWAY_URL",
    )

    # Chain submission
    backend_private_key: str | None = Field(default=None, alias="BACKEND_PRIVATE_KEY")
    chain_rpc_url: str = Field(default="https://testnet-rpc.monad.xyz", alias="MONAD_TESTNET_RPC")
    chain_confirmation_timeout_seconds: float = Field(
        default=120.0,
        alias="CHAIN_CONFIRMATION_TIMEOUT_SECONDS",
    )
    credential_contract_address: str | None = Field(
        default=None,
        alias="VERICRED_SBT_ADDRESS",
    )
    delegation_manager_address: str | None = Field(
        default=None,
        alias="DELEGATION_MANAGER_ADDRESS",
    )
    mint_function_signature: str = Field(
        default="mintCredential(address,string,string,uint256,uint256)",
        alias="MINT_FUNCTION_SIGNATURE",
    )
    credential_minted_event_signature: str = Field(
        default="CredentialMinted(uint256,address,address,string,string)",
        alias="CREDENTIAL_MINTED_EVENT_SIGNATURE",
    )

    # CORS configuration for web frontend access
    cors_origins: list[str] = Field(default=["*"], alias="CORS_ORIGINS")
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")
    cors_allow_methods: list[str] = Field(
        default=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        alias="CORS_ALLOW_METHODS",
    )
    cors_allow_headers: list[str] = Field(
        default=[
            "Content-Type",
            "Authorization",
            "X-Address",
            "X-Signature",
            "X-Timestamp",
            "X-Message",
        ],
        alias="CORS_ALLOW_HEADERS",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @property
    def effective_database_url(self) -> str:
        """Return the database URL respecting testing overrides."""
        if self.use_testing_database and self.test_database_url:
            return self.test_database_url
        return self.database_url

    @property
    def rate_limit_policies(self) -> dict[str, int]:
        """Return request ceilings per endpoint class."""
        return {
            "ai_analysis": self.rate_limit_ai_analysis,
            "issuance": self.rate_limit_issuance,
            "verification": self.rate_limit_verification,
            "default": self.rate_limit_default,
        }


settings = Settings()
