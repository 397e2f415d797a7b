from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # storage (optional session persistence)
    database_url: str = "sqlite:///./ensagent.db"
    session_store: str = "memory"  # memory | sql | none
    session_ttl_seconds: int = 86400

    # ledger
    rpc_urls: str = ""
    chain_id: int = 11155111  # sepolia
    ledger_timeout_s: float = 60.0
    ledger_poll_interval_s: float = 2.0
    ledger_retry_backoff_s: float = 0.5

    # ENS (sepolia deployments)
    ens_registry_address: str = "0x00000000000C2E074eC69A0dFb2997BA6C7d2e1e"
    ens_registrar_controller_address: str = "0xfb3cE5D01e0f33f41DbB39035dB9745962F1f968"
    ens_public_resolver_address: str = "0xE99638b40E4Fff0129D56f03b55b6bbC4BBE49b5"
    ens_reverse_registrar_address: str = "0xA0a1AbcDAe1a2a4A2EF8e9113Ff0e02DD81DC0C6"
    ens_registration_price_eth: str = "0.01"
    ens_default_duration_days: int = 365
    ens_min_duration_days: int = 28
    ens_max_name_length: int = 50

    # payments / smart account
    usdc_address: str = "0x036CbD53842c5426634e7929541eC2318f3dCF7e"
    account_factory_address: str = "0x9406Cc6185a346906296840746125a0E44976454"
    entry_point_address: str = "0x5FF137D4b0FDCD49DcA30c7CF57E578a026d2789"
    smart_account_salt: int = 0
    payment_min_amount: str = "0.001"
    payment_max_amount: str = "10"

    # chat pipeline
    chat_min_confidence: float = 0.6
    chat_history_limit: int = 50
    confirmation_ttl_seconds: int = 300

    # llm (optional)
    llm_enabled: bool = False
    llm_provider: str = "openai"
    llm_model: str = "gpt-4o-mini"  # safe default- override via env
    openai_api_key: str | None = None
    llm_temperature: float = 0.0
    llm_chat_temperature: float = 0.4
    llm_timeout_s: int = 30
    llm_chat_responses: bool = False

    # logging
    log_level: str = "INFO"
    log_json: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def DATABASE_URL(self) -> str:
        return self.database_url

    @property
    def RPC_URLS(self) -> str:
        return self.rpc_urls

    @property
    def LLM_ENABLED(self) -> bool:
        return self.llm_enabled

    @property
    def LLM_PROVIDER(self) -> str:
        return self.llm_provider

    @property
    def LLM_MODEL(self) -> str:
        return self.llm_model

    @property
    def OPENAI_API_KEY(self) -> str | None:
        return self.openai_api_key

    @property
    def LLM_TEMPERATURE(self) -> float:
        return self.llm_temperature

    @property
    def LLM_CHAT_TEMPERATURE(self) -> float:
        return self.llm_chat_temperature

    @property
    def LLM_TIMEOUT_S(self) -> int:
        return self.llm_timeout_s

    @property
    def LLM_CHAT_RESPONSES(self) -> bool:
        return self.llm_chat_responses

    def contract_addresses(self) -> dict[str, str]:
        """
        Logical contract identifiers used by actions -> deployed addresses.
        """
        return {
            "ens_registry": self.ens_registry_address,
            "eth_registrar_controller": self.ens_registrar_controller_address,
            "public_resolver": self.ens_public_resolver_address,
            "reverse_registrar": self.ens_reverse_registrar_address,
            "usdc": self.usdc_address,
            "account_factory": self.account_factory_address,
            "entry_point": self.entry_point_address,
        }


@lru_cache
def get_settings() -> Settings:
    """
    Cached settings loader (process-level).
    """
    return Settings()
