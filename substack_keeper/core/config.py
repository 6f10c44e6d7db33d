"""
Configuration management using Pydantic Settings.
Loaded once from the environment (and .env) and frozen afterwards.
"""

from typing import Optional, NamedTuple
from pydantic import validator
from pydantic_settings import BaseSettings


DEFAULT_DEPLOYER = "ST1PQHQKV0RJXZFY1DGX8MNSNYVE3VGZJSRTPGZGM"


class ContractId(NamedTuple):
    """Deployed contract identifier split into address and name."""
    address: str
    name: str

    def __str__(self) -> str:
        return f"{self.address}.{self.name}"


def parse_contract_id(contract_id: str) -> ContractId:
    """Split an ``address.name`` contract identifier and checksum the address."""
    from .exceptions import AddressError, ConfigurationError
    from substack_keeper.services.stacks.c32 import c32_address_decode

    parts = contract_id.split(".")
    if len(parts) != 2 or not all(parts):
        raise ConfigurationError(
            f"Invalid contract identifier: {contract_id!r}",
            {"contract_id": contract_id}
        )

    try:
        c32_address_decode(parts[0])
    except AddressError as e:
        raise ConfigurationError(e.message, {"contract_id": contract_id, **e.details})

    return ContractId(address=parts[0], name=parts[1])


class Settings(BaseSettings):
    """Keeper settings with environment-based configuration."""

    # Application
    app_name: str = "SubStack Keeper"
    app_version: str = "0.1.0"

    # Stacks network
    stacks_network: str = "testnet"
    stacks_api_url: Optional[str] = None

    # Contracts
    vault_contract: str = f"{DEFAULT_DEPLOYER}.subscription-vault"
    plans_contract: str = f"{DEFAULT_DEPLOYER}.subscription-plans"
    engine_contract: str = f"{DEFAULT_DEPLOYER}.subscription-engine"

    # Keeper
    keeper_private_key: str = ""
    check_interval: int = 10  # minutes
    batch_size: int = 10
    min_profit: int = 1000  # micro-STX
    max_plans: int = 100
    tx_fee: int = 10000  # micro-STX

    # Transport
    request_timeout: int = 30  # seconds
    scan_concurrency: int = 1

    # Logging
    log_level: str = "INFO"
    log_format: str = "console"  # json or console
    log_file: Optional[str] = None

    @validator("stacks_network")
    def validate_network(cls, v: str) -> str:
        allowed = ["mainnet", "testnet", "devnet"]
        if v.lower() not in allowed:
            raise ValueError(f"Network must be one of: {allowed}")
        return v.lower()

    @validator("vault_contract", "plans_contract", "engine_contract")
    def validate_contract(cls, v: str) -> str:
        from .exceptions import ConfigurationError

        try:
            parse_contract_id(v)
        except ConfigurationError as e:
            raise ValueError(e.message)
        return v

    @validator("check_interval", "batch_size")
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Value must be at least 1")
        return v

    @validator("min_profit", "max_plans", "tx_fee")
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("Value must not be negative")
        return v

    @validator("scan_concurrency", "request_timeout")
    def validate_at_least_one(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Value must be at least 1")
        return v

    @validator("log_level")
    def validate_log_level(cls, v: str) -> str:
        v = v.upper()
        if v == "WARN":
            v = "WARNING"
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v not in allowed:
            raise ValueError(f"Log level must be one of: {allowed}")
        return v

    @validator("log_format")
    def validate_log_format(cls, v: str) -> str:
        if v not in ("json", "console"):
            raise ValueError("Log format must be 'json' or 'console'")
        return v

    @property
    def is_mainnet(self) -> bool:
        return self.stacks_network == "mainnet"

    @property
    def has_signing_key(self) -> bool:
        return bool(self.keeper_private_key.strip())

    @property
    def vault(self) -> ContractId:
        return parse_contract_id(self.vault_contract)

    @property
    def plans(self) -> ContractId:
        return parse_contract_id(self.plans_contract)

    @property
    def engine(self) -> ContractId:
        return parse_contract_id(self.engine_contract)

    class Config:
        env_file = ".env"
        case_sensitive = False
        frozen = True
        extra = "ignore"


# Global settings instance
settings = Settings()


class StacksConfig:
    """Stacks network constants."""

    API_URLS = {
        "mainnet": "https://api.mainnet.hiro.so",
        "testnet": "https://api.testnet.hiro.so",
        "devnet": "http://localhost:3999",
    }

    # Transaction version byte and chain id
    TX_VERSION_MAINNET = 0x00
    TX_VERSION_TESTNET = 0x80
    CHAIN_ID_MAINNET = 0x00000001
    CHAIN_ID_TESTNET = 0x80000000

    # Single-sig (P2PKH) address versions
    ADDRESS_VERSION_MAINNET = 22
    ADDRESS_VERSION_TESTNET = 26

    @staticmethod
    def get_api_url(config: Settings = None) -> str:
        """Get the API base URL for the configured network."""
        config = config or settings
        if config.stacks_api_url:
            return config.stacks_api_url.rstrip("/")
        return StacksConfig.API_URLS.get(config.stacks_network, StacksConfig.API_URLS["testnet"])

    @staticmethod
    def get_network_params(config: Settings = None) -> dict:
        """Get transaction/address versioning for the configured network."""
        config = config or settings
        if config.is_mainnet:
            return {
                "tx_version": StacksConfig.TX_VERSION_MAINNET,
                "chain_id": StacksConfig.CHAIN_ID_MAINNET,
                "address_version": StacksConfig.ADDRESS_VERSION_MAINNET,
            }
        return {
            "tx_version": StacksConfig.TX_VERSION_TESTNET,
            "chain_id": StacksConfig.CHAIN_ID_TESTNET,
            "address_version": StacksConfig.ADDRESS_VERSION_TESTNET,
        }
