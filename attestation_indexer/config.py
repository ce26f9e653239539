"""
Configuration: registry deployments per chain and environment settings.
"""

import os
from dataclasses import dataclass
from typing import List, Optional

from dotenv import load_dotenv

from attestation_indexer.errors import ConfigError


@dataclass(frozen=True)
class ChainConfig:
    chain_id: int
    chain_name: str
    version: str
    contract_address: str
    schema_registry_address: str
    etherscan_url: str
    # Must contain a trailing dot (unless mainnet)
    subdomain: str
    contract_start_block: int
    # Formatted with the process environment, e.g. {INFURA_API_KEY}
    rpc_provider: str


EAS_CHAIN_CONFIGS: List[ChainConfig] = [
    ChainConfig(
        chain_id=11155111,
        chain_name="sepolia",
        subdomain="",
        version="0.26",
        contract_address="0xC2679fBD37d54388Ce493F1DB75320D236e1815e",
        schema_registry_address="0x0a7E2Ff54e76B8E6659aedc9103FB21c038050D0",
        etherscan_url="https://sepolia.etherscan.io",
        contract_start_block=2958570,
        rpc_provider="https://eth-sepolia.g.alchemy.com/v2/{ALCHEMY_SEPOLIA_API_KEY}",
    ),
    ChainConfig(
        chain_id=42161,
        chain_name="arbitrum",
        subdomain="arbitrum.",
        version="0.26",
        contract_address="0xbD75f629A22Dc1ceD33dDA0b68c546A1c035c458",
        schema_registry_address="0xA310da9c5B885E7fb3fbA9D66E9Ba6Df512b78eB",
        contract_start_block=64528380,
        etherscan_url="https://arbiscan.io",
        rpc_provider="https://arbitrum-mainnet.infura.io/v3/{INFURA_API_KEY}",
    ),
    ChainConfig(
        chain_id=1,
        chain_name="mainnet",
        subdomain="",
        version="0.26",
        contract_address="0xA1207F3BBa224E2c9c3c6D5aF63D0eb1582Ce587",
        schema_registry_address="0xA7b39296258348C78294F95B872b282326A97BDF",
        contract_start_block=16756720,
        etherscan_url="https://etherscan.io",
        rpc_provider="https://mainnet.infura.io/v3/{INFURA_API_KEY}",
    ),
    ChainConfig(
        chain_id=420,
        chain_name="optimism-goerli",
        subdomain="optimism-goerli.",
        version="0.27",
        contract_address="0x1a5650D0EcbCa349DD84bAFa85790E3e6955eb84",
        schema_registry_address="0x7b24C7f8AF365B4E308b6acb0A7dfc85d034Cb3f",
        contract_start_block=8513369,
        etherscan_url="https://goerli-optimism.etherscan.io/",
        rpc_provider="https://opt-goerli.g.alchemy.com/v2/{ALCHEMY_OPTIMISM_GOERLI_API_KEY}",
    ),
    ChainConfig(
        chain_id=84531,
        chain_name="base-goerli",
        subdomain="base-goerli.",
        version="0.27",
        contract_address="0xAcfE09Fd03f7812F022FBf636700AdEA18Fd2A7A",
        schema_registry_address="0x720c2bA66D19A725143FBf5fDC5b4ADA2742682E",
        contract_start_block=4843430,
        etherscan_url="https://goerli.basescan.org/",
        rpc_provider="https://goerli.base.org",
    ),
]


def get_chain_config(chain_id: int) -> ChainConfig:
    for config in EAS_CHAIN_CONFIGS:
        if config.chain_id == chain_id:
            return config
    raise ConfigError(f"No chain config found for chain ID {chain_id}")


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got '{raw}'")


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got '{raw}'")


@dataclass
class Settings:
    chain: ChainConfig
    database_url: str
    rpc_url: str
    ws_rpc_url: Optional[str]
    db_pool_size: int = 10
    poll_interval: float = 60
    resolve_concurrency: int = 5
    resolve_poll_interval: float = 0.5
    resolve_max_attempts: int = 20
    max_reresolve_passes: int = 3
    log_block_range: int = 0
    live_tail: bool = True
    http_port: int = 6231
    preview_timeout: int = 10

    @property
    def contract_address(self) -> str:
        return self.chain.contract_address

    @property
    def contract_start_block(self) -> int:
        return self.chain.contract_start_block

    @classmethod
    def from_env(cls) -> "Settings":
        """Load settings from the environment (and a .env file if present)"""
        load_dotenv()

        chain_id = _int_env("CHAIN_ID", 0)
        if not chain_id:
            raise ConfigError("No chain ID specified (CHAIN_ID)")
        chain = get_chain_config(chain_id)

        database_url = os.getenv("DATABASE_URL")
        if not database_url:
            raise ConfigError("DATABASE_URL environment variable not set")

        rpc_url = os.getenv("RPC_URL")
        if not rpc_url:
            try:
                rpc_url = chain.rpc_provider.format(**os.environ)
            except KeyError as e:
                raise ConfigError(f"RPC_URL not set and {e.args[0]} missing for {chain.chain_name} provider")

        ws_rpc_url = os.getenv("WS_RPC_URL")
        if not ws_rpc_url and rpc_url.startswith("http"):
            ws_rpc_url = "ws" + rpc_url[len("http"):]

        return cls(
            chain=chain,
            database_url=database_url,
            rpc_url=rpc_url,
            ws_rpc_url=ws_rpc_url,
            db_pool_size=_int_env("DB_POOL_SIZE", 10),
            poll_interval=_float_env("POLL_INTERVAL", 60),
            resolve_concurrency=_int_env("RESOLVE_CONCURRENCY", 5),
            resolve_poll_interval=_float_env("RESOLVE_POLL_INTERVAL", 0.5),
            resolve_max_attempts=_int_env("RESOLVE_MAX_ATTEMPTS", 20),
            max_reresolve_passes=_int_env("MAX_RERESOLVE_PASSES", 3),
            log_block_range=_int_env("LOG_BLOCK_RANGE", 0),
            live_tail=os.getenv("LIVE_TAIL", "true").lower() != "false",
            http_port=_int_env("HTTP_PORT", 6231),
            preview_timeout=_int_env("PREVIEW_TIMEOUT", 10),
        )
