"""
Configuration management using pydantic-settings.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from avnwallet.constants import (
    BIP32_PRIVATE_VERSION,
    BIP32_PUBLIC_VERSION,
    BIP44_COIN_TYPE,
    DEFAULT_DUST_THRESHOLD,
    DEFAULT_FEE,
    DEFAULT_MAX_INPUTS,
    DEFAULT_MIN_CONFIRMATIONS,
    MESSAGE_PREFIX,
    P2PKH_VERSION,
    P2SH_VERSION,
    WIF_VERSION,
)


class NetworkParams(BaseModel):
    """Ledger parameters shared by address, key and signing code."""

    model_config = ConfigDict(frozen=True)

    name: str
    pubkey_hash: int = Field(ge=0, le=0xFF)
    script_hash: int = Field(ge=0, le=0xFF)
    wif: int = Field(ge=0, le=0xFF)
    bip32_public: int
    bip32_private: int
    message_prefix: str
    coin_type: int = Field(ge=0)
    fork_id: bool = True


AVIAN_MAINNET = NetworkParams(
    name="mainnet",
    pubkey_hash=P2PKH_VERSION,
    script_hash=P2SH_VERSION,
    wif=WIF_VERSION,
    bip32_public=BIP32_PUBLIC_VERSION,
    bip32_private=BIP32_PRIVATE_VERSION,
    message_prefix=MESSAGE_PREFIX,
    coin_type=BIP44_COIN_TYPE,
    fork_id=True,
)

NETWORKS: dict[str, NetworkParams] = {"mainnet": AVIAN_MAINNET}


def get_network_params(name: str) -> NetworkParams:
    try:
        return NETWORKS[name]
    except KeyError:
        raise ValueError(f"Unknown network: {name}") from None


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="AVN_", env_file=".env", env_file_encoding="utf-8", case_sensitive=False
    )

    network: Literal["mainnet"] = "mainnet"

    backend: Literal["electrum", "node"] = "electrum"
    electrum_host: str = "electrum-us.avn.network"
    electrum_port: int = 50002
    electrum_ssl: bool = True
    rpc_url: str = "http://127.0.0.1:7896"
    rpc_user: str = ""
    rpc_password: str = ""

    data_dir: Path = Path.home() / ".avnwallet"

    fee: int = Field(default=DEFAULT_FEE, ge=0, description="Flat fee in satoshis")
    dust_threshold: int = Field(default=DEFAULT_DUST_THRESHOLD, ge=0)
    max_inputs: int = Field(default=DEFAULT_MAX_INPUTS, ge=1)
    min_confirmations: int = Field(default=DEFAULT_MIN_CONFIRMATIONS, ge=0)
    reservation_ttl: float = Field(
        default=600.0, gt=0, description="Seconds before an in-flight UTXO is released"
    )

    @property
    def network_params(self) -> NetworkParams:
        return get_network_params(self.network)


def get_settings() -> Settings:
    return Settings()
