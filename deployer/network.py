#!/usr/bin/env python3
"""
Network Profiles
Named descriptions of target chains, loaded once per run
"""

import os
import json
import logging
from dataclasses import dataclass, replace
from typing import Dict, Any, Optional
from urllib.parse import urlparse

from dotenv import load_dotenv
from eth_account import Account

from .errors import ConfigurationError

# Load environment variables from .env file
load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_NETWORK = "localavalanche"
DEFAULT_CONFIG_PATH = "networks.json"


@dataclass(frozen=True)
class OptimizerSettings:
    enabled: bool = False
    runs: int = 200


@dataclass(frozen=True)
class NetworkProfile:
    """Target chain description; gas_price of None means ask the node"""
    name: str
    endpoint_url: str
    chain_id: int
    gas_limit: int
    gas_price: Optional[int]
    signing_key_source: str
    solc_version: Optional[str] = None
    optimizer: OptimizerSettings = OptimizerSettings()
    skip_dry_run: bool = True
    confirmation_timeout: float = 120.0
    poll_latency: float = 0.5
    poa: bool = True


def _require_int(network: str, key: str, value: Any, minimum: int = 1) -> int:
    # bool is an int subclass; true/false in JSON is never a valid number here
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
        raise ConfigurationError(f"Network '{network}': '{key}' must be an integer >= {minimum}, got {value!r}")
    return value


def _require_number(network: str, key: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ConfigurationError(f"Network '{network}': '{key}' must be a positive number, got {value!r}")
    return float(value)


def _require_endpoint(network: str, value: Any) -> str:
    if not isinstance(value, str) or urlparse(value).scheme not in ("http", "https"):
        raise ConfigurationError(f"Network '{network}': endpointURL must be an http(s) URL, got {value!r}")
    return value


def apply_env_overrides(profile: NetworkProfile) -> NetworkProfile:
    """DEPLOY_RPC_URL and DEPLOY_GAS_PRICE take precedence over the config file"""
    changes: Dict[str, Any] = {}

    rpc_url = os.getenv("DEPLOY_RPC_URL")
    if rpc_url:
        changes["endpoint_url"] = _require_endpoint(profile.name, rpc_url)

    gas_price = os.getenv("DEPLOY_GAS_PRICE")
    if gas_price:
        try:
            changes["gas_price"] = _require_int(profile.name, "gasPrice", int(gas_price))
        except ValueError:
            raise ConfigurationError(f"DEPLOY_GAS_PRICE must be an integer, got {gas_price!r}") from None

    return replace(profile, **changes) if changes else profile


def _parse_profile(name: str, raw: Dict[str, Any], solc: Dict[str, Any]) -> NetworkProfile:
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Network '{name}' must be an object")

    for key in ("endpointURL", "chainId", "gasLimit", "signingKeySource"):
        if key not in raw:
            raise ConfigurationError(f"Network '{name}' is missing '{key}'")

    endpoint = _require_endpoint(name, raw["endpointURL"])

    gas_price = raw.get("gasPrice")
    if gas_price is not None:
        gas_price = _require_int(name, "gasPrice", gas_price)

    key_source = raw["signingKeySource"]
    if not isinstance(key_source, str) or not key_source:
        raise ConfigurationError(f"Network '{name}': signingKeySource must be a non-empty string")

    settings = solc.get("settings", {}) or {}
    optimizer_raw = settings.get("optimizer", {}) or {}
    optimizer = OptimizerSettings(
        enabled=bool(optimizer_raw.get("enabled", False)),
        runs=_require_int(name, "optimizer.runs", optimizer_raw.get("runs", 200), minimum=0),
    )

    return NetworkProfile(
        name=name,
        endpoint_url=endpoint,
        chain_id=_require_int(name, "chainId", raw["chainId"]),
        gas_limit=_require_int(name, "gasLimit", raw["gasLimit"]),
        gas_price=gas_price,
        signing_key_source=key_source,
        solc_version=solc.get("version"),
        optimizer=optimizer,
        skip_dry_run=bool(raw.get("skipDryRun", True)),
        confirmation_timeout=_require_number(name, "confirmationTimeout", raw.get("confirmationTimeout", 120)),
        poll_latency=_require_number(name, "pollLatency", raw.get("pollLatency", 0.5)),
        poa=bool(raw.get("poa", True)),
    )


def load_network_config(file_path: str = DEFAULT_CONFIG_PATH) -> Dict[str, NetworkProfile]:
    """
    Load every named network profile from a JSON config

    The layout follows truffle-config: a "networks" object keyed by profile
    name and a "compilers.solc" object shared by all profiles.

    Args:
        file_path: Path to the networks config

    Returns:
        Profiles keyed by name
    """
    try:
        with open(file_path, 'r') as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        raise ConfigurationError(f"Could not read network config {file_path}: {e}") from e

    networks = data.get("networks") if isinstance(data, dict) else None
    if not isinstance(networks, dict) or not networks:
        raise ConfigurationError(f"Network config {file_path} defines no networks")

    solc = (data.get("compilers") or {}).get("solc") or {}
    return {name: _parse_profile(name, raw, solc) for name, raw in networks.items()}


def select_profile(profiles: Dict[str, NetworkProfile], name: str) -> NetworkProfile:
    try:
        return profiles[name]
    except KeyError:
        known = ", ".join(sorted(profiles)) or "none"
        raise ConfigurationError(f"Unknown network '{name}' (configured: {known})") from None


def load_network_profile(name: str, file_path: str = DEFAULT_CONFIG_PATH) -> NetworkProfile:
    profile = apply_env_overrides(select_profile(load_network_config(file_path), name))
    logger.info(f"Using network '{profile.name}' at {profile.endpoint_url} (chainId={profile.chain_id})")
    return profile


def resolve_signing_key(source: str) -> str:
    """
    Resolve a signing key source to a hex private key

    Supported forms:
        env:NAME       environment variable (.env included)
        file:PATH      first line of a file
        keystore:PATH  encrypted JSON keystore, password in DEPLOYER_KEYSTORE_PASSWORD
        0x...          literal key, for local test networks only
    """
    kind, _, value = source.partition(":")

    if kind == "env" and value:
        key = os.getenv(value)
        if not key:
            raise ConfigurationError(f"{value} not found in environment or .env file")
        return key.strip()

    if kind == "file" and value:
        try:
            with open(os.path.expanduser(value), 'r') as f:
                key = f.readline().strip()
        except OSError as e:
            raise ConfigurationError(f"Could not read signing key file {value}: {e}") from e
        if not key:
            raise ConfigurationError(f"Signing key file {value} is empty")
        return key

    if kind == "keystore" and value:
        password = os.getenv("DEPLOYER_KEYSTORE_PASSWORD")
        if password is None:
            raise ConfigurationError("DEPLOYER_KEYSTORE_PASSWORD not found in environment or .env file")
        try:
            with open(os.path.expanduser(value), 'r') as f:
                keyfile = json.load(f)
            return "0x" + bytes(Account.decrypt(keyfile, password)).hex()
        except (OSError, ValueError) as e:
            raise ConfigurationError(f"Could not decrypt keystore {value}: {e}") from e

    stripped = source[2:] if source.startswith("0x") else source
    if len(stripped) == 64 and all(c in "0123456789abcdefABCDEF" for c in stripped):
        logger.warning("Using a private key written into the network config. Only do this for local test networks.")
        return source

    raise ConfigurationError(f"Unsupported signingKeySource {source!r} (expected env:, file:, keystore: or a hex key)")
