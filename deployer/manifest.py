"""Deployment manifest: contract name -> deployed address, one JSON file per network."""

import os
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict

from .errors import ConfigurationError
from .executor import DeploymentReport
from .network import NetworkProfile

logger = logging.getLogger(__name__)

DEFAULT_MANIFEST_DIR = "deployments"


def manifest_path(directory: str, network: str) -> str:
    return os.path.join(directory, f"{network}.json")


def build_manifest(report: DeploymentReport, profile: NetworkProfile, deployer: str) -> Dict[str, Any]:
    contracts = {}
    for record in report.deployed:
        instance = record.instance
        contracts[instance.contract_name] = {
            'address': instance.address,
            'transactionHash': instance.tx_hash,
            'blockNumber': instance.block_number,
            'gasUsed': instance.gas_used,
            'step': instance.deployed_at_step,
            'constructorArgs': list(instance.constructor_args),
        }

    return {
        'network': profile.name,
        'chainId': profile.chain_id,
        'deployer': deployer,
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'complete': report.succeeded,
        'contracts': contracts,
    }


def write_manifest(report: DeploymentReport, profile: NetworkProfile, deployer: str,
                   directory: str = DEFAULT_MANIFEST_DIR) -> str:
    """Write the confirmed deployments of a run, including those of a run that failed part way"""
    os.makedirs(directory, exist_ok=True)
    path = manifest_path(directory, profile.name)
    with open(path, 'w') as f:
        json.dump(build_manifest(report, profile, deployer), f, indent=2)
    logger.info(f"Deployment manifest written to {path}")
    return path


def load_manifest(path: str) -> Dict[str, Any]:
    try:
        with open(path, 'r') as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        raise ConfigurationError(f"Could not read deployment manifest {path}: {e}") from e
    if not isinstance(data, dict) or 'contracts' not in data:
        raise ConfigurationError(f"Deployment manifest {path} has no contracts section")
    return data
