#!/usr/bin/env python3
"""
Artifact Registry
Resolves contract names to compiled artifacts and, once deployed, to addresses
"""

import os
import re
import json
import glob
import logging
from dataclasses import dataclass, field
from typing import Dict, Any, Optional, List, Tuple

from .errors import (
    ArtifactError,
    DuplicateArtifact,
    UnknownArtifact,
    UnresolvedDependency,
    AlreadyDeployed,
)

logger = logging.getLogger(__name__)

UNLINKED_LIBRARY = re.compile(r"__\$[0-9a-fA-F]{34}\$__")


@dataclass(frozen=True)
class ContractArtifact:
    """Compiled contract interface and bytecode"""
    name: str
    abi: Tuple[Dict[str, Any], ...]
    bytecode: str
    compiler_version: Optional[str] = None
    optimizer: Optional[Dict[str, Any]] = None

    @property
    def constructor_inputs(self) -> List[Dict[str, Any]]:
        ctor = next((item for item in self.abi if item.get("type") == "constructor"), None)
        if ctor is None:
            return []
        return list(ctor.get("inputs", []))

    @property
    def unlinked_libraries(self) -> List[str]:
        return sorted(set(UNLINKED_LIBRARY.findall(self.bytecode or "")))

    @property
    def is_deployable(self) -> bool:
        """Abstract contracts and interfaces compile to empty bytecode"""
        return bool(self.bytecode) and self.bytecode != "0x" and not self.unlinked_libraries


@dataclass(frozen=True)
class DeployedInstance:
    """A contract confirmed on chain during this run"""
    contract_name: str
    address: str
    deployed_at_step: int
    tx_hash: Optional[str] = None
    block_number: Optional[int] = None
    gas_used: Optional[int] = None
    constructor_args: Tuple[Any, ...] = field(default_factory=tuple)


def _optimizer_from_metadata(metadata: Any) -> Optional[Dict[str, Any]]:
    """Truffle stores solc metadata as a JSON string; pull the optimizer settings out of it."""
    if not metadata:
        return None
    try:
        parsed = json.loads(metadata) if isinstance(metadata, str) else metadata
        optimizer = parsed["settings"]["optimizer"]
    except (ValueError, KeyError, TypeError):
        return None
    return {"enabled": bool(optimizer.get("enabled", False)), "runs": optimizer.get("runs")}


def load_artifact(file_path: str) -> ContractArtifact:
    """
    Load a contract artifact from its JSON build output

    Args:
        file_path: Path to a Truffle-style artifact (contractName, abi, bytecode)

    Returns:
        The parsed artifact
    """
    try:
        with open(file_path, 'r') as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        raise ArtifactError(f"Could not read artifact {file_path}: {e}") from e

    if not isinstance(data, dict) or "abi" not in data:
        raise ArtifactError(f"Artifact {file_path} has no ABI")

    name = data.get("contractName") or os.path.splitext(os.path.basename(file_path))[0]
    bytecode = data.get("bytecode") or ""
    if isinstance(bytecode, dict):
        # Hardhat-style {"object": "..."} wrapper
        bytecode = bytecode.get("object", "")
    if bytecode and not bytecode.startswith("0x"):
        bytecode = "0x" + bytecode

    compiler = data.get("compiler") or {}
    return ContractArtifact(
        name=name,
        abi=tuple(data["abi"]),
        bytecode=bytecode,
        compiler_version=compiler.get("version"),
        optimizer=_optimizer_from_metadata(data.get("metadata")),
    )


def write_artifact_networks(file_path: str, chain_id: int, instance: DeployedInstance):
    """Record a deployment in the artifact's networks section, the way Truffle persists it."""
    try:
        with open(file_path, 'r') as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        raise ArtifactError(f"Could not read artifact {file_path}: {e}") from e

    networks = data.setdefault("networks", {})
    entry = networks.setdefault(str(chain_id), {"events": {}, "links": {}})
    entry["address"] = instance.address
    entry["transactionHash"] = instance.tx_hash

    with open(file_path, 'w') as f:
        json.dump(data, f, indent=2)
    logger.info(f"Recorded {instance.contract_name} at {instance.address} in {file_path} (network {chain_id})")


class ArtifactRegistry:
    """Contract artifacts plus the addresses deployed during the current run"""

    def __init__(self):
        self._artifacts: Dict[str, ContractArtifact] = {}
        self._paths: Dict[str, str] = {}
        self._deployed: Dict[str, DeployedInstance] = {}

    @classmethod
    def from_build_dir(cls, build_dir: str) -> "ArtifactRegistry":
        """Register every artifact found in a build directory"""
        if not os.path.isdir(build_dir):
            raise ArtifactError(f"Build directory {build_dir} does not exist. Compile the contracts first.")

        registry = cls()
        for path in sorted(glob.glob(os.path.join(build_dir, "*.json"))):
            artifact = load_artifact(path)
            registry.register(artifact.name, artifact, path=path)

        logger.info(f"Loaded {len(registry)} artifacts from {build_dir}")
        return registry

    def __len__(self):
        return len(self._artifacts)

    def __contains__(self, name):
        return name in self._artifacts

    def register(self, name: str, artifact: ContractArtifact, path: Optional[str] = None):
        if name in self._artifacts:
            raise DuplicateArtifact(name)
        self._artifacts[name] = artifact
        if path is not None:
            self._paths[name] = path

    def get_artifact(self, name: str) -> ContractArtifact:
        try:
            return self._artifacts[name]
        except KeyError:
            raise UnknownArtifact(name) from None

    def artifact_path(self, name: str) -> Optional[str]:
        return self._paths.get(name)

    def resolve_address(self, name: str) -> str:
        """Address of a contract deployed earlier in this run"""
        instance = self._deployed.get(name)
        if instance is None:
            raise UnresolvedDependency(name)
        return instance.address

    def is_deployed(self, name: str) -> bool:
        return name in self._deployed

    def record_deployment(self, name: str, address: str, step: int, **details) -> DeployedInstance:
        """
        Record a confirmed deployment

        Args:
            name: Contract name
            address: Address yielded by the confirmed transaction
            step: Position of the step in the executed order
            **details: tx_hash, block_number, gas_used, constructor_args

        Returns:
            The new DeployedInstance
        """
        existing = self._deployed.get(name)
        if existing is not None:
            raise AlreadyDeployed(name, existing.address)

        if "constructor_args" in details:
            details["constructor_args"] = tuple(details["constructor_args"])
        instance = DeployedInstance(contract_name=name, address=address, deployed_at_step=step, **details)
        self._deployed[name] = instance
        return instance

    def deployments(self) -> List[DeployedInstance]:
        return sorted(self._deployed.values(), key=lambda i: i.deployed_at_step)
