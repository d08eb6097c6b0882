#!/usr/bin/env python3
"""
Deployment Plan
Validated, dependency-ordered sequence of contract deployments
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence, Tuple

from eth_abi import is_encodable

from .errors import (
    ArtifactError,
    CyclicDependency,
    DuplicateStep,
    UnknownReference,
    ValidationError,
)
from .registry import ArtifactRegistry

logger = logging.getLogger(__name__)

# Literal plan values are checked for these ABI types; bytes and tuples are left to web3
CHECKED_ABI_TYPE = re.compile(r"^(u?int\d*|bool|string|address)(\[\d*\])*$")


@dataclass(frozen=True)
class AddressRef:
    """Constructor argument that resolves to another step's deployed address"""
    contract: str


@dataclass(frozen=True)
class DeploymentStep:
    contract_name: str
    constructor_args: Tuple[Any, ...] = field(default_factory=tuple)

    @property
    def references(self) -> List[str]:
        """Contracts this step depends on, in argument order, without repeats"""
        refs: List[str] = []
        for arg in self.constructor_args:
            if isinstance(arg, AddressRef) and arg.contract not in refs:
                refs.append(arg.contract)
        return refs


class DeploymentPlan:
    """
    Ordered set of deployment steps

    Steps may be declared in any order; validation computes a linearization
    in which every referenced contract is deployed before the step that
    references it. Steps with no ordering constraint between them keep their
    declaration order.
    """

    def __init__(self, steps: Sequence[DeploymentStep]):
        self.steps: Tuple[DeploymentStep, ...] = tuple(steps)
        self._order = self._validate()

    def __len__(self):
        return len(self.steps)

    def _validate(self) -> List[DeploymentStep]:
        by_name: Dict[str, DeploymentStep] = {}
        for step in self.steps:
            if step.contract_name in by_name:
                raise DuplicateStep(step.contract_name)
            by_name[step.contract_name] = step

        for step in self.steps:
            for ref in step.references:
                if ref not in by_name:
                    raise UnknownReference(step.contract_name, ref)

        # Kahn's algorithm, always taking the earliest declared ready step
        remaining = {step.contract_name: set(step.references) for step in self.steps}
        order: List[DeploymentStep] = []
        while remaining:
            ready = next((s for s in self.steps
                          if s.contract_name in remaining and not remaining[s.contract_name]), None)
            if ready is None:
                raise CyclicDependency(self._find_cycle(remaining))
            order.append(ready)
            del remaining[ready.contract_name]
            for deps in remaining.values():
                deps.discard(ready.contract_name)
        return order

    def _find_cycle(self, remaining: Dict[str, set]) -> List[str]:
        """Walk unresolved edges until a name repeats"""
        start = next(s.contract_name for s in self.steps if s.contract_name in remaining)
        path = [start]
        current = start
        while True:
            current = sorted(remaining[current])[0]
            if current in path:
                return path[path.index(current):] + [current]
            path.append(current)

    def ordered_steps(self) -> List[DeploymentStep]:
        return list(self._order)

    def dependencies(self, name: str) -> List[str]:
        for step in self.steps:
            if step.contract_name == name:
                return step.references
        raise ValidationError(f"No step in the plan deploys {name}")

    def check_against(self, registry: ArtifactRegistry):
        """Fail before any transaction if a step cannot possibly be deployed"""
        for step in self._order:
            artifact = registry.get_artifact(step.contract_name)
            if not artifact.is_deployable:
                if artifact.unlinked_libraries:
                    raise ArtifactError(
                        f"{artifact.name} has unlinked libraries: {artifact.unlinked_libraries}. Link before deploy."
                    )
                raise ArtifactError(f"{artifact.name} has no bytecode (abstract contract or interface?)")

            expected = len(artifact.constructor_inputs)
            if expected != len(step.constructor_args):
                raise ValidationError(
                    f"{step.contract_name} constructor takes {expected} argument(s), "
                    f"plan supplies {len(step.constructor_args)}"
                )

            for position, (abi_input, arg) in enumerate(zip(artifact.constructor_inputs, step.constructor_args)):
                abi_type = abi_input.get("type", "")
                label = f"{step.contract_name} argument {position} ({abi_input.get('name') or abi_type})"
                if isinstance(arg, AddressRef):
                    if abi_type != "address":
                        raise ValidationError(f"{label} is a {abi_type}, but the plan passes the address of {arg.contract}")
                elif CHECKED_ABI_TYPE.match(abi_type) and not is_encodable(abi_type, arg):
                    raise ValidationError(f"{label}: {arg!r} is not a valid {abi_type}")


def _parse_arg(raw: Any, contract: str) -> Any:
    if isinstance(raw, dict):
        if set(raw) == {"ref"} and isinstance(raw["ref"], str):
            return AddressRef(raw["ref"])
        raise ValidationError(f"Unsupported constructor argument for {contract}: {raw}")
    return raw


def parse_plan(data: Dict[str, Any]) -> DeploymentPlan:
    """Build a plan from its JSON form: {"steps": [{"contract": ..., "args": [...]}]}"""
    if not isinstance(data, dict) or not isinstance(data.get("steps"), list):
        raise ValidationError("Deployment plan must contain a 'steps' list")

    steps = []
    for index, raw in enumerate(data["steps"]):
        if not isinstance(raw, dict) or not isinstance(raw.get("contract"), str):
            raise ValidationError(f"Step {index} must name a contract")
        args = raw.get("args", [])
        if not isinstance(args, list):
            raise ValidationError(f"Step {index} ({raw['contract']}): 'args' must be a list")
        steps.append(DeploymentStep(
            contract_name=raw["contract"],
            constructor_args=tuple(_parse_arg(arg, raw["contract"]) for arg in args),
        ))
    return DeploymentPlan(steps)


def load_plan(file_path: str) -> DeploymentPlan:
    try:
        with open(file_path, 'r') as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        raise ValidationError(f"Could not read deployment plan {file_path}: {e}") from e

    plan = parse_plan(data)
    logger.info(f"Loaded plan {file_path}: {' -> '.join(s.contract_name for s in plan.ordered_steps())}")
    return plan
