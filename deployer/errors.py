"""
Deployment error taxonomy.

Every error aborts the current run. Nothing here is retried.
"""

from typing import Optional


class DeploymentError(Exception):
    """Base class for all deployer errors"""


class ConfigurationError(DeploymentError):
    """Malformed network profile, key source or build output"""


class ArtifactError(ConfigurationError):
    """A compiled artifact is unreadable or cannot be deployed"""


class ValidationError(DeploymentError):
    """The deployment plan is not a valid DAG of steps"""


class CyclicDependency(ValidationError):
    def __init__(self, cycle):
        self.cycle = list(cycle)
        super().__init__(f"Cyclic dependency between steps: {' -> '.join(self.cycle)}")


class UnknownReference(ValidationError):
    def __init__(self, step: str, reference: str):
        self.step = step
        self.reference = reference
        super().__init__(f"Step '{step}' references '{reference}', which no step in the plan deploys")


class DuplicateStep(ValidationError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Contract '{name}' appears in more than one step")


class DependencyError(DeploymentError):
    """Registry lookups and recordings that violate run state"""


class UnresolvedDependency(DependencyError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Contract '{name}' has not been deployed in this run")


class AlreadyDeployed(DependencyError):
    def __init__(self, name: str, address: str):
        self.name = name
        self.address = address
        super().__init__(f"Contract '{name}' was already deployed at {address}")


class DuplicateArtifact(DependencyError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Artifact '{name}' is already registered")


class UnknownArtifact(DependencyError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"No artifact registered for '{name}'")


class TransactionError(DeploymentError):
    """Submission, transport, revert, out-of-gas or confirmation timeout"""

    def __init__(self, message: str, contract: Optional[str] = None, tx_hash: Optional[str] = None):
        self.contract = contract
        self.tx_hash = tx_hash
        super().__init__(message)
