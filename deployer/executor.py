#!/usr/bin/env python3
"""
Deployment Executor
Walks a validated plan, deploying each contract once its dependencies are on chain
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Optional

from .chain import ChainClient
from .errors import DeploymentError, TransactionError
from .plan import AddressRef, DeploymentPlan, DeploymentStep
from .registry import ArtifactRegistry, DeployedInstance

logger = logging.getLogger(__name__)


class StepState(Enum):
    PENDING = "pending"
    SUBMITTING = "submitting"
    CONFIRMING = "confirming"
    DEPLOYED = "deployed"
    FAILED = "failed"


@dataclass
class StepRecord:
    """Progress of one step within a run"""
    step: DeploymentStep
    index: int
    state: StepState = StepState.PENDING
    constructor_args: List[Any] = field(default_factory=list)
    tx_hash: Optional[str] = None
    instance: Optional[DeployedInstance] = None
    error: Optional[DeploymentError] = None

    @property
    def name(self) -> str:
        return self.step.contract_name


@dataclass
class DeploymentReport:
    records: List[StepRecord]

    @property
    def deployed(self) -> List[StepRecord]:
        return [r for r in self.records if r.state is StepState.DEPLOYED]

    @property
    def failed(self) -> List[StepRecord]:
        return [r for r in self.records if r.state is StepState.FAILED]

    @property
    def not_attempted(self) -> List[StepRecord]:
        return [r for r in self.records if r.state is StepState.PENDING]

    @property
    def succeeded(self) -> bool:
        return len(self.deployed) == len(self.records)

    def raise_for_failure(self):
        """Raise the error of the step that stopped the run, if any"""
        for record in self.failed:
            raise record.error


TransitionCallback = Callable[[StepRecord, StepState], None]


class DeploymentExecutor:
    """
    Sequential, fail-fast plan runner

    Each step moves PENDING -> SUBMITTING -> CONFIRMING -> DEPLOYED, or to
    FAILED from any of those. The first failure stops the run; steps after it
    stay PENDING. Contracts already confirmed stay on chain and are reported.
    """

    def __init__(self, plan: DeploymentPlan, registry: ArtifactRegistry, client: ChainClient,
                 on_transition: Optional[TransitionCallback] = None):
        self.plan = plan
        self.registry = registry
        self.client = client
        self.on_transition = on_transition
        self.report: Optional[DeploymentReport] = None

    def _transition(self, record: StepRecord, state: StepState):
        previous = record.state
        record.state = state
        logger.info(f"[{record.index + 1}/{len(self.plan)}] {record.name}: {previous.value} -> {state.value}")
        if self.on_transition is not None:
            self.on_transition(record, previous)

    def materialize_args(self, step: DeploymentStep) -> List[Any]:
        """Replace address references with the addresses recorded so far"""
        return [self.registry.resolve_address(arg.contract) if isinstance(arg, AddressRef) else arg
                for arg in step.constructor_args]

    def _execute_step(self, record: StepRecord):
        artifact = self.registry.get_artifact(record.name)
        record.constructor_args = self.materialize_args(record.step)
        self._transition(record, StepState.SUBMITTING)

        record.tx_hash = self.client.submit_deployment(artifact, record.constructor_args)
        self._transition(record, StepState.CONFIRMING)

        confirmation = self.client.wait_for_confirmation(record.tx_hash, contract=record.name)
        record.instance = self.registry.record_deployment(
            record.name,
            confirmation.address,
            record.index,
            tx_hash=confirmation.tx_hash,
            block_number=confirmation.block_number,
            gas_used=confirmation.gas_used,
            constructor_args=record.constructor_args,
        )
        self._transition(record, StepState.DEPLOYED)
        logger.info(f"{record.name} deployed at {confirmation.address}")

    def run(self) -> DeploymentReport:
        """
        Deploy every step in order, stopping at the first failure

        The report is also kept on ``self.report`` so a caller can still see
        which contracts were confirmed when the run is interrupted.
        """
        records = [StepRecord(step=step, index=i) for i, step in enumerate(self.plan.ordered_steps())]
        report = self.report = DeploymentReport(records)

        for record in records:
            try:
                self._execute_step(record)
            except DeploymentError as e:
                record.error = e
                self._transition(record, StepState.FAILED)
                logger.error(f"{record.name} failed: {e}")
                skipped = len(report.not_attempted)
                if skipped:
                    logger.error(f"Aborting run; {skipped} remaining step(s) not attempted")
                break
            except BaseException as e:
                record.error = TransactionError(
                    f"{record.name} interrupted ({type(e).__name__}: {e})",
                    contract=record.name, tx_hash=record.tx_hash,
                )
                self._transition(record, StepState.FAILED)
                logger.error(f"Run interrupted during {record.name}; "
                             f"{len(report.deployed)} step(s) already confirmed")
                raise

        return report
