#!/usr/bin/env python3
"""
Tests for the Deployment Executor
Step ordering, address passing and fail-fast behavior against a fake chain
"""

import pytest
from unittest.mock import MagicMock

from deployer.chain import Confirmation
from deployer.errors import AlreadyDeployed, TransactionError, UnresolvedDependency
from deployer.executor import DeploymentExecutor, StepState
from deployer.plan import AddressRef, DeploymentPlan, DeploymentStep
from deployer.registry import ArtifactRegistry, ContractArtifact


class FakeChain:
    """Deploys instantly, handing out sequential addresses"""

    def __init__(self, fail_submit=(), revert=(), interrupt=()):
        self.fail_submit = set(fail_submit)
        self.revert = set(revert)
        self.interrupt = set(interrupt)
        self.submitted = []
        self._pending = {}

    def submit_deployment(self, artifact, args):
        if artifact.name in self.fail_submit:
            raise TransactionError(f"Failed to submit {artifact.name}: connection refused", contract=artifact.name)
        self.submitted.append((artifact.name, list(args)))
        tx_hash = "0x%064x" % len(self.submitted)
        self._pending[tx_hash] = artifact.name
        return tx_hash

    def wait_for_confirmation(self, tx_hash, contract=None):
        name = self._pending.pop(tx_hash)
        if name in self.interrupt:
            raise KeyboardInterrupt
        if name in self.revert:
            raise TransactionError(f"Deployment transaction {tx_hash} reverted", contract=name, tx_hash=tx_hash)
        address = "0x%040x" % (0xC0FFEE00 + len(self.submitted))
        return Confirmation(address=address, tx_hash=tx_hash, block_number=len(self.submitted), gas_used=21000)


def make_registry(*names):
    registry = ArtifactRegistry()
    for name in names:
        registry.register(name, ContractArtifact(name, (), "0x6080"))
    return registry


def vehicle_plan():
    return DeploymentPlan([
        DeploymentStep("RegisterCar"),
        DeploymentStep("VehicleMaintenance", (AddressRef("RegisterCar"),)),
    ])


class TestSuccessfulRun:
    """Test class for runs where every step deploys"""

    def setup_method(self):
        """Set up the vehicle plan against a fake chain"""
        self.chain = FakeChain()
        self.registry = make_registry("RegisterCar", "VehicleMaintenance")
        self.executor = DeploymentExecutor(vehicle_plan(), self.registry, self.chain)

    def test_two_step_plan(self):
        """Test VehicleMaintenance receives RegisterCar's final address"""
        report = self.executor.run()

        assert report.succeeded
        assert [r.name for r in report.deployed] == ["RegisterCar", "VehicleMaintenance"]
        register_car = self.registry.resolve_address("RegisterCar")
        assert self.chain.submitted == [("RegisterCar", []), ("VehicleMaintenance", [register_car])]

        maintenance = report.records[1].instance
        assert maintenance.constructor_args == (register_car,)
        assert maintenance.deployed_at_step == 1
        assert len(self.registry.deployments()) == 2

    def test_report_has_no_failures(self):
        """Test a clean run raises nothing"""
        report = self.executor.run()
        assert report.failed == []
        assert report.not_attempted == []
        report.raise_for_failure()

    def test_state_transitions(self):
        """Test each step walks pending -> submitting -> confirming -> deployed"""
        seen = []
        executor = DeploymentExecutor(
            vehicle_plan(), make_registry("RegisterCar", "VehicleMaintenance"), FakeChain(),
            on_transition=lambda record, previous: seen.append((record.name, previous, record.state)),
        )
        executor.run()

        assert seen == [
            ("RegisterCar", StepState.PENDING, StepState.SUBMITTING),
            ("RegisterCar", StepState.SUBMITTING, StepState.CONFIRMING),
            ("RegisterCar", StepState.CONFIRMING, StepState.DEPLOYED),
            ("VehicleMaintenance", StepState.PENDING, StepState.SUBMITTING),
            ("VehicleMaintenance", StepState.SUBMITTING, StepState.CONFIRMING),
            ("VehicleMaintenance", StepState.CONFIRMING, StepState.DEPLOYED),
        ]

    def test_transition_callback_sees_failure(self):
        """Test a failing step is reported to the callback"""
        on_transition = MagicMock()
        executor = DeploymentExecutor(vehicle_plan(), make_registry("RegisterCar", "VehicleMaintenance"),
                                      FakeChain(fail_submit={"RegisterCar"}), on_transition=on_transition)
        executor.run()

        record, previous = on_transition.call_args_list[-1][0]
        assert record.name == "RegisterCar"
        assert previous is StepState.SUBMITTING
        assert record.state is StepState.FAILED

    def test_dependency_order_for_dag(self):
        """Test every dependency is deployed before the step that uses it"""
        plan = DeploymentPlan([
            DeploymentStep("Garage", (AddressRef("VehicleMaintenance"), AddressRef("RegisterCar"))),
            DeploymentStep("VehicleMaintenance", (AddressRef("RegisterCar"),)),
            DeploymentStep("RegisterCar"),
        ])
        chain = FakeChain()
        registry = make_registry("RegisterCar", "VehicleMaintenance", "Garage")

        DeploymentExecutor(plan, registry, chain).run()

        assert [name for name, _ in chain.submitted] == ["RegisterCar", "VehicleMaintenance", "Garage"]
        assert chain.submitted[2][1] == [
            registry.resolve_address("VehicleMaintenance"),
            registry.resolve_address("RegisterCar"),
        ]

    def test_literal_args_pass_through(self):
        """Test non-reference arguments reach the chain unchanged"""
        plan = DeploymentPlan([DeploymentStep("RegisterCar", ("Fleet A", 42))])
        chain = FakeChain()
        DeploymentExecutor(plan, make_registry("RegisterCar"), chain).run()
        assert chain.submitted == [("RegisterCar", ["Fleet A", 42])]

    def test_rerun_resubmits_every_step(self):
        """Test a second run with a fresh registry deploys everything again"""
        self.executor.run()
        again = DeploymentExecutor(vehicle_plan(), make_registry("RegisterCar", "VehicleMaintenance"), self.chain)
        report = again.run()

        assert report.succeeded
        assert [name for name, _ in self.chain.submitted] == [
            "RegisterCar", "VehicleMaintenance", "RegisterCar", "VehicleMaintenance",
        ]


class TestFailedRun:
    """Test class for fail-fast behavior"""

    def test_first_step_fails(self):
        """Test a failed dependency stops the run before its dependents"""
        chain = FakeChain(fail_submit={"RegisterCar"})
        report = DeploymentExecutor(vehicle_plan(), make_registry("RegisterCar", "VehicleMaintenance"), chain).run()

        assert not report.succeeded
        assert [r.name for r in report.failed] == ["RegisterCar"]
        assert [r.name for r in report.not_attempted] == ["VehicleMaintenance"]
        assert chain.submitted == []
        with pytest.raises(TransactionError, match="Failed to submit RegisterCar"):
            report.raise_for_failure()

    def test_revert_after_submit(self):
        """Test a reverted second step leaves the first one deployed"""
        chain = FakeChain(revert={"VehicleMaintenance"})
        registry = make_registry("RegisterCar", "VehicleMaintenance")
        report = DeploymentExecutor(vehicle_plan(), registry, chain).run()

        assert [r.name for r in report.deployed] == ["RegisterCar"]
        failed = report.failed[0]
        assert failed.name == "VehicleMaintenance"
        assert failed.tx_hash is not None
        assert failed.error.tx_hash == failed.tx_hash
        assert registry.is_deployed("RegisterCar")
        assert not registry.is_deployed("VehicleMaintenance")

    def test_failure_in_middle_skips_the_rest(self):
        """Test independent later steps are not attempted either"""
        plan = DeploymentPlan([DeploymentStep("A"), DeploymentStep("B"), DeploymentStep("C")])
        chain = FakeChain(fail_submit={"B"})
        report = DeploymentExecutor(plan, make_registry("A", "B", "C"), chain).run()

        assert [r.state for r in report.records] == [StepState.DEPLOYED, StepState.FAILED, StepState.PENDING]
        assert len(report.failed) == 1

    def test_reusing_registry_fails(self):
        """Test a registry that already holds this run's deployments cannot record them twice"""
        registry = make_registry("RegisterCar", "VehicleMaintenance")
        chain = FakeChain()
        DeploymentExecutor(vehicle_plan(), registry, chain).run()

        report = DeploymentExecutor(vehicle_plan(), registry, chain).run()
        assert isinstance(report.failed[0].error, AlreadyDeployed)

    def test_missing_artifact(self):
        """Test a step without artifact fails without submitting"""
        chain = FakeChain()
        report = DeploymentExecutor(vehicle_plan(), make_registry("RegisterCar"), chain).run()
        assert [r.name for r in report.failed] == ["VehicleMaintenance"]
        assert [name for name, _ in chain.submitted] == ["RegisterCar"]

    def test_interrupted_while_confirming(self):
        """Test an interrupt keeps the confirmed steps in the executor's report"""
        chain = FakeChain(interrupt={"VehicleMaintenance"})
        executor = DeploymentExecutor(vehicle_plan(), make_registry("RegisterCar", "VehicleMaintenance"), chain)

        with pytest.raises(KeyboardInterrupt):
            executor.run()

        report = executor.report
        assert [r.name for r in report.deployed] == ["RegisterCar"]
        interrupted = report.failed[0]
        assert interrupted.name == "VehicleMaintenance"
        assert isinstance(interrupted.error, TransactionError)
        assert interrupted.error.tx_hash == interrupted.tx_hash
        assert not report.succeeded


class TestMaterializeArgs:
    """Test class for constructor argument materialization"""

    def test_unresolved_dependency(self):
        """Test a reference with no recorded address"""
        executor = DeploymentExecutor(vehicle_plan(), make_registry("RegisterCar", "VehicleMaintenance"), FakeChain())
        with pytest.raises(UnresolvedDependency):
            executor.materialize_args(DeploymentStep("VehicleMaintenance", (AddressRef("RegisterCar"),)))

    def test_resolved(self):
        """Test references are replaced by recorded addresses"""
        registry = make_registry("RegisterCar")
        registry.record_deployment("RegisterCar", "0x" + "a" * 40, 0)
        executor = DeploymentExecutor(vehicle_plan(), registry, FakeChain())

        args = executor.materialize_args(DeploymentStep("X", (AddressRef("RegisterCar"), 7)))
        assert args == ["0x" + "a" * 40, 7]
