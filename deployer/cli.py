#!/usr/bin/env python3
"""
Command line entry point: deploy the planned contracts to one network
"""

import os
import sys
import logging
import argparse
from typing import Optional, Sequence

from .chain import connect
from .errors import ConfigurationError, DeploymentError
from .executor import DeploymentExecutor, DeploymentReport
from .manifest import DEFAULT_MANIFEST_DIR, load_manifest, manifest_path, write_manifest
from .network import DEFAULT_CONFIG_PATH, DEFAULT_NETWORK, NetworkProfile, load_network_profile
from .plan import DeploymentPlan, load_plan
from .registry import ArtifactRegistry, write_artifact_networks

logger = logging.getLogger("deployer")

DEFAULT_PLAN_PATH = "deploy-plan.json"
DEFAULT_BUILD_DIR = os.path.join("build", "contracts")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vehicle-deploy",
        description="Deploy compiled contracts in dependency order",
    )
    parser.add_argument("--network", default=os.getenv("DEPLOY_NETWORK", DEFAULT_NETWORK),
                        help="Network profile name (default: %(default)s)")
    parser.add_argument("--config", default=os.getenv("DEPLOY_CONFIG", DEFAULT_CONFIG_PATH),
                        help="Network profiles file (default: %(default)s)")
    parser.add_argument("--plan", default=os.getenv("DEPLOY_PLAN", DEFAULT_PLAN_PATH),
                        help="Deployment plan file (default: %(default)s)")
    parser.add_argument("--build-dir", default=os.getenv("DEPLOY_BUILD_DIR", DEFAULT_BUILD_DIR),
                        help="Directory of compiled contract artifacts (default: %(default)s)")
    parser.add_argument("--manifest-dir", default=DEFAULT_MANIFEST_DIR,
                        help="Where to write the deployment manifest (default: %(default)s)")
    parser.add_argument("--dry-run", action="store_true",
                        help="Estimate gas and predict addresses without sending transactions")
    parser.add_argument("--validate-only", action="store_true",
                        help="Check config, plan and artifacts, then exit")
    parser.add_argument("--update-artifacts", action="store_true",
                        help="Record deployed addresses in each artifact's networks section")
    parser.add_argument("--log-file", default="deployment.log", help="Log file (default: %(default)s)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def setup_logging(log_file: Optional[str], verbose: bool = False):
    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.insert(0, logging.FileHandler(log_file))
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
    )


def warn_on_compiler_mismatch(profile: NetworkProfile, registry: ArtifactRegistry, plan: DeploymentPlan):
    """Artifacts built with other compiler settings than the profile names are deployed anyway"""
    for step in plan.ordered_steps():
        artifact = registry.get_artifact(step.contract_name)
        if profile.solc_version and artifact.compiler_version \
                and not artifact.compiler_version.startswith(profile.solc_version):
            logger.warning(f"{artifact.name} was compiled with solc {artifact.compiler_version}, "
                           f"network config expects {profile.solc_version}")
        if artifact.optimizer is not None:
            expected = {"enabled": profile.optimizer.enabled, "runs": profile.optimizer.runs}
            if artifact.optimizer != expected:
                logger.warning(f"{artifact.name} optimizer settings {artifact.optimizer} differ from {expected}")


def log_summary(report: DeploymentReport, label: str = "Deployment"):
    for record in report.deployed:
        logger.info(f"  {record.name}: {record.instance.address}")
    for record in report.failed:
        logger.error(f"  {record.name}: FAILED ({record.error})")
    for record in report.not_attempted:
        logger.warning(f"  {record.name}: not attempted")
    total = len(report.records)
    logger.info(f"{label} finished: {len(report.deployed)}/{total} deployed, {len(report.failed)} failed")


def run_dry(profile: NetworkProfile, plan: DeploymentPlan, build_dir: str) -> DeploymentReport:
    client = connect(profile, dry_run=True)
    report = DeploymentExecutor(plan, ArtifactRegistry.from_build_dir(build_dir), client).run()
    log_summary(report, label="Dry run")
    return report


def warn_on_previous_manifest(manifest_dir: str, network: str):
    previous = manifest_path(manifest_dir, network)
    if not os.path.exists(previous):
        return
    try:
        deployed_before = load_manifest(previous)["contracts"]
    except ConfigurationError as e:
        logger.warning(f"Ignoring unreadable previous manifest: {e}")
        return
    if deployed_before:
        logger.warning(f"{previous} already lists {', '.join(deployed_before)}; "
                       f"every step is deployed again and the manifest will be replaced")


def record_run(report: DeploymentReport, profile: NetworkProfile, registry: ArtifactRegistry,
               deployer: str, args: argparse.Namespace):
    # Confirmed contracts are on chain for good, so persist them even when a later step failed
    if report.deployed:
        write_manifest(report, profile, deployer, args.manifest_dir)
        if args.update_artifacts:
            for record in report.deployed:
                path = registry.artifact_path(record.name)
                if path is not None:
                    write_artifact_networks(path, profile.chain_id, record.instance)
    log_summary(report)


def deploy(args: argparse.Namespace) -> int:
    profile = load_network_profile(args.network, args.config)
    plan = load_plan(args.plan)
    registry = ArtifactRegistry.from_build_dir(args.build_dir)
    warn_on_compiler_mismatch(profile, registry, plan)
    plan.check_against(registry)

    if args.validate_only:
        logger.info(f"Plan of {len(plan)} step(s) is valid for network '{profile.name}'")
        return 0

    if args.dry_run or not profile.skip_dry_run:
        run_dry(profile, plan, args.build_dir).raise_for_failure()
        if args.dry_run:
            return 0

    warn_on_previous_manifest(args.manifest_dir, profile.name)

    client = connect(profile)
    executor = DeploymentExecutor(plan, registry, client)
    try:
        report = executor.run()
    finally:
        if executor.report is not None:
            record_run(executor.report, profile, registry, client.address, args)

    report.raise_for_failure()
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_file, args.verbose)

    try:
        return deploy(args)
    except DeploymentError as e:
        logger.error(f"Deployment aborted: {e}")
        return 1
    except KeyboardInterrupt:
        logger.info("Deployment stopped by user")
        return 130


if __name__ == "__main__":
    sys.exit(main())
