"""
Vehicle Contracts Deployer
==========================

Dependency-ordered deployment of the vehicle registration contracts.

Structure:
- registry: Compiled artifacts and addresses deployed in the current run
- plan: Deployment steps and their address dependencies
- network: Named network profiles and signing key sources
- chain: Web3 connection used to submit and confirm deployments
- executor: Walks the plan step by step
- manifest: Persists deployed addresses after a run
"""

__version__ = "1.0.0"
__author__ = "Vehicle Registry Team"
