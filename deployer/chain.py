#!/usr/bin/env python3
"""
Chain connection used by the deployment executor
One signer, one nonce sequence, transactions submitted strictly one at a time
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

import rlp
from requests.exceptions import RequestException
from web3 import Web3
from web3.exceptions import Web3Exception
from web3.middleware import ExtraDataToPOAMiddleware

from .errors import ConfigurationError, TransactionError
from .network import NetworkProfile, resolve_signing_key
from .registry import ContractArtifact

logger = logging.getLogger(__name__)

# Node-side rejections (insufficient funds, nonce too low) still surface as ValueError on some providers
TRANSPORT_ERRORS = (Web3Exception, RequestException, ValueError)


@dataclass(frozen=True)
class Confirmation:
    address: str
    tx_hash: str
    block_number: Optional[int]
    gas_used: Optional[int]


class ChainClient:
    """Signs, sends and confirms contract deployments on one network"""

    def __init__(self, w3: Web3, account: Any, profile: NetworkProfile):
        self.w3 = w3
        self.account = account
        self.profile = profile
        self._nonce: Optional[int] = None
        self._gas_by_tx: Dict[str, int] = {}

    @property
    def address(self) -> str:
        return self.account.address

    def _next_nonce(self) -> int:
        if self._nonce is None:
            self._nonce = self.w3.eth.get_transaction_count(self.account.address, "pending")
        return self._nonce

    def _gas_price(self) -> int:
        if self.profile.gas_price is not None:
            return self.profile.gas_price
        return self.w3.eth.gas_price

    def _prepare_args(self, artifact: ContractArtifact, args: Sequence[Any]) -> list:
        """web3 only accepts checksummed addresses for address-typed inputs"""
        prepared = list(args)
        for i, abi_input in enumerate(artifact.constructor_inputs[:len(prepared)]):
            if abi_input.get("type") == "address" and isinstance(prepared[i], str):
                prepared[i] = Web3.to_checksum_address(prepared[i])
        return prepared

    def build_deployment(self, artifact: ContractArtifact, args: Sequence[Any]) -> Dict[str, Any]:
        contract = self.w3.eth.contract(abi=list(artifact.abi), bytecode=artifact.bytecode)
        return contract.constructor(*self._prepare_args(artifact, args)).build_transaction({
            'from': self.account.address,
            'nonce': self._next_nonce(),
            'gas': self.profile.gas_limit,
            'gasPrice': self._gas_price(),
            'chainId': self.profile.chain_id,
        })

    def submit_deployment(self, artifact: ContractArtifact, args: Sequence[Any]) -> str:
        """
        Build, sign and send a deployment transaction

        Args:
            artifact: Contract to deploy
            args: Materialized constructor arguments

        Returns:
            Transaction hash as a 0x-prefixed hex string
        """
        try:
            tx = self.build_deployment(artifact, args)
            signed = self.account.sign_transaction(tx)
            tx_hash = Web3.to_hex(self.w3.eth.send_raw_transaction(signed.raw_transaction))
        except TRANSPORT_ERRORS as e:
            raise TransactionError(f"Failed to submit {artifact.name}: {e}", contract=artifact.name) from e

        self._nonce = tx['nonce'] + 1
        self._gas_by_tx[tx_hash] = tx['gas']
        logger.info(f"{artifact.name} deployment sent: {tx_hash} (nonce {tx['nonce']}, gasPrice {tx['gasPrice']})")
        return tx_hash

    def wait_for_confirmation(self, tx_hash: str, contract: Optional[str] = None) -> Confirmation:
        try:
            receipt = self.w3.eth.wait_for_transaction_receipt(
                tx_hash,
                timeout=self.profile.confirmation_timeout,
                poll_latency=self.profile.poll_latency,
            )
        except TRANSPORT_ERRORS as e:
            raise TransactionError(f"No confirmation for {tx_hash}: {e}", contract=contract, tx_hash=tx_hash) from e

        if receipt['status'] != 1:
            gas_limit = self._gas_by_tx.get(tx_hash)
            if gas_limit is not None and receipt['gasUsed'] >= gas_limit:
                reason = f"ran out of gas (limit {gas_limit})"
            else:
                reason = "reverted"
            raise TransactionError(
                f"Deployment transaction {tx_hash} {reason} in block {receipt['blockNumber']}",
                contract=contract, tx_hash=tx_hash,
            )

        address = receipt.get('contractAddress')
        if not address:
            raise TransactionError(f"Receipt for {tx_hash} has no contract address", contract=contract, tx_hash=tx_hash)

        return Confirmation(
            address=address,
            tx_hash=tx_hash,
            block_number=receipt['blockNumber'],
            gas_used=receipt['gasUsed'],
        )


def predict_contract_address(sender: str, nonce: int) -> str:
    """CREATE address: last 20 bytes of keccak(rlp([sender, nonce]))"""
    encoded = rlp.encode([bytes.fromhex(sender[2:]), nonce])
    return Web3.to_checksum_address(Web3.keccak(encoded)[12:])


class DryRunClient(ChainClient):
    """
    Simulates deployments without sending transactions

    Gas is estimated against the live node and addresses are predicted from
    the signer's nonce, so later steps see the addresses they would get on a
    real run.
    """

    def __init__(self, w3: Web3, account: Any, profile: NetworkProfile):
        super().__init__(w3, account, profile)
        self._simulated: Dict[str, Confirmation] = {}

    def submit_deployment(self, artifact: ContractArtifact, args: Sequence[Any]) -> str:
        nonce = self._next_nonce()
        contract = self.w3.eth.contract(abi=list(artifact.abi), bytecode=artifact.bytecode)
        try:
            estimate = contract.constructor(*self._prepare_args(artifact, args)).estimate_gas({
                'from': self.account.address,
            })
        except TRANSPORT_ERRORS as e:
            raise TransactionError(f"Gas estimate failed for {artifact.name}: {e}", contract=artifact.name) from e

        if estimate > self.profile.gas_limit:
            raise TransactionError(
                f"{artifact.name} needs {estimate} gas, above the network gasLimit of {self.profile.gas_limit}",
                contract=artifact.name,
            )

        tx_hash = f"dry-run:{nonce}"
        self._simulated[tx_hash] = Confirmation(
            address=predict_contract_address(self.account.address, nonce),
            tx_hash=tx_hash,
            block_number=None,
            gas_used=estimate,
        )
        self._nonce = nonce + 1
        logger.info(f"[dry run] {artifact.name}: estimated {estimate} gas")
        return tx_hash

    def wait_for_confirmation(self, tx_hash: str, contract: Optional[str] = None) -> Confirmation:
        return self._simulated[tx_hash]


def connect(profile: NetworkProfile, dry_run: bool = False) -> ChainClient:
    """Open the profile's connection and check it reaches the configured chain"""
    w3 = Web3(Web3.HTTPProvider(profile.endpoint_url, request_kwargs={'timeout': 30}))
    if profile.poa:
        # Avalanche and other PoA chains carry extraData longer than 32 bytes
        w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)

    if not w3.is_connected():
        raise TransactionError(f"Could not connect to RPC URL: {profile.endpoint_url}")

    try:
        node_chain_id = w3.eth.chain_id
    except TRANSPORT_ERRORS as e:
        raise TransactionError(f"Could not read chain id from {profile.endpoint_url}: {e}") from e
    if node_chain_id != profile.chain_id:
        raise ConfigurationError(
            f"Network '{profile.name}' expects chainId {profile.chain_id} but the node reports {node_chain_id}"
        )

    try:
        account = w3.eth.account.from_key(resolve_signing_key(profile.signing_key_source))
    except ValueError as e:
        raise ConfigurationError(f"Invalid signing key for network '{profile.name}': {e}") from e

    logger.info(f"Connected to {profile.endpoint_url} as {account.address}")
    client_class = DryRunClient if dry_run else ChainClient
    return client_class(w3, account, profile)
