"""
Web3 adapter for a deployed pool contract.

Implements both ``LedgerClient`` and ``EventSource`` over JSON-RPC. Read
calls and log queries are retried with backoff on transport failures;
submissions are not, since a resent transaction is not idempotent.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar

from web3 import Web3
from web3.exceptions import ContractLogicError, Web3Exception

from ..crypto.hashing import HashDomainParams
from ..errors import LedgerError, RetryPolicy
from ..pool.config import PoolParameters
from ..pool.ext_data import ZERO_ADDRESS, ExtData, proof_args
from ..pool.interfaces import (
    CommitmentEvent,
    EventSource,
    LedgerClient,
    NullifierEvent,
    ProofArtifact,
    SubmissionReceipt,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

PROOF_COMPONENTS = [
    {"name": "proof", "type": "bytes"},
    {"name": "root", "type": "bytes32"},
    {"name": "inputNullifiers", "type": "bytes32[]"},
    {"name": "outputCommitments", "type": "bytes32[2]"},
    {"name": "publicAmount", "type": "uint256"},
    {"name": "extDataHash", "type": "bytes32"},
]

EXT_DATA_COMPONENTS = [
    {"name": "recipient", "type": "address"},
    {"name": "extAmount", "type": "int256"},
    {"name": "relayer", "type": "address"},
    {"name": "fee", "type": "uint256"},
    {"name": "encryptedOutput1", "type": "bytes"},
    {"name": "encryptedOutput2", "type": "bytes"},
    {"name": "isL1Withdrawal", "type": "bool"},
    {"name": "l1Fee", "type": "uint256"},
]


def _view(name: str, output: str, inputs: Optional[List[Dict[str, str]]] = None) -> Dict[str, Any]:
    return {
        "type": "function",
        "name": name,
        "stateMutability": "view",
        "inputs": inputs or [],
        "outputs": [{"name": "", "type": output}],
    }


POOL_ABI: List[Dict[str, Any]] = [
    _view("getLastRoot", "bytes32"),
    _view("isSpent", "bool", [{"name": "_nullifierHash", "type": "bytes32"}]),
    _view("levels", "uint32"),
    _view("minimalWithdrawalAmount", "uint256"),
    _view("maximumDepositAmount", "uint256"),
    _view("ZERO_VALUE", "uint256"),
    _view("zeros", "bytes32", [{"name": "i", "type": "uint256"}]),
    {
        "type": "function",
        "name": "transact",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "_args", "type": "tuple", "components": PROOF_COMPONENTS},
            {"name": "_extData", "type": "tuple", "components": EXT_DATA_COMPONENTS},
        ],
        "outputs": [],
    },
    {
        "type": "event",
        "name": "NewCommitment",
        "anonymous": False,
        "inputs": [
            {"name": "commitment", "type": "bytes32", "indexed": False},
            {"name": "index", "type": "uint256", "indexed": False},
            {"name": "encryptedOutput", "type": "bytes", "indexed": False},
        ],
    },
    {
        "type": "event",
        "name": "NewNullifier",
        "anonymous": False,
        "inputs": [{"name": "nullifier", "type": "bytes32", "indexed": False}],
    },
]

EVENT_SIGNATURES = {
    "NewCommitment": "NewCommitment(bytes32,uint256,bytes)",
    "NewNullifier": "NewNullifier(bytes32)",
}


@dataclass
class Web3PoolConfig:
    """Configuration for the web3 pool adapter."""

    rpc_url: str = "http://127.0.0.1:8545"
    contract_address: str = ZERO_ADDRESS
    sender: Optional[str] = None
    deployment_block: int = 0
    receipt_timeout: int = 120
    gas_limit: Optional[int] = None
    # domain the deployed hasher implements, reported as-is when set
    hash_domain: Optional[HashDomainParams] = None


class Web3PoolContract(LedgerClient, EventSource):
    """Pool ledger and event log backed by a web3 provider."""

    def __init__(
        self,
        config: Web3PoolConfig,
        web3: Optional[Web3] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.config = config
        self.web3 = web3 or Web3(Web3.HTTPProvider(config.rpc_url))
        self.retry_policy = retry_policy or RetryPolicy()
        self.contract = self.web3.eth.contract(
            address=Web3.to_checksum_address(config.contract_address), abi=POOL_ABI
        )
        self._topics = {
            name: Web3.to_hex(Web3.keccak(text=signature))
            for name, signature in EVENT_SIGNATURES.items()
        }

    async def _call(self, description: str, func: Callable[..., T], *args: Any, retry: bool = True) -> T:
        async def attempt() -> T:
            try:
                return await asyncio.to_thread(func, *args)
            except ContractLogicError:
                raise
            except (Web3Exception, OSError, TimeoutError) as e:
                raise LedgerError(
                    f"{description} failed: {e}", endpoint=self.config.rpc_url, cause=e
                )

        if not retry:
            return await attempt()
        return await self.retry_policy.run(attempt)

    async def get_last_root(self) -> int:
        raw = await self._call("getLastRoot", self.contract.functions.getLastRoot().call)
        return int.from_bytes(raw, "big")

    async def is_spent(self, nullifier: int) -> bool:
        fn = self.contract.functions.isSpent(nullifier.to_bytes(32, "big"))
        return bool(await self._call("isSpent", fn.call))

    async def get_parameters(self) -> PoolParameters:
        """
        Read the deployment's parameters.

        The hasher's round constants are not observable on chain, so the
        hash domain is checked through ``zeros(1)``, the contract's hash of
        two zero leaves. ``hash_domain`` itself is reported only when the
        adapter is configured with it.
        """
        functions = self.contract.functions
        zero_node = await self._call("zeros", functions.zeros(1).call)
        return PoolParameters(
            tree_height=int(await self._call("levels", functions.levels().call)),
            min_withdraw=int(
                await self._call("minimalWithdrawalAmount", functions.minimalWithdrawalAmount().call)
            ),
            max_deposit=int(
                await self._call("maximumDepositAmount", functions.maximumDepositAmount().call)
            ),
            zero_value=int(await self._call("ZERO_VALUE", functions.ZERO_VALUE().call)),
            zero_node=int.from_bytes(zero_node, "big"),
            hash_domain=self.config.hash_domain,
        )

    def _get_logs(self, event_name: str, from_block: int) -> List[Any]:
        event = getattr(self.contract.events, event_name)()
        logs = self.web3.eth.get_logs(
            {
                "address": self.contract.address,
                "fromBlock": max(from_block, self.config.deployment_block),
                "toBlock": "latest",
                "topics": [self._topics[event_name]],
            }
        )
        decoded = [event.process_log(log) for log in logs]
        return sorted(decoded, key=lambda e: (e["blockNumber"], e["logIndex"]))

    async def fetch_commitments(self, from_block: int = 0) -> Sequence[CommitmentEvent]:
        logs = await self._call("NewCommitment logs", self._get_logs, "NewCommitment", from_block)
        return [
            CommitmentEvent(
                commitment=int.from_bytes(log["args"]["commitment"], "big"),
                index=int(log["args"]["index"]),
                encrypted_output=bytes(log["args"]["encryptedOutput"]),
                block_number=log["blockNumber"],
            )
            for log in logs
        ]

    async def fetch_nullifiers(self, from_block: int = 0) -> Sequence[NullifierEvent]:
        logs = await self._call("NewNullifier logs", self._get_logs, "NewNullifier", from_block)
        return [
            NullifierEvent(
                nullifier=int.from_bytes(log["args"]["nullifier"], "big"),
                block_number=log["blockNumber"],
            )
            for log in logs
        ]

    def _send(self, fn: Any) -> SubmissionReceipt:
        tx: Dict[str, Any] = {}
        if self.config.sender:
            tx["from"] = Web3.to_checksum_address(self.config.sender)
        if self.config.gas_limit:
            tx["gas"] = self.config.gas_limit

        tx_hash = fn.transact(tx)
        receipt = self.web3.eth.wait_for_transaction_receipt(
            tx_hash, timeout=self.config.receipt_timeout
        )
        return SubmissionReceipt(
            success=receipt["status"] == 1,
            tx_hash=Web3.to_hex(tx_hash),
            block_number=receipt["blockNumber"],
            error=None if receipt["status"] == 1 else "Transaction reverted",
            metadata={"gas_used": receipt.get("gasUsed")},
        )

    async def submit(self, proof: ProofArtifact, witness: Any, ext_data: ExtData) -> SubmissionReceipt:
        args = proof_args(
            proof.proof,
            witness.root,
            witness.nullifiers,
            witness.commitments,
            witness.public_amount,
            witness.ext_data_hash,
        )
        fn = self.contract.functions.transact(args, ext_data.as_tuple())
        try:
            receipt = await self._call("transact", self._send, fn, retry=False)
        except ContractLogicError as e:
            logger.warning(f"Pool contract rejected transaction: {e}")
            return SubmissionReceipt(success=False, error=str(e))

        logger.info(f"Submitted {receipt.tx_hash} (success={receipt.success})")
        return receipt
