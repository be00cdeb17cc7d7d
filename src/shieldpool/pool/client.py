"""
Shielded pool client.

Ties the core together: sync rebuilds the accumulator from the ledger's
commitment log and scans it for owned notes, ``transact`` builds a witness,
hands it to the prover, submits the proof and settles the note store.
"""

import asyncio
import logging
from typing import List, Optional, Union

from ..crypto.merkle import MerkleAccumulator
from ..errors import BuildStage, ShieldPoolError, SubmissionError
from ..wallet.keypair import Keypair
from .config import PoolConfig
from .ext_data import ZERO_ADDRESS, AbiBridgeEncoder
from .interfaces import (
    BridgeEncoder,
    EventSource,
    LedgerClient,
    ProofArtifact,
    Prover,
    SubmissionReceipt,
)
from .note import Note
from .note_store import NoteState, NoteStore
from .transaction import TransactionBuilder, TransactionRequest, TransactionWitness

logger = logging.getLogger(__name__)


class ShieldedPoolClient:
    """Client for one keypair's view of a pool."""

    def __init__(
        self,
        config: PoolConfig,
        keypair: Keypair,
        ledger: LedgerClient,
        events: EventSource,
        prover: Prover,
        store: Optional[NoteStore] = None,
        bridge: Optional[BridgeEncoder] = None,
    ):
        self.config = config
        self.keypair = keypair
        self.ledger = ledger
        self.events = events
        self.prover = prover
        self.store = store or NoteStore()
        self.bridge = bridge or AbiBridgeEncoder()
        self.hasher = keypair.hasher
        self.builder = TransactionBuilder(config, keypair, self.store, self.hasher)
        self.tree: Optional[MerkleAccumulator] = None
        self._sync_lock = asyncio.Lock()
        self._config_checked = False

    async def check_config(self) -> None:
        """Fail with ``ConfigMismatchError`` unless the ledger agrees with our config."""
        parameters = await self.ledger.get_parameters()
        self.config.check_against(parameters)
        self._config_checked = True

    async def sync(self) -> MerkleAccumulator:
        """
        Rebuild the tree from the commitment log and refresh owned notes.

        Raises:
            TreeDesyncError: the rebuilt root differs from the ledger's
        """
        async with self._sync_lock:
            events = list(await self.events.fetch_commitments())
            expected_root = await self.ledger.get_last_root()

            tree = await asyncio.to_thread(
                MerkleAccumulator.from_events,
                events,
                self.config.tree_height,
                self.hasher,
                self.config.zero_value,
                expected_root,
            )

            spent = {e.nullifier for e in await self.events.fetch_nullifiers()}
            found = 0
            for event in events:
                if not event.encrypted_output:
                    continue
                note = Note.decode(event.encrypted_output, self.keypair, index=event.index)
                if note is None or note.amount == 0:
                    continue
                if note.commitment() != event.commitment:
                    logger.warning(
                        f"Decrypted output at index {event.index} does not match its commitment"
                    )
                    continue
                found += 1
                await self._record(note, spent)

            self.tree = tree
            logger.info(f"Synced {len(events)} commitments, {found} owned notes")
            return tree

    async def _record(self, note: Note, spent: set) -> None:
        record = self.store.get(note.commitment())
        if record is not None and record.state == NoteState.SPENT:
            return

        if self.keypair.can_spend:
            nullifier = note.nullifier()
            if nullifier in spent or await self.ledger.is_spent(nullifier):
                if record is None:
                    return
                if record.state == NoteState.PENDING:
                    self.store.add_unspent(note)
                self.store.mark_spent(note.commitment())
                return

        self.store.add_unspent(note)

    def _abort_orphaned_build(self, build: "asyncio.Future") -> None:
        if build.cancelled() or build.exception() is not None:
            return
        result = build.result()
        self.builder.abort(result)
        logger.warning(f"Aborted build {result.build_id} after its transaction was cancelled")

    async def transact(self, request: TransactionRequest) -> SubmissionReceipt:
        """
        Build, prove and submit a transaction.

        The request is validated before any ledger call. A call cancelled
        while the witness is being built aborts that build once it finishes,
        releasing its inputs. Once the prover has been invoked the build can
        only settle through confirm or fail; a cancelled call then leaves its
        inputs pending spent until the next sync sees their nullifiers or the
        caller reports the outcome with ``settle``.
        """
        self.builder.validate(request)
        if not self._config_checked:
            await self.check_config()
        tree = await self.sync()

        build = asyncio.ensure_future(asyncio.to_thread(self.builder.build, request, tree))
        try:
            result = await asyncio.shield(build)
        except asyncio.CancelledError:
            build.add_done_callback(self._abort_orphaned_build)
            raise
        self.builder.mark_submitted(result)

        try:
            proof = await self.prover.prove(result.witness)
        except Exception as e:
            if isinstance(e, ShieldPoolError) and e.stage is None:
                e.stage = BuildStage.PROVE
            logger.error(f"Prover rejected build {result.build_id}: {e}")
            self.builder.fail(result)
            raise

        try:
            receipt = await self.ledger.submit(proof, result.witness, result.witness.ext_data)
        except Exception:
            self.builder.fail(result)
            raise

        if not receipt.success:
            self.builder.fail(result)
            raise SubmissionError(
                f"Ledger rejected transaction: {receipt.error}",
                tx_hash=receipt.tx_hash,
                metadata={"build_id": result.build_id},
            )

        self.builder.confirm(result)
        logger.info(f"Transaction {receipt.tx_hash} settled build {result.build_id}")
        return receipt

    async def deposit(self, amount: int) -> SubmissionReceipt:
        """Shield ``amount`` from outside the pool to ourselves."""
        return await self.transact(TransactionRequest(deposit=amount))

    async def transfer(
        self,
        amount: int,
        recipient: Union[Keypair, str],
        fee: int = 0,
        relayer: Optional[str] = None,
    ) -> SubmissionReceipt:
        return await self.transact(
            TransactionRequest(
                amount=amount,
                recipient=recipient,
                fee=fee,
                relayer=relayer or ZERO_ADDRESS,
            )
        )

    async def withdraw(
        self,
        amount: int,
        recipient: str,
        fee: int = 0,
        relayer: Optional[str] = None,
        is_l1_withdrawal: bool = False,
        l1_fee: int = 0,
    ) -> SubmissionReceipt:
        """Unshield ``amount`` to the external ``recipient`` address."""
        return await self.transact(
            TransactionRequest(
                withdraw=amount,
                withdraw_recipient=recipient,
                fee=fee,
                relayer=relayer or ZERO_ADDRESS,
                is_l1_withdrawal=is_l1_withdrawal,
                l1_fee=l1_fee,
            )
        )

    def balance(self, include_pending: bool = False) -> int:
        return self.store.balance(include_pending=include_pending)

    def unspent_notes(self) -> List[Note]:
        return self.store.unspent()

    def bridge_payload(self, proof: Union[ProofArtifact, bytes], witness: TransactionWitness) -> bytes:
        """Encode a proven transaction for cross-domain relay."""
        raw = proof.proof if isinstance(proof, ProofArtifact) else proof
        return self.bridge.encode(raw, witness)

    def pending_builds(self) -> List[str]:
        return self.builder.in_flight()

    def settle(self, build_id: str, success: bool) -> None:
        """Report the outcome of a build whose submission was interrupted."""
        result = self.builder.result_for(build_id)
        if success:
            self.builder.confirm(result)
        else:
            self.builder.fail(result)
