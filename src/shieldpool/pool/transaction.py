"""
Transaction building for the shielded pool.

A build runs through five stages:

    VALIDATE -> COLLECT_INPUTS -> RESOLVE_PROOFS -> BUILD_OUTPUTS -> ASSEMBLE_WITNESS

and returns the witness bundle for the external prover together with the
note state transitions the build implies. The builder never proves or
submits; the caller reports the outcome through ``mark_submitted``,
``confirm``, ``fail`` or ``abort`` so the note store stays consistent.
"""

import logging
import threading
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from ..crypto.hashing import PoseidonHasher
from ..crypto.merkle import MerkleAccumulator, MerkleProof
from ..errors import (
    AmountOutOfRangeError,
    BuildStage,
    InsufficientFundsError,
    InvalidWitnessError,
    MissingSpendingKeyError,
    NoteStateError,
    ShieldPoolError,
    StaleNoteError,
)
from ..logging import get_logger
from ..wallet.keypair import Keypair, parse_address
from .config import MAX_AMOUNT, MAX_FEE, PoolConfig
from .ext_data import ZERO_ADDRESS, ExtData
from .note import Note
from .note_store import NoteState, NoteStore

logger = logging.getLogger(__name__)


@dataclass
class TransactionRequest:
    """
    What a transaction should do.

    ``amount`` is shielded value sent to ``recipient`` (a keypair, an
    address, or ``None`` for the sender). ``deposit`` enters the pool from
    outside; ``withdraw`` leaves it to ``withdraw_recipient``. The relayer
    ``fee`` is paid out of the pool.
    """

    amount: int = 0
    recipient: Optional[Union[Keypair, str]] = None
    deposit: int = 0
    withdraw: int = 0
    fee: int = 0
    withdraw_recipient: str = ZERO_ADDRESS
    relayer: str = ZERO_ADDRESS
    is_l1_withdrawal: bool = False
    l1_fee: int = 0

    def __post_init__(self):
        for name in ("amount", "deposit", "withdraw", "fee", "l1_fee"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"{name} must be an integer")
            if value < 0:
                raise ValueError(f"{name} cannot be negative")

        if self.deposit and self.withdraw:
            raise ValueError("A transaction cannot both deposit and withdraw")

        if self.withdraw and int(self.withdraw_recipient, 16) == 0:
            raise ValueError("Withdrawal requires a recipient address")

        if isinstance(self.recipient, str):
            parse_address(self.recipient)

    @property
    def ext_amount(self) -> int:
        """Signed external amount: positive deposits, negative withdraws."""
        return self.deposit - self.withdraw

    @property
    def required_input(self) -> int:
        """Value the selected input notes must cover."""
        return max(self.amount + self.withdraw + self.fee - self.deposit, 0)


@dataclass
class InputWitness:
    """A spent note with its nullifier and inclusion path."""

    note: Note
    nullifier: int
    path_elements: Tuple[int, ...]
    path_indices: Tuple[int, ...]

    @classmethod
    def from_proof(cls, note: Note, proof: MerkleProof) -> "InputWitness":
        return cls(
            note=note,
            nullifier=note.nullifier(proof.index),
            path_elements=tuple(proof.path_elements),
            path_indices=tuple(proof.path_indices),
        )

    @classmethod
    def padding(cls, keypair: Keypair, height: int) -> "InputWitness":
        """Zero-amount input at index 0 with an all-zero path."""
        note = Note.zero(keypair).with_index(0)
        return cls(
            note=note,
            nullifier=note.nullifier(0),
            path_elements=(0,) * height,
            path_indices=(0,) * height,
        )

    @property
    def path_index(self) -> int:
        return sum(bit << level for level, bit in enumerate(self.path_indices))


@dataclass
class OutputWitness:
    """A freshly created note with its commitment and encrypted payload."""

    note: Note
    commitment: int
    encrypted_output: bytes

    @classmethod
    def create(cls, note: Note) -> "OutputWitness":
        return cls(note=note, commitment=note.commitment(), encrypted_output=note.encrypt())


@dataclass
class TransactionWitness:
    """Private and public inputs handed to the prover."""

    root: int
    inputs: List[InputWitness]
    outputs: List[OutputWitness]
    ext_amount: int
    fee: int
    public_amount: int
    ext_data: ExtData
    ext_data_hash: int

    @property
    def nullifiers(self) -> List[int]:
        return [i.nullifier for i in self.inputs]

    @property
    def commitments(self) -> List[int]:
        return [o.commitment for o in self.outputs]

    @property
    def input_total(self) -> int:
        return sum(i.note.amount for i in self.inputs)

    @property
    def output_total(self) -> int:
        return sum(o.note.amount for o in self.outputs)

    @property
    def external_deposit(self) -> int:
        return max(self.ext_amount, 0)

    @property
    def external_withdraw(self) -> int:
        return max(-self.ext_amount, 0) + self.fee

    def is_balanced(self) -> bool:
        """sum(outputs) + withdrawn == sum(inputs) + deposited."""
        return (
            self.output_total + self.external_withdraw
            == self.input_total + self.external_deposit
        )

    @property
    def public_signals(self) -> List[int]:
        return [
            self.root,
            self.public_amount,
            self.ext_data_hash,
            *self.nullifiers,
            *self.commitments,
        ]

    def to_circuit_input(self) -> Dict[str, Any]:
        """Named prover inputs as decimal strings."""
        return {
            "root": str(self.root),
            "inputNullifier": [str(n) for n in self.nullifiers],
            "outputCommitment": [str(c) for c in self.commitments],
            "publicAmount": str(self.public_amount),
            "extDataHash": str(self.ext_data_hash),
            "inAmount": [str(i.note.amount) for i in self.inputs],
            "inPrivateKey": [str(i.note.keypair.spending_key) for i in self.inputs],
            "inBlinding": [str(i.note.blinding) for i in self.inputs],
            "inPathIndices": [str(i.path_index) for i in self.inputs],
            "inPathElements": [[str(e) for e in i.path_elements] for i in self.inputs],
            "outAmount": [str(o.note.amount) for o in self.outputs],
            "outBlinding": [str(o.note.blinding) for o in self.outputs],
            "outPubkey": [str(o.note.owner_public_key) for o in self.outputs],
        }

    def to_dict(self) -> Dict[str, Any]:
        """Public view of the witness; never includes private inputs."""
        return {
            "root": hex(self.root),
            "public_amount": hex(self.public_amount),
            "ext_data_hash": hex(self.ext_data_hash),
            "nullifiers": [hex(n) for n in self.nullifiers],
            "commitments": [hex(c) for c in self.commitments],
            "ext_data": self.ext_data.to_dict(),
        }


@dataclass(frozen=True)
class NoteTransition:
    """A note state change to apply once the transaction settles."""

    commitment: int
    before: Optional[NoteState]
    after: NoteState


@dataclass
class BuildResult:
    """Witness bundle plus the note bookkeeping it implies."""

    build_id: str
    witness: TransactionWitness
    transitions: List[NoteTransition] = field(default_factory=list)
    spent_notes: List[Note] = field(default_factory=list)
    owned_outputs: List[Note] = field(default_factory=list)


def select_notes(notes: Sequence[Note], target: int, max_count: int) -> List[Note]:
    """
    Choose the fewest notes covering ``target``.

    Largest notes are taken until a single remaining note covers what is
    left; the final slot takes the smallest such note so change is minimal.
    Ties order by leaf index, then commitment.
    """
    if target <= 0:
        return []

    candidates = sorted(
        (n for n in notes if n.amount > 0),
        key=lambda n: (-n.amount, n.index, n.commitment()),
    )
    available = sum(n.amount for n in candidates)
    if sum(n.amount for n in candidates[:max_count]) < target:
        raise InsufficientFundsError(
            f"Cannot cover {target} with at most {max_count} notes",
            required=target,
            available=available,
        )

    selected: List[Note] = []
    remaining = target
    pool = candidates
    while True:
        covering = [n for n in pool if n.amount >= remaining]
        if covering:
            selected.append(min(covering, key=lambda n: (n.amount, n.index, n.commitment())))
            return selected
        selected.append(pool[0])
        remaining -= pool[0].amount
        pool = pool[1:]


class TransactionBuilder:
    """Builds witness bundles against the local note store."""

    def __init__(
        self,
        config: PoolConfig,
        keypair: Keypair,
        store: NoteStore,
        hasher: Optional[PoseidonHasher] = None,
    ):
        self.config = config
        self.keypair = keypair
        self.store = store
        self.hasher = hasher or keypair.hasher
        self._log = get_logger(__name__, component="builder")
        self._lock = threading.Lock()
        self._in_flight: Dict[str, BuildResult] = {}
        self._submitted: set = set()

    def build(
        self,
        request: TransactionRequest,
        tree: MerkleAccumulator,
        expected_root: Optional[int] = None,
    ) -> BuildResult:
        """
        Run a build to completion.

        Reserved notes are released if any stage fails; the raised error
        carries the stage it failed in.
        """
        build_id = uuid.uuid4().hex
        log = self._log.bind(build_id=build_id)
        stage = BuildStage.VALIDATE

        try:
            log.bind(stage=stage.value).debug("Validating request")
            self._validate(request)

            stage = BuildStage.COLLECT_INPUTS
            selected = self._collect_inputs(request, build_id)
            input_count = self.config.input_count_for(len(selected))
            log.bind(stage=stage.value).info(
                f"Selected {len(selected)} notes for a {input_count}-input circuit"
            )

            stage = BuildStage.RESOLVE_PROOFS
            if expected_root is not None:
                tree.verify_root(expected_root, stage=stage)
            inputs = self._resolve_proofs(selected, tree)
            while len(inputs) < input_count:
                inputs.append(InputWitness.padding(self.keypair, tree.height))

            stage = BuildStage.BUILD_OUTPUTS
            outputs = self._build_outputs(request, selected)

            stage = BuildStage.ASSEMBLE_WITNESS
            witness = self._assemble(request, tree, inputs, outputs)
        except ShieldPoolError as e:
            if e.stage is None:
                e.stage = stage
            self.store.release(build_id)
            log.bind(stage=stage.value).warning(f"Build failed: {e.message}")
            raise
        except Exception:
            self.store.release(build_id)
            raise

        result = BuildResult(
            build_id=build_id,
            witness=witness,
            spent_notes=list(selected),
            owned_outputs=[
                o.note
                for o in outputs
                if o.note.amount > 0 and o.note.owner_public_key == self.keypair.public_key
            ],
        )
        result.transitions = [
            NoteTransition(n.commitment(), NoteState.UNSPENT, NoteState.PENDING_SPENT)
            for n in result.spent_notes
        ] + [
            NoteTransition(n.commitment(), None, NoteState.PENDING)
            for n in result.owned_outputs
        ]

        with self._lock:
            self._in_flight[build_id] = result
        log.info(
            f"Assembled witness: {len(witness.inputs)} inputs, "
            f"{len(witness.outputs)} outputs, ext amount {witness.ext_amount}"
        )
        return result

    def validate(self, request: TransactionRequest) -> None:
        """
        Check ``request`` against the key and pool bounds.

        Touches neither the note store nor the tree, so it can run before any
        ledger work. Raises the errors ``build`` raises in its VALIDATE stage.
        """
        try:
            self._validate(request)
        except ShieldPoolError as e:
            if e.stage is None:
                e.stage = BuildStage.VALIDATE
            self._log.bind(stage=BuildStage.VALIDATE.value).warning(
                f"Request rejected: {e.message}"
            )
            raise

    def _validate(self, request: TransactionRequest) -> None:
        if not self.keypair.can_spend:
            raise MissingSpendingKeyError("Building a transaction requires a spending key")

        if request.deposit > self.config.max_deposit:
            raise AmountOutOfRangeError(
                f"Deposit {request.deposit} exceeds the maximum {self.config.max_deposit}",
                amount=request.deposit,
                bound=self.config.max_deposit,
            )

        if request.withdraw and request.withdraw < self.config.min_withdraw:
            raise AmountOutOfRangeError(
                f"Withdrawal {request.withdraw} is below the minimum {self.config.min_withdraw}",
                amount=request.withdraw,
                bound=self.config.min_withdraw,
            )

        for name in ("amount", "deposit", "withdraw"):
            value = getattr(request, name)
            if value >= MAX_AMOUNT:
                raise AmountOutOfRangeError(
                    f"{name} exceeds the amount range", amount=value, bound=MAX_AMOUNT
                )

        if request.fee >= MAX_FEE:
            raise AmountOutOfRangeError(
                "Fee exceeds the fee range", amount=request.fee, bound=MAX_FEE
            )

    def _collect_inputs(self, request: TransactionRequest, build_id: str) -> List[Note]:
        selected = select_notes(
            self.store.unspent(), request.required_input, self.config.max_inputs
        )
        if not selected:
            return selected

        try:
            self.store.reserve([n.commitment() for n in selected], build_id)
        except NoteStateError as e:
            # a concurrent build reserved part of our snapshot; reselect once
            logger.info(f"Build {build_id} reselecting inputs: {e.message}")
            selected = select_notes(
                self.store.unspent(), request.required_input, self.config.max_inputs
            )
            if selected:
                self.store.reserve([n.commitment() for n in selected], build_id)
        return selected

    def _resolve_proofs(
        self, selected: Sequence[Note], tree: MerkleAccumulator
    ) -> List[InputWitness]:
        inputs = []
        for note in selected:
            commitment = note.commitment()
            index = tree.index_of(commitment)
            if index is None:
                raise StaleNoteError(
                    "Note commitment is not in the tree", commitment=commitment
                )
            if note.index is not None and note.index != index:
                raise StaleNoteError(
                    f"Note recorded at index {note.index} but found at {index}",
                    commitment=commitment,
                )
            inputs.append(InputWitness.from_proof(note, tree.proof(index)))
        return inputs

    def _recipient_keypair(self, recipient: Optional[Union[Keypair, str]]) -> Keypair:
        if recipient is None:
            return self.keypair
        if isinstance(recipient, Keypair):
            return recipient
        return Keypair.from_address(recipient, hasher=self.hasher)

    def _build_outputs(
        self, request: TransactionRequest, selected: Sequence[Note]
    ) -> List[OutputWitness]:
        input_total = sum(n.amount for n in selected)
        change = (
            input_total + request.deposit - request.amount - request.withdraw - request.fee
        )
        if change < 0:
            raise InsufficientFundsError(
                "Selected inputs do not cover the outputs",
                required=request.required_input,
                available=input_total,
            )

        notes = [
            Note(request.amount, self._recipient_keypair(request.recipient)),
            Note(change, self.keypair),
        ]
        return [OutputWitness.create(n) for n in notes]

    def _assemble(
        self,
        request: TransactionRequest,
        tree: MerkleAccumulator,
        inputs: List[InputWitness],
        outputs: List[OutputWitness],
    ) -> TransactionWitness:
        nullifiers = [i.nullifier for i in inputs]
        if len(set(nullifiers)) != len(nullifiers):
            raise InvalidWitnessError("Duplicate nullifier in transaction inputs")

        ext_amount = request.fee + sum(o.note.amount for o in outputs) - sum(
            i.note.amount for i in inputs
        )
        if ext_amount != request.ext_amount:
            raise InvalidWitnessError(
                f"External amount {ext_amount} does not match the request "
                f"({request.ext_amount})"
            )

        ext_data = ExtData(
            recipient=request.withdraw_recipient,
            ext_amount=ext_amount,
            relayer=request.relayer,
            fee=request.fee,
            encrypted_output1=outputs[0].encrypted_output,
            encrypted_output2=outputs[1].encrypted_output,
            is_l1_withdrawal=request.is_l1_withdrawal,
            l1_fee=request.l1_fee,
        )
        witness = TransactionWitness(
            root=tree.root(),
            inputs=inputs,
            outputs=outputs,
            ext_amount=ext_amount,
            fee=request.fee,
            public_amount=(ext_amount - request.fee) % self.hasher.modulus,
            ext_data=ext_data,
            ext_data_hash=ext_data.hash(),
        )
        if not witness.is_balanced():
            raise InvalidWitnessError("Witness violates the zero-sum law")
        return witness

    def in_flight(self) -> List[str]:
        """Build ids whose outcome has not been reported yet."""
        with self._lock:
            return list(self._in_flight)

    def result_for(self, build_id: str) -> BuildResult:
        with self._lock:
            if build_id not in self._in_flight:
                raise NoteStateError(f"Unknown build {build_id}")
            return self._in_flight[build_id]

    def _pop(self, result: BuildResult) -> None:
        with self._lock:
            self._in_flight.pop(result.build_id, None)
            self._submitted.discard(result.build_id)

    def mark_submitted(self, result: BuildResult) -> None:
        """The witness went to the prover: inputs are pending spent, outputs pending."""
        self.result_for(result.build_id)
        with self._lock:
            if result.build_id in self._submitted:
                return
            self._submitted.add(result.build_id)

        if result.spent_notes:
            self.store.mark_pending_spent(result.build_id)
        for note in result.owned_outputs:
            self.store.add_pending_output(note, result.build_id)
        logger.debug(f"Build {result.build_id} submitted")

    def confirm(self, result: BuildResult) -> None:
        """The ledger accepted the transaction."""
        self.store.confirm(result.build_id)
        self._pop(result)
        logger.info(f"Build {result.build_id} confirmed")

    def fail(self, result: BuildResult) -> None:
        """The proof or submission failed after the build was handed off."""
        with self._lock:
            submitted = result.build_id in self._submitted
        if submitted:
            self.store.fail(result.build_id)
        else:
            self.store.release(result.build_id)
        self._pop(result)

    def abort(self, result: BuildResult) -> None:
        """Abandon a build that was never handed off."""
        with self._lock:
            if result.build_id in self._submitted:
                raise NoteStateError(
                    f"Build {result.build_id} was submitted; report confirm or fail instead",
                    stage=BuildStage.SUBMIT,
                )
        self.store.release(result.build_id)
        self._pop(result)
        logger.debug(f"Build {result.build_id} aborted")
