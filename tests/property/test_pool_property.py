"""
Property-based tests for the pool core.

This module uses Hypothesis to check the accumulator, note selection and
witness assembly against randomly generated inputs.
"""

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st
from hypothesis.stateful import RuleBasedStateMachine, invariant, precondition, rule

from shieldpool.crypto.hashing import FIELD_SIZE
from shieldpool.crypto.merkle import MerkleAccumulator
from shieldpool.errors import InsufficientFundsError, NoteStateError
from shieldpool.pool.config import PoolConfig
from shieldpool.pool.note import Note
from shieldpool.pool.note_store import NoteState, NoteStore
from shieldpool.pool.transaction import TransactionBuilder, TransactionRequest, select_notes
from shieldpool.wallet.keypair import Keypair

OWNER = Keypair.generate(b"property-owner")
RECIPIENT = Keypair.generate(b"property-recipient")
HEIGHT = 4

leaves = st.lists(st.integers(min_value=0, max_value=FIELD_SIZE - 1), max_size=6)
amounts = st.lists(st.integers(min_value=0, max_value=1000), min_size=1, max_size=12)


class TestAccumulatorProperties:
    """Property-based tests for the Merkle accumulator."""

    @given(values=leaves)
    @settings(max_examples=15, deadline=None)
    def test_insert_matches_rebuild(self, values):
        """Incremental insertion and a full rebuild agree on the root."""
        tree = MerkleAccumulator(HEIGHT)
        for value in values:
            tree.insert(value)
        assert tree.root() == MerkleAccumulator.rebuild(values, HEIGHT).root()

    @given(values=leaves.filter(bool))
    @settings(max_examples=10, deadline=None)
    def test_every_proof_verifies(self, values):
        tree = MerkleAccumulator(HEIGHT)
        tree.bulk_insert(values)
        for index, value in enumerate(values):
            proof = tree.proof(index)
            assert proof.leaf == value
            assert proof.path_index == index
            assert proof.compute_root() == tree.root()


class TestSelectionProperties:
    """Property-based tests for input selection."""

    def _notes(self, values):
        return [Note(a, OWNER, index=i) for i, a in enumerate(values)]

    @given(values=amounts, data=st.data())
    @settings(max_examples=25, deadline=None)
    def test_selection_covers_target(self, values, data):
        notes = self._notes(values)
        max_count = data.draw(st.sampled_from([2, 16]))
        target = data.draw(st.integers(min_value=1, max_value=max(sum(values), 1)))
        reachable = sum(sorted(values, reverse=True)[:max_count])

        if reachable < target:
            with pytest.raises(InsufficientFundsError):
                select_notes(notes, target, max_count)
            return

        selected = select_notes(notes, target, max_count)
        assert sum(n.amount for n in selected) >= target
        assert 1 <= len(selected) <= max_count
        assert len({n.index for n in selected}) == len(selected)
        assert all(n.amount > 0 for n in selected)
        assert select_notes(list(reversed(notes)), target, max_count) == selected

    @given(values=amounts)
    @settings(max_examples=15, deadline=None)
    def test_single_note_when_one_suffices(self, values):
        notes = self._notes(values)
        target = max(values)
        if target == 0:
            return
        selected = select_notes(notes, target, 16)
        assert len(selected) == 1
        assert selected[0].amount == target


class TestWitnessProperties:
    """Property-based tests for witness assembly."""

    @given(
        funding=st.lists(st.integers(min_value=1, max_value=10**6), min_size=1, max_size=3),
        data=st.data(),
    )
    @settings(
        max_examples=8,
        deadline=None,
        suppress_health_check=[HealthCheck.too_slow],
    )
    def test_transfer_is_zero_sum(self, funding, data):
        """Outputs plus withdrawn value always equal inputs plus deposited value."""
        tree = MerkleAccumulator(HEIGHT)
        store = NoteStore()
        for amount in funding:
            note = Note(amount, OWNER)
            store.add_unspent(note.with_index(tree.insert(note.commitment())))

        total = sum(funding)
        amount = data.draw(st.integers(min_value=0, max_value=total))
        fee = data.draw(st.integers(min_value=0, max_value=total - amount))
        builder = TransactionBuilder(PoolConfig(tree_height=HEIGHT), OWNER, store)

        witness = builder.build(
            TransactionRequest(amount=amount, recipient=RECIPIENT, fee=fee), tree
        ).witness

        assert witness.is_balanced()
        assert witness.output_total == witness.input_total - fee
        assert witness.public_amount == (-fee) % FIELD_SIZE
        assert len(witness.inputs) in (2, 16)
        assert len(set(witness.nullifiers)) == len(witness.nullifiers)

    @given(deposit=st.integers(min_value=1, max_value=10**18))
    @settings(max_examples=8, deadline=None)
    def test_deposit_public_amount(self, deposit):
        builder = TransactionBuilder(PoolConfig(tree_height=HEIGHT), OWNER, NoteStore())
        witness = builder.build(TransactionRequest(deposit=deposit), MerkleAccumulator(HEIGHT)).witness
        assert witness.public_amount == deposit
        assert witness.output_total == deposit
        assert witness.is_balanced()


class NoteStoreMachine(RuleBasedStateMachine):
    """Stateful test of the note store reservation protocol."""

    def __init__(self):
        super().__init__()
        self.store = NoteStore()
        self.next_index = 0
        self.builds = {}
        self.submitted = set()
        self.build_count = 0
        self.added = 0
        self.confirmed = 0

    @rule(amount=st.integers(min_value=1, max_value=100))
    def add_note(self, amount):
        self.store.add_unspent(Note(amount, OWNER, index=self.next_index))
        self.next_index += 1
        self.added += amount

    @precondition(lambda self: self.store.unspent())
    @rule(data=st.data())
    def reserve(self, data):
        unspent = self.store.unspent()
        chosen = data.draw(st.lists(st.sampled_from(unspent), min_size=1, max_size=3, unique=True))
        build_id = f"build-{self.build_count}"
        self.build_count += 1
        self.store.reserve([n.commitment() for n in chosen], build_id)
        self.builds[build_id] = chosen

    @precondition(lambda self: self.store.records(NoteState.RESERVED))
    @rule(data=st.data())
    def reserve_taken_note_fails(self, data):
        record = data.draw(st.sampled_from(self.store.records(NoteState.RESERVED)))
        with pytest.raises(NoteStateError):
            self.store.reserve([record.commitment], "intruder")
        assert self.store.get(record.commitment).build_id != "intruder"

    @precondition(lambda self: set(self.builds) - self.submitted)
    @rule(data=st.data())
    def submit(self, data):
        build_id = data.draw(st.sampled_from(sorted(set(self.builds) - self.submitted)))
        self.store.mark_pending_spent(build_id)
        self.submitted.add(build_id)

    @precondition(lambda self: set(self.builds) - self.submitted)
    @rule(data=st.data())
    def release(self, data):
        build_id = data.draw(st.sampled_from(sorted(set(self.builds) - self.submitted)))
        assert self.store.release(build_id) == len(self.builds.pop(build_id))

    @precondition(lambda self: self.submitted)
    @rule(data=st.data(), success=st.booleans())
    def settle(self, data, success):
        build_id = data.draw(st.sampled_from(sorted(self.submitted)))
        if success:
            self.store.confirm(build_id)
            self.confirmed += sum(n.amount for n in self.builds[build_id])
        else:
            self.store.fail(build_id)
        self.submitted.discard(build_id)
        self.builds.pop(build_id)

    @invariant()
    def balance_accounts_for_every_note(self):
        in_flight = sum(n.amount for notes in self.builds.values() for n in notes)
        assert self.store.balance() == self.added - self.confirmed - in_flight

    @invariant()
    def reservations_are_exclusive(self):
        owners = {}
        for build_id, notes in self.builds.items():
            for note in notes:
                assert note.commitment() not in owners
                owners[note.commitment()] = build_id
        for commitment, build_id in owners.items():
            state = self.store.state_of(commitment)
            if build_id in self.submitted:
                assert state == NoteState.PENDING_SPENT
            else:
                assert state == NoteState.RESERVED


TestNoteStoreMachine = NoteStoreMachine.TestCase
TestNoteStoreMachine.settings = settings(max_examples=20, stateful_step_count=15, deadline=None)
