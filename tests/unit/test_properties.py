"""Property-based tests using Hypothesis for commitment and accumulator invariants."""

from hypothesis import HealthCheck, given, settings, strategies as st

from zkl.core.commitment import MAX_AMOUNT, CommitmentScheme
from zkl.core.merkle_tree import MerkleAccumulator, verify_merkle_path
from zkl.utils.encoding import decode_public_values, encode_public_values

words = st.binary(min_size=32, max_size=32)
amounts = st.integers(min_value=0, max_value=MAX_AMOUNT)


class TestCommitmentProperties:
    """Commitments are deterministic and sensitive to every field."""

    @given(amounts, words, words)
    @settings(max_examples=100)
    def test_commit_deterministic(self, amount: int, owner: bytes, blinding: bytes):
        """Property: same note fields give the same commitment."""
        assert CommitmentScheme.commit(amount, owner, blinding) == CommitmentScheme.commit(amount, owner, blinding)

    @given(amounts, amounts, words, words)
    @settings(max_examples=100)
    def test_amount_perturbation(self, a: int, b: int, owner: bytes, blinding: bytes):
        """Property: different amounts never collide."""
        if a != b:
            assert CommitmentScheme.commit(a, owner, blinding) != CommitmentScheme.commit(b, owner, blinding)

    @given(amounts, words, words, words)
    @settings(max_examples=100)
    def test_blinding_perturbation(self, amount: int, owner: bytes, b1: bytes, b2: bytes):
        if b1 != b2:
            assert CommitmentScheme.commit(amount, owner, b1) != CommitmentScheme.commit(amount, owner, b2)

    @given(st.binary(min_size=65, max_size=65), st.binary(min_size=65, max_size=65))
    @settings(max_examples=50)
    def test_nullifier_injective_on_signatures(self, s1: bytes, s2: bytes):
        if s1 != s2:
            assert CommitmentScheme.nullifier(s1) != CommitmentScheme.nullifier(s2)


class TestAccumulatorProperties:
    """Every inserted leaf stays provable against the latest root."""

    @given(st.lists(words, min_size=1, max_size=40))
    @settings(max_examples=20, suppress_health_check=[HealthCheck.too_slow])
    def test_every_leaf_provable(self, leaves: list):
        tree = MerkleAccumulator(tree_height=8)
        for leaf in leaves:
            tree.insert(leaf)
        for index, leaf in enumerate(leaves):
            proof = tree.generate_proof(index)
            assert verify_merkle_path(leaf, index, proof.siblings, tree.root)

    @given(st.lists(words, min_size=1, max_size=30))
    @settings(max_examples=20, suppress_health_check=[HealthCheck.too_slow])
    def test_root_depends_on_order(self, leaves: list):
        """Property: rebuilding from the same sequence gives the same root."""
        first = MerkleAccumulator.from_leaves(leaves, tree_height=8)
        second = MerkleAccumulator.from_leaves(leaves, tree_height=8)
        assert first.root == second.root
        if len(set(leaves)) > 1:
            reordered = MerkleAccumulator.from_leaves(list(reversed(leaves)), tree_height=8)
            if list(reversed(leaves)) != leaves:
                assert reordered.root != first.root


class TestPublicValuesProperties:
    """ABI encoding is lossless."""

    @given(words, words, st.lists(words, max_size=5), st.lists(words, max_size=5))
    @settings(max_examples=50)
    def test_decode_recovers_fields(self, old_root, new_root, nullifiers, commitments):
        raw = encode_public_values(old_root, new_root, nullifiers, commitments)
        assert len(raw) == 32 * (7 + len(nullifiers) + len(commitments))
        assert decode_public_values(raw) == (old_root, new_root, nullifiers, commitments)
