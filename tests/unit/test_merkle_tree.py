"""Tests for the Merkle accumulator."""

import pytest
import os
from zkl.core.merkle_tree import (
    EMPTY_LEAF,
    MerkleAccumulator,
    MerkleProof,
    compute_zeros,
    verify_merkle_path,
)
from zkl.exceptions import InvalidLeafIndexError, TreeHeightExceededError
from zkl.utils.hash import merkle_hash


@pytest.fixture
def merkle_tree():
    """Create a test Merkle tree."""
    return MerkleAccumulator(tree_height=8)


@pytest.fixture
def sample_commitment():
    """Create a sample commitment."""
    return os.urandom(32)


class TestMerkleTreeInitialization:
    """Tests for tree initialization."""

    def test_tree_creation_default(self):
        tree = MerkleAccumulator()
        assert tree.height == 32
        assert len(tree) == 0

    def test_tree_invalid_height(self):
        with pytest.raises(ValueError):
            MerkleAccumulator(tree_height=0)
        with pytest.raises(ValueError):
            MerkleAccumulator(tree_height=100)

    def test_zeros_chain(self):
        zeros = compute_zeros(4)
        assert zeros[0] == EMPTY_LEAF
        for i in range(1, 4):
            assert zeros[i] == merkle_hash(zeros[i - 1], zeros[i - 1])

    def test_empty_root_is_top_zero(self):
        """Empty root follows the ledger contract: ZEROS[height - 1]."""
        tree = MerkleAccumulator(tree_height=8)
        assert tree.root == compute_zeros(8)[7]

    def test_single_leaf_root_hashes_every_level(self):
        tree = MerkleAccumulator(tree_height=3)
        leaf = b"\x11" * 32
        tree.insert(leaf)

        zeros = compute_zeros(3)
        level1 = merkle_hash(leaf, zeros[0])
        level2 = merkle_hash(level1, zeros[1])
        level3 = merkle_hash(level2, zeros[2])
        assert tree.root == level3


class TestMerkleTreeInsertion:
    """Tests for leaf insertion."""

    def test_insert_assigns_sequential_indices(self, merkle_tree):
        commitments = [os.urandom(32) for _ in range(10)]
        indices = [merkle_tree.insert(c) for c in commitments]
        assert indices == list(range(10))
        assert merkle_tree.leaves == commitments
        assert merkle_tree.leaf_count == 10

    def test_insert_changes_root(self, merkle_tree, sample_commitment):
        before = merkle_tree.root
        merkle_tree.insert(sample_commitment)
        assert merkle_tree.root != before

    def test_insert_invalid_commitment_format(self, merkle_tree):
        with pytest.raises(ValueError):
            merkle_tree.insert(b"short")
        with pytest.raises(ValueError):
            merkle_tree.insert("0x" + "00" * 32)

    def test_tree_full(self):
        tree = MerkleAccumulator(tree_height=2)
        for _ in range(4):
            tree.insert(os.urandom(32))
        with pytest.raises(TreeHeightExceededError):
            tree.insert(os.urandom(32))

    def test_index_of(self, merkle_tree, sample_commitment):
        merkle_tree.insert(os.urandom(32))
        merkle_tree.insert(sample_commitment)
        assert merkle_tree.index_of(sample_commitment) == 1
        assert merkle_tree.index_of(os.urandom(32)) is None

    def test_from_leaves_matches_incremental(self):
        leaves = [os.urandom(32) for _ in range(5)]
        tree = MerkleAccumulator(tree_height=8)
        for leaf in leaves:
            tree.insert(leaf)
        assert MerkleAccumulator.from_leaves(leaves, tree_height=8).root == tree.root


class TestMerkleProofs:
    """Tests for inclusion proofs."""

    def test_proof_verifies(self, merkle_tree):
        leaves = [os.urandom(32) for _ in range(5)]
        for leaf in leaves:
            merkle_tree.insert(leaf)

        for i, leaf in enumerate(leaves):
            proof = merkle_tree.generate_proof(i)
            assert len(proof.siblings) == 8
            assert proof.verify()
            assert merkle_tree.verify_proof(leaf, proof)

    def test_proof_stable_after_growth(self, merkle_tree):
        """A proof's leaf stays provable against every later root."""
        first = os.urandom(32)
        merkle_tree.insert(first)
        assert merkle_tree.generate_proof(0).verify()

        for _ in range(12):
            merkle_tree.insert(os.urandom(32))
            assert merkle_tree.verify_proof(first, merkle_tree.generate_proof(0))

    def test_proof_against_historic_root(self, merkle_tree):
        leaf = os.urandom(32)
        merkle_tree.insert(leaf)
        proof = merkle_tree.generate_proof(0)
        merkle_tree.insert(os.urandom(32))
        # Still valid against the root it was generated for
        assert verify_merkle_path(leaf, 0, proof.siblings, proof.root)

    def test_wrong_leaf_fails(self, merkle_tree):
        merkle_tree.insert(os.urandom(32))
        proof = merkle_tree.generate_proof(0)
        assert not merkle_tree.verify_proof(os.urandom(32), proof)

    def test_wrong_index_fails(self, merkle_tree):
        a, b = os.urandom(32), os.urandom(32)
        merkle_tree.insert(a)
        merkle_tree.insert(b)
        proof = merkle_tree.generate_proof(0)
        tampered = MerkleProof(leaf_index=1, siblings=proof.siblings)
        assert not merkle_tree.verify_proof(a, tampered)

    def test_invalid_index(self, merkle_tree):
        with pytest.raises(InvalidLeafIndexError):
            merkle_tree.generate_proof(0)
        merkle_tree.insert(os.urandom(32))
        with pytest.raises(InvalidLeafIndexError):
            merkle_tree.generate_proof(1)
        with pytest.raises(InvalidLeafIndexError):
            merkle_tree.generate_proof(-1)

    def test_malformed_sibling_does_not_verify(self):
        assert not verify_merkle_path(b"\x00" * 32, 0, [b"short"], b"\x00" * 32)


class TestTreeState:
    """Tests for copies and serialization."""

    def test_copy_is_independent(self, merkle_tree):
        merkle_tree.insert(os.urandom(32))
        clone = merkle_tree.copy()
        clone.insert(os.urandom(32))
        assert clone.root != merkle_tree.root
        assert len(merkle_tree) == 1

    def test_get_state(self, merkle_tree, sample_commitment):
        merkle_tree.insert(sample_commitment)
        state = merkle_tree.get_state()
        assert state["height"] == 8
        assert state["num_leaves"] == 1
        assert state["leaves"] == ["0x" + sample_commitment.hex()]
        assert state["root"] == "0x" + merkle_tree.root.hex()
