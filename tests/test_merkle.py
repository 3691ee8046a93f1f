"""
Unit tests for the membership tree.

Covers hashing, the padding/pairing schedule, proof round trips, tamper
detection and the mutation API. No service, database or network needed.
Run with: pytest tests/
"""
import hashlib
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest

from merkle_groups.merkle import (
    DuplicateMemberError, InvalidInputError, MemberNotFoundError, MerkleProof,
    MerkleTree, UnbuiltTreeError, combine, compute_levels, compute_root,
    hash_member, verify_proof,
)

IDS = ["alice123", "bob456", "charlie789", "diana012"]


def _sha(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def _is_hex64(s: str) -> bool:
    return len(s) == 64 and all(c in "0123456789abcdef" for c in s)


def _flip(hex_str: str, pos: int = 0) -> str:
    c = "1" if hex_str[pos] != "1" else "2"
    return hex_str[:pos] + c + hex_str[pos + 1:]


#  Hashing

def test_hash_member_matches_sha256():
    assert hash_member("alice123") == _sha("alice123")


def test_combine_concatenates_hex_strings():
    a, b = _sha("a"), _sha("b")
    assert combine(a, b) == _sha(a + b)
    assert combine(a, b) != hashlib.sha256(bytes.fromhex(a) + bytes.fromhex(b)).hexdigest()


def test_members_are_not_normalised():
    assert hash_member("Alice") != hash_member("alice")
    assert hash_member("alice ") != hash_member("alice")


#  Builder

def test_build_empty_raises():
    with pytest.raises(InvalidInputError):
        MerkleTree().build([])


def test_empty_constructor_is_unbuilt():
    tree = MerkleTree()
    assert not tree.is_built
    assert tree.get_members() == []
    with pytest.raises(UnbuiltTreeError):
        tree.get_root()
    with pytest.raises(UnbuiltTreeError):
        tree.get_stats()
    with pytest.raises(UnbuiltTreeError):
        tree.generate_proof("alice123")


def test_build_is_deterministic():
    assert MerkleTree(IDS).get_root() == MerkleTree(list(IDS)).get_root()


def test_order_matters():
    assert compute_root(["a", "b", "c"]) != compute_root(["c", "b", "a"])


def test_four_member_root_by_hand():
    l = [_sha(m) for m in IDS]
    expected = _sha(_sha(l[0] + l[1]) + _sha(l[2] + l[3]))
    assert MerkleTree(IDS).get_root() == expected


def test_single_member_still_combines_once():
    leaf = _sha("solo")
    root = MerkleTree(["solo"]).get_root()
    assert root == _sha(leaf + leaf)
    assert root != leaf


def test_odd_level_duplicates_last_digest():
    l = [_sha(m) for m in ["a", "b", "c"]]
    padded = combine(combine(l[0], l[1]), combine(l[2], l[2]))
    assert compute_root(["a", "b", "c"]) == padded


def test_padding_applies_at_every_level():
    # 5 leaves -> 6 -> 3 (padded to 4) -> 2 -> 1
    l = [_sha(m) for m in "abcde"]
    n1 = [combine(l[0], l[1]), combine(l[2], l[3]), combine(l[4], l[4])]
    n2 = [combine(n1[0], n1[1]), combine(n1[2], n1[2])]
    assert compute_root(list("abcde")) == combine(n2[0], n2[1])


def test_compute_levels_pads_each_level():
    levels = compute_levels([_sha(m) for m in "abc"])
    assert [len(level) for level in levels] == [4, 2, 1]
    assert levels[0][3] == levels[0][2]


def test_digest_shape():
    for n in range(1, 12):
        tree = MerkleTree([f"user{i}" for i in range(n)])
        assert _is_hex64(tree.get_root())
        assert all(_is_hex64(leaf) for leaf in tree.get_leaves())
        for member in tree.get_members():
            proof = tree.generate_proof(member)
            assert _is_hex64(proof.leaf)
            assert all(_is_hex64(step.hash) for step in proof.proof)


def test_leaves_follow_member_order():
    tree = MerkleTree(IDS)
    assert tree.get_leaves() == [_sha(m) for m in IDS]
    assert tree.get_members() == IDS


#  Stats

def test_stats_for_four_members():
    stats = MerkleTree(IDS).get_stats()
    assert stats.total_members == 4
    assert stats.tree_depth == 2
    assert _is_hex64(stats.root_hash)
    assert stats.to_dict() == {"totalMembers": 4, "treeDepth": 2, "rootHash": stats.root_hash}


@pytest.mark.parametrize("n, depth", [(1, 0), (2, 1), (3, 2), (4, 2), (5, 3), (8, 3), (9, 4), (1024, 10)])
def test_tree_depth_is_ceil_log2_of_member_count(n, depth):
    assert MerkleTree([f"m{i}" for i in range(n)]).get_stats().tree_depth == depth


#  Proofs

def test_concrete_proof_scenario():
    tree = MerkleTree(IDS)
    proof = tree.generate_proof("alice123")
    assert len(proof.proof) == 2
    assert proof.leaf == _sha("alice123")
    assert proof.root == tree.get_root()
    assert proof.proof[0].hash == _sha("bob456")
    assert proof.proof[0].position == "right"
    assert MerkleTree.verify_proof(proof) is True


def test_single_member_proof_has_self_sibling():
    proof = MerkleTree(["solo"]).generate_proof("solo")
    assert len(proof.proof) == 1
    assert proof.proof[0].hash == proof.leaf
    assert proof.proof[0].position == "right"
    assert verify_proof(proof)


def test_padded_last_member_proof():
    proof = MerkleTree(["a", "b", "c"]).generate_proof("c")
    assert proof.proof[0].hash == _sha("c")
    assert proof.proof[0].position == "right"
    assert proof.proof[1].position == "left"
    assert verify_proof(proof)


def test_round_trip_every_member_sizes_1_to_17():
    for n in range(1, 18):
        members = [f"user-{i}" for i in range(n)]
        tree = MerkleTree(members)
        for m in members:
            assert verify_proof(tree.generate_proof(m)), (n, m)


def test_proof_for_absent_member_raises():
    with pytest.raises(MemberNotFoundError):
        MerkleTree(IDS).generate_proof("eve345")


def test_tampered_root_fails():
    proof = MerkleTree(IDS).generate_proof("charlie789").to_dict()
    proof["root"] = _flip(proof["root"], 10)
    assert verify_proof(proof) is False


def test_tampered_sibling_fails():
    proof = MerkleTree(IDS).generate_proof("charlie789").to_dict()
    proof["proof"][1]["hash"] = _flip(proof["proof"][1]["hash"], 63)
    assert verify_proof(proof) is False


def test_swapped_position_fails():
    proof = MerkleTree(IDS).generate_proof("bob456").to_dict()
    proof["proof"][0]["position"] = "right"
    assert verify_proof(proof) is False


def test_proof_from_other_group_fails():
    proof = MerkleTree(IDS).generate_proof("alice123")
    other = MerkleTree(IDS + ["eve345"]).get_root()
    proof.root = other
    assert not verify_proof(proof)


def test_proof_wire_format():
    wire = MerkleTree(IDS).generate_proof("diana012").to_dict()
    assert set(wire) == {"leaf", "proof", "root"}
    assert all(set(step) == {"hash", "position"} for step in wire["proof"])
    assert MerkleProof.from_dict(wire).to_dict() == wire


def test_duplicate_members_proof_targets_first_occurrence():
    tree = MerkleTree(["a", "b", "a"])
    proof = tree.generate_proof("a")
    assert proof.proof[0].hash == _sha("b")
    assert verify_proof(proof)


#  Mutation

def test_add_member_rebuilds():
    tree = MerkleTree(IDS[:3])
    before = tree.get_root()
    after = tree.add_member("diana012")
    assert after != before
    assert after == MerkleTree(IDS).get_root()
    assert tree.is_member("diana012")


def test_add_duplicate_raises_and_keeps_root():
    tree = MerkleTree(IDS)
    root = tree.get_root()
    with pytest.raises(DuplicateMemberError):
        tree.add_member("alice123")
    assert tree.get_root() == root
    assert len(tree) == 4


def test_add_to_unbuilt_tree_builds_it():
    tree = MerkleTree()
    tree.add_member("first")
    assert tree.get_root() == MerkleTree(["first"]).get_root()


def test_remove_member_rebuilds():
    tree = MerkleTree(IDS)
    tree.remove_member("bob456")
    assert tree.get_members() == ["alice123", "charlie789", "diana012"]
    assert tree.get_root() == compute_root(["alice123", "charlie789", "diana012"])


def test_remove_absent_member_raises_and_keeps_root():
    tree = MerkleTree(IDS)
    root = tree.get_root()
    with pytest.raises(MemberNotFoundError):
        tree.remove_member("eve345")
    assert tree.get_root() == root


def test_remove_last_member_leaves_tree_unbuilt():
    tree = MerkleTree(["only"])
    assert tree.remove_member("only") is None
    assert not tree.is_built
    with pytest.raises(UnbuiltTreeError):
        tree.get_root()


def test_update_group_replaces_list():
    tree = MerkleTree(IDS)
    tree.update_group(["x", "y"])
    assert tree.get_members() == ["x", "y"]
    assert not tree.is_member("alice123")
    assert tree.get_root() == compute_root(["x", "y"])


def test_update_group_allows_duplicates():
    tree = MerkleTree()
    tree.update_group(["a", "a", "b"])
    assert tree.get_members() == ["a", "a", "b"]


def test_update_group_empty_raises_and_keeps_state():
    tree = MerkleTree(IDS)
    root = tree.get_root()
    with pytest.raises(InvalidInputError):
        tree.update_group([])
    assert tree.get_root() == root
    assert tree.get_members() == IDS


def test_membership_tracks_mutations():
    tree = MerkleTree(["a", "b"])
    tree.add_member("c")
    tree.remove_member("a")
    tree.add_member("a")
    assert tree.get_members() == ["b", "c", "a"]
    assert tree.is_member("a") and "c" in tree
    assert not tree.is_member("d")
    for m in tree.get_members():
        assert verify_proof(tree.generate_proof(m))
