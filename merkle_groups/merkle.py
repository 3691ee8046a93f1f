"""
merkle.py - Binary Merkle tree over group member identifiers.

The root summarises an ordered member list into one SHA-256 digest that can
be published as the group's fingerprint. Any member can later be proven to be
part of the group with O(log N) sibling hashes, and the proof can be checked
by anyone holding the root - no access to the member list is needed.

Tree layout:
  Leaves keep the caller's order. Nothing is sorted, so the same members in
  a different order produce a different root.

Hashing:
  Leaf:   SHA-256(member.encode("utf-8")) as 64 lowercase hex chars
  Node:   SHA-256((left_hex + right_hex).encode("utf-8"))
          - concatenation of the hex strings, not of the raw digests
  Odd:    any level of odd length gets its last digest appended again
          (copied, not rehashed) before pairing, the leaf level included.
          A one-member group therefore has root = H(H(m) + H(m)).

Only the ordered member list and the root are kept on the tree. The proof
generator rebuilds the padded levels with the same schedule as the builder.
"""
import hashlib
from dataclasses import dataclass, field
from typing import Optional, Union

LEFT = "left"
RIGHT = "right"


class MerkleTreeError(Exception):
    """Base class for membership tree errors."""


class InvalidInputError(MerkleTreeError):
    """Build requested with zero members."""


class DuplicateMemberError(MerkleTreeError):
    """add_member() for an id that is already in the group."""


class MemberNotFoundError(MerkleTreeError):
    """remove_member() or proof generation for an id not in the group."""


class UnbuiltTreeError(MerkleTreeError):
    """Root, proof or stats requested while the tree holds no members."""


#  Hashing

def hash_member(data: str) -> str:
    """Return the SHA-256 hex digest of a UTF-8 string."""
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def combine(left: str, right: str) -> str:
    """Parent digest of two hex digests: H(left_hex + right_hex)."""
    return hash_member(left + right)


#  Proof value

@dataclass
class ProofStep:
    hash: str
    position: str  # LEFT | RIGHT - side the sibling sits on

    def to_dict(self) -> dict:
        return {"hash": self.hash, "position": self.position}


@dataclass
class MerkleProof:
    """Inclusion proof for one member.

    `proof` runs from the leaf level up to the level just below the root.
    The dict form is the wire format handed to callers:
      {"leaf": hex, "proof": [{"hash": hex, "position": "left"|"right"}], "root": hex}
    """
    leaf: str
    root: str
    proof: list[ProofStep] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "leaf": self.leaf,
            "proof": [step.to_dict() for step in self.proof],
            "root": self.root,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MerkleProof":
        return cls(
            leaf=data["leaf"],
            proof=[ProofStep(hash=s["hash"], position=s["position"]) for s in data["proof"]],
            root=data["root"],
        )


@dataclass
class TreeStats:
    total_members: int
    tree_depth: int
    root_hash: str

    def to_dict(self) -> dict:
        return {
            "totalMembers": self.total_members,
            "treeDepth": self.tree_depth,
            "rootHash": self.root_hash,
        }


#  Level schedule

def compute_levels(leaves: list[str]) -> list[list[str]]:
    """Return every level of the tree, leaves first, root level last.

    Each non-root level is returned already padded to even length, exactly
    as it was paired. Builder and proof generator both go through here.
    """
    if not leaves:
        raise InvalidInputError("Cannot build tree with empty member list")
    levels: list[list[str]] = []
    level = list(leaves)
    # A single leaf still gets padded and combined once.
    while True:
        if len(level) % 2:
            level.append(level[-1])
        levels.append(level)
        level = [combine(level[i], level[i + 1]) for i in range(0, len(level), 2)]
        if len(level) == 1:
            levels.append(level)
            return levels


def compute_root(members: list[str]) -> str:
    """Return the root digest of an ordered member list."""
    return compute_levels([hash_member(m) for m in members])[-1][0]


def verify_proof(proof: Union[MerkleProof, dict]) -> bool:
    """Fold the sibling path onto the leaf and compare with the claimed root.

    Stateless: needs only the proof value, not the tree it came from.
    """
    if isinstance(proof, dict):
        proof = MerkleProof.from_dict(proof)
    acc = proof.leaf
    for step in proof.proof:
        if step.position == LEFT:
            acc = combine(step.hash, acc)
        else:
            acc = combine(acc, step.hash)
    return acc == proof.root


#  Tree

class MerkleTree:
    """Membership tree for one group.

    Every mutation rebuilds the whole tree from the ordered member list; there
    is no incremental update path. Failed mutations leave the tree untouched.
    Not thread-safe: callers serialize access per tree.
    """

    def __init__(self, members: Optional[list[str]] = None):
        self._members: list[str] = []
        self._root: Optional[str] = None
        if members:
            self.build(members)

    def __len__(self) -> int:
        return len(self._members)

    def __contains__(self, member: str) -> bool:
        return self.is_member(member)

    @property
    def is_built(self) -> bool:
        return self._root is not None

    def build(self, members: list[str]) -> str:
        """Rebuild from an ordered member list and return the new root."""
        members = list(members)
        root = compute_root(members)
        self._members = members
        self._root = root
        return root

    def get_root(self) -> str:
        if self._root is None:
            raise UnbuiltTreeError("Tree has not been built yet")
        return self._root

    def get_leaves(self) -> list[str]:
        return [hash_member(m) for m in self._members]

    def get_members(self) -> list[str]:
        return list(self._members)

    def is_member(self, member: str) -> bool:
        return member in self._members

    def generate_proof(self, member: str) -> MerkleProof:
        root = self.get_root()
        try:
            idx = self._members.index(member)
        except ValueError:
            raise MemberNotFoundError(f"Member {member} not found in tree") from None

        path: list[ProofStep] = []
        for level in compute_levels(self.get_leaves())[:-1]:
            if idx % 2 == 0:
                path.append(ProofStep(hash=level[idx + 1], position=RIGHT))
            else:
                path.append(ProofStep(hash=level[idx - 1], position=LEFT))
            idx //= 2
        return MerkleProof(leaf=hash_member(member), proof=path, root=root)

    verify_proof = staticmethod(verify_proof)

    def get_stats(self) -> TreeStats:
        root = self.get_root()
        n = len(self._members)
        return TreeStats(
            total_members=n,
            # ceil(log2(n)) on the unpadded count; 0 for a single member
            tree_depth=(n - 1).bit_length(),
            root_hash=root,
        )

    #  Mutation

    def add_member(self, member: str) -> str:
        if member in self._members:
            raise DuplicateMemberError(f"Member {member} already exists in the group")
        return self.build(self._members + [member])

    def remove_member(self, member: str) -> Optional[str]:
        """Remove the first occurrence. Returns the new root, or None when empty."""
        if member not in self._members:
            raise MemberNotFoundError(f"Member {member} not found in the group")
        remaining = list(self._members)
        remaining.remove(member)
        if not remaining:
            self._members = []
            self._root = None
            return None
        return self.build(remaining)

    def update_group(self, members: list[str]) -> str:
        """Replace the whole member list. Duplicates are not rejected."""
        return self.build(members)
