"""Merkle membership trees for named groups, with a REST gateway."""
from .merkle import (
    DuplicateMemberError, InvalidInputError, MemberNotFoundError, MerkleProof,
    MerkleTree, MerkleTreeError, ProofStep, TreeStats, UnbuiltTreeError,
    combine, compute_root, hash_member, verify_proof,
)

__version__ = "1.0.0"
