"""
schemas.py - Group and proof data contracts for the REST API.

ProofModel is the wire format of a membership proof. It must stay
byte-compatible with MerkleProof.to_dict() so a proof can be handed out by
the API, stored anywhere, and later checked by the standalone verifier.
"""
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

HEX_DIGEST = r"^[0-9a-f]{64}$"

# Characters rejected in group names; names double as registry labels.
FORBIDDEN_NAME_CHARS = set("!@#$%^&*()_+-=[]{}|;:,.<>")


class Position(str, Enum):
    LEFT  = "left"
    RIGHT = "right"


class ProofStepModel(BaseModel):
    hash:     str      = Field(..., pattern=HEX_DIGEST)
    position: Position


class ProofModel(BaseModel):
    """Membership proof as exchanged with callers."""
    leaf:  str                  = Field(..., pattern=HEX_DIGEST)
    proof: list[ProofStepModel] = Field(default_factory=list)
    root:  str                  = Field(..., pattern=HEX_DIGEST)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json")


def _check_member_list(members: list[str]) -> list[str]:
    for m in members:
        if not m:
            raise ValueError("member ids must be non-empty strings")
    return members


class GroupCreate(BaseModel):
    """Input schema for POST /group."""
    name:          str           = Field(..., min_length=1, max_length=64)
    members:       list[str]     = Field(default_factory=list)
    owner_address: Optional[str] = Field(default=None,
                                         description="Address that will own the published record")
    skip_publish:  bool          = Field(default=False,
                                         description="Create the group without publishing its root")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if any(c in FORBIDDEN_NAME_CHARS for c in v):
            raise ValueError("group name cannot contain special characters")
        return v

    @field_validator("members")
    @classmethod
    def validate_members(cls, v: list[str]) -> list[str]:
        return _check_member_list(v)

    @model_validator(mode="after")
    def validate_owner(self):
        if self.skip_publish:
            return self
        addr = self.owner_address
        if not addr:
            raise ValueError("owner_address is required unless skip_publish is set")
        if not addr.startswith("0x") or len(addr) != 42:
            raise ValueError("owner_address must be a 0x-prefixed 20-byte hex address")
        return self


class MemberAdd(BaseModel):
    user_id:       str           = Field(..., min_length=1)
    owner_address: Optional[str] = None


class MembersReplace(BaseModel):
    members: list[str]

    @field_validator("members")
    @classmethod
    def validate_members(cls, v: list[str]) -> list[str]:
        return _check_member_list(v)


class GroupOut(BaseModel):
    """Stored group record (returned by GET /group/{name})."""
    name:          str
    members:       list[str]
    tree_root:     Optional[str] = None
    member_count:  int
    record_name:   Optional[str] = None
    owner_address: Optional[str] = None
    publish_tx:    Optional[str] = None
    created_at:    str
    updated_at:    str


class GroupSummary(BaseModel):
    name:          str
    member_count:  int
    tree_root:     Optional[str] = None
    record_name:   Optional[str] = None
    owner_address: Optional[str] = None
    created_at:    str
    updated_at:    str


class GroupList(BaseModel):
    groups: list[GroupSummary]
    total:  int


class GroupCreated(GroupOut):
    publish_status: str           = "skipped"  # published | failed | skipped
    publish_error:  Optional[str] = None


class MembershipChange(BaseModel):
    name:           str
    members:        list[str]
    tree_root:      Optional[str] = None
    member_count:   int
    added_member:   Optional[str] = None
    removed_member: Optional[str] = None
    updated_at:     str


class StatsOut(BaseModel):
    totalMembers: int
    treeDepth:    int
    rootHash:     str


class ProofOut(BaseModel):
    group_name:   str
    user_id:      str
    proof:        ProofModel
    signature:    str = Field(..., description="Base64 DER ECDSA signature over (group_name, proof.root, generated_at)")
    signer_id:    str
    generated_at: str


class VerifyRequest(BaseModel):
    proof:        ProofModel
    signature:    Optional[str] = Field(default=None,
                                        description="Signature returned with the proof, if any")
    group_name:   Optional[str] = None
    generated_at: Optional[str] = None

    @model_validator(mode="after")
    def validate_receipt(self):
        if self.signature is not None and (not self.group_name or not self.generated_at):
            raise ValueError("group_name and generated_at are required to check a signature")
        return self


class VerifyResult(BaseModel):
    valid:           bool
    root:            str
    signature_valid: Optional[bool] = None
    verified_at:     str
