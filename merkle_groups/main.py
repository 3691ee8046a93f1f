"""
main.py - Group registry REST API.

Architecture position: callers manage named groups here; every change
rebuilds the group's Merkle tree and stores the new root.
  client -> POST /group -> store members + root -> publish root as a name record
  client -> GET /group/{name}/proof/{user} -> signed proof -> verified anywhere

Membership proofs are checked with POST /verify or offline with the
merkle-groups-verify CLI; neither needs the member list.

The group store and record publisher are injected through create_app() and
read back from app.state by the request dependencies.
"""
import logging
import os
from typing import Optional

from dotenv import find_dotenv, load_dotenv
from fastapi import APIRouter, Body, Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .merkle import (
    DuplicateMemberError, InvalidInputError, MemberNotFoundError,
    MerkleTree, MerkleTreeError, UnbuiltTreeError, compute_root, verify_proof,
)
from .publisher import RecordPublisher, get_publisher
from .schemas import (
    GroupCreate, GroupCreated, GroupList, GroupOut, GroupSummary, MemberAdd,
    MembersReplace, MembershipChange, ProofOut, StatsOut, VerifyRequest, VerifyResult,
)
from .signing import key_fingerprint, public_key_pem, sign_receipt, signer_id, verify_receipt
from .store import (
    GroupExistsError, GroupLocks, GroupNotFoundError, GroupRecord, GroupStore,
    build_store, utc_now,
)


def load_config() -> Optional[str]:
    """Load .env from the working directory (or a parent) into os.environ.

    Variables already set in the environment win. Backends, keys and the
    signer read their settings when they are built, so this only has to run
    before create_app().
    """
    path = find_dotenv(usecwd=True)
    if path:
        load_dotenv(path)
    return path or None


load_config()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
log = logging.getLogger("groups.api")

API_VERSION = "1.0.0"

_TREE_ERROR_STATUS = {
    InvalidInputError:    400,
    MemberNotFoundError:  404,
    DuplicateMemberError: 409,
    UnbuiltTreeError:     409,
}


def _tree_http_error(exc: MerkleTreeError) -> HTTPException:
    return HTTPException(_TREE_ERROR_STATUS.get(type(exc), 400), detail=str(exc))


#  Dependencies

def get_store(request: Request) -> GroupStore:
    return request.app.state.store


def get_record_publisher(request: Request) -> RecordPublisher:
    return request.app.state.publisher


def get_locks(request: Request) -> GroupLocks:
    return request.app.state.locks


async def _load_group(store: GroupStore, name: str) -> GroupRecord:
    rec = await store.get(name)
    if rec is None:
        raise HTTPException(404, detail=f"Group {name} not found")
    return rec


def _root_of(tree: MerkleTree) -> Optional[str]:
    return tree.get_root() if tree.is_built else None


router = APIRouter()


#  Groups

@router.post("/group", tags=["groups"], status_code=201, response_model=GroupCreated)
async def create_group(
    body: GroupCreate,
    store: GroupStore = Depends(get_store),
    publisher: RecordPublisher = Depends(get_record_publisher),
    locks: GroupLocks = Depends(get_locks),
):
    """Create a group and publish its root.

    Duplicate member ids in the request are dropped, keeping first-seen order.
    Returns 207 when the group was stored but publishing the root failed.
    """
    members = list(dict.fromkeys(body.members))
    tree_root = compute_root(members) if members else None

    # keyed case-insensitively, like store names
    async with locks.for_group(body.name):
        if await store.name_taken(body.name):
            raise HTTPException(409, detail="Group name already exists")

        publish_status, publish_error, publish_tx = "skipped", None, None
        if body.skip_publish:
            log.info("skipping record publish for %s as requested", body.name)
        elif tree_root is None:
            log.info("group %s is empty - nothing to publish", body.name)
        else:
            result = await publisher.publish_root(body.name, tree_root, body.owner_address)
            if result.success:
                publish_status, publish_tx = "published", result.tx_hash
            else:
                publish_status, publish_error = "failed", result.error
                log.warning("record publish failed for %s: %s", body.name, result.error)

        record = GroupRecord(
            name=body.name,
            members=members,
            tree_root=tree_root,
            record_name=publisher.record_name(body.name),
            owner_address=body.owner_address,
            publish_tx=publish_tx,
        )
        try:
            record = await store.create(record)
        except GroupExistsError:
            raise HTTPException(409, detail="Group name already exists")

    log.info("group created name=%s members=%d root=%s publish=%s",
             record.name, record.member_count,
             tree_root[:16] if tree_root else None, publish_status)

    out = GroupCreated(**record.to_dict(), publish_status=publish_status,
                       publish_error=publish_error)
    status = 207 if publish_status == "failed" else 201
    return JSONResponse(status_code=status, content=out.model_dump())


@router.get("/group", tags=["groups"], response_model=GroupList)
async def list_groups(store: GroupStore = Depends(get_store)):
    records = await store.list_groups()
    groups = [GroupSummary(**r.to_dict()) for r in records]
    return GroupList(groups=groups, total=len(groups))


@router.get("/group/{name}", tags=["groups"], response_model=GroupOut)
async def get_group(name: str, store: GroupStore = Depends(get_store)):
    rec = await _load_group(store, name)
    return GroupOut(**rec.to_dict())


@router.get("/group/{name}/record", tags=["groups"])
async def get_group_record(
    name: str,
    store: GroupStore = Depends(get_store),
    publisher: RecordPublisher = Depends(get_record_publisher),
):
    """Compare the stored root with the one published in the name registry."""
    rec = await _load_group(store, name)
    published = await publisher.get_published_root(name)
    return {
        "name": rec.name,
        "record_name": publisher.record_name(name),
        "tree_root": rec.tree_root,
        "published_root": published,
        "owner": await publisher.get_owner(name),
        "in_sync": published is not None and published == rec.tree_root,
    }


@router.get("/group/{name}/stats", tags=["groups"], response_model=StatsOut)
async def group_stats(name: str, store: GroupStore = Depends(get_store)):
    rec = await _load_group(store, name)
    try:
        return StatsOut(**MerkleTree(rec.members).get_stats().to_dict())
    except UnbuiltTreeError as exc:
        raise _tree_http_error(exc)


#  Membership changes

@router.post("/group/{name}/member", tags=["members"], response_model=MembershipChange)
async def add_member(
    name: str,
    body: MemberAdd,
    store: GroupStore = Depends(get_store),
    publisher: RecordPublisher = Depends(get_record_publisher),
    locks: GroupLocks = Depends(get_locks),
):
    """Append a member. When the group's record has an owner, only that owner may add."""
    owner = await publisher.get_owner(name)
    if owner and (body.owner_address or "").lower() != owner.lower():
        raise HTTPException(403, detail="Caller is not the owner of the group")

    async with locks.for_group(name):
        rec = await _load_group(store, name)
        tree = MerkleTree(rec.members)
        try:
            tree.add_member(body.user_id)
        except DuplicateMemberError as exc:
            raise _tree_http_error(exc)
        rec = await store.save_members(name, tree.get_members(), _root_of(tree))

    log.info("member added group=%s members=%d root=%s",
             name, rec.member_count, rec.tree_root[:16])
    return MembershipChange(
        name=rec.name, members=rec.members, tree_root=rec.tree_root,
        member_count=rec.member_count, added_member=body.user_id,
        updated_at=rec.updated_at,
    )


@router.delete("/group/{name}/member/{user_id}", tags=["members"],
               response_model=MembershipChange)
async def remove_member(
    name: str,
    user_id: str,
    store: GroupStore = Depends(get_store),
    locks: GroupLocks = Depends(get_locks),
):
    async with locks.for_group(name):
        rec = await _load_group(store, name)
        tree = MerkleTree(rec.members)
        try:
            tree.remove_member(user_id)
        except MemberNotFoundError as exc:
            raise _tree_http_error(exc)
        rec = await store.save_members(name, tree.get_members(), _root_of(tree))

    log.info("member removed group=%s members=%d", name, rec.member_count)
    return MembershipChange(
        name=rec.name, members=rec.members, tree_root=rec.tree_root,
        member_count=rec.member_count, removed_member=user_id,
        updated_at=rec.updated_at,
    )


@router.put("/group/{name}/members", tags=["members"], response_model=MembershipChange)
async def replace_members(
    name: str,
    body: MembersReplace,
    store: GroupStore = Depends(get_store),
    locks: GroupLocks = Depends(get_locks),
):
    """Replace the whole member list. The list is taken as given, duplicates included."""
    async with locks.for_group(name):
        rec = await _load_group(store, name)
        tree = MerkleTree(rec.members)
        try:
            tree.update_group(body.members)
        except InvalidInputError as exc:
            raise _tree_http_error(exc)
        try:
            rec = await store.save_members(name, tree.get_members(), tree.get_root())
        except GroupNotFoundError:
            raise HTTPException(404, detail=f"Group {name} not found")

    log.info("members replaced group=%s members=%d root=%s",
             name, rec.member_count, rec.tree_root[:16])
    return MembershipChange(
        name=rec.name, members=rec.members, tree_root=rec.tree_root,
        member_count=rec.member_count, updated_at=rec.updated_at,
    )


#  Proofs

@router.get("/group/{name}/proof/{user_id}", tags=["proofs"], response_model=ProofOut)
async def generate_proof(name: str, user_id: str, store: GroupStore = Depends(get_store)):
    """Membership proof for one user, with a receipt binding its root to this group."""
    rec = await _load_group(store, name)
    tree = MerkleTree(rec.members)
    if not tree.is_member(user_id):
        raise HTTPException(404, detail="User is not a member of this group")
    try:
        proof = tree.generate_proof(user_id)
    except MerkleTreeError as exc:
        raise _tree_http_error(exc)

    if rec.tree_root and proof.root != rec.tree_root:
        log.warning("stored root differs from rebuilt root group=%s stored=%s rebuilt=%s",
                    name, rec.tree_root[:16], proof.root[:16])

    generated_at = utc_now()
    return ProofOut(
        group_name=rec.name,
        user_id=user_id,
        proof=proof.to_dict(),
        signature=sign_receipt(rec.name, proof.root, generated_at),
        signer_id=signer_id(),
        generated_at=generated_at,
    )


@router.post("/verify", tags=["proofs"], response_model=VerifyResult)
async def verify(body: VerifyRequest = Body(...)):
    """Check a proof against the root it claims. No group lookup is involved."""
    valid = verify_proof(body.proof.to_wire())
    sig_valid = None
    if body.signature is not None:
        sig_valid = verify_receipt(body.group_name, body.proof.root,
                                   body.generated_at, body.signature)
    log.info("verify root=%s valid=%s sig_valid=%s", body.proof.root[:16], valid, sig_valid)
    return VerifyResult(valid=valid, root=body.proof.root,
                        signature_valid=sig_valid, verified_at=utc_now())


@router.get("/pubkey", tags=["proofs"])
async def public_key():
    """Public key for checking proof receipts."""
    return {
        "signer_id": signer_id(),
        "key_fingerprint": key_fingerprint(),
        "public_key_pem": public_key_pem(),
    }


#  App

def create_app(store: Optional[GroupStore] = None,
               publisher: Optional[RecordPublisher] = None) -> FastAPI:
    app = FastAPI(
        title="Merkle Group Registry",
        description=(
            "Named groups whose membership is fingerprinted by a Merkle root.\n\n"
            "**Flow**: members -> Merkle tree -> root stored + published as a name record\n\n"
            "Proofs returned by `/group/{name}/proof/{user}` verify against the root alone."
        ),
        version=API_VERSION,
    )
    app.add_middleware(CORSMiddleware, allow_origins=["*"],
                       allow_methods=["*"], allow_headers=["*"])

    app.state.store = store
    app.state.publisher = publisher or get_publisher()
    app.state.locks = GroupLocks()

    @app.on_event("startup")
    async def startup():
        if app.state.store is None:
            app.state.store = await build_store()
        log.info("Group registry started - store=%s publisher=%s",
                 type(app.state.store).__name__, type(app.state.publisher).__name__)

    @app.on_event("shutdown")
    async def shutdown():
        if app.state.store is not None:
            await app.state.store.close()

    app.include_router(router)
    return app


app = create_app()


def run():
    import uvicorn
    uvicorn.run("merkle_groups.main:app",
                host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", "8000")))
