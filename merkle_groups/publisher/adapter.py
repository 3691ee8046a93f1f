"""
publisher/adapter.py - Record publisher interface.

After a group is created its root is published as an opaque text record in
a name registry, so third parties can learn the current fingerprint without
trusting this service. The API calls publish_root() without knowing whether
the backend is ENS or a test stub. Swapping backends only requires changing
the RECORD_BACKEND env var.

Publishing never raises for backend failures: the result carries the error
and the group is still created.
"""
import logging
import os
import time
from typing import Optional

log = logging.getLogger("groups.publisher")

DEFAULT_PARENT_DOMAIN = "eth"
DEFAULT_TEXT_KEY = "merkle_root"


class PublishResult:
    __slots__ = ("tx_hash", "error")

    def __init__(self, tx_hash: Optional[str] = None, error: Optional[str] = None):
        self.tx_hash = tx_hash
        self.error = error

    @property
    def success(self) -> bool:
        return self.error is None and self.tx_hash is not None


class RecordPublisher:
    """Interface every publishing backend implements."""

    def __init__(self, parent_domain: Optional[str] = None, text_key: Optional[str] = None):
        self.parent_domain = parent_domain or os.getenv("ENS_PARENT_DOMAIN", DEFAULT_PARENT_DOMAIN)
        self.text_key = text_key or os.getenv("ENS_TEXT_KEY", DEFAULT_TEXT_KEY)

    def record_name(self, group_name: str) -> str:
        """Fully qualified registry name for a group, e.g. 'devs.eth'."""
        return f"{group_name.lower()}.{self.parent_domain}"

    async def publish_root(self, group_name: str, root: str,
                           owner_address: Optional[str]) -> PublishResult:
        raise NotImplementedError

    async def get_owner(self, group_name: str) -> Optional[str]:
        raise NotImplementedError

    async def get_published_root(self, group_name: str) -> Optional[str]:
        raise NotImplementedError


#  Stub backend

class StubPublisher(RecordPublisher):
    """In-memory registry. Records live as long as the instance."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._records: dict[str, dict] = {}
        self._counter = 0

    async def publish_root(self, group_name: str, root: str,
                           owner_address: Optional[str]) -> PublishResult:
        self._counter += 1
        tx_hash = f"0xstub{self._counter:08x}{'a' * 52}"
        name = self.record_name(group_name)
        self._records[name] = {
            "owner": owner_address,
            "text": {self.text_key: root},
            "tx_hash": tx_hash,
            "ts": int(time.time()),
        }
        log.info("stub publish name=%s root=%s tx=%s", name, root[:16], tx_hash[:16])
        return PublishResult(tx_hash=tx_hash)

    async def get_owner(self, group_name: str) -> Optional[str]:
        rec = self._records.get(self.record_name(group_name))
        return rec["owner"] if rec else None

    async def get_published_root(self, group_name: str) -> Optional[str]:
        rec = self._records.get(self.record_name(group_name))
        return rec["text"].get(self.text_key) if rec else None


def get_publisher() -> RecordPublisher:
    """Return the backend selected by RECORD_BACKEND."""
    backend = os.getenv("RECORD_BACKEND", "stub")  # stub | ens
    if backend == "ens":
        from .ens import EnsPublisher
        return EnsPublisher()
    return StubPublisher()
