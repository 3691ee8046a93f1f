"""
publisher/ens.py - ENS text record publisher using web3.py.

Connects to an Ethereum JSON-RPC endpoint, looks up the resolver of
<group>.<ENS_PARENT_DOMAIN> and calls setText(node, ENS_TEXT_KEY, root) from
the service wallet. The name must already exist and the wallet must be
allowed to write its records; registering names is not done here.

Environment variables:
  RPC_URL     - JSON-RPC endpoint (default: Sepolia public node)
  PRIVATE_KEY - 32-byte hex key of the service wallet

The private key never leaves this process; only signed raw transactions do.
"""
import asyncio
import logging
import os
from typing import Optional

from ens import ENS
from ens.utils import raw_name_to_hash
from web3 import Web3

from .adapter import PublishResult, RecordPublisher

log = logging.getLogger("groups.ens")

DEFAULT_RPC_URL = "https://ethereum-sepolia-rpc.publicnode.com"

ZERO_ADDRESS = "0x" + "0" * 40


def _get_raw_tx(signed) -> bytes:
    # web3.py differs across versions: rawTransaction vs raw_transaction
    raw = getattr(signed, "raw_transaction", None)
    if raw is None:
        raw = getattr(signed, "rawTransaction", None)
    if raw is None:
        raise RuntimeError("SignedTransaction missing raw tx bytes (raw_transaction/rawTransaction)")
    return raw


class EnsPublisher(RecordPublisher):

    def __init__(self, rpc_url: Optional[str] = None, private_key: Optional[str] = None, **kwargs):
        super().__init__(**kwargs)
        self._rpc_url = rpc_url or os.getenv("RPC_URL", DEFAULT_RPC_URL)
        self._private_key = private_key if private_key is not None else os.getenv("PRIVATE_KEY", "")
        self._w3: Optional[Web3] = None
        self._ns: Optional[ENS] = None

    def _connect(self):
        if self._w3 is not None:
            return
        self._w3 = Web3(Web3.HTTPProvider(self._rpc_url))
        self._ns = ENS.from_web3(self._w3)
        log.info("ENS connected: rpc=%s parent=%s", self._rpc_url, self.parent_domain)

    async def publish_root(self, group_name: str, root: str,
                           owner_address: Optional[str]) -> PublishResult:
        name = self.record_name(group_name)
        try:
            if not self._private_key:
                return PublishResult(error="PRIVATE_KEY not configured - cannot publish")
            self._connect()

            resolver = self._ns.resolver(name)
            if resolver is None:
                return PublishResult(error=f"no resolver set for {name}")

            account = self._w3.eth.account.from_key(self._private_key)
            fn = resolver.functions.setText(raw_name_to_hash(name), self.text_key, root)

            # preflight: surface auth reverts before spending gas
            try:
                fn.call({"from": account.address})
            except Exception as exc:
                return PublishResult(error=f"preflight revert: {exc}")

            base_tx = {
                "from": account.address,
                "nonce": self._w3.eth.get_transaction_count(account.address),
            }
            try:
                gas_limit = int(fn.estimate_gas(base_tx) * 1.30) + 20_000
            except Exception:
                gas_limit = 200_000

            tx = fn.build_transaction({**base_tx, "gas": gas_limit})
            signed = account.sign_transaction(tx)
            tx_hash = self._w3.eth.send_raw_transaction(_get_raw_tx(signed))

            receipt = await asyncio.get_event_loop().run_in_executor(
                None, lambda: self._w3.eth.wait_for_transaction_receipt(tx_hash, timeout=120)
            )
            if int(receipt["status"]) != 1:
                log.warning("setText reverted name=%s tx=%s gasUsed=%s",
                            name, tx_hash.hex(), receipt.get("gasUsed"))
                return PublishResult(error=f"tx reverted: {tx_hash.hex()}")

            log.info("published name=%s root=%s tx=%s owner=%s",
                     name, root[:16], tx_hash.hex(), owner_address)
            return PublishResult(tx_hash=tx_hash.hex())

        except Exception as exc:
            log.error("ENS publish failed for %s: %s", name, exc)
            return PublishResult(error=str(exc))

    async def get_owner(self, group_name: str) -> Optional[str]:
        try:
            self._connect()
            owner = self._ns.owner(self.record_name(group_name))
        except Exception as exc:
            log.error("ENS owner lookup failed: %s", exc)
            return None
        if not owner or owner == ZERO_ADDRESS:
            return None
        return owner

    async def get_published_root(self, group_name: str) -> Optional[str]:
        try:
            self._connect()
            return self._ns.get_text(self.record_name(group_name), self.text_key) or None
        except Exception as exc:
            log.error("ENS getText failed: %s", exc)
            return None
