"""
Chain session, contract handle and signer for the uploader.

connect(settings) opens the websocket, loads the contract metadata and the
owner keypair, and yields a ChainContext that lives for the whole run.
substrate-interface is synchronous and its websocket is not shared safely
between threads, so every call into it runs on the context's single worker
thread. The event loop stays free while the node answers.

add_vested_balance() builds, signs and broadcasts one Contracts.call and
returns an ExtrinsicSubscription streaming StatusUpdate items:
  Ready / Broadcast / Future ...  -> status only
  InBlock                         -> status + triggered events + dispatch error
  Invalid / Dropped / Usurped     -> status only, stream ends
"""

import asyncio
import logging
import threading
from concurrent.futures import Executor, ThreadPoolExecutor
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from substrateinterface import ExtrinsicReceipt, Keypair, KeypairType, SubstrateInterface
from substrateinterface.contracts import ContractInstance

from vested_uploader.errors import StartupConfigurationError
from vested_uploader.models import ChainEvent, StatusUpdate
from vested_uploader.variables import (
    ADD_VESTED_BALANCE_MESSAGE,
    ADDRESS_ARG,
    BALANCE_ARG,
    CONTRACT_EMITTED_METHOD,
    STORAGE_DEPOSIT_LIMIT,
    TERMINAL_STATUSES,
    UNWATCH_GRACE_SECONDS,
)

logger = logging.getLogger(__name__)

KEYPAIR_TYPES = {
    "sr25519": KeypairType.SR25519,
    "ed25519": KeypairType.ED25519,
    "ecdsa": KeypairType.ECDSA,
}

_DONE = object()


# ---------- Event helpers ----------
def _section(module_id: str) -> str:
    """Runtime pallet name -> section name as the node's JS API reports it ("Contracts" -> "contracts")."""
    return module_id[:1].lower() + module_id[1:] if module_id else ""


def _status_name(result: Any) -> tuple:
    """author_extrinsicUpdate result ("ready" or {"inBlock": hash}) -> ("InBlock", hash)."""
    if isinstance(result, dict):
        key, detail = next(iter(result.items()))
    else:
        key, detail = str(result), None
    return key[:1].upper() + key[1:], detail


def to_chain_event(substrate: SubstrateInterface, record: Any) -> ChainEvent:
    value = record.value if hasattr(record, "value") else record
    event = value.get("event", value)
    module_id = value.get("module_id") or event.get("module_id", "")
    event_id = value.get("event_id") or event.get("event_id", "")
    attributes = value.get("attributes", event.get("attributes"))

    data: List[Any] = []
    if event_id == CONTRACT_EMITTED_METHOD:
        if isinstance(attributes, dict):
            contract, raw = attributes.get("contract"), attributes.get("data")
        else:
            contract, raw = attributes[0], attributes[1]
        # Re-encode as SCALE Bytes so the payload carries its compact length prefix
        encoded = substrate.create_scale_object("Bytes").encode(raw)
        data = [contract, bytes(encoded.data)]
    elif isinstance(attributes, dict):
        data = list(attributes.values())
    elif attributes is not None:
        data = list(attributes) if isinstance(attributes, (list, tuple)) else [attributes]

    return ChainEvent(section=_section(module_id), method=event_id, data=data)


# ---------- Status stream ----------
class ExtrinsicSubscription:
    """
    Async iterator over the status updates of one submitted extrinsic.

    The websocket subscription runs in a worker thread; updates are handed to
    the event loop with call_soon_threadsafe. unsubscribe() stops the watch at
    the next message from the node; wait_closed() also resets the websocket
    when the node stays silent, so the worker thread is always released.
    """

    def __init__(
        self,
        substrate: SubstrateInterface,
        extrinsic,
        loop: asyncio.AbstractEventLoop,
        executor: Optional[Executor] = None,
    ):
        self._substrate = substrate
        self._extrinsic = extrinsic
        self._loop = loop
        self._executor = executor
        self._queue: asyncio.Queue = asyncio.Queue()
        self._cancelled = threading.Event()
        self._worker: Optional[asyncio.Future] = None

    @property
    def extrinsic_hash(self) -> str:
        return "0x" + self._extrinsic.extrinsic_hash.hex()

    def start(self) -> "ExtrinsicSubscription":
        self._worker = self._loop.run_in_executor(self._executor, self._watch)
        return self

    def unsubscribe(self) -> None:
        self._cancelled.set()

    async def wait_closed(self) -> None:
        """Unsubscribe and return once the worker thread has left the websocket."""
        self.unsubscribe()
        if self._worker is None or self._worker.done():
            return
        try:
            await asyncio.wait_for(asyncio.shield(self._worker), UNWATCH_GRACE_SECONDS)
            return
        except asyncio.TimeoutError:
            pass

        # The node sent nothing since unsubscribe(); abort the socket to wake the blocked recv
        logger.warning("Watch of %s is still blocked, resetting the websocket", self.extrinsic_hash)
        websocket = getattr(self._substrate, "websocket", None)
        if websocket is not None:
            websocket.abort()
        try:
            await asyncio.wait_for(asyncio.shield(self._worker), UNWATCH_GRACE_SECONDS)
        except asyncio.TimeoutError:
            raise ConnectionError(f"Watch of {self.extrinsic_hash} did not release the websocket") from None
        await self._loop.run_in_executor(self._executor, self._substrate.connect_websocket)

    def __aiter__(self):
        return self

    async def __anext__(self) -> StatusUpdate:
        item = await self._queue.get()
        if item is _DONE:
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            raise item
        return item

    def _emit(self, item) -> None:
        self._loop.call_soon_threadsafe(self._queue.put_nowait, item)

    def _handle(self, message: Dict[str, Any], update_nr: int, subscription_id: str):
        if self._cancelled.is_set():
            self._substrate.rpc_request("author_unwatchExtrinsic", [subscription_id])
            return {"status": "Unsubscribed"}

        result = message.get("params", {}).get("result")
        if result is None:
            return None

        status, detail = _status_name(result)
        if status == "InBlock":
            return {"status": status, "block_hash": detail}

        self._emit(StatusUpdate(status=status))
        if status in TERMINAL_STATUSES:
            return {"status": status}
        return None

    def _watch(self) -> None:
        try:
            outcome = self._substrate.rpc_request(
                "author_submitAndWatchExtrinsic",
                [str(self._extrinsic.data)],
                result_handler=self._handle,
            )
            block_hash = outcome.get("block_hash") if isinstance(outcome, dict) else None
            if block_hash and not self._cancelled.is_set():
                receipt = ExtrinsicReceipt(
                    substrate=self._substrate,
                    extrinsic_hash=self.extrinsic_hash,
                    block_hash=block_hash,
                )
                events = [to_chain_event(self._substrate, e) for e in receipt.triggered_events]
                dispatch_error = None if receipt.is_success else receipt.error_message
                self._emit(StatusUpdate("InBlock", events, dispatch_error))
        except Exception as exc:
            self._emit(exc)
        finally:
            self._emit(_DONE)


# ---------- Context ----------
class ChainContext:
    """Connected session, contract handle and signer shared by every row of a run."""

    def __init__(self, substrate: SubstrateInterface, contract: ContractInstance, keypair: Keypair, settings):
        self.substrate = substrate
        self.contract = contract
        self.keypair = keypair
        self.settings = settings
        self.chain_name = substrate.chain
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="chain-session")

    @property
    def contract_address(self) -> str:
        return self.settings.contract_address

    @classmethod
    def create(cls, substrate: SubstrateInterface, settings) -> "ChainContext":
        try:
            keypair = Keypair.create_from_uri(
                settings.owner_uri, crypto_type=KEYPAIR_TYPES[settings.crypto_type]
            )
        except Exception as exc:
            raise StartupConfigurationError(f"Cannot derive signer from OWNER: {exc}") from exc

        try:
            contract = ContractInstance.create_from_address(
                contract_address=settings.contract_address,
                metadata_file=str(settings.contract_abi_path),
                substrate=substrate,
            )
        except Exception as exc:
            raise StartupConfigurationError(
                f"Cannot load contract metadata from {settings.contract_abi_path}: {exc}"
            ) from exc
        return cls(substrate, contract, keypair, settings)

    def build_extrinsic(self, address: str, amount: str):
        """Encode add_vested_balance(address, amount) with the fixed budget and sign it."""
        data = self.contract.metadata.generate_message_data(
            name=ADD_VESTED_BALANCE_MESSAGE,
            args={ADDRESS_ARG: address, BALANCE_ARG: amount},
        )
        call = self.substrate.compose_call(
            call_module="Contracts",
            call_function="call",
            call_params={
                "dest": self.contract.contract_address,
                "value": 0,
                "gas_limit": self.settings.gas_limit,
                "storage_deposit_limit": STORAGE_DEPOSIT_LIMIT,
                "data": data.to_hex(),
            },
        )
        return self.substrate.create_signed_extrinsic(call=call, keypair=self.keypair)

    async def add_vested_balance(self, address: str, amount: str) -> ExtrinsicSubscription:
        loop = asyncio.get_running_loop()
        extrinsic = await loop.run_in_executor(self._executor, self.build_extrinsic, address, amount)
        subscription = ExtrinsicSubscription(self.substrate, extrinsic, loop, self._executor)
        logger.debug("Broadcasting extrinsic %s", subscription.extrinsic_hash)
        return subscription.start()

    def close(self) -> None:
        self.substrate.close()
        self._executor.shutdown(wait=False, cancel_futures=True)


@asynccontextmanager
async def connect(settings):
    """Open the node session for the lifetime of a run; the websocket is closed on exit."""
    try:
        substrate = await asyncio.to_thread(SubstrateInterface, url=settings.ws_endpoint)
    except Exception as exc:
        raise StartupConfigurationError(f"Cannot connect to {settings.ws_endpoint}: {exc}") from exc

    try:
        context = await asyncio.to_thread(ChainContext.create, substrate, settings)
    except BaseException:
        substrate.close()
        raise

    try:
        yield context
    finally:
        context.close()
