import asyncio
import threading

import pytest

from conftest import CONTRACT
from vested_uploader.models import OutcomeKind, VestingRow
from vested_uploader.off_chain.row_source import CsvRowSource
from vested_uploader.submitter import SubmissionController
from vested_uploader.config import Settings
from vested_uploader.on_chain import session
from vested_uploader.on_chain.decode import decode
from vested_uploader.on_chain.session import ChainContext, ExtrinsicSubscription, to_chain_event

# ink! event data: event index, 32-byte operator topic, VestingStatus::EmitSuccess(VestedBalanceAdded)
EMITTED_DATA = "0x" + (bytes([0x00]) + b"\x22" * 32 + bytes([0x00, 0x01])).hex()


class FakeScaleBytes:
    def __init__(self, data):
        self.data = bytearray(data)


class FakeBytesType:
    def encode(self, value):
        raw = bytes.fromhex(value[2:]) if isinstance(value, str) else bytes(value)
        return FakeScaleBytes(bytes([len(raw) << 2]) + raw)


class FakeSubstrate:
    chain = "Development"

    def __init__(self, messages=(), error=None):
        self.messages = list(messages)
        self.error = error
        self.requests = []
        self.calls = []
        self.closed = False

    def create_scale_object(self, type_string):
        assert type_string == "Bytes"
        return FakeBytesType()

    def rpc_request(self, method, params, result_handler=None):
        self.requests.append(method)
        if method == "author_unwatchExtrinsic":
            return {"result": True}
        if self.error is not None:
            raise self.error
        for update_nr, message in enumerate(self.messages):
            result = result_handler(message, update_nr, "sub-1")
            if result is not None:
                return result
        return None

    def compose_call(self, call_module, call_function, call_params):
        self.calls.append((call_module, call_function, call_params))
        return "call"

    def create_signed_extrinsic(self, call, keypair):
        return ("signed", call, keypair)

    def close(self):
        self.closed = True


class FakeExtrinsic:
    data = "0x1234"
    extrinsic_hash = b"\x01" * 32


class FakeReceipt:
    triggered_events = [
        {"module_id": "Balances", "event_id": "Withdraw", "attributes": {"who": CONTRACT, "amount": 1}},
        {"module_id": "Contracts", "event_id": "ContractEmitted",
         "attributes": {"contract": CONTRACT, "data": EMITTED_DATA}},
    ]
    is_success = True
    error_message = None

    def __init__(self, substrate, extrinsic_hash, block_hash):
        self.extrinsic_hash = extrinsic_hash
        self.block_hash = block_hash


def message(result):
    return {"jsonrpc": "2.0", "method": "author_extrinsicUpdate", "params": {"result": result, "subscription": "sub-1"}}


async def collect(subscription):
    return [update async for update in subscription]


@pytest.mark.asyncio
async def test_streams_statuses_until_in_block(monkeypatch):
    monkeypatch.setattr(session, "ExtrinsicReceipt", FakeReceipt)
    substrate = FakeSubstrate([
        message("ready"),
        message({"broadcast": ["12D3KooW"]}),
        message({"inBlock": "0xb10c"}),
    ])
    subscription = ExtrinsicSubscription(substrate, FakeExtrinsic(), asyncio.get_running_loop()).start()

    updates = await asyncio.wait_for(collect(subscription), 1)

    assert [u.status for u in updates] == ["Ready", "Broadcast", "InBlock"]
    in_block = updates[-1]
    assert in_block.dispatch_error is None
    assert [(e.section, e.method) for e in in_block.events] == [
        ("balances", "Withdraw"),
        ("contracts", "ContractEmitted"),
    ]
    assert in_block.events[1].data[0] == CONTRACT
    assert decode(in_block.events[1].data) == "Success::VestedBalanceAdded"
    assert substrate.requests == ["author_submitAndWatchExtrinsic"]


@pytest.mark.asyncio
async def test_terminal_status_ends_stream(monkeypatch):
    monkeypatch.setattr(session, "ExtrinsicReceipt", FakeReceipt)
    substrate = FakeSubstrate([message("future"), message("dropped"), message({"inBlock": "0xb10c"})])
    subscription = ExtrinsicSubscription(substrate, FakeExtrinsic(), asyncio.get_running_loop()).start()

    updates = await asyncio.wait_for(collect(subscription), 1)

    assert [u.status for u in updates] == ["Future", "Dropped"]


@pytest.mark.asyncio
async def test_node_rejection_is_raised_to_the_consumer():
    substrate = FakeSubstrate(error=RuntimeError("1010: Invalid Transaction"))
    subscription = ExtrinsicSubscription(substrate, FakeExtrinsic(), asyncio.get_running_loop()).start()

    with pytest.raises(RuntimeError, match="1010"):
        await asyncio.wait_for(collect(subscription), 1)


@pytest.mark.asyncio
async def test_unsubscribe_stops_the_watch():
    substrate = FakeSubstrate([message("ready"), message({"inBlock": "0xb10c"})])
    subscription = ExtrinsicSubscription(substrate, FakeExtrinsic(), asyncio.get_running_loop())
    subscription.unsubscribe()
    subscription.start()

    updates = await asyncio.wait_for(collect(subscription), 1)

    assert updates == []
    assert substrate.requests == ["author_submitAndWatchExtrinsic", "author_unwatchExtrinsic"]


def test_contract_emitted_tuple_attributes():
    record = {"event": {"module_id": "Contracts", "event_id": "ContractEmitted",
                        "attributes": (CONTRACT, EMITTED_DATA)}}
    event = to_chain_event(FakeSubstrate(), record)
    assert event.section == "contracts"
    assert decode(event.data) == "Success::VestedBalanceAdded"


class FakeMessageData:
    def to_hex(self):
        return "0xabcd"


class FakeMetadata:
    def __init__(self):
        self.messages = []

    def generate_message_data(self, name, args):
        self.messages.append((name, args))
        return FakeMessageData()


class FakeContract:
    contract_address = CONTRACT

    def __init__(self):
        self.metadata = FakeMetadata()


def test_build_extrinsic_uses_fixed_budget(tmp_path):
    settings = Settings(
        ws_endpoint="ws://127.0.0.1:9944",
        contract_address=CONTRACT,
        contract_abi_path=tmp_path / "vesting.json",
        owner_uri="//Alice",
    )
    substrate = FakeSubstrate()
    contract = FakeContract()
    context = ChainContext(substrate, contract, "alice", settings)

    extrinsic = context.build_extrinsic("5F...addr1", "100")

    assert context.chain_name == "Development"
    assert context.contract_address == CONTRACT
    assert contract.metadata.messages == [
        ("add_vested_balance", {"address": "5F...addr1", "original_balance": "100"})
    ]
    module, function, params = substrate.calls[0]
    assert (module, function) == ("Contracts", "call")
    assert params["dest"] == CONTRACT
    assert params["value"] == 0
    assert params["gas_limit"] == {"ref_time": 300_000_000_000, "proof_size": 500_000}
    assert params["storage_deposit_limit"] is None
    assert params["data"] == "0xabcd"
    assert extrinsic == ("signed", "call", "alice")

    context.close()
    assert substrate.closed


class FakeWebSocket:
    def __init__(self):
        self.released = threading.Event()

    def abort(self):
        self.released.set()


class SilentSubstrate(FakeSubstrate):
    """Reports "ready" and then blocks in recv until its websocket is aborted."""

    def __init__(self):
        super().__init__()
        self.websocket = FakeWebSocket()
        self.aborted = []
        self.reconnects = 0

    def rpc_request(self, method, params, result_handler=None):
        self.requests.append(method)
        if method == "author_unwatchExtrinsic":
            return {"result": True}
        result_handler(message("ready"), 0, "sub-1")
        websocket = self.websocket
        websocket.released.wait(5)
        self.aborted.append(websocket)
        raise ConnectionError("socket is already closed")

    def connect_websocket(self):
        self.reconnects += 1
        self.websocket = FakeWebSocket()

    def create_signed_extrinsic(self, call, keypair):
        return FakeExtrinsic()


@pytest.mark.asyncio
async def test_timed_out_watch_releases_the_session(tmp_path, write_csv, monkeypatch):
    monkeypatch.setattr(session, "UNWATCH_GRACE_SECONDS", 0.05)
    settings = Settings(
        ws_endpoint="ws://127.0.0.1:9944",
        contract_address=CONTRACT,
        contract_abi_path=tmp_path / "vesting.json",
        owner_uri="//Alice",
    )
    substrate = SilentSubstrate()
    context = ChainContext(substrate, FakeContract(), "alice", settings)
    source = CsvRowSource(write_csv("No,Address,Balance\n"))
    controller = SubmissionController(context, source, delay=0, confirmation_timeout=0.05)

    try:
        for number in ("1", "2", "3"):
            outcome = await asyncio.wait_for(
                controller.process_row(VestingRow(number, "5F...addr1", "100")), 2
            )
            assert outcome.kind is OutcomeKind.TRANSPORT_OR_TIMEOUT_FAILURE
    finally:
        context.close()

    assert len(substrate.aborted) == 3
    assert substrate.reconnects == 3
    assert len(substrate.calls) == 3
    assert not source.paused
