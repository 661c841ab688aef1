"""
Pytest configuration and in-memory chain fakes
"""
import asyncio
import sys
import time
from pathlib import Path

import pytest

# Make the src/ layout importable without an editable install
src_dir = Path(__file__).resolve().parent.parent / "src"
if str(src_dir) not in sys.path:
    sys.path.insert(0, str(src_dir))

from vested_uploader.models import ChainEvent, StatusUpdate  # noqa: E402
from vested_uploader.off_chain.row_source import CsvRowSource  # noqa: E402

CONTRACT = "5FHneW46xGXgs5mUiveU4sbTyGBzmstUspZC92UhjJM694ty"
OTHER_CONTRACT = "5GrwvaEF5zXb26Fz9rcQpDWS57CtERHpNehXCPcNoHGKutQY"


def payload(discriminant, index, topic=b"\x11" * 32):
    """Raw event bytes: 32-byte topic, two filler bytes, discriminant, index."""
    return topic + bytes([0x00, 0x00, discriminant, index])


def emitted(discriminant, index, contract=CONTRACT):
    return ChainEvent("contracts", "ContractEmitted", [contract, payload(discriminant, index)])


def included(*events, dispatch_error=None):
    return StatusUpdate("InBlock", list(events), dispatch_error)


class FakeSubscription:
    """Replays scripted updates, raising any exception in the script; `hang=True` never yields after it."""

    def __init__(self, updates, hang=False, timeline=None, label=None):
        self.updates = list(updates)
        self.hang = hang
        self.unsubscribed = False
        self.closed = False
        self.timeline = timeline if timeline is not None else []
        self.label = label

    def unsubscribe(self):
        self.unsubscribed = True
        self.timeline.append(("unsubscribe", self.label, time.monotonic()))

    async def wait_closed(self):
        self.closed = True

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for update in self.updates:
            await asyncio.sleep(0)
            if isinstance(update, Exception):
                raise update
            yield update
        if self.hang:
            await asyncio.Event().wait()


class FakeContext:
    """
    Stands in for ChainContext. `scripts` maps an address to the list of
    updates its transaction produces, or to an exception raised on submit.
    """

    def __init__(self, scripts, contract_address=CONTRACT, hang=()):
        self.scripts = scripts
        self.contract_address = contract_address
        self.hang = set(hang)
        self.timeline = []
        self.calls = []
        self.subscriptions = {}
        self.in_flight = False
        self.overlaps = []

    async def add_vested_balance(self, address, amount):
        if self.in_flight:
            self.overlaps.append(address)
        self.in_flight = True
        self.calls.append((address, amount))
        self.timeline.append(("broadcast", address, time.monotonic()))
        await asyncio.sleep(0)
        script = self.scripts[address]
        if isinstance(script, Exception):
            self.in_flight = False
            raise script
        subscription = FakeSubscription(
            script, hang=address in self.hang, timeline=self.timeline, label=address
        )
        self.subscriptions[address] = subscription
        return subscription

    def row_done(self):
        self.in_flight = False


class RecordingSleep:
    def __init__(self, context=None):
        self.delays = []
        self.context = context

    async def __call__(self, delay):
        self.delays.append(delay)
        if self.context is not None:
            self.context.timeline.append(("sleep", delay, time.monotonic()))
        await asyncio.sleep(0)


@pytest.fixture
def write_csv(tmp_path):
    def _write(text, name="vested_address.csv"):
        path = tmp_path / name
        path.write_text(text, encoding="utf-8")
        return path

    return _write


class SpySource(CsvRowSource):
    """CsvRowSource that records pause/resume and releases the fake context on resume."""

    def __init__(self, path, context=None, **kwargs):
        super().__init__(path, **kwargs)
        self.context = context
        self.events = []

    def pause(self):
        self.events.append("pause")
        super().pause()

    def resume(self):
        self.events.append("resume")
        if self.context is not None:
            self.context.row_done()
            self.context.timeline.append(("resume", None, time.monotonic()))
        super().resume()
