import asyncio
import logging
from typing import Optional

from substrateinterface.utils.ss58 import ss58_decode

from vested_uploader.errors import EventDecodeError, RowSubmissionError
from vested_uploader.models import SubmissionOutcome, VestingRow
from vested_uploader.on_chain.decode import decode_outcome
from vested_uploader.variables import (
    CONFIRMATION_TIMEOUT_SECONDS,
    CONTRACT_EMITTED_METHOD,
    CONTRACTS_SECTION,
    ROW_DELAY_SECONDS,
    TERMINAL_STATUSES,
)

logger = logging.getLogger(__name__)


def is_confirmation(event, contract_address: Optional[str]) -> bool:
    """True for a ContractEmitted event raised by the contract we are calling."""
    if event.section != CONTRACTS_SECTION or event.method != CONTRACT_EMITTED_METHOD:
        return False
    if contract_address is None or not event.data:
        return True
    return _account_id(event.data[0]) == _account_id(contract_address)


def _account_id(value) -> str:
    """Public key hex behind an SS58 or 0x-hex account, so network prefixes do not matter."""
    text = str(value).strip()
    if text.startswith("0x"):
        return text[2:].lower()
    try:
        return ss58_decode(text).lower()
    except ValueError:
        return text


class SubmissionController:
    """
    Push every row of a source through add_vested_balance, one at a time.

    Per row: pause the source, build/sign/broadcast, wait for the contract's
    confirmation event (bounded by `confirmation_timeout`) and decode it. Once
    the node has reported any status for the transaction, sleep `delay`
    seconds. Then resume the source. Failures are logged and the run
    moves on to the next row.
    """

    def __init__(
        self,
        context,
        source,
        delay: float = ROW_DELAY_SECONDS,
        confirmation_timeout: float = CONFIRMATION_TIMEOUT_SECONDS,
        sleep=asyncio.sleep,
    ):
        self.context = context
        self.source = source
        self.delay = delay
        self.confirmation_timeout = confirmation_timeout
        self._sleep = sleep
        self._accepted = False

    @property
    def contract_address(self) -> Optional[str]:
        return getattr(self.context, "contract_address", None)

    async def run(self) -> None:
        await self.source.stream(self.process_row, on_end=self._on_end)

    def _on_end(self) -> None:
        logger.info("CSV processing completed.")

    async def process_row(self, row: VestingRow) -> Optional[SubmissionOutcome]:
        self.source.pause()
        self._accepted = False
        try:
            logger.info("No: %s", row.sequence_number)
            logger.info("Address: %s", row.address)
            logger.info("Balance: %s", row.amount)

            subscription = await self._broadcast(row)
            outcome = await self._confirm(row, subscription)
            logger.info("Row %s outcome: %s", row.sequence_number, outcome)
            return outcome

        except Exception:
            logger.exception(
                "Error processing row: No=%s Address=%s Balance=%s",
                row.sequence_number,
                row.address,
                row.amount,
            )
            return None

        finally:
            try:
                if self._accepted:
                    await self._sleep(self.delay)
            finally:
                self.source.resume()

    async def _broadcast(self, row: VestingRow):
        try:
            return await self.context.add_vested_balance(row.address, row.amount)
        except Exception as exc:
            raise RowSubmissionError(f"Submission of row {row.sequence_number} failed: {exc}", row) from exc

    async def _confirm(self, row: VestingRow, subscription) -> SubmissionOutcome:
        try:
            return await asyncio.wait_for(
                self._await_confirmation(row, subscription), self.confirmation_timeout
            )
        except asyncio.TimeoutError:
            logger.warning(
                "No confirmation for row %s within %ss", row.sequence_number, self.confirmation_timeout
            )
            return SubmissionOutcome.transport_failure()
        except RowSubmissionError:
            raise
        except Exception as exc:
            raise RowSubmissionError(f"Row {row.sequence_number} was not accepted: {exc}", row) from exc
        finally:
            subscription.unsubscribe()
            await subscription.wait_closed()

    async def _await_confirmation(self, row: VestingRow, subscription) -> SubmissionOutcome:
        async for update in subscription:
            # The node has taken the transaction once it reports any status
            self._accepted = True
            logger.info("Status: %s", update.status)

            for event in update.events:
                if not is_confirmation(event, self.contract_address):
                    continue
                try:
                    return decode_outcome(event.data)
                except EventDecodeError as exc:
                    raise RowSubmissionError(
                        f"Undecodable confirmation for row {row.sequence_number}: {exc}", row
                    ) from exc

            if update.dispatch_error is not None:
                raise RowSubmissionError(
                    f"Row {row.sequence_number} dispatch failed: {update.dispatch_error}", row
                )
            if update.status in TERMINAL_STATUSES:
                return SubmissionOutcome.transport_failure()

        logger.warning("Status stream for row %s closed without confirmation", row.sequence_number)
        return SubmissionOutcome.transport_failure()
