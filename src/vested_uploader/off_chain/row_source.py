import asyncio
import inspect
from pathlib import Path
from typing import Awaitable, Callable, Iterator, Optional

import pandas as pd
from pandas.errors import EmptyDataError

from vested_uploader.errors import StartupConfigurationError
from vested_uploader.models import VestingRow
from vested_uploader.variables import ADDRESS_COLUMN, BALANCE_COLUMN, NUMBER_COLUMN


class CsvRowSource:
    """
    Lazy, pausable stream of VestingRow read from a CSV file.

    Rows are read one chunk at a time and nothing is read while the source is
    paused, so at most one record is materialized ahead of its consumer.
    """

    def __init__(
        self,
        path,
        number_column: str = NUMBER_COLUMN,
        address_column: str = ADDRESS_COLUMN,
        balance_column: str = BALANCE_COLUMN,
    ):
        self.path = Path(path)
        self.number_column = number_column
        self.address_column = address_column
        self.balance_column = balance_column
        self._flowing = asyncio.Event()
        self._flowing.set()
        self._handlers = set()

    @property
    def columns(self):
        return [self.number_column, self.address_column, self.balance_column]

    @property
    def paused(self) -> bool:
        return not self._flowing.is_set()

    def pause(self) -> None:
        self._flowing.clear()

    def resume(self) -> None:
        self._flowing.set()

    def check_columns(self) -> None:
        if not self.path.is_file():
            raise StartupConfigurationError(f"CSV file not found: {self.path}")
        try:
            header = pd.read_csv(self.path, nrows=0).rename(columns=str.strip)
        except EmptyDataError:
            raise StartupConfigurationError(f"CSV file {self.path} is empty") from None
        missing = [c for c in self.columns if c not in header.columns]
        if missing:
            raise StartupConfigurationError(
                f"CSV file {self.path} is missing columns: {', '.join(missing)}"
            )

    def rows(self) -> Iterator[VestingRow]:
        """Fresh iterator over the file; each call starts again from the first row."""
        reader = pd.read_csv(self.path, dtype=str, keep_default_na=False, chunksize=1)
        with reader:
            for chunk in reader:
                # A header-only file still yields one empty chunk
                if chunk.empty:
                    continue
                record = chunk.rename(columns=str.strip).iloc[0]
                yield VestingRow.from_record(
                    record[self.number_column],
                    record[self.address_column],
                    record[self.balance_column],
                )

    async def stream(
        self,
        on_row: Callable[[VestingRow], Awaitable[object]],
        on_end: Optional[Callable[[], object]] = None,
    ) -> None:
        """
        Deliver every row to `on_row`, honouring pause()/resume().

        Each handler is started as a task and given a chance to run up to its
        first suspension before the next row is considered. `on_end` is called
        once the last row has been delivered, the source is flowing again and
        every handler has finished.
        """
        rows = self.rows()
        try:
            while True:
                await self._flowing.wait()
                row = next(rows, None)
                if row is None:
                    break
                task = asyncio.ensure_future(on_row(row))
                self._handlers.add(task)
                task.add_done_callback(self._handlers.discard)
                await asyncio.sleep(0)
        finally:
            rows.close()

        await self._flowing.wait()
        if self._handlers:
            await asyncio.gather(*self._handlers)

        if on_end is not None:
            result = on_end()
            if inspect.isawaitable(result):
                await result
