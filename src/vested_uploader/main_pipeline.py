# Main pipeline: read the vesting CSV and submit one add_vested_balance call per row
import argparse
import asyncio
import logging
import sys
from pathlib import Path

from vested_uploader.config import Settings
from vested_uploader.errors import StartupConfigurationError
from vested_uploader.off_chain.row_source import CsvRowSource
from vested_uploader.on_chain.session import connect
from vested_uploader.submitter import SubmissionController

LOG_FORMAT = "%(asctime)s %(levelname)s %(message)s"


def configure_logging(settings: Settings) -> None:
    handlers = [logging.StreamHandler()]
    if settings.log_file is not None:
        settings.log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(settings.log_file, mode="a"))  # Append mode
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="vested-uploader",
        description="Submit one add_vested_balance transaction per CSV row (No, Address, Balance).",
    )
    parser.add_argument("csv_path", nargs="?", type=Path, help="input CSV (defaults to CSV_PATH)")
    parser.add_argument("--env-file", help="dotenv file to load before reading the environment")
    parser.add_argument("--delay", type=float, dest="row_delay", help="seconds to wait between rows")
    parser.add_argument(
        "--timeout", type=float, dest="confirmation_timeout", help="seconds to wait for each confirmation"
    )
    parser.add_argument("--log-file", type=Path, help="append log lines to this file")
    return parser.parse_args(argv)


async def startup(settings: Settings) -> None:
    if settings.csv_path is None:
        raise StartupConfigurationError("No input CSV: pass a path or set CSV_PATH")
    source = CsvRowSource(settings.csv_path)
    source.check_columns()

    logging.info("Connecting to blockchain...")
    async with connect(settings) as context:
        logging.info("Connected to: %s", context.chain_name)
        controller = SubmissionController(
            context,
            source,
            delay=settings.row_delay,
            confirmation_timeout=settings.confirmation_timeout,
        )
        await controller.run()


def main(argv=None) -> int:
    args = parse_args(argv)
    try:
        settings = Settings.from_env(
            env_file=args.env_file,
            csv_path=args.csv_path,
            row_delay=args.row_delay,
            confirmation_timeout=args.confirmation_timeout,
            log_file=args.log_file,
        )
    except StartupConfigurationError as exc:
        logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
        logging.error("Startup failed: %s", exc)
        return 2

    configure_logging(settings)
    try:
        asyncio.run(startup(settings))
    except StartupConfigurationError as exc:
        logging.error("Startup failed: %s", exc)
        return 2
    except KeyboardInterrupt:
        logging.warning("Interrupted")
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
