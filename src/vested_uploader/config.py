"""
Runtime settings for the uploader.

Values come from the process environment, optionally seeded from a .env file,
with CLI overrides on top. WS_ENDPOINT, CONTRACT_ADDRESS, CONTRACT_ABI_PATH and
OWNER are required; everything else has a default in variables.py.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv
from substrateinterface.utils.ss58 import is_valid_ss58_address

from vested_uploader import variables
from vested_uploader.errors import StartupConfigurationError

REQUIRED_KEYS = ("WS_ENDPOINT", "CONTRACT_ADDRESS", "CONTRACT_ABI_PATH", "OWNER")
CRYPTO_TYPES = ("sr25519", "ed25519", "ecdsa")


def _number(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise StartupConfigurationError(f"{key} must be a number, got {raw!r}") from None
    if value < 0:
        raise StartupConfigurationError(f"{key} must not be negative, got {raw!r}")
    return value


@dataclass(frozen=True)
class Settings:
    ws_endpoint: str
    contract_address: str
    contract_abi_path: Path
    owner_uri: str
    csv_path: Optional[Path] = None
    row_delay: float = variables.ROW_DELAY_SECONDS
    confirmation_timeout: float = variables.CONFIRMATION_TIMEOUT_SECONDS
    gas_ref_time: int = variables.GAS_REF_TIME
    gas_proof_size: int = variables.GAS_PROOF_SIZE
    crypto_type: str = variables.CRYPTO_TYPE
    log_file: Optional[Path] = None
    log_level: str = "INFO"

    @property
    def gas_limit(self) -> dict:
        return {"ref_time": self.gas_ref_time, "proof_size": self.gas_proof_size}

    @classmethod
    def from_env(
        cls,
        env: Optional[Mapping[str, str]] = None,
        env_file: Optional[str] = None,
        **overrides,
    ) -> "Settings":
        """
        Build and validate settings.

        When `env` is None the .env file (or `env_file`) is loaded into
        os.environ first and os.environ is read. Keyword overrides that are
        not None replace the corresponding field.
        """
        if env is None:
            load_dotenv(dotenv_path=env_file)
            env = os.environ

        missing = [key for key in REQUIRED_KEYS if not (env.get(key) or "").strip()]
        if missing:
            raise StartupConfigurationError(
                f"Missing required configuration: {', '.join(missing)}"
            )

        csv_path = (env.get("CSV_PATH") or "").strip()
        log_file = (env.get("LOG_FILE") or "").strip()
        settings = cls(
            ws_endpoint=env["WS_ENDPOINT"].strip(),
            contract_address=env["CONTRACT_ADDRESS"].strip(),
            contract_abi_path=Path(env["CONTRACT_ABI_PATH"].strip()),
            owner_uri=env["OWNER"].strip(),
            csv_path=Path(csv_path) if csv_path else None,
            row_delay=_number(env, "ROW_DELAY_SECONDS", variables.ROW_DELAY_SECONDS),
            confirmation_timeout=_number(
                env, "CONFIRMATION_TIMEOUT", variables.CONFIRMATION_TIMEOUT_SECONDS
            ),
            gas_ref_time=int(_number(env, "GAS_REF_TIME", variables.GAS_REF_TIME)),
            gas_proof_size=int(_number(env, "GAS_PROOF_SIZE", variables.GAS_PROOF_SIZE)),
            crypto_type=(env.get("CRYPTO_TYPE") or variables.CRYPTO_TYPE).strip().lower(),
            log_file=Path(log_file) if log_file else None,
            log_level=(env.get("LOG_LEVEL") or "INFO").strip().upper(),
        )

        overrides = {k: v for k, v in overrides.items() if v is not None}
        if overrides:
            settings = replace(settings, **overrides)
        settings.validate()
        return settings

    def validate(self) -> None:
        if not self.ws_endpoint.startswith(("ws://", "wss://")):
            raise StartupConfigurationError(
                f"WS_ENDPOINT must be a ws:// or wss:// URL, got {self.ws_endpoint!r}"
            )
        if not is_valid_ss58_address(self.contract_address):
            raise StartupConfigurationError(
                f"CONTRACT_ADDRESS is not a valid SS58 address: {self.contract_address!r}"
            )
        if not Path(self.contract_abi_path).is_file():
            raise StartupConfigurationError(
                f"CONTRACT_ABI_PATH does not exist: {self.contract_abi_path}"
            )
        if self.crypto_type not in CRYPTO_TYPES:
            raise StartupConfigurationError(
                f"CRYPTO_TYPE must be one of {', '.join(CRYPTO_TYPES)}, got {self.crypto_type!r}"
            )
        if self.confirmation_timeout <= 0:
            raise StartupConfigurationError("CONFIRMATION_TIMEOUT must be greater than zero")
