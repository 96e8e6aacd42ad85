"""Ledger configuration.

Values come from three layers, later layers winning:
1. Defaults on LedgerConfig.
2. An optional JSON config file.
3. Environment variables prefixed SEALEDTASK_, with a .env file
   loaded first through python-dotenv.

The signer addresses are the verification key material for the
cryptographic service. They are configuration, never generated here;
a ledger built from a config without them refuses to start.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv

ENV_PREFIX = "SEALEDTASK_"
DEFAULT_DATA_DIR = Path("data")


def _split_addresses(raw: str) -> tuple[str, ...]:
    return tuple(part.strip() for part in raw.split(",") if part.strip())


@dataclass(frozen=True)
class LedgerConfig:
    """Runtime configuration for a TaskLedgerService."""
    data_dir: Path = DEFAULT_DATA_DIR
    reputation_delta: int = 10
    crypto_timeout_seconds: float = 10.0
    kms_signers: tuple[str, ...] = field(default_factory=tuple)
    kms_threshold: int = 1
    input_verifiers: tuple[str, ...] = field(default_factory=tuple)
    log_environment: str = "production"

    def __post_init__(self) -> None:
        if self.reputation_delta < 0:
            raise ValueError(f"reputation_delta must be non-negative, got {self.reputation_delta}")
        if self.crypto_timeout_seconds <= 0:
            raise ValueError(
                f"crypto_timeout_seconds must be positive, got {self.crypto_timeout_seconds}"
            )
        if self.log_environment not in ("production", "development"):
            raise ValueError(f"Unknown log_environment: {self.log_environment!r}")

    @property
    def event_log_path(self) -> Path:
        return self.data_dir / "events.jsonl"

    @property
    def state_path(self) -> Path:
        return self.data_dir / "state.json"

    @classmethod
    def from_mapping(cls, values: dict[str, Any]) -> LedgerConfig:
        kwargs: dict[str, Any] = {}
        if "data_dir" in values:
            kwargs["data_dir"] = Path(values["data_dir"])
        if "reputation_delta" in values:
            kwargs["reputation_delta"] = int(values["reputation_delta"])
        if "crypto_timeout_seconds" in values:
            kwargs["crypto_timeout_seconds"] = float(values["crypto_timeout_seconds"])
        if "kms_threshold" in values:
            kwargs["kms_threshold"] = int(values["kms_threshold"])
        if "log_environment" in values:
            kwargs["log_environment"] = str(values["log_environment"])
        for key in ("kms_signers", "input_verifiers"):
            if key in values:
                raw = values[key]
                kwargs[key] = _split_addresses(raw) if isinstance(raw, str) else tuple(raw)
        return cls(**kwargs)


def _env_overrides() -> dict[str, str]:
    names = (
        "data_dir",
        "reputation_delta",
        "crypto_timeout_seconds",
        "kms_signers",
        "kms_threshold",
        "input_verifiers",
        "log_environment",
    )
    overrides = {}
    for name in names:
        value = os.getenv(ENV_PREFIX + name.upper())
        if value is not None and value != "":
            overrides[name] = value
    return overrides


def load_config(
    config_path: Optional[Path] = None,
    env_file: Optional[Path] = None,
) -> LedgerConfig:
    """Build a LedgerConfig from file and environment.

    Raises ValueError for invalid values and OSError if config_path is
    given but unreadable.
    """
    if env_file is not None:
        load_dotenv(env_file)
    else:
        load_dotenv()

    values: dict[str, Any] = {}
    if config_path is not None:
        values.update(json.loads(config_path.read_text(encoding="utf-8")))
    values.update(_env_overrides())
    return LedgerConfig.from_mapping(values)
