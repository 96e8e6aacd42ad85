"""Tests for layered ledger configuration."""

import json
import os
from pathlib import Path

import pytest

from sealedtask.config import LedgerConfig, load_config

SIGNER_A = "0x" + "aa" * 20
SIGNER_B = "0x" + "bb" * 20


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch) -> None:
    for name in list(os.environ):
        if name.startswith("SEALEDTASK_"):
            monkeypatch.delenv(name)


class TestLedgerConfig:
    def test_defaults(self) -> None:
        config = LedgerConfig()
        assert config.reputation_delta == 10
        assert config.kms_threshold == 1
        assert config.event_log_path == Path("data") / "events.jsonl"
        assert config.state_path == Path("data") / "state.json"

    def test_negative_delta_rejected(self) -> None:
        with pytest.raises(ValueError):
            LedgerConfig(reputation_delta=-5)

    def test_non_positive_timeout_rejected(self) -> None:
        with pytest.raises(ValueError):
            LedgerConfig(crypto_timeout_seconds=0)

    def test_unknown_log_environment(self) -> None:
        with pytest.raises(ValueError):
            LedgerConfig(log_environment="staging")

    def test_from_mapping_splits_addresses(self) -> None:
        config = LedgerConfig.from_mapping({"kms_signers": f"{SIGNER_A}, {SIGNER_B},"})
        assert config.kms_signers == (SIGNER_A, SIGNER_B)

    def test_from_mapping_accepts_lists(self) -> None:
        config = LedgerConfig.from_mapping({"input_verifiers": [SIGNER_A]})
        assert config.input_verifiers == (SIGNER_A,)


class TestLoadConfig:
    def test_json_file(self, tmp_path) -> None:
        path = tmp_path / "ledger.json"
        path.write_text(json.dumps({
            "data_dir": str(tmp_path / "ledger"),
            "kms_signers": [SIGNER_A, SIGNER_B],
            "kms_threshold": 2,
        }), encoding="utf-8")
        config = load_config(path, env_file=tmp_path / "absent.env")
        assert config.data_dir == tmp_path / "ledger"
        assert config.kms_threshold == 2
        assert config.kms_signers == (SIGNER_A, SIGNER_B)

    def test_environment_overrides_file(self, tmp_path, monkeypatch) -> None:
        path = tmp_path / "ledger.json"
        path.write_text(json.dumps({"reputation_delta": 3}), encoding="utf-8")
        monkeypatch.setenv("SEALEDTASK_REPUTATION_DELTA", "7")
        config = load_config(path, env_file=tmp_path / "absent.env")
        assert config.reputation_delta == 7

    def test_env_file(self, tmp_path) -> None:
        env_file = tmp_path / ".env"
        env_file.write_text(
            f"SEALEDTASK_KMS_SIGNERS={SIGNER_A},{SIGNER_B}\nSEALEDTASK_KMS_THRESHOLD=2\n",
            encoding="utf-8",
        )
        try:
            config = load_config(env_file=env_file)
        finally:
            os.environ.pop("SEALEDTASK_KMS_SIGNERS", None)
            os.environ.pop("SEALEDTASK_KMS_THRESHOLD", None)
        assert config.kms_signers == (SIGNER_A, SIGNER_B)
        assert config.kms_threshold == 2

    def test_invalid_env_value(self, tmp_path, monkeypatch) -> None:
        monkeypatch.setenv("SEALEDTASK_CRYPTO_TIMEOUT_SECONDS", "-1")
        with pytest.raises(ValueError):
            load_config(env_file=tmp_path / "absent.env")
