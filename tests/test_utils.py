import json
import os

from lottery_dapp.main import build_parser, cli
from lottery_dapp.utils.common import as_bool, as_float, as_int, format_ether, is_zero_address, same_address
from lottery_dapp.utils.config import (
    CONFIG_ENV_VAR,
    default_config,
    get_config_value,
    load_config,
    redact,
    save_config,
)


def test_load_config_file_and_env_overrides(tmp_path, monkeypatch):
    config_file = tmp_path / "lottery.conf"
    config_file.write_text(json.dumps({"sync": {"poll_interval_sec": 5}, "server": {"port": 6080}}))
    monkeypatch.setenv(CONFIG_ENV_VAR, str(config_file))
    monkeypatch.setenv("SYNC_POLL_INTERVAL_SEC", "2.5")
    monkeypatch.setenv("WALLET_CHAIN_ID", "11155111")

    config = load_config()

    assert config["sync"]["poll_interval_sec"] == "2.5"
    assert config["server"]["port"] == 6080
    assert config["wallet"]["chain_id"] == "11155111"
    assert get_config_value(config, "server.port") == 6080
    assert get_config_value(config, "server.missing.key", "x") == "x"


def test_missing_config_file_uses_environment_only(tmp_path, monkeypatch):
    monkeypatch.setenv("BLOCKCHAIN_CONTRACT_ADDRESS", "0xabc")
    config = load_config(tmp_path / "absent.conf")
    assert config["blockchain"]["contract_address"] == "0xabc"


def test_redact_hides_private_keys():
    config = {"wallet": {"private_keys": ["0x01"], "chain_id": 1}, "app": "x"}
    cleaned = redact(config)
    assert cleaned["wallet"]["private_keys"] == "***"
    assert cleaned["wallet"]["chain_id"] == 1
    assert config["wallet"]["private_keys"] == ["0x01"]


def test_save_and_reload_default_config(tmp_path, monkeypatch):
    for key in list(os.environ):
        if key.startswith(("BLOCKCHAIN_", "WALLET_", "SYNC_", "SERVER_", "APP_")):
            monkeypatch.delenv(key)
    target = tmp_path / "nested" / "lottery.conf"
    save_config(default_config(), target)
    loaded = load_config(target)
    assert loaded["blockchain"]["entry_fee_wei"] == 10**16
    assert loaded["sync"]["event_driven"] is False


def test_init_config_command(tmp_path):
    target = tmp_path / "lottery.conf"
    assert cli(["--env-file", str(tmp_path / ".env"), "--config", str(target), "init-config"]) == 0
    assert target.exists()
    assert cli(["--env-file", str(tmp_path / ".env"), "--config", str(target), "init-config"]) == 1


def test_parser_defaults_to_serve():
    args = build_parser().parse_args([])
    assert args.command is None
    args = build_parser().parse_args(["serve", "--port", "7000"])
    assert args.port == 7000


def test_common_helpers():
    assert format_ether(10**16) == "0.01"
    assert format_ether(10**18) == "1"
    assert format_ether(0) == "0"
    assert same_address("0xAbC", "0xabc") is True
    assert same_address(None, "0xabc") is False
    assert is_zero_address("0x0000000000000000000000000000000000000000") is True
    assert is_zero_address(None) is True
    assert as_bool("yes") is True
    assert as_bool(None, True) is True
    assert as_int("0x10") == 16
    assert as_int("bad", 7) == 7
    assert as_float("", 1.5) == 1.5
