from decimal import Decimal
from pathlib import Path

import pytest

from cirrus_ops.config import (
    ConfigurationError,
    OperatorConfig,
    credentials_path_from_file,
    load_operator_config,
)

YAML_TEXT = """
mainchain:
  endpoint: http://filehost:1111
sidechain:
  host: sidehost
  port: 2222
wallet:
  name: file_wallet
  password: file_pass
monitor:
  public_key: 02filekey
  minute_update_interval: 10
  hours_between_updates: 2
consolidation:
  fee: "0.02"
  batch_size: 500
  change_policy: first-coin
cross_chain:
  mainchain_address: XFileAddr
notify:
  webhook_url: https://discord.example/hook
peers:
  - 10.0.0.1:16179
credentials_file: secrets.json
"""


def test_yaml_values_are_loaded(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text(YAML_TEXT)

    config = load_operator_config(config_path=config_path, env={})

    assert isinstance(config, OperatorConfig)
    assert config.mainchain.base_url == "http://filehost:1111"
    assert config.sidechain.base_url == "http://sidehost:2222"
    assert config.wallet.name == "file_wallet"
    assert config.wallet.account == "account 0"
    assert config.monitor.minute_update_interval == 10
    assert config.consolidation.fee == Decimal("0.02")
    assert config.consolidation.batch_size == 500
    assert config.consolidation.min_confirmations == 10
    assert config.consolidation.change_policy == "first-coin"
    assert config.cross_chain.min_confirmations == 100
    assert config.notify.webhook_url == "https://discord.example/hook"
    assert config.peers == ("10.0.0.1:16179",)


def test_precedence_overrides_env_secrets_yaml(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text(YAML_TEXT)

    config = load_operator_config(
        config_path=config_path,
        env={
            "CIRRUS_OPS_WALLET_PASSWORD": "env_pass",
            "CIRRUS_OPS_SIDECHAIN_URL": "https://envside:3333",
        },
        secrets={"wallet_password": "secret_pass", "public_key": "02secret"},
        overrides={"wallet_name": "cli_wallet"},
    )

    assert config.wallet.name == "cli_wallet"
    assert config.wallet.password == "env_pass"
    assert config.monitor.public_key == "02secret"
    assert config.sidechain.host == "envside"
    assert config.sidechain.port == 3333
    assert config.sidechain.use_https is True


def test_empty_file_gives_defaults(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text("")

    config = load_operator_config(config_path=config_path, env={})

    assert config.mainchain.base_url == "http://127.0.0.1:17103"
    assert config.sidechain.base_url == "http://127.0.0.1:37223"
    assert config.monitor.minute_update_interval == 5
    assert config.monitor.hours_between_updates == 6
    assert config.consolidation.change_policy is None


def test_explicit_missing_file_is_an_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError):
        load_operator_config(config_path=tmp_path / "absent.yaml", env={})


def test_invalid_values_raise(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text("consolidation:\n  batch_size: many\n")
    with pytest.raises(ConfigurationError):
        load_operator_config(config_path=config_path, env={})

    config_path.write_text("monitor:\n  minute_update_interval: 7\n  hours_between_updates: 6\n")
    with pytest.raises(ConfigurationError):
        load_operator_config(config_path=config_path, env={})

    config_path.write_text("- just\n- a list\n")
    with pytest.raises(ConfigurationError):
        load_operator_config(config_path=config_path, env={})


def test_credentials_path_is_relative_to_config(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text(YAML_TEXT)

    assert credentials_path_from_file(config_path) == tmp_path / "secrets.json"


@pytest.mark.parametrize(
    "yaml_text",
    [
        "consolidation:\n  fee: nan\n",
        "consolidation:\n  fee: -1\n",
        "cross_chain:\n  fee: .inf\n",
        "consolidation:\n  batch_size: 0\n",
        "cross_chain:\n  batch_size: -5\n",
        "consolidation:\n  min_confirmations: -1\n",
        "monitor:\n  hours_between_updates: -6\n",
        "monitor:\n  hours_between_updates: 0\n",
        "monitor:\n  inactivity_threshold_minutes: -1\n",
    ],
)
def test_out_of_range_values_raise(tmp_path: Path, yaml_text: str) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text(yaml_text)

    with pytest.raises(ConfigurationError):
        load_operator_config(config_path=config_path, env={})


def test_zero_fee_and_threshold_are_allowed(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text("consolidation:\n  fee: 0\nmonitor:\n  inactivity_threshold_minutes: 0\n")

    config = load_operator_config(config_path=config_path, env={})

    assert config.consolidation.fee == Decimal("0")
    assert config.monitor.inactivity_threshold_minutes == 0
