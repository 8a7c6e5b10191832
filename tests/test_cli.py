from __future__ import annotations

import json

import pytest

from cirrus_ops import cli
from cirrus_ops.config import ConsolidationConfig, OperatorConfig, WalletConfig
from cirrus_ops.schemas import BroadcastResult, BuiltTransaction, SpendableOutput


class CLIStubClient:
    instances: list["CLIStubClient"] = []

    def __init__(self, config) -> None:
        self.config = config
        self.builds: list[dict] = []
        CLIStubClient.instances.append(self)

    def spendable_outputs(self, wallet_name, account_name):
        return [
            SpendableOutput(f"tx{i}", 0, f"cAddr{i}", amount, 1_700_000_000, 50)
            for i, amount in enumerate([300_000_000, 700_000_000, 100_000_000])
        ]

    def build_transaction(self, body):
        self.builds.append(body)
        return BuiltTransaction(hex="beef", fee=1_000_000)

    def send_transaction(self, hex_value):
        return BroadcastResult(transaction_id="txid-cli")


@pytest.fixture
def operator_config(monkeypatch):
    config = OperatorConfig(
        wallet=WalletConfig(name="mining", password="secret"),
        consolidation=ConsolidationConfig(change_policy="first-coin", batch_size=2),
    )
    CLIStubClient.instances = []
    monkeypatch.setattr(cli, "load_config_with_credentials", lambda **_kwargs: config)
    monkeypatch.setattr(cli, "NodeAPIClient", CLIStubClient)
    return config


def test_send_dry_run_masks_password(operator_config, capsys) -> None:
    cli.main(["send", "--to-address", "XDest", "--indices", "0,2", "--dry-run"])

    body = json.loads(capsys.readouterr().out)
    assert body["password"] == "***"
    # outputs are listed largest first: tx1 (7), tx0 (3), tx2 (1)
    assert [o["transactionId"] for o in body["outpoints"]] == ["tx1", "tx2"]
    assert body["recipients"] == [{"destinationAddress": "XDest", "amount": "7.99"}]
    assert body["changeAddress"] == "cAddr1"
    assert CLIStubClient.instances[0].builds == []


def test_send_broadcasts(operator_config, capsys) -> None:
    cli.main(
        [
            "send",
            "--to-address",
            "XDest",
            "--indices",
            "1",
            "--amount",
            "1",
            "--change-address",
            "cChange",
        ]
    )

    assert json.loads(capsys.readouterr().out) == {"txid": "txid-cli", "fee": 1_000_000}
    body = CLIStubClient.instances[0].builds[0]
    assert body["recipients"][0]["amount"] == "1"
    assert body["changeAddress"] == "cChange"


def test_send_with_bad_index_exits(operator_config, capsys) -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["send", "--to-address", "XDest", "--indices", "9"])

    assert excinfo.value.code == 1
    assert "out of range" in capsys.readouterr().err


def test_send_with_only_change_address_exits(operator_config, capsys) -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["send", "--to-address", "XDest", "--indices", "0", "--change-address", "c"])

    assert excinfo.value.code == 1
    assert "both" in capsys.readouterr().err


def test_consolidate_dry_run_summary(operator_config, capsys) -> None:
    cli.main(["consolidate", "--destination", "cSweep", "--dry-run"])

    summary = json.loads(capsys.readouterr().out)
    assert len(summary["batches"]) == 1
    assert summary["batches"][0]["inputs"] == 2
    assert summary["batches"][0]["amount"] == "9.99"
    assert summary["batches"][0]["txid"] is None


def test_consolidate_requires_destination(operator_config, capsys) -> None:
    with pytest.raises(SystemExit):
        cli.main(["consolidate"])
    assert "destination" in capsys.readouterr().err


def test_list_utxos_json(operator_config, capsys) -> None:
    cli.main(["list-utxos", "--json"])

    rows = json.loads(capsys.readouterr().out)
    assert [row["id"] for row in rows] == ["tx1", "tx0", "tx2"]
    assert rows[0]["amount"] == "7"


@pytest.mark.parametrize("batch_size", ["0", "-1"])
def test_consolidate_rejects_bad_batch_size(operator_config, capsys, batch_size) -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main(
            ["consolidate", "--destination", "cSweep", "--batch-size", batch_size, "--dry-run"]
        )

    assert excinfo.value.code == 1
    assert "--batch-size must be at least 1" in capsys.readouterr().err
    assert CLIStubClient.instances[0].builds == []


def test_consolidate_batch_size_flag_overrides_config(operator_config, capsys) -> None:
    cli.main(["consolidate", "--destination", "cSweep", "--batch-size", "1", "--dry-run"])

    summary = json.loads(capsys.readouterr().out)
    assert [batch["inputs"] for batch in summary["batches"]] == [1, 1, 1]
