from __future__ import annotations

from decimal import Decimal

import pytest

from cirrus_ops.consolidation import (
    ConsolidationError,
    consolidate,
    cross_chain_transfer,
    resolve_federation_address,
)
from cirrus_ops.node_client import NodeTransportError
from cirrus_ops.schemas import BroadcastResult, BuiltTransaction, GatewayInfo, SpendableOutput
from cirrus_ops.tx_builder import ChangePolicy, TransactionBuilder


class WalletStub:
    def __init__(self, outputs, fail_on_build: int | None = None) -> None:
        self.outputs = outputs
        self.fail_on_build = fail_on_build
        self.builds: list[dict] = []
        self.sent: list[str] = []
        self.gateway_calls = 0

    def spendable_outputs(self, wallet_name, account_name):
        assert wallet_name == "mining"
        assert account_name == "account 0"
        return list(self.outputs)

    def build_transaction(self, body):
        self.builds.append(body)
        if self.fail_on_build == len(self.builds):
            raise NodeTransportError("Node returned HTTP 400", status_code=400)
        return BuiltTransaction(hex=f"hex-{len(self.builds)}")

    def send_transaction(self, hex_value):
        self.sent.append(hex_value)
        return BroadcastResult(transaction_id=f"txid-{len(self.sent)}")

    def federation_gateway_info(self):
        self.gateway_calls += 1
        return GatewayInfo(active=True, multisig_address="cFederation")


def _outputs(count: int, confirmations: int = 150) -> list[SpendableOutput]:
    return [
        SpendableOutput(
            id=f"tx{i}",
            index=0,
            address=f"cAddr{i}",
            amount=100_000_000 + i,
            creation_time=1_700_000_000,
            confirmations=confirmations,
        )
        for i in range(count)
    ]


def _builder(stub: WalletStub) -> TransactionBuilder:
    return TransactionBuilder(stub, "mining", "secret")  # type: ignore[arg-type]


def test_consolidate_sends_full_batches_largest_first() -> None:
    stub = WalletStub(_outputs(7) + _outputs(3, confirmations=5))

    results = consolidate(
        _builder(stub),
        "cDest",
        fee=Decimal("0.01"),
        min_confirmations=10,
        batch_size=3,
        change_policy=ChangePolicy.DESTINATION_ADDRESS,
    )

    assert len(results) == 2
    assert stub.sent == ["hex-1", "hex-2"]
    first_inputs = [o["transactionId"] for o in stub.builds[0]["outpoints"]]
    assert first_inputs == ["tx6", "tx5", "tx4"]
    assert results[0].broadcast.transaction_id == "txid-1"
    # tx0 is the leftover below a full batch
    spent = {o["transactionId"] for body in stub.builds for o in body["outpoints"]}
    assert "tx0" not in spent


def test_consolidate_nothing_eligible() -> None:
    stub = WalletStub(_outputs(4, confirmations=10))

    results = consolidate(
        _builder(stub),
        "cDest",
        fee=Decimal("0.01"),
        min_confirmations=10,
        batch_size=2,
        change_policy=ChangePolicy.DESTINATION_ADDRESS,
    )

    assert results == []
    assert stub.builds == []


def test_consolidate_dry_run_does_not_touch_wallet() -> None:
    stub = WalletStub(_outputs(4))

    results = consolidate(
        _builder(stub),
        "cDest",
        fee=Decimal("0.01"),
        min_confirmations=10,
        batch_size=2,
        change_policy=ChangePolicy.FIRST_COIN_ADDRESS,
        dry_run=True,
    )

    assert len(results) == 2
    assert all(result.built is None for result in results)
    assert stub.builds == []


def test_consolidate_stops_at_first_failure() -> None:
    stub = WalletStub(_outputs(6), fail_on_build=2)

    with pytest.raises(NodeTransportError):
        consolidate(
            _builder(stub),
            "cDest",
            fee=Decimal("0.01"),
            min_confirmations=10,
            batch_size=2,
            change_policy=ChangePolicy.DESTINATION_ADDRESS,
        )

    assert stub.sent == ["hex-1"]
    assert len(stub.builds) == 2


def test_cross_chain_uses_gateway_address_and_op_return() -> None:
    stub = WalletStub(_outputs(2, confirmations=101))

    results = cross_chain_transfer(
        _builder(stub),
        "XMainchainAddr",
        fee=Decimal("0.01"),
        min_confirmations=100,
        batch_size=2,
    )

    assert len(results) == 1
    body = stub.builds[0]
    assert body["recipients"][0]["destinationAddress"] == "cFederation"
    assert body["opReturnData"] == "XMainchainAddr"
    assert body["changeAddress"] == "cAddr1"
    assert stub.gateway_calls == 1


def test_configured_federation_address_skips_gateway() -> None:
    stub = WalletStub([])
    assert resolve_federation_address(stub, "cConfigured") == "cConfigured"
    assert stub.gateway_calls == 0


def test_cross_chain_requires_mainchain_address() -> None:
    with pytest.raises(ConsolidationError):
        cross_chain_transfer(
            _builder(WalletStub([])),
            "",
            fee=Decimal("0.01"),
            min_confirmations=100,
            batch_size=2,
        )
