from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest

from cirrus_ops.amounts import format_coins, units_to_coins
from cirrus_ops.schemas import (
    BuiltTransaction,
    FederationMember,
    SchemaError,
    SpendableOutput,
    parse_accounts,
    parse_balances,
    parse_spendable_outputs,
    parse_timespan,
    parse_wallet_names,
)


def _raw_output(**overrides):
    payload = {
        "id": "ab" * 32,
        "index": 1,
        "address": "cXyz",
        "isChange": False,
        "amount": 150_000_000,
        "creationTime": "1700000000",
        "confirmations": 42,
    }
    payload.update(overrides)
    return payload


def test_spendable_outputs_parse() -> None:
    outputs = parse_spendable_outputs({"transactions": [_raw_output()]})

    assert outputs == [
        SpendableOutput(
            id="ab" * 32,
            index=1,
            address="cXyz",
            amount=150_000_000,
            creation_time=1_700_000_000,
            confirmations=42,
        )
    ]
    assert outputs[0].coins == Decimal("1.5")


@pytest.mark.parametrize(
    "overrides",
    [
        {"amount": 0},
        {"index": -1},
        {"confirmations": -3},
        {"address": None},
        {"amount": "lots"},
    ],
)
def test_spendable_output_validation(overrides) -> None:
    with pytest.raises(SchemaError):
        SpendableOutput.from_json(_raw_output(**overrides))


def test_spendable_outputs_requires_transactions_list() -> None:
    with pytest.raises(SchemaError):
        parse_spendable_outputs({"transactions": None})
    with pytest.raises(SchemaError):
        parse_spendable_outputs([])


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("02:15:00", timedelta(hours=2, minutes=15)),
        ("00:45:00", timedelta(minutes=45)),
        ("1.03:00:00", timedelta(days=1, hours=3)),
        ("00:00:01.5000000", timedelta(seconds=1, microseconds=500_000)),
        ("-00:05:00", -timedelta(minutes=5)),
    ],
)
def test_parse_timespan(raw, expected) -> None:
    assert parse_timespan(raw) == expected


def test_parse_timespan_rejects_garbage() -> None:
    with pytest.raises(SchemaError):
        parse_timespan("two hours")


def test_federation_member_parse() -> None:
    member = FederationMember.from_json(
        {"pubkey": "02abc", "collateralAmount": 100000, "periodOfInactivity": "00:12:00"}
    )
    assert member.period_of_inactivity == timedelta(minutes=12)
    assert member.collateral_amount == Decimal("100000")


def test_built_transaction_requires_hex() -> None:
    with pytest.raises(SchemaError):
        BuiltTransaction.from_json({"fee": 1000})
    built = BuiltTransaction.from_json(
        {"hex": "0100", "fee": 1000, "transactionId": "t1", "outputs": [{"address": "a", "amount": 5}]}
    )
    assert built.outputs[0].amount == 5


def test_wallet_names_accepts_both_shapes() -> None:
    assert parse_wallet_names({"walletNames": ["a", "b"]}) == ["a", "b"]
    assert parse_wallet_names({"wallets": [{"walletName": "c"}]}) == ["c"]
    with pytest.raises(SchemaError):
        parse_wallet_names({})


def test_accounts_must_be_a_list() -> None:
    assert parse_accounts(["account 0"]) == ["account 0"]
    with pytest.raises(SchemaError):
        parse_accounts({"account 0": 1})


def test_balances_parse() -> None:
    balances = parse_balances(
        {"balances": [{"accountName": "account 0", "amountConfirmed": 250_000_000}]}
    )
    assert balances[0].confirmed_coins == Decimal("2.5")
    assert balances[0].spendable_amount == 0


def test_amount_helpers() -> None:
    assert units_to_coins(1) == Decimal("0.00000001")
    assert format_coins(Decimal("9.99")) == "9.99"
    assert format_coins(Decimal("10")) == "10"
    assert format_coins(Decimal("0.000000001")) == "0"
