"""Typed views over the node REST API payloads.

The node exchanges loosely-typed JSON. Every response consumed by the tooling is
parsed into one of the dataclasses below, and parsing fails loudly with
:class:`SchemaError` when a required field is missing or out of range instead
of letting a ``KeyError`` surface deep inside a command.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .amounts import format_coins, units_to_coins


class SchemaError(ValueError):
    """Raised when a node response does not match the expected shape."""


def _require(payload: Mapping[str, Any], key: str, kind: str) -> Any:
    if not isinstance(payload, Mapping):
        raise SchemaError(f"{kind}: expected a JSON object, got {type(payload).__name__}")
    if key not in payload or payload[key] is None:
        raise SchemaError(f"{kind}: missing field '{key}'")
    return payload[key]


def _as_int(value: Any, key: str, kind: str) -> int:
    if isinstance(value, bool):
        raise SchemaError(f"{kind}: field '{key}' must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise SchemaError(f"{kind}: field '{key}' must be an integer, got {value!r}") from exc


def _as_list(value: Any, key: str, kind: str) -> list:
    if not isinstance(value, list):
        raise SchemaError(f"{kind}: field '{key}' must be a list")
    return value


@dataclass(frozen=True)
class SpendableOutput:
    """One unspent output as reported by ``spendable-transactions``."""

    id: str
    index: int
    address: str
    amount: int
    creation_time: int
    confirmations: int

    @classmethod
    def from_json(cls, payload: Mapping[str, Any]) -> "SpendableOutput":
        kind = "SpendableOutput"
        output = cls(
            id=str(_require(payload, "id", kind)),
            index=_as_int(_require(payload, "index", kind), "index", kind),
            address=str(_require(payload, "address", kind)),
            amount=_as_int(_require(payload, "amount", kind), "amount", kind),
            creation_time=_as_int(
                _require(payload, "creationTime", kind), "creationTime", kind
            ),
            confirmations=_as_int(
                _require(payload, "confirmations", kind), "confirmations", kind
            ),
        )
        if output.amount <= 0:
            raise SchemaError(f"{kind}: amount must be positive, got {output.amount}")
        if output.index < 0:
            raise SchemaError(f"{kind}: index must be non-negative, got {output.index}")
        if output.confirmations < 0:
            raise SchemaError(f"{kind}: confirmations must be non-negative")
        return output

    @property
    def outpoint(self) -> tuple[str, int]:
        return (self.id, self.index)

    @property
    def coins(self) -> Decimal:
        return units_to_coins(self.amount)

    @property
    def created_at(self) -> datetime:
        return datetime.fromtimestamp(self.creation_time, tz=timezone.utc)


def parse_spendable_outputs(payload: Mapping[str, Any]) -> List[SpendableOutput]:
    kind = "SpendableTransactions"
    raw = _as_list(_require(payload, "transactions", kind), "transactions", kind)
    return [SpendableOutput.from_json(entry) for entry in raw]


@dataclass(frozen=True)
class Outpoint:
    transaction_id: str
    index: int

    def to_json(self) -> Dict[str, Any]:
        return {"transactionId": self.transaction_id, "index": self.index}


@dataclass(frozen=True)
class Recipient:
    destination_address: str
    amount: Decimal

    def to_json(self) -> Dict[str, Any]:
        return {"destinationAddress": self.destination_address, "amount": format_coins(self.amount)}


@dataclass(frozen=True)
class TransactionRequest:
    """Material for one ``build-transaction`` call."""

    fee_amount: Decimal
    outpoints: tuple[Outpoint, ...]
    recipients: tuple[Recipient, ...]
    change_address: str
    op_return_data: Optional[str] = None

    def to_json(
        self, *, wallet_name: str, account_name: str, password: str
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "feeAmount": format_coins(self.fee_amount),
            "password": password,
            "walletName": wallet_name,
            "accountName": account_name,
            "outpoints": [outpoint.to_json() for outpoint in self.outpoints],
            "recipients": [recipient.to_json() for recipient in self.recipients],
            "changeAddress": self.change_address,
            "allowUnconfirmed": True,
            "shuffleOutputs": False,
        }
        if self.op_return_data is not None:
            body["opReturnData"] = self.op_return_data
        return body

    @property
    def recipients_total(self) -> Decimal:
        return sum((r.amount for r in self.recipients), Decimal(0))


@dataclass(frozen=True)
class TxOutput:
    address: Optional[str]
    amount: int

    @classmethod
    def from_json(cls, payload: Mapping[str, Any]) -> "TxOutput":
        kind = "TxOutput"
        return cls(
            address=payload.get("address") if isinstance(payload, Mapping) else None,
            amount=_as_int(_require(payload, "amount", kind), "amount", kind),
        )


def _outputs(payload: Mapping[str, Any], kind: str) -> tuple[TxOutput, ...]:
    raw = payload.get("outputs") or []
    return tuple(TxOutput.from_json(entry) for entry in _as_list(raw, "outputs", kind))


@dataclass(frozen=True)
class BuiltTransaction:
    hex: str
    fee: Optional[int] = None
    transaction_id: Optional[str] = None
    outputs: tuple[TxOutput, ...] = ()

    @classmethod
    def from_json(cls, payload: Mapping[str, Any]) -> "BuiltTransaction":
        kind = "BuiltTransaction"
        hex_value = _require(payload, "hex", kind)
        if not isinstance(hex_value, str) or not hex_value:
            raise SchemaError(f"{kind}: 'hex' must be a non-empty string")
        fee = payload.get("fee")
        return cls(
            hex=hex_value,
            fee=_as_int(fee, "fee", kind) if fee is not None else None,
            transaction_id=payload.get("transactionId"),
            outputs=_outputs(payload, kind),
        )


@dataclass(frozen=True)
class BroadcastResult:
    transaction_id: str
    outputs: tuple[TxOutput, ...] = ()

    @classmethod
    def from_json(cls, payload: Mapping[str, Any]) -> "BroadcastResult":
        kind = "BroadcastResult"
        return cls(
            transaction_id=str(_require(payload, "transactionId", kind)),
            outputs=_outputs(payload, kind),
        )


_TIMESPAN_RE = re.compile(
    r"^(?P<sign>-)?(?:(?P<days>\d+)\.)?(?P<hours>\d{1,2}):(?P<minutes>\d{2}):(?P<seconds>\d{2})(?:\.(?P<fraction>\d{1,7}))?$"
)


def parse_timespan(raw: str) -> timedelta:
    """Parse a .NET ``TimeSpan`` string such as ``"1.02:15:00"``."""

    match = _TIMESPAN_RE.match(str(raw).strip())
    if match is None:
        raise SchemaError(f"Unrecognised time span: {raw!r}")
    fraction = match.group("fraction") or "0"
    value = timedelta(
        days=int(match.group("days") or 0),
        hours=int(match.group("hours")),
        minutes=int(match.group("minutes")),
        seconds=int(match.group("seconds")),
        microseconds=int(fraction.ljust(7, "0")) // 10,
    )
    return -value if match.group("sign") else value


@dataclass(frozen=True)
class FederationMember:
    pubkey: str
    period_of_inactivity: timedelta
    collateral_amount: Optional[Decimal] = None
    last_active_time: Optional[str] = None

    @classmethod
    def from_json(cls, payload: Mapping[str, Any]) -> "FederationMember":
        kind = "FederationMember"
        pubkey = str(_require(payload, "pubkey", kind))
        collateral = payload.get("collateralAmount")
        return cls(
            pubkey=pubkey,
            period_of_inactivity=parse_timespan(
                _require(payload, "periodOfInactivity", kind)
            ),
            collateral_amount=Decimal(str(collateral)) if collateral is not None else None,
            last_active_time=payload.get("lastActiveTime"),
        )


def parse_federation_members(payload: Sequence[Mapping[str, Any]]) -> List[FederationMember]:
    if not isinstance(payload, list):
        raise SchemaError("FederationMembers: expected a JSON array")
    return [FederationMember.from_json(entry) for entry in payload]


@dataclass(frozen=True)
class NodeStatus:
    state: str
    version: Optional[str] = None
    network: Optional[str] = None
    consensus_height: Optional[int] = None
    inbound_peers: int = 0
    outbound_peers: int = 0

    @classmethod
    def from_json(cls, payload: Mapping[str, Any]) -> "NodeStatus":
        kind = "NodeStatus"
        height = payload.get("consensusHeight") if isinstance(payload, Mapping) else None
        return cls(
            state=str(_require(payload, "state", kind)),
            version=payload.get("version"),
            network=payload.get("network"),
            consensus_height=_as_int(height, "consensusHeight", kind) if height is not None else None,
            inbound_peers=len(payload.get("inboundPeers") or []),
            outbound_peers=len(payload.get("outboundPeers") or []),
        )


@dataclass(frozen=True)
class GatewayInfo:
    active: bool
    multisig_address: Optional[str] = None
    federation_pubkeys: tuple[str, ...] = ()

    @classmethod
    def from_json(cls, payload: Mapping[str, Any]) -> "GatewayInfo":
        if not isinstance(payload, Mapping):
            raise SchemaError("GatewayInfo: expected a JSON object")
        return cls(
            active=bool(payload.get("active", False)),
            multisig_address=payload.get("multisigAddress"),
            federation_pubkeys=tuple(payload.get("federationMultisigPubKeys") or ()),
        )


@dataclass(frozen=True)
class AccountBalance:
    account_name: str
    amount_confirmed: int
    amount_unconfirmed: int
    spendable_amount: int

    @classmethod
    def from_json(cls, payload: Mapping[str, Any]) -> "AccountBalance":
        kind = "AccountBalance"
        return cls(
            account_name=str(_require(payload, "accountName", kind)),
            amount_confirmed=_as_int(payload.get("amountConfirmed", 0), "amountConfirmed", kind),
            amount_unconfirmed=_as_int(
                payload.get("amountUnconfirmed", 0), "amountUnconfirmed", kind
            ),
            spendable_amount=_as_int(payload.get("spendableAmount", 0), "spendableAmount", kind),
        )

    @property
    def confirmed_coins(self) -> Decimal:
        return units_to_coins(self.amount_confirmed)


def parse_balances(payload: Mapping[str, Any]) -> List[AccountBalance]:
    kind = "WalletBalance"
    raw = _as_list(_require(payload, "balances", kind), "balances", kind)
    return [AccountBalance.from_json(entry) for entry in raw]


@dataclass(frozen=True)
class StakingInfo:
    enabled: bool
    staking: bool
    errors: Optional[str] = None
    weight: int = 0
    net_stake_weight: int = 0
    expected_time: int = 0

    @classmethod
    def from_json(cls, payload: Mapping[str, Any]) -> "StakingInfo":
        kind = "StakingInfo"
        return cls(
            enabled=bool(_require(payload, "enabled", kind)),
            staking=bool(_require(payload, "staking", kind)),
            errors=payload.get("errors"),
            weight=_as_int(payload.get("weight", 0), "weight", kind),
            net_stake_weight=_as_int(payload.get("netStakeWeight", 0), "netStakeWeight", kind),
            expected_time=_as_int(payload.get("expectedTime", 0), "expectedTime", kind),
        )


@dataclass(frozen=True)
class PeerInfo:
    id: int
    addr: str
    inbound: bool = False
    subver: Optional[str] = None

    @classmethod
    def from_json(cls, payload: Mapping[str, Any]) -> "PeerInfo":
        kind = "PeerInfo"
        return cls(
            id=_as_int(_require(payload, "id", kind), "id", kind),
            addr=str(_require(payload, "addr", kind)),
            inbound=bool(payload.get("inbound", False)),
            subver=payload.get("subver"),
        )


def parse_peers(payload: Sequence[Mapping[str, Any]]) -> List[PeerInfo]:
    if not isinstance(payload, list):
        raise SchemaError("PeerInfo: expected a JSON array")
    return [PeerInfo.from_json(entry) for entry in payload]


def parse_accounts(payload: Any) -> List[str]:
    if not isinstance(payload, list):
        raise SchemaError("AccountList: expected a JSON array")
    return [str(name) for name in payload]


def parse_wallet_names(payload: Any) -> List[str]:
    """Accept both the ``walletNames`` and the newer ``wallets`` shapes."""

    if isinstance(payload, Mapping):
        for key in ("walletNames", "wallets"):
            if key in payload:
                raw = _as_list(payload[key], key, "WalletList")
                return [
                    str(entry.get("walletName")) if isinstance(entry, Mapping) else str(entry)
                    for entry in raw
                ]
    raise SchemaError("WalletList: missing 'walletNames'")


@dataclass
class BatchResult:
    """Outcome of sending one consolidation batch."""

    request: TransactionRequest
    built: Optional[BuiltTransaction] = None
    broadcast: Optional[BroadcastResult] = None
