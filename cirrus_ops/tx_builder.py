"""Transaction building against the node wallet API."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from .coin_selector import CoinSet
from .node_client import NodeAPIClient, NodeTransportError, format_node_hint
from .schemas import BroadcastResult, BuiltTransaction, Outpoint, Recipient, TransactionRequest

logger = logging.getLogger(__name__)


class TransactionBuildError(RuntimeError):
    """Base class for failures detected before any request reaches the node."""


class InsufficientFundsError(TransactionBuildError):
    """Destination amount plus fee exceeds the selected input value."""

    def __init__(self, required: Decimal, available: Decimal) -> None:
        super().__init__(
            f"Insufficient funds: need {required} (amount + fee), selected inputs hold {available}"
        )
        self.required = required
        self.available = available


class InvalidParameterCombinationError(TransactionBuildError):
    """Exactly one of change address / destination amount was supplied."""


class ChangePolicyRequiredError(TransactionBuildError):
    """No change address was given and no default policy was chosen."""


class ChangePolicy(str, enum.Enum):
    """Where change goes when the caller supplies neither change address nor amount."""

    FIRST_COIN_ADDRESS = "first-coin"
    DESTINATION_ADDRESS = "destination"

    @classmethod
    def parse(cls, raw: "str | ChangePolicy | None") -> "ChangePolicy | None":
        if raw is None or isinstance(raw, ChangePolicy):
            return raw
        try:
            return cls(str(raw).strip().lower())
        except ValueError as exc:
            choices = ", ".join(policy.value for policy in cls)
            raise ValueError(f"Unknown change policy {raw!r}; choose one of {choices}") from exc


@dataclass(frozen=True)
class ResolvedAmounts:
    amount_for_destination: Decimal
    change_address: str
    total: Decimal


def resolve_amounts(
    coins: CoinSet,
    destination_address: str,
    fee: Decimal,
    *,
    change_address: str | None = None,
    amount_for_destination: Decimal | None = None,
    change_policy: ChangePolicy | None = None,
) -> ResolvedAmounts:
    """Work out the destination amount and change address for ``coins``.

    With neither ``change_address`` nor ``amount_for_destination`` the whole
    input value minus ``fee`` goes to the destination and ``change_policy``
    picks the change address. With both, the amount is checked against the
    inputs. Supplying only one of the pair is rejected. Any residual value is
    returned as change by the node's own build logic.
    """

    total = coins.total
    if change_address is None and amount_for_destination is None:
        if change_policy is None:
            raise ChangePolicyRequiredError(
                "No change address given; choose a change policy "
                f"({', '.join(policy.value for policy in ChangePolicy)})"
            )
        if total <= fee:
            raise InsufficientFundsError(fee, total)
        amount_for_destination = total - fee
        if change_policy is ChangePolicy.FIRST_COIN_ADDRESS:
            change_address = coins.outputs[0].address
        else:
            change_address = destination_address
    elif change_address is not None and amount_for_destination is not None:
        if amount_for_destination <= 0:
            raise TransactionBuildError("Destination amount must be positive")
        if amount_for_destination + fee > total:
            raise InsufficientFundsError(amount_for_destination + fee, total)
    else:
        raise InvalidParameterCombinationError(
            "Supply both a change address and a destination amount, or neither"
        )
    return ResolvedAmounts(
        amount_for_destination=amount_for_destination,
        change_address=change_address,
        total=total,
    )


class TransactionBuilder:
    """Assemble wallet requests and drive the build -> broadcast sequence."""

    def __init__(
        self,
        client: NodeAPIClient,
        wallet_name: str,
        password: str,
        account_name: str = "account 0",
    ) -> None:
        self.client = client
        self.wallet_name = wallet_name
        self.password = password
        self.account_name = account_name

    @staticmethod
    def prepare_request(
        coins: CoinSet,
        destination_address: str,
        fee: Decimal,
        *,
        change_address: str | None = None,
        amount_for_destination: Decimal | None = None,
        change_policy: ChangePolicy | None = None,
        op_return_data: str | None = None,
    ) -> TransactionRequest:
        if not len(coins):
            raise TransactionBuildError("Cannot build a transaction without inputs")
        resolved = resolve_amounts(
            coins,
            destination_address,
            fee,
            change_address=change_address,
            amount_for_destination=amount_for_destination,
            change_policy=change_policy,
        )
        return TransactionRequest(
            fee_amount=fee,
            outpoints=tuple(Outpoint(output.id, output.index) for output in coins),
            recipients=(Recipient(destination_address, resolved.amount_for_destination),),
            change_address=resolved.change_address,
            op_return_data=op_return_data,
        )

    def request_body(self, request: TransactionRequest) -> dict[str, Any]:
        return request.to_json(
            wallet_name=self.wallet_name,
            account_name=self.account_name,
            password=self.password,
        )

    def build(self, request: TransactionRequest) -> BuiltTransaction:
        logger.info(
            "Building transaction: %d inputs -> %s (fee %s)",
            len(request.outpoints),
            ", ".join(r.destination_address for r in request.recipients),
            request.fee_amount,
        )
        try:
            return self.client.build_transaction(self.request_body(request))
        except NodeTransportError as exc:
            hint = format_node_hint(exc)
            if hint:
                logger.error("Build failed: %s", hint)
            raise

    def broadcast(self, built: BuiltTransaction) -> BroadcastResult:
        try:
            result = self.client.send_transaction(built.hex)
        except NodeTransportError:
            logger.error(
                "Broadcast failed; the signed transaction%s was discarded",
                f" {built.transaction_id}" if built.transaction_id else "",
            )
            raise
        logger.info("Broadcasted transaction %s", result.transaction_id)
        return result

    def send(self, request: TransactionRequest) -> tuple[BuiltTransaction, BroadcastResult]:
        """Build and broadcast ``request``; no retry on either step."""

        built = self.build(request)
        return built, self.broadcast(built)

    def send_coins(
        self,
        coins: CoinSet,
        destination_address: str,
        fee: Decimal,
        **kwargs: Any,
    ) -> tuple[BuiltTransaction, BroadcastResult]:
        request = self.prepare_request(coins, destination_address, fee, **kwargs)
        return self.send(request)
