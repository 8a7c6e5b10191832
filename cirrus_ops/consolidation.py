"""Batch consolidation and cross-chain transfer of wallet outputs."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import List

from .coin_selector import filter_eligible, partition, sort_descending_by_amount
from .node_client import NodeAPIClient
from .schemas import BatchResult
from .tx_builder import ChangePolicy, TransactionBuilder

logger = logging.getLogger(__name__)


class ConsolidationError(RuntimeError):
    """Raised when a consolidation run cannot be configured."""


def consolidate(
    builder: TransactionBuilder,
    destination_address: str,
    *,
    fee: Decimal,
    min_confirmations: int,
    batch_size: int,
    change_policy: ChangePolicy | None,
    op_return_data: str | None = None,
    dry_run: bool = False,
) -> List[BatchResult]:
    """Sweep eligible outputs into ``destination_address`` one full batch at a time.

    Outputs are filtered on confirmations, sorted largest first and split into
    batches of exactly ``batch_size``. Each batch becomes one transaction paying
    everything but ``fee`` to the destination. The first failing batch aborts
    the run; earlier batches stay broadcast.
    """

    outputs = builder.client.spendable_outputs(builder.wallet_name, builder.account_name)
    eligible = filter_eligible(outputs, min_confirmations)
    logger.info(
        "%d of %d spendable outputs have more than %d confirmations",
        len(eligible),
        len(outputs),
        min_confirmations,
    )
    batches = partition(sort_descending_by_amount(eligible), batch_size)
    if not batches:
        logger.info("Nothing to consolidate")
        return []

    results: List[BatchResult] = []
    for number, coins in enumerate(batches, start=1):
        request = builder.prepare_request(
            coins,
            destination_address,
            fee,
            change_policy=change_policy,
            op_return_data=op_return_data,
        )
        result = BatchResult(request=request)
        results.append(result)
        if dry_run:
            logger.info(
                "Dry run batch %d/%d: %d inputs, %s to %s",
                number,
                len(batches),
                len(coins),
                request.recipients_total,
                destination_address,
            )
            continue
        result.built, result.broadcast = builder.send(request)
    return results


def resolve_federation_address(client: NodeAPIClient, configured: str | None) -> str:
    """Use the configured federation address, or ask the gateway for its multisig address."""

    if configured:
        return configured
    info = client.federation_gateway_info()
    if not info.multisig_address:
        raise ConsolidationError(
            "Federation gateway did not report a multisig address; set cross_chain.federation_address"
        )
    return info.multisig_address


def cross_chain_transfer(
    builder: TransactionBuilder,
    mainchain_address: str,
    *,
    federation_address: str | None = None,
    fee: Decimal,
    min_confirmations: int,
    batch_size: int,
    gateway_client: NodeAPIClient | None = None,
    dry_run: bool = False,
) -> List[BatchResult]:
    """Send sidechain outputs to the federation with ``mainchain_address`` as OP_RETURN.

    The federation multisig address receives the whole batch minus the fee.
    Change, if the node finds any, must stay in the operator wallet and never
    go to the federation, so the first coin's address is used.
    """

    if not mainchain_address:
        raise ConsolidationError("cross_chain.mainchain_address is not configured")
    target = resolve_federation_address(gateway_client or builder.client, federation_address)
    logger.info("Cross-chain transfer to %s for %s", target, mainchain_address)
    return consolidate(
        builder,
        target,
        fee=fee,
        min_confirmations=min_confirmations,
        batch_size=batch_size,
        change_policy=ChangePolicy.FIRST_COIN_ADDRESS,
        op_return_data=mainchain_address,
        dry_run=dry_run,
    )
