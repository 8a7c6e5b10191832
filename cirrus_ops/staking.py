"""Staking helpers for the mainchain wallet."""

from __future__ import annotations

import logging

from .node_client import NodeAPIClient
from .schemas import StakingInfo

logger = logging.getLogger(__name__)


def ensure_staking(client: NodeAPIClient, wallet_name: str, password: str) -> StakingInfo:
    """Start staking unless the node already reports it enabled; return fresh info."""

    info = client.staking_info()
    if info.enabled:
        logger.info("Staking already enabled (staking=%s, weight=%d)", info.staking, info.weight)
        return info
    logger.info("Starting staking for wallet %s", wallet_name)
    client.start_staking(wallet_name, password)
    info = client.staking_info()
    if not info.enabled:
        logger.warning("Node accepted startStaking but still reports staking disabled: %s", info.errors)
    return info
