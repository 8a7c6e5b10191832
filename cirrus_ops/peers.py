"""Peer reconnection through the node's connection manager."""

from __future__ import annotations

import logging
from typing import Iterable, List

from .node_client import NodeAPIClient

logger = logging.getLogger(__name__)


def _normalize(endpoint: str) -> str:
    return endpoint.strip().lower()


def missing_peers(client: NodeAPIClient, endpoints: Iterable[str]) -> List[str]:
    connected = {_normalize(peer.addr) for peer in client.peer_info()}
    return [endpoint for endpoint in endpoints if _normalize(endpoint) not in connected]


def reconnect_peers(client: NodeAPIClient, endpoints: Iterable[str]) -> List[str]:
    """Remove and re-add every configured endpoint the node is not connected to.

    Returns the endpoints that were touched. Connection-manager errors
    propagate; nothing is retried.
    """

    touched: List[str] = []
    for endpoint in missing_peers(client, endpoints):
        logger.info("Reconnecting peer %s", endpoint)
        client.add_node(endpoint, "remove")
        client.add_node(endpoint, "add")
        touched.append(endpoint)
    if not touched:
        logger.info("All configured peers are connected")
    return touched
