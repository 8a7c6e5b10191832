"""REST client for a Stratis/Cirrus full node."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

import requests
from requests import RequestException, Response

from .config import NodeConfig
from .schemas import (
    AccountBalance,
    BroadcastResult,
    BuiltTransaction,
    FederationMember,
    GatewayInfo,
    NodeStatus,
    PeerInfo,
    SpendableOutput,
    StakingInfo,
    parse_accounts,
    parse_balances,
    parse_federation_members,
    parse_peers,
    parse_spendable_outputs,
    parse_wallet_names,
)

logger = logging.getLogger(__name__)


class NodeTransportError(RuntimeError):
    """Raised when the node is unreachable or answers with a non-success response.

    ``errors`` holds the node's structured ``{"errors": [...]}`` body when one
    was returned, so callers can show the node's own explanation.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        errors: list[Dict[str, Any]] | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.errors = errors or []

    @property
    def node_messages(self) -> list[str]:
        return [str(err.get("message", "")) for err in self.errors if err.get("message")]


def format_node_hint(error: NodeTransportError | None) -> str | None:
    """Return a remediation hint for common wallet API failures."""

    if error is None:
        return None
    text = " ".join(error.node_messages + [str(error)]).lower()
    if error.status_code is None:
        return (
            "The node did not answer. Check that it is running and that the mainchain/sidechain "
            "endpoints in ~/.cirrus-ops.yaml (or CIRRUS_OPS_*_URL) are correct."
        )
    if "password" in text or "passphrase" in text:
        return "The wallet rejected the password. Check wallet.password or the credentials file."
    if "insufficient" in text or "not enough funds" in text:
        return (
            "The wallet could not fund the transaction. Lower the batch size or fee, or wait "
            "for more confirmations."
        )
    if "wallet" in text and "not found" in text:
        return "The wallet is not loaded on this node. Check wallet.name against list-wallets."
    return None


class NodeAPIClient:
    """Thin client for the node's REST API.

    Each helper maps to one endpoint and returns a typed value from
    :mod:`cirrus_ops.schemas`. ``get``/``post`` remain available for callers
    that need raw JSON.
    """

    def __init__(self, config: NodeConfig, session: requests.Session | None = None) -> None:
        self.config = config
        self._session = session or requests.Session()
        self._base_url = config.base_url

    def __repr__(self) -> str:
        return f"NodeAPIClient({self._base_url})"

    def get(self, path: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        return self._request("GET", path, params=params)

    def post(self, path: str, body: Optional[Mapping[str, Any]] = None) -> Any:
        return self._request("POST", path, json_body=body)

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        json_body: Optional[Mapping[str, Any]] = None,
    ) -> Any:
        url = f"{self._base_url}{path}"
        logger.debug("%s %s params=%s", method, path, params)
        try:
            response = self._session.request(
                method,
                url,
                params=params,
                json=json_body,
                timeout=self.config.timeout,
            )
        except RequestException as exc:
            logger.error(
                "Node connection failed: %s",
                exc,
                exc_info=logger.isEnabledFor(logging.DEBUG),
            )
            raise NodeTransportError(
                f"Could not reach node at {self._base_url}; ensure it is running and the endpoint is correct."
            ) from exc
        self._raise_for_status(response)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            logger.debug("Node JSON parse error: %s", response.text, exc_info=True)
            raise NodeTransportError(
                f"Node returned malformed JSON for {path}", status_code=response.status_code
            ) from exc

    def _raise_for_status(self, response: Response) -> None:
        if response.ok:
            return
        errors: list[Dict[str, Any]] = []
        try:
            body = response.json()
        except ValueError:
            body = response.text
        if isinstance(body, dict) and isinstance(body.get("errors"), list):
            errors = [err for err in body["errors"] if isinstance(err, dict)]

        logger.error("Node HTTP error %s from %s", response.status_code, response.url)
        logger.error("Node error body: %s", body)
        detail = "; ".join(str(err.get("message", "")) for err in errors if err.get("message"))
        message = f"Node returned HTTP {response.status_code}"
        if detail:
            message = f"{message}: {detail}"
        raise NodeTransportError(message, status_code=response.status_code, errors=errors)

    # Node / federation ----------------------------------------------------

    def node_status(self) -> NodeStatus:
        return NodeStatus.from_json(self.get("/api/node/status"))

    def federation_members(self) -> List[FederationMember]:
        return parse_federation_members(self.get("/api/DefaultVoting/fedmembers"))

    def federation_gateway_info(self) -> GatewayInfo:
        return GatewayInfo.from_json(self.get("/api/FederationGateway/info"))

    # Wallet ---------------------------------------------------------------

    def list_wallets(self) -> List[str]:
        return parse_wallet_names(self.get("/api/Wallet/list-wallets"))

    def list_accounts(self, wallet_name: str) -> List[str]:
        payload = self.get("/api/Wallet/accounts", {"WalletName": wallet_name})
        return parse_accounts(payload)

    def wallet_balance(self, wallet_name: str) -> List[AccountBalance]:
        return parse_balances(self.get("/api/Wallet/balance", {"WalletName": wallet_name}))

    def spendable_outputs(
        self, wallet_name: str, account_name: str = "account 0"
    ) -> List[SpendableOutput]:
        payload = self.get(
            "/api/Wallet/spendable-transactions",
            {"WalletName": wallet_name, "AccountName": account_name},
        )
        return parse_spendable_outputs(payload)

    def build_transaction(self, body: Mapping[str, Any]) -> BuiltTransaction:
        return BuiltTransaction.from_json(self.post("/api/Wallet/build-transaction", body))

    def send_transaction(self, hex_value: str) -> BroadcastResult:
        return BroadcastResult.from_json(
            self.post("/api/Wallet/send-transaction", {"hex": hex_value})
        )

    # Staking --------------------------------------------------------------

    def start_staking(self, wallet_name: str, password: str) -> None:
        self.post("/api/Staking/startStaking", {"name": wallet_name, "password": password})

    def staking_info(self) -> StakingInfo:
        return StakingInfo.from_json(self.get("/api/Staking/getstakinginfo"))

    # Connection manager ---------------------------------------------------

    def peer_info(self) -> List[PeerInfo]:
        return parse_peers(self.get("/ConnectionManager/getpeerinfo"))

    def add_node(self, endpoint: str, command: str = "add") -> Any:
        if command not in {"add", "remove", "onetry"}:
            raise ValueError(f"Unsupported addnode command: {command}")
        return self.get("/ConnectionManager/addnode", {"endpoint": endpoint, "command": command})
