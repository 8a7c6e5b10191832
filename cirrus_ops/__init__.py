"""Operator tooling for Stratis/Cirrus masternodes."""

from .coin_selector import (
    CoinSet,
    InteractiveSelection,
    PresuppliedSelection,
    SelectionError,
    filter_eligible,
    partition,
    select_interactively,
    sort_descending_by_amount,
)
from .config import ConfigurationError, OperatorConfig, load_operator_config
from .node_client import NodeAPIClient, NodeTransportError
from .schemas import SchemaError, SpendableOutput, TransactionRequest
from .tx_builder import (
    ChangePolicy,
    ChangePolicyRequiredError,
    InsufficientFundsError,
    InvalidParameterCombinationError,
    TransactionBuilder,
    resolve_amounts,
)

__all__ = [
    "ChangePolicy",
    "ChangePolicyRequiredError",
    "CoinSet",
    "ConfigurationError",
    "InsufficientFundsError",
    "InteractiveSelection",
    "InvalidParameterCombinationError",
    "NodeAPIClient",
    "NodeTransportError",
    "OperatorConfig",
    "PresuppliedSelection",
    "SchemaError",
    "SelectionError",
    "SpendableOutput",
    "TransactionBuilder",
    "TransactionRequest",
    "filter_eligible",
    "load_operator_config",
    "partition",
    "resolve_amounts",
    "select_interactively",
    "sort_descending_by_amount",
]
