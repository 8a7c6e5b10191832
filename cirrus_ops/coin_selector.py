"""Coin selection for consolidation and manual sends.

Consolidation takes the largest outputs first: ``sort_descending_by_amount``
followed by ``partition`` yields full batches only, so the smallest outputs are
the ones left behind when the count is not a multiple of the batch size.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Iterable, List, Protocol, Sequence

from .amounts import total_coins
from .schemas import SpendableOutput

logger = logging.getLogger(__name__)


class SelectionError(IndexError):
    """Raised when an operator-supplied index list cannot be honoured."""


@dataclass(frozen=True)
class CoinSet:
    """Outputs chosen for a single transaction, in spend order."""

    outputs: tuple[SpendableOutput, ...]

    def __post_init__(self) -> None:
        seen: set[tuple[str, int]] = set()
        for output in self.outputs:
            if output.outpoint in seen:
                raise ValueError(f"Duplicate outpoint in coin set: {output.id}:{output.index}")
            seen.add(output.outpoint)

    def __len__(self) -> int:
        return len(self.outputs)

    def __iter__(self):
        return iter(self.outputs)

    @property
    def total(self) -> Decimal:
        """Total value in whole coins."""

        return total_coins(output.amount for output in self.outputs)


def filter_eligible(
    outputs: Iterable[SpendableOutput], min_confirmations: int
) -> List[SpendableOutput]:
    """Keep outputs with strictly more than ``min_confirmations`` confirmations."""

    return [output for output in outputs if output.confirmations > min_confirmations]


def sort_descending_by_amount(outputs: Iterable[SpendableOutput]) -> List[SpendableOutput]:
    return sorted(outputs, key=lambda output: output.amount, reverse=True)


def partition(outputs: Sequence[SpendableOutput], batch_size: int) -> List[CoinSet]:
    """Split ``outputs`` into full batches of ``batch_size``; the remainder is dropped."""

    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")
    batch_count = len(outputs) // batch_size
    batches = [
        CoinSet(tuple(outputs[start : start + batch_size]))
        for start in range(0, batch_count * batch_size, batch_size)
    ]
    leftover = len(outputs) - batch_count * batch_size
    if leftover:
        logger.info(
            "%d output(s) below a full batch of %d were left out of consolidation",
            leftover,
            batch_size,
        )
    return batches


def format_output_table(outputs: Sequence[SpendableOutput]) -> List[str]:
    """Return the indexed, human-readable rows shown before manual selection."""

    lines = [
        " idx | address                            |           amount | created (UTC)       | conf",
        "-----+------------------------------------+------------------+---------------------+------",
    ]
    for index, output in enumerate(outputs):
        created = output.created_at.strftime("%Y-%m-%d %H:%M:%S")
        lines.append(
            f"{index:>4} | {output.address:<34} | {output.coins:>16.8f} | {created} | {output.confirmations:>4}"
        )
    return lines


def resolve_indices(outputs: Sequence[SpendableOutput], raw: str) -> CoinSet:
    """Turn ``"0, 3,4"`` into a :class:`CoinSet`; any bad token fails the whole selection."""

    tokens = [token.strip() for token in raw.split(",") if token.strip()]
    if not tokens:
        raise SelectionError("No indices supplied")
    chosen: List[SpendableOutput] = []
    seen: set[int] = set()
    for token in tokens:
        try:
            index = int(token)
        except ValueError as exc:
            raise SelectionError(f"Not an index: {token!r}") from exc
        if index < 0 or index >= len(outputs):
            raise SelectionError(f"Index {index} out of range (0-{len(outputs) - 1})")
        if index in seen:
            raise SelectionError(f"Index {index} selected twice")
        seen.add(index)
        chosen.append(outputs[index])
    return CoinSet(tuple(chosen))


class SelectionStrategy(Protocol):
    def select(self, outputs: Sequence[SpendableOutput]) -> CoinSet:
        ...


class PresuppliedSelection:
    """Selects outputs from a fixed index list, for automation and tests."""

    def __init__(self, indices: str | Sequence[int]) -> None:
        if isinstance(indices, str):
            self.raw = indices
        else:
            self.raw = ",".join(str(i) for i in indices)

    def select(self, outputs: Sequence[SpendableOutput]) -> CoinSet:
        return resolve_indices(outputs, self.raw)


class InteractiveSelection:
    """Prints the output table and asks the operator for indices."""

    def __init__(
        self,
        input_func: Callable[[str], str] = input,
        output_func: Callable[[str], None] = print,
    ) -> None:
        self._input = input_func
        self._output = output_func

    def select(self, outputs: Sequence[SpendableOutput]) -> CoinSet:
        if not outputs:
            raise SelectionError("No spendable outputs to choose from")
        for line in format_output_table(outputs):
            self._output(line)
        raw = self._input("Enter indices to spend (comma separated): ")
        return resolve_indices(outputs, raw)


def select_interactively(
    outputs: Sequence[SpendableOutput],
    strategy: SelectionStrategy | None = None,
) -> CoinSet:
    return (strategy or InteractiveSelection()).select(outputs)
