"""
SparseLLM Routing Metrics
===========================
Quantitative views of the routing traces: which neurons fire, how often,
and how evenly the work is spread.

Metrics Explained:

1. SELECTION COUNTS
   For every (layer, neuron): how many tokens selected it, and the sum of
   the routing weights it received.

2. BALANCE SCORE
   1 − coefficient of variation of the per-layer utilization.
   1.0 = every neuron fires equally often; lower = a few favourites.

3. LOAD-BALANCE RATIO
   The auxiliary load-balancing quantity used by trained MoE routers,
   computed over observed selections and divided by K:
       ratio = N × Σ_i f_i × P_i / K
   where f_i is the fraction of tokens selecting neuron i and P_i its mean
   routing weight. 1.0 for perfectly even routing, N/K when the same K
   neurons always fire.

4. TIMING
   Wall-clock time of a block of runs.

Usage:
    >>> counts = selection_counts(results, layers=4, neurons_per_layer=16)
    >>> ratio = load_balance_ratio(counts, top_k=4)
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Iterable, Optional

import torch

from sparsellm.model.trace import SparseRunResult

logger = logging.getLogger(__name__)


@dataclass
class SelectionCounts:
    """
    Aggregated selections over a set of runs.

    Attributes
    ----------
    counts : torch.Tensor
        Shape (layers, neurons); number of tokens that selected each neuron.
    weight_sums : torch.Tensor
        Shape (layers, neurons); summed routing weight per neuron.
    n_tokens : int
        Number of token traces aggregated.
    """
    counts: torch.Tensor
    weight_sums: torch.Tensor
    n_tokens: int


def selection_counts(
    results: Iterable[SparseRunResult],
    layers: int,
    neurons_per_layer: int,
) -> SelectionCounts:
    """Aggregate every LayerTrace of every run into per-neuron totals."""
    counts = torch.zeros(layers, neurons_per_layer, dtype=torch.long)
    weight_sums = torch.zeros(layers, neurons_per_layer, dtype=torch.float64)
    n_tokens = 0

    for result in results:
        for token_trace in result.token_traces:
            n_tokens += 1
            for layer in token_trace.layers:
                for neuron in layer.selected:
                    counts[layer.layer_index, neuron.id] += 1
                    weight_sums[layer.layer_index, neuron.id] += neuron.weight

    return SelectionCounts(counts=counts, weight_sums=weight_sums, n_tokens=n_tokens)


def utilization(stats: SelectionCounts) -> torch.Tensor:
    """Share of each layer's selections going to each neuron (rows sum to 1)."""
    counts = stats.counts.to(torch.float64)
    return counts / counts.sum(dim=-1, keepdim=True).clamp(min=1)


def balance_scores(stats: SelectionCounts) -> Optional[list[float]]:
    """
    Per-layer 1 − coefficient of variation of utilization.

    Returns None when no tokens were aggregated.
    """
    if stats.n_tokens == 0:
        logger.warning("No tokens aggregated. Balance score is undefined.")
        return None

    util = utilization(stats)
    cv = util.std(dim=-1, correction=0) / util.mean(dim=-1).clamp(min=1e-8)
    return (1 - cv).tolist()


def load_balance_ratio(stats: SelectionCounts, top_k: int) -> Optional[list[float]]:
    """
    Per-layer load-balance ratio ``N × Σ f_i P_i / K``.

    Returns None when no tokens were aggregated.
    """
    if stats.n_tokens == 0:
        logger.warning("No tokens aggregated. Load-balance ratio is undefined.")
        return None

    n_neurons = stats.counts.shape[-1]
    f = stats.counts.to(torch.float64) / stats.n_tokens
    p = stats.weight_sums / stats.n_tokens
    return (n_neurons * (f * p).sum(dim=-1) / top_k).tolist()


def fraction_used(stats: SelectionCounts) -> list[float]:
    """Per-layer fraction of neurons that fired at least once."""
    return (stats.counts > 0).to(torch.float64).mean(dim=-1).tolist()


class Timer:
    """
    Simple context manager for timing operations.

    Usage:
        >>> with Timer("Routing analysis") as t:
        ...     engine.run(prompt)
        >>> print(f"Took: {t.elapsed:.2f}s")
    """

    def __init__(self, label: str = "operation"):
        self.label = label
        self.elapsed: float = 0.0
        self._start: float = 0.0

    def __enter__(self):
        self._start = time.perf_counter()
        return self

    def __exit__(self, *args):
        self.elapsed = time.perf_counter() - self._start
        logger.info(f"[{self.label}] Time: {self.elapsed:.3f}s")
