"""
SparseLLM Gating Network
==========================
The gating network is the "traffic controller" of a sparse layer. For the
current hidden state it decides which neurons fire and how much weight
each one gets.

How It Works (Analogy):
    Imagine a hospital reception desk. When a patient arrives:
    1. The receptionist (gate) scores every specialist for this patient
    2. Only the top-K specialists are consulted
    3. Their scores are turned into shares that add up to 100%

Gating Mechanism:
    hidden (H) → gate matrix (N×H) [+ bias] → raw scores (N)
               → stable sort, ties to lower neuron id → first K
               → softmax over the K selected scores → weights

Unlike a trained router there is no noise and no load-balancing loss:
the gate matrix is derived from ``("gate", layer, neuron, dim)`` seeds and
every decision is reproducible bit for bit.

Usage:
    >>> gate = GatingNetwork(hidden_dim=32, neurons_per_layer=16, top_k=4)
    >>> ids, raw, weights = gate(hidden)
    # ids:     (4,) selected neuron ids, best first
    # raw:     (4,) their pre-softmax scores
    # weights: (4,) softmax over raw, sums to 1
"""

from __future__ import annotations

import logging

import torch
import torch.nn as nn

from sparsellm.config import ConfigurationError
from sparsellm.model.seeding import seeded_tensor

logger = logging.getLogger(__name__)


def select_top_k(
    scores: torch.Tensor,
    k: int,
) -> tuple[torch.Tensor, torch.Tensor]:
    """
    Pick the k highest scores with a total order.

    Neurons are sorted by descending score; equal scores keep ascending
    neuron id (a stable sort over ids 0..N-1).

    Parameters
    ----------
    scores : torch.Tensor
        Raw scores, shape (n_neurons,).
    k : int
        Number of neurons to keep.

    Returns
    -------
    tuple containing:
        ids : torch.Tensor
            Selected neuron ids, shape (k,), best first.
        raw : torch.Tensor
            Their scores, shape (k,).
    """
    if not 1 <= k <= scores.shape[-1]:
        raise ValueError(f"k ({k}) must be between 1 and {scores.shape[-1]}")

    sorted_scores, order = torch.sort(scores, descending=True, stable=True)
    return order[:k], sorted_scores[:k]


def stable_softmax(raw: torch.Tensor) -> torch.Tensor:
    """Softmax that subtracts the maximum before exponentiating."""
    shifted = raw - raw.max()
    exp = torch.exp(shifted)
    return exp / exp.sum()


class GatingNetwork(nn.Module):
    """
    Deterministic sparse Top-K gate for one layer.

    Parameters
    ----------
    hidden_dim : int
        Width of the hidden state being scored.

    neurons_per_layer : int
        Total number of neurons the gate can choose from.

    top_k : int
        Number of neurons that fire per token.
        K=1: each token goes to exactly one neuron (most sparse)
        K=neurons_per_layer: every neuron fires (dense, no savings)

    layer_idx : int
        Which layer this gate belongs to. Part of every seed path, so
        layers route differently.

    use_bias : bool
        Whether to add a seeded per-neuron bias to the scores.

    bias_scale : float
        Magnitude of the seeded bias.
    """

    def __init__(
        self,
        hidden_dim: int = 32,
        neurons_per_layer: int = 16,
        top_k: int = 4,
        layer_idx: int = 0,
        use_bias: bool = True,
        bias_scale: float = 0.1,
    ):
        super().__init__()

        if top_k > neurons_per_layer:
            raise ConfigurationError(
                f"top_k ({top_k}) cannot exceed neurons_per_layer "
                f"({neurons_per_layer})"
            )
        if top_k < 1:
            raise ConfigurationError(f"top_k must be >= 1, got {top_k}")

        self.hidden_dim = hidden_dim
        self.neurons_per_layer = neurons_per_layer
        self.top_k = top_k
        self.layer_idx = layer_idx
        self.use_bias = use_bias

        # One gate vector per neuron, seeded from (layer, neuron, dim)
        self.register_buffer(
            "gate_weight",
            seeded_tensor(("gate", layer_idx), (neurons_per_layer, hidden_dim)),
        )

        if use_bias:
            bias = seeded_tensor(("gate_bias", layer_idx), (neurons_per_layer,))
            bias = bias * bias_scale
        else:
            bias = torch.zeros(neurons_per_layer, dtype=self.gate_weight.dtype)
        self.register_buffer("gate_bias", bias)

    def score(self, hidden: torch.Tensor) -> torch.Tensor:
        """
        Raw score of every neuron for a hidden state.

        Parameters
        ----------
        hidden : torch.Tensor
            Shape (hidden_dim,).

        Returns
        -------
        torch.Tensor
            Shape (neurons_per_layer,); entry i belongs to neuron i.
        """
        return self.gate_weight @ hidden + self.gate_bias

    def forward(
        self,
        hidden: torch.Tensor,
    ) -> tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
        """
        Route a hidden state to its top-K neurons.

        Returns
        -------
        tuple containing:
            ids : torch.Tensor
                Selected neuron ids, shape (top_k,), best first.
            raw : torch.Tensor
                Pre-softmax scores of the selected neurons.
            weights : torch.Tensor
                Softmax over ``raw``; sums to 1.
        """
        ids, raw = select_top_k(self.score(hidden), self.top_k)
        return ids, raw, stable_softmax(raw)

    def __repr__(self) -> str:
        return (
            f"GatingNetwork(layer={self.layer_idx}, "
            f"neurons={self.neurons_per_layer}, top_k={self.top_k}, "
            f"bias={self.use_bias})"
        )
