"""
SparseLLM Expert Bank
=======================
The neurons of one layer. Each neuron is a fixed linear transform of the
hidden state whose matrix is derived from
``("expert", layer, neuron, in_dim, out_dim)`` seeds.

Data flow for one token:
    selected ids + weights (from the gate)
      → for each selected neuron n:  out_n = hidden @ W[n]
      → layer_delta = Σ weight_n × out_n

Only the K selected neurons are evaluated; the other N−K matrices are
never touched for that token. That is the whole point of sparse routing.

Usage:
    >>> bank = ExpertBank(hidden_dim=32, neurons_per_layer=16, layer_idx=0)
    >>> delta = bank(hidden, ids, weights)   # shape (32,)
"""

from __future__ import annotations

import logging
import math

import torch
import torch.nn as nn

from sparsellm.model.seeding import seeded_tensor

logger = logging.getLogger(__name__)


class ExpertBank(nn.Module):
    """
    All neuron transforms of a single layer.

    Parameters
    ----------
    hidden_dim : int
        Input and output width of every neuron.

    neurons_per_layer : int
        Number of neurons in the bank.

    layer_idx : int
        Which layer this bank belongs to (part of every seed path).
    """

    def __init__(
        self,
        hidden_dim: int = 32,
        neurons_per_layer: int = 16,
        layer_idx: int = 0,
    ):
        super().__init__()

        if hidden_dim <= 0:
            raise ValueError(f"hidden_dim must be positive, got {hidden_dim}")
        if neurons_per_layer <= 0:
            raise ValueError(
                f"neurons_per_layer must be positive, got {neurons_per_layer}"
            )

        self.hidden_dim = hidden_dim
        self.neurons_per_layer = neurons_per_layer
        self.layer_idx = layer_idx

        # weight[n, i, o]: neuron n, input dim i, output dim o.
        # Scaled by 1/sqrt(H) so outputs stay on the input's scale.
        weight = seeded_tensor(
            ("expert", layer_idx),
            (neurons_per_layer, hidden_dim, hidden_dim),
        ) / math.sqrt(hidden_dim)
        self.register_buffer("weight", weight)

    def expert_output(self, neuron_id: int, hidden: torch.Tensor) -> torch.Tensor:
        """Output of a single neuron, shape (hidden_dim,)."""
        return hidden @ self.weight[neuron_id]

    def forward(
        self,
        hidden: torch.Tensor,
        ids: torch.Tensor,
        weights: torch.Tensor,
    ) -> torch.Tensor:
        """
        Weighted sum of the selected neurons' outputs.

        Parameters
        ----------
        hidden : torch.Tensor
            Current hidden state, shape (hidden_dim,).
        ids : torch.Tensor
            Selected neuron ids, shape (top_k,).
        weights : torch.Tensor
            Their routing weights, shape (top_k,).

        Returns
        -------
        torch.Tensor
            The layer delta, shape (hidden_dim,).
        """
        delta = torch.zeros_like(hidden)
        for neuron_id, weight in zip(ids.tolist(), weights):
            delta = delta + weight * self.expert_output(neuron_id, hidden)
        return delta

    @property
    def n_params(self) -> int:
        """Total number of seeded weights in this bank."""
        return self.weight.numel()

    def __repr__(self) -> str:
        return (
            f"ExpertBank(layer={self.layer_idx}, "
            f"neurons={self.neurons_per_layer}, hidden_dim={self.hidden_dim})"
        )
