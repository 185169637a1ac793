"""
SparseLLM Sparse MoE Layer
============================
One "floor" of the stack: a gating network plus an expert bank, fused into
the running hidden state with a normalized residual update.

Architecture:
    hidden (H)
      ├─ GatingNetwork → top-K ids, raw scores, softmax weights
      ├─ ExpertBank    → layer_delta = Σ weight × neuron(hidden)
      └─ Residual      → normalize(hidden + layer_delta)
    hidden' (H), LayerTrace

Normalization rescales the sum to an L2 norm of sqrt(H) (unit RMS), so the
state neither explodes nor vanishes however many layers are stacked.

Usage:
    >>> layer = SparseMoELayer(config, layer_idx=0)
    >>> hidden, trace = layer(hidden)
"""

from __future__ import annotations

import logging
import math

import torch
import torch.nn as nn

from sparsellm.config import EngineConfig
from sparsellm.model.expert import ExpertBank
from sparsellm.model.router import GatingNetwork
from sparsellm.model.trace import LayerTrace, SelectedNeuron

logger = logging.getLogger(__name__)


def rms_normalize(vector: torch.Tensor) -> torch.Tensor:
    """
    Rescale a vector to L2 norm sqrt(len(vector)).

    The zero vector has no direction and is returned unchanged.
    """
    norm = torch.linalg.vector_norm(vector)
    if norm.item() == 0.0:
        return vector
    return vector * (math.sqrt(vector.shape[-1]) / norm)


class SparseMoELayer(nn.Module):
    """
    A sparse layer: route, run the selected neurons, fuse the residual.

    Parameters
    ----------
    config : EngineConfig
        Engine configuration.
    layer_idx : int
        Index of this layer in the stack (part of every seed path).
    """

    def __init__(self, config: EngineConfig, layer_idx: int = 0):
        super().__init__()
        self.config = config
        self.layer_idx = layer_idx

        # Router: decides which neurons handle the token
        self.router = GatingNetwork(
            hidden_dim=config.hidden_dim,
            neurons_per_layer=config.neurons_per_layer,
            top_k=config.top_k,
            layer_idx=layer_idx,
            use_bias=config.use_gate_bias,
            bias_scale=config.gate_bias_scale,
        )

        # Neuron pool: N fixed linear transforms
        self.experts = ExpertBank(
            hidden_dim=config.hidden_dim,
            neurons_per_layer=config.neurons_per_layer,
            layer_idx=layer_idx,
        )

    def forward(self, hidden: torch.Tensor) -> tuple[torch.Tensor, LayerTrace]:
        """
        Apply the layer to one token's hidden state.

        Parameters
        ----------
        hidden : torch.Tensor
            Shape (hidden_dim,).

        Returns
        -------
        tuple containing:
            hidden : torch.Tensor
                Updated hidden state, shape (hidden_dim,).
            trace : LayerTrace
                The top_k neurons that fired, in descending weight.
        """
        ids, raw, weights = self.router(hidden)
        delta = self.experts(hidden, ids, weights)

        trace = LayerTrace(
            layer_index=self.layer_idx,
            selected=tuple(
                SelectedNeuron(id=int(i), raw_score=float(r), weight=float(w))
                for i, r, w in zip(ids.tolist(), raw.tolist(), weights.tolist())
            ),
        )

        return rms_normalize(hidden + delta), trace

    @property
    def n_params(self) -> int:
        """Total seeded weights in this layer."""
        return sum(b.numel() for b in self.buffers())

    def __repr__(self) -> str:
        return (
            f"SparseMoELayer(layer={self.layer_idx}, "
            f"neurons={self.config.neurons_per_layer}, "
            f"top_k={self.config.top_k}, params={self.n_params})"
        )
