"""
SparseLLM Engine
==================
The run orchestrator: a deterministic sparse mixture-of-experts inference
pass over a short prompt, returning the predicted next token together with
the full routing trace.

Architecture:
    ┌───────────────────────────────────────────────────────────┐
    │  Prompt                                                   │
    │    → WhitespaceTokenizer (grows the vocabulary)           │
    │    → For each token:                                      │
    │        → EmbeddingTable (seeded, cached)                  │
    │        → InputProjection (F → H)                          │
    │        → fuse with the previous token's exit state        │
    │        → For each layer:                                  │
    │            → GatingNetwork → top-K neurons                │
    │            → ExpertBank → weighted delta                  │
    │            → normalize(hidden + delta)                    │
    │    → SimilarityDecoder on the last exit state             │
    │  Output: SparseRunResult (predicted token + traces)       │
    └───────────────────────────────────────────────────────────┘

Context Carry-Over:
    The hidden state is carried from one token to the next. Token t enters
    the stack as ``normalize(exit_state(t-1) + project(embed(t)))`` with a
    zero exit state before the first token. The trace of token t therefore
    depends on every token before it, and the prediction is conditioned on
    the whole prompt.

State Ownership:
    Each engine owns its own vocabulary and embedding cache. Nothing is
    module-global, so two engines never influence each other. Both caches
    are append-only and lock their writes; all other computation derives
    from seeds and needs no locking.

Usage:
    >>> engine = SparseLLM(EngineConfig())
    >>> result = engine.run("hello world")
    >>> result.predicted_token
    >>> engine.describe().vocabulary
"""

from __future__ import annotations

import logging
from typing import Optional

import torch
import torch.nn as nn

from sparsellm.config import EngineConfig
from sparsellm.data.tokenizer import Vocabulary, WhitespaceTokenizer
from sparsellm.model.decoder import SimilarityDecoder
from sparsellm.model.embedding import EmbeddingTable, InputProjection
from sparsellm.model.moe_layer import SparseMoELayer, rms_normalize
from sparsellm.model.seeding import DEFAULT_DTYPE
from sparsellm.model.trace import (
    ArchitectureDescription,
    SparseRunResult,
    Token,
    TokenTrace,
)

logger = logging.getLogger(__name__)


class SparseLLM(nn.Module):
    """
    Deterministic sparse routing engine.

    Parameters
    ----------
    config : EngineConfig or None
        Engine configuration; defaults to ``EngineConfig()``. Validated at
        construction.

    Raises
    ------
    ConfigurationError
        If the configuration is invalid.
    """

    def __init__(self, config: Optional[EngineConfig] = None):
        super().__init__()
        config = config if config is not None else EngineConfig()
        config.validate()
        self.config = config

        # Process-lifetime state, owned by this engine only
        self.vocabulary = Vocabulary()
        self.tokenizer = WhitespaceTokenizer(self.vocabulary)
        self.embeddings = EmbeddingTable(config.embedding_dim)

        self.projection = InputProjection(config.embedding_dim, config.hidden_dim)
        self.layers = nn.ModuleList([
            SparseMoELayer(config, layer_idx=i) for i in range(config.layers)
        ])
        self.decoder = SimilarityDecoder(config.similarity)

        logger.info(
            f"SparseLLM: {config.layers} layers × {config.neurons_per_layer} "
            f"neurons (top-{config.top_k}, "
            f"{config.active_fraction:.0%} active), "
            f"hidden={config.hidden_dim}, embedding={config.embedding_dim}, "
            f"{config.total_params_estimate:,} seeded weights"
        )

    # ─── Per-token pass ─────────────────────────────────────────────────

    def _enter(self, previous: torch.Tensor, token: Token) -> torch.Tensor:
        """Fuse the previous exit state with this token's embedding."""
        embedding = self.embeddings.embedding_of(token.vocabulary_id)
        return rms_normalize(previous + self.projection(embedding))

    def forward_token(
        self,
        token: Token,
        previous: torch.Tensor,
    ) -> tuple[torch.Tensor, TokenTrace]:
        """
        Thread one token through the layer stack.

        Parameters
        ----------
        token : Token
            The token to process.
        previous : torch.Tensor
            Exit state of the previous token (zeros for the first token).

        Returns
        -------
        tuple containing:
            hidden : torch.Tensor
                This token's exit state, shape (hidden_dim,).
            trace : TokenTrace
                One LayerTrace per layer, in layer order.
        """
        hidden = self._enter(previous, token)

        layer_traces = []
        for layer in self.layers:
            hidden, layer_trace = layer(hidden)
            layer_traces.append(layer_trace)

        trace = TokenTrace(
            token=token.text,
            token_index=token.index,
            layers=tuple(layer_traces),
        )
        return hidden, trace

    # ─── Public API ─────────────────────────────────────────────────────

    @torch.no_grad()
    def run(self, prompt: str) -> SparseRunResult:
        """
        Run the sparse stack over a prompt.

        Parameters
        ----------
        prompt : str
            Free text; split on whitespace.

        Returns
        -------
        SparseRunResult
            The predicted next token and one TokenTrace per token. An empty
            or whitespace-only prompt yields no traces and decodes the zero
            state (vocabulary id 0, or the fallback token if nothing has
            ever been seen).
        """
        tokens = self.tokenizer.tokenize(prompt)

        hidden = torch.zeros(self.config.hidden_dim, dtype=DEFAULT_DTYPE)
        token_traces = []
        for token in tokens:
            hidden, trace = self.forward_token(token, hidden)
            token_traces.append(trace)

        predicted_id = self.decoder.decode(hidden, self.embeddings, self.projection)
        if predicted_id is None:
            predicted = self.config.fallback_token
        else:
            predicted = self.vocabulary.text_for(predicted_id)

        logger.debug(
            f"Run over {len(tokens)} tokens → '{predicted}' "
            f"(vocabulary={len(self.vocabulary)})"
        )

        return SparseRunResult(
            predicted_token=predicted,
            token_traces=tuple(token_traces),
        )

    def describe(self) -> ArchitectureDescription:
        """Static configuration plus the current vocabulary size."""
        return ArchitectureDescription(
            layers=self.config.layers,
            neurons_per_layer=self.config.neurons_per_layer,
            top_k=self.config.top_k,
            hidden_dim=self.config.hidden_dim,
            embedding_dim=self.config.embedding_dim,
            vocabulary=len(self.vocabulary),
        )

    def forward(self, prompt: str) -> SparseRunResult:
        return self.run(prompt)

    def __repr__(self) -> str:
        return (
            f"SparseLLM(layers={self.config.layers}, "
            f"neurons={self.config.neurons_per_layer}, "
            f"top_k={self.config.top_k}, vocabulary={len(self.vocabulary)})"
        )
