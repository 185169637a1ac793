"""
SparseLLM
=========
A deterministic sparse mixture-of-experts inference simulator.

A prompt is split into tokens and pushed through a stack of layers in which
only the top-K of N "neurons" fire for each token. Every weight is derived
from a seed path rather than learned, so a run is reproducible bit for bit
and its full routing trace (which neurons fired, with what weight, per
token and per layer) can be inspected or visualized.

Quick Start:
    >>> from sparsellm import SparseLLM
    >>> engine = SparseLLM()
    >>> result = engine.run("hello world")
    >>> result.predicted_token
    >>> engine.describe()

Subpackages:
    - sparsellm.data       — Whitespace tokenizer and vocabulary
    - sparsellm.model      — Seeding, embeddings, gate, experts, layer, decoder
    - sparsellm.evaluation — Routing utilization metrics and analysis
"""

from sparsellm.config import ConfigurationError, EngineConfig
from sparsellm.engine import SparseLLM

__version__ = "0.1.0"

__all__ = ["ConfigurationError", "EngineConfig", "SparseLLM"]
