"""
sparsellm.model — Sparse Routing Architecture
==============================================
This subpackage defines every component of the simulated network.

    ┌──────────────────────────────────────────────────────────┐
    │                    SparseLLM engine                      │
    │                                                          │
    │  EmbeddingTable (seeded, cached per vocabulary id)       │
    │  InputProjection (embedding width → hidden width)        │
    │                                                          │
    │  ┌─ SparseMoELayer × layers ─────────────────────────┐   │
    │  │  GatingNetwork: scores all N neurons, keeps top-K │   │
    │  │  ┌─────────┐ ┌─────────┐       ┌─────────┐        │   │
    │  │  │Neuron 0 │ │Neuron 1 │  ...  │Neuron N │        │   │
    │  │  └─────────┘ └─────────┘       └─────────┘        │   │
    │  │  normalize(hidden + Σ weight × neuron(hidden))    │   │
    │  └───────────────────────────────────────────────────┘   │
    │                                                          │
    │  SimilarityDecoder (closest embedding wins)              │
    └──────────────────────────────────────────────────────────┘

Components:
    - seeding.py    — Deterministic seed-path → float generator
    - embedding.py  — Embedding table and input projection
    - router.py     — Top-K gating network
    - expert.py     — Per-layer bank of neuron transforms
    - moe_layer.py  — Gate + experts + normalized residual
    - decoder.py    — Embedding-similarity decoder
    - trace.py      — Immutable trace and result records
"""

from sparsellm.model.seeding import seeded_tensor, seeded_unit, seeded_value
from sparsellm.model.embedding import EmbeddingTable, InputProjection
from sparsellm.model.router import GatingNetwork, select_top_k, stable_softmax
from sparsellm.model.expert import ExpertBank
from sparsellm.model.moe_layer import SparseMoELayer, rms_normalize
from sparsellm.model.decoder import SimilarityDecoder
from sparsellm.model.trace import (
    ArchitectureDescription,
    LayerTrace,
    SelectedNeuron,
    SparseRunResult,
    Token,
    TokenTrace,
)
