"""
SparseLLM Trace Records
=========================
Immutable value types produced by a run. A trace is the recorded evidence
of which neurons fired and with what weight, per token, per layer.

    SparseRunResult
      ├─ predicted_token
      └─ token_traces[]            (ordered by token_index)
           └─ layers[]             (ordered by layer_index)
                └─ selected[]      (top_k entries, descending weight)
                     id, raw_score, weight

All sequences are tuples, so two results compare equal exactly when every
token, id, score and weight is identical.

``to_dict()`` emits the camelCase field names consumed by the
visualization front end (``predictedToken``, ``tokenTraces``, ...).
"""

from __future__ import annotations

import json
from dataclasses import dataclass


@dataclass(frozen=True)
class Token:
    """One whitespace-delimited piece of a prompt."""
    text: str
    index: int
    vocabulary_id: int

    def to_dict(self) -> dict:
        return {
            "text": self.text,
            "index": self.index,
            "vocabularyId": self.vocabulary_id,
        }


@dataclass(frozen=True)
class SelectedNeuron:
    """
    A neuron that fired in one layer.

    raw_score is the gate score before softmax; weight is its normalized
    share among the neurons selected in that layer.
    """
    id: int
    raw_score: float
    weight: float

    def to_dict(self) -> dict:
        return {"id": self.id, "rawScore": self.raw_score, "weight": self.weight}


@dataclass(frozen=True)
class LayerTrace:
    layer_index: int
    selected: tuple[SelectedNeuron, ...]

    @property
    def total_weight(self) -> float:
        return sum(n.weight for n in self.selected)

    def to_dict(self) -> dict:
        return {
            "layerIndex": self.layer_index,
            "selected": [n.to_dict() for n in self.selected],
        }


@dataclass(frozen=True)
class TokenTrace:
    token: str
    token_index: int
    layers: tuple[LayerTrace, ...]

    def to_dict(self) -> dict:
        return {
            "token": self.token,
            "tokenIndex": self.token_index,
            "layers": [layer.to_dict() for layer in self.layers],
        }


@dataclass(frozen=True)
class SparseRunResult:
    """Everything a caller observes from one run."""
    predicted_token: str
    token_traces: tuple[TokenTrace, ...]

    def to_dict(self) -> dict:
        return {
            "predictedToken": self.predicted_token,
            "tokenTraces": [trace.to_dict() for trace in self.token_traces],
        }

    def to_json(self, indent: int | None = None) -> str:
        return json.dumps(self.to_dict(), indent=indent)


@dataclass(frozen=True)
class ArchitectureDescription:
    """Static configuration snapshot plus the current vocabulary size."""
    layers: int
    neurons_per_layer: int
    top_k: int
    hidden_dim: int
    embedding_dim: int
    vocabulary: int

    def to_dict(self) -> dict:
        return {
            "layers": self.layers,
            "neuronsPerLayer": self.neurons_per_layer,
            "topK": self.top_k,
            "hiddenDim": self.hidden_dim,
            "embeddingDim": self.embedding_dim,
            "vocabulary": self.vocabulary,
        }
