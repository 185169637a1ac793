"""
SparseLLM Embedding Table
===========================
Token vectors are not learned: the embedding of vocabulary id ``v`` is
``[seeded_value("embedding", v, d) for d in range(embedding_dim)]``. The
table only materializes a row the first time an id is referenced and keeps
it forever after, so the same id always maps to the same vector.

Storage is an append-only arena indexed by vocabulary id (row ``v`` is the
embedding of id ``v``). The decoder reads the whole table at once through
``snapshot()``.

When the embedding width differs from the hidden width, ``InputProjection``
bridges the two with a fixed seeded matrix. The same bridge is applied to
the table rows at decode time so similarities are measured in hidden space.
"""

from __future__ import annotations

import logging
import math
import threading

import torch
import torch.nn as nn

from sparsellm.model.seeding import DEFAULT_DTYPE, seeded_tensor

logger = logging.getLogger(__name__)


class EmbeddingTable:
    """
    Lazily materialized, cached embedding vectors.

    Parameters
    ----------
    embedding_dim : int
        Width of each embedding vector.
    """

    def __init__(self, embedding_dim: int):
        if embedding_dim <= 0:
            raise ValueError(f"embedding_dim must be positive, got {embedding_dim}")

        self.embedding_dim = embedding_dim
        self._rows: list[torch.Tensor] = []
        self._lock = threading.Lock()

    def _synthesize(self, vocab_id: int) -> torch.Tensor:
        return seeded_tensor(("embedding", vocab_id), (self.embedding_dim,))

    def embedding_of(self, vocab_id: int) -> torch.Tensor:
        """
        Return the embedding of a vocabulary id, creating it on first use.

        Rows are stored densely, so referencing id ``v`` also materializes
        any lower id that has not been seen yet.

        Parameters
        ----------
        vocab_id : int
            A non-negative vocabulary id.

        Returns
        -------
        torch.Tensor
            Shape (embedding_dim,). The cached tensor itself; do not mutate.
        """
        if vocab_id < 0:
            raise ValueError(f"vocab_id must be >= 0, got {vocab_id}")

        if vocab_id < len(self._rows):
            return self._rows[vocab_id]

        with self._lock:
            while len(self._rows) <= vocab_id:
                self._rows.append(self._synthesize(len(self._rows)))
            row = self._rows[vocab_id]

        logger.debug(f"Embedding table grew to {len(self._rows)} rows")
        return row

    def snapshot(self) -> torch.Tensor:
        """
        Stack every cached row into one tensor.

        Returns
        -------
        torch.Tensor
            Shape (n_rows, embedding_dim); (0, embedding_dim) when empty.
        """
        with self._lock:
            rows = list(self._rows)
        if not rows:
            return torch.zeros(0, self.embedding_dim, dtype=DEFAULT_DTYPE)
        return torch.stack(rows)

    def __len__(self) -> int:
        return len(self._rows)

    def __repr__(self) -> str:
        return f"EmbeddingTable(dim={self.embedding_dim}, rows={len(self)})"


class InputProjection(nn.Module):
    """
    Fixed bridge from embedding space (F) to hidden space (H).

    Identity when F == H, otherwise a seeded F×H matrix scaled by
    1/sqrt(F) so projected vectors keep roughly the input's scale.

    Parameters
    ----------
    embedding_dim : int
        Input width F.
    hidden_dim : int
        Output width H.
    """

    def __init__(self, embedding_dim: int, hidden_dim: int):
        super().__init__()
        self.embedding_dim = embedding_dim
        self.hidden_dim = hidden_dim
        self.is_identity = embedding_dim == hidden_dim

        if self.is_identity:
            weight = torch.eye(embedding_dim, dtype=DEFAULT_DTYPE)
        else:
            weight = seeded_tensor(
                ("projection",), (embedding_dim, hidden_dim)
            ) / math.sqrt(embedding_dim)
        self.register_buffer("weight", weight)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        """
        Project vectors from F to H.

        Parameters
        ----------
        x : torch.Tensor
            Shape (..., embedding_dim).

        Returns
        -------
        torch.Tensor
            Shape (..., hidden_dim).
        """
        if self.is_identity:
            return x
        return x @ self.weight

    def __repr__(self) -> str:
        kind = "identity" if self.is_identity else "seeded"
        return (
            f"InputProjection({self.embedding_dim} -> {self.hidden_dim}, {kind})"
        )
