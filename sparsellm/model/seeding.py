"""
SparseLLM Deterministic Value Generator
=========================================
Every "weight" in SparseLLM (embeddings, gates, biases, expert matrices) is
a pure function of a seed path such as ``("gate", layer, neuron, dim)``.
Nothing is learned, nothing is random, nothing is stored on disk.

How It Works:
    1. Each part of the path is reduced to 64 bits (ints modulo 2**64,
       strings through FNV-1a over their UTF-8 bytes).
    2. Starting from a fixed constant, every part is XOR-ed into the
       running hash and scrambled with the splitmix64 finalizer. The fold
       is sequential, so ("gate", 1, 2) and ("gate", 2, 1) differ.
    3. The top 53 bits of the final hash become a float in [0, 1), and
       ``2u - 1`` maps it into [-1, 1).

The arithmetic runs on numpy uint64 arrays (which wrap on overflow), so the
same path yields the same float in every process on every machine.

Usage:
    >>> seeded_value("embedding", 7, 0) == seeded_value("embedding", 7, 0)
    True
    >>> seeded_tensor(("gate", 0), (16, 32)).shape
    torch.Size([16, 32])
"""

from __future__ import annotations

import logging
from typing import Union

import numpy as np
import torch

logger = logging.getLogger(__name__)

SeedPart = Union[int, str]

# All engine math runs in float64 so results are bit-stable across runs
DEFAULT_DTYPE = torch.float64

_MASK64 = (1 << 64) - 1
_ROOT = 0x243F6A8885A308D3
_FNV_OFFSET = 0xCBF29CE484222325
_FNV_PRIME = 0x100000001B3

_GOLDEN = np.uint64(0x9E3779B97F4A7C15)
_MIX1 = np.uint64(0xBF58476D1CE4E5B9)
_MIX2 = np.uint64(0x94D049BB133111EB)
_SHIFT_MANTISSA = np.uint64(11)
_TO_UNIT = 2.0 ** -53


def _part_to_int(part: SeedPart) -> int:
    """Reduce one seed path element to an unsigned 64-bit integer."""
    if isinstance(part, str):
        h = _FNV_OFFSET
        for byte in part.encode("utf-8"):
            h ^= byte
            h = (h * _FNV_PRIME) & _MASK64
        return h
    if isinstance(part, (int, np.integer)):
        return int(part) & _MASK64
    raise TypeError(
        f"Seed path parts must be int or str, got {type(part).__name__}"
    )


def _mix(h: np.ndarray) -> np.ndarray:
    """splitmix64 finalizer, elementwise on a uint64 array."""
    z = h + _GOLDEN
    z = (z ^ (z >> np.uint64(30))) * _MIX1
    z = (z ^ (z >> np.uint64(27))) * _MIX2
    return z ^ (z >> np.uint64(31))


def _hash_grid(prefix: tuple, shape: tuple[int, ...]) -> np.ndarray:
    """
    Hash ``prefix + (i, j, ...)`` for every index of ``shape``.

    Returns an array of shape ``(1, *shape)``; the leading axis keeps the
    arithmetic on arrays (numpy warns on scalar uint64 overflow).
    """
    with np.errstate(over="ignore"):
        h = np.array([_ROOT], dtype=np.uint64)
        for part in prefix:
            h = _mix(h ^ np.uint64(_part_to_int(part)))
        for size in shape:
            if size < 0:
                raise ValueError(f"Grid dimensions must be >= 0, got {shape}")
            idx = np.arange(size, dtype=np.uint64)
            h = _mix(h[..., None] ^ idx)
    return h


def _to_unit(h: np.ndarray) -> np.ndarray:
    return (h >> _SHIFT_MANTISSA).astype(np.float64) * _TO_UNIT


def seeded_unit(*path: SeedPart) -> float:
    """Stable pseudo-random float in [0, 1) for a seed path."""
    return float(_to_unit(_hash_grid(path, ()))[0])


def seeded_value(*path: SeedPart) -> float:
    """Stable pseudo-random float in [-1, 1) for a seed path."""
    return 2.0 * seeded_unit(*path) - 1.0


def seeded_tensor(
    prefix: tuple,
    shape: tuple[int, ...],
    dtype: torch.dtype = DEFAULT_DTYPE,
) -> torch.Tensor:
    """
    Vectorised ``seeded_value`` over a grid of trailing indices.

    Element ``[i, j, ...]`` of the result equals
    ``seeded_value(*prefix, i, j, ...)`` exactly.

    Parameters
    ----------
    prefix : tuple
        Leading seed path, e.g. ``("expert", layer_idx)``.
    shape : tuple[int, ...]
        Shape of the grid; one trailing path element per axis.
    dtype : torch.dtype
        Output dtype (float64 by default).

    Returns
    -------
    torch.Tensor
        Values in [-1, 1) with the requested shape.
    """
    unit = _to_unit(_hash_grid(prefix, tuple(shape))).reshape(tuple(shape))
    values = 2.0 * unit - 1.0
    return torch.from_numpy(np.ascontiguousarray(values)).to(dtype)
