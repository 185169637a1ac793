"""
SparseLLM Configuration System
================================
Centralized configuration for the sparse routing engine using a Python
dataclass. Every architectural knob lives here and is fixed once the
engine is constructed.

Think of this as the "blueprint" of the simulated network. Change a value
here and the whole stack (gates, experts, embeddings) is derived again from
the same seeds, so two engines built from equal configs behave identically.

Usage:
    # Load from YAML file:
    >>> config = EngineConfig.from_yaml("configs/default.yaml")

    # Create programmatically:
    >>> config = EngineConfig(layers=4, neurons_per_layer=16, top_k=4)

    # Save to YAML:
    >>> config.to_yaml("configs/my_experiment.yaml")
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Literal

import yaml

logger = logging.getLogger(__name__)

SIMILARITY_MODES = ("cosine", "dot")
INTEGER_FIELDS = ("layers", "neurons_per_layer", "top_k", "hidden_dim", "embedding_dim")


class ConfigurationError(ValueError):
    """Raised when an engine configuration is invalid. Never clamped."""


# =============================================================================
# Engine Configuration
# =============================================================================

@dataclass(frozen=True)
class EngineConfig:
    """
    Architecture of the simulated sparse mixture-of-experts stack.

    Analogy: If the engine is a building, these parameters define how many
    floors it has (layers), how many specialist offices are on each floor
    (neurons_per_layer), how many of them a visitor actually consults
    (top_k), and how wide the corridors are (hidden_dim, embedding_dim).

    Parameters
    ----------
    layers : int
        Number of sparse layers stacked on top of each other.

    neurons_per_layer : int
        Number of neurons (experts) available in every layer.

    top_k : int
        How many neurons fire per layer, per token.
        K=1: a single neuron handles the token (most sparse).
        K=neurons_per_layer: every neuron fires (dense, no savings).

    hidden_dim : int
        Width of the hidden state threaded through the layers.

    embedding_dim : int
        Width of the token embeddings. When it differs from hidden_dim a
        fixed seeded projection bridges the two.

    use_gate_bias : bool
        Whether each gate adds a seeded per-neuron bias to its score.

    gate_bias_scale : float
        Magnitude of the gate bias. Seeded biases lie in
        [-gate_bias_scale, gate_bias_scale).

    similarity : str
        How the decoder compares the final hidden state to embeddings.
        - "cosine": normalized dot product (default)
        - "dot": raw dot product

    fallback_token : str
        Token emitted when there is nothing to decode against (the
        vocabulary is still empty).
    """
    layers: int = 4
    neurons_per_layer: int = 16
    top_k: int = 4
    hidden_dim: int = 32
    embedding_dim: int = 32
    use_gate_bias: bool = True
    gate_bias_scale: float = 0.1
    similarity: Literal["cosine", "dot"] = "cosine"
    fallback_token: str = "<unk>"

    def validate(self) -> None:
        """
        Check that all parameters are valid and consistent.

        Raises
        ------
        ConfigurationError
            If any parameter is invalid or inconsistent with others.
        """
        for name in INTEGER_FIELDS:
            value = getattr(self, name)
            # bool is an int subclass; True must not pass as 1
            if not isinstance(value, int) or isinstance(value, bool):
                raise ConfigurationError(
                    f"{name} must be an integer, got {type(value).__name__} ({value!r})"
                )
        if self.layers < 1:
            raise ConfigurationError(f"layers must be >= 1, got {self.layers}")
        if self.neurons_per_layer < 1:
            raise ConfigurationError(
                f"neurons_per_layer must be >= 1, got {self.neurons_per_layer}"
            )
        if self.top_k < 1 or self.top_k > self.neurons_per_layer:
            raise ConfigurationError(
                f"top_k ({self.top_k}) must be between 1 and "
                f"neurons_per_layer ({self.neurons_per_layer})"
            )
        if self.hidden_dim < 1:
            raise ConfigurationError(
                f"hidden_dim must be positive, got {self.hidden_dim}"
            )
        if self.embedding_dim < 1:
            raise ConfigurationError(
                f"embedding_dim must be positive, got {self.embedding_dim}"
            )
        if self.gate_bias_scale < 0:
            raise ConfigurationError(
                f"gate_bias_scale must be >= 0, got {self.gate_bias_scale}"
            )
        if self.similarity not in SIMILARITY_MODES:
            raise ConfigurationError(
                f"Unknown similarity: '{self.similarity}'. "
                f"Choose from: {', '.join(SIMILARITY_MODES)}"
            )
        if not self.fallback_token:
            raise ConfigurationError("fallback_token must be a non-empty string")

    @property
    def active_fraction(self) -> float:
        """Fraction of neurons that fire per layer (top_k / neurons)."""
        return self.top_k / self.neurons_per_layer

    @property
    def expert_params(self) -> int:
        """Number of seeded weights in one neuron's transform."""
        return self.hidden_dim * self.hidden_dim

    @property
    def total_params_estimate(self) -> int:
        """Seeded weights in the layer stack (gates, biases, experts)."""
        gates = self.layers * self.neurons_per_layer * self.hidden_dim
        biases = self.layers * self.neurons_per_layer if self.use_gate_bias else 0
        experts = self.layers * self.neurons_per_layer * self.expert_params
        projection = (
            0 if self.embedding_dim == self.hidden_dim
            else self.embedding_dim * self.hidden_dim
        )
        return gates + biases + experts + projection

    # ─── YAML I/O ───────────────────────────────────────────────────────

    @classmethod
    def from_yaml(cls, path: str | Path) -> EngineConfig:
        """
        Load configuration from a YAML file.

        The file may either hold the fields at the top level or nest them
        under an ``engine:`` key.

        Parameters
        ----------
        path : str or Path
            Path to the YAML configuration file.

        Returns
        -------
        EngineConfig
            Loaded and validated configuration.

        Raises
        ------
        FileNotFoundError
            If the YAML file does not exist.
        ValueError
            If the YAML file is empty.
        ConfigurationError
            If the loaded values are invalid.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(
                f"Config file not found: {path}. "
                f"Create one from configs/default.yaml as a template."
            )

        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f)

        if raw is None:
            raise ValueError(f"Config file is empty: {path}")

        section = raw.get("engine", raw) if isinstance(raw, dict) else raw
        if not isinstance(section, dict):
            raise ConfigurationError(
                f"Config in {path} must be a mapping of field names to values, "
                f"got {type(section).__name__}"
            )

        try:
            config = cls(**section)
        except TypeError as exc:
            raise ConfigurationError(f"Invalid config in {path}: {exc}") from exc

        config.validate()
        logger.info(f"Config loaded from {path}")
        return config

    def to_yaml(self, path: str | Path) -> None:
        """
        Save configuration to a YAML file under an ``engine:`` key.

        Creates parent directories if they don't exist.
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w", encoding="utf-8") as f:
            yaml.dump(
                {"engine": self.to_dict()},
                f,
                default_flow_style=False,
                sort_keys=False,
                allow_unicode=True,
            )

        logger.info(f"Config saved to {path}")

    def to_dict(self) -> dict:
        """Convert to a plain dictionary."""
        return asdict(self)

    @classmethod
    def for_smoke_test(cls) -> EngineConfig:
        """
        Create a minimal configuration for quick tests.

        Keeps the embedding and hidden widths different so the projection
        bridge is exercised.
        """
        return cls(
            layers=2,
            neurons_per_layer=6,
            top_k=2,
            hidden_dim=8,
            embedding_dim=12,
        )

    def __repr__(self) -> str:
        return (
            f"EngineConfig(layers={self.layers}, "
            f"neurons={self.neurons_per_layer}, top_k={self.top_k}, "
            f"hidden_dim={self.hidden_dim}, embedding_dim={self.embedding_dim}, "
            f"similarity={self.similarity})"
        )
