"""
SparseLLM Routing Evaluator
=============================
Runs a batch of prompts through an engine and reports how the sparse
router spread the work across neurons.

What Gets Measured:
    1. Neuron utilization per layer (share of selections per neuron)
    2. Balance score per layer (1.0 = perfectly even)
    3. Load-balance ratio per layer (1.0 = even, N/K = collapsed)
    4. Fraction of neurons that fired at least once
    5. Predicted token per prompt, and timing

Output:
    A structured results dictionary, saved as JSON, plus a short printed
    report.

Usage:
    >>> evaluator = RoutingEvaluator(engine)
    >>> results = evaluator.evaluate(prompts, output_dir="outputs/routing")
"""

from __future__ import annotations

import json
import logging
import math
from pathlib import Path
from typing import Optional

from tqdm import tqdm

from sparsellm.engine import SparseLLM
from sparsellm.evaluation.metrics import (
    Timer,
    balance_scores,
    fraction_used,
    load_balance_ratio,
    selection_counts,
    utilization,
)

logger = logging.getLogger(__name__)


class RoutingEvaluator:
    """
    Routing analysis over many prompts.

    Parameters
    ----------
    engine : SparseLLM
        The engine to analyze. Its vocabulary grows as prompts are run.
    """

    def __init__(self, engine: SparseLLM):
        self.engine = engine

    def evaluate(
        self,
        prompts: list[str],
        output_dir: Optional[str] = None,
        show_progress: bool = True,
    ) -> dict:
        """
        Run every prompt and aggregate routing statistics.

        Parameters
        ----------
        prompts : list[str]
            Prompts to run, in order.
        output_dir : str or None
            If provided, results are written to
            ``<output_dir>/routing_results.json``.
        show_progress : bool
            Whether to display a tqdm progress bar.

        Returns
        -------
        dict
            Routing statistics and per-prompt predictions.
        """
        with Timer("Routing analysis") as timer:
            runs = [
                self.engine.run(prompt)
                for prompt in tqdm(prompts, desc="Routing", disable=not show_progress)
            ]

        # Read after the runs so the vocabulary size includes their tokens
        description = self.engine.describe()

        stats = selection_counts(
            runs,
            layers=description.layers,
            neurons_per_layer=description.neurons_per_layer,
        )
        balance = balance_scores(stats)

        results = {
            "architecture": description.to_dict(),
            "n_prompts": len(prompts),
            "total_tokens_analyzed": stats.n_tokens,
            "time_seconds": timer.elapsed,
            "neuron_counts": stats.counts.tolist(),
            "neuron_utilization": utilization(stats).tolist(),
            "balance_scores_per_layer": balance,
            "average_balance_score": (
                sum(balance) / len(balance) if balance is not None else None
            ),
            "load_balance_ratio_per_layer": load_balance_ratio(
                stats, description.top_k
            ),
            "fraction_neurons_used_per_layer": fraction_used(stats),
            "predictions": [
                {"prompt": prompt, "predicted_token": run.predicted_token}
                for prompt, run in zip(prompts, runs)
            ],
        }

        if stats.n_tokens == 0:
            logger.warning("No tokens processed; routing statistics are empty.")
        else:
            logger.info(
                f"Router balance: avg={results['average_balance_score']:.3f} "
                f"(1.0=perfect) over {stats.n_tokens} tokens"
            )

        if output_dir is not None:
            self._save_results(results, output_dir)

        return results

    def _save_results(self, results: dict, output_dir: str) -> None:
        """Save routing results to JSON."""
        Path(output_dir).mkdir(parents=True, exist_ok=True)
        path = Path(output_dir) / "routing_results.json"
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self._make_serializable(results), f, indent=2, ensure_ascii=False)

        logger.info(f"Results saved to {path}")

    def print_report(self, results: dict) -> None:
        """Print a formatted routing report."""
        arch = results["architecture"]
        print("\n" + "=" * 60)
        print("SparseLLM Routing Report")
        print("=" * 60)
        print(
            f"\nArchitecture: {arch['layers']} layers × "
            f"{arch['neuronsPerLayer']} neurons, top-{arch['topK']} "
            f"(vocabulary={arch['vocabulary']})"
        )
        print(
            f"Prompts: {results['n_prompts']}, "
            f"tokens: {results['total_tokens_analyzed']}, "
            f"time: {results['time_seconds']:.3f}s"
        )

        ratios = results.get("load_balance_ratio_per_layer") or []
        balances = results.get("balance_scores_per_layer") or []
        for layer_idx, used in enumerate(results["fraction_neurons_used_per_layer"]):
            ratio = f"{ratios[layer_idx]:.3f}" if ratios else "n/a"
            balance = f"{balances[layer_idx]:.3f}" if balances else "n/a"
            print(
                f"  Layer {layer_idx + 1}: balance={balance}, "
                f"load-balance ratio={ratio}, neurons used={used:.0%}"
            )

        average = results["average_balance_score"]
        if average is not None:
            print(f"\nAverage balance: {average:.3f}")
        print("=" * 60)

    @staticmethod
    def _make_serializable(obj):
        """Convert non-serializable floats for JSON."""
        if isinstance(obj, dict):
            return {k: RoutingEvaluator._make_serializable(v) for k, v in obj.items()}
        elif isinstance(obj, list):
            return [RoutingEvaluator._make_serializable(v) for v in obj]
        elif isinstance(obj, float):
            if math.isinf(obj) or math.isnan(obj):
                return str(obj)
            return obj
        return obj
