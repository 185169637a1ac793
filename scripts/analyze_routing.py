#!/usr/bin/env python3
"""
SparseLLM — Routing Analysis Script
======================================
Runs a list of prompts through one engine and reports neuron utilization,
balance and load-balance ratio per layer.

Usage:
    python scripts/analyze_routing.py
    python scripts/analyze_routing.py --prompts prompts.txt --output-dir outputs/routing
    python scripts/analyze_routing.py --config configs/default.yaml
"""

import argparse
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from sparsellm.config import EngineConfig
from sparsellm.engine import SparseLLM
from sparsellm.evaluation.evaluator import RoutingEvaluator

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)

DEFAULT_PROMPTS = [
    "Design a sparse transformer that routes tokens to only the neurons they need.",
    "The scientific method is",
    "In mathematics, a prime number",
    "The history of computing began",
    "Machine learning algorithms can",
    "The structure of DNA was",
]


def load_prompts(path: Path) -> list[str]:
    """One prompt per line; blank lines are skipped."""
    if not path.exists():
        raise FileNotFoundError(f"Prompt file not found: {path}")
    with open(path, "r", encoding="utf-8") as f:
        return [line.rstrip("\n") for line in f if line.strip()]


def main():
    parser = argparse.ArgumentParser(description="SparseLLM Routing Analysis")
    parser.add_argument("--config", type=str, default=None)
    parser.add_argument("--smoke-test", action="store_true")
    parser.add_argument("--prompts", type=str, default=None,
                        help="Text file with one prompt per line")
    parser.add_argument("--output-dir", type=str, default="outputs/routing")
    args = parser.parse_args()

    if args.smoke_test:
        config = EngineConfig.for_smoke_test()
    elif args.config:
        config = EngineConfig.from_yaml(args.config)
    else:
        config = EngineConfig()

    prompts = load_prompts(Path(args.prompts)) if args.prompts else DEFAULT_PROMPTS
    logger.info(f"Analyzing routing over {len(prompts)} prompts")

    engine = SparseLLM(config)
    evaluator = RoutingEvaluator(engine)
    results = evaluator.evaluate(prompts, output_dir=args.output_dir)
    evaluator.print_report(results)


if __name__ == "__main__":
    main()
