#!/usr/bin/env python3
"""
SparseLLM — Run Prompt Script
================================
Runs one prompt through the sparse engine and prints the predicted token,
the architecture snapshot, and the per-token routing trace.

Usage:
    python scripts/run_prompt.py --prompt "hello world"
    python scripts/run_prompt.py --config configs/default.yaml --output trace.json
    python scripts/run_prompt.py --smoke-test
"""

import argparse
import json
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from sparsellm.config import EngineConfig
from sparsellm.engine import SparseLLM

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)

DEFAULT_PROMPT = (
    "Design a sparse transformer that routes tokens to only the neurons they need."
)


def print_trace(result, description) -> None:
    """Print the routing trace as plain text."""
    print("\n" + "=" * 60)
    print(f"Predicted continuation token: {result.predicted_token}")
    print(
        f"(highest similarity across {description.vocabulary} embeddings; "
        f"{description.layers} layers, top-{description.top_k} of "
        f"{description.neurons_per_layer} neurons)"
    )
    print("=" * 60)

    if not result.token_traces:
        print("\nNo traces to display.")
        return

    for trace in result.token_traces:
        print(f"\nToken #{trace.token_index}: {trace.token}")
        for layer in trace.layers:
            fired = ", ".join(
                f"n{n.id} ({n.weight:.1%})" for n in layer.selected
            )
            print(f"  Layer {layer.layer_index + 1}: {fired}")


def main():
    parser = argparse.ArgumentParser(description="SparseLLM Prompt Run")
    parser.add_argument("--prompt", type=str, default=DEFAULT_PROMPT)
    parser.add_argument("--config", type=str, default=None,
                        help="YAML config (defaults to built-in EngineConfig)")
    parser.add_argument("--smoke-test", action="store_true")
    parser.add_argument("--output", type=str, default=None,
                        help="Write the run result and description as JSON")
    args = parser.parse_args()

    if args.smoke_test:
        config = EngineConfig.for_smoke_test()
    elif args.config:
        config = EngineConfig.from_yaml(args.config)
    else:
        config = EngineConfig()

    engine = SparseLLM(config)
    result = engine.run(args.prompt)
    description = engine.describe()

    print_trace(result, description)

    if args.output:
        output_path = Path(args.output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, "w", encoding="utf-8") as f:
            json.dump(
                {
                    "description": description.to_dict(),
                    "result": result.to_dict(),
                },
                f,
                indent=2,
                ensure_ascii=False,
            )
        logger.info(f"Trace saved to {output_path}")


if __name__ == "__main__":
    main()
