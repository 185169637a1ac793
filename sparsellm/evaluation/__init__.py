"""
sparsellm.evaluation — Routing Analysis
========================================
Measures how the deterministic router spreads work across neurons.

What We Measure:
    1. Utilization — share of selections each neuron receives per layer.
    2. Balance — 1 − coefficient of variation of utilization (1.0 = even).
    3. Load-balance ratio — N × Σ f_i P_i / K (1.0 = even, N/K = collapsed).
    4. Coverage — fraction of neurons that fired at least once.

Components:
    - metrics.py   — Aggregation, balance metrics, timing utilities
    - evaluator.py — Runs prompt batches and writes a routing report
"""

from sparsellm.evaluation.metrics import Timer, selection_counts
from sparsellm.evaluation.evaluator import RoutingEvaluator
