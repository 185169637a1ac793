#!/usr/bin/env python3
"""
Tests for SparseLLM configuration, seeding, tokenization, the sparse layer
stack, decoding, the run orchestrator and routing metrics.

Run all tests:
    python -m pytest tests/ -v --tb=short
"""

import json
import sys
import threading
from dataclasses import FrozenInstanceError
from pathlib import Path

import pytest
import torch

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

SCENARIO = dict(layers=4, neurons_per_layer=16, top_k=4, hidden_dim=32, embedding_dim=32)


# =============================================================================
# Config Tests
# =============================================================================

class TestConfig:
    """Tests for the configuration system."""

    def test_default_config_validates(self):
        """Default config should validate without errors."""
        from sparsellm.config import EngineConfig
        config = EngineConfig()
        config.validate()
        assert config.top_k <= config.neurons_per_layer

    def test_smoke_test_config(self):
        """Smoke test config should be valid and exercise the projection."""
        from sparsellm.config import EngineConfig
        config = EngineConfig.for_smoke_test()
        config.validate()
        assert config.hidden_dim != config.embedding_dim

    def test_config_is_frozen(self):
        """Config must not change after construction."""
        from sparsellm.config import EngineConfig
        config = EngineConfig()
        with pytest.raises(FrozenInstanceError):
            config.top_k = 2

    def test_invalid_top_k(self):
        """top_k must be <= neurons_per_layer and >= 1."""
        from sparsellm.config import ConfigurationError, EngineConfig
        with pytest.raises(ConfigurationError, match="top_k"):
            EngineConfig(neurons_per_layer=3, top_k=5).validate()
        with pytest.raises(ConfigurationError):
            EngineConfig(top_k=0).validate()

    @pytest.mark.parametrize("field, value", [
        ("layers", 0),
        ("neurons_per_layer", 0),
        ("hidden_dim", 0),
        ("embedding_dim", -1),
        ("gate_bias_scale", -0.5),
        ("similarity", "euclid"),
        ("fallback_token", ""),
        ("top_k", 2.5),
        ("layers", "4"),
        ("hidden_dim", True),
        ("embedding_dim", 8.0),
    ])
    def test_invalid_values(self, field, value):
        """Invalid values raise instead of being clamped."""
        from sparsellm.config import ConfigurationError, EngineConfig
        kwargs = {field: value}
        if field == "neurons_per_layer":
            kwargs["top_k"] = 1
        with pytest.raises(ConfigurationError):
            EngineConfig(**kwargs).validate()

    def test_configuration_error_is_value_error(self):
        from sparsellm.config import ConfigurationError
        assert issubclass(ConfigurationError, ValueError)

    def test_engine_rejects_invalid_config(self):
        """Engine construction validates the config."""
        from sparsellm import ConfigurationError, EngineConfig, SparseLLM
        with pytest.raises(ConfigurationError):
            SparseLLM(EngineConfig(neurons_per_layer=4, top_k=8))
        with pytest.raises(ConfigurationError, match="integer"):
            SparseLLM(EngineConfig(top_k=2.5))

    def test_yaml_round_trip(self, tmp_path):
        """Config should save to YAML and load back identically."""
        from sparsellm.config import EngineConfig
        config = EngineConfig.for_smoke_test()

        yaml_path = tmp_path / "nested" / "test_config.yaml"
        config.to_yaml(yaml_path)

        loaded = EngineConfig.from_yaml(yaml_path)
        assert loaded == config

    def test_yaml_flat_layout(self, tmp_path):
        """Fields may also sit at the top level of the file."""
        from sparsellm.config import EngineConfig
        path = tmp_path / "flat.yaml"
        path.write_text("layers: 2\ntop_k: 3\n", encoding="utf-8")
        config = EngineConfig.from_yaml(path)
        assert config.layers == 2
        assert config.top_k == 3

    def test_yaml_unknown_key(self, tmp_path):
        from sparsellm.config import ConfigurationError, EngineConfig
        path = tmp_path / "bad.yaml"
        path.write_text("engine:\n  n_heads: 8\n", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            EngineConfig.from_yaml(path)

    def test_yaml_invalid_values(self, tmp_path):
        from sparsellm.config import ConfigurationError, EngineConfig
        path = tmp_path / "bad.yaml"
        path.write_text("engine:\n  neurons_per_layer: 2\n  top_k: 4\n", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            EngineConfig.from_yaml(path)

    def test_yaml_wrong_types(self, tmp_path):
        """Quoted numbers and non-mapping documents are rejected."""
        from sparsellm.config import ConfigurationError, EngineConfig
        quoted = tmp_path / "quoted.yaml"
        quoted.write_text("engine:\n  layers: '4'\n", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="layers"):
            EngineConfig.from_yaml(quoted)

        listed = tmp_path / "list.yaml"
        listed.write_text("- 1\n", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="mapping"):
            EngineConfig.from_yaml(listed)

        nested = tmp_path / "nested.yaml"
        nested.write_text("engine: 4\n", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="mapping"):
            EngineConfig.from_yaml(nested)

    def test_yaml_missing_and_empty(self, tmp_path):
        from sparsellm.config import EngineConfig
        with pytest.raises(FileNotFoundError):
            EngineConfig.from_yaml(tmp_path / "missing.yaml")

        empty = tmp_path / "empty.yaml"
        empty.write_text("", encoding="utf-8")
        with pytest.raises(ValueError, match="empty"):
            EngineConfig.from_yaml(empty)

    def test_shipped_default_yaml(self):
        """configs/default.yaml matches the built-in defaults."""
        from sparsellm.config import EngineConfig
        path = Path(__file__).resolve().parent.parent / "configs" / "default.yaml"
        assert EngineConfig.from_yaml(path) == EngineConfig()

    def test_param_estimate(self):
        from sparsellm.config import EngineConfig
        config = EngineConfig(**SCENARIO)
        # gates + biases + experts, no projection when widths match
        expected = 4 * 16 * 32 + 4 * 16 + 4 * 16 * 32 * 32
        assert config.total_params_estimate == expected
        assert config.active_fraction == 0.25


# =============================================================================
# Seeding Tests
# =============================================================================

class TestSeeding:
    """Tests for the deterministic value generator."""

    def test_same_path_same_value(self):
        from sparsellm.model.seeding import seeded_value
        assert seeded_value("gate", 1, 2, 3) == seeded_value("gate", 1, 2, 3)

    def test_range(self):
        from sparsellm.model.seeding import seeded_tensor, seeded_unit, seeded_value
        values = seeded_tensor(("range",), (2000,))
        assert values.min().item() >= -1.0
        assert values.max().item() < 1.0
        for i in range(50):
            assert -1.0 <= seeded_value("range", i) < 1.0
            assert 0.0 <= seeded_unit("range", i) < 1.0

    def test_order_sensitive(self):
        from sparsellm.model.seeding import seeded_value
        assert seeded_value("expert", 1, 2) != seeded_value("expert", 2, 1)

    def test_namespaces_do_not_collide(self):
        from sparsellm.model.seeding import seeded_value
        assert seeded_value("embedding", 0, 0) != seeded_value("gate", 0, 0)
        assert seeded_value(0, 0) != seeded_value("0", 0)

    def test_tensor_matches_scalar(self):
        """Vectorised grid must equal the scalar generator element by element."""
        from sparsellm.model.seeding import seeded_tensor, seeded_value
        grid = seeded_tensor(("expert", 3), (2, 3, 4))
        assert grid.shape == (2, 3, 4)
        assert grid.dtype == torch.float64
        for i in range(2):
            for j in range(3):
                for k in range(4):
                    assert grid[i, j, k].item() == seeded_value("expert", 3, i, j, k)

    def test_roughly_uniform(self):
        from sparsellm.model.seeding import seeded_tensor
        values = seeded_tensor(("distribution",), (10000,))
        assert abs(values.mean().item()) < 0.05
        assert abs(values.std().item() - (1 / 3) ** 0.5) < 0.05

    def test_negative_and_large_ints(self):
        from sparsellm.model.seeding import seeded_value
        assert seeded_value(-1) == seeded_value(2 ** 64 - 1)
        assert -1.0 <= seeded_value(10 ** 30) < 1.0

    def test_rejects_other_types(self):
        from sparsellm.model.seeding import seeded_value
        with pytest.raises(TypeError):
            seeded_value("gate", 1.5)


# =============================================================================
# Tokenizer Tests
# =============================================================================

class TestTokenizer:
    """Tests for the whitespace tokenizer and vocabulary."""

    def test_split_keeps_case_and_punctuation(self):
        from sparsellm.data.tokenizer import Vocabulary, WhitespaceTokenizer
        tok = WhitespaceTokenizer(Vocabulary())
        assert tok.split("  Hello,   world!\tNeed.\n") == ["Hello,", "world!", "Need."]

    def test_ids_first_seen(self):
        from sparsellm.data.tokenizer import Vocabulary, WhitespaceTokenizer
        vocab = Vocabulary()
        tok = WhitespaceTokenizer(vocab)
        tokens = tok.tokenize("a b a c")
        assert [t.vocabulary_id for t in tokens] == [0, 1, 0, 2]
        assert [t.index for t in tokens] == [0, 1, 2, 3]
        assert [t.text for t in tokens] == ["a", "b", "a", "c"]
        assert len(vocab) == 3

    def test_case_sensitive_ids(self):
        from sparsellm.data.tokenizer import Vocabulary, WhitespaceTokenizer
        tok = WhitespaceTokenizer(Vocabulary())
        ids = [t.vocabulary_id for t in tok.tokenize("Word word WORD")]
        assert len(set(ids)) == 3

    def test_empty_prompt(self):
        from sparsellm.data.tokenizer import Vocabulary, WhitespaceTokenizer
        vocab = Vocabulary()
        tok = WhitespaceTokenizer(vocab)
        assert tok.tokenize("") == []
        assert tok.tokenize(" \t\n ") == []
        assert len(vocab) == 0

    def test_non_string_prompt(self):
        from sparsellm.data.tokenizer import Vocabulary, WhitespaceTokenizer
        tok = WhitespaceTokenizer(Vocabulary())
        with pytest.raises(TypeError):
            tok.tokenize(42)

    def test_vocabulary_lookups(self):
        from sparsellm.data.tokenizer import Vocabulary
        vocab = Vocabulary()
        assert vocab.id_for("x") == 0
        assert vocab.id_for("y") == 1
        assert vocab.id_for("x") == 0
        assert vocab.text_for(1) == "y"
        assert "x" in vocab and "z" not in vocab
        assert list(vocab) == ["x", "y"]
        with pytest.raises(KeyError):
            vocab.text_for(5)

    def test_concurrent_growth(self):
        """Concurrent writers never hand out one id twice."""
        from sparsellm.data.tokenizer import Vocabulary
        vocab = Vocabulary()
        words = [f"w{i}" for i in range(200)]

        def worker(offset):
            for i in range(len(words)):
                vocab.id_for(words[(i + offset) % len(words)])

        threads = [threading.Thread(target=worker, args=(n * 17,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(vocab) == len(words)
        ids = [vocab.id_for(w) for w in words]
        assert sorted(ids) == list(range(len(words)))
        assert all(vocab.text_for(vocab.id_for(w)) == w for w in words)


# =============================================================================
# Embedding Tests
# =============================================================================

class TestEmbedding:
    """Tests for the embedding table and projection."""

    def test_synthesized_from_seeds(self):
        from sparsellm.model.embedding import EmbeddingTable
        from sparsellm.model.seeding import seeded_value
        table = EmbeddingTable(embedding_dim=8)
        row = table.embedding_of(3)
        assert row.shape == (8,)
        assert [row[d].item() for d in range(8)] == [
            seeded_value("embedding", 3, d) for d in range(8)
        ]

    def test_cached(self):
        from sparsellm.model.embedding import EmbeddingTable
        table = EmbeddingTable(embedding_dim=8)
        first = table.embedding_of(0)
        assert table.embedding_of(0) is first
        assert len(table) == 1

    def test_dense_growth(self):
        from sparsellm.model.embedding import EmbeddingTable
        table = EmbeddingTable(embedding_dim=4)
        table.embedding_of(3)
        assert len(table) == 4
        assert table.snapshot().shape == (4, 4)

    def test_tables_agree(self):
        """Independent tables derive identical rows."""
        from sparsellm.model.embedding import EmbeddingTable
        a, b = EmbeddingTable(16), EmbeddingTable(16)
        assert torch.equal(a.embedding_of(5), b.embedding_of(5))

    def test_empty_snapshot(self):
        from sparsellm.model.embedding import EmbeddingTable
        assert EmbeddingTable(embedding_dim=6).snapshot().shape == (0, 6)

    def test_rejects_negative_id(self):
        from sparsellm.model.embedding import EmbeddingTable
        with pytest.raises(ValueError):
            EmbeddingTable(4).embedding_of(-1)

    def test_projection_identity(self):
        from sparsellm.model.embedding import InputProjection
        proj = InputProjection(8, 8)
        x = torch.arange(8, dtype=torch.float64)
        assert proj.is_identity
        assert torch.equal(proj(x), x)

    def test_projection_bridge(self):
        from sparsellm.model.embedding import InputProjection
        proj = InputProjection(12, 8)
        assert not proj.is_identity
        assert proj(torch.ones(12, dtype=torch.float64)).shape == (8,)
        assert proj(torch.ones(3, 12, dtype=torch.float64)).shape == (3, 8)
        assert torch.equal(proj.weight, InputProjection(12, 8).weight)


# =============================================================================
# Router Tests
# =============================================================================

class TestRouter:
    """Tests for the gating network."""

    def test_tie_break_prefers_lower_id(self):
        from sparsellm.model.router import select_top_k
        scores = torch.tensor([1.0, 3.0, 3.0, 2.0, 3.0], dtype=torch.float64)
        ids, raw = select_top_k(scores, 3)
        assert ids.tolist() == [1, 2, 4]
        assert raw.tolist() == [3.0, 3.0, 3.0]

        ids, _ = select_top_k(scores, 4)
        assert ids.tolist() == [1, 2, 4, 3]

    def test_all_equal_scores(self):
        from sparsellm.model.router import select_top_k
        ids, _ = select_top_k(torch.zeros(10, dtype=torch.float64), 4)
        assert ids.tolist() == [0, 1, 2, 3]

    def test_select_rejects_bad_k(self):
        from sparsellm.model.router import select_top_k
        with pytest.raises(ValueError):
            select_top_k(torch.zeros(3), 4)

    def test_stable_softmax(self):
        from sparsellm.model.router import stable_softmax
        weights = stable_softmax(torch.tensor([1000.0, 999.0, 998.0], dtype=torch.float64))
        assert not torch.isnan(weights).any()
        assert abs(weights.sum().item() - 1.0) < 1e-12
        assert weights[0] > weights[1] > weights[2]

        uniform = stable_softmax(torch.full((4,), 2.5, dtype=torch.float64))
        assert torch.allclose(uniform, torch.full((4,), 0.25, dtype=torch.float64))

    def test_forward(self):
        from sparsellm.model.router import GatingNetwork
        gate = GatingNetwork(hidden_dim=16, neurons_per_layer=8, top_k=3, layer_idx=1)
        hidden = torch.linspace(-1, 1, 16, dtype=torch.float64)
        ids, raw, weights = gate(hidden)

        assert ids.shape == raw.shape == weights.shape == (3,)
        assert len(set(ids.tolist())) == 3
        assert torch.equal(raw, gate.score(hidden)[ids])
        assert abs(weights.sum().item() - 1.0) < 1e-9
        assert weights.tolist() == sorted(weights.tolist(), reverse=True)

    def test_selected_beat_unselected(self):
        from sparsellm.model.router import GatingNetwork
        gate = GatingNetwork(hidden_dim=16, neurons_per_layer=8, top_k=3)
        hidden = torch.linspace(-1, 1, 16, dtype=torch.float64)
        scores = gate.score(hidden)
        ids, raw, _ = gate(hidden)
        rest = [scores[i].item() for i in range(8) if i not in ids.tolist()]
        assert min(raw.tolist()) >= max(rest)

    def test_seeded_weights(self):
        from sparsellm.model.router import GatingNetwork
        from sparsellm.model.seeding import seeded_value
        a = GatingNetwork(hidden_dim=4, neurons_per_layer=3, top_k=1, layer_idx=2)
        b = GatingNetwork(hidden_dim=4, neurons_per_layer=3, top_k=1, layer_idx=2)
        c = GatingNetwork(hidden_dim=4, neurons_per_layer=3, top_k=1, layer_idx=3)
        assert torch.equal(a.gate_weight, b.gate_weight)
        assert not torch.equal(a.gate_weight, c.gate_weight)
        assert a.gate_weight[1, 2].item() == seeded_value("gate", 2, 1, 2)

    def test_no_bias(self):
        from sparsellm.model.router import GatingNetwork
        gate = GatingNetwork(hidden_dim=4, neurons_per_layer=3, top_k=1, use_bias=False)
        assert torch.count_nonzero(gate.gate_bias) == 0

    def test_invalid_top_k(self):
        from sparsellm.config import ConfigurationError
        from sparsellm.model.router import GatingNetwork
        with pytest.raises(ConfigurationError):
            GatingNetwork(neurons_per_layer=4, top_k=5)
        with pytest.raises(ConfigurationError):
            GatingNetwork(neurons_per_layer=4, top_k=0)


# =============================================================================
# Expert and Layer Tests
# =============================================================================

class TestExpertBank:
    """Tests for the per-layer neuron transforms."""

    def test_single_neuron_full_weight(self):
        from sparsellm.model.expert import ExpertBank
        bank = ExpertBank(hidden_dim=8, neurons_per_layer=4)
        hidden = torch.linspace(-1, 1, 8, dtype=torch.float64)
        delta = bank(hidden, torch.tensor([2]), torch.tensor([1.0], dtype=torch.float64))
        assert torch.allclose(delta, bank.expert_output(2, hidden))

    def test_zero_hidden(self):
        from sparsellm.model.expert import ExpertBank
        bank = ExpertBank(hidden_dim=8, neurons_per_layer=4)
        hidden = torch.zeros(8, dtype=torch.float64)
        weights = torch.tensor([0.5, 0.5], dtype=torch.float64)
        assert torch.count_nonzero(bank(hidden, torch.tensor([0, 3]), weights)) == 0

    def test_param_count(self):
        from sparsellm.model.expert import ExpertBank
        assert ExpertBank(hidden_dim=8, neurons_per_layer=4).n_params == 4 * 8 * 8

    def test_invalid_dims(self):
        from sparsellm.model.expert import ExpertBank
        with pytest.raises(ValueError):
            ExpertBank(hidden_dim=0)


class TestSparseMoELayer:
    """Tests for one sparse layer."""

    def test_rms_normalize(self):
        from sparsellm.model.moe_layer import rms_normalize
        v = torch.tensor([3.0, 4.0, 0.0, 0.0], dtype=torch.float64)
        out = rms_normalize(v)
        assert abs(torch.linalg.vector_norm(out).item() - 2.0) < 1e-12

        zero = torch.zeros(4, dtype=torch.float64)
        assert torch.equal(rms_normalize(zero), zero)

    def test_forward(self):
        from sparsellm.config import EngineConfig
        from sparsellm.model.moe_layer import SparseMoELayer
        config = EngineConfig(**SCENARIO)
        layer = SparseMoELayer(config, layer_idx=2)
        hidden = torch.linspace(-1, 1, 32, dtype=torch.float64)

        out, trace = layer(hidden)

        assert out.shape == (32,)
        assert abs(torch.linalg.vector_norm(out).item() - 32 ** 0.5) < 1e-9
        assert trace.layer_index == 2
        assert len(trace.selected) == 4
        assert abs(trace.total_weight - 1.0) < 1e-6
        weights = [n.weight for n in trace.selected]
        assert weights == sorted(weights, reverse=True)
        assert all(0 <= n.id < 16 for n in trace.selected)


# =============================================================================
# Decoder Tests
# =============================================================================

class TestDecoder:
    """Tests for the embedding-similarity decoder."""

    def test_empty_table(self):
        from sparsellm.model.decoder import SimilarityDecoder
        from sparsellm.model.embedding import EmbeddingTable, InputProjection
        decoder = SimilarityDecoder()
        hidden = torch.ones(4, dtype=torch.float64)
        assert decoder.decode(hidden, EmbeddingTable(4), InputProjection(4, 4)) is None

    @pytest.mark.parametrize("similarity", ["cosine", "dot"])
    def test_zero_state_ties_to_lowest_id(self, similarity):
        from sparsellm.model.decoder import SimilarityDecoder
        from sparsellm.model.embedding import EmbeddingTable, InputProjection
        table = EmbeddingTable(8)
        table.embedding_of(4)
        decoder = SimilarityDecoder(similarity)
        hidden = torch.zeros(8, dtype=torch.float64)
        assert decoder.decode(hidden, table, InputProjection(8, 8)) == 0

    def test_finds_own_embedding(self):
        from sparsellm.model.decoder import SimilarityDecoder
        from sparsellm.model.embedding import EmbeddingTable, InputProjection
        table = EmbeddingTable(16)
        proj = InputProjection(16, 8)
        table.embedding_of(5)
        hidden = proj(table.embedding_of(2))
        assert SimilarityDecoder("cosine").decode(hidden, table, proj) == 2

    def test_dot_vs_cosine(self):
        from sparsellm.model.decoder import SimilarityDecoder
        candidates = torch.tensor([[1.0, 0.0], [3.0, 3.0]], dtype=torch.float64)
        hidden = torch.tensor([1.0, 0.0], dtype=torch.float64)
        assert torch.argmax(SimilarityDecoder("dot").logits(hidden, candidates)) == 1
        assert torch.argmax(SimilarityDecoder("cosine").logits(hidden, candidates)) == 0

    def test_invalid_similarity(self):
        from sparsellm.model.decoder import SimilarityDecoder
        with pytest.raises(ValueError):
            SimilarityDecoder("manhattan")


# =============================================================================
# Engine Tests
# =============================================================================

def _all_layer_traces(result):
    return [layer for trace in result.token_traces for layer in trace.layers]


class TestEngine:
    """Tests for the run orchestrator."""

    def test_hello_world_scenario(self):
        from sparsellm import EngineConfig, SparseLLM
        engine = SparseLLM(EngineConfig(**SCENARIO))
        result = engine.run("hello world")

        assert len(result.token_traces) == 2
        assert [t.token for t in result.token_traces] == ["hello", "world"]
        assert [t.token_index for t in result.token_traces] == [0, 1]
        for trace in result.token_traces:
            assert len(trace.layers) == 4
            assert [layer.layer_index for layer in trace.layers] == [0, 1, 2, 3]
            for layer in trace.layers:
                assert len(layer.selected) == 4
                assert abs(sum(n.weight for n in layer.selected) - 1.0) < 1e-6
        assert result.predicted_token in {"hello", "world"}

    def test_determinism(self):
        from sparsellm import SparseLLM
        engine = SparseLLM()
        prompt = "Design a sparse transformer that routes tokens to only the neurons they need."
        first = engine.run(prompt)
        second = engine.run(prompt)
        assert first == second
        assert first.to_json() == second.to_json()

    def test_independent_instances_agree(self):
        from sparsellm import EngineConfig, SparseLLM
        a = SparseLLM(EngineConfig(**SCENARIO))
        b = SparseLLM(EngineConfig(**SCENARIO))
        assert a.run("hello world") == b.run("hello world")

    def test_instances_do_not_share_state(self):
        from sparsellm import SparseLLM
        a, b = SparseLLM(), SparseLLM()
        a.run("one two three")
        assert a.describe().vocabulary == 3
        assert b.describe().vocabulary == 0

    def test_sparsity_and_normalization(self):
        from sparsellm import EngineConfig, SparseLLM
        for config in (EngineConfig(), EngineConfig.for_smoke_test(),
                       EngineConfig(neurons_per_layer=5, top_k=5)):
            engine = SparseLLM(config)
            result = engine.run("the quick brown fox jumps over the lazy dog")
            for layer in _all_layer_traces(result):
                assert len(layer.selected) == config.top_k <= config.neurons_per_layer
                assert abs(layer.total_weight - 1.0) < 1e-6
                assert len({n.id for n in layer.selected}) == config.top_k

    def test_empty_prompt_fresh_engine(self):
        from sparsellm import SparseLLM
        engine = SparseLLM()
        for prompt in ("", "   \t\n"):
            result = engine.run(prompt)
            assert result.token_traces == ()
            assert result.predicted_token == "<unk>"
        assert engine.describe().vocabulary == 0

    def test_empty_prompt_after_vocabulary(self):
        """A zero state decodes to the lowest vocabulary id."""
        from sparsellm import SparseLLM
        engine = SparseLLM()
        engine.run("hello world")
        result = engine.run("  ")
        assert result.token_traces == ()
        assert result.predicted_token == "hello"

    def test_custom_fallback(self):
        from sparsellm import EngineConfig, SparseLLM
        engine = SparseLLM(EngineConfig(fallback_token="<none>"))
        assert engine.run("").predicted_token == "<none>"

    def test_vocabulary_monotonic(self):
        from sparsellm import SparseLLM
        engine = SparseLLM()
        sizes = []
        ids = []
        for prompt in ["hello world", "world peace", "hello", "", "new words here"]:
            engine.run(prompt)
            sizes.append(engine.describe().vocabulary)
            ids.append(engine.vocabulary.id_for("hello"))
        assert sizes == sorted(sizes)
        assert sizes[-1] == 6
        assert set(ids) == {0}

    def test_describe_is_pure(self):
        from sparsellm import EngineConfig, SparseLLM
        engine = SparseLLM(EngineConfig(**SCENARIO))
        engine.run("a b")
        first = engine.describe()
        second = engine.describe()
        assert first == second
        assert first.to_dict() == {
            "layers": 4,
            "neuronsPerLayer": 16,
            "topK": 4,
            "hiddenDim": 32,
            "embeddingDim": 32,
            "vocabulary": 2,
        }

    def test_context_carries_forward(self):
        """Earlier tokens shape later traces; later tokens never shape earlier ones."""
        from sparsellm import SparseLLM
        engine = SparseLLM()
        engine.run("alpha beta gamma world")

        after_alpha = engine.run("alpha world").token_traces[1]
        after_beta = engine.run("beta world").token_traces[1]
        assert after_alpha.layers != after_beta.layers

        first_a = engine.run("alpha beta").token_traces[0]
        first_b = engine.run("alpha gamma").token_traces[0]
        assert first_a == first_b

    def test_repeated_token_differs_by_context(self):
        from sparsellm import SparseLLM
        result = SparseLLM().run("echo echo")
        assert result.token_traces[0].layers != result.token_traces[1].layers

    def test_projection_bridge_engine(self):
        from sparsellm import EngineConfig, SparseLLM
        config = EngineConfig(hidden_dim=8, embedding_dim=24, neurons_per_layer=6, top_k=3)
        engine = SparseLLM(config)
        result = engine.run("bridged widths work")
        assert len(result.token_traces) == 3
        assert result.predicted_token in {"bridged", "widths", "work"}

    def test_result_serialization(self):
        from sparsellm import SparseLLM
        result = SparseLLM().run("hello world")
        payload = json.loads(result.to_json())
        assert set(payload) == {"predictedToken", "tokenTraces"}
        trace = payload["tokenTraces"][0]
        assert set(trace) == {"token", "tokenIndex", "layers"}
        layer = trace["layers"][0]
        assert set(layer) == {"layerIndex", "selected"}
        assert set(layer["selected"][0]) == {"id", "rawScore", "weight"}

    def test_concurrent_runs(self):
        """Rapid concurrent runs must not corrupt the shared caches."""
        from sparsellm import SparseLLM
        engine = SparseLLM()
        prompts = [" ".join(f"t{(n * 7 + i) % 40}" for i in range(6)) for n in range(16)]
        errors = []

        def worker(prompt):
            try:
                engine.run(prompt)
            except Exception as exc:
                errors.append(exc)

        threads = [threading.Thread(target=worker, args=(p,)) for p in prompts]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        unique = {word for p in prompts for word in p.split()}
        assert len(engine.vocabulary) == len(unique)
        assert len(engine.embeddings) == len(unique)

    def test_non_string_prompt(self):
        from sparsellm import SparseLLM
        with pytest.raises(TypeError):
            SparseLLM().run(None)


# =============================================================================
# Metrics Tests
# =============================================================================

def _synthetic_result(selections):
    from sparsellm.model.trace import (
        LayerTrace, SelectedNeuron, SparseRunResult, TokenTrace,
    )
    traces = tuple(
        TokenTrace(
            token=f"t{i}",
            token_index=i,
            layers=(LayerTrace(
                layer_index=0,
                selected=tuple(SelectedNeuron(id=n, raw_score=0.0, weight=w)
                               for n, w in chosen),
            ),),
        )
        for i, chosen in enumerate(selections)
    )
    return SparseRunResult(predicted_token="t0", token_traces=traces)


class TestMetrics:
    """Tests for routing utilization metrics."""

    def test_counts_from_runs(self):
        from sparsellm import SparseLLM
        from sparsellm.evaluation.metrics import selection_counts
        engine = SparseLLM()
        results = [engine.run("hello world"), engine.run("one more prompt")]
        stats = selection_counts(results, layers=4, neurons_per_layer=16)

        assert stats.n_tokens == 5
        assert stats.counts.sum(dim=-1).tolist() == [5 * 4] * 4
        assert torch.allclose(
            stats.weight_sums.sum(dim=-1),
            torch.full((4,), 5.0, dtype=torch.float64),
        )

    def test_collapsed_routing(self):
        from sparsellm.evaluation.metrics import (
            fraction_used, load_balance_ratio, selection_counts,
        )
        result = _synthetic_result([[(0, 0.5), (1, 0.5)]] * 3)
        stats = selection_counts([result], layers=1, neurons_per_layer=4)
        assert load_balance_ratio(stats, top_k=2) == pytest.approx([2.0])
        assert fraction_used(stats) == [0.5]

    def test_balanced_routing(self):
        from sparsellm.evaluation.metrics import (
            balance_scores, load_balance_ratio, selection_counts, utilization,
        )
        result = _synthetic_result([[(0, 0.5), (1, 0.5)], [(2, 0.5), (3, 0.5)]])
        stats = selection_counts([result], layers=1, neurons_per_layer=4)
        assert load_balance_ratio(stats, top_k=2) == pytest.approx([1.0])
        assert balance_scores(stats) == pytest.approx([1.0])
        assert utilization(stats).tolist() == [[0.25, 0.25, 0.25, 0.25]]

    def test_no_tokens(self):
        from sparsellm.evaluation.metrics import (
            balance_scores, load_balance_ratio, selection_counts,
        )
        stats = selection_counts([], layers=2, neurons_per_layer=4)
        assert stats.n_tokens == 0
        assert load_balance_ratio(stats, top_k=2) is None
        assert balance_scores(stats) is None

    def test_routing_evaluator(self, tmp_path):
        from sparsellm import EngineConfig, SparseLLM
        from sparsellm.evaluation.evaluator import RoutingEvaluator
        engine = SparseLLM(EngineConfig.for_smoke_test())
        evaluator = RoutingEvaluator(engine)
        results = evaluator.evaluate(
            ["hello world", "the structure of DNA was", ""],
            output_dir=str(tmp_path),
            show_progress=False,
        )

        assert results["n_prompts"] == 3
        assert results["total_tokens_analyzed"] == 7
        assert len(results["balance_scores_per_layer"]) == 2
        assert len(results["load_balance_ratio_per_layer"]) == 2
        assert results["predictions"][2]["predicted_token"] == "hello"

        saved = json.loads((tmp_path / "routing_results.json").read_text(encoding="utf-8"))
        assert saved["architecture"]["vocabulary"] == 7

    def test_routing_evaluator_no_tokens(self, capsys):
        """An all-empty batch reports undefined balance instead of a perfect one."""
        from sparsellm import EngineConfig, SparseLLM
        from sparsellm.evaluation.evaluator import RoutingEvaluator
        evaluator = RoutingEvaluator(SparseLLM(EngineConfig.for_smoke_test()))
        results = evaluator.evaluate(["", "   "], show_progress=False)

        assert results["total_tokens_analyzed"] == 0
        assert results["balance_scores_per_layer"] is None
        assert results["average_balance_score"] is None
        assert results["load_balance_ratio_per_layer"] is None
        assert results["architecture"]["vocabulary"] == 0

        evaluator.print_report(results)
        assert "balance=n/a" in capsys.readouterr().out


if __name__ == "__main__":
    pytest.main([__file__, "-v", "--tb=short"])
