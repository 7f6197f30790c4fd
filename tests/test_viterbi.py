"""
Tests for Viterbi decoding.
"""
import pytest
import numpy as np

from seqhmm.core.model import build_hmm
from seqhmm.core.sequences import MISSING
from seqhmm.core.simulate import simulate_mhmm
from seqhmm.inference.viterbi import hidden_paths

from conftest import brute_force_viterbi, path_log_prob, random_hmm


class TestConcreteScenario:
    def test_path(self, concrete_model, concrete_obs):
        paths = hidden_paths(concrete_model, concrete_obs)
        np.testing.assert_array_equal(paths.states, [[0, 0, 0]])
        np.testing.assert_array_equal(paths.cluster, [0])

    def test_log_prob(self, concrete_model, concrete_obs):
        paths = hidden_paths(concrete_model, concrete_obs)
        assert abs(paths.log_prob[0] - np.log(25 / 288)) < 1e-10

    def test_predict_method(self, concrete_model, concrete_obs):
        np.testing.assert_array_equal(concrete_model.predict(concrete_obs), [[0, 0, 0]])


class TestBruteForce:
    @pytest.mark.parametrize("seed", range(5))
    def test_best_path_m2_t4(self, seed):
        rng = np.random.default_rng(seed)
        model = random_hmm(rng, n_states=2, n_symbols=(3,))
        obs = rng.integers(0, 3, size=(3, 4, 1))
        paths = hidden_paths(model, obs)
        sub = model.clusters[0]
        for n, seq in enumerate(obs):
            best, argmax_paths = brute_force_viterbi(sub, seq)
            assert paths.log_prob[n] == pytest.approx(best, rel=1e-12)
            assert tuple(paths.states[n]) in argmax_paths
            assert path_log_prob(sub, paths.states[n], seq) == pytest.approx(best, rel=1e-12)

    def test_with_missing_and_zeros(self, two_channel_model, two_channel_obs):
        sub = two_channel_model.clusters[0]
        obs = two_channel_obs[:4, :5]
        paths = hidden_paths(two_channel_model, obs)
        for n, seq in enumerate(obs):
            best, _ = brute_force_viterbi(sub, seq)
            assert paths.log_prob[n] == pytest.approx(best, rel=1e-12)


class TestTieBreak:
    def test_uniform_model_prefers_lowest_index(self):
        model = build_hmm(
            transition=np.full((3, 3), 1 / 3),
            emission=np.full((3, 2), 0.5),
            initial=np.full(3, 1 / 3),
        )
        paths = hidden_paths(model, np.array([[0, 1, 1, 0, 1]]))
        np.testing.assert_array_equal(paths.states, 0)

    def test_symmetric_states(self):
        model = build_hmm(
            transition=[[0.5, 0.5], [0.5, 0.5]],
            emission=[[0.3, 0.7], [0.3, 0.7]],
            initial=[0.5, 0.5],
        )
        paths = hidden_paths(model, np.array([[1, 1, 0]]))
        np.testing.assert_array_equal(paths.states, [[0, 0, 0]])


class TestStructuralZeros:
    def test_paths_avoid_forbidden_transitions(self, two_channel_model, two_channel_obs):
        sub = two_channel_model.clusters[0]
        paths = hidden_paths(two_channel_model, two_channel_obs)
        assert np.all(np.isfinite(paths.log_prob))
        assert np.all(sub.initial[paths.states[:, 0]] > 0)
        steps = sub.transition[paths.states[:, :-1], paths.states[:, 1:]]
        assert np.all(steps > 0)

    def test_missing_everywhere(self, concrete_model):
        paths = hidden_paths(concrete_model, np.full((1, 3, 1), MISSING))
        np.testing.assert_array_equal(paths.states, [[0, 0, 0]])
        assert paths.log_prob[0] == pytest.approx(2 * np.log(5 / 6))


class TestMixture:
    def test_selects_generating_cluster(self, separated_mixture):
        sim = simulate_mhmm(separated_mixture, n_sequences=40, sequence_length=10, seed=11)
        paths = hidden_paths(separated_mixture, sim.observations)
        np.testing.assert_array_equal(paths.cluster, sim.clusters)
        path_rule = hidden_paths(separated_mixture, sim.observations, select='path')
        np.testing.assert_array_equal(path_rule.cluster, sim.clusters)

    def test_log_prob_includes_mixture_weight(self, separated_mixture):
        sim = simulate_mhmm(separated_mixture, n_sequences=40, sequence_length=10, seed=11)
        paths = hidden_paths(separated_mixture, sim.observations)
        log_w = separated_mixture.log_mixture_weights(40)
        for n in (0, 39):
            k = paths.cluster[n]
            sub = separated_mixture.clusters[k]
            expected = log_w[n, k] + path_log_prob(sub, paths.states[n], sim.observations[n])
            assert paths.log_prob[n] == pytest.approx(expected, rel=1e-12)

    def test_chunked_decoding_matches_serial(self, separated_mixture):
        sim = simulate_mhmm(separated_mixture, n_sequences=40, sequence_length=10, seed=11)
        for select in ('likelihood', 'path'):
            serial = hidden_paths(separated_mixture, sim.observations, select=select)
            chunked = hidden_paths(separated_mixture, sim.observations, select=select, threads=3)
            np.testing.assert_array_equal(chunked.states, serial.states)
            np.testing.assert_array_equal(chunked.cluster, serial.cluster)
            np.testing.assert_allclose(chunked.log_prob, serial.log_prob, rtol=1e-12)

    def test_global_states(self, separated_mixture):
        sim = simulate_mhmm(separated_mixture, n_sequences=40, sequence_length=10, seed=11)
        paths = hidden_paths(separated_mixture, sim.observations)
        glob = paths.global_states(separated_mixture.n_states)
        in_second = paths.cluster == 1
        np.testing.assert_array_equal(glob[in_second], paths.states[in_second] + 2)
        np.testing.assert_array_equal(glob[~in_second], paths.states[~in_second])

    def test_selection_rules_can_differ(self):
        from seqhmm.core.model import build_mhmm
        # cluster 1: one dominant path; cluster 2: higher total likelihood
        # spread over many equally likely paths
        model = build_mhmm(
            transition=[[[1.0]], [[0.5, 0.5], [0.5, 0.5]]],
            emission=[[[0.3, 0.7]], [[0.5, 0.5], [0.5, 0.5]]],
            initial=[[1.0], [0.5, 0.5]],
        )
        obs = np.array([[0, 0, 0, 0]])
        by_likelihood = hidden_paths(model, obs, select='likelihood')
        by_path = hidden_paths(model, obs, select='path')
        assert by_likelihood.cluster[0] == 1
        assert by_path.cluster[0] == 0

    def test_invalid_select(self, concrete_model, concrete_obs):
        with pytest.raises(ValueError):
            hidden_paths(concrete_model, concrete_obs, select='posterior')
