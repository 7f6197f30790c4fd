"""
Tests for seqhmm.core.model construction, validation and shortcuts.
"""
import pytest
import numpy as np

from seqhmm.core.model import SeqHMM, ZeroLikelihoodError, build_hmm, build_mhmm
from seqhmm.training.fit import FitConfig


class TestBuildHMM:
    def test_single_channel_matrix(self, concrete_model):
        assert not concrete_model.is_mixture
        assert concrete_model.n_clusters == 1
        assert concrete_model.n_channels == 1
        assert concrete_model.n_symbols == [2]
        assert concrete_model.n_states == [2]
        assert concrete_model.coefficients.shape == (1, 1)

    def test_default_names(self, two_channel_model):
        assert two_channel_model.channel_names == ['work', 'family']
        assert two_channel_model.symbol_names == [['0', '1', '2'], ['0', '1']]
        assert two_channel_model.state_labels == ['1', '2', '3']

    def test_non_square_transition(self):
        with pytest.raises(ValueError, match="square"):
            build_hmm([[0.5, 0.5]], [[1.0]], [1.0])

    def test_rows_must_sum_to_one(self):
        with pytest.raises(ValueError, match="sum to one"):
            build_hmm([[0.5, 0.4], [0.5, 0.5]], [[0.5, 0.5], [0.5, 0.5]], [0.5, 0.5])
        with pytest.raises(ValueError, match="sum to one"):
            build_hmm([[0.5, 0.5], [0.5, 0.5]], [[0.5, 0.6], [0.5, 0.5]], [0.5, 0.5])
        with pytest.raises(ValueError, match="sum to one"):
            build_hmm([[0.5, 0.5], [0.5, 0.5]], [[0.5, 0.5], [0.5, 0.5]], [0.5, 0.6])

    def test_negative_probability(self):
        with pytest.raises(ValueError, match="negative"):
            build_hmm([[1.5, -0.5], [0.5, 0.5]], [[0.5, 0.5], [0.5, 0.5]], [0.5, 0.5])

    def test_emission_rows_must_match_states(self):
        with pytest.raises(ValueError, match="number of states"):
            build_hmm([[0.5, 0.5], [0.5, 0.5]], [[0.5, 0.5]], [0.5, 0.5])

    def test_initial_length(self):
        with pytest.raises(ValueError, match="initial_probs"):
            build_hmm([[0.5, 0.5], [0.5, 0.5]], [[0.5, 0.5], [0.5, 0.5]], [1.0])

    def test_state_names_length(self):
        with pytest.raises(ValueError, match="state_names"):
            build_hmm([[1.0]], [[1.0]], [1.0], state_names=['a', 'b'])


class TestBuildMHMM:
    def test_baseline_coefficients_forced_to_zero(self):
        model = build_mhmm(
            transition=[[[1.0]], [[1.0]]],
            emission=[[[0.5, 0.5]], [[0.2, 0.8]]],
            initial=[[1.0], [1.0]],
            covariates=np.ones((3, 1)),
            coefficients=[[1.0, 2.0]],
        )
        np.testing.assert_array_equal(model.coefficients, [[0.0, 2.0]])
        np.testing.assert_allclose(model.mixture_weights(3).sum(axis=1), 1.0)

    def test_constant_weights_without_covariates(self):
        model = build_mhmm(
            transition=[[[1.0]], [[1.0]]],
            emission=[[[0.5, 0.5]], [[0.2, 0.8]]],
            initial=[[1.0], [1.0]],
            coefficients=[[0.0, np.log(3.0)]],
        )
        np.testing.assert_allclose(model.mixture_weights(4), [[0.25, 0.75]] * 4)

    def test_unequal_list_lengths(self):
        with pytest.raises(ValueError, match="Unequal"):
            build_mhmm([[[1.0]], [[1.0]]], [[[1.0]]], [[1.0], [1.0]])

    def test_symbol_count_mismatch(self):
        with pytest.raises(ValueError, match="number of symbols"):
            build_mhmm([[[1.0]], [[1.0]]], [[[0.5, 0.5]], [[1.0]]], [[1.0], [1.0]])

    def test_channel_count_mismatch(self):
        with pytest.raises(ValueError, match="channels"):
            build_mhmm([[[1.0]], [[1.0]]],
                       [[[[0.5, 0.5]], [[1.0]]], [[[0.5, 0.5]]]],
                       [[1.0], [1.0]])

    def test_missing_covariates_rejected(self):
        X = np.array([[1.0, 0.0], [1.0, np.nan]])
        with pytest.raises(ValueError, match="Missing"):
            build_mhmm([[[1.0]], [[1.0]]], [[[0.5, 0.5]], [[0.2, 0.8]]], [[1.0], [1.0]],
                       covariates=X)

    def test_coefficient_shape(self):
        with pytest.raises(ValueError, match="coefficients"):
            build_mhmm([[[1.0]], [[1.0]]], [[[0.5, 0.5]], [[0.2, 0.8]]], [[1.0], [1.0]],
                       covariates=np.ones((2, 2)), coefficients=np.zeros((1, 2)))

    def test_covariate_rows_must_match_observations(self, separated_mixture):
        with pytest.raises(ValueError, match="covariates for 40"):
            separated_mixture.log_mixture_weights(10)

    def test_state_labels(self, separated_mixture):
        assert separated_mixture.state_labels == [
            'Cluster 1: 1', 'Cluster 1: 2', 'Cluster 2: 1', 'Cluster 2: 2']


class TestDegreesOfFreedom:
    def test_two_channel(self, two_channel_model):
        # transition 6 - 3, emission (8 - 3) + (6 - 3), initial 2 - 1
        assert two_channel_model.df == 12

    def test_mixture(self, separated_mixture):
        # per cluster: transition 2, emission 2, initial 1; coefficients 2 x 1
        assert separated_mixture.df == 5 + 5 + 2


class TestSerialization:
    def test_dict_round_trip(self, separated_mixture):
        restored = SeqHMM.from_dict(separated_mixture.to_dict())
        assert restored.n_clusters == 2
        np.testing.assert_array_equal(restored.coefficients, separated_mixture.coefficients)
        np.testing.assert_array_equal(restored.covariates, separated_mixture.covariates)
        np.testing.assert_array_equal(restored.clusters[1].emission[0],
                                      separated_mixture.clusters[1].emission[0])
        assert restored.covariate_names == ['(Intercept)', 'x']

    def test_copy_is_independent(self, concrete_model):
        other = concrete_model.copy()
        other.clusters[0].transition[0, 0] = 0.0
        assert concrete_model.clusters[0].transition[0, 0] == pytest.approx(5 / 6)


class TestFitShortcut:
    def test_fit_updates_in_place(self, two_channel_model, two_channel_obs):
        model = two_channel_model.copy()
        before = model.score(two_channel_obs)
        returned = model.fit(two_channel_obs, FitConfig(max_iter=20))
        assert returned is model
        assert model.score(two_channel_obs) >= before

    def test_zero_likelihood_error_lists_subjects(self):
        err = ZeroLikelihoodError([3, 7])
        assert '2 sequence(s)' in str(err)
        assert isinstance(err, ValueError)
