"""
Package consistency tests.

Verify that the public API is importable from the package and its
subpackages, and that the CLI entry points exist.
"""
import pytest
import numpy as np

import seqhmm


class TestPackageImports:
    """Verify all expected symbols are importable from package."""

    def test_top_level(self):
        for name in ('SeqHMM', 'build_hmm', 'build_mhmm', 'load_model', 'save_model',
                     'simulate_hmm', 'simulate_mhmm', 'combine_channels', 'n_observations',
                     'forward_backward', 'log_likelihood', 'posterior_probs',
                     'hidden_paths', 'FitConfig', 'FitResult', 'fit_model', 'MISSING'):
            assert hasattr(seqhmm, name), name

    def test_version(self):
        assert isinstance(seqhmm.__version__, str)

    def test_errors_are_value_errors(self):
        assert issubclass(seqhmm.SeqHMMError, ValueError)
        assert issubclass(seqhmm.ZeroLikelihoodError, seqhmm.SeqHMMError)

    def test_core_kernels(self):
        from seqhmm.core.hmm import joint_emission, forward, backward, expected_counts, viterbi
        for func in (joint_emission, forward, backward, expected_counts, viterbi):
            assert callable(func)

    def test_training_imports(self):
        from seqhmm.training import EMMonitor, LikelihoodEvaluator, ParameterMap, run_em
        assert callable(run_em)
        assert EMMonitor is not None
        assert LikelihoodEvaluator is not None
        assert ParameterMap is not None

    def test_inference_all(self):
        import seqhmm.inference as inference
        for name in inference.__all__:
            assert hasattr(inference, name)

    def test_cli_fit_import(self):
        from seqhmm.cli.fit import main
        assert callable(main)

    def test_cli_utils_import(self):
        from seqhmm.cli.utils import main
        assert callable(main)


class TestSingleIsOneClusterMixture:
    """A plain HMM and a one-cluster mixture give identical results."""

    def test_same_likelihood_and_paths(self, two_channel_model, two_channel_obs):
        sub = two_channel_model.clusters[0]
        mixture = seqhmm.build_mhmm([sub.transition], [sub.emission], [sub.initial])
        assert mixture.score(two_channel_obs) == pytest.approx(
            two_channel_model.score(two_channel_obs), rel=1e-12)
        np.testing.assert_array_equal(mixture.predict(two_channel_obs),
                                      two_channel_model.predict(two_channel_obs))
