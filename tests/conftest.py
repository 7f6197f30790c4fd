"""
Shared pytest fixtures for seqhmm tests.
"""
import itertools

import pytest
import numpy as np

from seqhmm.core.model import build_hmm, build_mhmm
from seqhmm.core.sequences import MISSING
from seqhmm.core.simulate import simulate_mhmm


@pytest.fixture
def concrete_model():
    """
    Two states, one channel, two symbols.
    State 0 always starts and prefers neither symbol; state 1 prefers symbol 1.
    """
    return build_hmm(
        transition=[[5 / 6, 1 / 6], [1 / 6, 5 / 6]],
        emission=[[0.5, 0.5], [0.2, 0.8]],
        initial=[1.0, 0.0],
    )


@pytest.fixture
def concrete_obs():
    """The single sequence (0, 0, 1)."""
    return np.array([[[0], [0], [1]]])


@pytest.fixture
def two_channel_model():
    """
    Three states, two channels (3 and 2 symbols) with structural zeros in the
    transition matrix, the first emission matrix and the initial probabilities.
    """
    return build_hmm(
        transition=[[0.7, 0.3, 0.0],
                    [0.0, 0.8, 0.2],
                    [0.1, 0.0, 0.9]],
        emission=[
            np.array([[0.6, 0.4, 0.0],
                      [0.1, 0.5, 0.4],
                      [0.3, 0.3, 0.4]]),
            np.array([[0.9, 0.1],
                      [0.5, 0.5],
                      [0.2, 0.8]]),
        ],
        initial=[0.6, 0.4, 0.0],
        channel_names=['work', 'family'],
    )


@pytest.fixture
def two_channel_obs(two_channel_model):
    """Sequences simulated from two_channel_model with about 10% missing values."""
    sim = simulate_mhmm(two_channel_model, n_sequences=30, sequence_length=12, seed=1)
    obs = sim.observations.copy()
    rng = np.random.default_rng(2)
    obs[rng.random(obs.shape) < 0.1] = MISSING
    return obs


def _step_covariates(n_sequences):
    x = (np.arange(n_sequences) >= n_sequences // 2).astype(float)
    return np.column_stack([np.ones(n_sequences), x])


@pytest.fixture
def separated_mixture():
    """
    Two clusters with disjoint emission alphabets (cluster 1 emits symbols
    0/1, cluster 2 emits 2/3) and a step covariate: the second half of the
    sequences has x = 1, which favours cluster 2.
    """
    n_sequences = 40
    return build_mhmm(
        transition=[
            [[0.8, 0.2], [0.3, 0.7]],
            [[0.6, 0.4], [0.1, 0.9]],
        ],
        emission=[
            [[0.7, 0.3, 0.0, 0.0], [0.2, 0.8, 0.0, 0.0]],
            [[0.0, 0.0, 0.9, 0.1], [0.0, 0.0, 0.3, 0.7]],
        ],
        initial=[[0.5, 0.5], [0.9, 0.1]],
        covariates=_step_covariates(n_sequences),
        coefficients=[[0.0, -2.0], [0.0, 4.0]],
        covariate_names=['(Intercept)', 'x'],
    )


@pytest.fixture
def soft_mixture():
    """Two overlapping clusters, no zeros, and a continuous covariate."""
    rng = np.random.default_rng(7)
    n_sequences = 12
    X = np.column_stack([np.ones(n_sequences), rng.normal(size=n_sequences)])
    return build_mhmm(
        transition=[
            [[0.8, 0.2], [0.3, 0.7]],
            [[0.5, 0.3, 0.2], [0.2, 0.6, 0.2], [0.1, 0.1, 0.8]],
        ],
        emission=[
            [[0.5, 0.3, 0.2], [0.1, 0.2, 0.7]],
            [[0.3, 0.3, 0.4], [0.6, 0.2, 0.2], [0.2, 0.7, 0.1]],
        ],
        initial=[[0.7, 0.3], [0.2, 0.5, 0.3]],
        covariates=X,
        coefficients=[[0.0, 0.3], [0.0, -0.5]],
    )


@pytest.fixture
def soft_mixture_obs(soft_mixture):
    sim = simulate_mhmm(soft_mixture, n_sequences=12, sequence_length=6, seed=3)
    obs = sim.observations.copy()
    obs[0, 2, 0] = MISSING
    obs[5, 4, 0] = MISSING
    return obs


# =============================================================================
# Brute-force references
# =============================================================================

def path_log_prob(sub, path, seq):
    """log P(path, seq) for one submodel; seq has shape (T, C)."""
    with np.errstate(divide='ignore'):
        lp = np.log(sub.initial[path[0]])
        for t, state in enumerate(path):
            if t > 0:
                lp += np.log(sub.transition[path[t - 1], state])
            for r, e in enumerate(sub.emission):
                if seq[t, r] != MISSING:
                    lp += np.log(e[state, seq[t, r]])
    return lp


def brute_force_log_likelihood(sub, seq):
    """log P(seq) by summing over all state paths."""
    total = 0.0
    for path in itertools.product(range(sub.n_states), repeat=len(seq)):
        total += np.exp(path_log_prob(sub, path, seq))
    with np.errstate(divide='ignore'):
        return np.log(total)


def brute_force_viterbi(sub, seq):
    """(best log-probability, all paths attaining it) by enumeration."""
    scored = [(path_log_prob(sub, path, seq), path)
              for path in itertools.product(range(sub.n_states), repeat=len(seq))]
    best = max(lp for lp, _ in scored)
    return best, [path for lp, path in scored if np.isclose(lp, best, rtol=0, atol=1e-12)]


def random_hmm(rng, n_states=2, n_symbols=(3,)):
    """Random HMM with all probabilities positive."""
    return build_hmm(
        transition=rng.dirichlet(np.ones(n_states), size=n_states),
        emission=[rng.dirichlet(np.ones(s), size=n_states) for s in n_symbols],
        initial=rng.dirichlet(np.ones(n_states)),
    )
