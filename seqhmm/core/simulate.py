"""Simulate sequences from hidden Markov and mixture hidden Markov models."""

from typing import NamedTuple, Optional

import numpy as np
from scipy.special import softmax

from seqhmm.core.model import SeqHMM, SubModel, build_hmm


class SimulatedSequences(NamedTuple):
    observations: np.ndarray         # (N, T, C)
    states: np.ndarray               # (N, T) state within the generating cluster
    clusters: Optional[np.ndarray]   # (N,) generating cluster, None for an HMM


def _draw(rng: np.random.Generator, probs: np.ndarray) -> np.ndarray:
    """One categorical draw per row of probs."""
    cum = np.cumsum(probs, axis=-1)
    u = rng.random(probs.shape[:-1]) * cum[..., -1]
    return np.minimum((u[..., np.newaxis] >= cum).sum(axis=-1), probs.shape[-1] - 1)


def _simulate_submodel(sub: SubModel, n_sequences: int, sequence_length: int,
                       rng: np.random.Generator):
    states = np.empty((n_sequences, sequence_length), dtype=np.int64)
    obs = np.empty((n_sequences, sequence_length, sub.n_channels), dtype=np.int64)
    states[:, 0] = _draw(rng, np.broadcast_to(sub.initial, (n_sequences, sub.n_states)))
    for t in range(1, sequence_length):
        states[:, t] = _draw(rng, sub.transition[states[:, t - 1]])
    for r, e in enumerate(sub.emission):
        obs[:, :, r] = _draw(rng, e[states])
    return obs, states


def simulate_hmm(n_sequences: int, initial, transition, emission,
                 sequence_length: int, seed=None) -> SimulatedSequences:
    """
    Simulate sequences from a hidden Markov model.

    Args:
        n_sequences: Number of sequences
        initial: (m,) initial state probabilities
        transition: (m, m) transition matrix
        emission: (m, s) emission matrix or list of them, one per channel
        sequence_length: Length of each sequence
        seed: Seed or numpy Generator

    Returns:
        SimulatedSequences with clusters=None
    """
    model = build_hmm(transition, emission, initial)
    rng = np.random.default_rng(seed)
    obs, states = _simulate_submodel(model.clusters[0], n_sequences, sequence_length, rng)
    return SimulatedSequences(obs, states, None)


def simulate_mhmm(model: SeqHMM, n_sequences: int, sequence_length: int,
                  covariates: Optional[np.ndarray] = None, seed=None) -> SimulatedSequences:
    """
    Simulate sequences from a (mixture) hidden Markov model.

    Each sequence first draws its cluster from the mixture weights
    softmax(covariates @ coefficients) and then a path and observations
    from that cluster.

    Args:
        model: Model to simulate from
        n_sequences: Number of sequences (at least 2 for a mixture)
        sequence_length: Length of each sequence
        covariates: (n_sequences, p) design matrix; defaults to the model's
            own covariates, or constant weights if the model has none
        seed: Seed or numpy Generator

    Returns:
        SimulatedSequences
    """
    if n_sequences < 1 or sequence_length < 1:
        raise ValueError("n_sequences and sequence_length must be positive.")
    if model.is_mixture and n_sequences < 2:
        raise ValueError("For a mixture hidden Markov model, n_sequences must be at least 2.")
    rng = np.random.default_rng(seed)

    if covariates is not None:
        covariates = np.asarray(covariates, dtype=float)
        if covariates.shape != (n_sequences, model.n_covariates):
            raise ValueError(f"covariates must have shape ({n_sequences}, {model.n_covariates}).")
        weights = softmax(covariates @ model.coefficients, axis=1)
    else:
        weights = model.mixture_weights(n_sequences)

    clusters = _draw(rng, weights) if model.is_mixture else np.zeros(n_sequences, dtype=np.int64)
    obs = np.empty((n_sequences, sequence_length, model.n_channels), dtype=np.int64)
    states = np.empty((n_sequences, sequence_length), dtype=np.int64)
    for k, sub in enumerate(model.clusters):
        members = np.flatnonzero(clusters == k)
        if len(members) == 0:
            continue
        obs[members], states[members] = _simulate_submodel(sub, len(members),
                                                           sequence_length, rng)
    return SimulatedSequences(obs, states, clusters if model.is_mixture else None)

