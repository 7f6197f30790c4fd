"""seqhmm forward-backward engine for single and mixture models."""

from dataclasses import dataclass
from typing import List, NamedTuple, Optional

import numpy as np
from scipy.special import logsumexp

from seqhmm.core import hmm as kernels
from seqhmm.core.model import SeqHMM, SubModel, ZeroLikelihoodError
from seqhmm.inference.parallel import map_subjects


class Messages(NamedTuple):
    """Forward-backward output of one cluster for a set of subjects."""
    alpha: np.ndarray           # (N, T, m) scaled forward probabilities
    beta: Optional[np.ndarray]  # (N, T, m) scaled backward probabilities
    scales: np.ndarray          # (N, T) scale factors
    log_likelihood: np.ndarray  # (N,) log P(obs | cluster)


@dataclass
class ExpectedCounts:
    """
    Responsibility-weighted sufficient statistics summed over subjects.

    Per-cluster arrays are lists indexed by cluster; per-subject arrays have
    one row per subject.
    """
    initial: List[np.ndarray]        # (m_k,)
    transition: List[np.ndarray]     # (m_k, m_k)
    emission: List[np.ndarray]       # (C, m_k, max_symbols)
    responsibilities: np.ndarray     # (N, K)
    log_weights: np.ndarray          # (N, K)
    log_likelihood: np.ndarray       # (N,)

    @property
    def total_log_likelihood(self) -> float:
        return float(np.sum(self.log_likelihood))

    def merge(self, other: 'ExpectedCounts') -> 'ExpectedCounts':
        """Combine statistics of two disjoint subject sets (self first)."""
        return ExpectedCounts(
            initial=[a + b for a, b in zip(self.initial, other.initial)],
            transition=[a + b for a, b in zip(self.transition, other.transition)],
            emission=[a + b for a, b in zip(self.emission, other.emission)],
            responsibilities=np.vstack([self.responsibilities, other.responsibilities]),
            log_weights=np.vstack([self.log_weights, other.log_weights]),
            log_likelihood=np.concatenate([self.log_likelihood, other.log_likelihood]),
        )


# =============================================================================
# Per-cluster passes
# =============================================================================

def _log_scales(scales: np.ndarray) -> np.ndarray:
    with np.errstate(divide='ignore'):
        return np.log(scales).sum(axis=1)


def cluster_messages(sub: SubModel, obs: np.ndarray, initial: Optional[np.ndarray] = None,
                     backward: bool = True) -> Messages:
    """
    Run the forward (and optionally backward) recursion of one submodel.

    Args:
        sub: Cluster parameters
        obs: (N, T, C) observations
        initial: (m,) or (N, m) initial distribution; defaults to sub.initial
        backward: Also compute beta

    Returns:
        Messages
    """
    n_subjects = obs.shape[0]
    init = sub.initial if initial is None else initial
    init = np.ascontiguousarray(np.broadcast_to(init, (n_subjects, sub.n_states)), dtype=float)
    emit = kernels.joint_emission(sub.emission_array(), obs)
    alpha, scales = kernels.forward(init, sub.transition, emit)
    beta = kernels.backward(sub.transition, emit, scales) if backward else None
    return Messages(alpha, beta, scales, _log_scales(scales))


def _combine(log_weights: np.ndarray, cluster_ll: np.ndarray):
    """Subject log-likelihood and responsibilities from per-cluster terms."""
    joint = log_weights + cluster_ll
    with np.errstate(divide='ignore', invalid='ignore'):
        total = logsumexp(joint, axis=1)
        resp = np.exp(joint - total[:, np.newaxis])
    resp = np.where(np.isfinite(total)[:, np.newaxis], resp, 0.0)
    return total, resp


def _chunk_counts(model: SeqHMM, obs: np.ndarray, log_weights: np.ndarray) -> ExpectedCounts:
    """Forward, responsibilities, backward and count accumulation for one chunk."""
    n_subjects = obs.shape[0]
    width = max(model.n_symbols)
    emits, forwards = [], []
    cluster_ll = np.empty((n_subjects, model.n_clusters))
    for k, sub in enumerate(model.clusters):
        emit = kernels.joint_emission(sub.emission_array(), obs)
        init = np.ascontiguousarray(np.broadcast_to(sub.initial, (n_subjects, sub.n_states)))
        alpha, scales = kernels.forward(init, sub.transition, emit)
        emits.append(emit)
        forwards.append((alpha, scales))
        cluster_ll[:, k] = _log_scales(scales)

    total, resp = _combine(log_weights, cluster_ll)

    initial, transition, emission = [], [], []
    for k, sub in enumerate(model.clusters):
        alpha, scales = forwards[k]
        beta = kernels.backward(sub.transition, emits[k], scales)
        ic, tc, ec = kernels.expected_counts(alpha, beta, scales, emits[k], sub.transition,
                                             obs, np.ascontiguousarray(resp[:, k]), width)
        initial.append(ic)
        transition.append(tc)
        emission.append(ec)

    return ExpectedCounts(initial, transition, emission, resp, log_weights, total)


# =============================================================================
# Public entry points
# =============================================================================

def expected_counts(model: SeqHMM, obs, threads: int = 1,
                    log_weights: Optional[np.ndarray] = None) -> ExpectedCounts:
    """
    E-step: sufficient statistics of all subjects under the current parameters.

    Subjects are processed in parallel chunks and the statistics are summed
    in chunk order.

    Args:
        model: Current parameters
        obs: (N, T, C) observations
        threads: Worker threads
        log_weights: (N, K) log mixture weights; computed from the model if None

    Returns:
        ExpectedCounts
    """
    obs = model.prepare(obs)
    n_subjects = obs.shape[0]
    if log_weights is None:
        log_weights = model.log_mixture_weights(n_subjects)

    parts = map_subjects(lambda sl: _chunk_counts(model, obs[sl], log_weights[sl]),
                         n_subjects, threads)
    counts = parts[0]
    for part in parts[1:]:
        counts = counts.merge(part)
    return counts


def require_finite(log_lik: np.ndarray) -> None:
    """Raise ZeroLikelihoodError if some subject has zero likelihood."""
    bad = np.flatnonzero(~np.isfinite(log_lik))
    if len(bad):
        raise ZeroLikelihoodError(bad)


def forward_backward(model: SeqHMM, obs, forward_only: bool = False) -> List[Messages]:
    """
    Scaled forward and backward probabilities of every cluster.

    For a mixture, each cluster's recursion uses that cluster's own initial
    distribution, so alpha/beta are conditional on the cluster.

    Returns:
        List of Messages, one per cluster
    """
    obs = model.prepare(obs)
    return [cluster_messages(sub, obs, backward=not forward_only) for sub in model.clusters]


def subject_log_likelihoods(model: SeqHMM, obs, threads: int = 1) -> np.ndarray:
    """Log-likelihood per subject, shape (N,); -inf for impossible sequences."""
    obs = model.prepare(obs)
    log_weights = model.log_mixture_weights(obs.shape[0])

    def run(sl):
        ll = np.column_stack([cluster_messages(sub, obs[sl], backward=False).log_likelihood
                              for sub in model.clusters])
        return _combine(log_weights[sl], ll)[0]

    return np.concatenate(map_subjects(run, obs.shape[0], threads))


def log_likelihood(model: SeqHMM, obs, by_subject: bool = False, threads: int = 1):
    """
    Log-likelihood of the observations.

    Args:
        by_subject: Return per-subject values instead of the total

    Returns:
        float, or (N,) array if by_subject
    """
    ll = subject_log_likelihoods(model, obs, threads=threads)
    return ll if by_subject else float(np.sum(ll))


def cluster_probabilities(model: SeqHMM, obs, threads: int = 1) -> np.ndarray:
    """Posterior cluster membership probabilities (responsibilities), shape (N, K)."""
    return expected_counts(model, obs, threads=threads).responsibilities


def posterior_probs(model: SeqHMM, obs, threads: int = 1) -> np.ndarray:
    """
    Posterior probabilities of the hidden states.

    For a mixture, states of all clusters are stacked in cluster order and
    each cluster's state posteriors are scaled by its responsibility, so
    every time point sums to 1 over all states.

    Returns:
        (N, T, sum(n_states))
    """
    obs = model.prepare(obs)
    n_subjects = obs.shape[0]
    log_weights = model.log_mixture_weights(n_subjects)

    def run(sl):
        messages = [cluster_messages(sub, obs[sl]) for sub in model.clusters]
        ll = np.column_stack([msg.log_likelihood for msg in messages])
        _, resp = _combine(log_weights[sl], ll)
        blocks = [msg.alpha * msg.beta * resp[:, k, np.newaxis, np.newaxis]
                  for k, msg in enumerate(messages)]
        return np.concatenate(blocks, axis=2)

    return np.concatenate(map_subjects(run, n_subjects, threads), axis=0)
