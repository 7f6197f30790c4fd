"""
seqhmm log-likelihood and analytic gradient

The free parameters of a model are flattened into one vector, block by
block:

1. transition rows of every cluster
2. emission rows of every cluster and channel
3. initial probabilities of every cluster
4. mixture coefficients of clusters 2..K, covariate by covariate

Every probability row (a simplex) is parameterized by log-ratios
eta_j = log(p_j / p_ref) over its nonzero entries. The reference entry is
the largest one when the map is built and stays fixed at eta_ref = 0, so a
row with q nonzero entries has q - 1 free parameters and structural zeros
never enter the vector. The gradient of a row is the raw sensitivity
d logLik / dp passed through the simplex Jacobian diag(p) - p p^T.
"""

from typing import List, NamedTuple, Tuple

import numpy as np

from seqhmm.core.model import SeqHMM
from seqhmm.inference.engine import ExpectedCounts, expected_counts, require_finite
from seqhmm.training.logit import (
    coef_to_vector,
    design_or_intercept,
    logit_gradient,
    vector_to_coef,
)

TRANSITION = 'transition'
EMISSION = 'emission'
INITIAL = 'initial'


class _Row(NamedTuple):
    kind: str
    cluster: int
    channel: int
    index: int
    nonzero: np.ndarray   # column indices of nonzero entries
    ref: int              # position of the reference entry within nonzero
    free: np.ndarray      # positions within nonzero that are free


def _row_view(model: SeqHMM, row: _Row) -> np.ndarray:
    sub = model.clusters[row.cluster]
    if row.kind == TRANSITION:
        return sub.transition[row.index]
    if row.kind == EMISSION:
        return sub.emission[row.channel][row.index]
    return sub.initial


def _row_counts(counts: ExpectedCounts, row: _Row, width: int) -> np.ndarray:
    if row.kind == TRANSITION:
        return counts.transition[row.cluster][row.index]
    if row.kind == EMISSION:
        return counts.emission[row.cluster][row.channel, row.index, :width]
    return counts.initial[row.cluster]


def simplex_gradient(prob: np.ndarray, counts: np.ndarray) -> np.ndarray:
    """
    Gradient of a log-likelihood with respect to a row's log-ratio parameters.

    With raw sensitivities g = counts / prob, this is (diag(p) - p p^T) g,
    computed as counts - p * sum(counts) so zero probabilities need no
    division.
    """
    return counts - prob * counts.sum()


class ParameterMap:
    """Layout of the free parameter vector of a model's structure."""

    def __init__(self, model: SeqHMM):
        self.n_clusters = model.n_clusters
        self.n_covariates = model.n_covariates
        self.rows: List[_Row] = []

        for k, sub in enumerate(model.clusters):
            for i in range(sub.n_states):
                self._add(TRANSITION, k, 0, i, sub.transition[i])
        for k, sub in enumerate(model.clusters):
            for r, e in enumerate(sub.emission):
                for i in range(sub.n_states):
                    self._add(EMISSION, k, r, i, e[i])
        for k, sub in enumerate(model.clusters):
            self._add(INITIAL, k, 0, 0, sub.initial)

        self.n_probs = sum(len(row.free) for row in self.rows)
        self.n_coefs = self.n_covariates * (self.n_clusters - 1)

    def _add(self, kind: str, cluster: int, channel: int, index: int, values: np.ndarray):
        nonzero = np.flatnonzero(values > 0)
        ref = int(np.argmax(values[nonzero]))
        free = np.array([j for j in range(len(nonzero)) if j != ref], dtype=np.int64)
        self.rows.append(_Row(kind, cluster, channel, index, nonzero, ref, free))

    @property
    def size(self) -> int:
        return self.n_probs + self.n_coefs

    def pack(self, model: SeqHMM) -> np.ndarray:
        """Free parameter vector of a model with this structure."""
        theta = np.empty(self.size)
        pos = 0
        for row in self.rows:
            p = _row_view(model, row)[row.nonzero]
            n = len(row.free)
            theta[pos:pos + n] = np.log(p[row.free]) - np.log(p[row.ref])
            pos += n
        theta[pos:] = coef_to_vector(model.coefficients)
        return theta

    def unpack(self, theta: np.ndarray, template: SeqHMM) -> SeqHMM:
        """New model with the structure of template and parameters theta."""
        model = template.copy()
        pos = 0
        for row in self.rows:
            n = len(row.free)
            logits = np.zeros(len(row.nonzero))
            logits[row.free] = theta[pos:pos + n]
            pos += n
            logits -= logits.max()
            p = np.exp(logits)
            view = _row_view(model, row)
            view[:] = 0.0
            view[row.nonzero] = p / p.sum()
        model.coefficients = vector_to_coef(theta[pos:], self.n_covariates, self.n_clusters)
        return model

    def bounds(self, theta0: np.ndarray, bound: float = 25.0) -> List[Tuple[float, float]]:
        """Box constraints wide enough to contain the starting point."""
        lower = np.minimum(-bound, 2.0 * theta0)
        upper = np.maximum(bound, 2.0 * theta0)
        return list(zip(lower, upper))

    def gradient(self, model: SeqHMM, counts: ExpectedCounts, X: np.ndarray,
                 weights: np.ndarray) -> np.ndarray:
        """Gradient of the total log-likelihood in the layout of pack()."""
        grad = np.empty(self.size)
        pos = 0
        for row in self.rows:
            view = _row_view(model, row)
            c = _row_counts(counts, row, len(view))
            g = simplex_gradient(view[row.nonzero], c[row.nonzero])
            n = len(row.free)
            grad[pos:pos + n] = g[row.free]
            pos += n
        if self.n_coefs:
            grad[pos:] = logit_gradient(X, counts.responsibilities, weights)
        return grad


class LikelihoodEvaluator:
    """
    Negative log-likelihood and its gradient as a function of the free
    parameter vector.

    Calls are pure: every evaluation builds a fresh model from theta and
    shares nothing mutable with other calls, so an optimizer may call it any
    number of times.
    """

    def __init__(self, model: SeqHMM, obs, threads: int = 1):
        self.template = model.copy()
        self.obs = model.prepare(obs)
        self.threads = threads
        self.pmap = ParameterMap(model)

    def __call__(self, theta: np.ndarray) -> Tuple[float, np.ndarray]:
        model = self.pmap.unpack(theta, self.template)
        X = design_or_intercept(model.covariates, self.obs.shape[0])
        with np.errstate(over='ignore', invalid='ignore'):
            expeta = np.exp(X @ model.coefficients)
            weights = expeta / expeta.sum(axis=1, keepdims=True)
        if not (np.all(np.isfinite(expeta)) and np.all(np.isfinite(weights))):
            big = np.finfo(float).max
            return big, np.full(self.pmap.size, -big)

        with np.errstate(divide='ignore'):
            log_weights = np.log(weights)
        counts = expected_counts(model, self.obs, threads=self.threads,
                                 log_weights=log_weights)
        require_finite(counts.log_likelihood)
        grad = self.pmap.gradient(model, counts, X, weights)
        return -counts.total_log_likelihood, -grad

    def model(self, theta: np.ndarray) -> SeqHMM:
        return self.pmap.unpack(theta, self.template)


def log_likelihood_and_gradient(model: SeqHMM, obs, threads: int = 1) -> Tuple[float, np.ndarray]:
    """
    Log-likelihood of a model and its gradient with respect to the model's own
    free parameter vector (ParameterMap(model).pack(model)).
    """
    evaluator = LikelihoodEvaluator(model, obs, threads=threads)
    value, grad = evaluator(evaluator.pmap.pack(model))
    return -value, -grad
