"""
seqhmm EM (Baum-Welch) estimation

Each iteration runs the E-step over subject chunks in parallel, then a single
M-step rewrites all parameters from the summed statistics. Structural zeros
stay exactly zero because expected counts are only kept where the current
probability is nonzero.
"""

import warnings
from typing import List, NamedTuple, Optional

import numpy as np
from tqdm import tqdm

from seqhmm.core.model import SeqHMM
from seqhmm.inference.engine import (
    ExpectedCounts,
    expected_counts,
    require_finite,
)
from seqhmm.training.logit import design_or_intercept, fit_coefficients

ITERATING = 'iterating'
CONVERGED = 'converged'


class EMMonitor:
    """Tracks EM progress and decides when to stop."""

    def __init__(self, max_iter: int = 1000, reltol: float = 1e-10,
                 monotone_tol: float = 1e-8):
        self.max_iter = max_iter
        self.reltol = reltol
        self.monotone_tol = monotone_tol
        self.history: List[float] = []
        self.state = ITERATING
        self.n_iter = 0
        self.tol_reached = False

    def relative_change(self) -> float:
        if len(self.history) < 2:
            return np.inf
        prev, curr = self.history[-2], self.history[-1]
        return (curr - prev) / (abs(prev) + 0.1)

    def report(self, log_lik: float) -> bool:
        """
        Record the log-likelihood of the current parameters.

        Returns:
            True if iteration should stop
        """
        self.history.append(log_lik)
        change = self.relative_change()
        if len(self.history) > 1:
            drop = self.history[-2] - log_lik
            if drop > self.monotone_tol * (abs(self.history[-2]) + 0.1):
                warnings.warn(
                    f"EM log-likelihood decreased by {drop:.3g} at iteration {self.n_iter} "
                    "(numerical tolerance exceeded).",
                    RuntimeWarning,
                )
        if abs(change) < self.reltol:
            self.tol_reached = True
            self.state = CONVERGED
        elif self.n_iter >= self.max_iter:
            self.state = CONVERGED
        return self.state == CONVERGED


class EMResult(NamedTuple):
    model: SeqHMM
    log_likelihood: float
    monitor: EMMonitor


def _normalize_rows(counts: np.ndarray, previous: np.ndarray) -> np.ndarray:
    """Row-normalize counts on the nonzero pattern of previous; empty rows keep previous."""
    counts = np.where(previous > 0, counts, 0.0)
    sums = counts.sum(axis=-1, keepdims=True)
    out = np.divide(counts, sums, out=np.zeros_like(counts), where=sums > 0)
    return np.where(sums > 0, out, previous)


def m_step(model: SeqHMM, counts: ExpectedCounts, coef_maxiter: int = 100) -> SeqHMM:
    """
    Closed-form parameter update from summed expected counts.

    Returns:
        New model; the input is not modified
    """
    new = model.copy()
    for k, sub in enumerate(new.clusters):
        sub.initial = _normalize_rows(counts.initial[k], sub.initial)
        sub.transition = _normalize_rows(counts.transition[k], sub.transition)
        sub.emission = [
            _normalize_rows(counts.emission[k][r, :, :e.shape[1]], e)
            for r, e in enumerate(sub.emission)
        ]

    if model.is_mixture:
        X = design_or_intercept(model.covariates, counts.responsibilities.shape[0])
        new.coefficients = fit_coefficients(X, counts.responsibilities,
                                            model.coefficients, maxiter=coef_maxiter)
    return new


def run_em(model: SeqHMM, obs, max_iter: int = 1000, reltol: float = 1e-10,
           monotone_tol: float = 1e-8, threads: int = 1, coef_maxiter: int = 100,
           verbose: bool = False, desc: str = "EM") -> EMResult:
    """
    Estimate parameters with the EM algorithm.

    Args:
        model: Starting parameters (not modified)
        obs: (N, T, C) observations
        max_iter: Maximum number of EM iterations
        reltol: Stop when |change| / (|logLik| + 0.1) falls below this
        monotone_tol: Relative decrease tolerated before warning
        threads: Worker threads for the E-step
        coef_maxiter: Iteration cap of the coefficient refit
        verbose: Show progress bar
        desc: Progress bar label

    Returns:
        EMResult whose log-likelihood belongs to the returned parameters

    Raises:
        ZeroLikelihoodError: If some sequence is impossible under the current
            parameters
    """
    obs = model.prepare(obs)
    monitor = EMMonitor(max_iter=max_iter, reltol=reltol, monotone_tol=monotone_tol)
    current = model.copy()

    pbar: Optional[tqdm] = tqdm(total=max_iter, desc=desc, leave=False) if verbose else None
    try:
        while True:
            counts = expected_counts(current, obs, threads=threads)
            require_finite(counts.log_likelihood)
            log_lik = counts.total_log_likelihood
            if monitor.report(log_lik):
                break
            current = m_step(current, counts, coef_maxiter=coef_maxiter)
            monitor.n_iter += 1
            if pbar is not None:
                pbar.update(1)
                pbar.set_postfix({'logLik': f'{log_lik:.4f}',
                                  'rel': f'{monitor.relative_change():.2e}'})
    finally:
        if pbar is not None:
            pbar.close()

    return EMResult(current, log_lik, monitor)

