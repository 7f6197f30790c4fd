"""
seqhmm model estimation

fit_model() runs EM (Baum-Welch) and/or direct numerical maximization of the
log-likelihood with the analytic gradient. When both are enabled, the EM
result is the starting point of the optimizer.
"""

import warnings
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional, Tuple

import numpy as np
from scipy.optimize import minimize
from tqdm import tqdm

from seqhmm.core.model import SeqHMM
from seqhmm.core.sequences import n_observations
from seqhmm.inference.parallel import resolve_threads
from seqhmm.inference.viterbi import Paths, hidden_paths
from seqhmm.training.em import EMResult, run_em
from seqhmm.training.gradient import LikelihoodEvaluator


@dataclass
class FitConfig:
    """Estimation options."""
    em_step: bool = True
    local_step: bool = False
    max_iter: int = 1000
    reltol: float = 1e-10
    monotone_tol: float = 1e-8
    optimizer_method: str = 'L-BFGS-B'
    optimizer_maxiter: int = 10000
    bound: float = 25.0
    coef_maxiter: int = 100
    threads: int = 1
    verbose: bool = False
    select: str = 'likelihood'

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class OptimizerResult:
    """Summary of the gradient-based step."""
    log_likelihood: float
    success: bool
    message: str
    n_iter: int
    n_eval: int


@dataclass
class FitResult:
    """Fitted model with its log-likelihood, degrees of freedom and paths."""
    model: SeqHMM
    log_likelihood: float
    df: int
    nobs: float
    em: Optional[EMResult] = None
    optimizer: Optional[OptimizerResult] = None
    paths: Optional[Paths] = None

    @property
    def bic(self) -> float:
        return -2.0 * self.log_likelihood + np.log(self.nobs) * self.df

    @property
    def aic(self) -> float:
        return -2.0 * self.log_likelihood + 2.0 * self.df


def optimize_direct(model: SeqHMM, obs, config: FitConfig) -> Tuple[SeqHMM, OptimizerResult]:
    """
    Maximize the log-likelihood over the free parameters with a bounded
    quasi-Newton method and the analytic gradient.

    Returns:
        (fitted model, OptimizerResult)
    """
    threads = resolve_threads(config.threads)
    evaluator = LikelihoodEvaluator(model, obs, threads=threads)
    theta0 = evaluator.pmap.pack(model)
    if evaluator.pmap.size == 0:
        value, _ = evaluator(theta0)
        return model.copy(), OptimizerResult(-value, True, 'No free parameters', 0, 1)

    pbar = tqdm(desc='Optimizer', leave=False) if config.verbose else None

    def callback(*_):
        if pbar is not None:
            pbar.update(1)

    kwargs = {}
    if config.optimizer_method in ('L-BFGS-B', 'TNC', 'SLSQP', 'trust-constr'):
        kwargs['bounds'] = evaluator.pmap.bounds(theta0, config.bound)
    try:
        result = minimize(evaluator, theta0, jac=True, method=config.optimizer_method,
                          callback=callback, options={'maxiter': config.optimizer_maxiter},
                          **kwargs)
    finally:
        if pbar is not None:
            pbar.close()

    theta, value = result.x, float(result.fun)
    start_value, _ = evaluator(theta0)
    if not value <= start_value:
        warnings.warn(
            f"Optimizer ended at a worse point ({-value:.6g} < {-start_value:.6g}); "
            "keeping the starting parameters.",
            RuntimeWarning,
        )
        theta, value = theta0, start_value

    fitted = evaluator.model(theta)
    summary = OptimizerResult(
        log_likelihood=-value,
        success=bool(result.success),
        message=str(result.message),
        n_iter=int(getattr(result, 'nit', 0)),
        n_eval=int(getattr(result, 'nfev', 0)),
    )
    return fitted, summary


def fit_model(model: SeqHMM, obs, config: Optional[FitConfig] = None) -> FitResult:
    """
    Estimate the parameters of a hidden Markov model or mixture model.

    Args:
        model: Starting values; not modified. Zero probabilities are kept
            fixed at zero.
        obs: (N, T, C) observations (MISSING = -1)
        config: FitConfig; defaults are used if None

    Returns:
        FitResult with the fitted model and most probable hidden paths

    Raises:
        ValueError: If neither estimation step is enabled
        ZeroLikelihoodError: If a sequence is impossible under the starting
            values
    """
    config = config or FitConfig()
    if not (config.em_step or config.local_step):
        raise ValueError("At least one of em_step and local_step must be enabled.")
    obs = model.prepare(obs)
    threads = resolve_threads(config.threads)
    # zeros reached during estimation are not structural
    df = model.df

    current = model.copy()
    em_result = None
    opt_result = None
    log_lik = None

    if config.em_step:
        em_result = run_em(current, obs, max_iter=config.max_iter, reltol=config.reltol,
                           monotone_tol=config.monotone_tol, threads=threads,
                           coef_maxiter=config.coef_maxiter, verbose=config.verbose)
        current = em_result.model
        log_lik = em_result.log_likelihood

    if config.local_step:
        current, opt_result = optimize_direct(current, obs, config)
        log_lik = opt_result.log_likelihood

    paths = hidden_paths(current, obs, select=config.select, threads=threads)
    return FitResult(
        model=current,
        log_likelihood=log_lik,
        df=df,
        nobs=n_observations(obs),
        em=em_result,
        optimizer=opt_result,
        paths=paths,
    )
