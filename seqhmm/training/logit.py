"""
Multinomial-logit model for cluster membership.

Mixture weights are w[n, k] = softmax_k(X[n] @ coefficients) with the first
(baseline) column of coefficients fixed to zero. Free coefficients are
flattened cluster by cluster: all covariates of cluster 2, then cluster 3,
and so on.
"""

import numpy as np
from scipy.optimize import minimize
from scipy.special import log_softmax


def design_or_intercept(covariates, n_subjects: int) -> np.ndarray:
    """The covariate matrix, or a column of ones when the model has none."""
    if covariates is None:
        return np.ones((n_subjects, 1))
    return covariates


def coef_to_vector(coefficients: np.ndarray) -> np.ndarray:
    return coefficients[:, 1:].T.ravel()


def vector_to_coef(vector: np.ndarray, n_covariates: int, n_clusters: int) -> np.ndarray:
    coef = np.zeros((n_covariates, n_clusters))
    coef[:, 1:] = np.asarray(vector).reshape(n_clusters - 1, n_covariates).T
    return coef


def logit_gradient(X: np.ndarray, responsibilities: np.ndarray,
                   weights: np.ndarray) -> np.ndarray:
    """
    Gradient of sum_n sum_k r[n, k] log w[n, k] with respect to the free
    coefficients: X^T (r_k - w_k) for every non-baseline cluster k.
    """
    return coef_to_vector(X.T @ (responsibilities - weights))


def fit_coefficients(X: np.ndarray, responsibilities: np.ndarray,
                     coefficients: np.ndarray, maxiter: int = 100) -> np.ndarray:
    """
    Weighted multinomial-logit regression with soft targets.

    Maximizes sum_n sum_k r[n, k] log softmax(X[n] @ coefficients)_k,
    starting from the current coefficients so the objective never decreases.

    Args:
        X: (N, p) design matrix
        responsibilities: (N, K) cluster responsibilities (rows sum to 1)
        coefficients: (p, K) current coefficients
        maxiter: Iteration cap of the quasi-Newton solver

    Returns:
        (p, K) new coefficients with a zero baseline column
    """
    n_cov, n_clusters = coefficients.shape
    if n_clusters == 1:
        return np.zeros_like(coefficients)

    def objective(theta):
        coef = vector_to_coef(theta, n_cov, n_clusters)
        log_w = log_softmax(X @ coef, axis=1)
        value = -np.sum(responsibilities * log_w)
        grad = -logit_gradient(X, responsibilities, np.exp(log_w))
        return value, grad

    start = coef_to_vector(coefficients)
    result = minimize(objective, start, jac=True, method='BFGS',
                      options={'maxiter': maxiter})
    theta = result.x
    if objective(theta)[0] > objective(start)[0]:
        theta = start
    return vector_to_coef(theta, n_cov, n_clusters)
