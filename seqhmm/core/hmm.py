"""
seqhmm HMM kernels

Provides:
1. Joint multichannel emission probabilities (missing channels contribute 1)
2. Scaled forward and backward recursions
3. Expected-count accumulation for EM and the analytic gradient
4. Log-space Viterbi decoding

All kernels are Numba-compiled and release the GIL, so they can run on
subject chunks from several threads. Kernels work on one cluster's
submodel; mixtures call them once per cluster.

Array conventions (row-major):
    obs:       (N, T, C) int64, MISSING = -1
    emission:  (C, m, max_symbols) float64, zero-padded past each alphabet
    emit:      (N, T, m) joint emission probability per time point
    alpha/beta:(N, T, m) scaled forward/backward probabilities
    scales:    (N, T) per-step scale factors
"""

import numpy as np
from numba import jit


# =============================================================================
# Multichannel emission
# =============================================================================

@jit(nopython=True, cache=False, nogil=True)
def joint_emission(emission, obs):
    """
    Product over channels of the emission probability of the observed symbol.

    Args:
        emission: (C, m, max_symbols) emission probabilities
        obs: (N, T, C) observations

    Returns:
        emit: (N, T, m)
    """
    N, T, C = obs.shape
    m = emission.shape[1]
    emit = np.ones((N, T, m))
    for n in range(N):
        for t in range(T):
            for r in range(C):
                o = obs[n, t, r]
                if o < 0:
                    continue
                for i in range(m):
                    emit[n, t, i] *= emission[r, i, o]
    return emit


# =============================================================================
# Forward / backward
# =============================================================================

@jit(nopython=True, cache=False, nogil=True)
def forward(init, transition, emit):
    """
    Scaled forward recursion.

    Args:
        init: (N, m) initial state distribution per subject
        transition: (m, m) transition matrix
        emit: (N, T, m) joint emission probabilities

    Returns:
        alpha: (N, T, m) scaled forward probabilities, each row sums to 1
        scales: (N, T) scale factors; a zero scale marks an impossible
            sequence and every later alpha and scale is left at 0
    """
    N, T, m = emit.shape
    alpha = np.zeros((N, T, m))
    scales = np.zeros((N, T))
    for n in range(N):
        c = 0.0
        for i in range(m):
            alpha[n, 0, i] = init[n, i] * emit[n, 0, i]
            c += alpha[n, 0, i]
        scales[n, 0] = c
        if c <= 0.0:
            continue
        for i in range(m):
            alpha[n, 0, i] /= c

        for t in range(1, T):
            c = 0.0
            for j in range(m):
                s = 0.0
                for i in range(m):
                    s += alpha[n, t - 1, i] * transition[i, j]
                alpha[n, t, j] = s * emit[n, t, j]
                c += alpha[n, t, j]
            scales[n, t] = c
            if c <= 0.0:
                break
            for j in range(m):
                alpha[n, t, j] /= c
    return alpha, scales


@jit(nopython=True, cache=False, nogil=True)
def backward(transition, emit, scales):
    """
    Scaled backward recursion using the forward scale factors.

    Returns:
        beta: (N, T, m); all zeros for subjects with a zero scale factor
    """
    N, T, m = emit.shape
    beta = np.zeros((N, T, m))
    for n in range(N):
        possible = True
        for t in range(T):
            if scales[n, t] <= 0.0:
                possible = False
                break
        if not possible:
            continue
        for i in range(m):
            beta[n, T - 1, i] = 1.0
        for t in range(T - 2, -1, -1):
            for i in range(m):
                s = 0.0
                for j in range(m):
                    s += transition[i, j] * emit[n, t + 1, j] * beta[n, t + 1, j]
                beta[n, t, i] = s / scales[n, t + 1]
    return beta


# =============================================================================
# Expected counts
# =============================================================================

@jit(nopython=True, cache=False, nogil=True)
def expected_counts(alpha, beta, scales, emit, transition, obs, weights, max_symbols):
    """
    Accumulate weighted posterior counts over subjects.

    gamma_t(i) = alpha_t(i) beta_t(i)
    xi_t(i, j) = alpha_t(i) A(i, j) e_{t+1}(j) beta_{t+1}(j) / c_{t+1}

    Args:
        weights: (N,) subject weights (cluster responsibilities); subjects
            with weight 0 are skipped
        max_symbols: width of the emission count array

    Returns:
        init_counts: (m,) weighted sum of gamma_1
        trans_counts: (m, m) weighted sum over t of xi_t
        emis_counts: (C, m, max_symbols) weighted gamma mass per observed symbol
    """
    N, T, m = alpha.shape
    C = obs.shape[2]
    init_counts = np.zeros(m)
    trans_counts = np.zeros((m, m))
    emis_counts = np.zeros((C, m, max_symbols))
    for n in range(N):
        w = weights[n]
        if w <= 0.0:
            continue
        for i in range(m):
            init_counts[i] += w * alpha[n, 0, i] * beta[n, 0, i]
        for t in range(T - 1):
            inv = w / scales[n, t + 1]
            for i in range(m):
                a = alpha[n, t, i]
                if a == 0.0:
                    continue
                for j in range(m):
                    trans_counts[i, j] += (a * transition[i, j] * emit[n, t + 1, j]
                                           * beta[n, t + 1, j] * inv)
        for t in range(T):
            for r in range(C):
                o = obs[n, t, r]
                if o < 0:
                    continue
                for i in range(m):
                    emis_counts[r, i, o] += w * alpha[n, t, i] * beta[n, t, i]
    return init_counts, trans_counts, emis_counts


# =============================================================================
# Viterbi
# =============================================================================

@jit(nopython=True, cache=False, nogil=True)
def viterbi(log_init, log_transition, log_emit):
    """
    Most probable hidden state path per subject.

    Ties are broken towards the lowest state index, both for backpointers and
    for the terminal state.

    Args:
        log_init: (m,) log initial probabilities (-inf for structural zeros)
        log_transition: (m, m) log transition matrix
        log_emit: (N, T, m) log joint emission probabilities

    Returns:
        paths: (N, T) state indices
        log_prob: (N,) log probability of each path jointly with the
            observations; -inf if the sequence is impossible
    """
    N, T, m = log_emit.shape
    paths = np.zeros((N, T), dtype=np.int64)
    log_prob = np.empty(N)
    delta = np.empty(m)
    new_delta = np.empty(m)
    backpointer = np.zeros((T, m), dtype=np.int64)
    for n in range(N):
        for i in range(m):
            delta[i] = log_init[i] + log_emit[n, 0, i]
        for t in range(1, T):
            for j in range(m):
                best = -np.inf
                arg = 0
                for i in range(m):
                    v = delta[i] + log_transition[i, j]
                    if v > best:
                        best = v
                        arg = i
                new_delta[j] = best + log_emit[n, t, j]
                backpointer[t, j] = arg
            for j in range(m):
                delta[j] = new_delta[j]

        last = 0
        best = delta[0]
        for i in range(1, m):
            if delta[i] > best:
                best = delta[i]
                last = i
        log_prob[n] = best
        paths[n, T - 1] = last
        for t in range(T - 2, -1, -1):
            paths[n, t] = backpointer[t + 1, paths[n, t + 1]]
    return paths, log_prob
