"""
seqhmm model parameters

A SeqHMM holds one or more submodels (clusters). A plain hidden Markov
model is a SeqHMM with a single cluster whose mixture weight is 1 for every
subject; a mixture hidden Markov model has K > 1 clusters whose weights are
a multinomial-logit function of subject covariates.

Parameters are assumed valid once a model exists: build_hmm() and
build_mhmm() are the validating constructors.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
from scipy.special import log_softmax

from seqhmm.core.sequences import as_observations, check_observations

FORMAT_VERSION = '1.0'


class SeqHMMError(ValueError):
    """Base error for seqhmm."""


class ZeroLikelihoodError(SeqHMMError):
    """Some sequence is impossible under the current parameters."""

    def __init__(self, subjects):
        self.subjects = np.asarray(subjects)
        shown = ', '.join(str(s) for s in self.subjects[:10])
        more = '' if len(self.subjects) <= 10 else f' (+{len(self.subjects) - 10} more)'
        super().__init__(
            f"Zero likelihood for {len(self.subjects)} sequence(s): {shown}{more}. "
            "Check structural zeros and starting values."
        )


@dataclass
class SubModel:
    """Parameters of one (cluster) hidden Markov model."""
    transition: np.ndarray                  # (m, m)
    emission: List[np.ndarray]              # per channel (m, n_symbols[r])
    initial: np.ndarray                     # (m,)
    state_names: Optional[List[str]] = None

    @property
    def n_states(self) -> int:
        return self.transition.shape[0]

    @property
    def n_channels(self) -> int:
        return len(self.emission)

    @property
    def n_symbols(self) -> List[int]:
        return [e.shape[1] for e in self.emission]

    def emission_array(self) -> np.ndarray:
        """Emission matrices stacked to (C, m, max_symbols), zero-padded."""
        width = max(self.n_symbols)
        out = np.zeros((self.n_channels, self.n_states, width))
        for r, e in enumerate(self.emission):
            out[r, :, :e.shape[1]] = e
        return out

    def n_free(self) -> int:
        """Free probabilities: nonzero entries minus one per row."""
        df = np.count_nonzero(self.initial) - 1
        df += np.count_nonzero(self.transition) - self.n_states
        for e in self.emission:
            df += np.count_nonzero(e) - self.n_states
        return int(df)

    def copy(self) -> 'SubModel':
        return SubModel(
            transition=self.transition.copy(),
            emission=[e.copy() for e in self.emission],
            initial=self.initial.copy(),
            state_names=None if self.state_names is None else list(self.state_names),
        )


@dataclass
class SeqHMM:
    """
    Hidden Markov model or mixture hidden Markov model for multichannel
    categorical sequences.

    Attributes:
        clusters: Submodels, one per cluster (one for a plain HMM)
        coefficients: (p, K) multinomial-logit coefficients; column 0 is zero
        covariates: (N, p) design matrix with intercept, or None for
            constant mixture weights softmax(coefficients[0])
        cluster_names, channel_names, symbol_names: labels
    """
    clusters: List[SubModel]
    coefficients: np.ndarray
    covariates: Optional[np.ndarray] = None
    cluster_names: List[str] = field(default_factory=list)
    channel_names: List[str] = field(default_factory=list)
    symbol_names: List[List[str]] = field(default_factory=list)
    covariate_names: List[str] = field(default_factory=list)

    # ------------------------------------------------------------------
    # Shape properties
    # ------------------------------------------------------------------

    @property
    def is_mixture(self) -> bool:
        return len(self.clusters) > 1

    @property
    def n_clusters(self) -> int:
        return len(self.clusters)

    @property
    def n_states(self) -> List[int]:
        return [c.n_states for c in self.clusters]

    @property
    def n_channels(self) -> int:
        return self.clusters[0].n_channels

    @property
    def n_symbols(self) -> List[int]:
        return self.clusters[0].n_symbols

    @property
    def n_covariates(self) -> int:
        return self.coefficients.shape[0]

    @property
    def state_labels(self) -> List[str]:
        """Labels of all states across clusters, prefixed by cluster for mixtures."""
        labels = []
        for name, c in zip(self.cluster_names, self.clusters):
            states = c.state_names or [str(i + 1) for i in range(c.n_states)]
            labels.extend(f"{name}: {s}" if self.is_mixture else s for s in states)
        return labels

    @property
    def df(self) -> int:
        """Degrees of freedom: free probabilities plus non-baseline coefficients."""
        n = sum(c.n_free() for c in self.clusters)
        return n + self.n_covariates * (self.n_clusters - 1)

    # ------------------------------------------------------------------
    # Mixture weights
    # ------------------------------------------------------------------

    def log_mixture_weights(self, n_subjects: int) -> np.ndarray:
        """Log mixture weights, shape (N, K)."""
        if self.covariates is None:
            eta = np.broadcast_to(self.coefficients[0], (n_subjects, self.n_clusters))
        else:
            if self.covariates.shape[0] != n_subjects:
                raise SeqHMMError(
                    f"Model has covariates for {self.covariates.shape[0]} subjects, "
                    f"observations have {n_subjects}."
                )
            eta = self.covariates @ self.coefficients
        return log_softmax(eta, axis=1)

    def mixture_weights(self, n_subjects: int) -> np.ndarray:
        """Mixture weights, shape (N, K); rows sum to 1."""
        return np.exp(self.log_mixture_weights(n_subjects))

    def prepare(self, obs) -> np.ndarray:
        """Coerce and check observations against this model."""
        obs = as_observations(obs)
        check_observations(obs, self.n_symbols)
        return obs

    def copy(self) -> 'SeqHMM':
        return SeqHMM(
            clusters=[c.copy() for c in self.clusters],
            coefficients=self.coefficients.copy(),
            covariates=None if self.covariates is None else self.covariates.copy(),
            cluster_names=list(self.cluster_names),
            channel_names=list(self.channel_names),
            symbol_names=[list(s) for s in self.symbol_names],
            covariate_names=list(self.covariate_names),
        )

    # ------------------------------------------------------------------
    # Inference shortcuts
    # ------------------------------------------------------------------

    def score(self, obs, threads: int = 1) -> float:
        """Total log-likelihood of the observations."""
        from seqhmm.inference.engine import log_likelihood
        return log_likelihood(self, obs, threads=threads)

    def predict(self, obs, select: str = 'likelihood', threads: int = 1) -> np.ndarray:
        """Most probable hidden state paths, shape (N, T), as within-cluster indices."""
        from seqhmm.inference.viterbi import hidden_paths
        return hidden_paths(self, obs, select=select, threads=threads).states

    def predict_proba(self, obs, threads: int = 1) -> np.ndarray:
        """Posterior state probabilities, shape (N, T, sum(n_states))."""
        from seqhmm.inference.engine import posterior_probs
        return posterior_probs(self, obs, threads=threads)

    def fit(self, obs, config=None) -> 'SeqHMM':
        """Estimate parameters in place and return self."""
        from seqhmm.training.fit import fit_model
        result = fit_model(self, obs, config)
        self.clusters = result.model.clusters
        self.coefficients = result.model.coefficients
        return self

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        """Serialize model to dictionary."""
        return {
            'model_type': 'mhmm' if self.is_mixture else 'hmm',
            'version': FORMAT_VERSION,
            'cluster_names': list(self.cluster_names),
            'channel_names': list(self.channel_names),
            'symbol_names': [list(s) for s in self.symbol_names],
            'covariate_names': list(self.covariate_names),
            'clusters': [
                {
                    'state_names': c.state_names,
                    'transition': c.transition.tolist(),
                    'emission': [e.tolist() for e in c.emission],
                    'initial': c.initial.tolist(),
                }
                for c in self.clusters
            ],
            'coefficients': self.coefficients.tolist(),
            'covariates': None if self.covariates is None else self.covariates.tolist(),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'SeqHMM':
        """Deserialize model from dictionary (no validation)."""
        clusters = [
            SubModel(
                transition=np.array(c['transition'], dtype=float),
                emission=[np.array(e, dtype=float) for e in c['emission']],
                initial=np.array(c['initial'], dtype=float),
                state_names=c.get('state_names'),
            )
            for c in d['clusters']
        ]
        covariates = d.get('covariates')
        return cls(
            clusters=clusters,
            coefficients=np.array(d['coefficients'], dtype=float).reshape(-1, len(clusters)),
            covariates=None if covariates is None else np.array(covariates, dtype=float),
            cluster_names=d.get('cluster_names') or _default_names('Cluster', len(clusters)),
            channel_names=d.get('channel_names') or [],
            symbol_names=d.get('symbol_names') or [],
            covariate_names=d.get('covariate_names') or [],
        )


# =============================================================================
# Validating constructors
# =============================================================================

def _default_names(prefix: str, n: int) -> List[str]:
    return [f"{prefix} {i + 1}" for i in range(n)]


def _check_stochastic(name: str, mat: np.ndarray, axis: int = -1) -> None:
    if np.any(mat < 0) or not np.all(np.isfinite(mat)):
        raise ValueError(f"{name} contains negative or non-finite values.")
    if not np.allclose(mat.sum(axis=axis), 1.0):
        raise ValueError(f"{name} does not sum to one.")


def _as_submodel(transition, emission, initial, state_names, label: str) -> SubModel:
    transition = np.array(transition, dtype=float)
    if transition.ndim != 2 or transition.shape[0] != transition.shape[1]:
        raise ValueError(f"transition_matrix{label} must be a square matrix.")
    m = transition.shape[0]

    if isinstance(emission, np.ndarray) or (
            isinstance(emission, (list, tuple)) and len(emission) > 0
            and np.ndim(emission[0]) == 1):
        emission = [emission]
    emission = [np.array(e, dtype=float) for e in emission]
    initial = np.array(initial, dtype=float)

    if initial.shape != (m,):
        raise ValueError(f"Length of initial_probs{label} is not equal to the number of states.")
    for r, e in enumerate(emission):
        if e.ndim != 2 or e.shape[0] != m:
            raise ValueError(
                f"Number of rows in emission_matrix{label} (channel {r + 1}) "
                "is not equal to the number of states."
            )
        _check_stochastic(f"emission_matrix{label} (channel {r + 1})", e)
    _check_stochastic(f"transition_matrix{label}", transition)
    _check_stochastic(f"initial_probs{label}", initial)

    if state_names is not None:
        state_names = [str(s) for s in state_names]
        if len(state_names) != m:
            raise ValueError(f"Length of state_names{label} is not equal to the number of states.")
    return SubModel(transition=transition, emission=emission, initial=initial,
                    state_names=state_names)


def _resolve_names(names, n: int, prefix: str, what: str) -> List[str]:
    if names is None:
        return _default_names(prefix, n)
    names = [str(x) for x in names]
    if len(names) != n:
        raise ValueError(f"Length of {what} does not match ({len(names)} != {n}).")
    return names


def build_hmm(transition, emission, initial, state_names=None,
              channel_names=None, symbol_names=None) -> SeqHMM:
    """
    Construct a hidden Markov model.

    Args:
        transition: (m, m) row-stochastic transition matrix
        emission: (m, s) emission matrix, or a list of such matrices (one per channel)
        initial: (m,) initial state probabilities
        state_names: Optional labels for the hidden states
        channel_names: Optional labels for the channels
        symbol_names: Optional per-channel lists of symbol labels

    Returns:
        SeqHMM with a single cluster
    """
    sub = _as_submodel(transition, emission, initial, state_names, '')
    return SeqHMM(
        clusters=[sub],
        coefficients=np.zeros((1, 1)),
        cluster_names=['Cluster 1'],
        channel_names=_resolve_names(channel_names, sub.n_channels, 'Channel', 'channel_names'),
        symbol_names=_symbol_names(symbol_names, sub.n_symbols),
        covariate_names=['(Intercept)'],
    )


def build_mhmm(transition: Sequence, emission: Sequence, initial: Sequence,
               covariates: Optional[np.ndarray] = None,
               coefficients: Optional[np.ndarray] = None,
               cluster_names=None, state_names=None, channel_names=None,
               symbol_names=None, covariate_names=None) -> SeqHMM:
    """
    Construct a mixture hidden Markov model.

    Args:
        transition: List of (m_k, m_k) transition matrices, one per cluster
        emission: List (per cluster) of emission matrices or lists of
            per-channel emission matrices
        initial: List of initial probability vectors
        covariates: (N, p) design matrix including the intercept column; if
            None, mixture weights are constant softmax(coefficients[0])
        coefficients: (p, K) starting coefficients; first column is set to 0
        cluster_names, state_names, channel_names, symbol_names,
        covariate_names: Optional labels (state_names is a list per cluster)

    Returns:
        SeqHMM with K clusters
    """
    n_clusters = len(transition)
    if len(emission) != n_clusters or len(initial) != n_clusters:
        raise ValueError("Unequal list lengths of transition_matrix, emission_matrix and initial_probs.")
    if state_names is None:
        state_names = [None] * n_clusters

    clusters = [
        _as_submodel(transition[k], emission[k], initial[k], state_names[k],
                     f" of cluster {k + 1}")
        for k in range(n_clusters)
    ]
    n_channels = clusters[0].n_channels
    n_symbols = clusters[0].n_symbols
    for k, c in enumerate(clusters[1:], start=2):
        if c.n_channels != n_channels:
            raise ValueError("Number of channels defined by emission matrices differ from each other.")
        if c.n_symbols != n_symbols:
            raise ValueError(f"Number of columns in emission_matrix of cluster {k} "
                             "is not equal to the number of symbols.")

    if covariates is not None:
        covariates = np.array(covariates, dtype=float)
        if covariates.ndim != 2:
            raise ValueError("covariates must be a 2D design matrix.")
        if not np.all(np.isfinite(covariates)):
            raise ValueError("Missing cases are not allowed in covariates.")
        n_cov = covariates.shape[1]
    else:
        n_cov = 1

    if coefficients is None:
        coefficients = np.zeros((n_cov, n_clusters))
    else:
        coefficients = np.array(coefficients, dtype=float)
        if coefficients.shape != (n_cov, n_clusters):
            raise ValueError("Wrong dimensions of coefficients.")
        coefficients[:, 0] = 0.0

    return SeqHMM(
        clusters=clusters,
        coefficients=coefficients,
        covariates=covariates,
        cluster_names=_resolve_names(cluster_names, n_clusters, 'Cluster', 'cluster_names'),
        channel_names=_resolve_names(channel_names, n_channels, 'Channel', 'channel_names'),
        symbol_names=_symbol_names(symbol_names, n_symbols),
        covariate_names=(list(covariate_names) if covariate_names is not None
                         else ['(Intercept)'] + [f"x{j}" for j in range(1, n_cov)]),
    )


def _symbol_names(symbol_names, n_symbols: List[int]) -> List[List[str]]:
    if symbol_names is None:
        return [[str(s) for s in range(n)] for n in n_symbols]
    if len(n_symbols) == 1 and len(symbol_names) == n_symbols[0] and \
            not isinstance(symbol_names[0], (list, tuple)):
        symbol_names = [symbol_names]
    out = []
    for r, (names, n) in enumerate(zip(symbol_names, n_symbols)):
        if len(names) != n:
            raise ValueError(f"Number of symbol_names for channel {r + 1} is not equal to "
                             "the number of columns in emission_matrix.")
        out.append([str(s) for s in names])
    return out
