"""Forward-backward engine, Viterbi decoding and subject-chunk parallelism."""

from seqhmm.inference.engine import (
    Messages,
    ExpectedCounts,
    expected_counts,
    forward_backward,
    log_likelihood,
    cluster_probabilities,
    posterior_probs,
)
from seqhmm.inference.viterbi import Paths, hidden_paths

__all__ = [
    'Messages',
    'ExpectedCounts',
    'expected_counts',
    'forward_backward',
    'log_likelihood',
    'cluster_probabilities',
    'posterior_probs',
    'Paths',
    'hidden_paths',
]
