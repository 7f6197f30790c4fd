"""seqhmm Viterbi decoding for single and mixture models."""

from typing import NamedTuple

import numpy as np

from seqhmm.core import hmm as kernels
from seqhmm.core.model import SeqHMM, SubModel
from seqhmm.inference.engine import cluster_messages
from seqhmm.inference.parallel import map_subjects


class Paths(NamedTuple):
    """Most probable hidden paths."""
    states: np.ndarray    # (N, T) state index within the selected cluster
    log_prob: np.ndarray  # (N,) log P(path, obs), including log mixture weight
    cluster: np.ndarray   # (N,) selected cluster (all 0 for a plain HMM)

    def global_states(self, n_states) -> np.ndarray:
        """States as indices into the stacked state space of all clusters."""
        offsets = np.concatenate([[0], np.cumsum(n_states)[:-1]])
        return self.states + offsets[self.cluster][:, np.newaxis]


def _log(x: np.ndarray) -> np.ndarray:
    with np.errstate(divide='ignore'):
        return np.log(x)


def cluster_viterbi(sub: SubModel, obs: np.ndarray):
    """Viterbi paths and path log-probabilities under one submodel."""
    emit = kernels.joint_emission(sub.emission_array(), obs)
    return kernels.viterbi(_log(sub.initial), _log(sub.transition), _log(emit))


def hidden_paths(model: SeqHMM, obs, select: str = 'likelihood', threads: int = 1) -> Paths:
    """
    Most probable hidden state path of each subject.

    Ties between states are broken towards the lowest state index.

    For mixtures the decoder runs once per cluster and one cluster is kept
    per subject:

    - select='likelihood': the cluster maximizing w_k * P(obs | k), i.e. the
      most probable cluster given the whole sequence
    - select='path': the cluster maximizing w_k * P(best path, obs | k)

    Ties between clusters go to the lowest cluster index.

    Args:
        model: Model parameters
        obs: (N, T, C) observations
        select: Cluster selection rule for mixtures
        threads: Worker threads; subjects are decoded in chunks

    Returns:
        Paths
    """
    if select not in ('likelihood', 'path'):
        raise ValueError(f"Unknown cluster selection rule: {select}")
    obs = model.prepare(obs)
    n_subjects = obs.shape[0]
    log_weights = model.log_mixture_weights(n_subjects)

    def run(sl):
        chunk = obs[sl]
        decoded = [cluster_viterbi(sub, chunk) for sub in model.clusters]
        path_lp = np.column_stack([lp for _, lp in decoded]) + log_weights[sl]

        if select == 'likelihood' and model.is_mixture:
            ll = np.column_stack([cluster_messages(sub, chunk, backward=False).log_likelihood
                                  for sub in model.clusters])
            score = log_weights[sl] + ll
        else:
            score = path_lp
        cluster = np.argmax(score, axis=1)

        states = np.empty(chunk.shape[:2], dtype=np.int64)
        for k, (paths, _) in enumerate(decoded):
            chosen = cluster == k
            states[chosen] = paths[chosen]
        return states, path_lp[np.arange(len(cluster)), cluster], cluster

    parts = map_subjects(run, n_subjects, threads)
    return Paths(np.concatenate([p[0] for p in parts]),
                 np.concatenate([p[1] for p in parts]),
                 np.concatenate([p[2] for p in parts]))
