"""
seqhmm - Hidden Markov and mixture hidden Markov models for multichannel
categorical sequences.
"""

__version__ = "1.0.0"

from seqhmm.core.model import SeqHMM, SeqHMMError, ZeroLikelihoodError, build_hmm, build_mhmm
from seqhmm.core.model_io import load_model, save_model
from seqhmm.core.sequences import MISSING, combine_channels, n_observations
from seqhmm.core.simulate import simulate_hmm, simulate_mhmm
from seqhmm.inference.engine import forward_backward, log_likelihood, posterior_probs
from seqhmm.inference.viterbi import hidden_paths
from seqhmm.training.fit import FitConfig, FitResult, fit_model
