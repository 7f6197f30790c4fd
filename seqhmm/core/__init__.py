"""Model parameters, sequence handling and the Numba HMM kernels."""

from seqhmm.core.model import SeqHMM, SubModel, build_hmm, build_mhmm
from seqhmm.core.model_io import load_model, save_model
from seqhmm.core.sequences import MISSING, as_observations, combine_channels, n_observations
