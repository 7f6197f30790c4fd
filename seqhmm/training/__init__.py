"""Parameter estimation: EM, analytic-gradient optimization and the logit refit."""

from seqhmm.training.em import EMMonitor, run_em
from seqhmm.training.fit import FitConfig, FitResult, fit_model
from seqhmm.training.gradient import LikelihoodEvaluator, ParameterMap, log_likelihood_and_gradient
