#!/usr/bin/env python3
"""
seqhmm-fit: estimate a hidden Markov or mixture hidden Markov model.

Inputs:
    --model          Starting model (.json, see seqhmm-utils inspect)
    --observations   Integer array (.npy) of shape (N, T, C) or (N, T);
                     missing observations coded -1
    --covariates     Optional CSV/TSV, one row per sequence, for the
                     mixture weights of a mixture model

Outputs (in -o/--output):
    model.json       Fitted model
    paths.tsv        Most probable hidden paths (one row per sequence and time)
    posteriors.tsv   Posterior state probabilities (with --posteriors)
"""

import argparse
import os
import sys

import numpy as np
import pandas as pd

from seqhmm.cli.common import (
    add_em_args,
    add_optimizer_args,
    add_output_args,
    add_threads_args,
    add_verbose_args,
    add_version_args,
    config_from_args,
)
from seqhmm.core.covariates import read_covariates
from seqhmm.core.model import SeqHMM, SeqHMMError
from seqhmm.core.model_io import load_model, save_model
from seqhmm.inference.engine import posterior_probs
from seqhmm.training.fit import FitResult, fit_model


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        prog='seqhmm-fit',
        description='Fit a hidden Markov model or mixture hidden Markov model '
                    'to multichannel categorical sequences',
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument('-m', '--model', required=True,
                        help='Starting model (.json)')
    parser.add_argument('-i', '--observations', required=True,
                        help='Observations (.npy), shape (N, T, C) or (N, T)')
    parser.add_argument('--covariates', default=None,
                        help='Covariate table (CSV/TSV), one row per sequence')
    parser.add_argument('--covariate-columns', nargs='+', default=None,
                        help='Covariate columns to use (default: all)')
    parser.add_argument('--select', choices=['likelihood', 'path'], default='likelihood',
                        help='Cluster selection rule for hidden paths of mixtures')
    parser.add_argument('--posteriors', action='store_true',
                        help='Also write posterior state probabilities')
    add_output_args(parser)
    add_em_args(parser)
    add_optimizer_args(parser)
    add_threads_args(parser)
    add_verbose_args(parser)
    add_version_args(parser)
    return parser.parse_args(argv)


def attach_covariates(model: SeqHMM, X: np.ndarray, names) -> SeqHMM:
    """
    Use a design matrix for the mixture weights of a model.

    Coefficients of the intercept are kept; coefficients of new covariates
    start at zero.
    """
    if not model.is_mixture:
        raise SeqHMMError("Covariates are only used by mixture models.")
    model = model.copy()
    coef = np.zeros((X.shape[1], model.n_clusters))
    coef[0] = model.coefficients[0]
    if model.coefficients.shape == coef.shape:
        coef = model.coefficients.copy()
    model.covariates = X
    model.coefficients = coef
    model.covariate_names = list(names)
    return model


def paths_table(model: SeqHMM, result: FitResult) -> pd.DataFrame:
    """Hidden paths in long format."""
    paths = result.paths
    n_subjects, length = paths.states.shape
    labels = np.asarray(model.state_labels, dtype=object)
    global_states = paths.global_states(model.n_states)
    data = {
        'sequence': np.repeat(np.arange(n_subjects), length),
        'time': np.tile(np.arange(length), n_subjects),
        'state': labels[global_states].ravel(),
    }
    if model.is_mixture:
        data['cluster'] = np.repeat(np.asarray(model.cluster_names, dtype=object)[paths.cluster],
                                    length)
    return pd.DataFrame(data)


def posteriors_table(model: SeqHMM, probs: np.ndarray) -> pd.DataFrame:
    n_subjects, length, _ = probs.shape
    frame = pd.DataFrame(probs.reshape(n_subjects * length, -1), columns=model.state_labels)
    frame.insert(0, 'time', np.tile(np.arange(length), n_subjects))
    frame.insert(0, 'sequence', np.repeat(np.arange(n_subjects), length))
    return frame


def main(argv=None):
    args = parse_args(argv)

    for path in (args.model, args.observations, args.covariates):
        if path is not None and not os.path.exists(path):
            print(f"Error: File not found: {path}", file=sys.stderr)
            sys.exit(1)

    try:
        model = load_model(args.model)
        obs = np.load(args.observations, allow_pickle=False)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    print("seqhmm model estimation")
    print(f"  Model: {args.model} ({'mixture, ' if model.is_mixture else ''}"
          f"{model.n_clusters} cluster(s), states {model.n_states})")
    print(f"  Observations: {args.observations} {obs.shape}")

    if args.covariates:
        X, names = read_covariates(args.covariates, args.covariate_columns)
        model = attach_covariates(model, X, names)
        print(f"  Covariates: {', '.join(names)}")

    config = config_from_args(args)
    try:
        result = fit_model(model, obs, config)
    except SeqHMMError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    os.makedirs(args.output, exist_ok=True)
    model_path = save_model(result.model, os.path.join(args.output, 'model.json'))
    paths_path = os.path.join(args.output, 'paths.tsv')
    paths_table(result.model, result).to_csv(paths_path, sep='\t', index=False)

    print()
    if result.em is not None:
        status = 'converged' if result.em.monitor.tol_reached else 'iteration limit reached'
        print(f"  EM iterations: {result.em.monitor.n_iter} ({status})")
    if result.optimizer is not None:
        print(f"  Optimizer: {result.optimizer.message}")
    print(f"  Log-likelihood: {result.log_likelihood:.6f}")
    print(f"  df: {result.df}")
    print(f"  nobs: {result.nobs:g}")
    print(f"  BIC: {result.bic:.4f}")
    print(f"\nModel: {model_path}")
    print(f"Paths: {paths_path}")

    if args.posteriors:
        post_path = os.path.join(args.output, 'posteriors.tsv')
        probs = posterior_probs(result.model, obs, threads=config.threads)
        posteriors_table(result.model, probs).to_csv(post_path, sep='\t', index=False)
        print(f"Posteriors: {post_path}")


if __name__ == '__main__':
    main()
