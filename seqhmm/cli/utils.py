#!/usr/bin/env python3
"""
seqhmm-utils: model inspection and sequence simulation.

Subcommands:
    inspect   Print model structure, parameters and degrees of freedom
    simulate  Simulate sequences from a model
"""

import argparse
import os
import sys

import numpy as np

from seqhmm.cli.common import add_output_args, add_version_args
from seqhmm.core.model import SeqHMM
from seqhmm.core.model_io import load_model
from seqhmm.core.simulate import simulate_mhmm


# =============================================================================
# inspect subcommand
# =============================================================================

def _print_matrix(rows, row_labels, col_labels, indent: str = "    "):
    width = max([10] + [len(c) for c in col_labels])
    label_width = max(len(r) for r in row_labels)
    print(indent + " " * label_width + "  " + "  ".join(f"{c:>{width}s}" for c in col_labels))
    for label, row in zip(row_labels, rows):
        values = "  ".join(f"{v:{width}.6f}" for v in row)
        print(f"{indent}{label:>{label_width}s}  {values}")


def describe_model(model: SeqHMM, full: bool = True) -> None:
    """Print a human-readable summary of a model."""
    kind = "Mixture hidden Markov model" if model.is_mixture else "Hidden Markov model"
    print(kind)
    print(f"  Clusters: {model.n_clusters}")
    print(f"  States: {model.n_states}")
    print(f"  Channels: {model.n_channels} ({', '.join(model.channel_names)})")
    print(f"  Symbols: {model.n_symbols}")
    print(f"  Degrees of freedom: {model.df}")
    print()

    for name, sub in zip(model.cluster_names, model.clusters):
        states = sub.state_names or [str(i + 1) for i in range(sub.n_states)]
        if model.is_mixture:
            print(f"{name}:")
        print("  Initial probabilities:")
        for s, p in zip(states, sub.initial):
            print(f"    {s}: {p:.6f}")
        if not full:
            continue
        print("  Transition matrix:")
        _print_matrix(sub.transition, states, states)
        for r, e in enumerate(sub.emission):
            print(f"  Emission matrix ({model.channel_names[r]}):")
            _print_matrix(e, states, model.symbol_names[r])
        print()

    if model.is_mixture:
        print("Coefficients:")
        _print_matrix(model.coefficients, model.covariate_names, model.cluster_names)
        if model.covariates is not None:
            print(f"  Covariates for {model.covariates.shape[0]} sequences")


def cmd_inspect(args):
    """Inspect a model file."""
    filepath = args.model
    if not os.path.exists(filepath):
        print(f"Error: File not found: {filepath}", file=sys.stderr)
        sys.exit(1)

    model = load_model(filepath)
    print(f"Model: {filepath}")
    describe_model(model, full=not args.brief)


# =============================================================================
# simulate subcommand
# =============================================================================

def cmd_simulate(args):
    """Simulate sequences and save them as .npy arrays."""
    if not os.path.exists(args.model):
        print(f"Error: File not found: {args.model}", file=sys.stderr)
        sys.exit(1)

    model = load_model(args.model)
    covariates = model.covariates
    if covariates is not None and covariates.shape[0] != args.n_sequences:
        print("Error: model covariates do not match --n-sequences "
              f"({covariates.shape[0]} != {args.n_sequences})", file=sys.stderr)
        sys.exit(1)

    sim = simulate_mhmm(model, args.n_sequences, args.length,
                        covariates=covariates, seed=args.seed)

    output = args.output if args.output.endswith('.npy') else args.output + '.npy'
    base = output[:-len('.npy')]
    np.save(output, sim.observations)
    np.save(base + '.states.npy', sim.states)
    print(f"Simulated {args.n_sequences} sequences of length {args.length}")
    print(f"  Observations: {output}")
    print(f"  States: {base}.states.npy")
    if sim.clusters is not None:
        np.save(base + '.clusters.npy', sim.clusters)
        counts = np.bincount(sim.clusters, minlength=model.n_clusters)
        for name, c in zip(model.cluster_names, counts):
            print(f"    {name}: {c}")
        print(f"  Clusters: {base}.clusters.npy")


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog='seqhmm-utils',
        description='seqhmm utilities: model inspection and simulation',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Subcommands:
  inspect   Print model structure, parameters and degrees of freedom
  simulate  Simulate sequences from a model

Examples:
  seqhmm-utils inspect model.json
  seqhmm-utils simulate model.json -n 100 -T 20 -o sim.npy
        """
    )
    add_version_args(parser)
    subparsers = parser.add_subparsers(dest='command')

    # --- inspect ---
    p_inspect = subparsers.add_parser(
        'inspect',
        help='Inspect a model file',
        description='Print model structure, parameters and degrees of freedom.'
    )
    p_inspect.add_argument('model', help='Model file (.json)')
    p_inspect.add_argument('--brief', action='store_true',
                           help='Only print initial probabilities')

    # --- simulate ---
    p_simulate = subparsers.add_parser(
        'simulate',
        help='Simulate sequences from a model',
        description='Simulate observations, hidden states and (for mixtures) clusters.',
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    p_simulate.add_argument('model', help='Model file (.json)')
    p_simulate.add_argument('-n', '--n-sequences', type=int, required=True,
                            help='Number of sequences')
    p_simulate.add_argument('-T', '--length', type=int, required=True,
                            help='Sequence length')
    p_simulate.add_argument('-s', '--seed', type=int, default=None,
                            help='Random seed')
    add_output_args(p_simulate, help_text='Output observations file (.npy)')

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    if args.command == 'inspect':
        cmd_inspect(args)
    elif args.command == 'simulate':
        cmd_simulate(args)


if __name__ == '__main__':
    main()
