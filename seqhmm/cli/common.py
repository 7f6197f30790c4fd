"""Shared argparse argument factories for seqhmm CLI tools.

Each function adds a group of related arguments to an ArgumentParser.
Default values can be overridden per-script where needed.
"""

import argparse

from seqhmm.training.fit import FitConfig


def add_em_args(parser: argparse.ArgumentParser,
                max_iter: int = 1000,
                reltol: float = 1e-10) -> None:
    """Add EM arguments (--no-em, --max-iter, --reltol)."""
    parser.add_argument(
        '--no-em', dest='em_step', action='store_false',
        help="Skip the EM step"
    )
    parser.add_argument(
        '--max-iter', type=int, default=max_iter,
        help=f"Maximum number of EM iterations (default: {max_iter})"
    )
    parser.add_argument(
        '--reltol', type=float, default=reltol,
        help=f"Relative log-likelihood change at which EM stops (default: {reltol:g})"
    )


def add_optimizer_args(parser: argparse.ArgumentParser,
                       method: str = 'L-BFGS-B',
                       maxiter: int = 10000,
                       bound: float = 25.0) -> None:
    """Add direct-optimization arguments (--local-step, --optimizer, --optimizer-maxiter, --bound)."""
    parser.add_argument(
        '--local-step', action='store_true',
        help="Refine the estimates by maximizing the likelihood with the analytic gradient"
    )
    parser.add_argument(
        '--optimizer', dest='optimizer_method', default=method,
        help=f"scipy.optimize.minimize method (default: {method})"
    )
    parser.add_argument(
        '--optimizer-maxiter', type=int, default=maxiter,
        help=f"Maximum optimizer iterations (default: {maxiter})"
    )
    parser.add_argument(
        '--bound', type=float, default=bound,
        help=f"Box bound on the unconstrained parameters (default: {bound:g})"
    )


def add_threads_args(parser: argparse.ArgumentParser,
                     default: int = 1) -> None:
    """Add --threads argument."""
    parser.add_argument(
        '--threads', '-t', type=int, default=default,
        help=f"Worker threads (0=auto, default: {default})"
    )


def add_output_args(parser: argparse.ArgumentParser,
                    required: bool = True,
                    help_text: str = "Output directory") -> None:
    """Add -o/--output argument."""
    parser.add_argument(
        '-o', '--output', required=required,
        help=help_text
    )


def add_verbose_args(parser: argparse.ArgumentParser) -> None:
    """Add --verbose flag."""
    parser.add_argument(
        '-v', '--verbose', action='store_true',
        help="Verbose output"
    )


def add_version_args(parser: argparse.ArgumentParser) -> None:
    """Add --version flag."""
    from seqhmm import __version__
    parser.add_argument(
        '--version', action='version',
        version=f'%(prog)s {__version__}'
    )


def config_from_args(args: argparse.Namespace) -> FitConfig:
    """Build a FitConfig from parsed arguments; absent options keep their defaults."""
    config = FitConfig()
    for name in config.to_dict():
        if hasattr(args, name):
            setattr(config, name, getattr(args, name))
    return config
