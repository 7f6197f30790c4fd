"""
Observation tensors for multichannel categorical sequences.

Observations are stored as an integer array of shape (n_sequences,
sequence_length, n_channels). Symbols are coded 0..n_symbols[r]-1 per
channel and missing observations are coded MISSING.
"""

import itertools
from typing import List, Optional, Sequence, Tuple

import numpy as np

MISSING = -1


def as_observations(obs) -> np.ndarray:
    """
    Coerce observations to a C-contiguous int64 array of shape (N, T, C).

    A 2D array is taken to be single-channel (N, T); a 1D array is a single
    single-channel sequence.
    """
    obs = np.asarray(obs)
    if obs.ndim == 1:
        obs = obs[np.newaxis, :, np.newaxis]
    elif obs.ndim == 2:
        obs = obs[:, :, np.newaxis]
    elif obs.ndim != 3:
        raise ValueError(f"Observations must be 1D, 2D or 3D, got shape {obs.shape}")
    return np.ascontiguousarray(obs, dtype=np.int64)


def check_observations(obs: np.ndarray, n_symbols: Sequence[int]) -> None:
    """Raise ValueError if any code is outside [0, n_symbols[r]) or MISSING."""
    if obs.shape[2] != len(n_symbols):
        raise ValueError(
            f"Observations have {obs.shape[2]} channels but the model has {len(n_symbols)}."
        )
    for r, s in enumerate(n_symbols):
        channel = obs[:, :, r]
        bad = (channel != MISSING) & ((channel < 0) | (channel >= s))
        if np.any(bad):
            raise ValueError(
                f"Channel {r} contains symbol codes outside [0, {s}) "
                f"(missing values must be coded {MISSING})."
            )


def n_observations(obs: np.ndarray) -> float:
    """
    Number of observed (non-missing) time points.

    Non-missing symbols are summed over channels and divided by the number of
    channels, so a multichannel time point counts once.
    """
    obs = as_observations(obs)
    return float(np.sum(obs != MISSING)) / obs.shape[2]


def combine_channels(obs: np.ndarray, n_symbols: Sequence[int],
                     combine_missing: bool = True,
                     all_combinations: bool = False) -> Tuple[np.ndarray, List[tuple]]:
    """
    Merge multichannel observations into a single channel.

    Each time point becomes the tuple of its per-channel symbols.

    Args:
        obs: Observations, shape (N, T, C)
        n_symbols: Alphabet size of each channel
        combine_missing: If True, the combined symbol is missing whenever any
            channel is missing. Otherwise a missing channel is kept as its own
            level (coded MISSING inside the alphabet tuples).
        all_combinations: If True, the alphabet holds every combination of
            channel symbols; otherwise only combinations present in the data.

    Returns:
        codes: Single-channel observations, shape (N, T, 1)
        alphabet: List of symbol tuples; codes index into it
    """
    obs = as_observations(obs)
    n_seq, length, n_channels = obs.shape
    missing_any = np.any(obs == MISSING, axis=2)

    levels = []
    for r in range(n_channels):
        lev = list(range(n_symbols[r]))
        if not combine_missing:
            lev.append(MISSING)
        levels.append(lev)

    if all_combinations:
        alphabet = list(itertools.product(*levels))
    else:
        keep = ~missing_any if combine_missing else np.ones_like(missing_any)
        seen = {tuple(int(v) for v in row) for row in obs[keep]}
        alphabet = [combo for combo in itertools.product(*levels) if combo in seen]

    index = {combo: i for i, combo in enumerate(alphabet)}
    codes = np.full((n_seq, length, 1), MISSING, dtype=np.int64)
    for n in range(n_seq):
        for t in range(length):
            if combine_missing and missing_any[n, t]:
                continue
            codes[n, t, 0] = index[tuple(int(v) for v in obs[n, t])]

    return codes, alphabet


def symbol_counts(obs: np.ndarray, n_symbols: Sequence[int],
                  time_range: Optional[slice] = None) -> List[np.ndarray]:
    """
    Per-channel symbol frequencies, optionally over a slice of time points.

    Useful for starting values of emission matrices.
    """
    obs = as_observations(obs)
    if time_range is not None:
        obs = obs[:, time_range, :]
    counts = []
    for r, s in enumerate(n_symbols):
        channel = obs[:, :, r]
        counts.append(np.bincount(channel[channel != MISSING], minlength=s).astype(float))
    return counts
