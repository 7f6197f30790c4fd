"""seqhmm subject-chunk parallelism.

Subjects are independent given the parameters, so per-subject work is split
into contiguous chunks and run on a thread pool (the Numba kernels release
the GIL). Results come back in chunk order, which keeps every reduction
deterministic for a given thread count.
"""

import os
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, List, Optional, TypeVar

import numpy as np

R = TypeVar('R')


def resolve_threads(threads: Optional[int]) -> int:
    """Number of worker threads (0 or None = all CPUs)."""
    if not threads:
        return os.cpu_count() or 1
    return max(1, int(threads))


def chunk_slices(n_subjects: int, n_chunks: int) -> List[slice]:
    """Split range(n_subjects) into at most n_chunks contiguous, non-empty slices."""
    n_chunks = max(1, min(n_chunks, n_subjects))
    bounds = np.linspace(0, n_subjects, n_chunks + 1).astype(int)
    return [slice(int(a), int(b)) for a, b in zip(bounds[:-1], bounds[1:]) if b > a]


def map_subjects(func: Callable[[slice], R], n_subjects: int,
                 threads: int = 1) -> List[R]:
    """
    Apply func to chunks of subjects.

    Args:
        func: Callable taking a slice of subject indices
        n_subjects: Total number of subjects
        threads: Worker threads; 1 runs inline

    Returns:
        Results in chunk order
    """
    threads = resolve_threads(threads)
    slices = chunk_slices(n_subjects, threads)
    if len(slices) <= 1:
        return [func(s) for s in slices]

    results: List[Optional[R]] = [None] * len(slices)
    with ThreadPoolExecutor(max_workers=threads) as executor:
        futures = {executor.submit(func, s): i for i, s in enumerate(slices)}
        for future in as_completed(futures):
            results[futures[future]] = future.result()
    return results
