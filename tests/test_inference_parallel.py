"""
Tests for seqhmm.inference.parallel module: subject chunking and thread mapping.
"""
import os

import pytest

from seqhmm.inference.parallel import chunk_slices, map_subjects, resolve_threads


class TestResolveThreads:
    def test_auto(self):
        assert resolve_threads(0) == (os.cpu_count() or 1)
        assert resolve_threads(None) == (os.cpu_count() or 1)

    @pytest.mark.parametrize("threads,expected", [(1, 1), (4, 4), (-2, 1)])
    def test_explicit(self, threads, expected):
        assert resolve_threads(threads) == expected


class TestChunkSlices:
    @pytest.mark.parametrize("n_subjects,n_chunks", [(10, 3), (10, 1), (3, 8), (1, 4), (100, 7)])
    def test_cover_all_subjects_in_order(self, n_subjects, n_chunks):
        slices = chunk_slices(n_subjects, n_chunks)
        covered = [i for s in slices for i in range(n_subjects)[s]]
        assert covered == list(range(n_subjects))
        assert len(slices) <= max(1, min(n_chunks, n_subjects))

    def test_no_empty_chunks(self):
        assert all(s.stop > s.start for s in chunk_slices(5, 5))

    def test_balanced(self):
        sizes = [s.stop - s.start for s in chunk_slices(10, 3)]
        assert max(sizes) - min(sizes) <= 1


class TestMapSubjects:
    def test_results_in_chunk_order(self):
        results = map_subjects(lambda s: list(range(20)[s]), 20, threads=4)
        assert [i for part in results for i in part] == list(range(20))

    def test_serial(self):
        results = map_subjects(lambda s: (s.start, s.stop), 6, threads=1)
        assert results == [(0, 6)]

    def test_exceptions_propagate(self):
        def fail(s):
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError, match="boom"):
            map_subjects(fail, 10, threads=2)
