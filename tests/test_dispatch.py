from io import StringIO

import numpy as np
import pytest

from allvsall.containers import Alignment, GlobalAlignmentError, Record
from allvsall.engines.dispatch import align_all, n_pairs, pairs, self_hits, WorkerPool, WorkerError
from allvsall.engines.pairwise import GlobalAligner, ScoreMatrix
from allvsall.io.tabular import ResultSink, header


@pytest.fixture(scope='module')
def blosum62():
    return ScoreMatrix.blosum62()


@pytest.fixture(scope='module')
def proteins():
    rng = np.random.default_rng(0)
    alphabet = np.frombuffer(ScoreMatrix.AMINO, dtype=np.uint8)
    return [
        Record(rng.choice(alphabet, size=int(rng.integers(5, 40))).tobytes(), f'p{i}') for i in range(12)
    ]


def run(records, **kwargs):
    handle = StringIO()
    with ResultSink(handle, show_operations=kwargs.get('show_operations', False)) as sink:
        n = align_all(records, sink, **kwargs)
    return n, handle.getvalue().splitlines()


class TestPairs:
    @pytest.mark.parametrize('n', [0, 1, 2, 5, 12])
    def test_count(self, n):
        records = [Record(b'M', f'r{i}') for i in range(n)]
        assert len(list(pairs(records))) == n_pairs(n) == n * (n - 1) // 2

    def test_unique_unordered_distinct(self, proteins):
        seen = [(str(x), str(y)) for x, y in pairs(proteins)]
        assert len(set(seen)) == len(seen)
        assert all(x != y for x, y in seen)
        assert not {(y, x) for x, y in seen} & set(seen)

    def test_index_order(self):
        records = [Record(b'M', i) for i in 'abc']
        assert [(str(x), str(y)) for x, y in pairs(records)] == [('a', 'b'), ('a', 'c'), ('b', 'c')]

    def test_lazy(self, proteins):
        it = pairs(proteins)
        assert next(it) == (proteins[0], proteins[1])


class TestSelfHits:
    def test_two_lines_per_record(self):
        handle = StringIO()
        with ResultSink(handle) as sink:
            assert self_hits([Record(b'MSK', 'A'), Record(b'MAK', 'B')], sink) == 2
        assert handle.getvalue().splitlines() == [
            'A\tA\t3\t3\t3\t3\t1.0', 'A\tA\t3\t3\t3\t3\t1.0', 'B\tB\t3\t3\t3\t3\t1.0', 'B\tB\t3\t3\t3\t3\t1.0'
        ]


class TestAlignAll:
    def test_two_records(self):
        n, lines = run([Record(b'MSK', 'A'), Record(b'MAK', 'B')])
        assert n == 1
        assert lines[0] == header()
        assert sorted(lines[1:]) == sorted([
            'A\tA\t3\t3\t3\t3\t1.0', 'A\tA\t3\t3\t3\t3\t1.0',
            'B\tB\t3\t3\t3\t3\t1.0', 'B\tB\t3\t3\t3\t3\t1.0',
            'A\tB\t3\t3\t3\t2\t0.667', 'B\tA\t3\t3\t3\t2\t0.667',
        ])

    def test_identical_sequences(self):
        _, lines = run([Record(b'MKTAY', 'C'), Record(b'MKTAY', 'D')])
        assert 'C\tD\t5\t5\t5\t5\t1.0' in lines
        assert 'D\tC\t5\t5\t5\t5\t1.0' in lines

    def test_operations_column(self):
        _, lines = run([Record(b'WWWW', 'x'), Record(b'WW', 'y')], show_operations=True)
        assert lines[0] == header(show_operations=True)
        assert 'x\ty\t4\t2\t4\t2\t0.5\tDDMM' in lines
        assert 'y\tx\t2\t4\t4\t2\t0.5\tIIMM' in lines
        assert 'x\tx\t4\t4\t4\t4\t1.0\tMMMM' in lines

    def test_empty_input(self):
        n, lines = run([])
        assert n == 0
        assert lines == [header()]

    @pytest.mark.parametrize('threads', [1, 3, 4])
    def test_line_count_and_pairing(self, proteins, threads):
        n, lines = run(proteins, threads=threads, queue_size=2)
        assert n == n_pairs(len(proteins))
        assert len(lines) == 2 * n + 2 * len(proteins) + 1
        assert lines[0] == header()
        body = [line.split('\t') for line in lines[1:]]
        for first, second in zip(body[::2], body[1::2]):
            assert (first[0], first[1]) == (second[1], second[0])
            assert first[4:] == second[4:]
        pairs_seen = {(row[0], row[1]) for row in body}
        assert len(pairs_seen) == len(proteins) ** 2

    def test_thread_count_does_not_change_results(self, proteins):
        _, single = run(proteins, threads=1)
        _, many = run(proteins, threads=4)
        assert single[0] == many[0]
        assert sorted(single[1:]) == sorted(many[1:])

    def test_worker_failure_is_raised(self, proteins, monkeypatch):
        def broken_align(self, x, y):
            return Alignment(0, 1, len(x), 0, len(y), len(x), len(y), np.zeros(0, dtype=np.uint8))

        monkeypatch.setattr(GlobalAligner, 'align', broken_align)
        with pytest.raises(WorkerError) as info:
            run(proteins, threads=2, queue_size=1)
        assert isinstance(info.value.__cause__, GlobalAlignmentError)


class TestWorkerPool:
    def test_round_robin(self, blosum62, proteins):
        with ResultSink(StringIO()) as sink:
            with WorkerPool.start(3, -10, -1, blosum62, sink) as pool:
                assert pool.dispatch(list(pairs(proteins))[:10]) == 10
            assert [w.n_jobs for w in pool.workers] == [4, 3, 3]
            assert pool.n_dispatched == 10
        assert sink.n_lines == 20

    def test_workers_share_nothing_mutable(self, blosum62):
        with ResultSink(StringIO()) as sink:
            with WorkerPool.start(2, -10, -1, blosum62, sink) as pool:
                a, b = pool.workers
                assert a.aligner is not b.aligner
                assert a.queue is not b.queue

    def test_needs_a_worker(self, blosum62):
        with ResultSink(StringIO()) as sink:
            with pytest.raises(ValueError):
                WorkerPool.start(0, -10, -1, blosum62, sink)

    def test_dispatch_after_shutdown(self, blosum62):
        with ResultSink(StringIO()) as sink:
            pool = WorkerPool.start(1, -10, -1, blosum62, sink)
            pool.shutdown_and_join()
            with pytest.raises(RuntimeError):
                pool.dispatch([])
