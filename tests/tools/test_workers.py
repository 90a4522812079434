import numpy as np
import pytest

from superdg.tools.workers import (
    InlineWorkerPool,
    WorkerArenas,
    make_worker_pool,
    partition_elements,
)


@pytest.mark.parametrize("n_elements", [1, 5, 16, 17])
@pytest.mark.parametrize("n_workers", [1, 2, 3, 8])
def test_partition_covers_all_elements(n_elements, n_workers):
    chunks = partition_elements(n_elements, n_workers)
    assert len(chunks) == min(n_elements, n_workers)
    assert chunks[0].start == 0
    assert chunks[-1].stop == n_elements
    for a, b in zip(chunks[:-1], chunks[1:]):
        assert a.stop == b.start
    assert all(c.stop > c.start for c in chunks)


def test_make_worker_pool():
    assert isinstance(make_worker_pool(1), InlineWorkerPool)
    with pytest.raises(ValueError):
        make_worker_pool(0)


def test_arenas_are_sized_per_chunk():
    arenas = WorkerArenas(10, 3)
    arenas.allocate("scratch", lambda m: (2, m, 4))
    for chunk, arena in zip(arenas.chunks, arenas.arenas):
        assert arena["scratch"].shape == (2, chunk.stop - chunk.start, 4)
    assert len(arenas) == 3


@pytest.mark.parametrize("n_workers", [1, 4])
def test_run_writes_disjoint_chunks(n_workers):
    n_elements = 11
    out = np.zeros(n_elements)
    arenas = WorkerArenas(n_elements, n_workers)
    arenas.allocate("buffer", lambda m: (m,))

    def job(worker_id, chunk, arena):
        arena["buffer"] = np.arange(chunk.start, chunk.stop, dtype=float) ** 2
        out[chunk] = arena["buffer"]

    arenas.run(job)
    np.testing.assert_array_equal(out, np.arange(n_elements, dtype=float) ** 2)


def test_run_propagates_errors():
    arenas = WorkerArenas(4, 2)

    def job(worker_id, chunk, arena):
        raise RuntimeError(f"worker {worker_id} failed")

    with pytest.raises(RuntimeError, match="failed"):
        arenas.run(job)


def test_pool_is_created_once():
    arenas = WorkerArenas(6, 3)
    pool = arenas.pool
    seen = []
    for _ in range(3):
        arenas.run(lambda worker_id, chunk, arena: seen.append(worker_id))
    assert arenas.pool is pool
    assert sorted(seen) == [0, 0, 0, 1, 1, 1, 2, 2, 2]
    arenas.close()


def test_closed_arenas_refuse_to_run():
    with WorkerArenas(4, 2) as arenas:
        arenas.run(lambda worker_id, chunk, arena: None)
        assert not arenas.closed
    assert arenas.closed
    # closing twice is harmless
    arenas.close()
    with pytest.raises(RuntimeError, match="closed"):
        arenas.run(lambda worker_id, chunk, arena: None)
