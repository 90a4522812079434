import weakref
from multiprocessing.pool import ThreadPool
from typing import Callable, Iterable, List, Tuple, TypeVar

import numpy as np

from .array_management import ArrayManager

T = TypeVar("T")
R = TypeVar("R")


class InlineWorkerPool:
    """
    A no-overhead alternative to a thread pool, used when a single worker is
    requested.
    """

    def __enter__(self):
        return self

    def __exit__(self, *excinfo):
        pass

    def map(self, func: Callable[[T], R], iterable: Iterable[T]) -> List[R]:
        return list(map(func, iterable))

    def close(self):
        pass

    def join(self):
        pass


def make_worker_pool(n_workers: int):
    """
    Return a thread pool if n_workers > 1 or otherwise an inline worker pool.
    """
    if n_workers < 1:
        raise ValueError(f"n_workers must be a positive integer, got {n_workers}.")
    if n_workers == 1:
        return InlineWorkerPool()
    return ThreadPool(n_workers)


def _shutdown(pool):
    pool.close()
    pool.join()


def partition_elements(n_elements: int, n_workers: int) -> List[slice]:
    """
    Split the element range into at most `n_workers` contiguous, non-empty chunks.

    Args:
        n_elements: Number of elements.
        n_workers: Number of workers.

    Returns:
        List of slices, one per worker.
    """
    n_chunks = max(1, min(n_workers, n_elements))
    bounds = np.linspace(0, n_elements, n_chunks + 1).round().astype(int)
    return [slice(int(a), int(b)) for a, b in zip(bounds[:-1], bounds[1:]) if b > a]


class WorkerArenas:
    """
    Per-worker scratch arenas and the worker pool that runs them. Each worker owns
    one ArrayManager whose arrays are sized at setup for the worker's element chunk
    and reused at every stage. The pool lives as long as the arenas; call close()
    (or use the arenas as a context manager) to shut it down early.

    Attributes:
        chunks: Element slice owned by each worker.
        arenas: ArrayManager of each worker, indexed by worker id.
        pool: Thread pool, or an inline pool for a single worker.
    """

    def __init__(self, n_elements: int, n_workers: int):
        self.n_workers = n_workers
        self.chunks: List[slice] = partition_elements(n_elements, n_workers)
        self.arenas: List[ArrayManager] = [ArrayManager() for _ in self.chunks]
        self.pool = make_worker_pool(min(n_workers, len(self.chunks)))
        self._finalizer = weakref.finalize(self, _shutdown, self.pool)

    def allocate(self, name: str, shape_of_chunk: Callable[[int], Tuple[int, ...]]):
        """
        Allocate an array named `name` in every arena.

        Args:
            name: Name of the array.
            shape_of_chunk: Function mapping the number of elements of a chunk to
                the array shape.
        """
        for chunk, arena in zip(self.chunks, self.arenas):
            arena.allocate(name, shape_of_chunk(chunk.stop - chunk.start))

    def run(self, func: Callable[[int, slice, ArrayManager], None]):
        """
        Call `func(worker_id, chunk, arena)` for every worker, concurrently when more
        than one worker was requested. Each call must only write to its own chunk.

        Raises:
            RuntimeError: If the worker pool was closed.
        """
        if self.closed:
            raise RuntimeError("The worker pool was closed.")
        jobs = list(zip(range(len(self.chunks)), self.chunks, self.arenas))
        self.pool.map(lambda job: func(*job), jobs)

    @property
    def closed(self) -> bool:
        return not self._finalizer.alive

    def close(self):
        self._finalizer()

    def __enter__(self):
        return self

    def __exit__(self, *excinfo):
        self.close()

    def __len__(self) -> int:
        return len(self.chunks)
