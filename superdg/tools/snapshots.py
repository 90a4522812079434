import pickle
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, List, Tuple, Union

import pandas as pd


@dataclass(frozen=True)
class SnapshotPlaceholder:
    """
    Placeholder for a snapshot that is stored on disk.
    """

    path: Path

    def load(self) -> Any:
        with open(self.path, "rb") as f:
            return pickle.load(f)


class Snapshots:
    """
    Time-indexed store of solution snapshots, held in memory or as placeholders for
    pickled files written to a snapshot directory with an "index.csv" table.
    """

    def __init__(self):
        self.data: Dict[float, Union[Any, SnapshotPlaceholder]] = {}
        self.file_index: Dict[int, float] = {}

    @property
    def time_values(self) -> List[float]:
        return sorted(self.data.keys())

    @property
    def size(self) -> int:
        return len(self.data)

    def _check_t_exists(self, t: float):
        if t not in self.data:
            raise KeyError(f"No snapshot data available for time {t}.")

    def log(self, t: float, data: Any):
        """
        Log snapshot data at time `t`.

        Raises:
            ValueError: If snapshot data already exists for time `t`.
        """
        if t in self.data:
            raise ValueError(f"Snapshot data already exists for time {t}.")
        self.data[t] = data

    def unlog(self, t: float):
        self._check_t_exists(t)
        del self.data[t]

    def write(self, base: Path, t: float, discard: bool = False):
        """
        Write snapshot data at time `t` to `base` and append it to "index.csv".

        Args:
            base: Existing directory to which the snapshot data is written.
            t: Time at which to write the snapshot data.
            discard: If True, replace the in-memory data with a placeholder.
        """
        self._check_t_exists(t)
        if not base.exists():
            raise FileNotFoundError(f"Base directory {base} does not exist.")
        if t in self.file_index.values():
            raise ValueError(f"Snapshot data for time {t} already written to disk.")

        idx, filepath = self._next_index_and_path(base)
        with open(filepath, "wb") as f:
            pickle.dump(self.data[t], f)
        self.file_index[idx] = t

        index_path = base / "index.csv"
        pd.DataFrame([{"idx": idx, "t": t}]).to_csv(
            index_path, mode="a", header=not index_path.exists(), index=False
        )

        if discard:
            self.data[t] = SnapshotPlaceholder(filepath)

    def _next_index_and_path(self, base: Path) -> Tuple[int, Path]:
        idx = max(self.file_index.keys(), default=-1) + 1
        if idx > 9999:
            raise RuntimeError("Exceeded maximum number of snapshots (9999).")
        return idx, base / f"snapshot_{idx:04d}.pkl"

    def clear(self):
        self.data.clear()
        self.file_index.clear()

    @classmethod
    def load(cls, base: Path) -> "Snapshots":
        """
        Load snapshots as placeholders from a directory containing "index.csv" and
        files of the form "snapshot_XXXX.pkl".
        """
        index_path = Path(base) / "index.csv"
        if not index_path.exists():
            raise FileNotFoundError(f"Index file not found at {index_path}")

        instance = cls()
        for row in pd.read_csv(index_path).itertuples(index=False):
            idx, t = int(row.idx), float(row.t)
            filepath = Path(base) / f"snapshot_{idx:04d}.pkl"
            if not filepath.exists():
                raise FileNotFoundError(f"Snapshot file not found at {filepath}")
            instance.data[t] = SnapshotPlaceholder(filepath)
            instance.file_index[idx] = t
        return instance

    def __call__(self, t: float) -> Any:
        """
        Return the snapshot data at time `t`, loading it from disk if needed.
        """
        self._check_t_exists(t)
        snapshot = self.data[t]
        if isinstance(snapshot, SnapshotPlaceholder):
            return snapshot.load()
        return snapshot

    def __getitem__(self, n: int) -> Any:
        """
        Return the snapshot data at position `n` in time order.
        """
        if not isinstance(n, int):
            raise TypeError(f"Index must be an integer. Got {type(n)}.")
        if n < -self.size or n >= self.size:
            raise IndexError(
                f"Index {n} out of range. Valid range: [{-self.size}, {self.size - 1}]."
            )
        return self(self.time_values[n])

    def __iter__(self) -> Iterator[Tuple[float, Any]]:
        for t in self.time_values:
            yield t, self.data[t]

    def __contains__(self, t: float) -> bool:
        return t in self.data

    def __len__(self) -> int:
        return self.size

    def times(self) -> List[float]:
        return self.time_values
