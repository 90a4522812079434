from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple, Union

import numpy as np

# define custom types
ArrayLike = np.ndarray
IndexLike = Union[int, slice, np.ndarray]


def merge_indices(
    *indices: Union[int, slice, Tuple[int, ...], List[int], np.ndarray],
    as_array: bool = False,
) -> IndexLike:
    """
    Merge integers, slices, or sequences of integers into a single slice when they
    form a contiguous range, or a numpy array of indices otherwise.

    Args:
        *indices: Indices, slices, or sequences of integers to merge.
        as_array: If True, always return a numpy array.

    Returns:
        Merged slice or numpy array of indices.
    """
    idxs: List[int] = []
    for s in indices:
        if isinstance(s, (int, np.integer)):
            if s < 0:
                raise ValueError(f"Index must be non-negative, got {s}.")
            idxs.append(int(s))
        elif isinstance(s, slice):
            if s.stop is None or s.stop < 0:
                raise ValueError("Slice stop must be specified and non-negative.")
            if s.step not in (None, 1):
                raise ValueError("Only slices with step=1 are supported.")
            idxs.extend(range(s.start or 0, s.stop))
        elif isinstance(s, (tuple, list, np.ndarray)):
            s_arr = np.asarray(s)
            if s_arr.size == 0:
                continue
            if s_arr.ndim != 1 or not np.issubdtype(s_arr.dtype, np.integer):
                raise ValueError("Expected a 1D sequence of integers.")
            idxs.extend(int(i) for i in s_arr)
        else:
            raise TypeError(f"Unsupported index type {type(s)}.")
    idxs = sorted(set(idxs))
    if not as_array and idxs and idxs == list(range(idxs[0], idxs[-1] + 1)):
        return slice(idxs[0], idxs[-1] + 1)
    if not as_array and not idxs:
        return slice(0, 0)
    return np.array(idxs, dtype=np.int_)


@dataclass
class VariableIndexMap:
    """
    Mapping of conservative variable names to their index along the first axis of a
    solution array, with named groups of variables (e.g. the momentum components).

    Args:
        var_idx_map: Dictionary mapping variable names to their indices.
        group_var_map: Dictionary mapping group names to lists of variable names.

    Attributes:
        nvars: Number of variables.
    """

    var_idx_map: Dict[str, int] = field(default_factory=dict)
    group_var_map: Dict[str, List[str]] = field(default_factory=dict)
    nvars: int = field(init=False)
    _cache: Dict[Tuple[str, bool], IndexLike] = field(default_factory=dict, init=False)

    def __post_init__(self):
        self._refresh_and_validate()

    def _refresh_and_validate(self):
        idxs = sorted(set(self.var_idx_map.values()))
        if idxs != list(range(len(idxs))):
            raise ValueError(
                f"Variable indices must be contiguous starting from 0, got {idxs}."
            )
        self.nvars = len(idxs)
        for group_name, members in self.group_var_map.items():
            if group_name in self.var_idx_map:
                raise ValueError(f"Group '{group_name}' shadows a variable name.")
            unknown = set(members) - set(self.var_idx_map)
            if unknown:
                raise ValueError(
                    f"Group '{group_name}' contains unknown variables: {unknown}"
                )
        self._cache.clear()

    @property
    def names(self) -> List[str]:
        """Variable names ordered by index."""
        return sorted(self.var_idx_map, key=lambda name: self.var_idx_map[name])

    def add_var(self, name: str, idx: int):
        if name in self:
            raise KeyError(f"Name '{name}' already exists.")
        if idx < 0:
            raise ValueError("Index must be non-negative.")
        self.var_idx_map[name] = idx
        self._refresh_and_validate()

    def add_var_to_group(self, group_name: str, var_names: Union[str, Iterable[str]]):
        var_names = [var_names] if isinstance(var_names, str) else list(var_names)
        if group_name in self.var_idx_map:
            raise KeyError(f"Name '{group_name}' already exists as a variable.")
        self.group_var_map.setdefault(group_name, []).extend(var_names)
        self._refresh_and_validate()

    def __contains__(self, name: str) -> bool:
        return name in self.var_idx_map or name in self.group_var_map

    def __call__(self, name: str, keepdims: bool = False) -> IndexLike:
        """
        Get the index or slice of a variable or group.

        Args:
            name: Name of the variable or group.
            keepdims: If True, a single variable is returned as a length-1 slice.

        Returns:
            Index, slice, or array of indices.
        """
        key = (name, keepdims)
        if key in self._cache:
            return self._cache[key]

        out: IndexLike
        if name in self.var_idx_map:
            idx = self.var_idx_map[name]
            out = slice(idx, idx + 1) if keepdims else idx
        elif name in self.group_var_map:
            out = merge_indices([self.var_idx_map[v] for v in self.group_var_map[name]])
        else:
            raise KeyError(f"Unknown variable or group '{name}'.")

        self._cache[key] = out
        return out

    def to_dict(self) -> Dict[str, Any]:
        return dict(
            var_idx_map=dict(self.var_idx_map),
            group_var_map={k: list(v) for k, v in self.group_var_map.items()},
        )


class ArrayManager:
    """
    Registry of named, preallocated arrays. Arrays are modified in place so that the
    memory allocated at setup is reused for the lifetime of a solver.
    """

    def __init__(self, arrays: Optional[Dict[str, ArrayLike]] = None):
        """
        Initializes the array manager.

        Args:
            arrays: Dictionary of NumPy arrays.
        """
        self.arrays: Dict[str, ArrayLike] = arrays if arrays else {}

    def __repr__(self) -> str:
        return f"ArrayManager({list(self.arrays.keys())})"

    def _check_name_exists(self, name: str):
        if name not in self.arrays:
            raise KeyError(f"Array with name '{name}' not found.")

    def _check_name_available(self, name: str):
        if name in self.arrays:
            raise KeyError(f"Array with name '{name}' already exists.")

    def add(self, name: str, array: ArrayLike):
        """
        Add an array to the manager.

        Args:
            name: Name of the array.
            array: NumPy array.
        """
        self._check_name_available(name)
        self.arrays[name] = array

    def allocate(
        self, name: str, shape: Tuple[int, ...], fill: float = np.nan
    ) -> ArrayLike:
        """
        Allocate a new float array filled with `fill` and return it.
        """
        self.add(name, np.full(shape, fill, dtype=np.float64))
        return self.arrays[name]

    def remove(self, name: str):
        self._check_name_exists(name)
        del self.arrays[name]

    def clear(self):
        """
        Remove all arrays from the manager.
        """
        self.arrays.clear()

    def __getitem__(self, name: str) -> ArrayLike:
        self._check_name_exists(name)
        return self.arrays[name]

    def get_numpy_copy(self, name: str) -> np.ndarray:
        """
        Get a copy of an array.

        Args:
            name: Name of the array.
        """
        return self[name].copy()

    def __setitem__(self, name: str, array: ArrayLike):
        """
        Modify an existing array in place. Replacing arrays entirely is not allowed.

        Args:
            name: Name of the array.
            array: New values to assign in-place.
        """
        self._check_name_exists(name)
        if self.arrays[name].shape != array.shape:
            raise ValueError(
                f"Cannot assign array with shape {array.shape} to array with shape "
                f"{self.arrays[name].shape}."
            )
        if self.arrays[name].dtype != array.dtype:
            raise ValueError(
                f"Cannot assign array with dtype {array.dtype} to array with dtype "
                f"{self.arrays[name].dtype}."
            )
        self.arrays[name][...] = array

    def __contains__(self, name: str) -> bool:
        return name in self.arrays

    def nbytes(self) -> int:
        """
        Total number of bytes held by the managed arrays.
        """
        return int(sum(a.nbytes for a in self.arrays.values()))

    def to_dict(self) -> Dict[str, Any]:
        """
        Return a dictionary representation of the manager.
        """
        return dict(names=list(self.arrays.keys()), nbytes=self.nbytes())
