from collections import Counter
from dataclasses import dataclass, field
from itertools import product
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

from .basis import LobattoLegendreBasis, apply_along_axis
from .errors import MeshInconsistencyError
from .tools.array_management import ArrayLike

AXIS_NAMES = ("x", "y", "z")

Mapping = Callable[[np.ndarray], np.ndarray]


def boundary_tag(direction: int, side: int) -> str:
    """
    Tag of the domain boundary in `direction` on `side` (0 = minus, 1 = plus),
    e.g. "x_neg" or "y_pos".
    """
    return f"{AXIS_NAMES[direction]}_{'pos' if side else 'neg'}"


@dataclass
class ElementGeometry:
    """
    Per-element geometric factors at the LGL nodes.

    Attributes:
        node_coordinates: Physical coordinates. Has shape (ndims, nel, n, ..., n).
        jacobian: Determinant J of the mapping. Has shape (nel, n, ..., n).
        inverse_jacobian: 1 / J.
        contravariant: contravariant[i, k] is the k-th component of the scaled
            contravariant vector Ja^i = J grad(xi^i). Has shape
            (ndims, ndims, nel, n, ..., n).
    """

    node_coordinates: np.ndarray
    jacobian: np.ndarray
    inverse_jacobian: np.ndarray
    contravariant: np.ndarray

    @property
    def ndims(self) -> int:
        return self.node_coordinates.shape[0]

    @property
    def n_elements(self) -> int:
        return self.jacobian.shape[0]

    def select(self, elements: Union[slice, np.ndarray]) -> "ElementGeometry":
        """
        Geometric factors of a subset of the elements (views for slices).
        """
        return ElementGeometry(
            node_coordinates=self.node_coordinates[:, elements],
            jacobian=self.jacobian[elements],
            inverse_jacobian=self.inverse_jacobian[elements],
            contravariant=self.contravariant[:, :, elements],
        )

    def face_normal(self, direction: int, side: int) -> np.ndarray:
        """
        Contravariant vector Ja^direction on the minus (0) or plus (1) face of every
        element, pointing in the +xi direction. Has shape (ndims, nel, n, ..., n)
        with ndims - 1 face node axes.
        """
        n = self.jacobian.shape[1]
        return np.take(
            self.contravariant[direction], 0 if side == 0 else n - 1, axis=2 + direction
        )

    def face_coordinates(self, direction: int, side: int) -> np.ndarray:
        n = self.jacobian.shape[1]
        return np.take(
            self.node_coordinates, 0 if side == 0 else n - 1, axis=2 + direction
        )


def calc_metric_terms(
    basis: LobattoLegendreBasis, node_coordinates: np.ndarray
) -> ElementGeometry:
    """
    Compute the Jacobian and contravariant vectors of curved elements. Metric terms use
    the cross-product form in 2D and the conservative curl form in 3D, so the
    discrete metric identities sum_i D_i Ja^i = 0 hold and the normals on shared
    faces agree on both sides.

    Args:
        basis: LobattoLegendreBasis of the elements.
        node_coordinates: Array with shape (ndims, nel, n, ..., n).

    Returns:
        ElementGeometry of the elements.

    Raises:
        MeshInconsistencyError: If an element is degenerate or inverted.
    """
    ndims = node_coordinates.shape[0]
    D = basis.derivative_matrix
    X = node_coordinates

    def d(f: np.ndarray, i: int) -> np.ndarray:
        # derivative along reference direction i of an array with shape (nel, n, ...)
        return apply_along_axis(np, D, f, 1 + i)

    # covariant basis dX[k][i] = dx_k / dxi_i
    dX = [[d(X[k], i) for i in range(ndims)] for k in range(ndims)]
    contravariant = np.empty((ndims,) + X.shape)

    if ndims == 1:
        jacobian = dX[0][0]
        contravariant[0, 0] = 1.0
    elif ndims == 2:
        jacobian = dX[0][0] * dX[1][1] - dX[0][1] * dX[1][0]
        contravariant[0, 0] = dX[1][1]
        contravariant[0, 1] = -dX[0][1]
        contravariant[1, 0] = -dX[1][0]
        contravariant[1, 1] = dX[0][0]
    else:
        jacobian = (
            dX[0][0] * (dX[1][1] * dX[2][2] - dX[1][2] * dX[2][1])
            - dX[0][1] * (dX[1][0] * dX[2][2] - dX[1][2] * dX[2][0])
            + dX[0][2] * (dX[1][0] * dX[2][1] - dX[1][1] * dX[2][0])
        )
        for i in range(3):
            j, k = (i + 1) % 3, (i + 2) % 3
            for n in range(3):
                m, l = (n + 1) % 3, (n + 2) % 3
                contravariant[i, n] = d(X[l] * dX[m][j], k) - d(X[l] * dX[m][k], j)

    if not np.all(jacobian > 0):
        bad = sorted(set(int(e) for e in np.argwhere(~(jacobian > 0))[:, 0]))
        raise MeshInconsistencyError(
            f"Non-positive Jacobian in element(s) {bad[:10]}; the mapping is "
            "degenerate or inverted."
        )

    return ElementGeometry(
        node_coordinates=X,
        jacobian=jacobian,
        inverse_jacobian=1.0 / jacobian,
        contravariant=contravariant,
    )


@dataclass
class BoundaryFaces:
    """
    Element faces on one side of the domain.

    Attributes:
        direction: Reference direction normal to the faces.
        side: 0 for the minus face of the elements, 1 for the plus face.
        tag: Boundary tag, e.g. "x_neg".
        elements: Element ids.
    """

    direction: int
    side: int
    tag: str
    elements: np.ndarray


@dataclass
class MortarFaces:
    """
    Non-conforming faces normal to `direction`, each coupling one large element to
    2^(ndims - 1) small elements.

    Attributes:
        direction: Reference direction normal to the faces.
        large: Large element ids. Has shape (n_mortars,).
        large_side: 0 where the large element lies on the minus side of the face,
            1 where it lies on the plus side. Has shape (n_mortars,).
        small: Small element ids ordered lexicographically along the tangential
            axes (lower half first). Has shape (n_mortars, 2^(ndims - 1)).
    """

    direction: int
    large: np.ndarray
    large_side: np.ndarray
    small: np.ndarray

    def __len__(self) -> int:
        return len(self.large)


class _MeshConnectivity:
    """
    Shared connectivity containers and checks of the mesh types.
    """

    ndims: int
    n_elements: int
    periodicity: Tuple[bool, ...]
    interfaces: List[Tuple[np.ndarray, np.ndarray]]
    boundaries: List[BoundaryFaces]
    mortars: List[MortarFaces]

    def node_coordinates(self, basis: LobattoLegendreBasis) -> np.ndarray:
        raise NotImplementedError

    def geometry(self, basis: LobattoLegendreBasis) -> ElementGeometry:
        """
        Geometric factors of every element at the nodes of `basis`.
        """
        return calc_metric_terms(basis, self.node_coordinates(basis))

    @property
    def is_conforming(self) -> bool:
        return all(len(m) == 0 for m in self.mortars)

    @property
    def boundary_tags(self) -> List[str]:
        return sorted(set(b.tag for b in self.boundaries))

    def _claimed_faces(self) -> Counter:
        claims: Counter = Counter()
        for d, (left, right) in enumerate(self.interfaces):
            claims.update((int(e), d, 1) for e in left)
            claims.update((int(e), d, 0) for e in right)
        for b in self.boundaries:
            claims.update((int(e), b.direction, b.side) for e in b.elements)
        for m in self.mortars:
            for large, side, small in zip(m.large, m.large_side, m.small):
                claims[(int(large), m.direction, 1 - int(side))] += 1
                claims.update((int(e), m.direction, int(side)) for e in small)
        return claims

    def validate(self, basis: Optional[LobattoLegendreBasis] = None, atol: float = 1e-10):
        """
        Check the connectivity: every element face must be claimed exactly once by
        an interface, a boundary or a mortar. With a basis, the face node
        coordinates of conforming interfaces and mortars must also match up to a
        constant (periodic) shift.

        Raises:
            MeshInconsistencyError: If the connectivity is inconsistent.
        """
        claims = self._claimed_faces()
        for e in range(self.n_elements):
            for d in range(self.ndims):
                for side in (0, 1):
                    count = claims.get((e, d, side), 0)
                    if count != 1:
                        raise MeshInconsistencyError(
                            f"Face {boundary_tag(d, side)} of element {e} is claimed "
                            f"{count} times by the connectivity."
                        )
        if len(claims) != self.n_elements * 2 * self.ndims:
            raise MeshInconsistencyError("Connectivity references unknown elements.")
        if basis is not None:
            self._validate_face_coordinates(basis, atol)

    def _validate_face_coordinates(self, basis: LobattoLegendreBasis, atol: float):
        x = self.node_coordinates(basis)
        n = basis.n_nodes
        tangential = tuple(range(2, self.ndims + 1))

        def check(x_a: np.ndarray, x_b: np.ndarray, what: str):
            shift = x_a - x_b
            mean = shift.mean(axis=tangential, keepdims=True) if tangential else shift
            if np.max(np.abs(shift - mean), initial=0.0) > atol:
                raise MeshInconsistencyError(f"Face coordinates do not match at {what}.")

        for d, (left, right) in enumerate(self.interfaces):
            if len(left) == 0:
                continue
            check(
                np.take(x[:, left], n - 1, axis=2 + d),
                np.take(x[:, right], 0, axis=2 + d),
                f"interfaces in direction {AXIS_NAMES[d]}",
            )
        if self.is_conforming:
            return
        from .mortar import MortarL2

        mortar = MortarL2(basis)
        for m in self.mortars:
            if len(m) == 0:
                continue
            d = m.direction
            large_node = np.where(m.large_side == 0, n - 1, 0)
            small_node = np.where(m.large_side == 0, 0, n - 1)
            x_large = np.stack(
                [np.take(x[:, e], i, axis=1 + d) for e, i in zip(m.large, large_node)],
                axis=1,
            )
            tang_axes = tuple(range(2, self.ndims + 1))
            for k, x_mortar in enumerate(mortar.prolong(np, x_large, tang_axes)):
                x_small = np.stack(
                    [
                        np.take(x[:, e], i, axis=1 + d)
                        for e, i in zip(m.small[:, k], small_node)
                    ],
                    axis=1,
                )
                check(x_mortar, x_small, f"mortars in direction {AXIS_NAMES[d]}")

    def to_dict(self) -> dict:
        return dict(
            type=type(self).__name__,
            ndims=self.ndims,
            n_elements=self.n_elements,
            periodicity=list(self.periodicity),
        )


def _normalize_periodicity(periodicity, ndims: int) -> Tuple[bool, ...]:
    if isinstance(periodicity, bool):
        return (periodicity,) * ndims
    periodicity = tuple(bool(p) for p in periodicity)
    if len(periodicity) != ndims:
        raise ValueError(f"Expected {ndims} periodicity flags, got {len(periodicity)}.")
    return periodicity


@dataclass
class StructuredMesh(_MeshConnectivity):
    """
    Logically Cartesian mesh of curved elements obtained by mapping the reference
    domain [-1, 1]^ndims with a smooth `mapping`. Without a mapping, the elements
    are the uniform partition of the box [coordinates_min, coordinates_max].

    Args:
        cells_per_dimension: Number of elements along each reference direction.
        mapping: Optional function mapping reference coordinates with shape
            (ndims, ...) in [-1, 1] to physical coordinates of the same shape.
        coordinates_min, coordinates_max: Box limits used without a mapping.
        periodicity: Periodicity flag for all or for each direction.

    Attributes:
        ndims: Number of dimensions.
        n_elements: Number of elements, numbered in C order of the cell indices.
        interfaces: Per direction, (left, right) arrays of element ids.
        boundaries: BoundaryFaces of the non-periodic directions.
        mortars: Always empty.
    """

    cells_per_dimension: Sequence[int]
    mapping: Optional[Mapping] = None
    coordinates_min: Optional[Sequence[float]] = None
    coordinates_max: Optional[Sequence[float]] = None
    periodicity: Union[bool, Sequence[bool]] = True

    def __post_init__(self):
        self.cells_per_dimension = tuple(int(c) for c in self.cells_per_dimension)
        self.ndims = len(self.cells_per_dimension)
        self._validate_args()
        self.periodicity = _normalize_periodicity(self.periodicity, self.ndims)
        self.n_elements = int(np.prod(self.cells_per_dimension))
        self._build_connectivity()

    def _validate_args(self):
        if self.ndims not in (1, 2, 3):
            raise ValueError(f"Meshes must have 1, 2 or 3 dimensions, got {self.ndims}.")
        if any(c < 1 for c in self.cells_per_dimension):
            raise ValueError("cells_per_dimension must hold positive integers.")
        if self.mapping is not None and (
            self.coordinates_min is not None or self.coordinates_max is not None
        ):
            raise ValueError("Pass either a mapping or coordinate limits, not both.")
        if self.mapping is None:
            cmin = self.coordinates_min if self.coordinates_min is not None else (-1.0,) * self.ndims
            cmax = self.coordinates_max if self.coordinates_max is not None else (1.0,) * self.ndims
            self.coordinates_min = tuple(float(c) for c in cmin)
            self.coordinates_max = tuple(float(c) for c in cmax)
            if len(self.coordinates_min) != self.ndims or len(self.coordinates_max) != self.ndims:
                raise ValueError("Coordinate limits must have one entry per dimension.")
            if any(a >= b for a, b in zip(self.coordinates_min, self.coordinates_max)):
                raise ValueError("coordinates_min must be smaller than coordinates_max.")

    def _build_connectivity(self):
        shape = self.cells_per_dimension
        ids = np.arange(self.n_elements).reshape(shape)
        self.interfaces = []
        self.boundaries = []
        for d in range(self.ndims):
            left = np.take(ids, np.arange(shape[d] - 1), axis=d)
            right = np.take(ids, np.arange(1, shape[d]), axis=d)
            left, right = left.ravel(), right.ravel()
            first = np.take(ids, 0, axis=d).ravel()
            last = np.take(ids, shape[d] - 1, axis=d).ravel()
            if self.periodicity[d]:
                left = np.concatenate([left, last])
                right = np.concatenate([right, first])
            else:
                self.boundaries.append(BoundaryFaces(d, 0, boundary_tag(d, 0), first))
                self.boundaries.append(BoundaryFaces(d, 1, boundary_tag(d, 1), last))
            self.interfaces.append((left, right))
        empty = np.zeros(0, dtype=np.int_)
        self.mortars = [
            MortarFaces(d, empty, empty, np.zeros((0, 2 ** (self.ndims - 1)), dtype=np.int_))
            for d in range(self.ndims)
        ]

    def cell_indices(self) -> np.ndarray:
        """
        Cell multi-index of every element. Has shape (n_elements, ndims).
        """
        return np.stack(
            np.unravel_index(np.arange(self.n_elements), self.cells_per_dimension),
            axis=1,
        )

    def node_coordinates(self, basis: LobattoLegendreBasis) -> np.ndarray:
        ndims, n = self.ndims, basis.n_nodes
        cells = self.cell_indices()
        # reference coordinates in [-1, 1]^ndims of every node
        s = np.empty((ndims, self.n_elements) + (n,) * ndims)
        for d in range(ndims):
            shape = (self.n_elements,) + tuple(n if k == d else 1 for k in range(ndims))
            c = cells[:, d].reshape((-1,) + (1,) * ndims)
            xi = basis.nodes.reshape(shape[1:])[np.newaxis]
            s[d] = -1 + (2 * c + 1 + xi) / self.cells_per_dimension[d]
        if self.mapping is not None:
            x = np.asarray(self.mapping(s), dtype=np.float64)
            if x.shape != s.shape:
                raise ValueError(
                    f"Mapping returned shape {x.shape}, expected {s.shape}."
                )
            return x
        x = np.empty_like(s)
        for d in range(ndims):
            a, b = self.coordinates_min[d], self.coordinates_max[d]
            x[d] = a + 0.5 * (s[d] + 1) * (b - a)
        return x

    def to_dict(self) -> dict:
        out = super().to_dict()
        out.update(
            cells_per_dimension=list(self.cells_per_dimension),
            mapping=getattr(self.mapping, "__name__", None),
            coordinates_min=None if self.coordinates_min is None else list(self.coordinates_min),
            coordinates_max=None if self.coordinates_max is None else list(self.coordinates_max),
        )
        return out


LeafKey = Tuple[int, Tuple[int, ...]]


@dataclass
class TreeMesh(_MeshConnectivity):
    """
    Cartesian mesh of the leaves of a 2:1 balanced tree (binary tree, quadtree or
    octree) over the box [coordinates_min, coordinates_max]. Faces between leaves
    of different levels are mortars.

    Args:
        coordinates_min, coordinates_max: Box limits.
        initial_refinement_level: Uniform level of the initial leaves.
        periodicity: Periodicity flag for all or for each direction.
        refinement_patches: Boxes given as dicts with "coordinates_min" and
            "coordinates_max"; leaves whose centers lie inside a box are refined
            once, patch by patch.

    Attributes:
        leaves: Leaf keys (level, cell multi-index) ordered by element id.
        ndims, n_elements, interfaces, boundaries, mortars: As for StructuredMesh.
    """

    coordinates_min: Sequence[float]
    coordinates_max: Sequence[float]
    initial_refinement_level: int = 2
    periodicity: Union[bool, Sequence[bool]] = True
    refinement_patches: Sequence[Dict[str, Sequence[float]]] = field(
        default_factory=tuple
    )

    def __post_init__(self):
        self.coordinates_min = tuple(float(c) for c in self.coordinates_min)
        self.coordinates_max = tuple(float(c) for c in self.coordinates_max)
        self.ndims = len(self.coordinates_min)
        self._validate_args()
        self.periodicity = _normalize_periodicity(self.periodicity, self.ndims)
        level = self.initial_refinement_level
        self.leaves: List[LeafKey] = [
            (level, idx) for idx in product(range(2**level), repeat=self.ndims)
        ]
        self._rebuild()
        for patch in self.refinement_patches:
            self.refine_box(patch["coordinates_min"], patch["coordinates_max"])

    def _validate_args(self):
        if self.ndims not in (1, 2, 3):
            raise ValueError(f"Meshes must have 1, 2 or 3 dimensions, got {self.ndims}.")
        if len(self.coordinates_max) != self.ndims:
            raise ValueError("Coordinate limits must have one entry per dimension.")
        if any(a >= b for a, b in zip(self.coordinates_min, self.coordinates_max)):
            raise ValueError("coordinates_min must be smaller than coordinates_max.")
        if self.initial_refinement_level < 0:
            raise ValueError("initial_refinement_level must be non-negative.")

    @property
    def n_elements(self) -> int:
        return len(self.leaves)

    @property
    def levels(self) -> np.ndarray:
        return np.array([level for level, _ in self.leaves])

    def cell_size(self, level: int) -> np.ndarray:
        return (np.array(self.coordinates_max) - np.array(self.coordinates_min)) / 2**level

    def cell_centers(self) -> np.ndarray:
        """
        Centers of the leaves. Has shape (n_elements, ndims).
        """
        cmin = np.array(self.coordinates_min)
        return np.array(
            [cmin + self.cell_size(level) * (np.array(idx) + 0.5) for level, idx in self.leaves]
        )

    def refine(self, element_ids: Sequence[int]):
        """
        Split the given leaves into 2^ndims children each, then refine further leaves
        until the tree is 2:1 balanced across faces.
        """
        to_refine = set(self.leaves[int(e)] for e in element_ids)
        leaves = set(self.leaves)
        while to_refine:
            for level, idx in to_refine:
                leaves.discard((level, idx))
                for bits in product((0, 1), repeat=self.ndims):
                    leaves.add((level + 1, tuple(2 * i + b for i, b in zip(idx, bits))))
            to_refine = self._unbalanced_leaves(leaves)
        self.leaves = sorted(leaves)
        self._rebuild()

    def refine_box(self, coordinates_min: Sequence[float], coordinates_max: Sequence[float]):
        centers = self.cell_centers()
        inside = np.all(
            (centers >= np.array(coordinates_min)) & (centers <= np.array(coordinates_max)),
            axis=1,
        )
        self.refine(np.flatnonzero(inside))

    def _face_neighbor(self, level: int, idx: Tuple[int, ...], d: int, side: int):
        n = 2**level
        i = idx[d] + (1 if side else -1)
        if not 0 <= i < n:
            if not self.periodicity[d]:
                return None
            i %= n
        return idx[:d] + (i,) + idx[d + 1 :]

    def _unbalanced_leaves(self, leaves) -> set:
        # coarse leaves that touch a leaf more than one level finer
        out = set()
        for level, idx in leaves:
            if level < 2:
                continue
            for d, side in product(range(self.ndims), (0, 1)):
                nb = self._face_neighbor(level, idx, d, side)
                if nb is None:
                    continue
                for coarse in range(level - 2, -1, -1):
                    key = (coarse, tuple(i >> (level - coarse) for i in nb))
                    if key in leaves:
                        out.add(key)
                        break
        return out

    def _rebuild(self):
        lookup = {key: e for e, key in enumerate(self.leaves)}
        ndims = self.ndims
        left: List[List[int]] = [[] for _ in range(ndims)]
        right: List[List[int]] = [[] for _ in range(ndims)]
        bnd: Dict[Tuple[int, int], List[int]] = {}
        mortars: List[List[Tuple[int, int, List[int]]]] = [[] for _ in range(ndims)]

        for e, (level, idx) in enumerate(self.leaves):
            for d, side in product(range(ndims), (0, 1)):
                nb = self._face_neighbor(level, idx, d, side)
                if nb is None:
                    bnd.setdefault((d, side), []).append(e)
                    continue
                if (level, nb) in lookup:
                    if side == 1:
                        left[d].append(e)
                        right[d].append(lookup[(level, nb)])
                    continue
                if level > 0 and (level - 1, tuple(i >> 1 for i in nb)) in lookup:
                    continue  # small side; recorded by the large element
                tangential = [k for k in range(ndims) if k != d]
                small = []
                for bits in product((0, 1), repeat=ndims - 1):
                    child = [2 * i for i in nb]
                    child[d] += 0 if side == 1 else 1
                    for k, b in zip(tangential, bits):
                        child[k] += b
                    small.append(lookup.get((level + 1, tuple(child)), -1))
                if min(small) < 0:
                    raise MeshInconsistencyError(
                        f"Element {e} at level {level} has no matching neighbor on face "
                        f"{boundary_tag(d, side)}; the tree is not 2:1 balanced."
                    )
                mortars[d].append((e, 0 if side == 1 else 1, small))

        self.interfaces = [
            (np.array(left[d], dtype=np.int_), np.array(right[d], dtype=np.int_))
            for d in range(ndims)
        ]
        self.boundaries = [
            BoundaryFaces(d, side, boundary_tag(d, side), np.array(elements, dtype=np.int_))
            for (d, side), elements in sorted(bnd.items())
        ]
        self.mortars = []
        for d in range(ndims):
            records = mortars[d]
            self.mortars.append(
                MortarFaces(
                    d,
                    np.array([r[0] for r in records], dtype=np.int_),
                    np.array([r[1] for r in records], dtype=np.int_),
                    np.array(
                        [r[2] for r in records], dtype=np.int_
                    ).reshape(-1, 2 ** (ndims - 1)),
                )
            )

    def node_coordinates(self, basis: LobattoLegendreBasis) -> np.ndarray:
        ndims, n = self.ndims, basis.n_nodes
        x = np.empty((ndims, self.n_elements) + (n,) * ndims)
        cmin = np.array(self.coordinates_min)
        for e, (level, idx) in enumerate(self.leaves):
            h = self.cell_size(level)
            for d in range(ndims):
                shape = tuple(n if k == d else 1 for k in range(ndims))
                xi = basis.nodes.reshape(shape)
                x[d, e] = cmin[d] + h[d] * (idx[d] + 0.5 * (xi + 1))
        return x

    def to_dict(self) -> dict:
        out = super().to_dict()
        out.update(
            coordinates_min=list(self.coordinates_min),
            coordinates_max=list(self.coordinates_max),
            initial_refinement_level=self.initial_refinement_level,
            levels=sorted(set(int(level) for level, _ in self.leaves)),
        )
        return out
