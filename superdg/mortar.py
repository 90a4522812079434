from itertools import product
from types import ModuleType
from typing import List, Tuple

import numpy as np

from .basis import LobattoLegendreBasis, apply_along_axis, lagrange_interpolating_polynomials
from .tools.array_management import ArrayLike


def _forward_operator(basis: LobattoLegendreBasis, shift: float) -> np.ndarray:
    nodes_out = 0.5 * (basis.nodes + shift)
    return basis.interpolation_matrix(nodes_out)


def _reverse_operator(basis: LobattoLegendreBasis, shift: float) -> np.ndarray:
    # L2 projection from one half of the large face to the large face, evaluated with
    # the LGL quadrature of the mortar
    n = basis.n_nodes
    R = np.zeros((n, n))
    for k in range(n):
        l_mortar = lagrange_interpolating_polynomials(
            basis.nodes[k], basis.nodes, basis.barycentric_weights
        )
        l_large = lagrange_interpolating_polynomials(
            0.5 * (basis.nodes[k] + shift), basis.nodes, basis.barycentric_weights
        )
        R += 0.5 * basis.weights[k] * np.outer(l_large, l_mortar)
    return R * basis.inverse_weights[:, None]


class MortarL2:
    """
    L2 mortars coupling one large face to 2^(ndims - 1) small faces of a 2:1 balanced
    Cartesian tree mesh. States are interpolated from the large face to each small
    face ("forward") and fluxes are projected back ("reverse") so that the
    quadrature-weighted flux through the large face equals the sum over the small
    faces.

    Args:
        basis: LobattoLegendreBasis shared by all elements.
    """

    def __init__(self, basis: LobattoLegendreBasis):
        self.basis = basis
        self.forward_lower = _forward_operator(basis, -1.0)
        self.forward_upper = _forward_operator(basis, 1.0)
        self.reverse_lower = _reverse_operator(basis, -1.0)
        self.reverse_upper = _reverse_operator(basis, 1.0)
        for arr in (
            self.forward_lower,
            self.forward_upper,
            self.reverse_lower,
            self.reverse_upper,
        ):
            arr.setflags(write=False)

    def __repr__(self) -> str:
        return f"MortarL2(polydeg={self.basis.polydeg})"

    @staticmethod
    def small_positions(ndims: int) -> List[Tuple[int, ...]]:
        """
        Positions (0 = lower, 1 = upper) of the small faces along each tangential
        axis, in the lexicographic order used for the small element ids.
        """
        return list(product((0, 1), repeat=ndims - 1))

    def prolong(
        self, xp: ModuleType, u_large: ArrayLike, tangential_axes: Tuple[int, ...]
    ) -> List[ArrayLike]:
        """
        Interpolate a large-face trace to every small face.

        Args:
            xp: ModuleType for the array operations (e.g., numpy).
            u_large: Array with the face nodes along `tangential_axes`.
            tangential_axes: Axes of `u_large` holding the face nodes.

        Returns:
            List of 2^(len(tangential_axes)) arrays shaped like `u_large`.
        """
        out = []
        for position in self.small_positions(len(tangential_axes) + 1):
            u = u_large
            for axis, bit in zip(tangential_axes, position):
                u = apply_along_axis(
                    xp, self.forward_upper if bit else self.forward_lower, u, axis
                )
            out.append(u)
        return out

    def project_back(
        self,
        xp: ModuleType,
        fluxes_small: List[ArrayLike],
        tangential_axes: Tuple[int, ...],
    ) -> ArrayLike:
        """
        Project small-face fluxes computed with the small-face normals back to the
        large face, sum them and rescale to the large-face normal.
        """
        ndims = len(tangential_axes) + 1
        total = None
        for position, f in zip(self.small_positions(ndims), fluxes_small):
            for axis, bit in zip(tangential_axes, position):
                f = apply_along_axis(
                    xp, self.reverse_upper if bit else self.reverse_lower, f, axis
                )
            total = f if total is None else total + f
        return 2 ** (ndims - 1) * total

    def to_dict(self) -> dict:
        return dict(type="MortarL2")
