from types import ModuleType
from typing import Optional, Tuple

import numpy as np

from .tools.array_management import ArrayLike


def _q_and_L_evaluation(N: int, x: np.ndarray) -> Tuple[np.ndarray, ...]:
    """
    Evaluate q = L_{N+1} - L_{N-1}, its derivative and L_N at `x` by the Legendre
    three-term recurrence. Requires N >= 2.
    """
    L_km2 = np.ones_like(x)
    L_km1 = x.copy()
    dL_km2 = np.zeros_like(x)
    dL_km1 = np.ones_like(x)
    for k in range(2, N + 1):
        L_k = (2 * k - 1) / k * x * L_km1 - (k - 1) / k * L_km2
        dL_k = dL_km2 + (2 * k - 1) * L_km1
        L_km2, L_km1 = L_km1, L_k
        dL_km2, dL_km1 = dL_km1, dL_k
    k = N + 1
    L_kp1 = (2 * k - 1) / k * x * L_km1 - (k - 1) / k * L_km2
    dL_kp1 = dL_km2 + (2 * k - 1) * L_km1
    return L_kp1 - L_km2, dL_kp1 - dL_km2, L_km1


def gauss_lobatto_nodes_weights(
    n_nodes: int, max_iterations: int = 50
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Compute the Legendre-Gauss-Lobatto nodes and weights on [-1, 1].

    Args:
        n_nodes: Number of nodes (polynomial degree + 1). Must be >= 2.
        max_iterations: Maximum number of Newton iterations per node.

    Returns:
        nodes: Array of nodes in increasing order. Has shape (n_nodes,).
        weights: Array of quadrature weights. Has shape (n_nodes,).
    """
    if n_nodes < 2:
        raise ValueError(f"Gauss-Lobatto rules need at least 2 nodes, got {n_nodes}.")
    N = n_nodes - 1
    if N == 1:
        return np.array([-1.0, 1.0]), np.array([1.0, 1.0])

    # Newton iteration for the interior nodes
    j = np.arange(1, N, dtype=np.float64)
    x = -np.cos((j + 0.25) * np.pi / N - 3 / (8 * N * np.pi * (j + 0.25)))
    tol = 4 * np.finfo(np.float64).eps
    for _ in range(max_iterations):
        q, dq, _ = _q_and_L_evaluation(N, x)
        delta = -q / dq
        x = x + delta
        if np.all(np.abs(delta) <= tol * np.abs(x)):
            break

    nodes = np.concatenate([[-1.0], np.sort(x), [1.0]])
    nodes = 0.5 * (nodes - nodes[::-1])
    if N % 2 == 0:
        nodes[N // 2] = 0.0

    _, _, L_N = _q_and_L_evaluation(N, nodes)
    weights = 2 / (N * (N + 1) * L_N**2)
    weights = 0.5 * (weights + weights[::-1])
    return nodes, weights


def gauss_nodes_weights(n_nodes: int) -> Tuple[np.ndarray, np.ndarray]:
    """
    Compute the Legendre-Gauss nodes and weights on [-1, 1].

    Args:
        n_nodes: Number of nodes.

    Returns:
        nodes, weights: Arrays with shape (n_nodes,).
    """
    return np.polynomial.legendre.leggauss(n_nodes)


def barycentric_weights(nodes: np.ndarray) -> np.ndarray:
    """
    Compute the barycentric weights w_j = 1 / prod_{k != j} (x_j - x_k).
    """
    diff = nodes[:, None] - nodes[None, :]
    np.fill_diagonal(diff, 1.0)
    return 1.0 / np.prod(diff, axis=1)


def lagrange_interpolating_polynomials(
    x: float, nodes: np.ndarray, wbary: np.ndarray
) -> np.ndarray:
    """
    Evaluate all Lagrange polynomials of `nodes` at the point `x`.

    Returns:
        Array with shape (n_nodes,).
    """
    match = np.isclose(x, nodes, rtol=0.0, atol=4 * np.finfo(np.float64).eps)
    if np.any(match):
        return match.astype(np.float64)
    t = wbary / (x - nodes)
    return t / np.sum(t)


def polynomial_interpolation_matrix(
    nodes_in: np.ndarray, nodes_out: np.ndarray
) -> np.ndarray:
    """
    Matrix evaluating the interpolant through `nodes_in` at `nodes_out`.

    Returns:
        Array with shape (len(nodes_out), len(nodes_in)).
    """
    wbary = barycentric_weights(nodes_in)
    return np.stack(
        [lagrange_interpolating_polynomials(x, nodes_in, wbary) for x in nodes_out]
    )


def polynomial_derivative_matrix(nodes: np.ndarray) -> np.ndarray:
    """
    Collocation differentiation matrix D[i, j] = l_j'(x_i) using the barycentric
    formula with the negative-sum trick on the diagonal.
    """
    wbary = barycentric_weights(nodes)
    diff = nodes[:, None] - nodes[None, :]
    np.fill_diagonal(diff, 1.0)
    D = (wbary[None, :] / wbary[:, None]) / diff
    np.fill_diagonal(D, 0.0)
    np.fill_diagonal(D, -np.sum(D, axis=1))
    return D


def vandermonde_legendre(nodes: np.ndarray) -> np.ndarray:
    """
    Vandermonde matrix of the normalized Legendre polynomials,
    V[i, j] = sqrt(j + 1/2) P_j(x_i).
    """
    n = len(nodes)
    V = np.polynomial.legendre.legvander(nodes, n - 1)
    return V * np.sqrt(np.arange(n) + 0.5)[None, :]


def apply_along_axis(
    xp: ModuleType,
    matrix: ArrayLike,
    u: ArrayLike,
    axis: int,
    out: Optional[ArrayLike] = None,
) -> ArrayLike:
    """
    Apply a 1D operator along one axis of an array:
    out[..., i, ...] = sum_j matrix[i, j] * u[..., j, ...].

    Args:
        xp: ModuleType for the array operations (e.g., numpy).
        matrix: Array with shape (m, n).
        u: Array with length n along `axis`.
        axis: Axis of `u` to which the operator is applied.
        out: Optional array to which the result is written.

    Returns:
        Array with length m along `axis`.
    """
    if out is None:
        return xp.moveaxis(xp.tensordot(matrix, u, axes=([1], [axis])), 0, axis)
    labels = [chr(ord("c") + k) for k in range(u.ndim)]
    labels[axis] = "b"
    u_labels = "".join(labels)
    return xp.einsum(f"ab,{u_labels}->{u_labels.replace('b', 'a')}", matrix, u, out=out)


def multiply_dimensionwise(
    xp: ModuleType, matrix: ArrayLike, u: ArrayLike, axes: Tuple[int, ...]
) -> ArrayLike:
    """
    Apply the same 1D operator along each of `axes` in turn (tensor-product
    operator), never forming the dense multi-dimensional matrix.
    """
    for axis in axes:
        u = apply_along_axis(xp, matrix, u, axis)
    return u


class LobattoLegendreBasis:
    """
    Nodal Lagrange basis on the Legendre-Gauss-Lobatto nodes of a fixed polynomial
    degree together with the operators of the DG spectral element method. All
    arrays are read-only.

    Attributes:
        polydeg: Polynomial degree p.
        n_nodes: Number of nodes p + 1.
        nodes, weights, inverse_weights: Quadrature on [-1, 1]. Shape (n_nodes,).
        barycentric_weights: Barycentric weights of the nodes.
        derivative_matrix: Collocation differentiation matrix D.
        derivative_split: 2D with the local boundary fluxes of the strong form folded
            into its first and last diagonal entries (vanish for LGL nodes).
        derivative_weak: -W^{-1} D^T W, the weak-form derivative.
        boundary_interpolation: Values of the Lagrange polynomials at -1 and +1.
            Shape (n_nodes, 2).
        boundary_matrix: diag(-1, 0, ..., 0, 1).
        vandermonde_legendre, inverse_vandermonde_legendre: Nodal-modal transforms
            for normalized Legendre polynomials.
    """

    def __init__(self, polydeg: int):
        if not isinstance(polydeg, (int, np.integer)) or polydeg < 1:
            raise ValueError(f"Polynomial degree must be an integer >= 1, got {polydeg}.")
        self.polydeg = int(polydeg)
        self.n_nodes = self.polydeg + 1

        nodes, weights = gauss_lobatto_nodes_weights(self.n_nodes)
        self.nodes = nodes
        self.weights = weights
        self.inverse_weights = 1.0 / weights
        self.barycentric_weights = barycentric_weights(nodes)

        D = polynomial_derivative_matrix(nodes)
        self.derivative_matrix = D

        B = np.zeros((self.n_nodes, self.n_nodes))
        B[0, 0] = -1.0
        B[-1, -1] = 1.0
        self.boundary_matrix = B

        D_split = 2 * D
        D_split[0, 0] += self.inverse_weights[0]
        D_split[-1, -1] -= self.inverse_weights[-1]
        self.derivative_split = D_split

        self.derivative_weak = -(self.inverse_weights[:, None] * D.T) * weights[None, :]

        self.boundary_interpolation = polynomial_interpolation_matrix(
            nodes, np.array([-1.0, 1.0])
        ).T

        self.vandermonde_legendre = vandermonde_legendre(nodes)
        self.inverse_vandermonde_legendre = np.linalg.inv(self.vandermonde_legendre)

        for arr in (
            self.nodes,
            self.weights,
            self.inverse_weights,
            self.barycentric_weights,
            self.derivative_matrix,
            self.boundary_matrix,
            self.derivative_split,
            self.derivative_weak,
            self.boundary_interpolation,
            self.vandermonde_legendre,
            self.inverse_vandermonde_legendre,
        ):
            arr.setflags(write=False)

    def __repr__(self) -> str:
        return f"LobattoLegendreBasis(polydeg={self.polydeg})"

    def __eq__(self, other) -> bool:
        return isinstance(other, LobattoLegendreBasis) and other.polydeg == self.polydeg

    def __hash__(self) -> int:
        return hash(("LobattoLegendreBasis", self.polydeg))

    def weights_nd(self, ndims: int) -> np.ndarray:
        """
        Tensor-product quadrature weights with shape (n_nodes,) * ndims.
        """
        w = self.weights
        for _ in range(ndims - 1):
            w = np.multiply.outer(w, self.weights)
        return w

    def sbp_residual(self) -> np.ndarray:
        """
        Return W D + D^T W - B, which vanishes for an SBP operator.
        """
        Q = self.weights[:, None] * self.derivative_matrix
        return Q + Q.T - self.boundary_matrix

    def interpolation_matrix(self, nodes_out: np.ndarray) -> np.ndarray:
        """
        Matrix evaluating the nodal interpolant at `nodes_out`.
        """
        return polynomial_interpolation_matrix(self.nodes, nodes_out)

    def to_dict(self) -> dict:
        return dict(type="LobattoLegendreBasis", polydeg=self.polydeg)
