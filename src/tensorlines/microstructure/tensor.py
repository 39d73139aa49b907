"""
Diffusion Tensor Algebra

Symmetric second-order diffusion tensors and the scalar summaries used by
tractography: eigensystem, fractional anisotropy (FA), apparent diffusion
coefficient (ADC), and matrix log/exp for log-Euclidean interpolation.
"""

import numpy as np
from typing import Tuple, Optional
import logging
from scipy import linalg

logger = logging.getLogger(__name__)

# Tensors with a trace below this are treated as null (no diffusion signal)
NULL_TRACE = 1e-12

# Smallest eigenvalue kept when taking the logarithm of a tensor
LOG_EIGENVALUE_FLOOR = 1e-12

# Upper-triangular component order used by 6-component tensor volumes
COMPONENT_ORDER = ('xx', 'xy', 'xz', 'yy', 'yz', 'zz')


class Tensor:
    """
    Immutable symmetric N x N diffusion tensor

    The eigen-decomposition is computed once on first use and cached.
    Eigenvalues are sorted in descending order: l1 >= l2 >= ... >= lN.
    """

    __slots__ = ('_matrix', '_eigen')

    def __init__(self, matrix: np.ndarray):
        matrix = np.array(matrix, dtype=np.float64)
        if matrix.ndim != 2 or matrix.shape[0] != matrix.shape[1]:
            raise ValueError(f"Tensor must be a square matrix, got shape {matrix.shape}")

        # Symmetrise to absorb round-off from interpolation and rotation
        matrix = 0.5 * (matrix + matrix.T)
        matrix.setflags(write=False)

        self._matrix = matrix
        self._eigen = None

    @classmethod
    def zeros(cls, dimension: int = 3) -> "Tensor":
        """Null tensor, used as the 'outside the field' sample"""
        return cls(np.zeros((dimension, dimension)))

    @classmethod
    def identity(cls, dimension: int = 3, scale: float = 1.0) -> "Tensor":
        """Isotropic tensor scale * I"""
        return cls(scale * np.eye(dimension))

    @classmethod
    def from_eigen(cls, eigenvalues: np.ndarray, eigenvectors: np.ndarray) -> "Tensor":
        """
        Build a tensor from its eigensystem

        Args:
            eigenvalues: Eigenvalues (N,)
            eigenvectors: Eigenvectors as columns (N, N)
        """
        evals = np.asarray(eigenvalues, dtype=np.float64)
        evecs = np.asarray(eigenvectors, dtype=np.float64)
        return cls(evecs @ np.diag(evals) @ evecs.T)

    @classmethod
    def from_components(cls, components: np.ndarray) -> "Tensor":
        """
        Build a 3D tensor from 6 upper-triangular components

        Args:
            components: (xx, xy, xz, yy, yz, zz)
        """
        return cls(components_to_matrices(np.asarray(components, dtype=np.float64)))

    @property
    def matrix(self) -> np.ndarray:
        """Read-only view of the tensor matrix"""
        return self._matrix

    @property
    def dimension(self) -> int:
        return self._matrix.shape[0]

    def to_components(self) -> np.ndarray:
        """Upper-triangular components (xx, xy, xz, yy, yz, zz) for 3D tensors"""
        return matrices_to_components(self._matrix)

    def _eigensystem(self) -> Tuple[np.ndarray, np.ndarray]:
        if self._eigen is None:
            if not np.all(np.isfinite(self._matrix)):
                n = self.dimension
                self._eigen = (np.zeros(n), np.eye(n))
            else:
                evals, evecs = linalg.eigh(self._matrix)
                idx = np.argsort(evals)[::-1]
                self._eigen = (evals[idx], evecs[:, idx])
        return self._eigen

    @property
    def eigenvalues(self) -> np.ndarray:
        """Eigenvalues sorted in descending order"""
        return self._eigensystem()[0].copy()

    @property
    def eigenvectors(self) -> np.ndarray:
        """Eigenvectors as columns, matching the order of eigenvalues"""
        return self._eigensystem()[1].copy()

    @property
    def principal_eigenvalue(self) -> float:
        return float(self._eigensystem()[0][0])

    @property
    def principal_eigenvector(self) -> np.ndarray:
        """Principal diffusion direction (PDD), unit norm, sign arbitrary"""
        return self._eigensystem()[1][:, 0].copy()

    @property
    def trace(self) -> float:
        return float(np.trace(self._matrix))

    @property
    def adc(self) -> float:
        """Apparent diffusion coefficient (mean diffusivity): trace / N"""
        return self.trace / self.dimension

    @property
    def fa(self) -> float:
        """Fractional anisotropy in [0, 1]; 0 for null tensors"""
        return float(_fa_from_eigenvalues(self._eigensystem()[0]))

    @property
    def is_null(self) -> bool:
        return bool(np.all(self._matrix == 0.0))

    @property
    def is_degenerate(self) -> bool:
        """
        True for tensors that cannot drive tracking: non-finite entries,
        (near) zero trace, or no positive eigenvalue.
        """
        if not np.all(np.isfinite(self._matrix)):
            return True
        if abs(self.trace) <= NULL_TRACE:
            return True
        return self.principal_eigenvalue <= 0.0

    def dot(self, vector: np.ndarray) -> np.ndarray:
        """Tensor-vector product T . v"""
        return self._matrix @ np.asarray(vector, dtype=np.float64)

    def rotate(self, rotation: np.ndarray) -> "Tensor":
        """Apply R T R^T"""
        rotation = np.asarray(rotation, dtype=np.float64)
        return Tensor(rotation @ self._matrix @ rotation.T)

    def inverse(self) -> Optional["Tensor"]:
        """Matrix inverse, or None when the tensor is singular"""
        try:
            return Tensor(linalg.inv(self._matrix))
        except (linalg.LinAlgError, ValueError):
            return None

    def log(self) -> "Tensor":
        """Matrix logarithm (eigenvalues floored to stay positive definite)"""
        evals, evecs = self._eigensystem()
        evals = np.maximum(evals, LOG_EIGENVALUE_FLOOR)
        return Tensor.from_eigen(np.log(evals), evecs)

    def exp(self) -> "Tensor":
        """Matrix exponential of a symmetric matrix"""
        evals, evecs = self._eigensystem()
        return Tensor.from_eigen(np.exp(evals), evecs)

    def __add__(self, other: "Tensor") -> "Tensor":
        return Tensor(self._matrix + other.matrix)

    def __mul__(self, scalar: float) -> "Tensor":
        return Tensor(self._matrix * float(scalar))

    __rmul__ = __mul__

    def __eq__(self, other) -> bool:
        if not isinstance(other, Tensor):
            return NotImplemented
        return np.array_equal(self._matrix, other.matrix)

    def __hash__(self):
        return hash(self._matrix.tobytes())

    def allclose(self, other: "Tensor", rtol: float = 1e-7, atol: float = 1e-12) -> bool:
        return np.allclose(self._matrix, other.matrix, rtol=rtol, atol=atol)

    def __repr__(self) -> str:
        return f"Tensor({self._matrix.tolist()})"


def _fa_from_eigenvalues(evals: np.ndarray) -> float:
    n = evals.shape[-1]
    norm = np.sqrt(np.sum(evals**2))
    if norm <= NULL_TRACE or not np.isfinite(norm):
        return 0.0
    deviation = np.sqrt(np.sum((evals - np.mean(evals))**2))
    fa = np.sqrt(n / (n - 1.0)) * deviation / norm
    return min(max(fa, 0.0), 1.0)


def components_to_matrices(components: np.ndarray) -> np.ndarray:
    """
    Expand upper-triangular components to full symmetric matrices

    Args:
        components: Array of shape (..., 6) in (xx, xy, xz, yy, yz, zz) order

    Returns:
        Array of shape (..., 3, 3)
    """
    components = np.asarray(components, dtype=np.float64)
    if components.shape[-1] != 6:
        raise ValueError(f"Expected 6 tensor components, got {components.shape[-1]}")

    xx, xy, xz, yy, yz, zz = np.moveaxis(components, -1, 0)
    matrices = np.stack([
        np.stack([xx, xy, xz], axis=-1),
        np.stack([xy, yy, yz], axis=-1),
        np.stack([xz, yz, zz], axis=-1)
    ], axis=-2)

    return matrices


def matrices_to_components(matrices: np.ndarray) -> np.ndarray:
    """Inverse of components_to_matrices: (..., 3, 3) -> (..., 6)"""
    matrices = np.asarray(matrices, dtype=np.float64)
    return np.stack([
        matrices[..., 0, 0], matrices[..., 0, 1], matrices[..., 0, 2],
        matrices[..., 1, 1], matrices[..., 1, 2], matrices[..., 2, 2]
    ], axis=-1)


def compute_fa_map(eigenvalues: np.ndarray) -> np.ndarray:
    """
    Compute FA map from eigenvalues

    Args:
        eigenvalues: Array of shape (..., N)

    Returns:
        FA map with same shape as input (excluding last dimension)
    """
    eigenvalues = np.asarray(eigenvalues, dtype=np.float64)
    n = eigenvalues.shape[-1]
    md = np.mean(eigenvalues, axis=-1)
    numerator = np.sqrt(np.sum((eigenvalues - md[..., np.newaxis])**2, axis=-1))
    denominator = np.sqrt(np.sum(eigenvalues**2, axis=-1))

    fa = np.zeros_like(md)
    valid = denominator > NULL_TRACE
    fa[valid] = np.sqrt(n / (n - 1.0)) * numerator[valid] / denominator[valid]

    return np.clip(fa, 0.0, 1.0)


def compute_adc_map(tensors: np.ndarray) -> np.ndarray:
    """
    Compute ADC (mean diffusivity) map from a tensor field

    Args:
        tensors: Array of shape (..., N, N)

    Returns:
        ADC map of shape (...)
    """
    tensors = np.asarray(tensors, dtype=np.float64)
    return np.trace(tensors, axis1=-2, axis2=-1) / tensors.shape[-1]


def field_eigenvalues(tensors: np.ndarray) -> np.ndarray:
    """Descending eigenvalues of every tensor in a field (..., N, N) -> (..., N)"""
    tensors = np.asarray(tensors, dtype=np.float64)
    tensors = 0.5 * (tensors + np.swapaxes(tensors, -1, -2))
    return np.linalg.eigvalsh(tensors)[..., ::-1]


def tensor_log_field(tensors: np.ndarray) -> np.ndarray:
    """
    Matrix logarithm of every tensor in a field

    Eigenvalues are floored at LOG_EIGENVALUE_FLOOR so null or
    non-positive tensors map to a finite (very negative) logarithm.

    Args:
        tensors: Array of shape (..., N, N)

    Returns:
        Array of shape (..., N, N)
    """
    tensors = np.asarray(tensors, dtype=np.float64)
    tensors = 0.5 * (tensors + np.swapaxes(tensors, -1, -2))
    evals, evecs = np.linalg.eigh(tensors)
    evals = np.log(np.maximum(evals, LOG_EIGENVALUE_FLOOR))
    return np.einsum('...ik,...k,...jk->...ij', evecs, evals, evecs)


def tensor_exp(matrix: np.ndarray) -> np.ndarray:
    """Matrix exponential of a symmetric (N, N) matrix"""
    matrix = np.asarray(matrix, dtype=np.float64)
    matrix = 0.5 * (matrix + matrix.T)
    evals, evecs = linalg.eigh(matrix)
    return evecs @ np.diag(np.exp(evals)) @ evecs.T
