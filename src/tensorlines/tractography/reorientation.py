"""
Tensor Reorientation under Affine Transforms

When a tensor field is mapped through a spatial transform, its tensors must
be rotated as well or the principal directions stop matching the anatomy.
Two strategies are implemented:
- Finite strain (FS): rotate by the rotational part of the Jacobian,
  obtained from its polar decomposition
- Preservation of principal direction (PPD/PDD): rotate so the principal
  eigenvector lands on its transformed image, keeping the eigenvalues
"""

import numpy as np
from typing import Optional
import logging
from scipy import linalg

from ..microstructure.tensor import Tensor
from .config import InvalidConfigurationError

logger = logging.getLogger(__name__)


class AffineTransform:
    """
    Affine map x -> A x + b

    Used to move tracking into an output space. Its matrix A is the
    (constant) Jacobian consumed by tensor reorientation.
    """

    def __init__(self, matrix: np.ndarray, offset: Optional[np.ndarray] = None):
        """
        Args:
            matrix: Linear part A (N, N)
            offset: Translation b (N,), zero if omitted
        """
        matrix = np.array(matrix, dtype=np.float64)
        if matrix.ndim != 2 or matrix.shape[0] != matrix.shape[1]:
            raise InvalidConfigurationError(f"Affine matrix must be square, got {matrix.shape}")

        n = matrix.shape[0]
        offset = np.zeros(n) if offset is None else np.array(offset, dtype=np.float64)
        if offset.shape != (n,):
            raise InvalidConfigurationError(
                f"Affine offset must have shape ({n},), got {offset.shape}"
            )

        if not np.all(np.isfinite(matrix)) or abs(linalg.det(matrix)) < 1e-12:
            raise InvalidConfigurationError("Affine matrix is singular")

        self.matrix = matrix
        self.offset = offset
        self._inverse_matrix = linalg.inv(matrix)

    @classmethod
    def identity(cls, dimension: int = 3) -> "AffineTransform":
        return cls(np.eye(dimension))

    @classmethod
    def from_homogeneous(cls, homogeneous: np.ndarray) -> "AffineTransform":
        """Build from an (N+1, N+1) homogeneous matrix such as a NIfTI affine"""
        homogeneous = np.asarray(homogeneous, dtype=np.float64)
        if homogeneous.ndim != 2 or homogeneous.shape[0] != homogeneous.shape[1]:
            raise InvalidConfigurationError(
                f"Homogeneous matrix must be square, got {homogeneous.shape}"
            )
        n = homogeneous.shape[0] - 1
        return cls(homogeneous[:n, :n], homogeneous[:n, n])

    @property
    def dimension(self) -> int:
        return self.matrix.shape[0]

    @property
    def jacobian(self) -> np.ndarray:
        return self.matrix.copy()

    def to_homogeneous(self) -> np.ndarray:
        n = self.dimension
        homogeneous = np.eye(n + 1)
        homogeneous[:n, :n] = self.matrix
        homogeneous[:n, n] = self.offset
        return homogeneous

    def transform_point(self, point: np.ndarray) -> np.ndarray:
        return self.matrix @ np.asarray(point, dtype=np.float64) + self.offset

    def inverse_transform_point(self, point: np.ndarray) -> np.ndarray:
        return self._inverse_matrix @ (np.asarray(point, dtype=np.float64) - self.offset)

    def transform_points(self, points: np.ndarray) -> np.ndarray:
        """Transform an (M, N) array of points"""
        return np.asarray(points, dtype=np.float64) @ self.matrix.T + self.offset

    def transform_vector(self, vector: np.ndarray) -> np.ndarray:
        return self.matrix @ np.asarray(vector, dtype=np.float64)

    def inverse(self) -> "AffineTransform":
        return AffineTransform(self._inverse_matrix, -self._inverse_matrix @ self.offset)

    def compose(self, inner: "AffineTransform") -> "AffineTransform":
        """self o inner: x -> self(inner(x))"""
        return AffineTransform(
            self.matrix @ inner.matrix,
            self.matrix @ inner.offset + self.offset
        )

    def __repr__(self) -> str:
        return f"AffineTransform(matrix={self.matrix.tolist()}, offset={self.offset.tolist()})"


def finite_strain_rotation(jacobian: np.ndarray) -> np.ndarray:
    """
    Rotational part R of J = R U (polar decomposition)

    Args:
        jacobian: Local Jacobian (N, N)

    Returns:
        Orthogonal matrix (N, N)
    """
    rotation, _ = linalg.polar(np.asarray(jacobian, dtype=np.float64), side='right')
    return rotation


def _unit(vector: np.ndarray) -> Optional[np.ndarray]:
    norm = np.linalg.norm(vector)
    if norm < 1e-12:
        return None
    return vector / norm


def _frame(first: np.ndarray, second: np.ndarray) -> np.ndarray:
    """Right-handed orthonormal frame as columns, given two orthonormal vectors"""
    if first.shape[0] == 2:
        return np.column_stack([first, np.array([-first[1], first[0]])])
    return np.column_stack([first, second, np.cross(first, second)])


def pdd_rotation(tensor: Tensor, jacobian: np.ndarray) -> np.ndarray:
    """
    Rotation of the preservation of principal direction strategy

    The principal eigenvector e1 is mapped onto n1 = J e1 / |J e1|; in 3D
    the second eigenvector is mapped onto the part of J e2 orthogonal to n1.

    Args:
        tensor: Tensor to reorient
        jacobian: Local Jacobian (N, N)

    Returns:
        Rotation matrix (N, N); identity for degenerate tensors
    """
    jacobian = np.asarray(jacobian, dtype=np.float64)
    n = tensor.dimension
    if tensor.is_degenerate:
        return np.eye(n)

    evecs = tensor.eigenvectors
    e1 = evecs[:, 0]
    n1 = _unit(jacobian @ e1)
    if n1 is None:
        return np.eye(n)

    if n == 2:
        return _frame(n1, None) @ _frame(e1, None).T

    e2 = evecs[:, 1]
    mapped_e2 = jacobian @ e2
    n2 = _unit(mapped_e2 - np.dot(mapped_e2, n1) * n1)
    if n2 is None:
        return np.eye(n)

    # Rotation carrying the eigen-frame (e1, e2, e1 x e2) onto (n1, n2, n1 x n2)
    return _frame(n1, n2) @ _frame(e1, e2).T


def reorient_finite_strain(tensor: Tensor, jacobian: np.ndarray) -> Tensor:
    """Finite strain reorientation R T R^T"""
    return tensor.rotate(finite_strain_rotation(jacobian))


def reorient_pdd(tensor: Tensor, jacobian: np.ndarray) -> Tensor:
    """Preservation of principal direction reorientation"""
    return tensor.rotate(pdd_rotation(tensor, jacobian))


class TensorReorienter:
    """
    Applies one reorientation strategy with a fixed Jacobian

    With no Jacobian configured reorientation is the identity. The finite
    strain rotation does not depend on the tensor, so it is computed once.
    """

    def __init__(self, jacobian: Optional[np.ndarray] = None, use_pdd: bool = True):
        """
        Args:
            jacobian: Constant Jacobian (N, N) of the tracking-space map, or
                None for no reorientation
            use_pdd: PPD strategy (True) or finite strain (False)
        """
        self.use_pdd = use_pdd
        self.jacobian = None
        self._rotation = None

        if jacobian is not None:
            jacobian = np.asarray(jacobian, dtype=np.float64)
            if np.allclose(jacobian, np.eye(jacobian.shape[0])):
                jacobian = None
            else:
                self.jacobian = jacobian
                if not use_pdd:
                    self._rotation = finite_strain_rotation(jacobian)

        logger.debug(
            f"TensorReorienter: enabled={self.enabled}, "
            f"strategy={'PPD' if use_pdd else 'FS'}"
        )

    @property
    def enabled(self) -> bool:
        return self.jacobian is not None

    def reorient(self, tensor: Tensor) -> Tensor:
        if self.jacobian is None:
            return tensor
        if self.use_pdd:
            return reorient_pdd(tensor, self.jacobian)
        return tensor.rotate(self._rotation)
