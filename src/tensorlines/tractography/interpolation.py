"""
Tensor Field Sampling

Point-wise interpolation of diffusion tensors at continuous positions.
Supports nearest-neighbor, multilinear (trilinear in 3D) and
log-Euclidean multilinear interpolation. Inner loops are Numba-compiled
and release the GIL so several tracking threads can sample concurrently.
"""

import numpy as np
import numba
from typing import Optional
import logging

from ..microstructure.tensor import Tensor, tensor_exp, tensor_log_field
from .reorientation import AffineTransform
from .tensor_field import TensorField

logger = logging.getLogger(__name__)


@numba.jit(nopython=True, cache=True, nogil=True)
def _is_inside_grid(index: np.ndarray, shape: np.ndarray) -> bool:
    """
    Check if a continuous index lies inside the grid

    Args:
        index: Continuous index (N,)
        shape: Grid shape (N,)

    Returns:
        True if -0.5 <= index[i] < shape[i] - 0.5 on every axis
    """
    for i in range(index.shape[0]):
        if index[i] < -0.5 or index[i] >= shape[i] - 0.5:
            return False
    return True


@numba.jit(nopython=True, cache=True, nogil=True)
def _flat_offset(voxel: np.ndarray, shape: np.ndarray) -> int:
    """C-order offset of an integer voxel index"""
    offset = 0
    for i in range(shape.shape[0]):
        offset = offset * shape[i] + voxel[i]
    return offset


@numba.jit(nopython=True, cache=True, nogil=True)
def _nearest_tensor(flat: np.ndarray, shape: np.ndarray, index: np.ndarray) -> np.ndarray:
    """
    Nearest-neighbor tensor lookup

    Args:
        flat: Tensor buffer (voxels, N, N)
        shape: Grid shape (N,)
        index: Continuous index (N,)

    Returns:
        Tensor matrix (N, N)
    """
    n = index.shape[0]
    voxel = np.empty(n, dtype=np.int64)
    for i in range(n):
        v = int(np.floor(index[i] + 0.5))
        if v < 0:
            v = 0
        elif v > shape[i] - 1:
            v = shape[i] - 1
        voxel[i] = v
    return flat[_flat_offset(voxel, shape)].copy()


@numba.jit(nopython=True, cache=True, nogil=True)
def _multilinear_tensor(flat: np.ndarray, shape: np.ndarray, index: np.ndarray) -> np.ndarray:
    """
    Multilinear tensor interpolation over the 2^N surrounding voxels

    Neighbors beyond the grid border are clamped to the border voxel.

    Args:
        flat: Tensor buffer (voxels, N, N)
        shape: Grid shape (N,)
        index: Continuous index (N,)

    Returns:
        Interpolated tensor matrix (N, N)
    """
    n = index.shape[0]
    base = np.empty(n, dtype=np.int64)
    frac = np.empty(n, dtype=np.float64)
    for i in range(n):
        b = int(np.floor(index[i]))
        base[i] = b
        frac[i] = index[i] - b

    result = np.zeros((flat.shape[1], flat.shape[2]), dtype=np.float64)
    voxel = np.empty(n, dtype=np.int64)

    for corner in range(1 << n):
        weight = 1.0
        for i in range(n):
            if (corner >> i) & 1:
                weight *= frac[i]
                v = base[i] + 1
            else:
                weight *= 1.0 - frac[i]
                v = base[i]
            if v < 0:
                v = 0
            elif v > shape[i] - 1:
                v = shape[i] - 1
            voxel[i] = v

        if weight == 0.0:
            continue

        result += weight * flat[_flat_offset(voxel, shape)]

    return result


class TensorSampler:
    """
    Samples a tensor field at continuous positions

    Positions are given in tracking space; `space_to_index` maps them to
    continuous voxel indices (by default the inverse of the field geometry,
    i.e. tracking happens in physical space). The interpolation mode is
    fixed at construction.
    """

    def __init__(
        self,
        field: TensorField,
        use_trilinear: bool = True,
        use_log_euclidean: bool = False,
        space_to_index: Optional[AffineTransform] = None
    ):
        """
        Args:
            field: Tensor field to sample
            use_trilinear: Multilinear (True) or nearest-neighbor (False)
            use_log_euclidean: Blend tensor logarithms (multilinear only)
            space_to_index: Map from tracking space to continuous index
        """
        self.field = field
        self.use_trilinear = use_trilinear
        self.use_log_euclidean = use_log_euclidean and use_trilinear
        self.dimension = field.dimension

        if space_to_index is None:
            space_to_index = AffineTransform.from_homogeneous(field.affine).inverse()
        self.space_to_index = space_to_index

        self._shape = np.asarray(field.shape, dtype=np.int64)
        if self.use_log_euclidean:
            self._buffer = np.ascontiguousarray(
                tensor_log_field(field.flat_tensors())
            )
        else:
            self._buffer = np.ascontiguousarray(field.flat_tensors())

        logger.debug(
            f"TensorSampler: mode={self.mode}, shape={tuple(self._shape.tolist())}"
        )

    @property
    def mode(self) -> str:
        if not self.use_trilinear:
            return 'nearest'
        return 'log-euclidean' if self.use_log_euclidean else 'linear'

    def to_index(self, position: np.ndarray) -> np.ndarray:
        return self.space_to_index.transform_point(position)

    def is_inside(self, position: np.ndarray) -> bool:
        return bool(_is_inside_grid(self.to_index(position), self._shape))

    def sample(self, position: np.ndarray) -> Tensor:
        """
        Tensor at a tracking-space position

        Returns:
            Interpolated tensor, or the null tensor outside the field
        """
        return self.sample_index(self.to_index(position))

    def sample_index(self, index: np.ndarray) -> Tensor:
        """Tensor at a continuous voxel index; null tensor outside the field"""
        index = np.ascontiguousarray(index, dtype=np.float64)
        if not np.all(np.isfinite(index)) or not _is_inside_grid(index, self._shape):
            return Tensor.zeros(self.dimension)

        if not self.use_trilinear:
            return Tensor(_nearest_tensor(self._buffer, self._shape, index))

        matrix = _multilinear_tensor(self._buffer, self._shape, index)
        if self.use_log_euclidean:
            matrix = tensor_exp(matrix)
        return Tensor(matrix)
