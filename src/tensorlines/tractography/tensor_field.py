"""
Tensor Field

Voxel-wise diffusion tensor volume together with its grid geometry
(origin, spacing, direction cosines). Provides the conversions between
physical points and continuous voxel indices used by the sampler.
"""

import numpy as np
from typing import Optional, Tuple, Union
import logging
from pathlib import Path

from ..microstructure.tensor import (
    components_to_matrices,
    compute_adc_map,
    compute_fa_map,
    field_eigenvalues,
)

logger = logging.getLogger(__name__)

# Index of each (row, col) entry in the supported 6-component layouts
_COMPONENT_LAYOUTS = {
    # xx, xy, xz, yy, yz, zz (FSL, MRtrix after reordering)
    'upper': (0, 1, 2, 3, 4, 5),
    # xx, xy, yy, xz, yz, zz (NIfTI symmetric matrix intent, dipy)
    'lower': (0, 1, 3, 2, 4, 5),
}


class TensorField:
    """
    Read-only diffusion tensor field on a regular grid

    Tensors are stored as full symmetric matrices with shape (*shape, N, N).
    Index space follows the voxel-centre convention: the centre of voxel
    (i, j, k) has continuous index (i, j, k), and the field covers
    [-0.5, size - 0.5) along every axis.
    """

    def __init__(
        self,
        tensors: np.ndarray,
        spacing: Optional[np.ndarray] = None,
        origin: Optional[np.ndarray] = None,
        direction: Optional[np.ndarray] = None
    ):
        """
        Args:
            tensors: Tensor matrices (*shape, N, N)
            spacing: Voxel size per axis (N,), defaults to 1
            origin: Physical position of voxel (0, ..., 0), defaults to 0
            direction: Direction cosines (N, N), columns are the image axes
        """
        tensors = np.asarray(tensors, dtype=np.float64)
        if tensors.ndim < 3 or tensors.shape[-1] != tensors.shape[-2]:
            raise ValueError(f"Expected tensor field of shape (*shape, N, N), got {tensors.shape}")

        n = tensors.shape[-1]
        if tensors.ndim - 2 != n:
            raise ValueError(
                f"Spatial dimension ({tensors.ndim - 2}) must match tensor "
                f"dimension ({n})"
            )

        tensors = 0.5 * (tensors + np.swapaxes(tensors, -1, -2))
        tensors = np.ascontiguousarray(tensors)
        tensors.setflags(write=False)
        self.tensors = tensors

        self.spacing = np.ones(n) if spacing is None else np.array(spacing, dtype=np.float64)
        self.origin = np.zeros(n) if origin is None else np.array(origin, dtype=np.float64)
        self.direction = np.eye(n) if direction is None else np.array(direction, dtype=np.float64)

        if self.spacing.shape != (n,) or np.any(self.spacing <= 0):
            raise ValueError(f"Invalid spacing: {self.spacing}")
        if self.origin.shape != (n,):
            raise ValueError(f"Invalid origin: {self.origin}")
        if self.direction.shape != (n, n):
            raise ValueError(f"Invalid direction matrix shape: {self.direction.shape}")

        self._index_to_physical = self.direction @ np.diag(self.spacing)
        self._physical_to_index = np.linalg.inv(self._index_to_physical)

        logger.debug(
            f"TensorField: shape={self.shape}, spacing={self.spacing.tolist()}, "
            f"origin={self.origin.tolist()}"
        )

    @classmethod
    def from_components(
        cls,
        components: np.ndarray,
        layout: str = 'upper',
        **geometry
    ) -> "TensorField":
        """
        Build a 3D field from a 6-component volume

        Args:
            components: Array of shape (x, y, z, 6)
            layout: 'upper' (xx, xy, xz, yy, yz, zz) or
                'lower' (xx, xy, yy, xz, yz, zz)
            **geometry: spacing, origin, direction
        """
        if layout not in _COMPONENT_LAYOUTS:
            raise ValueError(f"Unknown tensor component layout: {layout}")

        components = np.asarray(components, dtype=np.float64)
        ordered = components[..., list(_COMPONENT_LAYOUTS[layout])]
        return cls(components_to_matrices(ordered), **geometry)

    @classmethod
    def from_affine(cls, tensors: np.ndarray, affine: np.ndarray) -> "TensorField":
        """Build a field whose geometry is given by a voxel-to-world affine"""
        spacing, origin, direction = geometry_from_affine(affine)
        return cls(tensors, spacing=spacing, origin=origin, direction=direction)

    @classmethod
    def from_nifti(cls, filepath: Union[str, Path], layout: Optional[str] = None) -> "TensorField":
        """
        Load a 3D tensor field from a NIfTI file

        Accepted layouts:
            (x, y, z, 6)       six components, 'upper' order unless given
            (x, y, z, 1, 6)    NIfTI symmetric matrix intent, 'lower' order
            (x, y, z, 9)       full row-major matrices
            (x, y, z, 3, 3)    full matrices

        Args:
            filepath: Path to the tensor image
            layout: Component order for 6-component images

        Returns:
            TensorField with geometry taken from the image affine
        """
        import nibabel as nib

        logger.info(f"Loading tensor field from {filepath}")
        img = nib.load(str(filepath))
        data = np.asarray(img.get_fdata(), dtype=np.float64)
        affine = img.affine

        if data.ndim == 5 and data.shape[3] == 1 and data.shape[4] == 6:
            field = cls.from_components(data[:, :, :, 0, :], layout=layout or 'lower')
        elif data.ndim == 4 and data.shape[3] == 6:
            field = cls.from_components(data, layout=layout or 'upper')
        elif data.ndim == 4 and data.shape[3] == 9:
            field = cls(data.reshape(data.shape[:3] + (3, 3)))
        elif data.ndim == 5 and data.shape[3:] == (3, 3):
            field = cls(data)
        else:
            raise ValueError(f"Unsupported tensor image shape: {data.shape}")

        field = cls.from_affine(field.tensors, affine)

        logger.info(f"Tensor field shape: {field.shape}, voxel size: {field.spacing.tolist()}")

        return field

    @property
    def shape(self) -> Tuple[int, ...]:
        return self.tensors.shape[:-2]

    @property
    def dimension(self) -> int:
        return self.tensors.shape[-1]

    @property
    def affine(self) -> np.ndarray:
        """Homogeneous voxel-to-physical matrix"""
        n = self.dimension
        affine = np.eye(n + 1)
        affine[:n, :n] = self._index_to_physical
        affine[:n, n] = self.origin
        return affine

    def index_to_physical(self, index: np.ndarray) -> np.ndarray:
        """Continuous index (..., N) -> physical point (..., N)"""
        index = np.asarray(index, dtype=np.float64)
        return index @ self._index_to_physical.T + self.origin

    def physical_to_index(self, point: np.ndarray) -> np.ndarray:
        """Physical point (..., N) -> continuous index (..., N)"""
        point = np.asarray(point, dtype=np.float64)
        return (point - self.origin) @ self._physical_to_index.T

    def is_inside_index(self, index: np.ndarray) -> bool:
        index = np.asarray(index, dtype=np.float64)
        shape = np.asarray(self.shape, dtype=np.float64)
        return bool(np.all(index >= -0.5) and np.all(index < shape - 0.5))

    def is_inside(self, point: np.ndarray) -> bool:
        return self.is_inside_index(self.physical_to_index(point))

    def flat_tensors(self) -> np.ndarray:
        """Tensors as a contiguous (voxels, N, N) buffer, C order"""
        return self.tensors.reshape(-1, self.dimension, self.dimension)

    def fa_map(self) -> np.ndarray:
        return compute_fa_map(field_eigenvalues(self.tensors))

    def adc_map(self) -> np.ndarray:
        return compute_adc_map(self.tensors)


def geometry_from_affine(affine: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Split a homogeneous voxel-to-world affine into spacing, origin and
    direction cosines

    Args:
        affine: (N+1, N+1) matrix

    Returns:
        spacing (N,), origin (N,), direction (N, N)
    """
    affine = np.asarray(affine, dtype=np.float64)
    n = affine.shape[0] - 1
    linear = affine[:n, :n]
    spacing = np.linalg.norm(linear, axis=0)
    if np.any(spacing <= 0):
        raise ValueError("Affine has a zero-length axis")
    direction = linear / spacing
    origin = affine[:n, n].copy()
    return spacing, origin, direction
