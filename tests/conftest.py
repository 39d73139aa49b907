"""
Shared fixtures: synthetic tensor fields
"""

import pytest
import numpy as np

from tensorlines.tractography.tensor_field import TensorField

# Typical white matter diffusivities (mm^2/s)
LAMBDA_PARALLEL = 1.7e-3
LAMBDA_PERPENDICULAR = 0.3e-3
ISOTROPIC_DIFFUSIVITY = 0.7e-3


def prolate_matrix(direction) -> np.ndarray:
    """Cylindrically symmetric tensor with its principal axis along direction"""
    d = np.asarray(direction, dtype=np.float64)
    d = d / np.linalg.norm(d)
    outer = np.outer(d, d)
    return LAMBDA_PARALLEL * outer + LAMBDA_PERPENDICULAR * (np.eye(len(d)) - outer)


@pytest.fixture
def prolate_x():
    """Tensor matrix with principal direction along x"""
    return prolate_matrix([1.0, 0.0, 0.0])


@pytest.fixture
def uniform_field():
    """Factory for fields filled with one tensor"""
    def make(matrix, shape=(30, 11, 11), **geometry):
        matrix = np.asarray(matrix, dtype=np.float64)
        tensors = np.broadcast_to(matrix, tuple(shape) + matrix.shape).copy()
        return TensorField(tensors, **geometry)
    return make


@pytest.fixture
def line_field(uniform_field, prolate_x):
    """30 x 11 x 11 field of tensors aligned with x"""
    return uniform_field(prolate_x)


@pytest.fixture
def isotropic_field(uniform_field):
    """30 x 11 x 11 field of isotropic tensors"""
    return uniform_field(ISOTROPIC_DIFFUSIVITY * np.eye(3))


@pytest.fixture
def fa_drop_field(prolate_x):
    """
    Tensors aligned with x for x < 20, isotropic (FA = 0) for x >= 20
    """
    tensors = np.broadcast_to(prolate_x, (30, 11, 11, 3, 3)).copy()
    tensors[20:] = ISOTROPIC_DIFFUSIVITY * np.eye(3)
    return TensorField(tensors)


@pytest.fixture
def circular_field():
    """
    41 x 41 x 5 field whose principal directions are tangent to circles
    around the axis through voxel (20, 20, z)
    """
    shape = (41, 41, 5)
    tensors = np.zeros(shape + (3, 3))
    for i in range(shape[0]):
        for j in range(shape[1]):
            radial = np.array([i - 20.0, j - 20.0, 0.0])
            if np.linalg.norm(radial) == 0:
                tensors[i, j, :] = ISOTROPIC_DIFFUSIVITY * np.eye(3)
                continue
            tangent = np.array([-radial[1], radial[0], 0.0])
            tensors[i, j, :] = prolate_matrix(tangent)
    return TensorField(tensors)


@pytest.fixture
def oblique_field(uniform_field):
    """
    30 x 11 x 11 field with principal direction (1, 1, 0) / sqrt(2) on
    1 x 2 x 1 voxels
    """
    return uniform_field(prolate_matrix([1.0, 1.0, 0.0]), spacing=[1.0, 2.0, 1.0])
