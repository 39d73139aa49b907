"""
Unit tests for affine transforms and tensor reorientation
"""

import pytest
import numpy as np
from tensorlines.microstructure.tensor import Tensor
from tensorlines.tractography.config import InvalidConfigurationError
from tensorlines.tractography.reorientation import (
    AffineTransform,
    TensorReorienter,
    finite_strain_rotation,
    pdd_rotation,
    reorient_finite_strain,
    reorient_pdd,
)

ROTATION_Z = np.array([
    [0.0, -1.0, 0.0],
    [1.0, 0.0, 0.0],
    [0.0, 0.0, 1.0]
])

# Shear + anisotropic scaling, well conditioned
JACOBIAN = np.array([
    [1.2, 0.3, 0.1],
    [0.05, 0.9, 0.2],
    [0.1, -0.2, 1.1]
])


@pytest.fixture
def anisotropic_tensor():
    """Tensor with three distinct eigenvalues and oblique eigenvectors"""
    rotation, _ = np.linalg.qr(np.array([
        [1.0, 0.4, 0.2],
        [0.3, 1.0, -0.5],
        [-0.2, 0.6, 1.0]
    ]))
    return Tensor.from_eigen([1.6e-3, 0.6e-3, 0.2e-3], rotation)


class TestAffineTransform:
    """Test affine maps"""

    def test_inverse(self):
        transform = AffineTransform(JACOBIAN, [1.0, -2.0, 0.5])
        point = np.array([3.0, 4.0, 5.0])

        assert np.allclose(transform.inverse().transform_point(transform.transform_point(point)), point)
        assert np.allclose(transform.inverse_transform_point(transform.transform_point(point)), point)

    def test_compose(self):
        outer = AffineTransform(ROTATION_Z, [1.0, 0.0, 0.0])
        inner = AffineTransform(2.0 * np.eye(3), [0.0, 1.0, 0.0])
        point = np.array([1.0, 2.0, 3.0])

        composed = outer.compose(inner)
        assert np.allclose(
            composed.transform_point(point),
            outer.transform_point(inner.transform_point(point))
        )

    def test_homogeneous_round_trip(self):
        homogeneous = np.eye(4)
        homogeneous[:3, :3] = JACOBIAN
        homogeneous[:3, 3] = [5.0, 6.0, 7.0]

        transform = AffineTransform.from_homogeneous(homogeneous)
        assert np.allclose(transform.to_homogeneous(), homogeneous)
        assert np.allclose(transform.jacobian, JACOBIAN)

    def test_transform_points(self):
        transform = AffineTransform(ROTATION_Z, [0.0, 0.0, 1.0])
        points = np.array([[1.0, 0.0, 0.0], [0.0, 2.0, 0.0]])

        assert np.allclose(transform.transform_points(points), [[0.0, 1.0, 1.0], [-2.0, 0.0, 1.0]])

    def test_singular_matrix_rejected(self):
        with pytest.raises(InvalidConfigurationError):
            AffineTransform(np.diag([1.0, 1.0, 0.0]))

    def test_non_square_matrix_rejected(self):
        with pytest.raises(InvalidConfigurationError):
            AffineTransform(np.zeros((2, 3)))


class TestFiniteStrain:
    """Test finite strain reorientation"""

    def test_rotation_is_orthogonal(self):
        rotation = finite_strain_rotation(JACOBIAN)
        assert np.allclose(rotation @ rotation.T, np.eye(3))
        assert np.linalg.det(rotation) == pytest.approx(1.0)

    def test_pure_rotation(self, prolate_x):
        """A rotation Jacobian rotates the tensor by itself"""
        rotated = reorient_finite_strain(Tensor(prolate_x), ROTATION_Z)
        assert abs(rotated.principal_eigenvector[1]) == pytest.approx(1.0)

    def test_scaling_does_not_rotate(self, anisotropic_tensor):
        scaled = reorient_finite_strain(anisotropic_tensor, np.diag([2.0, 3.0, 0.5]))
        assert scaled.allclose(anisotropic_tensor)

    def test_preserves_eigenvalues(self, anisotropic_tensor):
        reoriented = reorient_finite_strain(anisotropic_tensor, JACOBIAN)
        assert np.allclose(reoriented.eigenvalues, anisotropic_tensor.eigenvalues)

    def test_round_trip(self, anisotropic_tensor):
        forward = reorient_finite_strain(anisotropic_tensor, JACOBIAN)
        back = reorient_finite_strain(forward, np.linalg.inv(JACOBIAN))
        assert back.allclose(anisotropic_tensor, rtol=1e-6, atol=1e-10)


class TestPreservationOfPrincipalDirection:
    """Test PPD reorientation"""

    def test_principal_direction_follows_jacobian(self, anisotropic_tensor):
        reoriented = reorient_pdd(anisotropic_tensor, JACOBIAN)

        expected = JACOBIAN @ anisotropic_tensor.principal_eigenvector
        expected /= np.linalg.norm(expected)
        assert abs(np.dot(reoriented.principal_eigenvector, expected)) == pytest.approx(1.0)

    def test_second_direction_stays_in_deformed_plane(self, anisotropic_tensor):
        reoriented = reorient_pdd(anisotropic_tensor, JACOBIAN)
        evecs = anisotropic_tensor.eigenvectors

        normal = np.cross(JACOBIAN @ evecs[:, 0], JACOBIAN @ evecs[:, 1])
        assert np.dot(reoriented.eigenvectors[:, 1], normal) == pytest.approx(0.0, abs=1e-9)

    def test_preserves_eigenvalues(self, anisotropic_tensor):
        reoriented = reorient_pdd(anisotropic_tensor, JACOBIAN)
        assert np.allclose(reoriented.eigenvalues, anisotropic_tensor.eigenvalues)

    def test_round_trip(self, anisotropic_tensor):
        forward = reorient_pdd(anisotropic_tensor, JACOBIAN)
        back = reorient_pdd(forward, np.linalg.inv(JACOBIAN))
        assert back.allclose(anisotropic_tensor, rtol=1e-6, atol=1e-10)

    def test_shear_differs_from_finite_strain(self, prolate_x):
        shear = np.array([[1.0, 0.0, 0.0], [1.0, 1.0, 0.0], [0.0, 0.0, 1.0]])
        ppd = reorient_pdd(Tensor(prolate_x), shear)

        # Shear carries x onto (1, 1, 0) / sqrt(2)
        assert abs(ppd.principal_eigenvector @ np.array([1.0, 1.0, 0.0])) == pytest.approx(np.sqrt(2.0))
        assert not ppd.allclose(reorient_finite_strain(Tensor(prolate_x), shear))

    def test_degenerate_tensor_unchanged(self):
        assert np.allclose(pdd_rotation(Tensor.zeros(3), JACOBIAN), np.eye(3))

    def test_two_dimensional(self):
        tensor = Tensor(np.diag([2.0, 1.0]))
        shear = np.array([[1.0, 1.0], [0.0, 1.0]])
        reoriented = reorient_pdd(tensor, shear)

        assert abs(reoriented.principal_eigenvector[0]) == pytest.approx(1.0)
        rotated = reorient_pdd(tensor, np.array([[0.0, -1.0], [1.0, 0.0]]))
        assert abs(rotated.principal_eigenvector[1]) == pytest.approx(1.0)


class TestTensorReorienter:
    """Test the configured reorientation step"""

    def test_no_jacobian_is_identity(self, anisotropic_tensor):
        reorienter = TensorReorienter()
        assert not reorienter.enabled
        assert reorienter.reorient(anisotropic_tensor) is anisotropic_tensor

    def test_identity_jacobian_disabled(self):
        assert not TensorReorienter(np.eye(3)).enabled

    def test_strategies(self, anisotropic_tensor):
        ppd = TensorReorienter(JACOBIAN, use_pdd=True)
        fs = TensorReorienter(JACOBIAN, use_pdd=False)

        assert ppd.reorient(anisotropic_tensor).allclose(reorient_pdd(anisotropic_tensor, JACOBIAN))
        assert fs.reorient(anisotropic_tensor).allclose(
            reorient_finite_strain(anisotropic_tensor, JACOBIAN)
        )


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
