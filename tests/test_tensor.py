"""
Unit tests for diffusion tensor algebra
"""

import pytest
import numpy as np
from tensorlines.microstructure.tensor import (
    Tensor,
    compute_fa_map,
    compute_adc_map,
    components_to_matrices,
    matrices_to_components,
    tensor_log_field,
    tensor_exp,
)


class TestTensorScalars:
    """Test FA, ADC and eigensystem"""

    def test_isotropic_fa(self):
        """Isotropic tensors have FA = 0"""
        tensor = Tensor.identity(3, scale=0.7e-3)
        assert tensor.fa == pytest.approx(0.0, abs=1e-12)

    def test_linear_fa(self):
        """A single non-zero eigenvalue gives FA = 1"""
        tensor = Tensor(np.diag([1e-3, 0.0, 0.0]))
        assert tensor.fa == pytest.approx(1.0)

    def test_prolate_fa(self, prolate_x):
        """Typical white matter tensor has high FA"""
        fa = Tensor(prolate_x).fa
        assert 0.75 < fa < 0.85, f"FA={fa} out of expected range"

    def test_two_dimensional_fa(self):
        """FA is normalised for the tensor dimension"""
        assert Tensor(np.diag([1.0, 0.0])).fa == pytest.approx(1.0)
        assert Tensor(np.eye(2)).fa == pytest.approx(0.0, abs=1e-12)

    def test_adc(self):
        """ADC is the mean of the diagonal"""
        tensor = Tensor(np.diag([1.5e-3, 0.6e-3, 0.3e-3]))
        assert tensor.adc == pytest.approx(0.8e-3)

    def test_eigenvalue_ordering(self):
        """Eigenvalues are sorted in descending order"""
        tensor = Tensor(np.diag([0.2e-3, 1.5e-3, 0.6e-3]))
        evals = tensor.eigenvalues
        assert evals[0] >= evals[1] >= evals[2], "Eigenvalues not sorted"
        assert tensor.principal_eigenvalue == pytest.approx(1.5e-3)
        assert abs(tensor.principal_eigenvector[1]) == pytest.approx(1.0)

    def test_null_tensor(self):
        """The null tensor is degenerate with zero scalars"""
        tensor = Tensor.zeros(3)
        assert tensor.is_null
        assert tensor.is_degenerate
        assert tensor.fa == 0.0
        assert tensor.adc == 0.0

    def test_non_finite_tensor_is_degenerate(self):
        matrix = np.eye(3)
        matrix[0, 0] = np.nan
        assert Tensor(matrix).is_degenerate

    def test_negative_definite_is_degenerate(self):
        assert Tensor(-np.eye(3) * 1e-3).is_degenerate

    def test_tensor_is_immutable(self, prolate_x):
        tensor = Tensor(prolate_x)
        with pytest.raises(ValueError):
            tensor.matrix[0, 0] = 1.0

    def test_symmetrised(self):
        tensor = Tensor(np.array([[1.0, 2.0], [0.0, 1.0]]))
        assert np.allclose(tensor.matrix, [[1.0, 1.0], [1.0, 1.0]])

    def test_non_square_rejected(self):
        with pytest.raises(ValueError):
            Tensor(np.zeros((2, 3)))


class TestTensorOperations:
    """Test tensor construction and matrix functions"""

    def test_components_round_trip(self):
        components = np.array([1.0, 0.1, 0.2, 2.0, 0.3, 3.0])
        tensor = Tensor.from_components(components)

        assert tensor.matrix[0, 1] == tensor.matrix[1, 0] == 0.1
        assert tensor.matrix[1, 2] == 0.3
        assert np.allclose(tensor.to_components(), components)

    def test_field_components(self):
        components = np.random.RandomState(0).rand(4, 5, 6)
        matrices = components_to_matrices(components)

        assert matrices.shape == (4, 5, 3, 3)
        assert np.allclose(matrices, np.swapaxes(matrices, -1, -2))
        assert np.allclose(matrices_to_components(matrices), components)

    def test_log_exp_round_trip(self, prolate_x):
        tensor = Tensor(prolate_x)
        assert tensor.log().exp().allclose(tensor, rtol=1e-9)

    def test_log_field_matches_tensor_log(self, prolate_x):
        field = np.stack([prolate_x, 2 * prolate_x])
        logs = tensor_log_field(field)

        assert np.allclose(logs[0], Tensor(prolate_x).log().matrix)
        assert np.allclose(tensor_exp(logs[1]), 2 * prolate_x)

    def test_rotate(self, prolate_x):
        rotation = np.array([[0.0, -1.0, 0.0], [1.0, 0.0, 0.0], [0.0, 0.0, 1.0]])
        rotated = Tensor(prolate_x).rotate(rotation)

        assert abs(rotated.principal_eigenvector[1]) == pytest.approx(1.0)
        assert np.allclose(rotated.eigenvalues, Tensor(prolate_x).eigenvalues)

    def test_inverse(self, prolate_x):
        inverse = Tensor(prolate_x).inverse()
        assert np.allclose(inverse.matrix @ prolate_x, np.eye(3))
        assert Tensor.zeros(3).inverse() is None

    def test_arithmetic(self):
        a = Tensor(np.eye(3))
        b = Tensor(2 * np.eye(3))
        assert (a + b) == Tensor(3 * np.eye(3))
        assert (0.5 * b) == a


class TestScalarMaps:
    """Test vectorised FA and ADC maps"""

    def test_fa_computation(self):
        """Test FA map computation"""
        eigenvalues = np.array([
            [[1.5e-3, 0.4e-3, 0.4e-3]],  # High FA
            [[0.8e-3, 0.7e-3, 0.7e-3]],  # Low FA
            [[0.6e-3, 0.6e-3, 0.6e-3]]   # Isotropic (FA=0)
        ])

        fa = compute_fa_map(eigenvalues)

        assert fa.shape == (3, 1)
        assert 0.6 < fa[0, 0] < 1.0, "High FA case failed"
        assert 0.0 < fa[1, 0] < 0.3, "Low FA case failed"
        assert fa[2, 0] < 0.1, "Isotropic case failed"

    def test_fa_map_matches_tensor_fa(self, prolate_x):
        evals = Tensor(prolate_x).eigenvalues
        assert compute_fa_map(evals[np.newaxis])[0] == pytest.approx(Tensor(prolate_x).fa)

    def test_zero_eigenvalues(self):
        assert compute_fa_map(np.zeros((2, 3)))[0] == 0.0

    def test_adc_map(self, prolate_x):
        adc = compute_adc_map(np.stack([prolate_x, np.zeros((3, 3))]))
        assert adc[0] == pytest.approx(Tensor(prolate_x).adc)
        assert adc[1] == 0.0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
