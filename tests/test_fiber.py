"""
Unit tests for fiber points, fibers and fiber measures
"""

import pytest
import numpy as np
from tensorlines.microstructure.tensor import Tensor
from tensorlines.tractography.fiber import (
    EMPTY_STATISTIC,
    Fiber,
    FiberPoint,
    geodesic_segment_length,
)


def _straight_fiber(n_points, step, direction, matrix):
    direction = np.asarray(direction, dtype=float)
    points = np.array([k * step * direction for k in range(n_points)])
    tensors = np.broadcast_to(matrix, (n_points, 3, 3))
    return Fiber.from_arrays(points, tensors)


class TestFiberPoint:
    """Test the (point, tensor) value type"""

    def test_default_is_empty(self):
        point = FiberPoint()
        assert np.all(point.point == 0.0)
        assert point.tensor.is_null
        assert point == FiberPoint.empty()

    def test_point_is_immutable(self):
        point = FiberPoint(np.array([1.0, 2.0, 3.0]))
        with pytest.raises(ValueError):
            point.point[0] = 5.0

    def test_accepts_matrix(self, prolate_x):
        point = FiberPoint([1.0, 2.0, 3.0], prolate_x)
        assert point.tensor == Tensor(prolate_x)

    def test_dimension_mismatch(self):
        with pytest.raises(ValueError):
            FiberPoint([1.0, 2.0], Tensor.zeros(3))


class TestFiber:
    """Test the point container"""

    def test_add_and_get(self):
        fiber = Fiber()
        fiber.add_point(FiberPoint([0.0, 0.0, 0.0]))
        fiber.add_point(FiberPoint([1.0, 0.0, 0.0]))

        assert fiber.number_of_points == 2
        assert np.allclose(fiber.get_point(1).point, [1.0, 0.0, 0.0])
        assert np.allclose(fiber[-1].point, [1.0, 0.0, 0.0])

    def test_get_point_out_of_range(self):
        fiber = Fiber([FiberPoint()])
        with pytest.raises(IndexError):
            fiber.get_point(1)
        with pytest.raises(IndexError):
            Fiber().get_point(0)

    def test_add_rejects_other_types(self):
        with pytest.raises(TypeError):
            Fiber().add_point(np.zeros(3))

    def test_mixed_dimensions_rejected(self):
        fiber = Fiber([FiberPoint(dimension=3)])
        with pytest.raises(ValueError):
            fiber.add_point(FiberPoint(dimension=2))

    def test_point_list_is_a_copy(self):
        fiber = Fiber([FiberPoint(), FiberPoint([1.0, 0.0, 0.0])])
        points = fiber.get_point_list()
        points.append(FiberPoint([2.0, 0.0, 0.0]))

        assert fiber.number_of_points == 2

    def test_set_point_list(self):
        fiber = Fiber([FiberPoint()])
        fiber.set_point_list([FiberPoint([1.0, 1.0, 1.0]), FiberPoint([2.0, 2.0, 2.0])])

        assert fiber.number_of_points == 2
        assert np.allclose(fiber.points[0], [1.0, 1.0, 1.0])

    def test_clear(self):
        fiber = Fiber([FiberPoint(), FiberPoint()])
        fiber.clear()
        assert len(fiber) == 0
        assert fiber.points.shape == (0, 3)

    def test_empty_fiber_keeps_dimension(self):
        planar = Fiber.from_arrays(np.array([[0.0, 0.0], [1.0, 0.0]]))
        planar.clear()

        assert planar.dimension == 2
        assert planar.points.shape == (0, 2)
        assert planar.tensors.shape == (0, 2, 2)
        assert Fiber(dimension=2).points.shape == (0, 2)
        assert Fiber.from_arrays(np.zeros((0, 2))).tensors.shape == (0, 2, 2)
        with pytest.raises(ValueError):
            planar.add_point(FiberPoint(dimension=3))

    def test_empty_fiber_without_points_is_3d(self):
        assert Fiber().dimension == 3
        assert Fiber().tensors.shape == (0, 3, 3)

    def test_merge_shares_junction_point(self, prolate_x):
        seed = FiberPoint([0.0, 0.0, 0.0], prolate_x)
        forward = [seed] + [FiberPoint([k, 0.0, 0.0], prolate_x) for k in (1.0, 2.0, 3.0)]
        backward = [seed] + [FiberPoint([-k, 0.0, 0.0], prolate_x) for k in (1.0, 2.0)]

        fiber = Fiber(backward).reversed()
        fiber.merge_with(Fiber(forward))

        assert fiber.number_of_points == len(forward) + len(backward) - 1
        assert fiber.get_point(len(backward) - 1) == seed
        assert np.allclose(fiber.points[:, 0], [-2.0, -1.0, 0.0, 1.0, 2.0, 3.0])

    def test_merge_without_junction(self):
        a = Fiber([FiberPoint([0.0, 0.0, 0.0])])
        b = Fiber([FiberPoint([1.0, 0.0, 0.0])])
        a.merge_with(b)
        assert a.number_of_points == 2

    def test_equality(self, prolate_x):
        a = _straight_fiber(3, 1.0, [1, 0, 0], prolate_x)
        b = _straight_fiber(3, 1.0, [1, 0, 0], prolate_x)
        assert a == b
        assert a != a.reversed()
        assert a.copy() == a


class TestFiberMeasures:
    """Test lengths and mean scalars"""

    def test_empty_fiber_statistics(self):
        fiber = Fiber()
        assert fiber.length() == EMPTY_STATISTIC
        assert fiber.euclidean_length() == EMPTY_STATISTIC
        assert fiber.mean_fa() == EMPTY_STATISTIC
        assert fiber.mean_adc() == EMPTY_STATISTIC

    def test_single_point_has_zero_length(self, prolate_x):
        fiber = Fiber([FiberPoint([1.0, 2.0, 3.0], prolate_x)])
        assert fiber.length() == EMPTY_STATISTIC
        assert fiber.mean_fa() == pytest.approx(Tensor(prolate_x).fa)

    def test_euclidean_length(self):
        fiber = Fiber.from_arrays(np.array([[0.0, 0.0, 0.0], [3.0, 4.0, 0.0], [3.0, 4.0, 2.0]]))
        assert fiber.euclidean_length() == pytest.approx(7.0)

    def test_geodesic_equals_euclidean_along_principal_direction(self, prolate_x):
        fiber = _straight_fiber(11, 0.5, [1, 0, 0], prolate_x)
        assert fiber.length() == pytest.approx(5.0)
        assert fiber.euclidean_length() == pytest.approx(5.0)

    def test_geodesic_longer_across_fibers(self, prolate_x):
        fiber = _straight_fiber(11, 0.5, [0, 1, 0], prolate_x)
        ratio = np.sqrt(1.7 / 0.3)

        assert fiber.length() == pytest.approx(5.0 * ratio)
        assert fiber.length() > fiber.euclidean_length()

    def test_geodesic_at_least_euclidean(self):
        rng = np.random.RandomState(7)
        for _ in range(50):
            a = rng.randn(3, 3)
            b = rng.randn(3, 3)
            start, end = rng.randn(3), rng.randn(3)
            length = geodesic_segment_length(
                start, end, Tensor(a @ a.T + 0.01 * np.eye(3)), Tensor(b @ b.T + 0.01 * np.eye(3))
            )
            assert length >= np.linalg.norm(end - start)

    def test_geodesic_falls_back_to_euclidean(self):
        start, end = np.zeros(3), np.array([0.0, 2.0, 0.0])
        assert geodesic_segment_length(start, end, Tensor.zeros(3), Tensor.zeros(3)) == pytest.approx(2.0)

    def test_mean_scalars(self, prolate_x):
        isotropic = 0.7e-3 * np.eye(3)
        fiber = Fiber.from_arrays(
            np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0]]),
            np.stack([prolate_x, isotropic])
        )

        assert fiber.mean_fa() == pytest.approx(Tensor(prolate_x).fa / 2.0)
        assert fiber.mean_adc() == pytest.approx(
            (Tensor(prolate_x).adc + Tensor(isotropic).adc) / 2.0
        )


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
