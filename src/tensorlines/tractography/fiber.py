"""
Fiber Container

Ordered list of fiber points (position + tensor sampled there) with the
per-fiber measures used by bundle statistics: geodesic and Euclidean
length, and mean FA/ADC along the path.
"""

import numpy as np
from typing import Iterable, Iterator, List, Optional
import logging

from ..microstructure.tensor import Tensor

logger = logging.getLogger(__name__)

# Returned by every mean/length measure that has nothing to average over
EMPTY_STATISTIC = 0.0


class FiberPoint:
    """
    Immutable (point, tensor) pair

    The default value is the empty point: all coordinates and all tensor
    entries are zero.
    """

    __slots__ = ('_point', '_tensor')

    def __init__(
        self,
        point: Optional[np.ndarray] = None,
        tensor: Optional[Tensor] = None,
        dimension: int = 3
    ):
        if point is not None:
            dimension = len(point)
        point = np.zeros(dimension) if point is None else np.array(point, dtype=np.float64)
        point.setflags(write=False)

        if tensor is None:
            tensor = Tensor.zeros(dimension)
        elif not isinstance(tensor, Tensor):
            tensor = Tensor(tensor)

        if tensor.dimension != point.shape[0]:
            raise ValueError(
                f"Tensor dimension {tensor.dimension} does not match point "
                f"dimension {point.shape[0]}"
            )

        self._point = point
        self._tensor = tensor

    @classmethod
    def empty(cls, dimension: int = 3) -> "FiberPoint":
        return cls(dimension=dimension)

    @property
    def point(self) -> np.ndarray:
        return self._point

    @property
    def tensor(self) -> Tensor:
        return self._tensor

    @property
    def dimension(self) -> int:
        return self._point.shape[0]

    def __eq__(self, other) -> bool:
        if not isinstance(other, FiberPoint):
            return NotImplemented
        return np.array_equal(self._point, other.point) and self._tensor == other.tensor

    def __repr__(self) -> str:
        return f"FiberPoint(point={self._point.tolist()}, tensor={self._tensor.matrix.tolist()})"


def geodesic_segment_length(
    start: np.ndarray,
    end: np.ndarray,
    tensor_start: Tensor,
    tensor_end: Tensor
) -> float:
    """
    Tensor-weighted length of one fiber segment

    Uses the metric l1 * T^-1 of the mean tensor T of both ends, scaled so
    its smallest eigenvalue is 1: moving along the principal direction costs
    the Euclidean length, any other direction costs more. Falls back to the
    Euclidean length when the mean tensor is not positive definite.

    Args:
        start, end: Segment end points (N,)
        tensor_start, tensor_end: Tensors at the end points

    Returns:
        Segment length (>= Euclidean length)
    """
    delta = np.asarray(end, dtype=np.float64) - np.asarray(start, dtype=np.float64)
    euclidean = float(np.linalg.norm(delta))
    if euclidean == 0.0:
        return 0.0

    mean_tensor = Tensor(0.5 * (tensor_start.matrix + tensor_end.matrix))
    evals = mean_tensor.eigenvalues
    if not np.all(np.isfinite(evals)) or evals[-1] <= 0.0:
        return euclidean

    projections = mean_tensor.eigenvectors.T @ delta
    geodesic = float(np.sqrt(np.sum((evals[0] / evals) * projections**2)))

    # Guard the bound against round-off
    return max(geodesic, euclidean)


class Fiber:
    """
    Ordered sequence of fiber points

    Point order is path order along the streamline. The fiber owns its
    point list: lists passed in or handed out are copies. The dimension is
    fixed by the first point, or up front; a fiber that has neither is 3D.
    """

    def __init__(
        self,
        points: Optional[Iterable[FiberPoint]] = None,
        dimension: Optional[int] = None
    ):
        self._points: List[FiberPoint] = []
        self._dimension = dimension
        if points is not None:
            for point in points:
                self.add_point(point)

    @classmethod
    def from_arrays(
        cls,
        points: np.ndarray,
        tensors: Optional[np.ndarray] = None
    ) -> "Fiber":
        """
        Build a fiber from point coordinates and optional tensor matrices

        Args:
            points: (M, N) coordinates
            tensors: (M, N, N) tensors; zero tensors if omitted
        """
        points = np.asarray(points, dtype=np.float64)
        dimension = points.shape[1] if points.ndim == 2 else None
        if tensors is None:
            return cls((FiberPoint(p) for p in points), dimension)
        tensors = np.asarray(tensors, dtype=np.float64)
        if len(tensors) != len(points):
            raise ValueError(f"Got {len(points)} points but {len(tensors)} tensors")
        return cls((FiberPoint(p, Tensor(t)) for p, t in zip(points, tensors)), dimension)

    def add_point(self, point: FiberPoint):
        """Append a point to the tail of the fiber"""
        if not isinstance(point, FiberPoint):
            raise TypeError(f"Expected FiberPoint, got {type(point).__name__}")
        if self._dimension is None:
            self._dimension = point.dimension
        elif point.dimension != self._dimension:
            raise ValueError(
                f"Cannot add a {point.dimension}D point to a {self._dimension}D fiber"
            )
        self._points.append(point)

    def set_point_list(self, points: Iterable[FiberPoint]):
        self._points = []
        for point in points:
            self.add_point(point)

    def get_point_list(self) -> List[FiberPoint]:
        return list(self._points)

    def get_point(self, index: int) -> FiberPoint:
        """Return the index-th point; raises IndexError if it does not exist"""
        if not -len(self._points) <= index < len(self._points):
            raise IndexError(f"Fiber has {len(self._points)} points, no point {index}")
        return self._points[index]

    @property
    def number_of_points(self) -> int:
        return len(self._points)

    @property
    def dimension(self) -> int:
        return self._dimension if self._dimension is not None else 3

    def clear(self):
        self._points = []

    def copy(self) -> "Fiber":
        return Fiber(self._points, self._dimension)

    def reversed(self) -> "Fiber":
        return Fiber(self._points[::-1], self._dimension)

    def merge_with(self, other: "Fiber"):
        """
        Append the points of another fiber

        When the other fiber starts where this one ends (the shared seed of
        two tracking directions) the junction point is kept only once.
        """
        points = other.get_point_list()
        if self._points and points and self._points[-1] == points[0]:
            points = points[1:]
        for point in points:
            self.add_point(point)

    @property
    def points(self) -> np.ndarray:
        """Point coordinates (M, N)"""
        if not self._points:
            return np.zeros((0, self.dimension))
        return np.array([p.point for p in self._points])

    @property
    def tensors(self) -> np.ndarray:
        """Tensor matrices (M, N, N)"""
        if not self._points:
            return np.zeros((0, self.dimension, self.dimension))
        return np.array([p.tensor.matrix for p in self._points])

    def fa_values(self) -> np.ndarray:
        return np.array([p.tensor.fa for p in self._points])

    def adc_values(self) -> np.ndarray:
        return np.array([p.tensor.adc for p in self._points])

    def length(self) -> float:
        """Geodesic (tensor-weighted) length; see geodesic_segment_length"""
        if len(self._points) < 2:
            return EMPTY_STATISTIC

        total = 0.0
        for a, b in zip(self._points[:-1], self._points[1:]):
            total += geodesic_segment_length(a.point, b.point, a.tensor, b.tensor)
        return total

    def euclidean_length(self) -> float:
        """Sum of Cartesian segment lengths"""
        if len(self._points) < 2:
            return EMPTY_STATISTIC

        segments = np.diff(self.points, axis=0)
        return float(np.sum(np.linalg.norm(segments, axis=1)))

    def mean_fa(self) -> float:
        """Mean FA of the point tensors, EMPTY_STATISTIC for an empty fiber"""
        if not self._points:
            return EMPTY_STATISTIC
        return float(np.mean(self.fa_values()))

    def mean_adc(self) -> float:
        """Mean ADC of the point tensors, EMPTY_STATISTIC for an empty fiber"""
        if not self._points:
            return EMPTY_STATISTIC
        return float(np.mean(self.adc_values()))

    def __len__(self) -> int:
        return len(self._points)

    def __iter__(self) -> Iterator[FiberPoint]:
        return iter(list(self._points))

    def __getitem__(self, index: int) -> FiberPoint:
        return self.get_point(index)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Fiber):
            return NotImplemented
        return self._points == other.get_point_list()

    def __repr__(self) -> str:
        return f"Fiber(n_points={len(self._points)})"
