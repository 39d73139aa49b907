"""
Explicit Integration Schemes for Tensorline Propagation

First-order Euler, second-order (midpoint) Runge-Kutta and classical
fourth-order Runge-Kutta. Every intermediate stage re-samples the tensor
field and re-runs direction selection: the direction field is the
tensorline rule evaluated on the local tensor, not a fixed vector.
"""

import numpy as np
from typing import Callable, Optional, Tuple
import logging

from ..microstructure.tensor import Tensor
from .config import IntegrationMethod, InvalidConfigurationError
from .direction import DirectionSelector
from .interpolation import TensorSampler
from .reorientation import TensorReorienter

logger = logging.getLogger(__name__)

# Direction at a position given the incoming direction; None where undefined
DirectionFunc = Callable[[np.ndarray, np.ndarray], Optional[np.ndarray]]


def _euler_step(
    position: np.ndarray,
    step: float,
    k1: np.ndarray,
    direction_func: DirectionFunc
) -> Optional[Tuple[np.ndarray, np.ndarray]]:
    """pos + h * k1"""
    return position + step * k1, k1


def _rk2_step(
    position: np.ndarray,
    step: float,
    k1: np.ndarray,
    direction_func: DirectionFunc
) -> Optional[Tuple[np.ndarray, np.ndarray]]:
    """Midpoint rule: direction re-derived at the Euler-predicted midpoint"""
    k2 = direction_func(position + 0.5 * step * k1, k1)
    if k2 is None:
        return None
    return position + step * k2, k2


def _rk4_step(
    position: np.ndarray,
    step: float,
    k1: np.ndarray,
    direction_func: DirectionFunc
) -> Optional[Tuple[np.ndarray, np.ndarray]]:
    """
    Single RK4 integration step

    Args:
        position: Current position (N,)
        step: Integration step length
        k1: Direction at the current position (N,)
        direction_func: Direction at a position given the incoming direction

    Returns:
        new_position: Updated position (N,)
        direction: Weighted mean direction of the step (N,)
    """
    k2 = direction_func(position + 0.5 * step * k1, k1)
    if k2 is None:
        return None
    k3 = direction_func(position + 0.5 * step * k2, k2)
    if k3 is None:
        return None
    k4 = direction_func(position + step * k3, k3)
    if k4 is None:
        return None

    # Weighted combination
    combined = (k1 + 2 * k2 + 2 * k3 + k4) / 6.0
    return position + step * combined, combined


_SCHEMES = {
    IntegrationMethod.EULER: _euler_step,
    IntegrationMethod.RK2: _rk2_step,
    IntegrationMethod.RK4: _rk4_step,
}


class Integrator:
    """
    Advances a streamline position through the tensor field

    The integration step is `time_step` times the smallest voxel spacing,
    one length for every axis so a step keeps the selected direction.
    """

    def __init__(
        self,
        sampler: TensorSampler,
        selector: DirectionSelector,
        reorienter: Optional[TensorReorienter] = None,
        time_step: float = 1.0,
        method: int = IntegrationMethod.RK4,
        spacing: Optional[np.ndarray] = None
    ):
        """
        Args:
            sampler: Tensor field sampler
            selector: Tensorline direction rule
            reorienter: Tensor reorientation, identity if None
            time_step: Step length in units of the smallest voxel spacing
            method: 0 = Euler, 1 = RK2, 2 = RK4
            spacing: Voxel spacing (N,), defaults to the sampled field's
        """
        try:
            self.method = IntegrationMethod(method)
        except ValueError:
            raise InvalidConfigurationError(f"Unsupported integration method: {method}")

        if time_step <= 0:
            raise InvalidConfigurationError(f"Time step must be positive, got {time_step}")

        self.sampler = sampler
        self.selector = selector
        self.reorienter = reorienter or TensorReorienter()
        self.time_step = float(time_step)

        if spacing is None:
            spacing = sampler.field.spacing
        spacing = np.asarray(spacing, dtype=np.float64)
        self.integration_step = self.time_step * float(np.min(spacing))

        self._scheme = _SCHEMES[self.method]

        logger.debug(
            f"Integrator initialized: method={self.method.name}, "
            f"integration_step={self.integration_step:.4g}"
        )

    @property
    def min_step_length(self) -> float:
        return self.integration_step

    def tensor_at(self, position: np.ndarray) -> Tensor:
        """Sampled and reoriented tensor; null tensor outside the field"""
        return self.reorienter.reorient(self.sampler.sample(position))

    def direction_at(self, position: np.ndarray, incoming: np.ndarray) -> Optional[np.ndarray]:
        """
        Tensorline direction at a position

        Returns:
            Unit direction, or None outside the field or on a degenerate tensor
        """
        tensor = self.tensor_at(position)
        if tensor.is_degenerate:
            return None
        return self.selector.next_direction(tensor, incoming)

    def step(
        self,
        position: np.ndarray,
        direction: np.ndarray,
        tensor: Tensor
    ) -> Optional[Tuple[np.ndarray, np.ndarray]]:
        """
        Advance one integration step

        Args:
            position: Current position (N,)
            direction: Incoming propagation direction (N,)
            tensor: Reoriented tensor at `position`

        Returns:
            (new_position, step_direction), or None when an intermediate
            stage leaves the field or meets a degenerate tensor
        """
        position = np.asarray(position, dtype=np.float64)
        k1 = self.selector.next_direction(tensor, direction)
        return self._scheme(position, self.integration_step, k1, self.direction_at)
