"""
Tensorline Direction Selection

Implements the propagation rule of Weinstein's tensorline algorithm:
the outgoing direction blends the principal eigenvector (sign-matched to
the incoming direction) with the incoming direction deflected by the
tensor, v_out ~ (1 - s) e1 + s T v_in / |T v_in|.
"""

import numpy as np
from typing import Tuple
import logging

from ..microstructure.tensor import Tensor

logger = logging.getLogger(__name__)

# Eigenvalues within this relative distance of l1 span the principal eigenspace
EIGENSPACE_TOLERANCE = 1e-6


def _normalize(vector: np.ndarray) -> np.ndarray:
    norm = np.linalg.norm(vector)
    if norm < 1e-12:
        return np.zeros_like(vector)
    return vector / norm


def principal_direction(tensor: Tensor, incoming: np.ndarray) -> np.ndarray:
    """
    Principal eigenvector with its sign resolved against the path history

    When the largest eigenvalue is repeated (planar or isotropic tensors)
    every unit vector of that eigenspace is a principal eigenvector, and
    the one closest to the incoming direction is returned.

    Args:
        tensor: Local tensor
        incoming: Current propagation direction (N,)

    Returns:
        Unit vector e with dot(e, incoming) >= 0
    """
    incoming = np.asarray(incoming, dtype=np.float64)
    evals = tensor.eigenvalues
    evecs = tensor.eigenvectors

    tolerance = EIGENSPACE_TOLERANCE * max(abs(evals[0]), 1e-300)
    n_principal = int(np.sum(evals >= evals[0] - tolerance))

    direction = evecs[:, 0]
    if n_principal > 1:
        basis = evecs[:, :n_principal]
        projected = basis @ (basis.T @ incoming)
        if np.linalg.norm(projected) > 1e-12:
            direction = _normalize(projected)

    if np.dot(direction, incoming) < 0:
        direction = -direction

    return direction


class DirectionSelector:
    """
    Tensorline propagation direction

    Smoothness 0 gives pure eigenvector following (streamline tracking),
    smoothness 1 gives pure tensor deflection of the incoming direction.
    """

    def __init__(self, smoothness: float = 0.2):
        self.smoothness = float(smoothness)

    def next_direction(self, tensor: Tensor, incoming: np.ndarray) -> np.ndarray:
        """
        Outgoing direction for a tensor and an incoming direction

        Args:
            tensor: Local tensor (already reoriented)
            incoming: Current propagation direction (N,)

        Returns:
            Unit direction vector (N,) never pointing more than 90 degrees
            away from `incoming`
        """
        incoming = _normalize(np.asarray(incoming, dtype=np.float64))
        e1 = principal_direction(tensor, incoming)

        if self.smoothness == 0.0:
            return e1

        deflected = _normalize(tensor.dot(incoming))
        if not np.any(deflected):
            deflected = e1

        blended = (1.0 - self.smoothness) * e1 + self.smoothness * deflected
        direction = _normalize(blended)
        if not np.any(direction):
            return e1

        # T v_in can point backwards for indefinite tensors
        if np.dot(direction, incoming) < 0:
            direction = -direction

        return direction

    @staticmethod
    def initial_directions(tensor: Tensor) -> Tuple[np.ndarray, np.ndarray]:
        """The two seed directions +e1 and -e1"""
        e1 = tensor.principal_eigenvector
        return e1, -e1
