"""
Tractography Module

Deterministic tensorline tractography through diffusion tensor fields.

Main components:
- TensorField / TensorSampler: tensor volume and point-wise interpolation
- TensorReorienter: finite strain and PPD tensor reorientation
- DirectionSelector: tensorline propagation rule
- Integrator: Euler, RK2 and RK4 integration schemes
- TensorlineTracker / FiberTrackingFilter: per-seed tracking and
  partitioned whole-mask runs
- Fiber: fiber container with length and mean FA/ADC
- StreamlineUtils: fiber I/O and bundle statistics
"""

from .config import (
    TrackingConfig,
    IntegrationMethod,
    TractographyError,
    InvalidConfigurationError
)
from .tensor_field import TensorField
from .interpolation import TensorSampler
from .reorientation import AffineTransform, TensorReorienter
from .direction import DirectionSelector
from .integrators import Integrator
from .fiber import Fiber, FiberPoint, EMPTY_STATISTIC
from .seeding import SeedGenerator
from .tensorline_tracker import (
    TensorlineTracker,
    FiberTrackingFilter,
    TrackingResult,
    track_fibers
)
from .streamline_utils import StreamlineUtils

__all__ = [
    'TrackingConfig',
    'IntegrationMethod',
    'TractographyError',
    'InvalidConfigurationError',
    'TensorField',
    'TensorSampler',
    'AffineTransform',
    'TensorReorienter',
    'DirectionSelector',
    'Integrator',
    'Fiber',
    'FiberPoint',
    'EMPTY_STATISTIC',
    'SeedGenerator',
    'TensorlineTracker',
    'FiberTrackingFilter',
    'TrackingResult',
    'track_fibers',
    'StreamlineUtils'
]
