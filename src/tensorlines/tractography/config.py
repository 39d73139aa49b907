"""
Tracking Configuration

Options controlling tensorline tracking. Every option of the tracking
filter lives here so a run can be validated before any seed is tracked,
saved next to its output, and reloaded from JSON.
"""

import json
import logging
from dataclasses import dataclass, asdict, fields
from enum import IntEnum
from pathlib import Path
from typing import Dict, Optional, Union

logger = logging.getLogger(__name__)


class TractographyError(Exception):
    """Base exception for tracking failures"""
    pass


class InvalidConfigurationError(TractographyError):
    """Exception raised for unsupported or inconsistent tracking options"""
    pass


class IntegrationMethod(IntEnum):
    """Explicit integration schemes, selected by integer value"""
    EULER = 0
    RK2 = 1
    RK4 = 2


# CamelCase option names accepted in parameter files
_OPTION_ALIASES = {
    'Smoothness': 'smoothness',
    'MinLength': 'min_length',
    'MaxLength': 'max_length',
    'FAThreshold': 'fa_threshold',
    'FAThreshold2': 'fa_threshold2',
    'TimeStep': 'time_step',
    'OutputFiberSampling': 'output_fiber_sampling',
    'UseTriLinearInterpolation': 'use_trilinear_interpolation',
    'IntegrationMethod': 'integration_method',
    'Sampling': 'sampling',
    'TransformTensorWithImageDirection': 'transform_tensor_with_image_direction',
    'TransformTensorWithPDD': 'transform_tensor_with_pdd',
}


@dataclass
class TrackingConfig:
    """
    Tensorline tracking options

    Attributes:
        smoothness: Tensorline blend weight in [0, 1]; 0 follows the
            principal eigenvector, 1 follows the tensor-deflected direction
        min_length: Fibers shorter than this (mm) are discarded
        max_length: Tracking in one direction stops before exceeding this (mm)
        fa_threshold: Tracking stops where FA drops below this
        fa_threshold2: Seeds whose tensor FA is below this are not tracked
        time_step: Integration step, in units of the smallest voxel spacing
        output_fiber_sampling: Spacing (mm) of the points kept in the output
            fiber; <= 0 keeps every integration point
        use_trilinear_interpolation: Linear (True) or nearest-neighbor tensor
            interpolation
        integration_method: 0 = Euler, 1 = RK2, 2 = RK4
        sampling: Number of seeds per foreground voxel
        transform_tensor_with_image_direction: Rotate tensors from the image
            axes into physical space using the image direction cosines
        transform_tensor_with_pdd: Reorient with the preservation of
            principal direction strategy (True) or finite strain (False)
        use_log_euclidean: Interpolate tensors in the log domain
        rng_seed: Seed of the sub-voxel jitter generator
        n_jobs: Number of tracking workers
        show_progress: Display a progress bar while tracking
    """
    smoothness: float = 0.2
    min_length: float = 10.0
    max_length: float = 200.0
    fa_threshold: float = 0.2
    fa_threshold2: float = 0.2
    time_step: float = 1.0
    output_fiber_sampling: float = 0.5
    use_trilinear_interpolation: bool = True
    integration_method: int = IntegrationMethod.RK4
    sampling: int = 1
    transform_tensor_with_image_direction: bool = False
    transform_tensor_with_pdd: bool = True
    use_log_euclidean: bool = False
    rng_seed: int = 0
    n_jobs: int = 1
    show_progress: bool = False

    def validate(self) -> "TrackingConfig":
        """
        Check every option, raising InvalidConfigurationError on the first
        problem found

        Returns:
            self, for chaining
        """
        if self.integration_method not in [m.value for m in IntegrationMethod]:
            raise InvalidConfigurationError(
                f"Unsupported integration method: {self.integration_method} "
                f"(expected 0 = Euler, 1 = RK2 or 2 = RK4)"
            )

        if not isinstance(self.use_trilinear_interpolation, bool):
            raise InvalidConfigurationError(
                f"Unsupported interpolation mode: {self.use_trilinear_interpolation!r}"
            )

        if self.use_log_euclidean and not self.use_trilinear_interpolation:
            raise InvalidConfigurationError(
                "Log-Euclidean interpolation requires trilinear interpolation"
            )

        if not 0.0 <= self.smoothness <= 1.0:
            raise InvalidConfigurationError(
                f"Smoothness must be in [0, 1], got {self.smoothness}"
            )

        if self.time_step <= 0:
            raise InvalidConfigurationError(f"Time step must be positive, got {self.time_step}")

        if self.min_length < 0 or self.max_length <= 0:
            raise InvalidConfigurationError(
                f"Invalid length bounds: min_length={self.min_length}, "
                f"max_length={self.max_length}"
            )

        if self.min_length > self.max_length:
            raise InvalidConfigurationError(
                f"min_length ({self.min_length}) exceeds max_length ({self.max_length})"
            )

        for name in ('fa_threshold', 'fa_threshold2'):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise InvalidConfigurationError(f"{name} must be in [0, 1], got {value}")

        if int(self.sampling) != self.sampling or self.sampling < 1:
            raise InvalidConfigurationError(f"Sampling must be a positive integer, got {self.sampling}")

        if int(self.n_jobs) != self.n_jobs or self.n_jobs == 0 or self.n_jobs < -1:
            raise InvalidConfigurationError(f"n_jobs must be positive or -1, got {self.n_jobs}")

        return self

    @property
    def method(self) -> IntegrationMethod:
        return IntegrationMethod(self.integration_method)

    @classmethod
    def from_dict(cls, options: Dict) -> "TrackingConfig":
        """
        Build a configuration from a dictionary

        Accepts both the snake_case field names and the CamelCase option
        names (e.g. 'FAThreshold2').
        """
        known = {f.name for f in fields(cls)}
        kwargs = {}

        for key, value in options.items():
            name = _OPTION_ALIASES.get(key, key)
            if name not in known:
                raise InvalidConfigurationError(f"Unknown tracking option: {key}")
            kwargs[name] = value

        if 'integration_method' in kwargs:
            kwargs['integration_method'] = int(kwargs['integration_method'])
        for name in ('transform_tensor_with_image_direction', 'transform_tensor_with_pdd'):
            if name in kwargs:
                kwargs[name] = bool(kwargs[name])
        # 0/1 integer flags
        interpolation = kwargs.get('use_trilinear_interpolation')
        if type(interpolation) is int and interpolation in (0, 1):
            kwargs['use_trilinear_interpolation'] = bool(interpolation)

        return cls(**kwargs).validate()

    @classmethod
    def from_json(cls, filepath: Union[str, Path]) -> "TrackingConfig":
        """Load and validate a configuration JSON file"""
        logger.info(f"Loading tracking configuration from {filepath}")
        with open(filepath, 'r') as f:
            options = json.load(f)
        return cls.from_dict(options)

    def update(self, overrides: Optional[Dict] = None) -> "TrackingConfig":
        """Return a validated copy with non-None overrides applied"""
        options = self.to_dict()
        for key, value in (overrides or {}).items():
            if value is not None:
                options[_OPTION_ALIASES.get(key, key)] = value
        return TrackingConfig.from_dict(options)

    def to_dict(self) -> Dict:
        options = asdict(self)
        options['integration_method'] = int(self.integration_method)
        return options
