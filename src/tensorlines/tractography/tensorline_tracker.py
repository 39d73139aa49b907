"""
Tensorline Fiber Tracking

Deterministic tractography following Weinstein's tensorline algorithm:
- Seeds from a seed mask (optionally several jittered seeds per voxel)
- Tracking in both directions of the seed's principal eigenvector
- Euler, RK2 or RK4 integration through the (reoriented) tensor field
- FA, domain and length stopping criteria, minimum-length filtering
- Seed set partitioned into disjoint slabs tracked by parallel workers
"""

import numpy as np
from typing import List, Tuple, Optional, Dict, NamedTuple
import logging
import threading
import time
from dataclasses import dataclass, field as dataclass_field
from joblib import Parallel, delayed
from tqdm import tqdm

from ..microstructure.tensor import Tensor
from .config import TrackingConfig, InvalidConfigurationError
from .direction import DirectionSelector
from .fiber import Fiber, FiberPoint, geodesic_segment_length
from .integrators import Integrator
from .interpolation import TensorSampler
from .reorientation import AffineTransform, TensorReorienter
from .seeding import SeedGenerator, partition_seeds
from .tensor_field import TensorField

logger = logging.getLogger(__name__)

# Slack when comparing accumulated path length with the output sampling
_SAMPLING_EPSILON = 1e-9


class TrackOutcome(NamedTuple):
    """Result of tracking one seed"""
    fiber: Optional[Fiber]
    status: str                 # 'kept', 'too_short' or 'rejected_seed'
    reasons: Tuple[str, str]    # termination reason of (forward, backward)


@dataclass
class TrackingResult:
    """Fibers and diagnostics of a tracking run"""
    fibers: List[Fiber]
    fibers_seeded: np.ndarray
    statistics: Dict
    parameters: Dict
    seed_metadata: Dict = dataclass_field(default_factory=dict)

    def get_statistics_summary(self) -> str:
        """Get formatted summary of tracking statistics"""
        stats = self.statistics
        summary = []
        summary.append("=" * 60)
        summary.append("TENSORLINE TRACKING STATISTICS")
        summary.append("=" * 60)
        summary.append(f"Seeds: {stats['n_seeds']}")
        summary.append(f"Rejected seeds: {stats['n_rejected_seeds']}")
        summary.append(f"Fibers too short: {stats['n_too_short']}")
        summary.append(f"Fibers kept: {stats['n_fibers']}")

        if stats['n_seeds'] > 0:
            success_rate = 100.0 * stats['n_fibers'] / stats['n_seeds']
            summary.append(f"Success rate: {success_rate:.1f}%")

        summary.append(f"Tracking time: {stats['tracking_time_seconds']:.1f}s")
        summary.append("")
        summary.append("Termination reasons:")

        for reason, count in sorted(
            stats['termination_reasons'].items(),
            key=lambda x: x[1],
            reverse=True
        ):
            summary.append(f"  {reason}: {count}")

        summary.append("=" * 60)

        return "\n".join(summary)


class TensorlineTracker:
    """
    Tracks single fibers from seed positions

    Tracking space is the physical space of the tensor field, mapped
    through the optional affine transform. Tensors are reoriented into
    tracking space before they are used for gating or direction selection.
    The tracker only reads shared state, so one instance can serve several
    worker threads.
    """

    def __init__(
        self,
        field: TensorField,
        config: Optional[TrackingConfig] = None,
        transform: Optional[AffineTransform] = None
    ):
        """
        Args:
            field: Tensor field
            config: Tracking options (defaults if None)
            transform: Affine map from the field's physical space to the
                tracking/output space
        """
        self.config = (config or TrackingConfig()).validate()
        self.field = field

        if transform is not None and transform.dimension != field.dimension:
            raise InvalidConfigurationError(
                f"Transform dimension {transform.dimension} does not match "
                f"field dimension {field.dimension}"
            )

        geometry = AffineTransform.from_homogeneous(field.affine)
        self.transform = transform
        self.index_to_space = geometry if transform is None else transform.compose(geometry)

        self.sampler = TensorSampler(
            field,
            use_trilinear=self.config.use_trilinear_interpolation,
            use_log_euclidean=self.config.use_log_euclidean,
            space_to_index=self.index_to_space.inverse()
        )
        self.reorienter = TensorReorienter(
            self._reorientation_jacobian(),
            use_pdd=self.config.transform_tensor_with_pdd
        )
        self.selector = DirectionSelector(self.config.smoothness)
        self.integrator = Integrator(
            self.sampler,
            self.selector,
            self.reorienter,
            time_step=self.config.time_step,
            method=self.config.integration_method,
            spacing=field.spacing
        )

        # Maximum steps to prevent infinite loops
        self.max_steps = int(np.ceil(self.config.max_length / self.integrator.min_step_length)) + 1000

        logger.debug(
            f"TensorlineTracker initialized: method={self.integrator.method.name}, "
            f"interpolation={self.sampler.mode}, reorientation={self.reorienter.enabled}, "
            f"max_steps={self.max_steps}"
        )

    def _reorientation_jacobian(self) -> Optional[np.ndarray]:
        """Jacobian from the tensors' frame to tracking space"""
        jacobian = None
        if self.config.transform_tensor_with_image_direction:
            jacobian = self.field.direction
        if self.transform is not None:
            jacobian = self.transform.matrix if jacobian is None else self.transform.matrix @ jacobian
        return jacobian

    def index_to_tracking(self, index: np.ndarray) -> np.ndarray:
        """Continuous voxel index -> tracking-space position"""
        return self.index_to_space.transform_point(index)

    def tensor_at(self, position: np.ndarray) -> Tensor:
        return self.integrator.tensor_at(position)

    def track_in_direction(
        self,
        seed_position: np.ndarray,
        seed_tensor: Tensor,
        initial_direction: np.ndarray
    ) -> Tuple[List[FiberPoint], str, float]:
        """
        Integrate a streamline in one direction from the seed

        Points are kept every `output_fiber_sampling` of path; the last
        accepted position is always kept so the fiber ends where tracking
        stopped.

        Args:
            seed_position: Seed in tracking space (N,)
            seed_tensor: Reoriented tensor at the seed
            initial_direction: Starting direction (N,)

        Returns:
            points: Retained fiber points, starting with the seed
            termination_reason: String describing why tracking stopped
            length: Geodesic length of the integrated path
        """
        config = self.config
        position = np.asarray(seed_position, dtype=np.float64)
        tensor = seed_tensor
        direction = np.asarray(initial_direction, dtype=np.float64)

        points = [FiberPoint(position, tensor)]

        if tensor.is_degenerate:
            return points, 'degenerate_tensor', 0.0
        if tensor.fa < config.fa_threshold:
            return points, 'low_fa', 0.0

        current_length = 0.0
        since_output = 0.0
        termination_reason = 'max_steps'

        for _ in range(self.max_steps):
            result = self.integrator.step(position, direction, tensor)
            if result is None:
                termination_reason = 'exit_volume'
                break

            new_position, new_direction = result

            # 1. Check if inside volume
            if not self.sampler.is_inside(new_position):
                termination_reason = 'exit_volume'
                break

            # 2. Check tensor
            new_tensor = self.tensor_at(new_position)
            if new_tensor.is_degenerate:
                termination_reason = 'degenerate_tensor'
                break

            # 3. Check FA threshold
            if new_tensor.fa < config.fa_threshold:
                termination_reason = 'low_fa'
                break

            # 4. Check maximum length
            segment = geodesic_segment_length(position, new_position, tensor, new_tensor)
            if current_length + segment > config.max_length:
                termination_reason = 'max_length'
                break

            since_output += float(np.linalg.norm(new_position - position))
            current_length += segment

            position = new_position
            tensor = new_tensor
            direction = new_direction

            # Store point at the output sampling distance
            if since_output + _SAMPLING_EPSILON >= config.output_fiber_sampling:
                points.append(FiberPoint(position, tensor))
                since_output = 0.0

        if since_output > 0.0:
            points.append(FiberPoint(position, tensor))

        return points, termination_reason, current_length

    def track(self, seed_position: np.ndarray) -> TrackOutcome:
        """
        Track a fiber through a seed in both directions

        The backward points are reversed and joined to the forward points
        so the seed appears once, at index (number of backward points - 1).

        Args:
            seed_position: Seed in tracking space (N,)

        Returns:
            TrackOutcome with the fiber (None unless status is 'kept')
        """
        seed_position = np.asarray(seed_position, dtype=np.float64)

        if not self.sampler.is_inside(seed_position):
            return TrackOutcome(None, 'rejected_seed', ('exit_volume', 'exit_volume'))

        seed_tensor = self.tensor_at(seed_position)
        if seed_tensor.is_degenerate:
            return TrackOutcome(None, 'rejected_seed', ('degenerate_tensor', 'degenerate_tensor'))
        if seed_tensor.fa < self.config.fa_threshold2:
            return TrackOutcome(None, 'rejected_seed', ('low_fa', 'low_fa'))

        forward_dir, backward_dir = self.selector.initial_directions(seed_tensor)

        forward, reason_fwd, length_fwd = self.track_in_direction(seed_position, seed_tensor, forward_dir)
        backward, reason_bwd, length_bwd = self.track_in_direction(seed_position, seed_tensor, backward_dir)

        # Combine streamlines (reverse backward, share the seed)
        fiber = Fiber(backward).reversed()
        fiber.merge_with(Fiber(forward))

        reasons = (reason_fwd, reason_bwd)
        # Minimum length applies to the tracked path, not the thinned points
        if length_fwd + length_bwd < self.config.min_length:
            return TrackOutcome(None, 'too_short', reasons)

        return TrackOutcome(fiber, 'kept', reasons)

    def get_config(self) -> dict:
        """Get tracker configuration for logging"""
        return {
            **self.config.to_dict(),
            'integration_step': self.integrator.integration_step,
            'max_steps': self.max_steps,
            'interpolation': self.sampler.mode,
            'reorientation': self.reorienter.enabled,
            'voxel_size': self.field.spacing.tolist()
        }


class FiberTrackingFilter:
    """
    Tracks fibers from every seed of a seed mask

    The seed set is split into slabs along the first image axis; each slab
    is tracked by one worker. Workers share the read-only tracker and write
    only their own slab of the fibers-seeded image; the progress bar is the
    one shared object and is updated under a lock.
    """

    def __init__(
        self,
        field: TensorField,
        config: Optional[TrackingConfig] = None,
        transform: Optional[AffineTransform] = None
    ):
        self.config = (config or TrackingConfig()).validate()
        self.tracker = TensorlineTracker(field, self.config, transform)
        self.field = field

        logger.info(
            f"FiberTrackingFilter initialized: method={self.tracker.integrator.method.name}, "
            f"sampling={self.config.sampling}, n_jobs={self.config.n_jobs}"
        )

    def run(self, seed_mask: np.ndarray) -> TrackingResult:
        """
        Track fibers from all seeds of the mask

        Args:
            seed_mask: Mask on the tensor field grid; voxels > 0 are seeded

        Returns:
            TrackingResult with fibers in seed order, the fibers-seeded
            count image and tracking statistics
        """
        seed_mask = np.asarray(seed_mask)
        if seed_mask.shape != self.field.shape:
            raise InvalidConfigurationError(
                f"Seed mask shape {seed_mask.shape} does not match tensor "
                f"field shape {self.field.shape}"
            )

        start_time = time.time()

        seed_gen = SeedGenerator(rng_seed=self.config.rng_seed)
        seeds, voxels, _ = seed_gen.mask_seeds(seed_mask, self.config.sampling)

        fibers_seeded = np.zeros(seed_mask.shape, dtype=np.uint16)

        n_jobs = self.config.n_jobs
        if n_jobs == -1:
            from joblib import cpu_count
            n_jobs = cpu_count()
        partitions = partition_seeds(voxels, seed_mask.shape, n_jobs)

        logger.info(
            f"Starting tensorline tracking with {len(seeds)} seeds in "
            f"{len(partitions)} partition(s)..."
        )

        pbar = tqdm(
            total=len(seeds),
            desc="Tracking",
            unit="seed",
            disable=not self.config.show_progress
        )
        pbar_lock = threading.Lock()

        try:
            partition_results = Parallel(n_jobs=n_jobs, prefer="threads")(
                delayed(self._track_partition)(
                    seeds[indices], voxels[indices], fibers_seeded, pbar, pbar_lock
                )
                for _, indices in partitions
            )
        finally:
            pbar.close()

        fibers = []
        stats = _empty_statistics()
        stats['n_seeds'] = int(len(seeds))
        for partition_fibers, partition_stats in partition_results:
            fibers.extend(partition_fibers)
            _merge_statistics(stats, partition_stats)

        elapsed = time.time() - start_time
        stats['tracking_time_seconds'] = elapsed

        logger.info(
            f"Tracking complete: {stats['n_fibers']} fibers from {len(seeds)} "
            f"seeds in {elapsed:.1f}s"
        )

        return TrackingResult(
            fibers=fibers,
            fibers_seeded=fibers_seeded,
            statistics=stats,
            parameters=self.tracker.get_config(),
            seed_metadata=seed_gen.describe()
        )

    def _track_partition(
        self,
        seeds: np.ndarray,
        voxels: np.ndarray,
        fibers_seeded: np.ndarray,
        pbar: tqdm,
        pbar_lock: threading.Lock
    ) -> Tuple[List[Fiber], Dict]:
        """Track the seeds of one slab; writes only that slab's counters"""
        fibers = []
        stats = _empty_statistics()

        for seed, voxel in zip(seeds, voxels):
            outcome = self.tracker.track(self.tracker.index_to_tracking(seed))

            if outcome.status == 'rejected_seed':
                stats['n_rejected_seeds'] += 1
                _update_termination_stats(stats, 'rejected_seed')
            elif outcome.status == 'too_short':
                stats['n_too_short'] += 1
                _update_termination_stats(stats, 'too_short')
            else:
                fibers.append(outcome.fiber)
                stats['n_fibers'] += 1
                _update_termination_stats(stats, outcome.reasons[0])
                _update_termination_stats(stats, outcome.reasons[1])
                cell = tuple(voxel)
                fibers_seeded[cell] = min(int(fibers_seeded[cell]) + 1, np.iinfo(np.uint16).max)

            with pbar_lock:
                pbar.update(1)

        return fibers, stats


def track_fibers(
    field: TensorField,
    seed_mask: np.ndarray,
    config: Optional[TrackingConfig] = None,
    transform: Optional[AffineTransform] = None
) -> TrackingResult:
    """Convenience wrapper: FiberTrackingFilter(field, config, transform).run(seed_mask)"""
    return FiberTrackingFilter(field, config, transform).run(seed_mask)


def _empty_statistics() -> Dict:
    return {
        'n_seeds': 0,
        'n_fibers': 0,
        'n_rejected_seeds': 0,
        'n_too_short': 0,
        'termination_reasons': {},
        'tracking_time_seconds': 0.0
    }


def _update_termination_stats(stats: Dict, reason: str):
    """Update termination reason statistics"""
    if reason not in stats['termination_reasons']:
        stats['termination_reasons'][reason] = 0
    stats['termination_reasons'][reason] += 1


def _merge_statistics(total: Dict, partial: Dict):
    for key in ('n_fibers', 'n_rejected_seeds', 'n_too_short'):
        total[key] += partial[key]
    for reason, count in partial['termination_reasons'].items():
        total['termination_reasons'][reason] = total['termination_reasons'].get(reason, 0) + count
