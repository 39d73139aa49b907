"""
Seed Generation from Seed Masks

Every foreground voxel (value > 0) of a seed mask seeds tracking.
With `sampling` > 1 each voxel yields that many sub-seeds, jittered
uniformly inside the voxel by a deterministic RNG so runs are reproducible.
"""

import numpy as np
from typing import Dict, List, Optional, Tuple
import logging
from pathlib import Path
import json
from datetime import datetime

logger = logging.getLogger(__name__)


class SeedGenerator:
    """
    Seeds from masks, with a record of every mask seeded
    """

    def __init__(self, rng_seed: Optional[int] = 0):
        """
        Args:
            rng_seed: Seed of the jitter generator (None = derived from the clock)
        """
        if rng_seed is None:
            rng_seed = int(datetime.now().timestamp() * 1000000) % (2**32)

        self.rng_seed = rng_seed
        self.rng = np.random.RandomState(rng_seed)
        self.history: List[Dict] = []

        logger.debug(f"SeedGenerator: rng_seed={rng_seed}")

    def mask_seeds(
        self,
        mask: np.ndarray,
        sampling: int = 1
    ) -> Tuple[np.ndarray, np.ndarray, Dict]:
        """
        Generate seeds from the foreground voxels of a mask

        Seeds are continuous voxel indices (voxel centres at integer
        indices). Voxels are visited in C order, so seeds of the same
        first-axis slab are contiguous.

        Args:
            mask: Seed mask (any shape); voxels > 0 are seeded
            sampling: Seeds per voxel; 1 = voxel centre, > 1 = jittered

        Returns:
            seeds: Seed positions in voxel index space (M, N)
            voxels: Integer index of the voxel owning each seed (M, N)
            metadata: Seeding summary
        """
        if sampling < 1:
            raise ValueError(f"Sampling must be at least 1, got {sampling}")

        mask = np.asarray(mask)
        seed_voxels = np.argwhere(mask > 0)

        if len(seed_voxels) == 0:
            logger.warning("Seed mask is empty - no seeds generated")

        if sampling == 1:
            voxels = seed_voxels
            seeds = voxels.astype(np.float64)
        else:
            voxels = np.repeat(seed_voxels, sampling, axis=0)
            seeds = voxels + self.rng.uniform(-0.5, 0.5, size=voxels.shape)

        metadata = {
            'strategy': 'seed_mask',
            'sampling': sampling,
            'n_voxels': int(len(seed_voxels)),
            'n_seeds': int(len(seeds)),
            'jitter': sampling > 1,
            'rng_seed': self.rng_seed
        }
        self.history.append({'timestamp': datetime.now().isoformat(), **metadata})

        logger.info(f"Generated {len(seeds)} seeds from {len(seed_voxels)} voxels")

        return seeds, voxels, metadata

    def describe(self) -> Dict:
        """Everything needed to regenerate the same seeds"""
        return {
            'rng_seed': self.rng_seed,
            'numpy_version': np.__version__,
            'masks_seeded': list(self.history)
        }

    def save_seed_log(self, filepath: str):
        """Write describe() as JSON"""
        filepath = Path(filepath)
        filepath.parent.mkdir(parents=True, exist_ok=True)

        with open(filepath, 'w') as f:
            json.dump(self.describe(), f, indent=2)

        logger.info(f"Seed log saved to: {filepath}")


def partition_seeds(voxels: np.ndarray, shape: Tuple[int, ...], n_partitions: int):
    """
    Split seeds into disjoint slabs along the first image axis

    Each slab covers a contiguous range of first-axis indices, so no two
    partitions own the same voxel.

    Args:
        voxels: Owning voxel index of each seed (M, N), C order
        shape: Seed mask shape
        n_partitions: Requested number of slabs

    Returns:
        List of (first_axis_range, seed_index_array) for non-empty slabs
    """
    n_partitions = max(1, min(int(n_partitions), int(shape[0])))
    bounds = np.linspace(0, shape[0], n_partitions + 1).astype(int)

    partitions = []
    first_axis = voxels[:, 0] if len(voxels) else np.zeros(0, dtype=int)
    for start, stop in zip(bounds[:-1], bounds[1:]):
        selected = np.nonzero((first_axis >= start) & (first_axis < stop))[0]
        if len(selected):
            partitions.append(((int(start), int(stop)), selected))

    return partitions
