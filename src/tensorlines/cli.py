"""
tensorlines Command-Line Interface

Tensorline fiber tracking and fiber bundle statistics.
"""

import argparse
import sys
import json
import logging
from pathlib import Path
from datetime import datetime

from . import __version__
from .utils.logger import get_logger, log_decision


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="tensorlines: Diffusion Tensor Fiber Tracking & Bundle Statistics",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Track fibers from every voxel of a seed mask
  tensorlines track --tensors dti.nii.gz --seeds wm_mask.nii.gz -o fibers.vtk

  # RK2 integration, 2 seeds per voxel, 4 workers
  tensorlines track --tensors dti.nii.gz --seeds roi.nii.gz -o fibers.vtk \\
      --integration-method 1 --sampling 2 --n-jobs 4

  # Mean FA / ADC / length of a bundle
  tensorlines bundle-stats -i fibers.vtk -o stats.json
        """
    )

    parser.add_argument('--version', action='version', version=f'tensorlines {__version__}')
    parser.add_argument('--verbose', '-v', action='store_true', help='Verbose output')
    parser.add_argument('--debug', action='store_true', help='Debug mode')
    parser.add_argument('--log-dir', help='Also write a detailed log file to this directory')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    # Tracking command
    track_parser = subparsers.add_parser('track', help='Tensorline fiber tracking')
    track_parser.add_argument('--tensors', '-t', required=True,
                              help='Tensor image (NIfTI, 6 or 9 components)')
    track_parser.add_argument('--layout', choices=['upper', 'lower'],
                              help='Component order of 6-component tensor images')
    track_parser.add_argument('--seeds', '-s', required=True, help='Seed mask (NIfTI)')
    track_parser.add_argument('--output', '-o', required=True,
                              help='Output fibers (.vtk, .h5 or .trk)')
    track_parser.add_argument('--config', help='Tracking configuration JSON')
    track_parser.add_argument('--transform',
                              help='Affine transform to the output space (4x4 text or .npy)')
    track_parser.add_argument('--fibers-seeded', help='Output fibers-seeded count image (NIfTI)')
    track_parser.add_argument('--decision-log', help='Append a run record to this markdown file')
    track_parser.add_argument('--smoothness', type=float, help='Tensorline smoothness in [0, 1]')
    track_parser.add_argument('--min-length', type=float, help='Minimum fiber length in mm')
    track_parser.add_argument('--max-length', type=float, help='Maximum fiber length in mm')
    track_parser.add_argument('--fa-threshold', type=float, help='FA below which tracking stops')
    track_parser.add_argument('--fa-threshold2', type=float,
                              help='FA below which a seed is not tracked')
    track_parser.add_argument('--time-step', type=float, help='Step in units of the smallest voxel spacing')
    track_parser.add_argument('--output-fiber-sampling', type=float,
                              help='Spacing in mm of output fiber points')
    track_parser.add_argument('--interpolation', choices=['linear', 'nearest', 'log-euclidean'],
                              help='Tensor interpolation mode')
    track_parser.add_argument('--integration-method', type=int,
                              help='0 = Euler, 1 = RK2, 2 = RK4')
    track_parser.add_argument('--sampling', type=int, help='Seeds per voxel')
    track_parser.add_argument('--image-direction', dest='transform_tensor_with_image_direction',
                              action='store_true', default=None,
                              help='Rotate tensors with the image direction cosines')
    track_parser.add_argument('--finite-strain', dest='transform_tensor_with_pdd',
                              action='store_false', default=None,
                              help='Reorient tensors with finite strain instead of PPD')
    track_parser.add_argument('--rng-seed', type=int, help='Seed of the sub-voxel jitter')
    track_parser.add_argument('--n-jobs', type=int, help='Number of tracking workers')
    track_parser.add_argument('--progress', dest='show_progress', action='store_true',
                              default=None, help='Show a progress bar')

    # Bundle statistics command
    stats_parser = subparsers.add_parser('bundle-stats', help='Mean FA/ADC/length of a fiber bundle')
    stats_parser.add_argument('--input', '-i', required=True, help='Input bundle (.vtk, .h5 or .trk)')
    stats_parser.add_argument('--output', '-o', help='Output statistics JSON')

    return parser


def main(argv=None):
    """Main CLI entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)

    # Setup logging
    log_level = logging.DEBUG if args.debug else (logging.INFO if args.verbose else logging.WARNING)
    logger = get_logger(log_dir=args.log_dir, level=log_level)
    logger.setLevel(log_level)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    # Execute command
    try:
        if args.command == 'track':
            run_tracking(args)
        elif args.command == 'bundle-stats':
            compute_bundle_stats(args)
        else:
            parser.print_help()
            sys.exit(1)

        logger.info("Command completed successfully")

    except Exception as e:
        logger.error(f"Error: {e}", exc_info=args.debug)
        sys.exit(1)


def _tracking_overrides(args) -> dict:
    """Command-line options that override the configuration file"""
    overrides = {
        'smoothness': args.smoothness,
        'min_length': args.min_length,
        'max_length': args.max_length,
        'fa_threshold': args.fa_threshold,
        'fa_threshold2': args.fa_threshold2,
        'time_step': args.time_step,
        'output_fiber_sampling': args.output_fiber_sampling,
        'integration_method': args.integration_method,
        'sampling': args.sampling,
        'transform_tensor_with_image_direction': args.transform_tensor_with_image_direction,
        'transform_tensor_with_pdd': args.transform_tensor_with_pdd,
        'rng_seed': args.rng_seed,
        'n_jobs': args.n_jobs,
        'show_progress': args.show_progress,
    }

    if args.interpolation is not None:
        overrides['use_trilinear_interpolation'] = args.interpolation != 'nearest'
        overrides['use_log_euclidean'] = args.interpolation == 'log-euclidean'

    return overrides


def _load_transform(filepath: str):
    import numpy as np
    from .tractography.reorientation import AffineTransform

    if filepath.endswith('.npy'):
        matrix = np.load(filepath)
    else:
        matrix = np.loadtxt(filepath)
    return AffineTransform.from_homogeneous(matrix)


def run_tracking(args):
    """Run tensorline tracking"""
    import nibabel as nib
    import numpy as np
    from .tractography.config import TrackingConfig
    from .tractography.tensor_field import TensorField
    from .tractography.tensorline_tracker import FiberTrackingFilter
    from .tractography.streamline_utils import StreamlineUtils

    logger = get_logger()
    logger.info("=" * 80)
    logger.info("TENSORLINE TRACKING")
    logger.info("=" * 80)

    output_path = Path(args.output)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    # Load configuration
    config = TrackingConfig()
    if args.config:
        config = TrackingConfig.from_json(args.config)
    config = config.update(_tracking_overrides(args))

    field = TensorField.from_nifti(args.tensors, layout=args.layout)

    logger.info(f"Loading seed mask from {args.seeds}")
    seed_img = nib.load(args.seeds)
    seed_mask = np.asarray(seed_img.get_fdata())
    if seed_mask.ndim == 4 and seed_mask.shape[3] == 1:
        seed_mask = seed_mask[..., 0]

    transform = None
    if args.transform:
        logger.info(f"Loading transform from {args.transform}")
        transform = _load_transform(args.transform)

    tracking_filter = FiberTrackingFilter(field, config, transform)
    result = tracking_filter.run(seed_mask)

    logger.info(f"Tracked {len(result.fibers)} fibers")
    logger.info(result.get_statistics_summary())

    # Fibers live in tracking space: field geometry followed by the transform
    StreamlineUtils.save_fibers(
        result.fibers,
        output_path,
        affine=tracking_filter.tracker.index_to_space.to_homogeneous(),
        shape=field.shape
    )

    if args.fibers_seeded:
        nib.save(nib.Nifti1Image(result.fibers_seeded, seed_img.affine), args.fibers_seeded)
        logger.info(f"Saved fibers-seeded image to {args.fibers_seeded}")

    # Compute and save bundle statistics
    bundle_stats = StreamlineUtils.compute_bundle_statistics(result.fibers)

    stats_path = output_path.parent / f"{output_path.stem}_statistics.json"
    with open(stats_path, 'w') as f:
        json.dump({
            'bundle_statistics': bundle_stats,
            'tracking_parameters': result.parameters,
            'tracking_statistics': result.statistics,
            'seeding': result.seed_metadata
        }, f, indent=2)
    logger.info(f"Saved statistics to {stats_path}")

    if args.decision_log:
        stats = result.statistics
        log_decision(
            decision_id=f"tracking_{datetime.now().strftime('%Y%m%d_%H%M%S')}",
            component="tensorline_tracking",
            decision=f"Tracked {stats['n_fibers']} fibers from {stats['n_seeds']} seeds",
            rationale=f"Tensorline tracking of {args.tensors} seeded from {args.seeds}. "
                      f"RNG seed {config.rng_seed} makes sub-voxel seeding reproducible.",
            parameters={
                **config.to_dict(),
                'n_rejected_seeds': stats['n_rejected_seeds'],
                'n_too_short': stats['n_too_short'],
                'tracking_time_seconds': stats['tracking_time_seconds']
            },
            output_file=args.decision_log
        )


def compute_bundle_stats(args):
    """Mean FA, mean ADC and mean length of a fiber bundle"""
    from .tractography.streamline_utils import StreamlineUtils

    logger = get_logger()

    fibers = StreamlineUtils.load_fibers(args.input)
    stats = StreamlineUtils.compute_bundle_statistics(fibers)

    print(f"Mean FA: {stats['mean_fa']}")
    print(f"Mean ADC: {stats['mean_adc']}")
    print(f"Mean Length: {stats['mean_length']}")

    if args.output:
        output_path = Path(args.output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, 'w') as f:
            json.dump(stats, f, indent=2)
        logger.info(f"Saved bundle statistics to {output_path}")


if __name__ == "__main__":
    main()
