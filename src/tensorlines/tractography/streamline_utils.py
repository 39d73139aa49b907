"""
Fiber Bundle I/O and Statistics

Provides:
- Fiber output sinks: legacy VTK polydata (with per-point tensors),
  HDF5 and TrackVis TRK
- Bundle loaders for the same formats
- Bundle statistics (mean FA, mean ADC, mean fiber length)
"""

import numpy as np
from typing import List, Optional, Dict, Union
import logging
from pathlib import Path
import h5py

from .fiber import Fiber, EMPTY_STATISTIC

logger = logging.getLogger(__name__)


class StreamlineUtils:
    """Utilities for fiber bundle I/O and analysis"""

    @staticmethod
    def compute_bundle_statistics(fibers: List[Fiber]) -> Dict:
        """
        Compute statistics for a bundle of fibers

        Each mean is the arithmetic mean across fibers of the per-fiber
        value (mean FA and mean ADC along the fiber, geodesic length).

        Args:
            fibers: List of fibers

        Returns:
            Dictionary of statistics
        """
        if not fibers:
            return {
                'n_fibers': 0,
                'mean_fa': EMPTY_STATISTIC,
                'mean_adc': EMPTY_STATISTIC,
                'mean_length': EMPTY_STATISTIC,
                'mean_euclidean_length': EMPTY_STATISTIC,
                'std_length': EMPTY_STATISTIC,
                'min_length': EMPTY_STATISTIC,
                'max_length': EMPTY_STATISTIC
            }

        lengths = np.array([f.length() for f in fibers])
        euclidean_lengths = np.array([f.euclidean_length() for f in fibers])
        fa = np.array([f.mean_fa() for f in fibers])
        adc = np.array([f.mean_adc() for f in fibers])
        n_points = np.array([len(f) for f in fibers])

        stats = {
            'n_fibers': len(fibers),
            'mean_fa': float(np.mean(fa)),
            'mean_adc': float(np.mean(adc)),
            'mean_length': float(np.mean(lengths)),
            'mean_euclidean_length': float(np.mean(euclidean_lengths)),
            'std_length': float(np.std(lengths)),
            'min_length': float(np.min(lengths)),
            'max_length': float(np.max(lengths)),
            'mean_n_points': float(np.mean(n_points))
        }

        return stats

    @staticmethod
    def save_vtk(fibers: List[Fiber], filepath: Union[str, Path]):
        """
        Save fibers as legacy ASCII VTK polydata

        Point data carries the tensor of every point (TENSORS, 9 values)
        and its FA and ADC (SCALARS).

        Args:
            fibers: List of 3D fibers
            filepath: Output file path
        """
        logger.info(f"Saving {len(fibers)} fibers to VTK: {filepath}")

        for fiber in fibers:
            if len(fiber) and fiber.get_point(0).dimension != 3:
                raise ValueError("VTK output supports 3D fibers only")

        filepath = Path(filepath)
        filepath.parent.mkdir(parents=True, exist_ok=True)

        with open(filepath, 'w') as f:
            # Header
            f.write("# vtk DataFile Version 3.0\n")
            f.write("Fibers\n")
            f.write("ASCII\n")
            f.write("DATASET POLYDATA\n")

            # Count total points
            total_points = sum(len(fiber) for fiber in fibers)
            f.write(f"POINTS {total_points} double\n")

            # Write points
            for fiber in fibers:
                for x, y, z in fiber.points.tolist():
                    f.write(f"{x!r} {y!r} {z!r}\n")

            # Write lines
            total_connectivity = sum(len(fiber) + 1 for fiber in fibers)
            f.write(f"\nLINES {len(fibers)} {total_connectivity}\n")

            point_offset = 0
            for fiber in fibers:
                n_points = len(fiber)
                indices = " ".join(str(point_offset + i) for i in range(n_points))
                f.write(f"{n_points} {indices}\n")
                point_offset += n_points

            # Write point data
            if total_points > 0:
                f.write(f"\nPOINT_DATA {total_points}\n")
                f.write("TENSORS Tensors double\n")
                for fiber in fibers:
                    for tensor in fiber.tensors.tolist():
                        for xx, xy, xz in tensor:
                            f.write(f"{xx!r} {xy!r} {xz!r}\n")
                        f.write("\n")

                for name, values in (
                    ('FA', [fiber.fa_values() for fiber in fibers]),
                    ('ADC', [fiber.adc_values() for fiber in fibers])
                ):
                    f.write(f"SCALARS {name} double 1\n")
                    f.write("LOOKUP_TABLE default\n")
                    for fiber_values in values:
                        for value in fiber_values.tolist():
                            f.write(f"{value!r}\n")

        logger.info(f"Saved to: {filepath}")

    @staticmethod
    def load_vtk(filepath: Union[str, Path]) -> List[Fiber]:
        """
        Load fibers from a legacy VTK polydata file (ASCII or binary)

        Per-point tensors are read from the TENSORS point data when present;
        otherwise every point gets a zero tensor.

        Args:
            filepath: Path to VTK file

        Returns:
            List of fibers, one per polyline
        """
        import vtk
        from vtk.util import numpy_support

        logger.info(f"Loading VTK file: {filepath}")

        filepath = Path(filepath)
        if not filepath.exists():
            raise FileNotFoundError(f"VTK file not found: {filepath}")

        reader = vtk.vtkPolyDataReader()
        reader.SetFileName(str(filepath))
        if not reader.IsFilePolyData():
            raise ValueError(f"Not a VTK polydata file: {filepath}")
        reader.Update()
        poly_data = reader.GetOutput()

        vtk_points = poly_data.GetPoints()
        if vtk_points is None:
            points = np.zeros((0, 3))
        else:
            points = numpy_support.vtk_to_numpy(vtk_points.GetData()).astype(np.float64)

        tensors = None
        vtk_tensors = poly_data.GetPointData().GetTensors()
        if vtk_tensors is not None:
            tensors = _vtk_tensors_to_matrices(numpy_support.vtk_to_numpy(vtk_tensors))
            if len(tensors) != len(points):
                raise ValueError(f"Got {len(points)} points but {len(tensors)} tensors")

        fibers = []
        lines = poly_data.GetLines()
        lines.InitTraversal()
        id_list = vtk.vtkIdList()
        while lines.GetNextCell(id_list):
            indices = np.array(
                [id_list.GetId(j) for j in range(id_list.GetNumberOfIds())],
                dtype=np.int64
            )
            fiber_tensors = tensors[indices] if tensors is not None else None
            fibers.append(Fiber.from_arrays(points[indices], fiber_tensors))

        logger.info(f"Loaded {len(fibers)} fibers")

        return fibers

    @staticmethod
    def save_hdf5(fibers: List[Fiber], filepath: Union[str, Path], attrs: Optional[Dict] = None):
        """
        Save fibers to HDF5: one dataset of points and one of tensors per fiber

        Args:
            fibers: List of fibers
            filepath: Output file path
            attrs: Optional scalar attributes stored on the file
        """
        filepath = Path(filepath)
        filepath.parent.mkdir(parents=True, exist_ok=True)

        logger.info(f"Saving {len(fibers)} fibers to HDF5: {filepath}")

        with h5py.File(filepath, 'w') as h5f:
            streamlines_group = h5f.create_group('streamlines')
            tensors_group = h5f.create_group('tensors')

            for i, fiber in enumerate(fibers):
                dataset_name = f"streamline_{i:08d}"
                streamlines_group.create_dataset(
                    dataset_name,
                    data=fiber.points,
                    compression='gzip',
                    compression_opts=4
                )
                tensors_group.create_dataset(
                    dataset_name,
                    data=fiber.tensors,
                    compression='gzip',
                    compression_opts=4
                )

            h5f.attrs['n_streamlines'] = len(fibers)
            for key, value in (attrs or {}).items():
                h5f.attrs[key] = value

        logger.info(f"Saved to: {filepath}")

    @staticmethod
    def load_hdf5(filepath: Union[str, Path]) -> List[Fiber]:
        """
        Load fibers from HDF5 file written by save_hdf5

        Args:
            filepath: Path to HDF5 file

        Returns:
            List of fibers
        """
        logger.info(f"Loading fibers from {filepath}")

        fibers = []
        with h5py.File(filepath, 'r') as h5f:
            streamlines_group = h5f['streamlines']
            tensors_group = h5f['tensors'] if 'tensors' in h5f else None

            # Get sorted keys
            keys = sorted(streamlines_group.keys())

            for key in keys:
                points = streamlines_group[key][:]
                tensors = tensors_group[key][:] if tensors_group is not None else None
                fibers.append(Fiber.from_arrays(points, tensors))

        logger.info(f"Loaded {len(fibers)} fibers")

        return fibers

    @staticmethod
    def save_trk(
        fibers: List[Fiber],
        filepath: Union[str, Path],
        affine: Optional[np.ndarray] = None,
        shape: Optional[tuple] = None
    ):
        """
        Save fiber points in TrackVis TRK format (tensors are not stored)

        Args:
            fibers: List of fibers in world coordinates (RASMM)
            filepath: Output file path
            affine: Voxel-to-world affine of the fibers' space (4x4), written
                to the header as its voxel-to-RASMM matrix
            shape: Grid dimensions written to the header
        """
        from nibabel.affines import voxel_sizes
        from nibabel.orientations import aff2axcodes
        from nibabel.streamlines import Field, Tractogram
        from nibabel.streamlines.trk import TrkFile

        logger.info(f"Saving {len(fibers)} fibers to TRK: {filepath}")

        if affine is None:
            affine = np.eye(4)

        header = {
            Field.VOXEL_TO_RASMM: np.asarray(affine, dtype=np.float32),
            Field.VOXEL_SIZES: tuple(voxel_sizes(affine)),
            Field.VOXEL_ORDER: ''.join(aff2axcodes(affine))
        }
        if shape is not None:
            header[Field.DIMENSIONS] = tuple(int(s) for s in shape)

        # Convert streamlines from RASMM (world) to voxel space
        # so that affine_to_rasmm correctly maps them back when loading
        inv_affine = np.linalg.inv(affine)
        streamlines_voxel = []
        for fiber in fibers:
            sl = fiber.points
            sl_hom = np.hstack([sl, np.ones((len(sl), 1))])
            sl_vox = (inv_affine @ sl_hom.T).T[:, :3]
            streamlines_voxel.append(sl_vox.astype(np.float32))

        tractogram = Tractogram(
            streamlines=streamlines_voxel,
            affine_to_rasmm=affine
        )

        trk = TrkFile(tractogram, header=header)
        TrkFile.save(trk, str(filepath))

        logger.info(f"Saved to: {filepath}")

    @staticmethod
    def load_trk(filepath: Union[str, Path]) -> List[Fiber]:
        """
        Load fibers from TRK file (points only, zero tensors)

        Args:
            filepath: Path to TRK file

        Returns:
            List of fibers in RASMM/world coordinates
        """
        from nibabel.streamlines import load

        logger.info(f"Loading TRK file: {filepath}")

        trk = load(str(filepath))
        fibers = [Fiber.from_arrays(np.asarray(sl, dtype=np.float64)) for sl in trk.streamlines]

        logger.info(f"Loaded {len(fibers)} fibers")

        return fibers

    @staticmethod
    def save_fibers(
        fibers: List[Fiber],
        filepath: Union[str, Path],
        affine: Optional[np.ndarray] = None,
        shape: Optional[tuple] = None
    ):
        """Save fibers in the format given by the file extension (.vtk, .h5, .trk)"""
        suffix = Path(filepath).suffix.lower()
        if suffix == '.vtk':
            StreamlineUtils.save_vtk(fibers, filepath)
        elif suffix in ('.h5', '.hdf5'):
            StreamlineUtils.save_hdf5(fibers, filepath)
        elif suffix == '.trk':
            StreamlineUtils.save_trk(fibers, filepath, affine, shape)
        else:
            raise ValueError(f"Unsupported fiber format: {filepath}")

    @staticmethod
    def load_fibers(filepath: Union[str, Path]) -> List[Fiber]:
        """Load fibers in the format given by the file extension (.vtk, .h5, .trk)"""
        suffix = Path(filepath).suffix.lower()
        if suffix == '.vtk':
            return StreamlineUtils.load_vtk(filepath)
        if suffix in ('.h5', '.hdf5'):
            return StreamlineUtils.load_hdf5(filepath)
        if suffix == '.trk':
            return StreamlineUtils.load_trk(filepath)
        raise ValueError(f"Unsupported fiber format: {filepath}")


def _vtk_tensors_to_matrices(values: np.ndarray) -> np.ndarray:
    """(M, 9) or symmetric (M, 6) VTK tensor tuples -> (M, 3, 3) matrices"""
    values = np.asarray(values, dtype=np.float64).reshape(len(values), -1)
    if values.shape[1] == 9:
        return values.reshape(-1, 3, 3)
    if values.shape[1] == 6:
        # VTK symmetric order: XX, YY, ZZ, XY, YZ, XZ
        xx, yy, zz, xy, yz, xz = values.T
        return np.stack([
            np.stack([xx, xy, xz], axis=-1),
            np.stack([xy, yy, yz], axis=-1),
            np.stack([xz, yz, zz], axis=-1)
        ], axis=1)
    raise ValueError(f"Unsupported VTK tensor width: {values.shape[1]}")
