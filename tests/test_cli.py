"""
Integration tests for the command-line interface
"""

import json
import pytest
import numpy as np
import nibabel as nib

from tensorlines.cli import main
from tensorlines.tractography.streamline_utils import StreamlineUtils


@pytest.fixture
def tensor_image(tmp_path):
    """20 x 9 x 9 tensor image with 6 upper-triangular components along x"""
    components = np.zeros((20, 9, 9, 6), dtype=np.float32)
    components[..., 0] = 1.7e-3  # xx
    components[..., 3] = 0.3e-3  # yy
    components[..., 5] = 0.3e-3  # zz
    filepath = tmp_path / "dti.nii.gz"
    nib.save(nib.Nifti1Image(components, np.eye(4)), str(filepath))
    return filepath


@pytest.fixture
def seed_image(tmp_path):
    mask = np.zeros((20, 9, 9), dtype=np.uint8)
    mask[10, 4, 4] = 1
    mask[5, 2, 6] = 1
    filepath = tmp_path / "seeds.nii.gz"
    nib.save(nib.Nifti1Image(mask, np.eye(4)), str(filepath))
    return filepath


class TestTrackCommand:
    """Test `tensorlines track`"""

    def test_track_writes_outputs(self, tensor_image, seed_image, tmp_path):
        output = tmp_path / "out" / "fibers.vtk"
        seeded = tmp_path / "out" / "seeded.nii.gz"

        main([
            'track', '--tensors', str(tensor_image), '--seeds', str(seed_image),
            '--output', str(output), '--fibers-seeded', str(seeded),
            '--time-step', '0.5', '--integration-method', '0'
        ])

        fibers = StreamlineUtils.load_vtk(output)
        assert len(fibers) == 2

        counts = np.asarray(nib.load(str(seeded)).dataobj)
        assert counts[10, 4, 4] == 1
        assert counts.sum() == 2

        with open(tmp_path / "out" / "fibers_statistics.json") as f:
            stats = json.load(f)
        assert stats['tracking_statistics']['n_fibers'] == 2
        assert stats['tracking_parameters']['integration_method'] == 0
        assert stats['bundle_statistics']['mean_fa'] > 0.7

    def test_config_file_and_decision_log(self, tensor_image, seed_image, tmp_path):
        config_path = tmp_path / "tracking.json"
        config_path.write_text(json.dumps({'MinLength': 100.0, 'Sampling': 2}))
        decision_log = tmp_path / "decisions.md"
        output = tmp_path / "fibers.h5"

        main([
            'track', '-t', str(tensor_image), '-s', str(seed_image), '-o', str(output),
            '--config', str(config_path), '--decision-log', str(decision_log)
        ])

        # Fibers of at most 20 mm are all shorter than 100 mm
        assert StreamlineUtils.load_hdf5(output) == []
        assert "Tracked 0 fibers from 4 seeds" in decision_log.read_text()

    def test_trk_header_follows_transform(self, tensor_image, seed_image, tmp_path):
        shift = np.eye(4)
        shift[:3, 3] = [10.0, 0.0, -2.0]
        transform_path = tmp_path / "shift.txt"
        np.savetxt(transform_path, shift)
        output = tmp_path / "fibers.trk"

        main([
            'track', '-t', str(tensor_image), '-s', str(seed_image), '-o', str(output),
            '--transform', str(transform_path)
        ])

        trk = nib.streamlines.load(str(output))
        header = trk.header
        assert np.allclose(header[nib.streamlines.Field.VOXEL_TO_RASMM], shift)
        assert tuple(header[nib.streamlines.Field.DIMENSIONS]) == (20, 9, 9)

        points = np.concatenate(list(trk.streamlines))
        assert len(trk.streamlines) == 2
        assert points[:, 0].min() >= 9.5 - 1e-4
        assert points[:, 0].max() < 29.5
        assert np.allclose(np.unique(np.round(points[:, 2], 3)), [2.0, 4.0])

    def test_invalid_option_exits(self, tensor_image, seed_image, tmp_path):
        with pytest.raises(SystemExit) as exc_info:
            main([
                'track', '-t', str(tensor_image), '-s', str(seed_image),
                '-o', str(tmp_path / "fibers.vtk"), '--integration-method', '7'
            ])
        assert exc_info.value.code == 1

    def test_no_command(self):
        with pytest.raises(SystemExit) as exc_info:
            main([])
        assert exc_info.value.code == 1


class TestBundleStatsCommand:
    """Test `tensorlines bundle-stats`"""

    def test_prints_statistics(self, tensor_image, seed_image, tmp_path, capsys):
        fibers = tmp_path / "fibers.vtk"
        main(['track', '-t', str(tensor_image), '-s', str(seed_image), '-o', str(fibers)])
        capsys.readouterr()

        stats_path = tmp_path / "bundle.json"
        main(['bundle-stats', '-i', str(fibers), '-o', str(stats_path)])
        captured = capsys.readouterr().out

        assert "Mean FA: " in captured
        assert "Mean ADC: " in captured
        assert "Mean Length: " in captured

        stats = json.loads(stats_path.read_text())
        assert stats['n_fibers'] == 2
        assert stats['mean_adc'] == pytest.approx((1.7e-3 + 0.6e-3) / 3, rel=1e-4)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
