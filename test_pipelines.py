"""
Test the measure and demo pipelines end to end on synthetic observations.
"""
import numpy as np
import pytest

from core.config import MeasureConfig, RefinementConfig
from core.measurement_engine import MeasurementEngine
from helpers.synthetic import box_observation, look_at_camera
from measurement.units import MeasurementUnit
from pipelines import demo_pipeline, measure_pipeline


def _config():
    return MeasureConfig(refinement=RefinementConfig(surface_reconstruction=False))


@pytest.fixture
def saved(tmp_path):
    frame, mask, hit, truth = box_observation()
    path = tmp_path / "scan.npz"
    measure_pipeline.save_observation(str(path), frame, mask=mask, hit=hit, floor_y=0.0)
    return str(path), frame, mask


def test_observation_archive_round_trip(saved):
    path, frame, mask = saved
    obs = measure_pipeline.load_observation(path)
    loaded = obs["frame"]
    assert np.array_equal(loaded.depth, frame.depth)
    assert np.array_equal(loaded.confidence, frame.confidence)
    assert np.allclose(loaded.camera.pose, frame.camera.pose)
    assert loaded.camera.width == frame.camera.width
    assert np.array_equal(obs["mask"], mask)
    assert obs["floor_y"] == 0.0
    assert obs["roi"] is None


def test_load_observation_errors(tmp_path):
    with pytest.raises(FileNotFoundError):
        measure_pipeline.load_observation(str(tmp_path / "nope.npz"))
    bad = tmp_path / "bad.npz"
    np.savez(str(bad), depth=np.zeros((4, 4)))
    with pytest.raises(ValueError):
        measure_pipeline.load_observation(str(bad))


def test_run_measurement_and_report(saved):
    path, _, _ = saved
    engine = MeasurementEngine(_config())
    try:
        result = measure_pipeline.run_measurement(engine, measure_pipeline.load_observation(path))
        assert result is not None
        assert result.refined is not None
        text = measure_pipeline.report(result, MeasurementUnit.MILLIMETERS)
        assert "Dimensions" in text and "Voxel" in text and "mm^3" in text
    finally:
        engine.shutdown()


def test_measure_main_writes_debug_images(saved, tmp_path, capsys):
    path, _, _ = saved
    out = tmp_path / "debug"
    code = measure_pipeline.main(path, config=_config(), refine=False, debug_dir=str(out))
    assert code == 0
    assert (out / "depth.png").exists()
    assert (out / "kept_pixels.png").exists()
    assert "Dimensions" in capsys.readouterr().out


def test_measure_main_reports_failure(tmp_path, capsys):
    frame, mask, _, _ = box_observation()
    path = tmp_path / "empty.npz"
    measure_pipeline.save_observation(str(path), frame, mask=np.zeros_like(mask))
    assert measure_pipeline.main(str(path), config=_config()) == 2
    assert "insufficient" in capsys.readouterr().out


def test_demo_main(tmp_path, capsys):
    save = tmp_path / "demo.npz"
    code = demo_pipeline.main(yaw_deg=30.0, noise=0.0, config=_config(), save_path=str(save))
    assert code == 0
    assert save.exists()
    out = capsys.readouterr().out
    assert "== fitted ==" in out


def test_measure_main_merges_extra_views(saved, tmp_path, capsys):
    path, _, _ = saved
    camera = look_at_camera(eye=(0.7, 0.5, -0.35), target=(0.0, 0.075, 0.0))
    frame, mask, _, _ = box_observation(camera=camera)
    side = tmp_path / "side.npz"
    measure_pipeline.save_observation(str(side), frame, mask=mask)
    assert measure_pipeline.main(path, config=_config(), extra_paths=[str(side)]) == 0
    assert "multi_view=True" in capsys.readouterr().out
