"""
Tests for voxel carving, surface reconstruction and the refinement worker.
"""
import numpy as np
import pytest

from core.config import RefinementConfig
from geometry.oriented_box import OrientedBox, yaw_rotation
from helpers.synthetic import make_box, multi_view_cloud, uniform_box_points
from mesh.alpha_shape import AlphaShapeReconstructor
from mesh.ball_pivoting import BallPivotingReconstructor
from mesh.surface_reconstructor import ReconstructorChain, SurfaceReconstructor
from mesh.triangle_mesh import TriangleMesh
from refinement.refinement_worker import RefinementWorker
from refinement.volume_refiner import RefinedVolumeResult, VolumeRefiner
from refinement.voxel_carver import VoxelCarver
from sensing.point_cloud import PointCloud

# 1/64 m voxels tile this box exactly: 16 x 8 x 16 cells
VOXEL = 1.0 / 64.0
BOX = OrientedBox(center=(0.1, 0.0625, -0.2), extents=(0.125, 0.0625, 0.125), rotation=yaw_rotation(0.3))
CONFIG = RefinementConfig(voxel_size=VOXEL, surface_reconstruction=False)

CUBE_VERTICES = np.array([
    [0, 0, 0], [1, 0, 0], [1, 1, 0], [0, 1, 0],
    [0, 0, 1], [1, 0, 1], [1, 1, 1], [0, 1, 1],
], dtype=np.float64)
CUBE_TRIANGLES = np.array([
    [0, 2, 1], [0, 3, 2],
    [4, 5, 6], [4, 6, 7],
    [0, 1, 5], [0, 5, 4],
    [2, 3, 7], [2, 7, 6],
    [1, 2, 6], [1, 6, 5],
    [0, 4, 7], [0, 7, 3],
])


def _shell_points(box, per_face=6000, seed=0):
    rng = np.random.default_rng(seed)
    faces = []
    for axis in range(3):
        for sign in (-1.0, 1.0):
            local = rng.uniform(-1.0, 1.0, size=(per_face, 3)) * box.extents
            local[:, axis] = sign * box.extents[axis]
            faces.append(local)
    return box.local_to_world(np.vstack(faces))


def test_dense_cloud_volume_matches_box():
    cloud = PointCloud(uniform_box_points(BOX, 30000, seed=2))
    grid = VoxelCarver(CONFIG).carve(BOX, cloud)
    assert grid is not None
    assert grid.shape == (16, 8, 16)
    assert grid.multi_view is False
    assert grid.volume == pytest.approx(BOX.volume, rel=0.01)


def test_sparse_occupancy_without_fill():
    cfg = RefinementConfig(voxel_size=VOXEL, fill_interior=False, surface_reconstruction=False)
    pts = uniform_box_points(BOX, 60, seed=4)
    grid = VoxelCarver(cfg).carve(BOX, PointCloud(pts))
    cells = np.floor((BOX.world_to_local(pts) - grid.origin_local) / grid.voxel_size).astype(int)
    cells = np.clip(cells, 0, np.array(grid.shape) - 1)
    assert grid.occupied_count == np.unique(cells, axis=0).shape[0]


def test_closed_shell_is_filled():
    cloud = PointCloud(_shell_points(BOX))
    filled = VoxelCarver(CONFIG).carve(BOX, cloud)
    assert filled.volume == pytest.approx(BOX.volume, rel=0.01)

    cfg = RefinementConfig(voxel_size=VOXEL, fill_interior=False, surface_reconstruction=False)
    hollow = VoxelCarver(cfg).carve(BOX, cloud)
    assert hollow.volume < 0.6 * BOX.volume


def test_multi_view_carving_removes_free_space():
    truth = make_box((0.2, 0.1, 0.2))
    angles = np.radians(np.arange(0, 360, 45))
    eyes = [(0.7 * np.cos(a), 0.35, 0.7 * np.sin(a)) for a in angles]
    cloud = multi_view_cloud(truth, eyes)
    assert cloud.view_count() == len(eyes)

    loose = make_box((0.3, 0.15, 0.3))
    cfg = RefinementConfig(surface_reconstruction=False)
    result = VolumeRefiner(cfg).refine(loose, cloud)
    assert result is not None
    assert result.multi_view
    assert 0.9 * truth.volume < result.volume < 1.8 * truth.volume
    assert result.volume < 0.6 * loose.volume


def test_too_few_points_returns_none():
    cloud = PointCloud(uniform_box_points(BOX, 5))
    assert VoxelCarver(CONFIG).carve(BOX, cloud) is None
    assert VolumeRefiner(CONFIG).refine(BOX, cloud) is None
    # enough points, but none inside the box
    far = PointCloud(uniform_box_points(BOX, 500) + 5.0)
    assert VoxelCarver(CONFIG).carve(BOX, far) is None


def test_surface_voxels_are_occupied_boundary():
    cloud = PointCloud(uniform_box_points(BOX, 30000, seed=2))
    grid = VoxelCarver(CONFIG).carve(BOX, cloud)
    idx = grid.surface_indices()
    assert np.all(grid.occupied[idx[:, 0], idx[:, 1], idx[:, 2]])
    # full 16x8x16 block minus its 14x6x14 interior
    assert idx.shape[0] == 16 * 8 * 16 - 14 * 6 * 14
    assert grid.surface_indices(limit=100).shape[0] <= 100


def test_refined_result_describes_grid():
    cloud = PointCloud(uniform_box_points(BOX, 30000, seed=2))
    result = VolumeRefiner(CONFIG).refine(BOX, cloud)
    assert isinstance(result, RefinedVolumeResult)
    assert result.grid_shape == (16, 8, 16)
    assert result.voxel_size == pytest.approx(VOXEL)
    assert np.allclose(result.grid_rotation, BOX.rotation)
    assert np.allclose(result.grid_origin, BOX.corners()[0])
    assert not result.surface_available
    assert result.processing_time >= 0.0


def test_triangle_mesh_cube():
    mesh = TriangleMesh(CUBE_VERTICES * 0.1, CUBE_TRIANGLES, method="test")
    assert mesh.volume() == pytest.approx(0.001)
    assert mesh.closed_fraction() == pytest.approx(1.0)
    open_mesh = TriangleMesh(CUBE_VERTICES, CUBE_TRIANGLES[:-2])
    assert open_mesh.closed_fraction() < 1.0
    assert TriangleMesh(np.zeros((0, 3)), np.zeros((0, 3))).volume() == 0.0


class _FixedMesh(SurfaceReconstructor):
    name = "fixed"

    def __init__(self, mesh):
        self.mesh = mesh
        self.calls = 0

    def reconstruct(self, points):
        self.calls += 1
        return self.mesh


class _Broken(SurfaceReconstructor):
    name = "broken"

    def reconstruct(self, points):
        raise RuntimeError("no surface")


def _cube_mesh(side, triangles=CUBE_TRIANGLES):
    return TriangleMesh(CUBE_VERTICES * side, triangles, method="fixed")


def test_closed_surface_volume_is_reported():
    cloud = PointCloud(uniform_box_points(BOX, 2000))
    refiner = VolumeRefiner(CONFIG, reconstructor=_FixedMesh(_cube_mesh(0.2)))
    result = refiner.refine(BOX, cloud)
    assert result.surface_available
    assert result.surface_volume == pytest.approx(0.008)
    assert result.surface_method == "fixed"
    assert result.surface_closed_fraction == pytest.approx(1.0)


def test_open_or_failed_surface_is_unavailable():
    cloud = PointCloud(uniform_box_points(BOX, 2000))
    open_result = VolumeRefiner(CONFIG, reconstructor=_FixedMesh(_cube_mesh(0.2, CUBE_TRIANGLES[:-2]))).refine(BOX, cloud)
    assert not open_result.surface_available
    assert open_result.surface_closed_fraction < 0.98
    # voxel volume is still delivered
    assert open_result.volume > 0

    broken = VolumeRefiner(CONFIG, reconstructor=_Broken()).refine(BOX, cloud)
    assert broken is not None and not broken.surface_available


def test_chain_falls_through_to_next_strategy():
    fallback = _FixedMesh(_cube_mesh(1.0))
    chain = ReconstructorChain([_Broken(), _FixedMesh(None), fallback])
    mesh = chain.reconstruct(np.zeros((10, 3)))
    assert mesh is fallback.mesh
    assert fallback.calls == 1
    assert not chain.can_reconstruct(2)
    with pytest.raises(ValueError):
        ReconstructorChain([])


def test_chain_skips_open_mesh_for_closed_fallback():
    cloud = PointCloud(uniform_box_points(BOX, 2000))
    open_first = _FixedMesh(_cube_mesh(0.2, CUBE_TRIANGLES[:-2]))
    closed_second = _FixedMesh(_cube_mesh(0.2))
    chain = ReconstructorChain([open_first, closed_second], min_closed_fraction=CONFIG.min_closed_fraction)
    result = VolumeRefiner(CONFIG, reconstructor=chain).refine(BOX, cloud)
    assert open_first.calls == 1
    assert closed_second.calls == 1
    assert result.surface_available
    assert result.surface_volume == pytest.approx(0.008)
    assert result.surface_closed_fraction == pytest.approx(1.0)


def test_chain_returns_most_closed_mesh_when_none_is_closed():
    less_open = _cube_mesh(1.0, CUBE_TRIANGLES[:-1])
    more_open = _cube_mesh(1.0, CUBE_TRIANGLES[:-4])
    chain = ReconstructorChain([_FixedMesh(more_open), _FixedMesh(less_open)], min_closed_fraction=0.98)
    assert chain.reconstruct(np.zeros((10, 3))) is less_open
    # without a threshold the first mesh wins
    assert ReconstructorChain([_FixedMesh(more_open), _FixedMesh(less_open)]).reconstruct(np.zeros((10, 3))) is more_open


def test_alpha_shape_reconstruction():
    pytest.importorskip("open3d")
    box = OrientedBox(center=(0.0, 0.05, 0.0), extents=(0.1, 0.05, 0.08))
    mesh = AlphaShapeReconstructor().reconstruct(_shell_points(box, per_face=1500))
    assert mesh is not None
    assert mesh.method == "alpha_shape"
    assert mesh.triangles.shape[0] > 0
    assert np.all(box.contains(mesh.vertices, margin=1e-6))


def test_alpha_from_spacing_is_clamped():
    recon = AlphaShapeReconstructor(multiplier=2.5, min_alpha=0.005, max_alpha=0.5)
    assert recon.choose_alpha(0.004) == pytest.approx(0.01)
    assert recon.choose_alpha(0.0) == pytest.approx(0.005)
    assert recon.choose_alpha(1.0) == pytest.approx(0.5)
    assert AlphaShapeReconstructor(alpha=0.03).choose_alpha(1.0) == pytest.approx(0.03)


class _FailingRefiner(VolumeRefiner):
    def refine(self, box, cloud):
        raise ValueError("bad cloud")


def test_worker_resolves_futures_in_order():
    worker = RefinementWorker(VolumeRefiner(CONFIG))
    try:
        cloud = PointCloud(uniform_box_points(BOX, 3000))
        first = worker.submit((1, 0), BOX, cloud)
        second = worker.submit((1, 1), BOX, PointCloud(np.zeros((3, 3))))
        assert first.result(timeout=30).volume > 0
        assert second.result(timeout=30) is None
    finally:
        worker.stop()


def test_worker_propagates_refiner_errors():
    worker = RefinementWorker(_FailingRefiner(CONFIG))
    try:
        fut = worker.submit("t", BOX, PointCloud(uniform_box_points(BOX, 100)))
        assert isinstance(fut.exception(timeout=30), ValueError)
    finally:
        worker.stop()
    with pytest.raises(RuntimeError):
        worker.submit("late", BOX, PointCloud(uniform_box_points(BOX, 100)))


def test_ball_pivoting_needs_normal_neighbourhood():
    recon = BallPivotingReconstructor(normal_neighbors=15)
    assert not recon.can_reconstruct(15)
    assert recon.can_reconstruct(16)


def test_ball_pivoting_reconstruction():
    pytest.importorskip("open3d")
    box = OrientedBox(center=(0.0, 0.05, 0.0), extents=(0.1, 0.05, 0.08))
    mesh = BallPivotingReconstructor().reconstruct(_shell_points(box, per_face=800))
    assert mesh is not None
    assert mesh.method == "ball_pivoting"
    assert mesh.triangles.shape[0] > 0
