"""
Tests for the stateless box editing service.
"""
import numpy as np
import pytest

from editing.box_editing_service import BoxEditingService
from geometry.handles import FaceHandle
from geometry.oriented_box import MIN_EXTENT, OrientedBox, yaw_rotation
from sensing.point_cloud import PointCloud

BOX = OrientedBox(center=(0.0, 0.1, 0.0), extents=(0.1, 0.05, 0.15))
CENTER_PX = (100.0, 100.0)
POS_X_FACE_PX = (150.0, 100.0)  # 50 px for a 0.1 m half-extent


def _face(box, handle):
    return box.local_to_world(handle.face_center_local(box.extents))


def test_zero_delta_is_no_op():
    edit = BoxEditingService().apply_face_drag(BOX, FaceHandle.POS_X, (0.0, 0.0), POS_X_FACE_PX, CENTER_PX)
    assert edit.did_change is False
    assert edit.box is BOX


def test_delta_below_noise_threshold_is_no_op():
    edit = BoxEditingService().apply_face_drag(BOX, FaceHandle.POS_X, (0.2, 3.0), POS_X_FACE_PX, CENTER_PX)
    assert not edit.did_change


def test_outward_drag_grows_and_keeps_opposite_face():
    svc = BoxEditingService()
    edit = svc.apply_face_drag(BOX, FaceHandle.POS_X, (10.0, 0.0), POS_X_FACE_PX, CENTER_PX)
    assert edit.did_change
    # 10 px at 0.002 m/px moves the face by 2 cm
    assert edit.box.extents[0] == pytest.approx(0.11)
    assert _face(edit.box, FaceHandle.POS_X)[0] == pytest.approx(0.12)
    assert np.allclose(_face(edit.box, FaceHandle.NEG_X), _face(BOX, FaceHandle.NEG_X))
    assert np.allclose(edit.box.extents[1:], BOX.extents[1:])


def test_inward_drag_shrinks():
    edit = BoxEditingService().apply_face_drag(BOX, FaceHandle.POS_X, (-10.0, 0.0), POS_X_FACE_PX, CENTER_PX)
    assert edit.did_change
    assert edit.box.extents[0] == pytest.approx(0.09)
    assert np.allclose(_face(edit.box, FaceHandle.NEG_X), _face(BOX, FaceHandle.NEG_X))


def test_only_the_normal_component_of_the_drag_counts():
    svc = BoxEditingService()
    straight = svc.apply_face_drag(BOX, FaceHandle.POS_X, (10.0, 0.0), POS_X_FACE_PX, CENTER_PX)
    slanted = svc.apply_face_drag(BOX, FaceHandle.POS_X, (10.0, 25.0), POS_X_FACE_PX, CENTER_PX)
    assert slanted.box.allclose(straight.box)


def test_negative_face_drag_on_rotated_box():
    box = OrientedBox(center=(0.2, 0.1, -0.3), extents=(0.1, 0.05, 0.15), rotation=yaw_rotation(0.8))
    # NEG_Z face drawn 60 px left of the box centre; drag further left
    edit = BoxEditingService().apply_face_drag(box, FaceHandle.NEG_Z, (-12.0, 0.0), (40.0, 100.0), CENTER_PX)
    assert edit.did_change
    assert edit.box.extents[2] == pytest.approx(0.15 + 0.5 * 12 * 0.15 / 60)
    assert np.allclose(_face(edit.box, FaceHandle.POS_Z), _face(box, FaceHandle.POS_Z))
    assert np.allclose(edit.box.rotation, box.rotation)


def test_face_drag_clamps_at_minimum_extent():
    svc = BoxEditingService()
    edit = svc.apply_face_drag(BOX, FaceHandle.POS_X, (-500.0, 0.0), POS_X_FACE_PX, CENTER_PX)
    assert edit.did_change
    assert edit.box.extents[0] == pytest.approx(MIN_EXTENT)
    assert np.allclose(_face(edit.box, FaceHandle.NEG_X), _face(BOX, FaceHandle.NEG_X))
    again = svc.apply_face_drag(edit.box, FaceHandle.POS_X, (-20.0, 0.0), (110.0, 100.0), CENTER_PX)
    assert not again.did_change


def test_edge_on_face_is_ignored():
    edit = BoxEditingService().apply_face_drag(BOX, FaceHandle.POS_Y, (0.0, -30.0), (100.3, 100.2), CENTER_PX)
    assert not edit.did_change


@pytest.mark.parametrize("face_px", [(101.5, 100.0), (100.0, 107.0)])
def test_foreshortened_face_below_pixel_floor_is_ignored(face_px):
    box = OrientedBox(center=(0.0, 0.2, 0.0), extents=(0.1, 0.2, 0.15))
    edit = BoxEditingService().apply_face_drag(box, FaceHandle.POS_Y, (10.0, 10.0), face_px, CENTER_PX)
    assert not edit.did_change
    assert edit.box is box


def test_face_at_pixel_floor_scales_with_distance():
    box = OrientedBox(center=(0.0, 0.2, 0.0), extents=(0.1, 0.2, 0.15))
    edit = BoxEditingService().apply_face_drag(box, FaceHandle.POS_Y, (0.0, -10.0), (100.0, 92.0), CENTER_PX)
    assert edit.did_change
    assert edit.box.extents[1] == pytest.approx(0.2 + 0.5 * 10 * 0.2 / 8)


@pytest.mark.parametrize("face_px,center_px", [
    ((float("nan"), float("nan")), CENTER_PX),
    (POS_X_FACE_PX, (float("inf"), 100.0)),
])
def test_non_finite_screen_positions_are_no_ops(face_px, center_px):
    svc = BoxEditingService()
    face = svc.apply_face_drag(BOX, FaceHandle.POS_X, (10.0, 0.0), face_px, center_px)
    assert face.did_change is False
    assert face.box is BOX
    turn = svc.apply_rotation_drag(BOX, (0.0, 10.0), face_px, center_px)
    assert turn.did_change is False
    assert turn.box is BOX


def test_rotation_needs_minimum_radius():
    svc = BoxEditingService()
    edit = svc.apply_rotation_drag(BOX, (5.0, 5.0), (105.0, 103.0), CENTER_PX)
    assert not edit.did_change
    assert edit.box is BOX


def test_rotation_is_yaw_only():
    edit = BoxEditingService().apply_rotation_drag(BOX, (0.0, 20.0), (200.0, 100.0), CENTER_PX)
    assert edit.did_change
    assert np.allclose(edit.box.local_axes[1], (0.0, 1.0, 0.0))
    assert np.allclose(edit.box.center, BOX.center)
    assert np.allclose(edit.box.extents, BOX.extents)


@pytest.mark.parametrize("radius", [20.0, 80.0, 300.0])
def test_rotation_invariant_to_grab_radius(radius):
    # fixed tangential/radial ratio of 0.1 -> same angle at any radius
    svc = BoxEditingService()
    touch = (CENTER_PX[0] + radius, CENTER_PX[1])
    edit = svc.apply_rotation_drag(BOX, (0.0, -0.1 * radius), touch, CENTER_PX)
    assert edit.did_change
    assert abs(edit.box.yaw - BOX.yaw) == pytest.approx(0.1)


def test_rotation_direction_follows_tangent():
    svc = BoxEditingService()
    cw = svc.apply_rotation_drag(BOX, (0.0, -10.0), (200.0, 100.0), CENTER_PX)
    ccw = svc.apply_rotation_drag(BOX, (0.0, 10.0), (200.0, 100.0), CENTER_PX)
    assert cw.box.yaw == pytest.approx(-ccw.box.yaw)
    # radial component alone does not rotate
    radial = svc.apply_rotation_drag(BOX, (15.0, 0.0), (200.0, 100.0), CENTER_PX)
    assert not radial.did_change


def test_fit_to_points_keeps_rotation_and_encloses_subset():
    rng = np.random.default_rng(0)
    box = OrientedBox(center=(0.0, 0.1, 0.0), extents=(0.2, 0.1, 0.2), rotation=yaw_rotation(0.4))
    local = rng.uniform((-0.1, -0.08, -0.05), (0.12, 0.1, 0.15), size=(500, 3))
    outside = rng.uniform(0.5, 1.0, size=(50, 3))
    cloud = PointCloud(np.vstack([box.local_to_world(local), outside]))
    refit = BoxEditingService().fit_to_points(box, cloud)
    assert refit is not None
    assert np.allclose(refit.rotation, box.rotation)
    subset = cloud.points[box.contains(cloud.points)]
    proj = refit.world_to_local(subset)
    assert np.all(np.abs(proj) <= refit.extents + 1e-9)
    span = subset @ box.rotation
    assert np.all(refit.dimensions >= (span.max(axis=0) - span.min(axis=0)) - 1e-9)
    assert refit.dimensions == pytest.approx((0.22, 0.18, 0.2), abs=0.01)


def test_fit_to_points_needs_enough_points():
    pts = np.vstack([np.tile((0.01, 0.1, 0.01), (5, 1)), np.full((100, 3), 5.0)])
    assert BoxEditingService().fit_to_points(BOX, PointCloud(pts)) is None


def test_extend_to_floor_edit_result():
    svc = BoxEditingService()
    hovering = OrientedBox(center=(0.0, 0.13, 0.0), extents=(0.1, 0.1, 0.1))
    snapped = svc.extend_to_floor(hovering, 0.0)
    assert snapped.did_change
    assert snapped.box.bottom_y == pytest.approx(0.0)
    far = OrientedBox(center=(0.0, 0.3, 0.0), extents=(0.1, 0.1, 0.1))
    assert not svc.extend_to_floor(far, 0.0).did_change
