# helpers/synthetic.py
"""Ray-cast depth observations of a box resting on a floor, for demos and tests."""
from typing import Optional, Sequence, Tuple

import numpy as np

from core.config import CONFIDENCE_HIGH
from geometry.oriented_box import OrientedBox, yaw_rotation
from sensing.observation import CameraModel, DepthFrame
from sensing.point_cloud import PointCloud


def make_box(dims: Sequence[float], center_xz=(0.0, 0.0), yaw: float = 0.0, floor_y: float = 0.0) -> OrientedBox:
    """Box of full size (dx, dy, dz) standing on the floor."""
    d = np.asarray(dims, dtype=np.float64)
    center = np.array([center_xz[0], floor_y + d[1] / 2.0, center_xz[1]])
    return OrientedBox(center=center, extents=d / 2.0, rotation=yaw_rotation(yaw))


def uniform_box_points(box: OrientedBox, n: int, seed: int = 0) -> np.ndarray:
    rng = np.random.default_rng(seed)
    local = rng.uniform(-1.0, 1.0, size=(n, 3)) * box.extents
    return box.local_to_world(local)


def look_at_camera(eye, target, fx: float = 500.0, width: int = 256, height: int = 192) -> CameraModel:
    eye = np.asarray(eye, dtype=np.float64)
    target = np.asarray(target, dtype=np.float64)
    z_cam = eye - target
    z_cam /= np.linalg.norm(z_cam)
    up = np.array([0.0, 1.0, 0.0])
    if abs(float(z_cam @ up)) > 0.999:
        up = np.array([0.0, 0.0, -1.0])
    x_cam = np.cross(up, z_cam)
    x_cam /= np.linalg.norm(x_cam)
    y_cam = np.cross(z_cam, x_cam)
    pose = np.eye(4)
    pose[:3, 0], pose[:3, 1], pose[:3, 2], pose[:3, 3] = x_cam, y_cam, z_cam, eye
    return CameraModel(fx=fx, fy=fx, cx=width / 2.0, cy=height / 2.0, width=width, height=height, pose=pose)


def render_depth(camera: CameraModel, box: OrientedBox, floor_y: Optional[float] = 0.0
                 ) -> Tuple[np.ndarray, np.ndarray]:
    """Z-depth image of `box` (and an optional floor plane) plus the box-hit mask."""
    vs, us = np.mgrid[0:camera.height, 0:camera.width]
    dirs_cam = np.stack([
        (us - camera.cx) / camera.fx,
        -(vs - camera.cy) / camera.fy,
        -np.ones(us.shape),
    ], axis=-1).reshape(-1, 3)
    dirs = dirs_cam @ camera.rotation.T
    origin = camera.position

    o_l = box.world_to_local(origin)
    d_l = dirs @ box.rotation
    with np.errstate(divide="ignore", invalid="ignore"):
        t1 = (-box.extents - o_l) / d_l
        t2 = (box.extents - o_l) / d_l
    t_near = np.nanmax(np.minimum(t1, t2), axis=1)
    t_far = np.nanmin(np.maximum(t1, t2), axis=1)
    hit_box = (t_near <= t_far) & (t_far > 0)
    t_box = np.where(hit_box, np.maximum(t_near, 0.0), np.inf)

    t_floor = np.full(dirs.shape[0], np.inf)
    if floor_y is not None:
        down = dirs[:, 1] < -1e-9
        t_floor[down] = (floor_y - origin[1]) / dirs[down, 1]
        t_floor[t_floor <= 0] = np.inf

    t = np.minimum(t_box, t_floor)
    depth = np.where(np.isfinite(t), t, 0.0).reshape(camera.height, camera.width).astype(np.float32)
    mask = (hit_box & (t_box <= t_floor)).reshape(camera.height, camera.width)
    return depth, mask


def box_observation(
    dims: Sequence[float] = (0.3, 0.15, 0.2),
    yaw: float = 0.0,
    camera: Optional[CameraModel] = None,
    noise: float = 0.0,
    seed: int = 0,
) -> Tuple[DepthFrame, np.ndarray, np.ndarray, OrientedBox]:
    """(frame, mask, hit position, ground-truth box) for a box under the camera."""
    box = make_box(dims, yaw=yaw)
    if camera is None:
        camera = look_at_camera(eye=(0.0, 0.8, 0.45), target=(0.0, 0.0, 0.0))
    depth, mask = render_depth(camera, box)
    if noise > 0:
        rng = np.random.default_rng(seed)
        depth = depth + rng.normal(0.0, noise, size=depth.shape).astype(np.float32) * (depth > 0)
    conf = np.full(depth.shape, CONFIDENCE_HIGH, dtype=np.uint8)
    frame = DepthFrame(depth=depth, camera=camera, confidence=conf)

    vs, us = np.nonzero(mask)
    pick = len(vs) // 2
    hit = camera.unproject(us[pick], vs[pick], depth[vs[pick], us[pick]])
    return frame, mask, hit.reshape(3), box


def multi_view_cloud(box: OrientedBox, eyes: Sequence[Sequence[float]], floor_y: float = 0.0) -> PointCloud:
    """Box-surface points seen from several camera positions, tagged with their origins."""
    clouds = []
    for eye in eyes:
        cam = look_at_camera(eye=eye, target=box.center)
        depth, mask = render_depth(cam, box, floor_y=floor_y)
        vs, us = np.nonzero(mask)
        pts = cam.unproject(us, vs, depth[vs, us])
        clouds.append(PointCloud(pts, origins=cam.position))
    cloud = clouds[0]
    for c in clouds[1:]:
        cloud = cloud.merged(c)
    return cloud
