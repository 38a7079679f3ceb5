# core/measurement_engine.py
"""Measurement lifecycle: fit -> interactive edits -> background volume refinement."""

import itertools
import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Tuple

from core.config import MeasureConfig
from core.errors import InvalidStateError
from editing.box_editing_service import BoxEditingService, EditResult
from geometry.handles import FaceHandle
from geometry.oriented_box import OrientedBox
from helpers.debug_visualization import build_debug_images
from measurement.box_fitter import BoxFitter
from measurement.orientation_policy import MeasurementMode, policy_for_mode
from measurement.quality import MeasurementQuality
from measurement.result import MeasurementResult, recalculate
from refinement.refinement_worker import RefinementWorker
from refinement.volume_refiner import RefinedVolumeResult, VolumeRefiner
from sensing.observation import DepthFrame
from sensing.point_sampler import PointSampler

logger = logging.getLogger(__name__)


class MeasurementState(str, Enum):
    IDLE = "idle"
    FITTING = "fitting"
    FAILED = "failed"
    SETTLED = "settled"
    REFINED_VOLUME_CALCULATING = "refined_volume_calculating"
    REFINED_VOLUME_READY = "refined_volume_ready"
    CLEARED = "cleared"


_EDITABLE = (
    MeasurementState.SETTLED,
    MeasurementState.REFINED_VOLUME_CALCULATING,
    MeasurementState.REFINED_VOLUME_READY,
)

Listener = Callable[[MeasurementState, Optional[MeasurementResult]], None]


@dataclass
class MeasurementContext:
    """Everything owned by one in-progress measurement."""
    measurement_id: int
    mode: MeasurementMode = MeasurementMode.BOX_PRIORITY
    state: MeasurementState = MeasurementState.FITTING
    box_revision: int = 0
    result: Optional[MeasurementResult] = None
    floor_y: Optional[float] = None

    @property
    def token(self) -> Tuple[int, int]:
        return self.measurement_id, self.box_revision

    @property
    def box(self) -> Optional[OrientedBox]:
        return self.result.box if self.result is not None else None

    def release(self) -> None:
        self.result = None


class MeasurementEngine:
    """
    Owns the current measurement. Fits run on a background thread (one at a
    time), edits run synchronously on the caller's thread, refinement runs on
    a RefinementWorker and is merged only if the box it was computed for is
    still the current one.
    """
    def __init__(
        self,
        config: Optional[MeasureConfig] = None,
        sampler: Optional[PointSampler] = None,
        fitter: Optional[BoxFitter] = None,
        editor: Optional[BoxEditingService] = None,
        refiner: Optional[VolumeRefiner] = None,
        keep_debug_images: bool = True,
    ):
        self.config = config or MeasureConfig()
        self.sampler = sampler or PointSampler(self.config.sampler)
        self.fitter = fitter or BoxFitter(self.config.fitter)
        self.editor = editor or BoxEditingService(self.config.editing)
        self.keep_debug_images = keep_debug_images
        self._worker = RefinementWorker(refiner or VolumeRefiner(self.config.refinement))

        self._lock = threading.RLock()
        self._ids = itertools.count(1)
        self._context: Optional[MeasurementContext] = None
        self._fit_thread: Optional[threading.Thread] = None
        self._fit_future: Optional[Future] = None
        self._listeners: List[Listener] = []

    # ---- Queries ----
    @property
    def context(self) -> Optional[MeasurementContext]:
        """The live context; take `state` and `result` for consistent snapshots."""
        with self._lock:
            return self._context

    @property
    def state(self) -> MeasurementState:
        with self._lock:
            return self._context.state if self._context is not None else MeasurementState.IDLE

    @property
    def result(self) -> Optional[MeasurementResult]:
        with self._lock:
            return self._context.result if self._context is not None else None

    def is_fitting(self) -> bool:
        with self._lock:
            return self._fit_future is not None

    # ---- Notifications ----
    def add_listener(self, listener: Listener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def _notify(self, state: MeasurementState, result: Optional[MeasurementResult]) -> None:
        # Called with the engine lock held so listeners observe transitions in order.
        for cb in list(self._listeners):
            try:
                cb(state, result)
            except Exception:
                logger.exception("[Engine] listener failed")

    # ---- Fit ----
    def begin_measurement(
        self,
        frame: DepthFrame,
        mask=None,
        roi=None,
        hit_position=None,
        mode: MeasurementMode = MeasurementMode.BOX_PRIORITY,
        surface_normal=None,
        floor_y: Optional[float] = None,
    ) -> Optional[Future]:
        """Start a new measurement; returns None if a fit is already running."""
        with self._lock:
            if self.is_fitting():
                logger.info("[Engine] fit already in flight, ignoring request")
                return None
            if self._context is not None:
                self._context.release()
            ctx = MeasurementContext(
                measurement_id=next(self._ids),
                mode=MeasurementMode(mode),
                floor_y=floor_y,
            )
            self._context = ctx
            future: Future = Future()
            future.set_running_or_notify_cancel()
            self._fit_future = future
            self._fit_thread = threading.Thread(
                target=self._run_fit,
                args=(ctx, future, frame, mask, roi, hit_position, surface_normal),
                name=f"fit-{ctx.measurement_id}",
                daemon=True,
            )
            logger.info(f"[Engine] measurement {ctx.measurement_id} fitting (mode={ctx.mode.value})")
            self._notify(MeasurementState.FITTING, None)
            self._fit_thread.start()
        return future

    def _fit(self, ctx: MeasurementContext, frame, mask, roi, hit_position, surface_normal) -> Optional[MeasurementResult]:
        sample = self.sampler.sample(frame, mask=mask, roi=roi, hit_position=hit_position)
        if sample.insufficient_data:
            return None

        debug = build_debug_images(frame.depth, sample.kept_pixels) if self.keep_debug_images else None
        policy = policy_for_mode(ctx.mode, points=sample.point_cloud.points, surface_normal=surface_normal)
        fit = self.fitter.fit(sample.point_cloud, sample.quality, policy=policy, mode=ctx.mode, debug_images=debug)
        if fit is None:
            return None

        result = fit.result
        if ctx.floor_y is not None:
            snapped = self.editor.extend_to_floor(fit.box, ctx.floor_y)
            if snapped.did_change:
                result = self._rebuild(result, snapped.box)
        return result

    def _run_fit(self, ctx, future, frame, mask, roi, hit_position, surface_normal) -> None:
        try:
            result = self._fit(ctx, frame, mask, roi, hit_position, surface_normal)
        except Exception as e:
            logger.exception(f"[Engine] fit for measurement {ctx.measurement_id} failed")
            with self._lock:
                self._fit_future = None
                if ctx is self._context and ctx.state == MeasurementState.FITTING:
                    ctx.state = MeasurementState.FAILED
                    self._notify(ctx.state, None)
            future.set_exception(e)
            return

        with self._lock:
            self._fit_future = None
            current = ctx is self._context and ctx.state == MeasurementState.FITTING
            if current:
                ctx.result = result
                ctx.state = MeasurementState.SETTLED if result is not None else MeasurementState.FAILED
                self._notify(ctx.state, result)
            else:
                logger.debug(f"[Engine] fit for measurement {ctx.measurement_id} finished after discard, dropped")
                result = None
        future.set_result(result)

    # ---- Edits ----
    def _require_editable(self) -> MeasurementContext:
        ctx = self._context
        if ctx is None or ctx.state not in _EDITABLE or ctx.result is None:
            state = ctx.state.value if ctx is not None else MeasurementState.IDLE.value
            raise InvalidStateError(f"No editable measurement (state={state})")
        return ctx

    @staticmethod
    def _rebuild(result: MeasurementResult, box: OrientedBox) -> MeasurementResult:
        return recalculate(
            box, result.quality, result.axis_mapping, mode=result.mode,
            point_cloud=result.point_cloud, debug_images=result.debug_images,
        )

    def _apply_edit(self, edit: Callable[[MeasurementContext], EditResult]) -> EditResult:
        with self._lock:
            ctx = self._require_editable()
            outcome = edit(ctx)
            if not outcome.did_change:
                return outcome
            ctx.box_revision += 1
            ctx.result = self._rebuild(ctx.result, outcome.box)
            ctx.state = MeasurementState.SETTLED
            self._notify(ctx.state, ctx.result)
        return outcome

    def drag_face(self, handle: FaceHandle, screen_delta, face_center_screen, box_center_screen) -> EditResult:
        return self._apply_edit(lambda ctx: self.editor.apply_face_drag(
            ctx.box, handle, screen_delta, face_center_screen, box_center_screen))

    def drag_rotation(self, screen_delta, touch_point, box_center_screen) -> EditResult:
        return self._apply_edit(lambda ctx: self.editor.apply_rotation_drag(
            ctx.box, screen_delta, touch_point, box_center_screen))

    def set_box(self, box: OrientedBox) -> EditResult:
        """Replace the box outright (e.g. restored from an undo stack)."""
        return self._apply_edit(lambda ctx: EditResult(box, not box.allclose(ctx.box)))

    def fit_to_points(self) -> EditResult:
        def _refit(ctx: MeasurementContext) -> EditResult:
            cloud = ctx.result.point_cloud
            if cloud is None:
                return EditResult(ctx.box, False)
            box = self.editor.fit_to_points(ctx.box, cloud)
            if box is None:
                return EditResult(ctx.box, False)
            if ctx.floor_y is not None:
                box = self.editor.extend_to_floor(box, ctx.floor_y).box
            return EditResult(box, not box.allclose(ctx.box))
        return self._apply_edit(_refit)

    def extend_to_floor(self, floor_y: Optional[float] = None, threshold: Optional[float] = None) -> EditResult:
        def _snap(ctx: MeasurementContext) -> EditResult:
            y = ctx.floor_y if floor_y is None else floor_y
            if y is None:
                return EditResult(ctx.box, False)
            return self.editor.extend_to_floor(ctx.box, y, threshold)
        return self._apply_edit(_snap)

    # ---- Additional views ----
    def add_observation(self, frame: DepthFrame, mask=None, roi=None, hit_position=None) -> bool:
        """
        Merge another view of the object into the current measurement.

        The box is left as is; the retained point cloud (with per-point camera
        origins) and the quality grow, so the next settle() carves free space
        with every view collected so far. Counts as an edit: the revision is
        bumped and any refined result is dropped. Returns False when the view
        yields no usable points.
        """
        with self._lock:
            ctx = self._require_editable()
        sample = self.sampler.sample(frame, mask=mask, roi=roi, hit_position=hit_position)
        if sample.insufficient_data:
            logger.info(f"[Engine] extra view for measurement {ctx.measurement_id} ignored: {sample.reason}")
            return False

        with self._lock:
            if ctx is not self._context or ctx.state not in _EDITABLE or ctx.result is None:
                logger.debug(f"[Engine] extra view for measurement {ctx.measurement_id} arrived after discard, dropped")
                return False
            current = ctx.result
            cloud = sample.point_cloud
            if current.point_cloud is not None:
                cloud = current.point_cloud.merged(cloud)
            quality = MeasurementQuality.merged([current.quality, sample.quality])
            ctx.box_revision += 1
            ctx.result = recalculate(
                current.box, quality, current.axis_mapping, mode=current.mode,
                point_cloud=cloud, debug_images=current.debug_images,
            )
            ctx.state = MeasurementState.SETTLED
            logger.info(
                f"[Engine] measurement {ctx.measurement_id}: {len(cloud)} points "
                f"from {cloud.view_count()} views"
            )
            self._notify(ctx.state, ctx.result)
        return True

    # ---- Refinement ----
    def settle(self) -> Optional[Future]:
        """
        Editing paused: start refining the current box. The returned Future
        resolves to the merged RefinedVolumeResult, or None when the result
        was stale or unavailable.
        """
        with self._lock:
            ctx = self._context
            if ctx is None or ctx.state != MeasurementState.SETTLED or ctx.result is None:
                return None
            cloud = ctx.result.point_cloud
            if cloud is None:
                logger.info("[Engine] no retained point cloud, skipping refinement")
                return None
            token = ctx.token
            ctx.state = MeasurementState.REFINED_VOLUME_CALCULATING
            self._notify(ctx.state, ctx.result)
            outer: Future = Future()
            outer.set_running_or_notify_cancel()
            inner = self._worker.submit(token, ctx.box, cloud)
            inner.add_done_callback(lambda f: self._merge_refinement(token, f, outer))
        return outer

    def _merge_refinement(self, token: Tuple[int, int], inner: Future, outer: Future) -> None:
        refined: Optional[RefinedVolumeResult] = None
        try:
            refined = inner.result()
        except Exception as e:
            logger.warning(f"[Engine] refinement {token} failed: {e!r}")

        with self._lock:
            ctx = self._context
            stale = (
                ctx is None
                or ctx.token != token
                or ctx.state != MeasurementState.REFINED_VOLUME_CALCULATING
            )
            if stale:
                logger.debug(f"[Engine] refinement {token} is stale, dropped")
                refined = None
            else:
                if refined is None:
                    logger.info(f"[Engine] refined volume unavailable for {token}")
                ctx.result = ctx.result.with_refined(refined)
                ctx.state = MeasurementState.REFINED_VOLUME_READY
                self._notify(ctx.state, ctx.result)
        outer.set_result(refined)

    # ---- Teardown ----
    def discard(self) -> None:
        with self._lock:
            ctx = self._context
            if ctx is None or ctx.state == MeasurementState.CLEARED:
                return
            ctx.release()
            ctx.state = MeasurementState.CLEARED
            logger.info(f"[Engine] measurement {ctx.measurement_id} discarded")
            self._notify(ctx.state, None)

    def shutdown(self, timeout: Optional[float] = 5.0) -> None:
        self.discard()
        self._worker.stop(wait=True, timeout=timeout)
        thread = self._fit_thread
        if thread is not None and thread.is_alive():
            thread.join(timeout=timeout)
