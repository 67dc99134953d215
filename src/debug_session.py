"""
Per-panel state for stepping through unfold debug output.

Three pieces:
- SessionPhase: Idle -> FaceSelected -> StepIndexed
- VisualizationState: immutable snapshot of what is attached to the scene
- DebugSession: drives transitions, cancel-and-restart on re-selection, and
  optional auto-play on a fixed cadence (AutoPlayer)
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

import numpy as np

from geometry_primitives import FaceBasis, PlacementResult
from placement_solver import AlignmentConfig, align_flat_face
from unfold_payload import UnfoldDebugDump
from unfold_visualization import VisualizationConfig, VisualizationOutput, build_visualization

logger = logging.getLogger(__name__)


class SessionPhase(Enum):
    IDLE = "idle"
    FACE_SELECTED = "face_selected"
    STEP_INDEXED = "step_indexed"


@dataclass
class AlignmentRequest:
    """Face of interest to place the flattened patch onto."""

    reference_vertices: np.ndarray
    reference_faces: Optional[np.ndarray]
    reference_basis: FaceBasis
    flat_mesh_name: str
    face_id: Any
    transform: Optional[np.ndarray] = None


@dataclass(frozen=True, eq=False)
class VisualizationState:
    """What one panel currently shows; replaced wholesale, never mutated."""

    generation: int
    solid_id: Optional[str] = None
    step_index: Optional[int] = None
    output: Optional[VisualizationOutput] = None
    placement: Optional[PlacementResult] = None


class SceneSink:
    """Receiver for attach/detach of visualization states (no-op default)."""

    def attach(self, state: VisualizationState) -> None:
        pass

    def detach(self, state: VisualizationState) -> None:
        pass


class AutoPlayer:
    """Calls *callback* every *interval* seconds on a daemon thread.

    The loop ends when the callback returns False or ``stop`` is called.
    ``start`` and ``stop`` are both safe to call repeatedly.
    """

    def __init__(self):
        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()

    @property
    def running(self) -> bool:
        return (
            self._thread is not None
            and self._thread.is_alive()
            and not self._stop.is_set()
        )

    def start(self, interval: float, callback: Callable[[], bool]) -> bool:
        if self.running:
            return False
        if interval <= 0:
            raise ValueError(f"Auto-play interval must be positive, got {interval}")
        self._stop = threading.Event()
        stop = self._stop

        def _loop():
            while not stop.wait(interval):
                if callback() is False:
                    stop.set()
                    break

        self._thread = threading.Thread(target=_loop, name="unfold-autoplay", daemon=True)
        self._thread.start()
        return True

    def stop(self, timeout: float = 1.0) -> None:
        self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        self._thread = None


class DebugSession:
    """Debug panel session over one unfold debug dump at a time."""

    def __init__(
        self,
        scene_sink: Optional[SceneSink] = None,
        config: Optional[VisualizationConfig] = None,
        alignment_config: Optional[AlignmentConfig] = None,
    ):
        self.scene_sink = scene_sink or SceneSink()
        self.config = config or VisualizationConfig()
        self.alignment_config = alignment_config or AlignmentConfig()
        self.phase = SessionPhase.IDLE
        self.dump: Optional[UnfoldDebugDump] = None
        self.state: Optional[VisualizationState] = None
        self.placement: Optional[PlacementResult] = None
        self.solid_id: Optional[str] = None
        self._generation = 0
        self._lock = threading.RLock()
        self._player = AutoPlayer()

    # ─── Properties ──────────────────────────────────────────────────────

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def step_count(self) -> int:
        return len(self.dump.steps) if self.dump is not None else 0

    @property
    def step_index(self) -> Optional[int]:
        return self.state.step_index if self.state is not None else None

    @property
    def auto_playing(self) -> bool:
        return self._player.running

    # ─── Transitions ─────────────────────────────────────────────────────

    def select_solid(
        self,
        solid_id: str,
        dump: UnfoldDebugDump,
        alignment: Optional[AlignmentRequest] = None,
    ) -> Optional[PlacementResult]:
        """Switch to a new solid, tearing down whatever was shown before.

        Returns the placement for *alignment*, or None when no request was
        given or the solver found no placement (the overlay is hidden).
        """
        self.stop_auto_play()
        with self._lock:
            self._generation += 1
            self._teardown()
            self.dump = dump
            self.solid_id = solid_id
            self.placement = None
            self.phase = SessionPhase.FACE_SELECTED
            generation = self._generation

        placement = None
        if alignment is not None:
            placement = self._solve(alignment)

        with self._lock:
            if generation != self._generation:
                logger.debug("Selection of '%s' superseded; dropping placement", solid_id)
                return None
            self.placement = placement
        logger.info(
            "Selected solid '%s' (%d steps, placement=%s)",
            solid_id, self.step_count, "yes" if placement is not None else "none",
        )
        return placement

    def select_step(self, index: int, manual: bool = True) -> Optional[VisualizationState]:
        """Show step *index*; out-of-range or idle selections are ignored."""
        if manual:
            self.stop_auto_play()
        with self._lock:
            if self.phase == SessionPhase.IDLE or self.dump is None:
                logger.warning("select_step(%d) ignored: no solid selected", index)
                return None
            if index < 0 or index >= self.step_count:
                logger.warning("select_step(%d) ignored: %d steps available", index, self.step_count)
                return None
            self._generation += 1
            generation = self._generation
            dump = self.dump

        step = dump.steps[index]
        previous = dump.steps[index - 1] if index > 0 else None
        output = build_visualization(step, dump.flat_meshes, previous, self.config)

        with self._lock:
            if generation != self._generation:
                logger.debug("Step %d build superseded; discarding", index)
                return None
            new_state = VisualizationState(
                generation=generation,
                solid_id=self.solid_id,
                step_index=index,
                output=output,
                placement=self.placement,
            )
            self._teardown()
            self.state = new_state
            self.scene_sink.attach(new_state)
            self.phase = SessionPhase.STEP_INDEXED
        return new_state

    def next_step(self, manual: bool = True) -> Optional[VisualizationState]:
        current = self.step_index
        return self.select_step(0 if current is None else current + 1, manual=manual)

    def previous_step(self, manual: bool = True) -> Optional[VisualizationState]:
        current = self.step_index
        if current is None:
            return self.select_step(0, manual=manual)
        return self.select_step(current - 1, manual=manual)

    def clear(self) -> None:
        self.stop_auto_play()
        with self._lock:
            self._generation += 1
            self._teardown()
            self.dump = None
            self.solid_id = None
            self.placement = None
            self.phase = SessionPhase.IDLE

    # ─── Auto-play ───────────────────────────────────────────────────────

    def start_auto_play(self, interval: float = 1.0) -> bool:
        if interval <= 0:
            logger.warning("Auto-play not started: interval must be positive, got %s", interval)
            return False
        if self.phase == SessionPhase.IDLE or self.step_count == 0:
            return False
        return self._player.start(interval, self._auto_advance)

    def stop_auto_play(self) -> None:
        self._player.stop()

    def _auto_advance(self) -> bool:
        current = self.step_index
        if current is not None and current + 1 >= self.step_count:
            return False
        return self.next_step(manual=False) is not None

    # ─── Internals ───────────────────────────────────────────────────────

    def _teardown(self) -> None:
        if self.state is not None:
            self.scene_sink.detach(self.state)
            self.state = None

    def _solve(self, request: AlignmentRequest) -> Optional[PlacementResult]:
        flat_mesh = self.dump.flat_meshes.get(request.flat_mesh_name) if self.dump else None
        if flat_mesh is None:
            logger.warning("No flat mesh named '%s'; overlay hidden", request.flat_mesh_name)
            return None
        return align_flat_face(
            request.reference_vertices,
            request.reference_faces,
            request.reference_basis,
            flat_mesh,
            request.face_id,
            transform=request.transform,
            config=self.alignment_config,
        )
