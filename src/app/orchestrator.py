"""Rendering-cycle orchestration for the wild-type and mutant structure viewers.

The orchestrator is toolkit-neutral: it talks to the 3D engine through
``ViewerEngine`` and to the GUI through ``MountPoint``. The Qt/3Dmol bindings
live in ``app.viz_3d``.
"""
from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol

from engine.colors import (
    CONFIDENCE_RAMP,
    DISPLACEMENT_RAMP,
    MAGENTA,
    color_for,
    residue_color_table,
    style_function_for,
)
from engine.displacement import compute_displacement
from engine.structure import parse_ca_coordinates, residue_confidence

logger = logging.getLogger(__name__)

ZOOM_FACTOR = 0.6
HIGHLIGHT_SPHERE_RADIUS = 1.2
HIGHLIGHT_STICK_RADIUS = 0.2

WILD_MOUNT = "wild"
MUTANT_MOUNT = "mutant"


class ViewerEngine(Protocol):
    def create_viewer(self, surface: Any) -> Any: ...

    def load_model(self, viewer: Any, structure_text: str) -> None: ...

    def set_style(self, viewer: Any, selector: Dict[str, Any], style: Dict[str, Any]) -> None: ...

    def zoom_to(self, viewer: Any, selector: Dict[str, Any], factor: float) -> None: ...

    def render(self, viewer: Any) -> None: ...

    def destroy(self, viewer: Any) -> None: ...


class MountPoint(Protocol):
    def create_surface(self) -> Any: ...

    def remove_surface(self, surface: Any) -> None: ...


class AssetState(enum.Enum):
    NOT_REQUESTED = "not_requested"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


class Subscription:
    def __init__(self, asset: "EngineAsset", callback: Callable[[ViewerEngine], None]):
        self._asset = asset
        self._callback = callback
        self.active = True

    def cancel(self) -> None:
        self.active = False
        self._asset._unsubscribe(self)

    def _fire(self, engine: ViewerEngine) -> None:
        if self.active:
            self.active = False
            self._callback(engine)


class EngineAsset:
    """Session-wide handle on the viewer engine script.

    The script is requested at most once. Subscribers registered before it is
    ready are queued and notified when ``mark_ready`` runs; later subscribers
    are notified immediately. A failed load keeps subscribers queued.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.state = AssetState.NOT_REQUESTED
        self.engine: Optional[ViewerEngine] = None
        self.error: Optional[str] = None
        self._clock = clock
        self._requested_at: Optional[float] = None
        self._subscribers: List[Subscription] = []

    @property
    def pending_count(self) -> int:
        return len(self._subscribers)

    def request(self, loader: Callable[["EngineAsset"], None]) -> None:
        if self.state is not AssetState.NOT_REQUESTED:
            return
        self.state = AssetState.LOADING
        self._requested_at = self._clock()
        logger.info("Requesting viewer engine asset")
        try:
            loader(self)
        except Exception as exc:
            logger.exception("Viewer engine loader raised")
            self.mark_failed(str(exc))

    def mark_ready(self, engine: ViewerEngine) -> None:
        if self.state is AssetState.READY:
            return
        self.state = AssetState.READY
        self.engine = engine
        self.error = None
        logger.info("Viewer engine asset ready (%d waiting)", len(self._subscribers))
        subscribers, self._subscribers = self._subscribers, []
        for sub in subscribers:
            sub._fire(engine)

    def mark_failed(self, message: str) -> None:
        if self.state is AssetState.READY:
            return
        self.state = AssetState.FAILED
        self.error = message
        logger.warning("Viewer engine asset failed to load: %s", message)

    def subscribe(self, callback: Callable[[ViewerEngine], None]) -> Subscription:
        sub = Subscription(self, callback)
        if self.state is AssetState.READY and self.engine is not None:
            sub._fire(self.engine)
        else:
            self._subscribers.append(sub)
        return sub

    def _unsubscribe(self, sub: Subscription) -> None:
        if sub in self._subscribers:
            self._subscribers.remove(sub)

    def is_stalled(self, timeout: float) -> bool:
        if self.state is AssetState.FAILED:
            return True
        if self.state is not AssetState.LOADING or self._requested_at is None:
            return False
        return (self._clock() - self._requested_at) >= timeout


_SHARED_ASSET: Optional[EngineAsset] = None


def shared_engine_asset() -> EngineAsset:
    global _SHARED_ASSET
    if _SHARED_ASSET is None:
        _SHARED_ASSET = EngineAsset()
    return _SHARED_ASSET


@dataclass(frozen=True)
class RenderRequest:
    wild_text: str
    position: int
    original: str = ""
    mutant: str = ""
    mutant_text: Optional[str] = None

    @property
    def dual(self) -> bool:
        return bool(self.mutant_text)

    @property
    def label(self) -> str:
        return f"{self.original}{self.position}{self.mutant}"


def _cartoon_style(values: Mapping[int, float], residues, ramp) -> Dict[str, Any]:
    function = style_function_for(values, ramp)
    return {
        "cartoon": {
            "colorTable": residue_color_table(residues, function),
            "defaultColor": color_for(0.0, ramp).hex(),
        }
    }


def confidence_style(structure_text: str, ramp=CONFIDENCE_RAMP) -> Dict[str, Any]:
    values = residue_confidence(structure_text)
    residues = sorted(set(values) | set(parse_ca_coordinates(structure_text)))
    return _cartoon_style(values, residues, ramp)


def displacement_style(
    displacement: Mapping[int, float],
    residues,
    ramp=DISPLACEMENT_RAMP,
) -> Dict[str, Any]:
    return _cartoon_style(displacement, sorted(residues), ramp)


def highlight_style(base: Dict[str, Any]) -> Dict[str, Any]:
    """Base cartoon plus a magenta sphere and stick on the highlighted residue."""
    style = dict(base)
    style["sphere"] = {"color": MAGENTA.hex(), "radius": HIGHLIGHT_SPHERE_RADIUS}
    style["stick"] = {"color": MAGENTA.hex(), "radius": HIGHLIGHT_STICK_RADIUS}
    return style


@dataclass
class ViewerPlan:
    mount: str
    structure_text: str
    style: Dict[str, Any]


def plan_viewers(request: RenderRequest) -> tuple[List[ViewerPlan], Dict[int, float]]:
    """Viewer plans plus the displacement map (empty in single mode)."""
    wild_plan = ViewerPlan(WILD_MOUNT, request.wild_text, confidence_style(request.wild_text))
    if not request.dual:
        return [wild_plan], {}

    mutant_text = request.mutant_text or ""
    wild_coords = parse_ca_coordinates(request.wild_text)
    mutant_coords = parse_ca_coordinates(mutant_text)
    displacement = compute_displacement(wild_coords, mutant_coords)
    mutant_plan = ViewerPlan(
        MUTANT_MOUNT,
        mutant_text,
        displacement_style(displacement, mutant_coords.keys()),
    )
    return [wild_plan, mutant_plan], displacement


class CycleState(enum.Enum):
    IDLE = "idle"
    LOADING = "loading"
    INITIALIZED = "initialized"
    DISPLAYED = "displayed"
    CANCELLED = "cancelled"


@dataclass
class _LiveViewer:
    mount: MountPoint
    surface: Any
    engine: Optional[ViewerEngine] = None
    viewer: Any = None


class RenderCycle:
    """One creation-to-teardown lifespan driven by a single request."""

    def __init__(
        self,
        cycle_id: int,
        request: RenderRequest,
        mounts: Mapping[str, MountPoint],
        asset: EngineAsset,
        on_state: Optional[Callable[["RenderCycle", CycleState], None]] = None,
    ):
        self.cycle_id = cycle_id
        self.request = request
        self.state = CycleState.IDLE
        self.cancelled = False
        self.error: Optional[str] = None
        self.displacement: Dict[int, float] = {}
        self._mounts = mounts
        self._asset = asset
        self._on_state = on_state
        self._plans: List[ViewerPlan] = []
        self._live: List[_LiveViewer] = []
        self._subscription: Optional[Subscription] = None

    @property
    def viewer_count(self) -> int:
        return sum(1 for item in self._live if item.viewer is not None)

    def _set_state(self, state: CycleState) -> None:
        self.state = state
        if self._on_state is not None:
            self._on_state(self, state)

    def start(self) -> None:
        self._plans, self.displacement = plan_viewers(self.request)
        self._set_state(CycleState.LOADING)
        self._subscription = self._asset.subscribe(self._on_engine_ready)

    def _on_engine_ready(self, engine: ViewerEngine) -> None:
        if self.cancelled:
            return
        position = {"resi": self.request.position}
        try:
            viewers = []
            for plan in self._plans:
                mount = self._mounts[plan.mount]
                live = _LiveViewer(mount=mount, surface=mount.create_surface())
                self._live.append(live)
                live.engine = engine
                live.viewer = engine.create_viewer(live.surface)
                engine.load_model(live.viewer, plan.structure_text)
                engine.set_style(live.viewer, {}, plan.style)
                engine.set_style(live.viewer, position, highlight_style(plan.style))
                engine.render(live.viewer)
                engine.zoom_to(live.viewer, position, ZOOM_FACTOR)
                viewers.append(live.viewer)
            self._set_state(CycleState.INITIALIZED)
            for viewer in viewers:
                engine.render(viewer)
        except Exception as exc:
            # Degrade to a loading state; the UI layer never sees the error.
            logger.exception("Render cycle %d failed while building viewers", self.cycle_id)
            self.error = str(exc)
            self._release()
            if self.state is not CycleState.LOADING:
                self._set_state(CycleState.LOADING)
            return
        self._set_state(CycleState.DISPLAYED)

    def _release(self) -> None:
        while self._live:
            live = self._live.pop()
            if live.viewer is not None and live.engine is not None:
                try:
                    live.engine.destroy(live.viewer)
                except Exception:
                    logger.warning("Failed to destroy viewer in cycle %d", self.cycle_id, exc_info=True)
            try:
                live.mount.remove_surface(live.surface)
            except Exception:
                logger.warning("Failed to remove surface in cycle %d", self.cycle_id, exc_info=True)

    def cancel(self) -> None:
        if self.cancelled:
            return
        self.cancelled = True
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None
        self._release()
        self._set_state(CycleState.CANCELLED)


class RenderOrchestrator:
    """Owns the current render cycle and restarts it whenever the request changes."""

    def __init__(
        self,
        mounts: Mapping[str, MountPoint],
        asset: Optional[EngineAsset] = None,
        loader: Optional[Callable[[EngineAsset], None]] = None,
        on_state_changed: Optional[Callable[[CycleState], None]] = None,
    ):
        self._mounts = dict(mounts)
        self._asset = asset or shared_engine_asset()
        self._loader = loader
        self._on_state_changed = on_state_changed
        self._cycle: Optional[RenderCycle] = None
        self._cycle_counter = 0

    @property
    def asset(self) -> EngineAsset:
        return self._asset

    @property
    def current_cycle(self) -> Optional[RenderCycle]:
        return self._cycle

    @property
    def state(self) -> CycleState:
        return self._cycle.state if self._cycle is not None else CycleState.IDLE

    @property
    def is_loading(self) -> bool:
        return self.state is CycleState.LOADING

    @property
    def live_viewer_count(self) -> int:
        return self._cycle.viewer_count if self._cycle is not None else 0

    def _validate(self, request: RenderRequest) -> None:
        if not request.wild_text:
            raise ValueError("Wild-type structure text is required.")
        if request.position < 1:
            raise ValueError(f"Highlighted residue must be >= 1, got {request.position}.")
        if WILD_MOUNT not in self._mounts:
            raise ValueError("No mount point for the wild-type viewer.")
        if request.dual and MUTANT_MOUNT not in self._mounts:
            raise ValueError("Dual mode requested without a mount point for the mutant viewer.")

    def _forward_state(self, cycle: RenderCycle, state: CycleState) -> None:
        if cycle is not self._cycle or self._on_state_changed is None:
            return
        self._on_state_changed(state)

    def update(self, request: RenderRequest) -> RenderCycle:
        self._validate(request)
        current = self._cycle
        if current is not None and not current.cancelled and current.request == request:
            return current

        self._teardown()
        self._cycle_counter += 1
        cycle = RenderCycle(
            self._cycle_counter,
            request,
            self._mounts,
            self._asset,
            on_state=self._forward_state,
        )
        self._cycle = cycle
        logger.info(
            "Render cycle %d started (%s, residue %d)",
            cycle.cycle_id,
            "dual" if request.dual else "single",
            request.position,
        )
        cycle.start()
        if self._asset.state is AssetState.NOT_REQUESTED and self._loader is not None:
            self._asset.request(self._loader)
        return cycle

    def _teardown(self) -> None:
        cycle = self._cycle
        if cycle is None:
            return
        cycle.cancel()
        logger.info("Render cycle %d torn down", cycle.cycle_id)

    def clear(self) -> None:
        self._teardown()
        self._cycle = None
        if self._on_state_changed is not None:
            self._on_state_changed(CycleState.IDLE)

    def is_stalled(self, timeout: float) -> bool:
        return self.is_loading and self._asset.is_stalled(timeout)
