import pytest

from app.orchestrator import (
    MUTANT_MOUNT,
    WILD_MOUNT,
    ZOOM_FACTOR,
    AssetState,
    CycleState,
    EngineAsset,
    RenderOrchestrator,
    RenderRequest,
    confidence_style,
    displacement_style,
    highlight_style,
    plan_viewers,
)


class FakeEngine:
    """Records every engine call; viewers are plain ids."""

    def __init__(self, fail_on_load=False):
        self.calls = []
        self.live = set()
        self.fail_on_load = fail_on_load
        self._next_id = 0

    def create_viewer(self, surface):
        self._next_id += 1
        viewer = ("viewer", self._next_id, surface)
        self.live.add(viewer)
        self.calls.append(("create_viewer", surface))
        return viewer

    def load_model(self, viewer, structure_text):
        if self.fail_on_load:
            raise RuntimeError("model rejected")
        self.calls.append(("load_model", viewer, structure_text))

    def set_style(self, viewer, selector, style):
        self.calls.append(("set_style", viewer, dict(selector), style))

    def zoom_to(self, viewer, selector, factor):
        self.calls.append(("zoom_to", viewer, dict(selector), factor))

    def render(self, viewer):
        self.calls.append(("render", viewer))

    def destroy(self, viewer):
        self.live.discard(viewer)
        self.calls.append(("destroy", viewer))

    def names(self):
        return [call[0] for call in self.calls]


class FakeMount:
    def __init__(self, name):
        self.name = name
        self.surfaces = []
        self._count = 0

    def create_surface(self):
        self._count += 1
        surface = f"{self.name}-{self._count}"
        self.surfaces.append(surface)
        return surface

    def remove_surface(self, surface):
        self.surfaces.remove(surface)


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


@pytest.fixture
def mounts():
    return {WILD_MOUNT: FakeMount(WILD_MOUNT), MUTANT_MOUNT: FakeMount(MUTANT_MOUNT)}


@pytest.fixture
def asset():
    return EngineAsset(clock=FakeClock())


def _orchestrator(mounts, asset, loader=None, states=None):
    return RenderOrchestrator(
        mounts,
        asset=asset,
        loader=loader or (lambda _asset: None),
        on_state_changed=states.append if states is not None else None,
    )


def test_text_change_while_loading_yields_one_viewer(mounts, asset, wild_pdb, mutant_pdb):
    orchestrator = _orchestrator(mounts, asset)

    orchestrator.update(RenderRequest(wild_pdb, 11))
    orchestrator.update(RenderRequest(mutant_pdb, 11))
    assert asset.state is AssetState.LOADING
    assert orchestrator.is_loading

    engine = FakeEngine()
    asset.mark_ready(engine)

    assert len(engine.live) == 1
    assert orchestrator.live_viewer_count == 1
    loaded = [call[2] for call in engine.calls if call[0] == "load_model"]
    assert loaded == [mutant_pdb]
    assert orchestrator.state is CycleState.DISPLAYED


def test_loader_requested_once_per_asset(mounts, asset, wild_pdb, mutant_pdb):
    requests = []
    orchestrator = _orchestrator(mounts, asset, loader=requests.append)
    orchestrator.update(RenderRequest(wild_pdb, 10))
    orchestrator.update(RenderRequest(wild_pdb, 11))
    orchestrator.update(RenderRequest(mutant_pdb, 12))
    assert requests == [asset]


def test_single_mode_call_order(mounts, asset, wild_pdb):
    engine = FakeEngine()
    asset.mark_ready(engine)
    orchestrator = _orchestrator(mounts, asset)

    orchestrator.update(RenderRequest(wild_pdb, 11, "A", "V"))

    assert engine.names() == [
        "create_viewer",
        "load_model",
        "set_style",
        "set_style",
        "render",
        "zoom_to",
        "render",
    ]
    base = engine.calls[2]
    highlight = engine.calls[3]
    zoom = engine.calls[5]
    assert base[2] == {}
    assert highlight[2] == {"resi": 11}
    assert "sphere" in highlight[3] and "stick" in highlight[3]
    assert zoom[2] == {"resi": 11}
    assert zoom[3] == ZOOM_FACTOR
    assert mounts[WILD_MOUNT].surfaces == ["wild-1"]
    assert mounts[MUTANT_MOUNT].surfaces == []


def test_dual_mode_builds_two_viewers(mounts, asset, wild_pdb, mutant_pdb):
    engine = FakeEngine()
    asset.mark_ready(engine)
    orchestrator = _orchestrator(mounts, asset)

    cycle = orchestrator.update(RenderRequest(wild_pdb, 10, "R", "H", mutant_text=mutant_pdb))

    assert len(engine.live) == 2
    assert [call[2] for call in engine.calls if call[0] == "load_model"] == [wild_pdb, mutant_pdb]
    assert cycle.displacement == {10: 3.0, 11: 0.0}
    mutant_style = [call[3] for call in engine.calls if call[0] == "set_style"][2]
    table = mutant_style["cartoon"]["colorTable"]
    assert table == {10: "#ffaa00", 11: "#ffffff", 13: "#ffffff"}


def test_state_sequence(mounts, asset, wild_pdb):
    states = []
    orchestrator = _orchestrator(mounts, asset, states=states)
    orchestrator.update(RenderRequest(wild_pdb, 10))
    asset.mark_ready(FakeEngine())
    assert states == [CycleState.LOADING, CycleState.INITIALIZED, CycleState.DISPLAYED]


def test_identical_request_keeps_cycle(mounts, asset, wild_pdb):
    engine = FakeEngine()
    asset.mark_ready(engine)
    orchestrator = _orchestrator(mounts, asset)

    first = orchestrator.update(RenderRequest(wild_pdb, 10))
    calls = len(engine.calls)
    second = orchestrator.update(RenderRequest(wild_pdb, 10))

    assert first is second
    assert len(engine.calls) == calls


def test_changed_position_tears_down_previous_viewers(mounts, asset, wild_pdb, mutant_pdb):
    engine = FakeEngine()
    asset.mark_ready(engine)
    orchestrator = _orchestrator(mounts, asset)

    first = orchestrator.update(RenderRequest(wild_pdb, 10, mutant_text=mutant_pdb))
    second = orchestrator.update(RenderRequest(wild_pdb, 11, mutant_text=mutant_pdb))

    assert first.state is CycleState.CANCELLED
    assert second.state is CycleState.DISPLAYED
    assert len(engine.live) == 2
    assert engine.names().count("destroy") == 2
    assert mounts[WILD_MOUNT].surfaces == ["wild-2"]
    assert mounts[MUTANT_MOUNT].surfaces == ["mutant-2"]


def test_clear_releases_everything(mounts, asset, wild_pdb):
    engine = FakeEngine()
    asset.mark_ready(engine)
    states = []
    orchestrator = _orchestrator(mounts, asset, states=states)
    orchestrator.update(RenderRequest(wild_pdb, 10))

    orchestrator.clear()

    assert engine.live == set()
    assert mounts[WILD_MOUNT].surfaces == []
    assert orchestrator.current_cycle is None
    assert orchestrator.state is CycleState.IDLE
    assert states[-1] is CycleState.IDLE


def test_cancelled_cycle_is_not_notified(mounts, asset, wild_pdb):
    orchestrator = _orchestrator(mounts, asset)
    orchestrator.update(RenderRequest(wild_pdb, 10))
    orchestrator.clear()
    assert asset.pending_count == 0

    engine = FakeEngine()
    asset.mark_ready(engine)
    assert engine.calls == []


def test_failed_asset_stays_loading(mounts, asset, wild_pdb):
    orchestrator = _orchestrator(mounts, asset)
    orchestrator.update(RenderRequest(wild_pdb, 10))

    asset.mark_failed("network unreachable")

    assert asset.state is AssetState.FAILED
    assert orchestrator.state is CycleState.LOADING
    assert orchestrator.live_viewer_count == 0
    assert orchestrator.is_stalled(15.0)


def test_loader_exception_marks_asset_failed(mounts, asset, wild_pdb):
    def loader(_asset):
        raise OSError("disk full")

    orchestrator = _orchestrator(mounts, asset, loader=loader)
    orchestrator.update(RenderRequest(wild_pdb, 10))
    assert asset.state is AssetState.FAILED
    assert asset.error == "disk full"
    assert orchestrator.is_loading


def test_stall_detection_uses_clock(mounts, wild_pdb):
    clock = FakeClock()
    asset = EngineAsset(clock=clock)
    orchestrator = _orchestrator(mounts, asset)
    orchestrator.update(RenderRequest(wild_pdb, 10))

    clock.now += 5.0
    assert not orchestrator.is_stalled(15.0)
    clock.now += 10.0
    assert orchestrator.is_stalled(15.0)

    asset.mark_ready(FakeEngine())
    assert not orchestrator.is_stalled(15.0)


def test_engine_error_degrades_to_loading(mounts, asset, wild_pdb):
    engine = FakeEngine(fail_on_load=True)
    asset.mark_ready(engine)
    orchestrator = _orchestrator(mounts, asset)

    cycle = orchestrator.update(RenderRequest(wild_pdb, 10))

    assert cycle.state is CycleState.LOADING
    assert cycle.error == "model rejected"
    assert engine.live == set()
    assert mounts[WILD_MOUNT].surfaces == []


@pytest.mark.parametrize(
    "request_obj, message",
    [
        (RenderRequest("", 10), "Wild-type"),
        (RenderRequest("ATOM", 0), ">= 1"),
    ],
)
def test_invalid_requests_rejected(mounts, asset, request_obj, message):
    orchestrator = _orchestrator(mounts, asset)
    with pytest.raises(ValueError, match=message):
        orchestrator.update(request_obj)


def test_dual_mode_needs_mutant_mount(asset, wild_pdb, mutant_pdb):
    orchestrator = _orchestrator({WILD_MOUNT: FakeMount(WILD_MOUNT)}, asset)
    with pytest.raises(ValueError, match="mutant"):
        orchestrator.update(RenderRequest(wild_pdb, 10, mutant_text=mutant_pdb))


def test_subscribe_after_ready_fires_immediately(asset):
    engine = FakeEngine()
    asset.mark_ready(engine)
    seen = []
    asset.subscribe(seen.append)
    assert seen == [engine]
    assert asset.pending_count == 0


def test_subscribers_fire_once(asset):
    seen = []
    asset.subscribe(seen.append)
    engine = FakeEngine()
    asset.mark_ready(engine)
    asset.mark_ready(FakeEngine())
    assert seen == [engine]


def test_failed_then_ready_releases_queue(asset):
    seen = []
    asset.request(lambda _asset: None)
    asset.subscribe(seen.append)
    asset.mark_failed("timeout")
    assert seen == []
    assert asset.pending_count == 1
    engine = FakeEngine()
    asset.mark_ready(engine)
    assert seen == [engine]


def test_plan_single_and_dual(wild_pdb, mutant_pdb):
    plans, displacement = plan_viewers(RenderRequest(wild_pdb, 10))
    assert [plan.mount for plan in plans] == [WILD_MOUNT]
    assert displacement == {}

    plans, displacement = plan_viewers(RenderRequest(wild_pdb, 10, mutant_text=mutant_pdb))
    assert [plan.mount for plan in plans] == [WILD_MOUNT, MUTANT_MOUNT]
    assert plans[1].structure_text == mutant_pdb


def test_confidence_style_colors_every_residue(wild_pdb):
    style = confidence_style(wild_pdb)
    table = style["cartoon"]["colorTable"]
    assert sorted(table) == [10, 11, 12]
    assert table[10] != table[12]
    assert style["cartoon"]["defaultColor"] == "#ff0000"


def test_displacement_style_and_highlight():
    style = displacement_style({1: 5.0}, [2, 1])
    assert list(style["cartoon"]["colorTable"]) == [1, 2]
    highlighted = highlight_style(style)
    assert highlighted["cartoon"] is style["cartoon"]
    assert highlighted["sphere"]["color"] == "#ff00ff"
    assert "sphere" not in style
