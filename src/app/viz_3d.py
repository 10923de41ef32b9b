"""Embedded 3Dmol viewers for the wild-type / mutant structure comparison."""
from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

import requests
from PyQt6 import QtCore, QtWidgets

try:
    if str(os.environ.get("MUTAVIEW_DISABLE_WEBENGINE", "")).strip().lower() in {"1", "true", "yes"}:
        raise ImportError("WebEngine disabled by MUTAVIEW_DISABLE_WEBENGINE")
    from PyQt6 import QtWebEngineCore, QtWebEngineWidgets
except Exception:  # pragma: no cover - optional runtime dependency
    QtWebEngineCore = None
    QtWebEngineWidgets = None

from app.orchestrator import (
    MUTANT_MOUNT,
    WILD_MOUNT,
    AssetState,
    CycleState,
    EngineAsset,
    RenderOrchestrator,
    RenderRequest,
    shared_engine_asset,
)
from engine.colors import CONFIDENCE_RAMP, DISPLACEMENT_RAMP, MAGENTA, ramp_gradient

logger = logging.getLogger(__name__)

THREEDMOL_CDN = "https://3dmol.csb.pitt.edu/build/3Dmol-min.js"
THREEDMOL_FILENAME = "3Dmol-min.js"
EVENT_PREFIX = "MUTAVIEW_EVENT:"
STALL_TIMEOUT_MS = 15000


def _resolve_3dmol_js_path() -> Path | None:
    env_path = os.environ.get("MUTAVIEW_3DMOL_JS", "").strip()
    candidates = []
    if env_path:
        candidates.append(Path(env_path).expanduser())

    here = Path(__file__).resolve()
    repo_root = here.parents[2] if len(here.parents) > 2 else Path.cwd()
    candidates.extend(
        [
            repo_root / "src" / "app" / "assets" / THREEDMOL_FILENAME,
            repo_root / "assets" / THREEDMOL_FILENAME,
            Path.cwd() / THREEDMOL_FILENAME,
        ]
    )

    for cand in candidates:
        try:
            if cand.is_file():
                return cand.resolve()
        except OSError:
            continue
    return None


def fetch_engine_script(cache_dir: Path, timeout: float = 30.0) -> Path:
    """Local 3Dmol build if one is configured, otherwise a one-time CDN download."""
    local = _resolve_3dmol_js_path()
    if local is not None:
        return local
    cache_dir.mkdir(parents=True, exist_ok=True)
    target = cache_dir / THREEDMOL_FILENAME
    if target.is_file():
        return target
    logger.info("Downloading 3Dmol from %s", THREEDMOL_CDN)
    response = requests.get(THREEDMOL_CDN, timeout=timeout)
    response.raise_for_status()
    temp_path = target.with_suffix(".tmp")
    temp_path.write_text(response.text, encoding="utf-8")
    os.replace(temp_path, target)
    return target


def _js_call(method: str, *args) -> str:
    args_code = ", ".join(json.dumps(arg, ensure_ascii=False) for arg in args)
    return (
        "(function(){"
        f"if(window.mutaviewApi && window.mutaviewApi.{method}){{window.mutaviewApi.{method}({args_code});}}"
        "})();"
    )


if QtWebEngineWidgets is not None and QtWebEngineCore is not None:

    class _MolPage(QtWebEngineCore.QWebEnginePage):
        console_event = QtCore.pyqtSignal(object)

        def javaScriptConsoleMessage(self, level, message, line_number, source_id):  # noqa: N802
            if message.startswith(EVENT_PREFIX):
                payload = message[len(EVENT_PREFIX) :].strip()
                try:
                    self.console_event.emit(json.loads(payload))
                    return
                except ValueError:
                    pass
            lowered = message.lower()
            if "webgl context could not be created" in lowered or "error creating webgl context" in lowered:
                self.console_event.emit(
                    {
                        "type": "error",
                        "message": "3Dmol could not create a WebGL context on this machine/session.",
                    }
                )
                return
            super().javaScriptConsoleMessage(level, message, line_number, source_id)

else:

    class _MolPage(QtCore.QObject):
        console_event = QtCore.pyqtSignal(object)


def _build_viewer_html() -> str:
    return f"""
<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8" />
  <style>
    html, body, #viewport {{
      width: 100%;
      height: 100%;
      margin: 0;
      padding: 0;
      overflow: hidden;
      background: #1a1a1a;
      position: relative;
    }}
  </style>
  <script src="{THREEDMOL_FILENAME}"></script>
</head>
<body>
  <div id="viewport"></div>
  <script>
    (function () {{
      var viewer = null;

      function emit(type, payload) {{
        var data = payload || {{}};
        data.type = type;
        console.log("{EVENT_PREFIX}" + JSON.stringify(data));
      }}

      // Per-residue color table -> 3Dmol per-atom callback.
      function cartoonStyle(cartoon) {{
        if (!cartoon || !cartoon.colorTable) return cartoon;
        var table = cartoon.colorTable;
        var fallback = cartoon.defaultColor || "#ffffff";
        var out = {{}};
        for (var key in cartoon) {{
          if (key !== "colorTable" && key !== "defaultColor") out[key] = cartoon[key];
        }}
        out.colorfunc = function (atom) {{
          var color = table[atom.resi];
          return color !== undefined ? color : fallback;
        }};
        return out;
      }}

      function translate(style) {{
        var out = {{}};
        for (var key in style) out[key] = style[key];
        if (style.cartoon) out.cartoon = cartoonStyle(style.cartoon);
        return out;
      }}

      function boot() {{
        if (!window.$3Dmol) {{
          emit("error", {{ message: "3Dmol is not available in web runtime." }});
          return;
        }}
        try {{
          viewer = $3Dmol.createViewer(document.getElementById("viewport"), {{
            backgroundColor: "0x1a1a1a"
          }});
        }} catch (err) {{
          emit("error", {{ message: "3Dmol viewer initialization failed: " + err }});
          return;
        }}
        emit("ready", {{ ok: true }});
      }}

      window.mutaviewApi = {{
        loadModel: function (text) {{ if (viewer) viewer.addModel(text, "pdb"); }},
        setStyle: function (selector, style) {{ if (viewer) viewer.setStyle(selector, translate(style)); }},
        zoomTo: function (selector, factor) {{
          if (!viewer) return;
          viewer.zoomTo(selector);
          viewer.zoom(factor);
        }},
        render: function () {{ if (viewer) viewer.render(); }},
        clear: function () {{
          if (!viewer) return;
          viewer.clear();
          viewer = null;
        }}
      }};

      boot();
    }})();
  </script>
</body>
</html>
"""


class ViewerHandle:
    """One embedded 3Dmol viewer; queues JS calls until its page has loaded."""

    def __init__(self, view) -> None:
        self.view = view
        self.ready = False
        self.runtime_ready = False
        self.destroyed = False
        self.pending: list[str] = []
        self.last_error = ""

    def invoke(self, method: str, *args) -> None:
        if self.destroyed:
            return
        script = _js_call(method, *args)
        if self.ready:
            self.view.page().runJavaScript(script)
        else:
            self.pending.append(script)

    def flush(self) -> None:
        if not self.ready or self.destroyed:
            return
        while self.pending:
            script = self.pending.pop(0)
            self.view.page().runJavaScript(script)

    def on_load_finished(self, ok: bool) -> None:
        if self.destroyed:
            return
        if not ok:
            logger.warning("Embedded 3Dmol page failed to load")
            return
        self.ready = True
        self.flush()

    def on_js_event(self, event) -> None:
        if not isinstance(event, dict):
            return
        etype = event.get("type", "")
        if etype == "ready":
            self.runtime_ready = True
        elif etype == "error":
            msg = str(event.get("message", "3Dmol runtime error."))
            if msg != self.last_error:
                logger.warning("3Dmol viewer error: %s", msg)
                self.last_error = msg


class ThreeDmolEngine:
    """``ViewerEngine`` backed by a local copy of 3Dmol.js in Qt WebEngine views."""

    def __init__(self, script_path: Path) -> None:
        self.script_path = Path(script_path)

    def create_viewer(self, surface: QtWidgets.QWidget) -> ViewerHandle:
        view = QtWebEngineWidgets.QWebEngineView(surface)
        page = _MolPage(view)
        view.setPage(page)
        handle = ViewerHandle(view)
        page.console_event.connect(handle.on_js_event)
        view.loadFinished.connect(handle.on_load_finished)

        settings = view.settings()
        wa = QtWebEngineCore.QWebEngineSettings.WebAttribute
        settings.setAttribute(wa.LocalContentCanAccessFileUrls, True)
        settings.setAttribute(wa.LocalContentCanAccessRemoteUrls, False)

        surface.layout().addWidget(view)
        base_url = QtCore.QUrl.fromLocalFile(str(self.script_path.parent) + "/")
        view.setHtml(_build_viewer_html(), base_url)
        return handle

    def load_model(self, viewer: ViewerHandle, structure_text: str) -> None:
        viewer.invoke("loadModel", structure_text)

    def set_style(self, viewer: ViewerHandle, selector: dict, style: dict) -> None:
        viewer.invoke("setStyle", selector, style)

    def zoom_to(self, viewer: ViewerHandle, selector: dict, factor: float) -> None:
        viewer.invoke("zoomTo", selector, factor)

    def render(self, viewer: ViewerHandle) -> None:
        viewer.invoke("render")

    def destroy(self, viewer: ViewerHandle) -> None:
        if viewer.ready:
            viewer.invoke("clear")
        viewer.destroyed = True
        viewer.pending.clear()
        viewer.view.setParent(None)
        viewer.view.deleteLater()


class _AssetFetchWorker(QtCore.QObject):
    finished = QtCore.pyqtSignal(str)
    failed = QtCore.pyqtSignal(str)

    def __init__(self, cache_dir: Path):
        super().__init__()
        self.cache_dir = cache_dir

    @QtCore.pyqtSlot()
    def run(self) -> None:
        try:
            path = fetch_engine_script(self.cache_dir)
            self.finished.emit(str(path))
        except Exception as exc:
            logger.exception("3Dmol download failed")
            self.failed.emit(str(exc))


class _AssetLoadController(QtCore.QObject):
    """Fetches the 3Dmol script on a worker thread and resolves the shared asset."""

    def __init__(self) -> None:
        super().__init__()
        self.asset: EngineAsset | None = None
        self.thread: QtCore.QThread | None = None
        self.worker: _AssetFetchWorker | None = None
        self.cache_dir = Path(tempfile.gettempdir()) / "mutaview_3dmol"

    def start(self, asset: EngineAsset) -> None:
        self.asset = asset
        if QtWebEngineWidgets is None or QtWebEngineCore is None:
            asset.mark_failed("PyQt6-WebEngine is not installed in the active environment.")
            return
        self.thread = QtCore.QThread()
        self.worker = _AssetFetchWorker(self.cache_dir)
        self.worker.moveToThread(self.thread)
        self.thread.started.connect(self.worker.run)
        self.worker.finished.connect(self._on_finished)
        self.worker.failed.connect(self._on_failed)
        self.worker.finished.connect(self.thread.quit)
        self.worker.failed.connect(self.thread.quit)
        self.thread.start()

    @QtCore.pyqtSlot(str)
    def _on_finished(self, path: str) -> None:
        if self.asset is not None:
            self.asset.mark_ready(ThreeDmolEngine(Path(path)))

    @QtCore.pyqtSlot(str)
    def _on_failed(self, message: str) -> None:
        if self.asset is not None:
            self.asset.mark_failed(message)


_LOAD_CONTROLLER: _AssetLoadController | None = None


def load_engine_asset(asset: EngineAsset) -> None:
    global _LOAD_CONTROLLER
    _LOAD_CONTROLLER = _AssetLoadController()
    _LOAD_CONTROLLER.start(asset)


class _PanelMount:
    """Stable wrapper widget; only the orchestrator adds or removes its children."""

    def __init__(self, wrapper: QtWidgets.QWidget) -> None:
        self.wrapper = wrapper
        layout = QtWidgets.QVBoxLayout(wrapper)
        layout.setContentsMargins(0, 0, 0, 0)

    def create_surface(self) -> QtWidgets.QWidget:
        surface = QtWidgets.QWidget(self.wrapper)
        layout = QtWidgets.QVBoxLayout(surface)
        layout.setContentsMargins(0, 0, 0, 0)
        self.wrapper.layout().addWidget(surface)
        return surface

    def remove_surface(self, surface: QtWidgets.QWidget) -> None:
        self.wrapper.layout().removeWidget(surface)
        surface.setParent(None)
        surface.deleteLater()


class StructureViewerWidget(QtWidgets.QWidget):
    """Single or side-by-side 3D views of the wild-type and mutant structures."""

    sig_state_changed = QtCore.pyqtSignal(str)

    def __init__(self, parent=None, asset: EngineAsset | None = None):
        super().__init__(parent)
        self._build_ui()
        self.orchestrator = RenderOrchestrator(
            {WILD_MOUNT: self._wild_mount, MUTANT_MOUNT: self._mutant_mount},
            asset=asset or shared_engine_asset(),
            loader=load_engine_asset,
            on_state_changed=self._on_cycle_state,
        )
        self._stall_timer = QtCore.QTimer(self)
        self._stall_timer.setSingleShot(True)
        self._stall_timer.setInterval(STALL_TIMEOUT_MS)
        self._stall_timer.timeout.connect(self._on_stall_timeout)
        self._set_loading(False)

    def _build_panel(self, badge_text: str, badge_color: str):
        frame = QtWidgets.QFrame()
        frame.setMinimumHeight(500)
        frame.setStyleSheet("QFrame { background: #18181b; border: 1px solid #3f3f46; border-radius: 8px; }")
        layout = QtWidgets.QVBoxLayout(frame)
        layout.setContentsMargins(6, 6, 6, 6)
        layout.setSpacing(4)

        badge = QtWidgets.QLabel(badge_text)
        badge.setStyleSheet(
            f"background: {badge_color}; color: #ffffff; padding: 4px 10px; border-radius: 6px; font-size: 11px;"
        )
        layout.addWidget(badge, 0, QtCore.Qt.AlignmentFlag.AlignLeft)

        overlay = QtWidgets.QLabel("Loading 3D viewer...")
        overlay.setAlignment(QtCore.Qt.AlignmentFlag.AlignCenter)
        overlay.setStyleSheet("color: #a1a1aa; border: none;")
        layout.addWidget(overlay)

        wrapper = QtWidgets.QWidget()
        wrapper.setSizePolicy(
            QtWidgets.QSizePolicy.Policy.Expanding, QtWidgets.QSizePolicy.Policy.Expanding
        )
        layout.addWidget(wrapper, 1)
        return frame, badge, overlay, wrapper

    def _legend_swatch(self, ramp) -> QtWidgets.QFrame:
        swatch = QtWidgets.QFrame()
        swatch.setFixedSize(128, 12)
        swatch.setStyleSheet(f"background: {ramp_gradient(ramp)}; border-radius: 2px;")
        return swatch

    def _build_ui(self) -> None:
        root = QtWidgets.QVBoxLayout(self)
        root.setContentsMargins(8, 8, 8, 8)
        root.setSpacing(8)

        title_row = QtWidgets.QHBoxLayout()
        title = QtWidgets.QLabel("3D Structure")
        title.setStyleSheet("font-weight: 600; font-size: 14px;")
        self.mode_badge = QtWidgets.QLabel()
        title_row.addWidget(title)
        title_row.addStretch(1)
        title_row.addWidget(self.mode_badge)
        root.addLayout(title_row)

        self.notice_label = QtWidgets.QLabel()
        self.notice_label.setWordWrap(True)
        self.notice_label.setVisible(False)
        root.addWidget(self.notice_label)

        panels = QtWidgets.QHBoxLayout()
        panels.setSpacing(12)
        self.wild_panel, self.wild_badge, self.wild_overlay, wild_wrapper = self._build_panel(
            "Wild-type structure - mutation site highlighted", "rgba(0, 0, 0, 0.7)"
        )
        self.mutant_panel, self.mutant_badge, self.mutant_overlay, mutant_wrapper = self._build_panel(
            "Mutant (ESMFold)", "rgba(234, 88, 12, 0.8)"
        )
        self._wild_mount = _PanelMount(wild_wrapper)
        self._mutant_mount = _PanelMount(mutant_wrapper)
        self.mutant_panel.setVisible(False)
        panels.addWidget(self.wild_panel, 1)
        panels.addWidget(self.mutant_panel, 1)
        root.addLayout(panels, 1)

        legend = QtWidgets.QHBoxLayout()
        legend.setSpacing(16)
        legend.addWidget(self._legend_swatch(CONFIDENCE_RAMP))
        legend.addWidget(QtWidgets.QLabel("pLDDT: 50 (low) → 100 (high)"))
        self.displacement_swatch = self._legend_swatch(DISPLACEMENT_RAMP)
        self.displacement_legend = QtWidgets.QLabel("Displacement: 0 → 2 → 5+ Å")
        legend.addWidget(self.displacement_swatch)
        legend.addWidget(self.displacement_legend)
        site_dot = QtWidgets.QFrame()
        site_dot.setFixedSize(12, 12)
        site_dot.setStyleSheet(f"background: {MAGENTA.hex()}; border-radius: 6px;")
        legend.addWidget(site_dot)
        self.site_legend_label = QtWidgets.QLabel("Mutation site")
        legend.addWidget(self.site_legend_label)
        legend.addStretch(1)
        root.addLayout(legend)
        self._set_dual_legend(False)

    def _set_dual_legend(self, dual: bool) -> None:
        self.displacement_swatch.setVisible(dual)
        self.displacement_legend.setVisible(dual)

    def _set_mode_badge(self, text: str) -> None:
        self.mode_badge.setText(text)
        if "unavailable" in text.lower():
            self.mode_badge.setStyleSheet(
                "padding: 3px 10px; border-radius: 9px; background: #4a3410; color: #fde68a;"
            )
        else:
            self.mode_badge.setStyleSheet(
                "padding: 3px 10px; border-radius: 9px; background: #0f3f2f; color: #c6f6d5;"
            )

    def _set_notice(self, text: str, warning: bool = False) -> None:
        if not text:
            self.notice_label.clear()
            self.notice_label.setVisible(False)
            return
        color = "#fde68a" if warning else "#d1d5db"
        self.notice_label.setStyleSheet(f"color: {color};")
        self.notice_label.setText(text)
        self.notice_label.setVisible(True)

    def _set_loading(self, loading: bool) -> None:
        self.wild_overlay.setVisible(loading)
        self.mutant_overlay.setVisible(loading)

    def set_comparison(
        self,
        wild_text: str,
        position: int,
        original: str,
        mutant: str,
        mutant_text: str | None = None,
    ) -> None:
        request = RenderRequest(
            wild_text=wild_text,
            position=int(position),
            original=original,
            mutant=mutant,
            mutant_text=mutant_text or None,
        )
        dual = request.dual
        self.mutant_panel.setVisible(dual)
        self.wild_badge.setText(
            "Wild-type (AlphaFold)" if dual else "Wild-type structure - mutation site highlighted"
        )
        self._set_dual_legend(dual)
        self.site_legend_label.setText(f"Mutation site ({request.label})")
        self._set_notice("")
        self.orchestrator.update(request)
        if self.orchestrator.asset.state is AssetState.FAILED:
            self._on_stall_timeout()

    def clear(self) -> None:
        self.orchestrator.clear()
        self.mutant_panel.setVisible(False)

    def _on_cycle_state(self, state: CycleState) -> None:
        loading = state is CycleState.LOADING
        self._set_loading(loading)
        if loading:
            self._set_mode_badge("3Dmol loading")
            self._stall_timer.start()
        else:
            self._stall_timer.stop()
            if state is CycleState.DISPLAYED:
                self._set_mode_badge("3Dmol WebGL")
            elif state is CycleState.IDLE:
                self._set_mode_badge("Idle")
        self.sig_state_changed.emit(state.value)

    def _on_stall_timeout(self) -> None:
        if not self.orchestrator.is_loading:
            return
        cycle = self.orchestrator.current_cycle
        reason = self.orchestrator.asset.error or (cycle.error if cycle is not None else None)
        if not reason:
            reason = (
                "3Dmol did not finish loading. Check network access or point "
                "MUTAVIEW_3DMOL_JS at a local 3Dmol-min.js."
            )
        self._set_mode_badge("3Dmol unavailable")
        self._set_notice(reason, warning=True)

    def closeEvent(self, event) -> None:
        try:
            self.orchestrator.clear()
        except Exception:
            logger.warning("Viewer teardown failed on close", exc_info=True)
        super().closeEvent(event)
