"""MutaView GUI entrypoint."""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import numpy as np
import pyqtgraph as pg
from PyQt6 import QtCore, QtGui, QtWidgets

from app.viz_3d import StructureViewerWidget
from engine.displacement import compute_displacement, summarize_displacement
from engine.export import compare_structures, export_comparison
from engine.logging_utils import setup_run_logger
from engine.models import FoldResult, ParsedMutation, ProteinInfo, ServiceConfig, StructureData
from engine.mutation import annotations_for, describe_change, find_domain, parse_mutation
from engine.report import generate_report
from engine.services import (
    ServiceError,
    build_explanation_prompt,
    explain_mutation,
    fetch_structure,
    fold_mutant,
    lookup_gene,
)
from engine.structure import confidence_label, parse_ca_coordinates, residue_average_confidence


@dataclass
class SearchState:
    mutation: Optional[ParsedMutation] = None
    protein: Optional[ProteinInfo] = None
    structure: Optional[StructureData] = None
    fold: Optional[FoldResult] = None

    @property
    def site(self) -> Optional[int]:
        if self.mutation is None:
            return None
        if self.fold is not None and self.fold.corrected_position is not None:
            return self.fold.corrected_position
        return self.mutation.position


class SearchWorker(QtCore.QObject):
    """Runs the lookup -> structure -> fold -> explanation chain off the UI thread."""

    progress = QtCore.pyqtSignal(int, str)
    protein_ready = QtCore.pyqtSignal(int, object)
    structure_ready = QtCore.pyqtSignal(int, object)
    fold_ready = QtCore.pyqtSignal(int, object)
    fold_failed = QtCore.pyqtSignal(int, str)
    explanation_ready = QtCore.pyqtSignal(int, str)
    finished = QtCore.pyqtSignal(int)
    failed = QtCore.pyqtSignal(int, str)

    def __init__(
        self,
        generation: int,
        mutation: ParsedMutation,
        predict_mutant: bool,
        config: ServiceConfig,
        logger: logging.Logger | None = None,
    ):
        super().__init__()
        self.generation = generation
        self.mutation = mutation
        self.predict_mutant = predict_mutant
        self.config = config
        self.cancel_event = threading.Event()
        self.logger = logger

    def cancel(self) -> None:
        self.cancel_event.set()

    @QtCore.pyqtSlot()
    def run(self) -> None:
        gen = self.generation
        try:
            self.progress.emit(gen, "Looking up protein on UniProt...")
            protein = lookup_gene(self.mutation.gene, self.config)
            self.protein_ready.emit(gen, protein)
            if self.cancel_event.is_set():
                self.finished.emit(gen)
                return

            self.progress.emit(gen, "Fetching AlphaFold structure...")
            structure = fetch_structure(protein.uniprot_id, self.config)
            self.structure_ready.emit(gen, structure)
            if self.cancel_event.is_set():
                self.finished.emit(gen)
                return

            site = self.mutation.position
            if self.predict_mutant:
                self.progress.emit(gen, "Predicting mutant structure with ESMFold...")
                try:
                    fold = fold_mutant(protein.sequence, self.mutation, self.config)
                except (ServiceError, ValueError) as exc:
                    if self.logger:
                        self.logger.warning("Mutant fold skipped: %s", exc)
                    self.fold_failed.emit(gen, str(exc))
                else:
                    if fold.corrected_position is not None:
                        site = fold.corrected_position
                    self.fold_ready.emit(gen, fold)
            if self.cancel_event.is_set():
                self.finished.emit(gen)
                return

            self.progress.emit(gen, "Generating explanation...")
            self.explanation_ready.emit(gen, self._explain(protein, structure, site))
            self.finished.emit(gen)
        except Exception as exc:
            if self.logger:
                self.logger.exception("Search failed")
            self.failed.emit(gen, str(exc))

    def _explain(self, protein: ProteinInfo, structure: StructureData, site: int) -> str:
        ann = annotations_for(self.mutation) or {}
        plddt = residue_average_confidence(structure.pdb_text, site)
        prompt = build_explanation_prompt(
            protein_name=protein.protein_name,
            gene_name=protein.gene_name,
            mutation=self.mutation.notation,
            domain=find_domain(protein.domains, site) or "No annotated domain",
            plddt=plddt if plddt is not None else structure.avg_confidence,
            alphamissense=ann.get("alphamissense", "Not available"),
            clinvar=ann.get("clinvar", "Not available"),
        )
        try:
            return explain_mutation(prompt, self.config)
        except ServiceError as exc:
            if self.logger:
                self.logger.warning("Explanation unavailable: %s", exc)
            return "Could not generate explanation."


class MainWindow(QtWidgets.QMainWindow):
    def __init__(self) -> None:
        super().__init__()
        self.setWindowTitle("MutaView")
        self.resize(1400, 900)
        self.state = SearchState()
        self.config = ServiceConfig.from_env()
        self.settings = QtCore.QSettings("MutaView", "MutaView")
        self.search_worker: SearchWorker | None = None
        self._active_searches: dict[int, tuple[QtCore.QThread, SearchWorker]] = {}
        self._search_generation = 0

        log_dir = Path(
            QtCore.QStandardPaths.writableLocation(
                QtCore.QStandardPaths.StandardLocation.AppDataLocation
            )
            or Path.home() / ".mutaview"
        )
        self.logger, self.log_path = setup_run_logger(str(log_dir))

        self._build_ui()
        self.query_edit.setText(str(self.settings.value("last_query", "") or ""))

    def _build_ui(self) -> None:
        root = QtWidgets.QWidget()
        root_layout = QtWidgets.QVBoxLayout(root)
        root_layout.setContentsMargins(16, 16, 16, 8)
        root_layout.setSpacing(10)

        title = QtWidgets.QLabel("MutaView")
        title.setStyleSheet("font-size: 22px; font-weight: 700;")
        subtitle = QtWidgets.QLabel("Parse and explore protein mutations")
        subtitle.setStyleSheet("color: #71717a;")
        root_layout.addWidget(title)
        root_layout.addWidget(subtitle)

        form = QtWidgets.QHBoxLayout()
        self.query_edit = QtWidgets.QLineEdit()
        self.query_edit.setPlaceholderText("Enter mutation (e.g. TP53 R175H)")
        self.query_edit.returnPressed.connect(self._on_search)
        self.predict_check = QtWidgets.QCheckBox("Predict mutant fold (ESMFold)")
        self.predict_check.setChecked(True)
        self.search_btn = QtWidgets.QPushButton("Search")
        self.search_btn.clicked.connect(self._on_search)
        self.export_btn = QtWidgets.QPushButton("Export comparison...")
        self.export_btn.setEnabled(False)
        self.export_btn.clicked.connect(self._on_export)
        form.addWidget(self.query_edit, 1)
        form.addWidget(self.predict_check)
        form.addWidget(self.search_btn)
        form.addWidget(self.export_btn)
        root_layout.addLayout(form)

        self.error_label = QtWidgets.QLabel()
        self.error_label.setWordWrap(True)
        self.error_label.setStyleSheet(
            "color: #fca5a5; background: #450a0a; border: 1px solid #991b1b; padding: 8px; border-radius: 6px;"
        )
        self.error_label.setVisible(False)
        root_layout.addWidget(self.error_label)

        self.summary_label = QtWidgets.QLabel()
        self.summary_label.setTextFormat(QtCore.Qt.TextFormat.RichText)
        self.summary_label.setOpenExternalLinks(True)
        root_layout.addWidget(self.summary_label)

        self.note_label = QtWidgets.QLabel()
        self.note_label.setStyleSheet("color: #fbbf24;")
        self.note_label.setVisible(False)
        root_layout.addWidget(self.note_label)

        split = QtWidgets.QSplitter(QtCore.Qt.Orientation.Horizontal)
        left = QtWidgets.QWidget()
        left_layout = QtWidgets.QVBoxLayout(left)
        left_layout.setContentsMargins(0, 0, 0, 0)
        self.structure_header = QtWidgets.QLabel()
        self.structure_header.setOpenExternalLinks(True)
        left_layout.addWidget(self.structure_header)
        self.viewer = StructureViewerWidget()
        left_layout.addWidget(self.viewer, 3)

        self.displacement_plot = pg.PlotWidget()
        self.displacement_plot.setBackground("#18181b")
        self.displacement_plot.setLabel("left", "Displacement (Å)")
        self.displacement_plot.setLabel("bottom", "Residue")
        self.displacement_plot.setMinimumHeight(160)
        self.displacement_plot.setVisible(False)
        left_layout.addWidget(self.displacement_plot, 1)
        split.addWidget(left)

        split.addWidget(self._build_side_panel())
        split.setStretchFactor(0, 3)
        split.setStretchFactor(1, 1)
        root_layout.addWidget(split, 1)
        self.setCentralWidget(root)

        self.status_bar = QtWidgets.QStatusBar()
        self.setStatusBar(self.status_bar)

    def _build_side_panel(self) -> QtWidgets.QWidget:
        panel = QtWidgets.QWidget()
        panel.setMinimumWidth(340)
        layout = QtWidgets.QVBoxLayout(panel)
        layout.setContentsMargins(0, 0, 0, 0)

        verdict = QtWidgets.QGroupBox("Verdict")
        verdict_form = QtWidgets.QFormLayout(verdict)
        self.protein_value = QtWidgets.QLabel("-")
        self.domain_value = QtWidgets.QLabel("-")
        self.plddt_title = QtWidgets.QLabel("pLDDT at site")
        self.plddt_value = QtWidgets.QLabel("-")
        self.displacement_value = QtWidgets.QLabel("-")
        self.alphamissense_value = QtWidgets.QLabel("-")
        self.clinvar_value = QtWidgets.QLabel("-")
        for widget in (self.protein_value, self.alphamissense_value, self.clinvar_value):
            widget.setWordWrap(True)
        verdict_form.addRow("Protein", self.protein_value)
        verdict_form.addRow("Domain", self.domain_value)
        verdict_form.addRow(self.plddt_title, self.plddt_value)
        verdict_form.addRow("Max displacement", self.displacement_value)
        verdict_form.addRow("AlphaMissense", self.alphamissense_value)
        verdict_form.addRow("ClinVar", self.clinvar_value)
        layout.addWidget(verdict)

        explain_box = QtWidgets.QGroupBox("Clinical Interpretation")
        explain_layout = QtWidgets.QVBoxLayout(explain_box)
        self.explanation_text = QtWidgets.QTextBrowser()
        explain_layout.addWidget(self.explanation_text)
        footer = QtWidgets.QLabel("Generated by Gemini · Not a clinical diagnosis")
        footer.setStyleSheet("color: #71717a; font-size: 11px;")
        explain_layout.addWidget(footer)
        layout.addWidget(explain_box, 1)

        info_box = QtWidgets.QGroupBox("Protein Info")
        info_layout = QtWidgets.QVBoxLayout(info_box)
        self.function_text = QtWidgets.QLabel()
        self.function_text.setWordWrap(True)
        info_layout.addWidget(self.function_text)
        self.domain_list = QtWidgets.QListWidget()
        info_layout.addWidget(self.domain_list)
        layout.addWidget(info_box, 1)
        return panel

    def _set_error(self, text: str) -> None:
        self.error_label.setText(text)
        self.error_label.setVisible(bool(text))

    def _reset_results(self) -> None:
        self.state = SearchState()
        self.viewer.clear()
        self.summary_label.clear()
        self.structure_header.clear()
        self.note_label.setVisible(False)
        self.explanation_text.clear()
        self.function_text.clear()
        self.domain_list.clear()
        self.displacement_plot.clear()
        self.displacement_plot.setVisible(False)
        self.export_btn.setEnabled(False)
        for label in (
            self.protein_value,
            self.domain_value,
            self.plddt_value,
            self.displacement_value,
            self.alphamissense_value,
            self.clinvar_value,
        ):
            label.setText("-")

    def _on_search(self) -> None:
        self._set_error("")
        self._reset_results()
        try:
            mutation = parse_mutation(self.query_edit.text())
        except ValueError as exc:
            self._set_error(str(exc))
            return

        self.settings.setValue("last_query", self.query_edit.text().strip())
        self.state.mutation = mutation
        self._update_summary()
        self._start_search(mutation)

    def _start_search(self, mutation: ParsedMutation) -> None:
        if self.search_worker is not None:
            self.search_worker.cancel()
        self._search_generation += 1
        self.logger.info("Search requested: %s %s", mutation.gene, mutation.notation)

        thread = QtCore.QThread()
        worker = SearchWorker(
            self._search_generation,
            mutation,
            self.predict_check.isChecked(),
            self.config,
            logger=self.logger,
        )
        worker.moveToThread(thread)
        thread.started.connect(worker.run)
        worker.progress.connect(self._on_progress)
        worker.protein_ready.connect(self._on_protein_ready)
        worker.structure_ready.connect(self._on_structure_ready)
        worker.fold_ready.connect(self._on_fold_ready)
        worker.fold_failed.connect(self._on_fold_failed)
        worker.explanation_ready.connect(self._on_explanation_ready)
        worker.finished.connect(self._on_search_finished)
        worker.failed.connect(self._on_search_failed)
        worker.finished.connect(thread.quit)
        worker.failed.connect(thread.quit)
        generation = self._search_generation
        thread.finished.connect(lambda: self._active_searches.pop(generation, None))
        self._active_searches[generation] = (thread, worker)
        self.search_worker = worker
        self.search_btn.setEnabled(False)
        thread.start()

    def _is_current(self, generation: int) -> bool:
        return generation == self._search_generation

    def _on_progress(self, generation: int, message: str) -> None:
        if self._is_current(generation):
            self.status_bar.showMessage(message)

    def _on_protein_ready(self, generation: int, protein: ProteinInfo) -> None:
        if not self._is_current(generation):
            return
        self.state.protein = protein
        self._update_summary()
        self.protein_value.setText(protein.protein_name or self.state.mutation.gene)
        self.function_text.setText(protein.function)
        self._update_site_details()

    def _on_structure_ready(self, generation: int, structure: StructureData) -> None:
        if not self._is_current(generation):
            return
        self.state.structure = structure
        self.structure_header.setText(
            f"AlphaFold · avg pLDDT {structure.avg_confidence} · "
            f'<a href="{structure.model_url}">View on AlphaFold →</a>'
        )
        self._update_site_details()
        self._refresh_viewer()

    def _on_fold_ready(self, generation: int, fold: FoldResult) -> None:
        if not self._is_current(generation):
            return
        self.state.fold = fold
        if fold.note:
            self.note_label.setText(fold.note)
            self.note_label.setVisible(True)
        self._update_site_details()
        self._refresh_viewer()
        self._update_displacement_plot()

    def _on_fold_failed(self, generation: int, message: str) -> None:
        if self._is_current(generation):
            self.note_label.setText(f"Mutant structure unavailable: {message}")
            self.note_label.setVisible(True)

    def _on_explanation_ready(self, generation: int, text: str) -> None:
        if self._is_current(generation):
            self.explanation_text.setPlainText(text)

    def _on_search_finished(self, generation: int) -> None:
        if self._is_current(generation):
            self.search_btn.setEnabled(True)
            self.status_bar.showMessage("Done", 5000)

    def _on_search_failed(self, generation: int, message: str) -> None:
        if not self._is_current(generation):
            return
        self.search_btn.setEnabled(True)
        self.status_bar.clearMessage()
        self._set_error(message)

    def _update_summary(self) -> None:
        mutation = self.state.mutation
        if mutation is None:
            self.summary_label.clear()
            return
        original_name, mutant_name = describe_change(mutation)
        parts = [
            f"Gene <b>{mutation.gene}</b>",
            f"Mutation <b>{mutation.notation}</b>",
            f"{original_name} → {mutant_name}",
        ]
        protein = self.state.protein
        if protein is not None:
            parts.append(f'UniProt <a href="{protein.uniprot_url}">{protein.uniprot_id}</a>')
        self.summary_label.setText("&nbsp;&nbsp;·&nbsp;&nbsp;".join(parts))

    def _update_site_details(self) -> None:
        mutation = self.state.mutation
        site = self.state.site
        if mutation is None or site is None:
            return
        protein = self.state.protein
        if protein is not None:
            self.domain_value.setText(find_domain(protein.domains, site) or "No annotated domain")
            self.domain_list.clear()
            for domain in protein.domains:
                item = QtWidgets.QListWidgetItem(f"{domain.name}  {domain.start}–{domain.end}")
                if domain.contains(site):
                    item.setText(item.text() + "  (mutation site)")
                    item.setForeground(QtGui.QColor("#f87171"))
                self.domain_list.addItem(item)

        ann = annotations_for(mutation)
        self.alphamissense_value.setText(ann["alphamissense"] if ann else "No data available")
        self.clinvar_value.setText(ann["clinvar"] if ann else "No data available")

        self.plddt_title.setText(f"pLDDT at position {site}")
        structure = self.state.structure
        if structure is not None:
            plddt = residue_average_confidence(structure.pdb_text, site)
            if plddt is None:
                self.plddt_value.setText("N/A")
            else:
                self.plddt_value.setText(f"{plddt}  ({confidence_label(plddt)})")

    def _refresh_viewer(self) -> None:
        mutation = self.state.mutation
        structure = self.state.structure
        site = self.state.site
        if mutation is None or structure is None or site is None:
            return
        fold = self.state.fold
        self.viewer.set_comparison(
            structure.pdb_text,
            site,
            mutation.original,
            mutation.mutant,
            mutant_text=fold.pdb_text if fold is not None else None,
        )
        self.export_btn.setEnabled(fold is not None)

    def _update_displacement_plot(self) -> None:
        structure = self.state.structure
        fold = self.state.fold
        if structure is None or fold is None:
            return
        displacement = compute_displacement(
            parse_ca_coordinates(structure.pdb_text),
            parse_ca_coordinates(fold.pdb_text),
        )
        summary = summarize_displacement(displacement)
        if summary.max_residue is not None:
            self.displacement_value.setText(
                f"{summary.max:.2f} Å at residue {summary.max_residue} "
                f"({summary.n_above_threshold} residues > {summary.threshold:g} Å)"
            )
        self.displacement_plot.clear()
        if not displacement:
            self.displacement_plot.setVisible(False)
            return
        residues = np.array(sorted(displacement), dtype=float)
        values = np.array([displacement[int(resi)] for resi in residues], dtype=float)
        self.displacement_plot.plot(residues, values, pen=pg.mkPen("#f97316", width=2))
        site = self.state.site
        if site is not None:
            self.displacement_plot.addItem(
                pg.InfiniteLine(pos=site, angle=90, pen=pg.mkPen("#ff00ff", style=QtCore.Qt.PenStyle.DashLine))
            )
        self.displacement_plot.setVisible(True)

    def _on_export(self) -> None:
        structure = self.state.structure
        fold = self.state.fold
        mutation = self.state.mutation
        if structure is None or fold is None or mutation is None:
            return
        directory = QtWidgets.QFileDialog.getExistingDirectory(self, "Export comparison")
        if not directory:
            return
        result = compare_structures(
            structure.pdb_text,
            fold.pdb_text,
            metadata={"mutation": mutation.to_dict(), "site": self.state.site},
        )
        try:
            paths = export_comparison(result, directory, prefix=f"{mutation.gene}_{mutation.notation}")
            paths["report"] = generate_report(
                result,
                directory,
                title=f"{mutation.gene} {mutation.notation}",
                site=self.state.site,
                report_format="html",
            )
        except OSError as exc:
            self.logger.exception("Export failed")
            QtWidgets.QMessageBox.critical(self, "Export failed", str(exc))
            return
        self.logger.info("Comparison exported to %s", directory)
        self.status_bar.showMessage(f"Exported {Path(paths['per_residue']).name}", 5000)

    def closeEvent(self, event) -> None:
        if self.search_worker is not None:
            self.search_worker.cancel()
        for thread, worker in list(self._active_searches.values()):
            worker.cancel()
            thread.quit()
            thread.wait(2000)
        super().closeEvent(event)


def main() -> None:
    app = QtWidgets.QApplication([])
    window = MainWindow()
    window.show()
    app.exec()


if __name__ == "__main__":
    main()
