"""Report generation for MutaView structure comparisons."""
from __future__ import annotations

import os
from typing import Dict, List, Optional

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt

from engine.export import ComparisonResult
from engine.serialization import to_jsonable


def generate_report(
    result: ComparisonResult,
    output_dir: str,
    title: str = "Structure comparison",
    site: Optional[int] = None,
    report_format: str = "md",
    command_line: str | None = None,
) -> str:
    report_dir = os.path.join(output_dir, "report")
    os.makedirs(report_dir, exist_ok=True)

    report_lines: List[str] = []
    report_lines.append(f"# MutaView Report: {title}")
    report_lines.append("")
    report_lines.append("## Reproducibility")
    report_lines.append(f"- Command line: {command_line or 'N/A'}")
    report_lines.append("- Output directory: {}".format(output_dir))
    report_lines.append("- Superposition: none (coordinates compared in their own frames)")
    report_lines.append("")
    report_lines.append("### Package Versions")
    for name, version in _package_versions().items():
        report_lines.append(f"- {name}: {version}")
    report_lines.append("")
    report_lines.append("### Metadata")
    report_lines.append("```")
    report_lines.append(str(to_jsonable(result.metadata)))
    report_lines.append("```")
    report_lines.append("")

    summary = result.summary
    report_lines.append("## Displacement")
    report_lines.append("")
    report_lines.append(f"- Residues compared: {summary.n_residues}")
    if summary.max_residue is not None:
        report_lines.append(f"- Mean displacement: {summary.mean:.2f} A")
        report_lines.append(f"- Max displacement: {summary.max:.2f} A at residue {summary.max_residue}")
        report_lines.append(f"- Residues above {summary.threshold:g} A: {summary.n_above_threshold}")
    if site is not None and site in result.displacement:
        report_lines.append(f"- Mutation site {site}: {result.displacement[site]:.2f} A")
    report_lines.append("")
    if summary.top_residues:
        report_lines.append("### Largest shifts")
        for resi, value in summary.top_residues:
            report_lines.append(f"- residue {resi}: {value:.2f} A")
        report_lines.append("")

    for fig in _plot_comparison(result, report_dir, site):
        report_lines.append(f"![{title}]({os.path.basename(fig)})")
    report_lines.append("")

    report_md = "\n".join(report_lines)
    report_path = os.path.join(report_dir, "report.md")
    with open(report_path, "w", encoding="utf-8") as handle:
        handle.write(report_md)

    if report_format.lower() == "html":
        _write_html_report(report_lines, report_dir)

    return report_path


def _package_versions() -> Dict[str, str]:
    versions = {}
    modules = {
        "numpy": "numpy",
        "pandas": "pandas",
        "matplotlib": "matplotlib",
        "requests": "requests",
    }
    for name, module_name in modules.items():
        try:
            module = __import__(module_name)
            versions[name] = getattr(module, "__version__", "unknown")
        except ImportError:
            versions[name] = "not available"
    return versions


def _write_html_report(lines: List[str], report_dir: str) -> None:
    html_lines = ["<html><body>"]
    in_code_block = False
    for line in lines:
        if line.startswith("```"):
            in_code_block = not in_code_block
            html_lines.append("<pre>" if in_code_block else "</pre>")
            continue
        if in_code_block:
            html_lines.append(line.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;"))
            continue
        if line.startswith("# "):
            html_lines.append(f"<h1>{line[2:]}</h1>")
        elif line.startswith("## "):
            html_lines.append(f"<h2>{line[3:]}</h2>")
        elif line.startswith("### "):
            html_lines.append(f"<h3>{line[4:]}</h3>")
        elif line.startswith("![") and "](" in line:
            path = line.split("](")[1].rstrip(")")
            html_lines.append(f"<img src=\"{path}\" style=\"max-width:100%;\"/>")
        elif line.startswith("- "):
            html_lines.append(f"<p>{line}</p>")
        elif not line:
            html_lines.append("<br/>")
        else:
            html_lines.append(f"<p>{line}</p>")
    html_lines.append("</body></html>")

    html_path = os.path.join(report_dir, "report.html")
    with open(html_path, "w", encoding="utf-8") as handle:
        handle.write("\n".join(html_lines))


def _plot_comparison(result: ComparisonResult, report_dir: str, site: Optional[int]) -> List[str]:
    fig_paths: List[str] = []
    table = result.table
    if table.empty:
        return fig_paths

    fig, ax = plt.subplots(figsize=(8, 3))
    ax.plot(table["residue"], table["displacement"], color="#ea580c")
    ax.axhline(result.summary.threshold, color="#a1a1aa", linestyle="--", linewidth=1)
    if site is not None:
        ax.axvline(site, color="#ff00ff", linewidth=1)
    ax.set_xlabel("Residue")
    ax.set_ylabel("Displacement (A)")
    ax.set_title("CA displacement, wild-type vs mutant")
    fig.tight_layout()
    path = os.path.join(report_dir, "displacement_profile.png")
    fig.savefig(path, dpi=200)
    plt.close(fig)
    fig_paths.append(path)

    if table["wild_confidence"].notna().any() or table["mutant_confidence"].notna().any():
        fig, ax = plt.subplots(figsize=(8, 3))
        ax.plot(table["residue"], table["wild_confidence"], color="#2b6cb0", label="Wild-type")
        ax.plot(table["residue"], table["mutant_confidence"], color="#dd6b20", label="Mutant")
        ax.set_ylim(0, 100)
        ax.set_xlabel("Residue")
        ax.set_ylabel("pLDDT")
        ax.set_title("Per-residue confidence")
        ax.legend(loc="lower right")
        fig.tight_layout()
        path = os.path.join(report_dir, "confidence_profile.png")
        fig.savefig(path, dpi=200)
        plt.close(fig)
        fig_paths.append(path)

    return fig_paths
