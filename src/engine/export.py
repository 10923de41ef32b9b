"""Export utilities for structure comparisons."""
from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional

import pandas as pd

from engine.displacement import (
    DisplacementSummary,
    compute_displacement,
    displacement_table,
    summarize_displacement,
)
from engine.models import Coordinate
from engine.serialization import to_jsonable
from engine.structure import average_confidence, parse_ca_coordinates, residue_confidence


@dataclass
class ComparisonResult:
    wild: Dict[int, Coordinate]
    mutant: Dict[int, Coordinate]
    displacement: Dict[int, float]
    table: pd.DataFrame
    summary: DisplacementSummary
    metadata: Dict[str, object] = field(default_factory=dict)


def compare_structures(
    wild_text: str,
    mutant_text: str,
    threshold: float = 2.0,
    metadata: Optional[Dict[str, object]] = None,
) -> ComparisonResult:
    wild = parse_ca_coordinates(wild_text)
    mutant = parse_ca_coordinates(mutant_text)
    displacement = compute_displacement(wild, mutant)
    table = displacement_table(wild, mutant, displacement)

    wild_conf = residue_confidence(wild_text)
    mutant_conf = residue_confidence(mutant_text)
    table["wild_confidence"] = [wild_conf.get(int(resi)) for resi in table["residue"]]
    table["mutant_confidence"] = [mutant_conf.get(int(resi)) for resi in table["residue"]]

    meta = {
        "n_wild_residues": len(wild),
        "n_mutant_residues": len(mutant),
        "wild_avg_confidence": average_confidence(wild_text),
        "mutant_avg_confidence": average_confidence(mutant_text),
        "superposition": "none",
    }
    meta.update(metadata or {})
    return ComparisonResult(
        wild=wild,
        mutant=mutant,
        displacement=displacement,
        table=table,
        summary=summarize_displacement(displacement, threshold=threshold),
        metadata=meta,
    )


def _atomic_replace(temp_path: str, final_path: str) -> None:
    os.replace(temp_path, final_path)


def _write_dataframe(df: pd.DataFrame, path_csv: str) -> None:
    temp_csv = path_csv + ".tmp"
    df.to_csv(temp_csv, index=False)
    _atomic_replace(temp_csv, path_csv)


def _write_json(payload: Dict[str, object], path: str) -> None:
    temp_path = path + ".tmp"
    with open(temp_path, "w", encoding="utf-8") as handle:
        json.dump(to_jsonable(payload), handle, indent=2)
    _atomic_replace(temp_path, path)


def export_comparison(result: ComparisonResult, output_dir: str, prefix: str = "comparison") -> Dict[str, str]:
    os.makedirs(output_dir, exist_ok=True)
    table_path = os.path.join(output_dir, f"{prefix}_per_residue.csv")
    summary_path = os.path.join(output_dir, f"{prefix}_summary.json")

    _write_dataframe(result.table, table_path)
    _write_json(
        {
            "generated_at": datetime.now().isoformat(),
            "metadata": result.metadata,
            "summary": result.summary,
        },
        summary_path,
    )
    return {"per_residue": table_path, "summary": summary_path}
