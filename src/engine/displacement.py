"""Per-residue displacement between wild-type and mutant structures."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Tuple

import numpy as np
import pandas as pd

from engine.models import Coordinate


@dataclass
class DisplacementSummary:
    n_residues: int
    mean: float
    max: float
    max_residue: Optional[int]
    threshold: float
    n_above_threshold: int
    top_residues: List[Tuple[int, float]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return {
            "n_residues": self.n_residues,
            "mean": self.mean,
            "max": self.max,
            "max_residue": self.max_residue,
            "threshold": self.threshold,
            "n_above_threshold": self.n_above_threshold,
            "top_residues": [list(item) for item in self.top_residues],
        }


def compute_displacement(
    wild: Mapping[int, Coordinate],
    mutant: Mapping[int, Coordinate],
) -> Dict[int, float]:
    """Euclidean distance per residue present in both coordinate maps.

    No superposition is performed; both structures are compared in their own
    coordinate frames. Residues present on only one side are left out.
    """
    shared = sorted(set(wild) & set(mutant))
    if not shared:
        return {}
    wild_xyz = np.array([wild[resi].as_array() for resi in shared], dtype=float)
    mutant_xyz = np.array([mutant[resi].as_array() for resi in shared], dtype=float)
    distances = np.linalg.norm(wild_xyz - mutant_xyz, axis=1)
    return {resi: float(dist) for resi, dist in zip(shared, distances)}


def displacement_table(
    wild: Mapping[int, Coordinate],
    mutant: Mapping[int, Coordinate],
    displacement: Optional[Mapping[int, float]] = None,
) -> pd.DataFrame:
    if displacement is None:
        displacement = compute_displacement(wild, mutant)
    rows = []
    for resi in sorted(displacement):
        w = wild[resi]
        m = mutant[resi]
        rows.append(
            {
                "residue": resi,
                "wild_x": w.x,
                "wild_y": w.y,
                "wild_z": w.z,
                "mutant_x": m.x,
                "mutant_y": m.y,
                "mutant_z": m.z,
                "displacement": float(displacement[resi]),
            }
        )
    columns = [
        "residue",
        "wild_x",
        "wild_y",
        "wild_z",
        "mutant_x",
        "mutant_y",
        "mutant_z",
        "displacement",
    ]
    return pd.DataFrame(rows, columns=columns)


def summarize_displacement(
    displacement: Mapping[int, float],
    threshold: float = 2.0,
    top_n: int = 5,
) -> DisplacementSummary:
    if not displacement:
        return DisplacementSummary(
            n_residues=0,
            mean=0.0,
            max=0.0,
            max_residue=None,
            threshold=threshold,
            n_above_threshold=0,
        )
    residues = np.array(sorted(displacement), dtype=int)
    values = np.array([displacement[int(resi)] for resi in residues], dtype=float)
    # Stable sort keeps the lower residue index first on ties.
    order = np.argsort(-values, kind="stable")
    top = [(int(residues[idx]), float(values[idx])) for idx in order[:top_n]]
    return DisplacementSummary(
        n_residues=int(values.size),
        mean=float(values.mean()),
        max=float(values.max()),
        max_residue=int(residues[order[0]]),
        threshold=threshold,
        n_above_threshold=int(np.count_nonzero(values > threshold)),
        top_residues=top,
    )
