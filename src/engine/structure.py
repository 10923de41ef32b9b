"""Fixed-column PDB parsing for per-residue coordinates and confidence."""
from __future__ import annotations

import math
from typing import Dict, Iterator, Optional

from engine.models import AtomRecord, Coordinate

BACKBONE_ATOM = "CA"

# PDB ATOM record columns as 0-based slices (1-based columns in comments).
_RECORD = slice(0, 6)  # 1-6
_ATOM_NAME = slice(12, 16)  # 13-16
_RESIDUE_NAME = slice(17, 20)  # 18-20
_CHAIN = slice(21, 22)  # 22
_RESIDUE_INDEX = slice(22, 26)  # 23-26
_X = slice(30, 38)  # 31-38
_Y = slice(38, 46)  # 39-46
_Z = slice(46, 54)  # 47-54
_CONFIDENCE = slice(60, 66)  # 61-66, B-factor column carrying pLDDT


def _to_float(text: str) -> Optional[float]:
    text = text.strip()
    if not text:
        return None
    try:
        value = float(text)
    except ValueError:
        return None
    return value if math.isfinite(value) else None


def _to_int(text: str) -> Optional[int]:
    text = text.strip()
    if not text:
        return None
    try:
        return int(text)
    except ValueError:
        return None


def _is_atom_line(line: str) -> bool:
    return line[_RECORD] == "ATOM  "


def parse_atom_line(line: str) -> Optional[AtomRecord]:
    """Parse one ATOM line; returns None for anything that is not a usable record."""
    if not _is_atom_line(line):
        return None
    residue_index = _to_int(line[_RESIDUE_INDEX])
    x = _to_float(line[_X])
    y = _to_float(line[_Y])
    z = _to_float(line[_Z])
    if residue_index is None or x is None or y is None or z is None:
        return None
    return AtomRecord(
        atom_name=line[_ATOM_NAME].strip(),
        residue_name=line[_RESIDUE_NAME].strip(),
        chain=line[_CHAIN].strip(),
        residue_index=residue_index,
        x=x,
        y=y,
        z=z,
        confidence=_to_float(line[_CONFIDENCE]),
    )


def iter_atom_records(structure_text: str) -> Iterator[AtomRecord]:
    for line in structure_text.splitlines():
        record = parse_atom_line(line)
        if record is not None:
            yield record


def parse_ca_coordinates(
    structure_text: str,
    atom_name: str = BACKBONE_ATOM,
) -> Dict[int, Coordinate]:
    """Map residue index to the coordinate of its backbone reference atom.

    Lines that are not ATOM records, atoms other than ``atom_name`` and records
    with unparsable residue index or coordinates are skipped. When a residue
    carries the reference atom more than once (alternate locations) the first
    occurrence is kept.
    """
    coords: Dict[int, Coordinate] = {}
    for record in iter_atom_records(structure_text or ""):
        if record.atom_name != atom_name:
            continue
        if record.residue_index in coords:
            continue
        coords[record.residue_index] = record.coordinate
    return coords


def residue_confidence(
    structure_text: str,
    atom_name: str = BACKBONE_ATOM,
) -> Dict[int, float]:
    """Per-residue confidence read from the reference atom's B-factor column."""
    values: Dict[int, float] = {}
    for record in iter_atom_records(structure_text or ""):
        if record.atom_name != atom_name or record.confidence is None:
            continue
        values.setdefault(record.residue_index, record.confidence)
    return values


def _rounded_mean(total: float, count: int) -> float:
    return round(total / count, 1)


def average_confidence(structure_text: str) -> float:
    """Mean confidence over all ATOM records, 0.0 when none carry a value."""
    total = 0.0
    count = 0
    for line in (structure_text or "").splitlines():
        if not _is_atom_line(line):
            continue
        value = _to_float(line[_CONFIDENCE])
        if value is None:
            continue
        total += value
        count += 1
    if count == 0:
        return 0.0
    return _rounded_mean(total, count)


def residue_average_confidence(structure_text: str, residue_index: int) -> Optional[float]:
    total = 0.0
    count = 0
    for line in (structure_text or "").splitlines():
        if not _is_atom_line(line):
            continue
        if _to_int(line[_RESIDUE_INDEX]) != residue_index:
            continue
        value = _to_float(line[_CONFIDENCE])
        if value is None:
            continue
        total += value
        count += 1
    if count == 0:
        return None
    return _rounded_mean(total, count)


def confidence_label(plddt: float) -> str:
    if plddt >= 90:
        return "Very high confidence"
    if plddt >= 70:
        return "Confident"
    if plddt >= 50:
        return "Low confidence"
    return "Very low confidence"
