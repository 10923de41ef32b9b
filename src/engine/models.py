"""Data models for MutaView lookups, structures and service configuration."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np


@dataclass(frozen=True)
class Coordinate:
    x: float
    y: float
    z: float

    def as_array(self) -> np.ndarray:
        return np.array([self.x, self.y, self.z], dtype=float)


@dataclass(frozen=True)
class AtomRecord:
    """One ATOM line of a PDB file, fixed-column fields only."""
    atom_name: str
    residue_name: str
    chain: str
    residue_index: int
    x: float
    y: float
    z: float
    confidence: Optional[float] = None

    @property
    def coordinate(self) -> Coordinate:
        return Coordinate(self.x, self.y, self.z)


@dataclass(frozen=True)
class ParsedMutation:
    gene: str
    original: str
    position: int
    mutant: str

    @property
    def notation(self) -> str:
        return f"{self.original}{self.position}{self.mutant}"

    def with_position(self, position: int) -> "ParsedMutation":
        return ParsedMutation(self.gene, self.original, int(position), self.mutant)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "gene": self.gene,
            "original": self.original,
            "position": self.position,
            "mutant": self.mutant,
        }


@dataclass
class Domain:
    name: str
    start: int
    end: int

    def contains(self, position: int) -> bool:
        return self.start <= position <= self.end

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "start": self.start, "end": self.end}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Domain":
        return cls(
            name=str(data.get("name", "")),
            start=int(data.get("start", 0)),
            end=int(data.get("end", 0)),
        )


@dataclass
class ProteinInfo:
    uniprot_id: str
    protein_name: str
    gene_name: str
    function: str = ""
    domains: List[Domain] = field(default_factory=list)
    sequence: str = ""

    @property
    def uniprot_url(self) -> str:
        return f"https://www.uniprot.org/uniprot/{self.uniprot_id}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "uniprot_id": self.uniprot_id,
            "protein_name": self.protein_name,
            "gene_name": self.gene_name,
            "function": self.function,
            "domains": [domain.to_dict() for domain in self.domains],
            "sequence_length": len(self.sequence),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProteinInfo":
        return cls(
            uniprot_id=str(data.get("uniprot_id", "")),
            protein_name=str(data.get("protein_name", "")),
            gene_name=str(data.get("gene_name", "")),
            function=str(data.get("function", "")),
            domains=[Domain.from_dict(item) for item in data.get("domains", [])],
            sequence=str(data.get("sequence", "")),
        )


@dataclass
class StructureData:
    """Predicted wild-type structure retrieved from the AlphaFold archive."""
    pdb_text: str
    avg_confidence: float
    pdb_url: str = ""
    model_url: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pdb_url": self.pdb_url,
            "model_url": self.model_url,
            "avg_confidence": self.avg_confidence,
        }


@dataclass
class FoldResult:
    """Mutant structure predicted by ESMFold."""
    pdb_text: str
    avg_confidence: float
    mutant_sequence: str
    corrected_position: Optional[int] = None
    note: Optional[str] = None

    @property
    def sequence_length(self) -> int:
        return len(self.mutant_sequence)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "avg_confidence": self.avg_confidence,
            "sequence_length": self.sequence_length,
            "corrected_position": self.corrected_position,
            "note": self.note,
        }


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass
class ServiceConfig:
    uniprot_search_url: str = "https://rest.uniprot.org/uniprotkb/search"
    alphafold_api_url: str = "https://alphafold.ebi.ac.uk/api/prediction"
    alphafold_entry_url: str = "https://alphafold.ebi.ac.uk/entry"
    esmfold_url: str = "https://api.esmatlas.com/foldSequence/v1/pdb/"
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    gemini_model: str = "gemini-2.0-flash"
    gemini_api_key: Optional[str] = None
    http_timeout: float = 20.0
    esmfold_timeout: float = 120.0
    esmfold_max_residues: int = 400
    organism_id: int = 9606

    @classmethod
    def from_env(cls) -> "ServiceConfig":
        key = os.environ.get("GEMINI_API_KEY", "").strip() or None
        if key == "your-gemini-api-key-here":
            key = None
        return cls(
            gemini_model=os.environ.get("MUTAVIEW_GEMINI_MODEL", "").strip() or "gemini-2.0-flash",
            gemini_api_key=key,
            http_timeout=_env_float("MUTAVIEW_HTTP_TIMEOUT", 20.0),
            esmfold_timeout=_env_float("MUTAVIEW_ESMFOLD_TIMEOUT", 120.0),
            esmfold_max_residues=_env_int("MUTAVIEW_ESMFOLD_MAX_RESIDUES", 400),
        )
