"""Mutation notation parsing and residue numbering helpers."""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Tuple

from engine.models import Domain, ParsedMutation

_MUTATION_RE = re.compile(r"^([A-Za-z][A-Za-z0-9]*)\s+([A-Za-z])(\d+)([A-Za-z])$")

AMINO_ACIDS: Dict[str, str] = {
    "A": "Alanine",
    "R": "Arginine",
    "N": "Asparagine",
    "D": "Aspartic acid",
    "C": "Cysteine",
    "E": "Glutamic acid",
    "Q": "Glutamine",
    "G": "Glycine",
    "H": "Histidine",
    "I": "Isoleucine",
    "L": "Leucine",
    "K": "Lysine",
    "M": "Methionine",
    "F": "Phenylalanine",
    "P": "Proline",
    "S": "Serine",
    "T": "Threonine",
    "W": "Tryptophan",
    "Y": "Tyrosine",
    "V": "Valine",
}

# Curated pathogenicity annotations keyed by "<GENE>_<notation>".
KNOWN_ANNOTATIONS: Dict[str, Dict[str, str]] = {
    "TP53_R175H": {
        "alphamissense": "0.9461 (likely_pathogenic)",
        "clinvar": "Pathogenic - Li-Fraumeni syndrome",
    },
}

FORMAT_HINT = 'Expected something like "TP53 R175H" (gene name + amino acid change).'
NUMBERING_WINDOW = 5


@dataclass(frozen=True)
class ResolvedPosition:
    position: int
    corrected: bool
    note: Optional[str] = None


def parse_mutation(text: str) -> ParsedMutation:
    trimmed = (text or "").strip()
    if not trimmed:
        raise ValueError("Please enter a mutation.")
    match = _MUTATION_RE.match(trimmed)
    if match is None:
        raise ValueError(f"Invalid format. {FORMAT_HINT}")
    return ParsedMutation(
        gene=match.group(1).upper(),
        original=match.group(2).upper(),
        position=int(match.group(3)),
        mutant=match.group(4).upper(),
    )


def amino_acid_name(code: str) -> str:
    return AMINO_ACIDS.get(code.upper(), code)


def resolve_position(
    sequence: str,
    position: int,
    original: str,
    window: int = NUMBERING_WINDOW,
) -> ResolvedPosition:
    """Reconcile clinical numbering with the sequence.

    If the expected residue is not at ``position`` the nearest offsets within
    ``window`` are searched, most negative first.
    """
    if position < 1 or position > len(sequence):
        raise ValueError(
            f"Position {position} is out of range. Must be between 1 and {len(sequence)}."
        )
    expected = original.upper()
    actual = sequence[position - 1].upper()
    if actual == expected:
        return ResolvedPosition(position=position, corrected=False)

    for offset in range(-window, window + 1):
        if offset == 0:
            continue
        idx = position - 1 + offset
        if idx < 0 or idx >= len(sequence):
            continue
        if sequence[idx].upper() == expected:
            resolved = idx + 1
            note = (
                f"Note: {original} found at position {resolved} instead of {position} "
                "(common numbering offset)."
            )
            return ResolvedPosition(position=resolved, corrected=True, note=note)

    raise ValueError(
        f"Expected {original} at position {position} but found {actual}. "
        f"Could not find {original} within ±{window} positions."
    )


def apply_substitution(sequence: str, position: int, mutant: str) -> str:
    if position < 1 or position > len(sequence):
        raise ValueError(f"Position {position} is outside a sequence of length {len(sequence)}.")
    return sequence[: position - 1] + mutant.upper() + sequence[position:]


def find_domain(domains: Iterable[Domain], position: int) -> Optional[str]:
    for domain in domains:
        if domain.contains(position):
            return domain.name
    return None


def annotations_for(mutation: ParsedMutation) -> Optional[Dict[str, str]]:
    return KNOWN_ANNOTATIONS.get(f"{mutation.gene}_{mutation.notation}")


def describe_change(mutation: ParsedMutation) -> Tuple[str, str]:
    return amino_acid_name(mutation.original), amino_acid_name(mutation.mutant)
