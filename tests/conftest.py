import os
import sys

import pytest

# Add src (engine, app) and the repo root (cli) to the path for all tests
root_path = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
src_path = os.path.join(root_path, "src")
for path in (src_path, root_path):
    if path not in sys.path:
        sys.path.insert(0, path)


def _atom_line(serial, name, resname, chain, resi, x, y, z, bfactor=90.0, record="ATOM  "):
    return (
        f"{record:<6s}{serial:5d} {name:<4s} {resname:>3s} {chain}{resi:4d}    "
        f"{x:8.3f}{y:8.3f}{z:8.3f}{1.0:6.2f}{bfactor:6.2f}           {name[0]}"
    )


@pytest.fixture
def atom_line():
    """Builder for fixed-column PDB ATOM lines."""
    return _atom_line


@pytest.fixture
def make_pdb():
    """Build PDB text from (resi, resname, (x, y, z), plddt) CA tuples plus a backbone N per residue."""

    def _make(residues, header=True):
        lines = ["HEADER    TEST STRUCTURE"] if header else []
        serial = 1
        for resi, resname, (x, y, z), plddt in residues:
            lines.append(_atom_line(serial, "N", resname, "A", resi, x - 1.0, y, z, plddt))
            serial += 1
            lines.append(_atom_line(serial, "CA", resname, "A", resi, x, y, z, plddt))
            serial += 1
        lines.append("TER")
        lines.append("END")
        return "\n".join(lines) + "\n"

    return _make


@pytest.fixture
def wild_pdb(make_pdb):
    return make_pdb(
        [
            (10, "ARG", (0.0, 0.0, 0.0), 92.0),
            (11, "HIS", (1.0, 0.0, 0.0), 70.0),
            (12, "GLY", (2.0, 0.0, 0.0), 55.0),
        ]
    )


@pytest.fixture
def mutant_pdb(make_pdb):
    return make_pdb(
        [
            (10, "HIS", (0.0, 0.0, 3.0), 80.0),
            (11, "HIS", (1.0, 0.0, 0.0), 65.0),
            (13, "ALA", (5.0, 5.0, 5.0), 40.0),
        ]
    )
