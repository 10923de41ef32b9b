from engine.models import Coordinate
from engine.structure import (
    average_confidence,
    confidence_label,
    iter_atom_records,
    parse_atom_line,
    parse_ca_coordinates,
    residue_average_confidence,
    residue_confidence,
)


def test_single_ca_record(atom_line):
    text = atom_line(1, "CA", "ARG", "A", 10, 1.0, 2.0, 3.0, 87.5)
    assert parse_ca_coordinates(text) == {10: Coordinate(1.0, 2.0, 3.0)}
    assert residue_confidence(text) == {10: 87.5}


def test_parse_is_deterministic(wild_pdb):
    assert parse_ca_coordinates(wild_pdb) == parse_ca_coordinates(wild_pdb)


def test_non_coordinate_lines_yield_empty_map():
    text = "\n".join(
        [
            "HEADER    NOTHING HERE",
            "REMARK   1 NO ATOMS",
            "TER",
            "END",
            "",
        ]
    )
    assert parse_ca_coordinates(text) == {}
    assert parse_ca_coordinates("") == {}


def test_only_backbone_reference_atom_is_kept(wild_pdb):
    coords = parse_ca_coordinates(wild_pdb)
    assert sorted(coords) == [10, 11, 12]
    # The N atom sits 1 A before the CA on x; only the CA survives.
    assert coords[11] == Coordinate(1.0, 0.0, 0.0)


def test_hetatm_and_malformed_records_are_skipped(atom_line):
    good = atom_line(1, "CA", "ALA", "A", 5, 1.0, 1.0, 1.0)
    hetatm = atom_line(2, "CA", "HOH", "A", 6, 2.0, 2.0, 2.0, record="HETATM")
    bad_resi = good[:22] + "  x " + good[26:]
    bad_coord = atom_line(3, "CA", "ALA", "A", 8, 0.0, 0.0, 0.0)
    bad_coord = bad_coord[:30] + "   abc  " + bad_coord[38:]
    truncated = good[:40]
    text = "\n".join([good, hetatm, bad_resi, bad_coord, truncated])

    assert parse_ca_coordinates(text) == {5: Coordinate(1.0, 1.0, 1.0)}


def test_first_alternate_location_wins(atom_line):
    first = atom_line(1, "CA", "SER", "A", 20, 1.0, 0.0, 0.0)
    second = atom_line(2, "CA", "SER", "A", 20, 9.0, 9.0, 9.0)
    assert parse_ca_coordinates("\n".join([first, second])) == {20: Coordinate(1.0, 0.0, 0.0)}


def test_parse_atom_line_fields(atom_line):
    record = parse_atom_line(atom_line(7, "CB", "TRP", "B", 123, -4.5, 6.25, 10.0, 64.1))
    assert record is not None
    assert record.atom_name == "CB"
    assert record.residue_name == "TRP"
    assert record.chain == "B"
    assert record.residue_index == 123
    assert record.coordinate == Coordinate(-4.5, 6.25, 10.0)
    assert record.confidence == 64.1


def test_missing_confidence_does_not_drop_coordinates(atom_line):
    line = atom_line(1, "CA", "GLY", "A", 3, 1.0, 2.0, 3.0)[:60]
    assert parse_ca_coordinates(line) == {3: Coordinate(1.0, 2.0, 3.0)}
    assert residue_confidence(line) == {}
    assert list(iter_atom_records(line))[0].confidence is None


def test_average_confidence(wild_pdb):
    # Two atoms per residue, same pLDDT: (92 + 70 + 55) / 3
    assert average_confidence(wild_pdb) == 72.3
    assert average_confidence("HEADER ONLY\n") == 0.0


def test_residue_average_confidence(wild_pdb):
    assert residue_average_confidence(wild_pdb, 11) == 70.0
    assert residue_average_confidence(wild_pdb, 99) is None


def test_confidence_label_bands():
    assert confidence_label(95.0) == "Very high confidence"
    assert confidence_label(90.0) == "Very high confidence"
    assert confidence_label(75.0) == "Confident"
    assert confidence_label(50.0) == "Low confidence"
    assert confidence_label(30.0) == "Very low confidence"
