import math

import numpy as np
import pytest

from engine.displacement import compute_displacement, displacement_table, summarize_displacement
from engine.models import Coordinate


def _coords(mapping):
    return {resi: Coordinate(*xyz) for resi, xyz in mapping.items()}


def test_shared_residues_only():
    wild = _coords({10: (0, 0, 0), 11: (1, 0, 0)})
    mutant = _coords({10: (0, 0, 3), 12: (5, 5, 5)})
    assert compute_displacement(wild, mutant) == {10: 3.0}


def test_domain_is_key_intersection_and_values_are_distances():
    rng = np.random.default_rng(7)
    wild = _coords({resi: tuple(rng.normal(size=3)) for resi in range(1, 40)})
    mutant = _coords({resi: tuple(rng.normal(size=3)) for resi in range(20, 60)})

    result = compute_displacement(wild, mutant)

    assert set(result) == set(wild) & set(mutant)
    for resi, value in result.items():
        w, m = wild[resi], mutant[resi]
        expected = math.sqrt((w.x - m.x) ** 2 + (w.y - m.y) ** 2 + (w.z - m.z) ** 2)
        assert value >= 0.0
        assert value == pytest.approx(expected)


def test_identical_coordinates_give_zero():
    wild = _coords({1: (1.5, -2.0, 3.25), 2: (0, 0, 0)})
    result = compute_displacement(wild, dict(wild))
    assert result == {1: 0.0, 2: 0.0}


def test_swapping_arguments_keeps_values():
    wild = _coords({1: (0, 0, 0), 2: (1, 2, 3), 3: (4, 4, 4)})
    mutant = _coords({2: (3, 2, 1), 3: (0, 0, 0), 4: (9, 9, 9)})
    forward = compute_displacement(wild, mutant)
    backward = compute_displacement(mutant, wild)
    assert forward.keys() == backward.keys()
    for resi in forward:
        assert forward[resi] == pytest.approx(backward[resi])


def test_insertion_order_does_not_matter():
    items = {3: (1, 1, 1), 1: (0, 0, 0), 2: (2, 0, 0)}
    wild_a = _coords(items)
    wild_b = _coords(dict(reversed(list(items.items()))))
    mutant = _coords({1: (0, 0, 1), 2: (2, 0, 2), 3: (1, 1, 4)})
    assert compute_displacement(wild_a, mutant) == compute_displacement(wild_b, mutant)


def test_empty_inputs():
    assert compute_displacement({}, {}) == {}
    assert compute_displacement(_coords({1: (0, 0, 0)}), {}) == {}


def test_displacement_table_columns():
    wild = _coords({10: (0, 0, 0), 11: (1, 0, 0)})
    mutant = _coords({10: (0, 0, 3), 12: (5, 5, 5)})
    table = displacement_table(wild, mutant)
    assert list(table["residue"]) == [10]
    assert table.loc[0, "mutant_z"] == 3.0
    assert table.loc[0, "displacement"] == 3.0


def test_summary():
    summary = summarize_displacement({1: 0.5, 2: 4.0, 3: 2.5, 4: 4.0}, threshold=2.0, top_n=2)
    assert summary.n_residues == 4
    assert summary.max == 4.0
    assert summary.max_residue == 2
    assert summary.n_above_threshold == 3
    assert summary.top_residues == [(2, 4.0), (4, 4.0)]
    assert summary.mean == pytest.approx(2.75)


def test_summary_of_empty_map():
    summary = summarize_displacement({})
    assert summary.n_residues == 0
    assert summary.max_residue is None
    assert summary.to_dict()["top_residues"] == []
