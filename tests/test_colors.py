import pytest

from engine.colors import (
    BLUE,
    CONFIDENCE_RAMP,
    DISPLACEMENT_RAMP,
    RED,
    WHITE,
    YELLOW,
    Color,
    ColorStop,
    color_for,
    ramp_gradient,
    residue_color_table,
    style_function_for,
)


def test_displacement_ramp_clamps():
    assert color_for(5.0, DISPLACEMENT_RAMP) == RED
    assert color_for(7.0, DISPLACEMENT_RAMP) == color_for(5.0, DISPLACEMENT_RAMP)
    assert color_for(123.0, DISPLACEMENT_RAMP) == RED
    assert color_for(0.0, DISPLACEMENT_RAMP) == WHITE
    assert color_for(-3.0, DISPLACEMENT_RAMP) == color_for(0.0, DISPLACEMENT_RAMP)


def test_displacement_midpoint_is_yellow():
    assert color_for(2.0, DISPLACEMENT_RAMP) == YELLOW


def test_displacement_interpolation():
    # white -> yellow fades blue; yellow -> red fades green
    assert color_for(1.0, DISPLACEMENT_RAMP) == Color(255, 255, 128)
    assert color_for(3.5, DISPLACEMENT_RAMP) == Color(255, 128, 0)


def test_confidence_ramp_extremes_and_middle():
    low = color_for(50.0, CONFIDENCE_RAMP)
    high = color_for(100.0, CONFIDENCE_RAMP)
    mid = color_for(75.0, CONFIDENCE_RAMP)
    assert low == RED
    assert high == BLUE
    assert mid != low
    assert mid != high
    assert color_for(30.0, CONFIDENCE_RAMP) == low
    assert color_for(101.0, CONFIDENCE_RAMP) == high


def test_nan_maps_to_first_stop():
    assert color_for(float("nan"), DISPLACEMENT_RAMP) == WHITE


def test_empty_ramp_is_rejected():
    with pytest.raises(ValueError):
        color_for(1.0, ())


def test_style_function_defaults_missing_residues_to_zero():
    function = style_function_for({10: 5.0, 11: 2.0})
    assert function(10, 0) == RED
    assert function(11, 3) == YELLOW
    assert function(99, 0) == WHITE


def test_style_function_is_isolated_from_later_mutation():
    values = {1: 5.0}
    function = style_function_for(values)
    values[1] = 0.0
    assert function(1, 0) == RED


def test_residue_color_table_hex():
    function = style_function_for({1: 0.0, 2: 5.0})
    assert residue_color_table([1, 2, 3], function) == {
        1: "#ffffff",
        2: "#ff0000",
        3: "#ffffff",
    }


def test_color_encodings():
    color = Color(255, 128, 0)
    assert color.hex() == "#ff8000"
    assert color.css() == "rgb(255,128,0)"
    assert color.as_tuple() == (255, 128, 0)


def test_ramp_gradient_lists_every_stop():
    gradient = ramp_gradient(DISPLACEMENT_RAMP)
    assert gradient.startswith("qlineargradient(")
    assert "stop:0.000 #ffffff" in gradient
    assert "stop:0.400 #ffff00" in gradient
    assert "stop:1.000 #ff0000" in gradient


def test_custom_ramp_with_single_stop():
    ramp = (ColorStop(1.0, BLUE),)
    assert color_for(0.0, ramp) == BLUE
    assert color_for(2.0, ramp) == BLUE
