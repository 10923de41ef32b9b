"""Piecewise-linear color ramps for confidence and displacement coloring."""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Mapping, Sequence, Tuple


@dataclass(frozen=True)
class Color:
    r: int
    g: int
    b: int

    def as_tuple(self) -> Tuple[int, int, int]:
        return (self.r, self.g, self.b)

    def hex(self) -> str:
        return f"#{self.r:02x}{self.g:02x}{self.b:02x}"

    def css(self) -> str:
        return f"rgb({self.r},{self.g},{self.b})"


@dataclass(frozen=True)
class ColorStop:
    value: float
    color: Color


ColorRamp = Tuple[ColorStop, ...]
StyleFunction = Callable[[int, int], Color]

WHITE = Color(255, 255, 255)
YELLOW = Color(255, 255, 0)
RED = Color(255, 0, 0)
ORANGE = Color(255, 136, 0)
GREEN = Color(0, 255, 0)
BLUE = Color(0, 0, 255)
MAGENTA = Color(255, 0, 255)

# pLDDT 50 (low) to 100 (high), the roygb gradient.
CONFIDENCE_RAMP: ColorRamp = (
    ColorStop(50.0, RED),
    ColorStop(62.5, ORANGE),
    ColorStop(75.0, YELLOW),
    ColorStop(87.5, GREEN),
    ColorStop(100.0, BLUE),
)

# Angstrom displacement: 0 white, 2 yellow, 5+ red.
DISPLACEMENT_RAMP: ColorRamp = (
    ColorStop(0.0, WHITE),
    ColorStop(2.0, YELLOW),
    ColorStop(5.0, RED),
)


def _round_channel(value: float) -> int:
    return int(min(255, max(0, math.floor(value + 0.5))))


def _lerp(a: Color, b: Color, t: float) -> Color:
    return Color(
        _round_channel(a.r + (b.r - a.r) * t),
        _round_channel(a.g + (b.g - a.g) * t),
        _round_channel(a.b + (b.b - a.b) * t),
    )


def color_for(value: float, ramp: Sequence[ColorStop]) -> Color:
    """Interpolate ``value`` along ``ramp``; values outside the stops clamp.

    NaN is treated as the lowest stop.
    """
    if not ramp:
        raise ValueError("Color ramp needs at least one stop.")
    first = ramp[0]
    last = ramp[-1]
    value = float(value)
    if math.isnan(value) or value <= first.value:
        return first.color
    if value >= last.value:
        return last.color
    for lower, upper in zip(ramp, ramp[1:]):
        if value > upper.value:
            continue
        span = upper.value - lower.value
        if span <= 0:
            return upper.color
        return _lerp(lower.color, upper.color, (value - lower.value) / span)
    return last.color


def style_function_for(
    values_by_residue: Mapping[int, float],
    ramp: Sequence[ColorStop] = DISPLACEMENT_RAMP,
    default: float = 0.0,
) -> StyleFunction:
    """Per-atom color callback over a precomputed residue table.

    Residues missing from the table are colored as ``default``.
    """
    table = dict(values_by_residue)
    ramp = tuple(ramp)

    def _color(residue_index: int, atom_index: int = 0) -> Color:
        return color_for(table.get(residue_index, default), ramp)

    return _color


def residue_color_table(residues: Iterable[int], function: StyleFunction) -> Dict[int, str]:
    return {int(resi): function(int(resi), 0).hex() for resi in residues}


def ramp_gradient(ramp: Sequence[ColorStop]) -> str:
    """Horizontal Qt stylesheet gradient for a legend swatch."""
    lo = ramp[0].value
    span = (ramp[-1].value - lo) or 1.0
    stops = ", ".join(f"stop:{(stop.value - lo) / span:.3f} {stop.color.hex()}" for stop in ramp)
    return f"qlineargradient(x1:0, y1:0, x2:1, y2:0, {stops})"
