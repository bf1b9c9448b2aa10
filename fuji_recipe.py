#
# SPDX-License-Identifier: MPL-2.0
# Copyright (c) 2025 Aryan Ameri
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
#
"""
Fujifilm recipe model and rawji argument builder.

A recipe is a flat set of independent, optional settings. Each setting maps
to zero or one rawji flag; unset settings produce no flag at all so rawji's
own defaults apply.
"""

from __future__ import annotations

import json
import math
from dataclasses import asdict, dataclass, fields
from enum import StrEnum
from pathlib import Path
from typing import Any, Final, Self

__all__: Final[list[str]] = [
    "DynamicRange",
    "FilmSimulation",
    "RecipeError",
    "RecipeOptions",
    "SLIDER_RANGES",
    "Strength",
    "WhiteBalance",
    "build_arguments",
    "format_arguments",
    "load_recipe",
    "save_recipe",
]


class RecipeError(Exception):
    """Raised when a recipe file cannot be read or written."""


# ═══════════════════════════════════════════════════════════════════
#                        ENUMERATIONS
# ═══════════════════════════════════════════════════════════════════


class FilmSimulation(StrEnum):
    """Film simulation presets, valued with rawji's spelling (no dashes)."""

    PROVIA = "provia"
    VELVIA = "velvia"
    ASTIA = "astia"
    CLASSIC_CHROME = "classicchrome"
    PRO_NEG_HI = "proneghi"
    PRO_NEG_STD = "pronegstd"
    ACROS = "acros"
    ACROS_YE = "acrosye"
    ACROS_R = "acrosr"
    ACROS_G = "acrosg"
    MONOCHROME = "monochrome"
    SEPIA = "sepia"
    ETERNA = "eterna"
    ETERNA_BLEACH = "eternableach"

    @property
    def label(self) -> str:
        """Display label as shown in the export dialog."""
        return _FILM_SIM_LABELS[self]

    @classmethod
    def parse(cls, text: str) -> Self | None:
        """Accept either a display label (``classic-chrome``) or a rawji value."""
        value = text.strip().lower().replace("-", "").replace("_", "")
        try:
            return cls(value)
        except ValueError:
            return None


_FILM_SIM_LABELS: Final[dict[FilmSimulation, str]] = {
    FilmSimulation.PROVIA: "provia",
    FilmSimulation.VELVIA: "velvia",
    FilmSimulation.ASTIA: "astia",
    FilmSimulation.CLASSIC_CHROME: "classic-chrome",
    FilmSimulation.PRO_NEG_HI: "proneghi",
    FilmSimulation.PRO_NEG_STD: "pronegstd",
    FilmSimulation.ACROS: "acros",
    FilmSimulation.ACROS_YE: "acros-ye",
    FilmSimulation.ACROS_R: "acros-r",
    FilmSimulation.ACROS_G: "acros-g",
    FilmSimulation.MONOCHROME: "monochrome",
    FilmSimulation.SEPIA: "sepia",
    FilmSimulation.ETERNA: "eterna",
    FilmSimulation.ETERNA_BLEACH: "eterna-bleach",
}


class Strength(StrEnum):
    """Grain and color chrome effect strength."""

    OFF = "off"
    WEAK = "weak"
    STRONG = "strong"


class DynamicRange(StrEnum):
    """Dynamic range setting in percent."""

    DR100 = "100"
    DR200 = "200"
    DR400 = "400"


class WhiteBalance(StrEnum):
    """White balance presets understood by rawji."""

    AUTO = "auto"
    DAYLIGHT = "daylight"
    SHADE = "shade"


# Slider limits (min, max), as enforced by the export dialog and the CLI
SLIDER_RANGES: Final[dict[str, tuple[float, float]]] = {
    "exposure": (-5.0, 5.0),
    "highlights": (-4.0, 4.0),
    "shadows": (-2.0, 4.0),
    "sharpness": (-4.0, 4.0),
    "color": (-4.0, 4.0),
    "noise_reduction": (-4.0, 4.0),
}


# ═══════════════════════════════════════════════════════════════════
#                        RECIPE
# ═══════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True, kw_only=True)
class RecipeOptions:
    """Immutable snapshot of a recipe. ``None`` means "don't pass the flag"."""

    film_simulation: FilmSimulation | None = None
    exposure: float | None = None
    highlights: float | None = None
    shadows: float | None = None
    sharpness: float | None = None
    color: float | None = None
    noise_reduction: float | None = None
    grain: Strength | None = None
    color_chrome: Strength | None = None
    dynamic_range: DynamicRange | None = None
    white_balance: WhiteBalance | None = None

    @classmethod
    def from_selection(
        cls,
        *,
        film_simulation: int = 0,
        exposure: float = 0.0,
        highlights: float = 0.0,
        shadows: float = 0.0,
        sharpness: float = 0.0,
        color: float = 0.0,
        noise_reduction: float = 0.0,
        grain: int = 0,
        color_chrome: int = 0,
        dynamic_range: int = 0,
        white_balance: int = 0,
    ) -> Self:
        """Build a recipe from dialog widget state.

        Combo boxes report a 1-based ``selected`` index where 0 means nothing
        is selected. Index 0, any index outside the list, and the ``off``
        entry of the strength boxes all become ``None``.
        """
        return cls(
            film_simulation=_pick(list(FilmSimulation), film_simulation),
            exposure=exposure,
            highlights=highlights,
            shadows=shadows,
            sharpness=sharpness,
            color=color,
            noise_reduction=noise_reduction,
            grain=_pick(list(Strength), grain),
            color_chrome=_pick(list(Strength), color_chrome),
            dynamic_range=_pick(list(DynamicRange), dynamic_range),
            white_balance=_pick(list(WhiteBalance), white_balance),
        )

    def replace(self, **changes: Any) -> Self:
        """Return a copy with the non-None ``changes`` applied."""
        values = asdict(self)
        values.update({k: v for k, v in changes.items() if v is not None})
        return type(self)(**values)

    def to_dict(self) -> dict[str, Any]:
        """Serialize the set fields to JSON-compatible values."""
        data: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            data[f.name] = str(value) if isinstance(value, StrEnum) else value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """Inverse of :meth:`to_dict`. Unknown keys and bad values are dropped."""
        film_sim = data.get("film_simulation")
        return cls(
            film_simulation=(
                FilmSimulation.parse(film_sim) if isinstance(film_sim, str) else None
            ),
            exposure=_as_number(data.get("exposure")),
            highlights=_as_number(data.get("highlights")),
            shadows=_as_number(data.get("shadows")),
            sharpness=_as_number(data.get("sharpness")),
            color=_as_number(data.get("color")),
            noise_reduction=_as_number(data.get("noise_reduction")),
            grain=_coerce(Strength, data.get("grain")),
            color_chrome=_coerce(Strength, data.get("color_chrome")),
            dynamic_range=_coerce(DynamicRange, data.get("dynamic_range")),
            white_balance=_coerce(WhiteBalance, data.get("white_balance")),
        )


def _pick[E: StrEnum](members: list[E], selected: int) -> E | None:
    """Map a 1-based combo box index to a member, treating ``off`` as unset."""
    if not isinstance(selected, int) or not 1 <= selected <= len(members):
        return None
    member = members[selected - 1]
    return None if member == Strength.OFF else member


def _coerce[E: StrEnum](enum_cls: type[E], value: object) -> E | None:
    if value is None:
        return None
    try:
        return enum_cls(str(value))
    except ValueError:
        return None


def _as_number(value: object) -> float | None:
    # bool is an int subclass; a stray True must not become "1"
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return value


# ═══════════════════════════════════════════════════════════════════
#                        ARGUMENT BUILDER
# ═══════════════════════════════════════════════════════════════════


def _exposure_value(value: float) -> str:
    return f"{value:.1f}"


def _step_value(value: float) -> str:
    return str(math.floor(value))


# (flag, field, formatter) in the order rawji arguments are emitted
_NUMERIC_FLAGS: Final = (
    ("--exposure", "exposure", _exposure_value),
    ("--highlights", "highlights", _step_value),
    ("--shadows", "shadows", _step_value),
    ("--sharpness", "sharpness", _step_value),
    ("--color", "color", _step_value),
    ("--nr", "noise_reduction", _step_value),
)

_CHOICE_FLAGS: Final = (
    ("--grain", "grain", Strength),
    ("--color-chrome", "color_chrome", Strength),
    ("--dynamic-range", "dynamic_range", DynamicRange),
    ("--white-balance", "white_balance", WhiteBalance),
)


def build_arguments(options: RecipeOptions) -> list[str]:
    """Translate a recipe into ordered rawji flag/value tokens.

    Order is fixed: film simulation, exposure, highlights, shadows,
    sharpness, color, noise reduction, grain, color chrome, dynamic range,
    white balance. Values outside their domain are treated as unset.
    """
    args: list[str] = []

    film_sim = options.film_simulation
    film_sim = FilmSimulation.parse(film_sim) if isinstance(film_sim, str) else None
    if film_sim is not None:
        args += ["--film-sim", film_sim.value]

    for flag, name, formatter in _NUMERIC_FLAGS:
        value = _as_number(getattr(options, name))
        if value is None:
            continue
        # zero is judged on the emitted token: 0.04 exposure would be "0.0"
        token = formatter(value)
        if float(token) != 0:
            args += [flag, token]

    for flag, name, enum_cls in _CHOICE_FLAGS:
        choice = _coerce(enum_cls, getattr(options, name))
        if choice is not None and choice != Strength.OFF:
            args += [flag, choice.value]

    return args


def format_arguments(options: RecipeOptions) -> str:
    """Space-joined form of :func:`build_arguments` ("" when nothing is set)."""
    return " ".join(build_arguments(options))


# ═══════════════════════════════════════════════════════════════════
#                        PERSISTENCE
# ═══════════════════════════════════════════════════════════════════


def load_recipe(path: Path) -> RecipeOptions:
    """Read a recipe saved by :func:`save_recipe`.

    Raises:
        RecipeError: If the file is missing or not a JSON object.
    """
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise RecipeError(f"Cannot read recipe {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise RecipeError(f"Invalid recipe JSON in {path}: {e}") from e

    if not isinstance(data, dict):
        raise RecipeError(f"Recipe {path} must contain a JSON object")
    return RecipeOptions.from_dict(data)


def save_recipe(options: RecipeOptions, path: Path) -> None:
    """Write the set fields of ``options`` as pretty-printed JSON."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            json.dumps(options.to_dict(), indent=2, sort_keys=True) + "\n",
            encoding="utf-8",
        )
    except OSError as e:
        raise RecipeError(f"Cannot write recipe {path}: {e}") from e
