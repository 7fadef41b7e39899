# cuprite/browser/geometry.py
"""
Turns layout boxes into pointer coordinates, and computed style into a
visibility verdict.

Only the first content quad of an element is used when aiming pointer
events; elements broken over several inline boxes are hit at the centre
of their first box. Coordinates stay floats end to end since the input
domain accepts fractional viewport positions.
"""

from __future__ import annotations

from typing import Any, Iterable, List, Mapping, NamedTuple, Sequence, Tuple

from cuprite.exceptions import NotRenderableError

Point = Tuple[float, float]


class Quad(NamedTuple):
    p1: Point
    p2: Point
    p3: Point
    p4: Point

    @classmethod
    def from_flat(cls, values: Sequence[float]) -> "Quad":
        if len(values) != 8:
            raise ValueError(f"A quad needs 8 numbers, got {len(values)}")
        it = iter(float(v) for v in values)
        return cls(*((x, y) for x, y in zip(it, it)))

    def centroid(self) -> Point:
        x = sum(p[0] for p in self) / 4
        y = sum(p[1] for p in self) / 4
        return x, y


def quads_from_protocol(raw: Iterable[Sequence[float]]) -> List[Quad]:
    """Converts the flat ``[x1, y1, ..., x4, y4]`` arrays returned by
    ``DOM.getContentQuads``."""
    return [Quad.from_flat(values) for values in raw]


def target_point(quads: Sequence[Quad]) -> Point:
    """Picks the point pointer events are aimed at.

    :param quads: Content quads of the element, in viewport coordinates.
    :type quads: Sequence[Quad]
    :return: Centroid of the first quad.
    :rtype: Point
    :raises NotRenderableError: If the element has no quads.
    """
    if not quads:
        raise NotRenderableError("Node is either not visible or not an HTMLElement")
    return quads[0].centroid()


# CSS initial values, used when the engine omits a property.
_STYLE_DEFAULTS = {"display": "inline", "visibility": "visible", "opacity": "1"}


def _style_value(style: Iterable[Mapping[str, Any]], name: str) -> str:
    for prop in style:
        if prop.get("name") == name:
            return str(prop.get("value", "")).strip()
    return _STYLE_DEFAULTS[name]


def _opacity(value: str) -> float:
    try:
        return float(value)
    except ValueError:
        return 1.0


def is_visible(computed_style: Iterable[Mapping[str, Any]]) -> bool:
    """Visibility from a computed-style property list.

    :param computed_style: ``[{"name": ..., "value": ...}, ...]`` pairs.
    :return: False when display is none, visibility is hidden or opacity is 0.
    :rtype: bool
    """
    style = list(computed_style)
    if _style_value(style, "display") == "none":
        return False
    if _style_value(style, "visibility") == "hidden":
        return False
    return _opacity(_style_value(style, "opacity")) != 0
