# renderer.py
# Map rendering surface used by TrackingSession.
# The session only draws through the MapRenderer protocol; FoliumMapRenderer
# keeps layers in memory and exports them as an interactive HTML map.

import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

import folium

from .geo_utils import distance_between
from .models import Coord

logger = logging.getLogger(__name__)


class MapRenderer(Protocol):
    def set_view(self, coord: Coord, zoom: int) -> None:
        ...

    def draw_marker(self, coord: Coord, label: str = "", heading: Optional[float] = None,
                    icon: Optional[str] = None) -> int:
        ...

    def draw_polyline(self, coords: Sequence[Coord], color: str = "#2E86AB",
                      dashed: bool = False) -> int:
        ...

    def remove_layer(self, layer_id: int) -> None:
        ...

    def fit_bounds(self, coords: Sequence[Coord], padding: int = 0) -> None:
        ...

    def distance_between(self, a: Coord, b: Coord) -> float:
        ...


@dataclass(frozen=True)
class Layer:
    kind: str                         # "marker" | "polyline"
    coords: Tuple[Coord, ...]
    options: Dict[str, Any] = field(default_factory=dict)


class FoliumMapRenderer:
    """
    In-memory map surface with folium HTML export.

    Layers are stored as plain data so callers can inspect what is drawn;
    save() renders the current layers with folium.
    """

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self.layers: Dict[int, Layer] = {}
        self.view: Optional[Tuple[Coord, int]] = None
        self.bounds: Optional[Tuple[Tuple[Coord, ...], int]] = None

    # ------------------------------------------------------------------
    # MapRenderer protocol
    # ------------------------------------------------------------------

    def set_view(self, coord: Coord, zoom: int) -> None:
        self.view = (coord, zoom)

    def draw_marker(self, coord: Coord, label: str = "", heading: Optional[float] = None,
                    icon: Optional[str] = None) -> int:
        return self._add(Layer("marker", (coord,), {"label": label, "heading": heading, "icon": icon}))

    def draw_polyline(self, coords: Sequence[Coord], color: str = "#2E86AB",
                      dashed: bool = False) -> int:
        # tuple() copies, the caller's geometry is never touched
        return self._add(Layer("polyline", tuple(coords), {"color": color, "dashed": dashed}))

    def remove_layer(self, layer_id: int) -> None:
        self.layers.pop(layer_id, None)

    def fit_bounds(self, coords: Sequence[Coord], padding: int = 0) -> None:
        self.bounds = (tuple(coords), padding)

    def distance_between(self, a: Coord, b: Coord) -> float:
        return distance_between(a, b)

    def _add(self, layer: Layer) -> int:
        layer_id = next(self._ids)
        self.layers[layer_id] = layer
        return layer_id

    # ------------------------------------------------------------------
    # Inspection / export
    # ------------------------------------------------------------------

    def layers_of(self, kind: str) -> List[Layer]:
        return [layer for layer in self.layers.values() if layer.kind == kind]

    def to_folium(self) -> folium.Map:
        center, zoom = self.view or (Coord(0.0, 0.0), 2)
        route_map = folium.Map(location=[center.lat, center.lon], zoom_start=zoom)

        for layer in self.layers.values():
            points = [[c.lat, c.lon] for c in layer.coords]
            if layer.kind == "polyline":
                folium.PolyLine(
                    points,
                    color=layer.options.get("color"),
                    weight=4,
                    opacity=0.8,
                    dash_array="8" if layer.options.get("dashed") else None,
                ).add_to(route_map)
            else:
                heading = layer.options.get("heading")
                popup = layer.options.get("label") or None
                if heading is not None:
                    popup = f"{popup or ''} ({heading:.0f}°)".strip()
                folium.Marker(
                    points[0],
                    popup=popup,
                    icon=folium.Icon(icon=layer.options.get("icon") or "info-sign"),
                ).add_to(route_map)

        if self.bounds and self.bounds[0]:
            lats = [c.lat for c in self.bounds[0]]
            lons = [c.lon for c in self.bounds[0]]
            padding = self.bounds[1]
            route_map.fit_bounds(
                [[min(lats), min(lons)], [max(lats), max(lons)]],
                padding=(padding, padding),
            )
        return route_map

    def save(self, path: str) -> None:
        self.to_folium().save(path)
        logger.info(f"Map saved to {path} ({len(self.layers)} layers)")
