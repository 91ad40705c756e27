"""
TopoJSON decoding and map projection.

Turns a TopoJSON topology into a GeoJSON FeatureCollection that folium can
draw, and fits a single Mercator projection to the whole collection so every
map on the page shares the same view.

TopoJSON stores each shared border once as an "arc". Geometries reference arcs
by index; a negative index ~i means arc i walked backwards. Quantized
topologies also delta-encode arc positions and carry a `transform` that scales
integer positions back to longitude/latitude.
"""

import logging
import math
from typing import Iterator, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

Position = List[float]


def _transformer(transform: Optional[dict]):
    """Build a function mapping a quantized position to lon/lat."""
    if not transform:
        return lambda position, delta=False: list(position)

    sx, sy = transform['scale']
    tx, ty = transform['translate']
    state = {'x': 0, 'y': 0}

    def apply(position, delta=False):
        if delta:
            state['x'] += position[0]
            state['y'] += position[1]
            x, y = state['x'], state['y']
        else:
            x, y = position[0], position[1]
        return [x * sx + tx, y * sy + ty] + list(position[2:])

    return apply


def decode_arcs(topology: dict) -> List[List[Position]]:
    """Decode every arc of a topology to absolute lon/lat positions."""
    transform = topology.get('transform')
    arcs = []
    for arc in topology.get('arcs', []):
        if transform:
            # Delta decoding restarts at the first position of every arc
            to_lonlat = _transformer(transform)
            arcs.append([to_lonlat(position, delta=True) for position in arc])
        else:
            arcs.append([list(position) for position in arc])
    return arcs


def _stitch(arc_indexes: Sequence[int], arcs: List[List[Position]]) -> List[Position]:
    """Join consecutive arcs into one line, dropping the duplicated joint."""
    points: List[Position] = []
    for index in arc_indexes:
        if points:
            points.pop()
        arc = arcs[~index if index < 0 else index]
        segment = [list(p) for p in arc]
        if index < 0:
            segment.reverse()
        points.extend(segment)
    return points


def _line(arc_indexes, arcs):
    points = _stitch(arc_indexes, arcs)
    # A line needs at least two positions
    if len(points) < 2 and points:
        points.append(list(points[0]))
    return points


def _ring(arc_indexes, arcs):
    points = _stitch(arc_indexes, arcs)
    # A closed ring needs at least four positions
    while points and len(points) < 4:
        points.append(list(points[0]))
    return points


def decode_geometry(obj: dict, arcs: List[List[Position]], transform: Optional[dict] = None) -> Optional[dict]:
    """
    Convert a single TopoJSON geometry object into a GeoJSON geometry.

    Args:
        obj: TopoJSON geometry (Polygon, MultiPolygon, LineString, ...)
        arcs: Arcs already decoded by decode_arcs()
        transform: The topology transform, used for Point/MultiPoint positions

    Returns:
        GeoJSON geometry dict, or None for null geometries

    Raises:
        ValueError: Unknown geometry type
    """
    geom_type = obj.get('type')
    to_lonlat = _transformer(transform)

    if geom_type is None:
        return None
    if geom_type == 'GeometryCollection':
        return {
            'type': 'GeometryCollection',
            'geometries': [decode_geometry(g, arcs, transform) for g in obj.get('geometries', [])]
        }
    if geom_type == 'Point':
        return {'type': 'Point', 'coordinates': to_lonlat(obj['coordinates'])}
    if geom_type == 'MultiPoint':
        return {'type': 'MultiPoint', 'coordinates': [to_lonlat(p) for p in obj['coordinates']]}
    if geom_type == 'LineString':
        return {'type': 'LineString', 'coordinates': _line(obj['arcs'], arcs)}
    if geom_type == 'MultiLineString':
        return {'type': 'MultiLineString', 'coordinates': [_line(a, arcs) for a in obj['arcs']]}
    if geom_type == 'Polygon':
        return {'type': 'Polygon', 'coordinates': [_ring(a, arcs) for a in obj['arcs']]}
    if geom_type == 'MultiPolygon':
        return {
            'type': 'MultiPolygon',
            'coordinates': [[_ring(a, arcs) for a in polygon] for polygon in obj['arcs']]
        }

    raise ValueError(f"Unsupported TopoJSON geometry type: {geom_type}")


def _feature(obj: dict, arcs, transform) -> dict:
    feature = {
        'type': 'Feature',
        'properties': dict(obj.get('properties') or {}),
        'geometry': decode_geometry(obj, arcs, transform),
    }
    if 'id' in obj:
        feature['id'] = obj['id']
    return feature


def topology_to_features(topology: dict, object_name: str) -> dict:
    """
    Decode one named object of a topology into a GeoJSON FeatureCollection.

    Args:
        topology: Parsed TopoJSON document
        object_name: Key under topology['objects'] (e.g. 'ma' for the towns layer)

    Returns:
        GeoJSON FeatureCollection; a lone geometry becomes a one-feature collection

    Raises:
        KeyError: The topology has no object with this name
    """
    objects = topology.get('objects', {})
    if object_name not in objects:
        raise KeyError(
            f"Topology has no object '{object_name}' (available: {', '.join(sorted(objects)) or 'none'})"
        )

    arcs = decode_arcs(topology)
    transform = topology.get('transform')
    obj = objects[object_name]

    if obj.get('type') == 'GeometryCollection':
        features = [_feature(g, arcs, transform) for g in obj.get('geometries', [])]
    else:
        features = [_feature(obj, arcs, transform)]

    logger.info(f"Decoded {len(features)} features from topology object '{object_name}'")
    return {'type': 'FeatureCollection', 'features': features}


def iter_positions(coords) -> Iterator[Sequence[float]]:
    """Recursively yield every position of a GeoJSON coordinates array."""
    if not coords:
        return
    if isinstance(coords[0], (int, float)):
        yield coords
        return
    for c in coords:
        yield from iter_positions(c)


def _geometry_positions(geometry: Optional[dict]) -> Iterator[Sequence[float]]:
    if not geometry:
        return
    if geometry['type'] == 'GeometryCollection':
        for g in geometry.get('geometries', []):
            yield from _geometry_positions(g)
    else:
        yield from iter_positions(geometry.get('coordinates', []))


def geographic_bounds(collection: dict) -> Tuple[Tuple[float, float], Tuple[float, float]]:
    """
    Bounding box of a FeatureCollection.

    Returns:
        ((south, west), (north, east)), the order folium's fit_bounds expects

    Raises:
        ValueError: The collection has no coordinates
    """
    lons, lats = [], []
    for feature in collection.get('features', []):
        for position in _geometry_positions(feature.get('geometry')):
            lons.append(position[0])
            lats.append(position[1])

    if not lons:
        raise ValueError("Cannot compute bounds of an empty feature collection")
    return (min(lats), min(lons)), (max(lats), max(lons))


class MercatorProjection:
    """
    Spherical Mercator projection fitted to a fixed screen size.

    Maps (lon, lat) in degrees to (x, y) pixels with y growing downwards.
    Use fit_mercator() to build one from a feature collection.
    """

    # Leaflet tiles are 256 px wide at zoom 0
    TILE_SIZE = 256

    def __init__(self, scale: float, translate: Tuple[float, float], width: int, height: int,
                 bounds: Tuple[Tuple[float, float], Tuple[float, float]]):
        self.scale = scale
        self.translate = translate
        self.width = width
        self.height = height
        self.bounds = bounds

    @staticmethod
    def _unit(lon: float, lat: float) -> Tuple[float, float]:
        lam = math.radians(lon)
        phi = math.radians(lat)
        return lam, -math.log(math.tan(math.pi / 4 + phi / 2))

    def __call__(self, lon: float, lat: float) -> Tuple[float, float]:
        x, y = self._unit(lon, lat)
        return self.translate[0] + self.scale * x, self.translate[1] + self.scale * y

    def invert(self, x: float, y: float) -> Tuple[float, float]:
        """Screen point back to (lon, lat) in degrees."""
        lam = (x - self.translate[0]) / self.scale
        merc = -(y - self.translate[1]) / self.scale
        phi = 2 * math.atan(math.exp(merc)) - math.pi / 2
        return math.degrees(lam), math.degrees(phi)

    @property
    def center(self) -> Tuple[float, float]:
        """(lat, lon) of the middle of the screen region."""
        lon, lat = self.invert(self.width / 2, self.height / 2)
        return lat, lon

    @property
    def zoom(self) -> float:
        """Web-map zoom level with the same pixels-per-radian as this projection."""
        return math.log2(self.scale * 2 * math.pi / self.TILE_SIZE)


def fit_mercator(collection: dict, width: int, height: int) -> MercatorProjection:
    """
    Fit a Mercator projection so the collection fills a width x height region.

    The collection is scaled uniformly (aspect ratio kept) and centered on the
    axis with spare room.
    """
    if width <= 0 or height <= 0:
        raise ValueError("width and height must be positive")

    bounds = geographic_bounds(collection)
    (south, west), (north, east) = bounds

    x0, y1 = MercatorProjection._unit(west, south)
    x1, y0 = MercatorProjection._unit(east, north)
    dx, dy = x1 - x0, y1 - y0

    if dx <= 0 and dy <= 0:
        raise ValueError("Cannot fit a projection to a single point")

    scale = min(width / dx if dx > 0 else math.inf, height / dy if dy > 0 else math.inf)
    translate = ((width - scale * (x0 + x1)) / 2, (height - scale * (y0 + y1)) / 2)

    projection = MercatorProjection(scale, translate, width, height, bounds)
    logger.debug(f"Fitted Mercator projection: scale={scale:.1f}, zoom={projection.zoom:.2f}")
    return projection
