"""
GeoJSON exporter for the spatial fields of a form.

Every geopoint, geotrace and geoshape field of every submission becomes a
Feature, even when the value is blank or malformed, so the output can be
joined back to the CSV tables through the ``key`` property:
- Empty values produce a null geometry flagged ``empty: yes``
- Malformed values produce a null geometry flagged ``valid: no``
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import geopandas as gpd
from shapely.errors import GEOSException
from shapely.geometry import LineString, Point, Polygon, mapping
from shapely.geometry.base import BaseGeometry

from ..core.model import DataType, Model
from ..parsing.submission import Submission

logger = logging.getLogger(__name__)

POINT_STRING_SEPARATOR = ";"
POINT_COMPONENT_SEPARATOR = " "

Coordinates = Tuple[float, ...]


@dataclass
class SpatialFeature:
    """Value of one spatial field in one submission."""
    key: str
    field: str
    geometry: Optional[BaseGeometry]
    empty: bool
    valid: bool

    def properties(self) -> Dict[str, str]:
        return {
            'key': self.key,
            'field': self.field,
            'empty': 'yes' if self.empty else 'no',
            'valid': 'yes' if self.valid else 'no',
        }


def parse_point(value: str) -> Optional[Coordinates]:
    """Parse "lat lon [alt [accuracy]]" into (lon, lat[, alt]).

    Returns None for anything that isn't a point inside the valid lat/lon bounds.
    """
    fields = value.strip().split(POINT_COMPONENT_SEPARATOR)
    if len(fields) < 2 or len(fields) > 4:
        return None
    try:
        lat = float(fields[0])
        lon = float(fields[1])
        altitude = float(fields[2]) if len(fields) > 2 and fields[2] else None
    except ValueError:
        return None
    if abs(lat) > 90 or abs(lon) > 180:
        return None
    return (lon, lat) if altitude is None else (lon, lat, altitude)


def parse_points(value: str) -> List[Coordinates]:
    """Parse a ";" separated list of points, dropping the invalid ones."""
    points = (parse_point(part) for part in value.split(POINT_STRING_SEPARATOR))
    return [point for point in points if point is not None]


def to_geometry(data_type: DataType, points: Sequence[Coordinates]) -> BaseGeometry:
    """Build the geometry matching a spatial field type.

    Raises:
        ValueError: If the points don't make a valid geometry of that type
    """
    if data_type == DataType.GEOPOINT and len(points) == 1:
        return Point(points[0])
    if data_type == DataType.GEOTRACE and len(points) >= 2:
        return LineString(points)
    if data_type == DataType.GEOSHAPE and len(points) >= 4 and points[0] == points[-1]:
        return Polygon(points)
    raise ValueError(f"Illegal combination of field type {data_type.value} and {len(points)} point(s)")


def features_for(submission: Submission, spatial_fields: List[Model]) -> List[SpatialFeature]:
    """One feature per spatial field of the submission."""
    key = submission.get_instance_id(False)
    features = []
    for field in spatial_fields:
        element = submission.find_element(field.name)
        value = element.maybe_value() if element is not None else None
        if value is None:
            features.append(SpatialFeature(key, field.name, None, empty=True, valid=True))
            continue
        try:
            geometry = to_geometry(field.data_type, parse_points(value))
            features.append(SpatialFeature(key, field.name, geometry, empty=False, valid=True))
        except (ValueError, GEOSException) as e:
            logger.debug(f"Invalid spatial value '{value}' in field {field.name}: {e}")
            features.append(SpatialFeature(key, field.name, None, empty=False, valid=False))
    return features


class GeoJSONExporter:
    """Export spatial fields as a GeoJSON FeatureCollection."""

    def __init__(self, output_dir: Path):
        """Initialize GeoJSON exporter.

        Args:
            output_dir: Directory for GeoJSON output files
        """
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def export_features(self, features: List[SpatialFeature], output_name: str) -> Path:
        """Write features as a FeatureCollection.

        Args:
            features: Features to export, in output order
            output_name: Output filename

        Returns:
            Path to created GeoJSON file
        """
        geojson_features: List[Dict[str, Any]] = []
        rows = []
        if features:
            gdf = gpd.GeoDataFrame(
                [feature.properties() for feature in features],
                columns=['key', 'field', 'empty', 'valid'],
                geometry=[feature.geometry for feature in features],
                crs='EPSG:4326'
            )
            rows = gdf.iterrows()

        for _, row in rows:
            geometry = row.geometry
            geojson_features.append({
                'type': 'Feature',
                'geometry': mapping(geometry) if geometry is not None and not geometry.is_empty else None,
                'properties': row.drop('geometry').to_dict(),
            })

        geojson = {
            'type': 'FeatureCollection',
            'features': geojson_features,
            'metadata': {
                'generated': datetime.now().isoformat(),
                'count': len(geojson_features),
            }
        }

        output_path = self.output_dir / output_name
        with open(output_path, 'w') as f:
            json.dump(geojson, f, indent=2)

        logger.info(f"Wrote {len(geojson_features)} feature(s) to {output_path.name}")
        return output_path
