"""
Export module turning parsed submissions into output files.

Provides:
- CSV tables (main table plus one per repeat group)
- Field mappers with media and audit file handling
- GeoJSON for spatial fields
"""

from .csv_lines import CsvLine, CsvLines
from .csv_output import Csv
from .encoding import encode
from .field_mappers import AuditWriter, MappingContext, map_field
from .geojson_exporter import GeoJSONExporter, SpatialFeature, features_for

__all__ = [
    'AuditWriter',
    'Csv',
    'CsvLine',
    'CsvLines',
    'GeoJSONExporter',
    'MappingContext',
    'SpatialFeature',
    'encode',
    'features_for',
    'map_field',
]
