"""
Core building blocks: schema model, form definitions and XML navigation.
"""

from .date_range import DateRange
from .form_definition import FormDefinition
from .model import Choice, DataType, Model, Schema
from .xml_element import XmlElement

__all__ = [
    'Choice',
    'DataType',
    'DateRange',
    'FormDefinition',
    'Model',
    'Schema',
    'XmlElement',
]
