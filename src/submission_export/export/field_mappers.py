"""
Field to CSV column mapping.

Each data type has a mapper turning the submission element of a field into
(column name, value) pairs. A missing element always yields as many empty
columns as the field contributes to the header, so rows stay rectangular.
Mappers for binary and audit fields also copy files into the export's
media directory.
"""

import logging
import shutil
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional

from ..config_manager import ExportConfiguration
from ..core.model import GEOPOINT_SUFFIXES, DataType, Model
from ..core.xml_element import XmlElement
from ..utils.files import file_extension, md5_hash, strip_file_extension, strip_illegal_chars
from .encoding import Column, reformat_date, reformat_date_time, reformat_time

logger = logging.getLogger(__name__)

AUDIT_HEADER = "instance ID, event, node, start, end\n"


class AuditWriter:
    """Appends audit log rows of every submission to the form's shared audit CSV.

    The file is only (re)created once rows arrive or the export finishes, so
    a cancelled export leaves the previous file alone.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()
        self._needs_header = False

    def prepare(self, overwrite: bool) -> None:
        """Schedule the header write when the file is missing or overwriting is requested."""
        self._needs_header = not self.path.exists() or overwrite

    def append(self, row_id: str, source: Path) -> None:
        """Append the body of ``source`` (its header dropped), prefixing each row with ``row_id``."""
        lines = source.read_text(encoding="utf-8").splitlines()[1:]
        if not lines:
            return
        with self._lock:
            self._write_pending_header()
            with open(self.path, "a", encoding="utf-8", newline="") as f:
                for line in lines:
                    f.write(f"{row_id},{line}\n")

    def finish(self) -> None:
        """Write the header of a file that got no rows."""
        with self._lock:
            self._write_pending_header()

    def _write_pending_header(self) -> None:
        if self._needs_header:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(AUDIT_HEADER, encoding="utf-8")
            self._needs_header = False


@dataclass
class MappingContext:
    """Everything a mapper needs besides the field and its element."""
    form_name: str
    configuration: ExportConfiguration
    working_dir: Path
    audit_writer: Optional[AuditWriter] = None
    media_lock: threading.Lock = field(default_factory=threading.Lock)


FieldMapper = Callable[[MappingContext, str, Model, Optional[XmlElement]], List[Column]]


def empty(name: str, size: int = 1) -> List[Column]:
    return [(name, None)] * size


def map_field(context: MappingContext, local_id: str, model: Model, element: Optional[XmlElement]) -> List[Column]:
    """Map one field of a submission into CSV columns.

    Args:
        context: Export wide mapping context
        local_id: Row ID of the row being built
        model: Schema node of the field
        element: The field's element in the submission, if present

    Returns:
        List of (column name, value) pairs
    """
    mapper = _audit if model.is_meta_audit() else MAPPERS.get(model.data_type, _text)
    columns = mapper(context, local_id, model, element)
    if context.configuration.split_select_multiples and model.is_choice_list():
        columns = columns + _split_choices(model, element)
    return columns


# Simple mappers

def _text(context, local_id, model, element):
    if element is None:
        return empty(model.fqn())
    return [(element.fqn(), element.maybe_value())]


def _formatted(reformat: Callable[[str], str]) -> FieldMapper:
    def mapper(context, local_id, model, element):
        if element is None:
            return empty(model.fqn())
        value = element.maybe_value()
        return [(element.fqn(), reformat(value) if value is not None else "")]
    return mapper


def _geopoint(context, local_id, model, element):
    if element is None:
        return empty(model.fqn(), len(GEOPOINT_SUFFIXES))
    value = element.maybe_value()
    parts = value.split(" ", len(GEOPOINT_SUFFIXES) - 1) if value is not None else []
    return [
        (f"{element.fqn()}-{suffix}", parts[i] if i < len(parts) else None)
        for i, suffix in enumerate(GEOPOINT_SUFFIXES)
    ]


def _split_choices(model: Model, element: Optional[XmlElement]) -> List[Column]:
    """One 1/0 column per choice of a select multiple field."""
    fqn = model.fqn()
    if element is None:
        return [(f"{fqn}/{choice.value}", None) for choice in model.choices]
    selected = set((element.maybe_value() or "").split())
    return [
        (f"{fqn}/{choice.value}", "1" if choice.value in selected else "0")
        for choice in model.choices
    ]


# Media

def _binary(context, local_id, model, element):
    if element is None:
        return empty(model.fqn())
    source_name = element.maybe_value()
    if source_name is None:
        return empty(element.fqn())
    if not context.configuration.export_media:
        return [(element.fqn(), source_name)]
    return [(element.fqn(), copy_media_file(context, source_name))]


def copy_media_file(context: MappingContext, source_name: str) -> str:
    """Copy a media file into the export's media dir and return its relative path.

    Files already exported with the same contents are reused. A different
    file with the same name gets the first free "-2", "-3"... suffix.
    """
    media_dir = context.configuration.export_media_path
    media_dir.mkdir(parents=True, exist_ok=True)

    source = context.working_dir / source_name
    if not source.exists():
        return f"media/{source_name}"

    with context.media_lock:
        destination = media_dir / source_name
        if not destination.exists():
            shutil.copyfile(source, destination)
            return f"media/{destination.name}"

        if md5_hash(source) == md5_hash(destination):
            return f"media/{destination.name}"

        name_part = strip_file_extension(source_name)
        extension = file_extension(source_name)
        ext_part = f".{extension}" if extension else ""
        suffix = 2
        while True:
            destination = media_dir / f"{name_part}-{suffix}{ext_part}"
            if not destination.exists():
                break
            suffix += 1
        shutil.copyfile(source, destination)
        logger.debug(f"Media file {source_name} exported as {destination.name}")
        return f"media/{destination.name}"


def _audit(context, local_id, model, element):
    if element is None:
        return empty(model.fqn())
    source_name = element.maybe_value()
    if source_name is None:
        return empty(element.fqn())

    source = context.working_dir / source_name
    if not context.configuration.export_media:
        value = source_name
    elif not source.exists():
        value = f"media/{source_name}"
    else:
        media_dir = context.configuration.export_media_path
        media_dir.mkdir(parents=True, exist_ok=True)
        destination = media_dir / f"audit-{strip_illegal_chars(local_id)}.csv"
        shutil.copyfile(source, destination)
        value = f"media/{destination.name}"

    # Rows are aggregated only once the copy succeeded
    if context.audit_writer is not None and source.exists():
        context.audit_writer.append(local_id, source)
    return [(element.fqn(), value)]


# Groups

def _group(context, local_id, model, element):
    if model.is_repeatable():
        if element is None:
            parent = model.parent()
            return empty(f"SET-OF-{parent.fqn() if parent is not None else ''}")
        return [(model.fqn(), f"{local_id}/{model.fqn(model.count_ancestors() - 1)}")]

    if model.is_empty() and not model.is_root():
        return _text(context, local_id, model, element)

    columns: List[Column] = []
    for child in model.children():
        child_element = element.find_element(child.name) if element is not None else None
        columns.extend(map_field(context, local_id, child, child_element))
    return columns


MAPPERS: Dict[DataType, FieldMapper] = {
    DataType.DATE: _formatted(reformat_date),
    DataType.TIME: _formatted(reformat_time),
    DataType.DATE_TIME: _formatted(reformat_date_time),
    DataType.GEOPOINT: _geopoint,
    DataType.BINARY: _binary,
    DataType.NULL: _group,
}
