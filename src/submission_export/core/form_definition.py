"""
Form definition loading.

Reads the parts of an XForm the export needs: title, form ID and version,
the main instance tree, field types from ``<bind>`` elements, repeat
markers and select choices from the body, and whether submissions are
encrypted. Form semantics (constraints, relevance, calculations) are not
evaluated.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple, Union
from xml.etree.ElementTree import Element

from defusedxml import ElementTree as SafeET
from defusedxml.ElementTree import ParseError as SafeParseError
from defusedxml.common import DefusedXmlException

from ..errors import ConfigurationError
from .model import Choice, DataType, Model, Schema
from .xml_element import local_name

logger = logging.getLogger(__name__)

BIND_TYPES = {
    "string": DataType.TEXT,
    "int": DataType.INTEGER,
    "integer": DataType.INTEGER,
    "decimal": DataType.DECIMAL,
    "long": DataType.LONG,
    "boolean": DataType.BOOLEAN,
    "date": DataType.DATE,
    "time": DataType.TIME,
    "datetime": DataType.DATE_TIME,
    "select1": DataType.CHOICE,
    "select": DataType.MULTIPLE_ITEMS,
    "geopoint": DataType.GEOPOINT,
    "geotrace": DataType.GEOTRACE,
    "geoshape": DataType.GEOSHAPE,
    "binary": DataType.BINARY,
    "barcode": DataType.BARCODE,
}


def bind_type(raw: Optional[str]) -> DataType:
    """Map a bind ``type`` attribute ("xsd:dateTime", "geopoint"...) to a DataType."""
    if not raw:
        return DataType.TEXT
    return BIND_TYPES.get(local_name(raw).split(":")[-1].lower(), DataType.UNSUPPORTED)


@dataclass
class FormDefinition:
    """A form's identity plus the schema its submissions follow."""
    form_id: str
    form_name: str
    model: Model
    version: Optional[str] = None
    is_encrypted: bool = False
    form_dir: Optional[Path] = None

    def repeatable_fields(self) -> List[Model]:
        return self.model.repeatable_fields()

    def has_repeatable_fields(self) -> bool:
        return self.model.has_repeatable_fields()

    def spatial_fields(self) -> List[Model]:
        return self.model.spatial_fields()

    @classmethod
    def from_xform(cls, path: Union[str, Path], form_dir: Optional[Union[str, Path]] = None) -> "FormDefinition":
        """Load a form definition from an XForm file.

        Args:
            path: Path to the XForm XML file
            form_dir: Directory holding the form's ``instances`` folder
                (default: the XForm's directory)

        Returns:
            FormDefinition for the form

        Raises:
            ConfigurationError: If the file can't be parsed or has no main instance
        """
        path = Path(path)
        try:
            root = SafeET.parse(str(path)).getroot()
        except (SafeParseError, DefusedXmlException, OSError) as e:
            raise ConfigurationError(f"Can't read form definition {path}: {e}") from e

        model_element = _first_descendant(root, "model")
        if model_element is None:
            raise ConfigurationError(f"No <model> element found in {path}")

        instance_root = _main_instance_root(model_element)
        if instance_root is None:
            raise ConfigurationError(f"No main <instance> found in {path}")

        binds = {
            bind.get("nodeset"): bind_type(bind.get("type"))
            for bind in _descendants(model_element, "bind")
            if bind.get("nodeset")
        }
        body = _first_descendant(root, "body")
        repeats = _repeat_nodesets(body)
        choices = _select_choices(body)
        # Selects are often bound as plain strings; the body control tells them apart
        for ref, control_type in _select_types(body).items():
            if binds.get(ref, DataType.TEXT) == DataType.TEXT:
                binds[ref] = control_type

        schema = Schema(local_name(instance_root.tag))
        _build(schema, 0, instance_root, f"/{local_name(instance_root.tag)}", binds, repeats, choices)

        title = _first_descendant(root, "title")
        form_id = instance_root.get("id") or local_name(instance_root.tag)
        form_name = (title.text or "").strip() if title is not None and title.text else form_id
        submission = _first_descendant(model_element, "submission")
        is_encrypted = submission is not None and bool(submission.get("base64RsaPublicKey"))

        logger.info(f"Loaded form definition '{form_name}' ({form_id}) with {len(schema) - 1} nodes")
        return cls(
            form_id=form_id,
            form_name=form_name,
            model=schema.root(),
            version=instance_root.get("version"),
            is_encrypted=is_encrypted,
            form_dir=Path(form_dir) if form_dir is not None else path.parent,
        )


def _descendants(element: Element, name: str):
    return (e for e in element.iter() if local_name(e.tag) == name)


def _first_descendant(element: Element, name: str) -> Optional[Element]:
    return next(_descendants(element, name), None)


def _main_instance_root(model_element: Element) -> Optional[Element]:
    # The main instance is the first <instance> without an id attribute
    for child in model_element:
        if local_name(child.tag) == "instance" and child.get("id") is None:
            return next(iter(child), None)
    return None


def _repeat_nodesets(body: Optional[Element]) -> Set[str]:
    if body is None:
        return set()
    return {r.get("nodeset") for r in _descendants(body, "repeat") if r.get("nodeset")}


def _select_types(body: Optional[Element]) -> Dict[str, DataType]:
    if body is None:
        return {}
    return {
        control.get("ref"): DataType.MULTIPLE_ITEMS if local_name(control.tag) == "select" else DataType.CHOICE
        for control in body.iter()
        if local_name(control.tag) in ("select", "select1") and control.get("ref")
    }


def _select_choices(body: Optional[Element]) -> Dict[str, Tuple[Choice, ...]]:
    choices: Dict[str, Tuple[Choice, ...]] = {}
    if body is None:
        return choices
    for control in body.iter():
        if local_name(control.tag) not in ("select", "select1") or not control.get("ref"):
            continue
        items = []
        for item in _descendants(control, "item"):
            value = _first_descendant(item, "value")
            label = _first_descendant(item, "label")
            if value is not None and value.text:
                items.append(Choice(value.text.strip(), label.text.strip() if label is not None and label.text else None))
        choices[control.get("ref")] = tuple(items)
    return choices


def _build(
    schema: Schema,
    parent: int,
    element: Element,
    path: str,
    binds: Dict[str, DataType],
    repeats: Set[str],
    choices: Dict[str, Tuple[Choice, ...]],
) -> None:
    seen_repeats = set()
    for child in element:
        name = local_name(child.tag)
        child_path = f"{path}/{name}"
        # Repeat templates appear several times in the instance; keep the first
        if child_path in repeats and child_path in seen_repeats:
            continue
        has_children = len(child) > 0
        repeatable = child_path in repeats
        if has_children or repeatable:
            data_type = DataType.NULL
        else:
            data_type = binds.get(child_path, DataType.TEXT)
        index = schema.add(parent, name, data_type, repeatable, choices.get(child_path, ()))
        if repeatable:
            seen_repeats.add(child_path)
        if has_children:
            _build(schema, index, child, child_path, binds, repeats, choices)
