"""
Navigable wrapper over parsed submission XML.

Elements are named by their local name (namespaces dropped). The fully
qualified name (FQN) of an element joins the names of its ancestors with
"-", leaving out the document's root element, so that it lines up with
the FQNs of the form's schema model.
"""

from pathlib import Path
from typing import Iterator, List, Optional, Union
from xml.etree.ElementTree import Element

from defusedxml import ElementTree as SafeET
from defusedxml.ElementTree import ParseError as SafeParseError
from defusedxml.common import DefusedXmlException

from ..errors import ParsingError


def local_name(tag: str) -> str:
    """Strip the "{namespace}" prefix ElementTree puts on qualified tags."""
    return tag.rsplit("}", 1)[-1]


class XmlElement:
    """Wrapper that knows its parent, so it can compute FQNs and local IDs."""

    def __init__(self, element: Element, parent: Optional["XmlElement"] = None):
        self.element = element
        self.parent = parent
        self.name = local_name(element.tag)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "XmlElement":
        """Parse an XML file and wrap its root element.

        Raises:
            ParsingError: If the file can't be read or isn't well formed XML
        """
        try:
            tree = SafeET.parse(str(path))
        except (SafeParseError, DefusedXmlException, OSError) as e:
            raise ParsingError(f"Can't parse {path}: {e}") from e
        return cls(tree.getroot())

    @classmethod
    def from_string(cls, xml: str) -> "XmlElement":
        try:
            return cls(SafeET.fromstring(xml))
        except (SafeParseError, DefusedXmlException) as e:
            raise ParsingError(f"Can't parse XML: {e}") from e

    # Navigation

    def children(self) -> List["XmlElement"]:
        return [XmlElement(child, self) for child in self.element]

    def flatten(self) -> Iterator["XmlElement"]:
        """Yield all descendants depth first, parents before their children."""
        for child in self.children():
            yield child
            yield from child.flatten()

    def find_element(self, name: str) -> Optional["XmlElement"]:
        """Return the first descendant with the given name, if any."""
        return next((e for e in self.flatten() if e.name == name), None)

    def find_elements(self, *names: str) -> List["XmlElement"]:
        """Follow a path of names and return the children matching the last one.

        With a single name, only direct children are considered. With more,
        the first name is looked up anywhere below this element and the rest
        of the path is resolved from there.
        """
        if not names:
            return []
        if len(names) == 1:
            return [child for child in self.children() if child.name == names[0]]
        first = self.find_element(names[0])
        if first is None:
            return []
        return first.find_elements(*names[1:])

    # Values

    def maybe_value(self) -> Optional[str]:
        """Trimmed direct text of this element, None when empty."""
        text = (self.element.text or "") + "".join(child.tail or "" for child in self.element)
        text = text.strip()
        return text or None

    def value(self) -> str:
        text = self.maybe_value()
        if text is None:
            raise ParsingError(f"No value present on element {self.name}")
        return text

    def is_empty(self) -> bool:
        return self.maybe_value() is None

    def attribute(self, name: str) -> Optional[str]:
        """Value of an unqualified attribute, None when missing or empty."""
        return self.element.attrib.get(name) or None

    def namespace(self) -> Optional[str]:
        """Namespace URI of this element (what an "xmlns" attribute declared), if any."""
        if not self.element.tag.startswith("{"):
            return None
        return self.element.tag[1:].split("}", 1)[0] or None

    # Naming

    def is_first_level_node(self) -> bool:
        """True for the document's root element."""
        return self.parent is None

    def is_first_level_group(self) -> bool:
        """True for direct children of the document's root element."""
        return self.parent is not None and self.parent.is_first_level_node()

    def fqn(self) -> str:
        names = []
        current = self
        while current.parent is not None:
            names.append(current.name)
            current = current.parent
        return "-".join(reversed(names))

    def place_among_same_tag_siblings(self) -> int:
        """1-based position of this element among its siblings with the same name."""
        if self.parent is None:
            return 1
        same_tag = [child for child in self.parent.element if local_name(child.tag) == self.name]
        for index, sibling in enumerate(same_tag, start=1):
            if sibling is self.element:
                return index
        raise ParsingError(f"Element {self.name} not found among its siblings")

    # Local IDs link rows of repeat tables to their parent rows

    def _local_id_prefix(self, model, instance_id: str) -> str:
        if self.is_first_level_group() or self.parent is None:
            return instance_id
        return self.parent.current_local_id(model.parent(), instance_id)

    def current_local_id(self, model, instance_id: str) -> str:
        """Row ID for this element, e.g. "uuid:1234/group[2]/nested[1]".

        Args:
            model: Schema node describing this element
            instance_id: Instance ID of the submission
        """
        prefix = self._local_id_prefix(model, instance_id)
        if model is not None and model.is_repeatable():
            return f"{prefix}/{self.name}[{self.place_among_same_tag_siblings()}]"
        return prefix

    def parent_local_id(self, model, instance_id: str) -> str:
        """Row ID of the row this element's row belongs to."""
        return self._local_id_prefix(model, instance_id)

    def group_local_id(self, model, instance_id: str) -> str:
        """ID shared by all the instances of a repeat group in the same parent row."""
        return f"{self._local_id_prefix(model, instance_id)}/{self.name}"

    def __eq__(self, other) -> bool:
        return isinstance(other, XmlElement) and self.element is other.element

    def __hash__(self) -> int:
        return id(self.element)

    def __repr__(self) -> str:
        return f"<{self.name}>"
