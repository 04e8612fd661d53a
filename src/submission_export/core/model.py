"""
Schema model of a form: the tree of fields and groups submissions follow.

Nodes live in a flat arena (``Schema.nodes``) and point to their parent by
index. ``Model`` is a lightweight view over one arena slot that answers the
naming questions the CSV export needs (FQNs, column names, repeat groups).
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, List, Optional, Tuple


class DataType(str, Enum):
    """Data types a form field can declare."""
    NULL = "NULL"  # groups
    TEXT = "TEXT"
    INTEGER = "INTEGER"
    DECIMAL = "DECIMAL"
    LONG = "LONG"
    BOOLEAN = "BOOLEAN"
    DATE = "DATE"
    TIME = "TIME"
    DATE_TIME = "DATE_TIME"
    CHOICE = "CHOICE"
    MULTIPLE_ITEMS = "MULTIPLE_ITEMS"
    GEOPOINT = "GEOPOINT"
    GEOTRACE = "GEOTRACE"
    GEOSHAPE = "GEOSHAPE"
    BINARY = "BINARY"
    BARCODE = "BARCODE"
    UNSUPPORTED = "UNSUPPORTED"


SPATIAL_DATA_TYPES = frozenset({DataType.GEOPOINT, DataType.GEOTRACE, DataType.GEOSHAPE})

GEOPOINT_SUFFIXES = ("Latitude", "Longitude", "Altitude", "Accuracy")


@dataclass(frozen=True)
class Choice:
    """One option of a select field."""
    value: str
    label: Optional[str] = None


@dataclass
class SchemaNode:
    """Arena slot holding one field or group."""
    name: str
    data_type: DataType
    parent: Optional[int]
    repeatable: bool = False
    children: List[int] = field(default_factory=list)
    choices: Tuple[Choice, ...] = ()


class Schema:
    """Arena of schema nodes. Slot 0 is the root of the main instance."""

    def __init__(self, root_name: str):
        self.nodes: List[SchemaNode] = [SchemaNode(root_name, DataType.NULL, None)]

    def add(
        self,
        parent: int,
        name: str,
        data_type: DataType = DataType.TEXT,
        repeatable: bool = False,
        choices: Tuple[Choice, ...] = (),
    ) -> int:
        """Append a node under ``parent`` and return its index."""
        if not 0 <= parent < len(self.nodes):
            raise IndexError(f"No schema node at index {parent}")
        index = len(self.nodes)
        self.nodes.append(SchemaNode(name, DataType(data_type), parent, repeatable, [], tuple(choices)))
        self.nodes[parent].children.append(index)
        return index

    def root(self) -> "Model":
        return Model(self, 0)

    def __len__(self) -> int:
        return len(self.nodes)


class Model:
    """View over one schema node."""

    __slots__ = ("schema", "index")

    def __init__(self, schema: Schema, index: int):
        self.schema = schema
        self.index = index

    @property
    def _node(self) -> SchemaNode:
        return self.schema.nodes[self.index]

    @property
    def name(self) -> str:
        return self._node.name

    @property
    def data_type(self) -> DataType:
        return self._node.data_type

    @property
    def choices(self) -> Tuple[Choice, ...]:
        return self._node.choices

    def parent(self) -> Optional["Model"]:
        parent = self._node.parent
        return None if parent is None else Model(self.schema, parent)

    def is_repeatable(self) -> bool:
        return self._node.repeatable

    def is_empty(self) -> bool:
        return not self._node.children

    def count_ancestors(self) -> int:
        count = 0
        current = self._node
        while current.parent is not None:
            count += 1
            current = self.schema.nodes[current.parent]
        return count

    def is_root(self) -> bool:
        return self.count_ancestors() == 0

    def is_choice_list(self) -> bool:
        return self.data_type == DataType.MULTIPLE_ITEMS and bool(self.choices)

    def is_meta_audit(self) -> bool:
        parent = self.parent()
        return self.name == "audit" and parent is not None and parent.name == "meta"

    # Naming

    def fqn(self, shift: int = 0) -> str:
        """Join the names from the first level below the root down to this node.

        Args:
            shift: Number of leading names to drop
        """
        names = []
        current = self._node
        while current.parent is not None:
            names.append(current.name)
            current = self.schema.nodes[current.parent]
        names.reverse()
        return "-".join(names[shift:])

    def names(
        self,
        shift: int = 0,
        split_select_multiples: bool = False,
        remove_group_names: bool = False,
    ) -> List[str]:
        """Column names this node contributes to a CSV header.

        Args:
            shift: Number of leading FQN segments to drop
            split_select_multiples: Add one column per choice of select multiple fields
            remove_group_names: Use the bare field name instead of its FQN

        Returns:
            List of column names
        """
        fqn = self.name if remove_group_names else self.fqn(shift)
        if self.data_type == DataType.GEOPOINT:
            return [f"{fqn}-{suffix}" for suffix in GEOPOINT_SUFFIXES]
        if self.data_type == DataType.NULL and self.is_repeatable():
            return [f"SET-OF-{fqn}"]
        if self.data_type == DataType.NULL and not self.is_empty():
            return [
                name
                for child in self.children()
                for name in child.names(shift, split_select_multiples, remove_group_names)
            ]
        if split_select_multiples and self.is_choice_list():
            return [fqn] + [f"{fqn}/{choice.value}" for choice in self.choices]
        return [fqn]

    # Traversal

    def children(self) -> List["Model"]:
        """Direct children, skipping any that would repeat an FQN already seen."""
        seen = set()
        children = []
        for index in self._node.children:
            child = Model(self.schema, index)
            child_fqn = child.fqn()
            if child_fqn not in seen:
                seen.add(child_fqn)
                children.append(child)
        return children

    def flatten(self) -> Iterator["Model"]:
        """Yield all descendants depth first, parents before their children."""
        for child in self.children():
            yield child
            yield from child.flatten()

    def repeatable_fields(self) -> List["Model"]:
        return [
            model for model in self.flatten()
            if model.data_type == DataType.NULL and model.is_repeatable()
        ]

    def has_repeatable_fields(self) -> bool:
        return bool(self.repeatable_fields())

    def has_audit_field(self) -> bool:
        return any(model.is_meta_audit() for model in self.flatten())

    def spatial_fields(self) -> List["Model"]:
        return [model for model in self.flatten() if model.data_type in SPATIAL_DATA_TYPES]

    def __eq__(self, other) -> bool:
        return (
            isinstance(other, Model)
            and other.schema is self.schema
            and other.index == self.index
        )

    def __hash__(self) -> int:
        return hash((id(self.schema), self.index))

    def __repr__(self) -> str:
        return f"Model({self.fqn() or self.name!r}, {self.data_type.value})"
