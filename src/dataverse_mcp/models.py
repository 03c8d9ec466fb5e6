# Dataverse FetchXML MCP Server
# File: models.py
# Version: v1

"""Domain models used by the Dataverse FetchXML MCP server."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Union

# Closed set of typed values a row attribute can hold.
ScalarValue = Union[int, float, str, bool, None]

ROW_NUMBER_ATTRIBUTE = "__rownum"


@dataclass
class Row:
    """One record returned by a FetchXML query.

    ``attributes`` maps attribute logical names to typed scalar values.
    Rows produced by a retrieval also carry the synthetic ``__rownum``
    attribute (1-based, continuous across pages).
    """

    attributes: Dict[str, ScalarValue] = field(default_factory=dict)

    def __getitem__(self, name: str) -> ScalarValue:
        return self.attributes[name]

    def __contains__(self, name: object) -> bool:
        return name in self.attributes

    def __iter__(self) -> Iterator[str]:
        return iter(self.attributes)

    def __len__(self) -> int:
        return len(self.attributes)

    def get(self, name: str, default: ScalarValue = None) -> ScalarValue:
        return self.attributes.get(name, default)

    @property
    def row_number(self) -> Optional[int]:
        value = self.attributes.get(ROW_NUMBER_ATTRIBUTE)
        return value if isinstance(value, int) else None

    def to_dict(self) -> Dict[str, ScalarValue]:
        return dict(self.attributes)


@dataclass
class PageResult:
    """Decoded content of a single response page."""

    rows: List[Row]
    count: int
    more_records: bool = False

    # Paging cookie for the next page, already URL-decoded twice.
    cursor: Optional[str] = None


@dataclass
class EntityDefinition:
    """Table metadata as returned by the EntityDefinitions endpoint."""

    logical_name: str
    schema_name: str
    entity_set_name: str
    is_custom_entity: bool = False
    primary_id_attribute: Optional[str] = None
    display_name: Optional[str] = None

    # Raw JSON payload from the API, for debugging / advanced use.
    raw: Optional[Dict[str, Any]] = None

    @classmethod
    def from_api(cls, item: Dict[str, Any]) -> "EntityDefinition":
        return cls(
            logical_name=str(item.get("LogicalName") or ""),
            schema_name=str(item.get("SchemaName") or ""),
            entity_set_name=str(item.get("EntitySetName") or ""),
            is_custom_entity=bool(item.get("IsCustomEntity", False)),
            primary_id_attribute=item.get("PrimaryIdAttribute"),
            display_name=_localized_label(item.get("DisplayName")),
            raw=item,
        )


@dataclass
class EntityAttribute:
    """Column metadata for a single table attribute."""

    logical_name: str
    schema_name: str
    attribute_type: Optional[str] = None
    is_custom_attribute: Optional[bool] = None
    is_valid_odata_attribute: Optional[bool] = None
    is_valid_for_read: Optional[bool] = None
    is_valid_for_update: Optional[bool] = None

    raw: Optional[Dict[str, Any]] = None

    @classmethod
    def from_api(cls, item: Dict[str, Any]) -> "EntityAttribute":
        return cls(
            logical_name=str(item.get("LogicalName") or ""),
            schema_name=str(item.get("SchemaName") or ""),
            attribute_type=item.get("AttributeType"),
            is_custom_attribute=item.get("IsCustomAttribute"),
            is_valid_odata_attribute=item.get("IsValidODataAttribute"),
            is_valid_for_read=item.get("IsValidForRead"),
            is_valid_for_update=item.get("IsValidForUpdate"),
            raw=item,
        )


def _localized_label(label: Any) -> Optional[str]:
    """Pick the user-localized text out of a Dataverse Label complex value."""
    if isinstance(label, str):
        return label
    if not isinstance(label, dict):
        return None

    user_label = label.get("UserLocalizedLabel")
    if isinstance(user_label, dict) and user_label.get("Label"):
        return str(user_label["Label"])

    for localized in label.get("LocalizedLabels") or []:
        if isinstance(localized, dict) and localized.get("Label"):
            return str(localized["Label"])

    return None
