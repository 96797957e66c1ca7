"""
Search collection schemas, one per document kind.

Collection names are supplied at runtime from ProcessorConfig; the field
layout here is fixed.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from .events import DocumentKind


@dataclass(frozen=True)
class FieldSpec:
    """A single indexed field."""
    name: str
    type: str
    facet: bool = False
    index: bool = True
    optional: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data = {"name": self.name, "type": self.type, "facet": self.facet, "index": self.index}
        if self.optional:
            data["optional"] = True
        return data


@dataclass(frozen=True)
class CollectionSchema:
    """Field layout and default sort order of a search collection."""
    kind: DocumentKind
    fields: List[FieldSpec] = field(default_factory=list)
    default_sorting_field: Optional[str] = None

    def to_dict(self, name: str) -> Dict[str, Any]:
        """Render the create-collection request body for ``name``."""
        data: Dict[str, Any] = {
            "name": name,
            "fields": [spec.to_dict() for spec in self.fields],
        }
        if self.default_sorting_field:
            data["default_sorting_field"] = self.default_sorting_field
        return data


def _base_fields() -> List[FieldSpec]:
    return [
        FieldSpec("id", "string"),
        FieldSpec("document_type", "string", facet=True),
    ]


SOFTWARE_STACK_SCHEMA = CollectionSchema(
    kind=DocumentKind.SOFTWARE_STACK,
    fields=_base_fields() + [
        FieldSpec("name", "string"),
        FieldSpec("category", "string", facet=True),
        FieldSpec("description", "string", optional=True),
        FieldSpec("tags", "string[]", facet=True, optional=True),
        FieldSpec("popularity_score", "int32"),
    ],
    default_sorting_field="popularity_score",
)

CLAIMS_SCHEMA = CollectionSchema(
    kind=DocumentKind.CLAIMS,
    fields=_base_fields() + [
        FieldSpec("claimId", "string"),
        FieldSpec("claimNumber", "string", optional=True),
        FieldSpec("claimType", "string", facet=True, optional=True),
        FieldSpec("claimStatus", "string", facet=True, optional=True),
        FieldSpec("claimStatusGroup", "string", facet=True, optional=True),
        FieldSpec("referenceNumber", "string", optional=True),
        FieldSpec("serviceProviderId", "string", facet=True, optional=True),
        FieldSpec("serviceProviderCountry", "string", facet=True, optional=True),
        FieldSpec("consumerName", "string", optional=True),
        FieldSpec("consumerPostalCode", "string", optional=True),
        FieldSpec("serialNumber", "string", optional=True),
        FieldSpec("warrantyType", "string", facet=True, optional=True),
        FieldSpec("amountRequested", "float", optional=True),
        FieldSpec("amountApproved", "float", optional=True),
        FieldSpec("dateAdded", "int64", optional=True),
        FieldSpec("lastModifiedDate", "string", optional=True),
        FieldSpec("created_at", "int64"),
    ],
    default_sorting_field="created_at",
)

LOCATIONS_SCHEMA = CollectionSchema(
    kind=DocumentKind.LOCATIONS,
    fields=_base_fields() + [
        FieldSpec("countryId", "string", facet=True, optional=True),
        FieldSpec("postalCodeGroup", "string", facet=True, optional=True),
        FieldSpec("postalCode", "string", optional=True),
        FieldSpec("provinceId", "string", facet=True, optional=True),
        FieldSpec("location", "geopoint", optional=True),
        FieldSpec("postalCodeCenterPoint", "string", index=False, optional=True),
        FieldSpec("lastModifiedDate", "string", optional=True),
        FieldSpec("created_at", "int64"),
    ],
    default_sorting_field="created_at",
)

COLLECTION_SCHEMAS: Mapping[DocumentKind, CollectionSchema] = {
    DocumentKind.SOFTWARE_STACK: SOFTWARE_STACK_SCHEMA,
    DocumentKind.CLAIMS: CLAIMS_SCHEMA,
    DocumentKind.LOCATIONS: LOCATIONS_SCHEMA,
}
