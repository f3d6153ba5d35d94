from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

DEFAULT_LOCATION = "Laval, QC"


def _clean(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


@dataclass(frozen=True)
class ListingCriteria:
    """Search filters for one request. Empty strings mean "no filter"."""

    location: str = DEFAULT_LOCATION
    price_min: str = ""
    price_max: str = ""
    beds: str = ""
    baths: str = ""
    property_type: str = ""
    keywords: str = ""

    @classmethod
    def from_variables(cls, variables: Optional[Mapping[str, Any]], input_text: str = "") -> "ListingCriteria":
        variables = variables or {}
        return cls(
            location=_clean(variables.get("location")) or DEFAULT_LOCATION,
            price_min=_clean(variables.get("priceMin")),
            price_max=_clean(variables.get("priceMax")),
            beds=_clean(variables.get("beds")),
            baths=_clean(variables.get("baths")),
            property_type=_clean(variables.get("type")),
            keywords=_clean(variables.get("keywords")) or _clean(input_text),
        )

    def summary_lines(self):
        lines = []
        if self.location:
            lines.append(f"• Location: {self.location}")
        if self.property_type:
            lines.append(f"• Property type: {self.property_type}")
        if self.price_min or self.price_max:
            lines.append(f"• Budget: {self.price_min or 'Any'} - {self.price_max or 'Any'} CAD")
        if self.beds:
            lines.append(f"• Bedrooms: {self.beds}+")
        if self.baths:
            lines.append(f"• Bathrooms: {self.baths}+")
        if self.keywords:
            lines.append(f"• Keywords: {self.keywords}")
        return lines

    def to_dict(self) -> Dict[str, str]:
        return {
            "location": self.location,
            "priceMin": self.price_min,
            "priceMax": self.price_max,
            "beds": self.beds,
            "baths": self.baths,
            "type": self.property_type,
            "keywords": self.keywords,
        }
