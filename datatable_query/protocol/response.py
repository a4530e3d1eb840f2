"""Outbound paged-table response envelope."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class ResponseEnvelope:
    """``{draw, recordsTotal, recordsFiltered, data}`` plus an optional error."""

    draw: int
    records_total: int
    records_filtered: int
    data: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[str] = None

    @classmethod
    def empty(cls, draw: int = 0, error: Optional[str] = None) -> "ResponseEnvelope":
        """Zero-count envelope, optionally carrying a generic error message."""
        return cls(draw=draw, records_total=0, records_filtered=0, data=[], error=error)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "draw": self.draw,
            "recordsTotal": self.records_total,
            "recordsFiltered": self.records_filtered,
            "data": self.data,
        }
        if self.error:
            payload["error"] = self.error
        return payload
