from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class AddEntry(BaseModel):
    """One NDJSON line of a node add response."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: Optional[str] = Field(default=None, alias="Name")
    hash: str = Field(alias="Hash", min_length=1)
    size: Optional[Union[str, int]] = Field(default=None, alias="Size")


class PinCandidate(BaseModel):
    cid: str
    size: int = 0
    name: Optional[str] = None

    @classmethod
    def from_entry(cls, entry: AddEntry) -> "PinCandidate":
        try:
            size = int(entry.size) if entry.size is not None else 0
        except ValueError:
            size = 0
        return cls(cid=entry.hash, size=size, name=entry.name or None)


class PinRequest(BaseModel):
    apiKey: str
    pins: List[PinCandidate]

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)
