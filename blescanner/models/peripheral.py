from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass(frozen=True)
class PeripheralHandle:
    """Adapter-supplied reference to a discovered peripheral.

    Two handles are the same peripheral when their identifiers match; the
    display name and the platform object are carried along but ignored for
    equality.
    """

    identifier: str
    name: Optional[str] = field(default=None, compare=False)
    native: Any = field(default=None, compare=False, repr=False)

    @property
    def display_name(self) -> str:
        return self.name or "(no name)"

    def to_dict(self) -> dict:
        return {"identifier": self.identifier, "name": self.name}
