"""Base model for session and HTTP payloads.

Every wire model inherits from :class:`DubswitchModel` which provides:

* ``alias_generator=to_camel`` so snake_case fields are emitted as the
  camelCase keys the UI expects.
* ``to_wire()`` producing a JSON-ready dict with aliases applied.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class DubswitchModel(BaseModel):
    """Base for all dubswitch wire models."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)
