"""Classification of user-patch values into input families."""

from __future__ import annotations

import enum

from dubswitch._constants import AES50A_RANGE, AES50B_RANGE, DAW_RANGE, LOCAL_RANGE
from dubswitch.models._base import DubswitchModel


class SourceKind(enum.StrEnum):
    LOCAL = "Local"
    AES50A = "AES50A"
    AES50B = "AES50B"
    DAW = "DAW"
    OTHER = "Other"


_KIND_RANGES: tuple[tuple[SourceKind, range], ...] = (
    (SourceKind.LOCAL, LOCAL_RANGE),
    (SourceKind.AES50A, AES50A_RANGE),
    (SourceKind.AES50B, AES50B_RANGE),
    (SourceKind.DAW, DAW_RANGE),
)


class PatchSource(DubswitchModel):
    """One user-patch slot as reported by ``/enumerate-sources``."""

    value: int | None = None
    kind: SourceKind = SourceKind.OTHER
    label: str = ""


def classify_patch(value: int | None) -> PatchSource:
    """Map a raw patch value to its family and a 1-based label.

    ``40`` is the 8th AES50A input, so it is labelled ``AES50A(8)``.
    Values outside every known range (including a missing reply) are
    ``Other``.
    """
    if value is None:
        return PatchSource(value=None, kind=SourceKind.OTHER, label="Other")
    for kind, span in _KIND_RANGES:
        if value in span:
            return PatchSource(value=value, kind=kind, label=f"{kind.value}({value - span.start + 1})")
    return PatchSource(value=value, kind=SourceKind.OTHER, label=f"Other({value})")
