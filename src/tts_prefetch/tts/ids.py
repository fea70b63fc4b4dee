"""
Content IDs.

A content ID names one piece of speakable text and encodes when it will
be consumed. It has two layers:

    [speed=125;isMale=true]intro.1.4.2_3
    └──── accessibility ───┘└─ identity ─┘

Identity layer: ``[tag.]scenario.mission.order[.suborder...][_chunk]``
    - ``tag`` is optional free text (no ``.``); it is recognised by not
      being an integer.
    - The integer components form the order tuple that drives
      prefetch ordering.
    - ``_N`` (1-based) marks chunk N of the cluster named by everything
      before the underscore.

Accessibility layer: ``[speed=<int>;isMale=<true|false>]``, gender clause
omitted when unspecified. It can be stripped and reapplied without
loss; two IDs that differ only here name the same content rendered
differently.

Parsing is cached per ID string, so repeated comparisons in the
sequencer stay cheap.

Example:
    >>> cid = parse_content_id("[speed=100]intro.1.4.2_3")
    >>> cid.tag, cid.order, cid.chunk_index
    ('intro', (1, 4, 2), 3)
    >>> remove_accessibility_markers(apply_accessibility_markers("1.2.3", 150, False))
    '1.2.3'
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional, Tuple

from tts_prefetch.core.config import Defaults
from tts_prefetch.core.errors import MalformedIdentityError
from tts_prefetch.core.logging import error, get_logger
from tts_prefetch.tts.accessibility import AccessibilitySettings

_LOG = get_logger("tts-prefetch.ids")

CHUNK_SEPARATOR = "_"
ORDER_SEPARATOR = "."
# scenario.mission.order
MIN_ORDER_COMPONENTS = 3

_MARKERS_RE = re.compile(r"\[.+\]")
_SPEED_RE = re.compile(r"speed=([0-9.]+)")
_GENDER_RE = re.compile(r"isMale=([A-Za-z]+)", re.IGNORECASE)
_COMPONENT_RE = re.compile(r"[._]")
_INT_RE = re.compile(r"\d+")


@dataclass(frozen=True)
class ContentID:
    """
    Parsed content ID.

    Attributes:
        raw: The full ID string as given.
        speed: Speed from the accessibility layer (default speed if absent).
        is_male: Gender from the accessibility layer, None if unspecified.
        tag: Optional free-form prefix ("" if absent).
        order: Integer order tuple, e.g. (scenario, mission, order, ...).
        chunk_index: 1-based chunk index, None for whole content.
    """
    raw: str
    speed: int
    is_male: Optional[bool]
    tag: str
    order: Tuple[int, ...]
    chunk_index: Optional[int]

    @property
    def base_id(self) -> str:
        """Identity layer only."""
        return remove_accessibility_markers(self.raw)

    @property
    def cluster_id(self) -> Optional[str]:
        """ID of the owning cluster (markers kept), None for whole content."""
        return cluster_id_of(self.raw)

    @property
    def sort_key(self) -> Tuple:
        """
        Ordering key: speed, order tuple, tag, chunk index, gender.

        Tuple comparison puts a strict prefix first, which is the wanted
        order for order tuples. Unspecified gender ranks before False,
        which ranks before True.
        """
        gender_rank = 0 if self.is_male is None else (2 if self.is_male else 1)
        return (self.speed, self.order, self.tag, self.chunk_index or 0, gender_rank)


def has_accessibility_markers(content_id: str) -> bool:
    return bool(content_id) and _MARKERS_RE.search(content_id) is not None


def remove_accessibility_markers(content_id: str) -> str:
    """Strip everything up to and including the first ``]``."""
    end = content_id.find("]")
    if end < 0:
        return content_id
    return content_id[end + 1:]


def apply_accessibility_markers(content_id: str, speed: int, is_male: Optional[bool] = None) -> str:
    """
    Prefix ``content_id`` with an accessibility layer.

    An existing layer is replaced, never nested.
    """
    base = remove_accessibility_markers(content_id)
    if is_male is None:
        return f"[speed={int(speed)}]{base}"
    return f"[speed={int(speed)};isMale={'true' if is_male else 'false'}]{base}"


def get_speed(content_id: str, default: int = Defaults.ACCESSIBILITY_SPEED) -> int:
    """Speed from the accessibility layer, ``default`` if absent or unreadable."""
    match = _SPEED_RE.search(_marker_section(content_id))
    if not match:
        return default
    try:
        return int(float(match.group(1)))
    except ValueError:
        error(_LOG, "speed_marker_invalid", clip_id=content_id, value=match.group(1))
        return default


def get_gender(content_id: str) -> Optional[bool]:
    """Gender from the accessibility layer, None if unspecified or unreadable."""
    match = _GENDER_RE.search(_marker_section(content_id))
    if not match:
        return None
    value = match.group(1).lower()
    if value == "true":
        return True
    if value == "false":
        return False
    error(_LOG, "gender_marker_invalid", clip_id=content_id, value=match.group(1))
    return None


def extract_accessibility_settings(content_id: str) -> AccessibilitySettings:
    """Settings encoded in an ID; gender stays None when the ID has none."""
    return AccessibilitySettings(speed=get_speed(content_id), is_male=get_gender(content_id))


def _marker_section(content_id: str) -> str:
    if not content_id or not content_id.startswith("["):
        return ""
    end = content_id.find("]")
    return content_id[:end + 1] if end >= 0 else ""


def is_chunk_id(content_id: str) -> bool:
    return CHUNK_SEPARATOR in remove_accessibility_markers(content_id)


def cluster_id_of(content_id: str) -> Optional[str]:
    """``[m]a.1.2_3`` -> ``[m]a.1.2``; None when the ID is not a chunk."""
    if not is_chunk_id(content_id):
        return None
    return content_id.rsplit(CHUNK_SEPARATOR, 1)[0]


def chunk_index_of(content_id: str) -> Optional[int]:
    if not is_chunk_id(content_id):
        return None
    suffix = content_id.rsplit(CHUNK_SEPARATOR, 1)[1]
    return int(suffix) if _INT_RE.fullmatch(suffix) else None


def chunk_id(cluster_id: str, index: int) -> str:
    """ID of the ``index``-th (1-based) chunk of ``cluster_id``."""
    return f"{cluster_id}{CHUNK_SEPARATOR}{index}"


def validate_identity(base_id: str, allow_chunk: bool = False) -> None:
    """
    Check the reserved-character rules of an identity layer.

    Raises:
        MalformedIdentityError: ``[``/``]`` in the identity layer, or a
            chunk suffix where whole content was expected.
    """
    if not base_id:
        raise MalformedIdentityError("content id is empty")
    if "[" in base_id or "]" in base_id:
        raise MalformedIdentityError(
            f"reserved character in identity layer: {base_id!r}",
            details={"id": base_id},
        )
    if not allow_chunk and CHUNK_SEPARATOR in base_id:
        raise MalformedIdentityError(
            f"chunk suffix is reserved for segmented content: {base_id!r}",
            details={"id": base_id},
        )


@lru_cache(maxsize=8192)
def parse_content_id(content_id: str) -> ContentID:
    """
    Parse a full content ID (accessibility layer optional).

    Raises:
        MalformedIdentityError: If an order component or the chunk suffix
            is not a non-negative integer, fewer than three order
            components are given, or the ID has more than one chunk suffix.
    """
    base = remove_accessibility_markers(content_id)
    if base.count(CHUNK_SEPARATOR) > 1:
        raise MalformedIdentityError(
            f"more than one chunk suffix in {content_id!r}", details={"id": content_id}
        )

    chunk_index: Optional[int] = None
    identity = base
    if CHUNK_SEPARATOR in base:
        identity, suffix = base.split(CHUNK_SEPARATOR, 1)
        if not _INT_RE.fullmatch(suffix) or int(suffix) < 1:
            raise MalformedIdentityError(
                f"chunk index must be a positive integer in {content_id!r}",
                details={"id": content_id, "component": suffix},
            )
        chunk_index = int(suffix)

    tag = ""
    order = []
    for i, component in enumerate(identity.split(ORDER_SEPARATOR)):
        if _INT_RE.fullmatch(component):
            order.append(int(component))
        elif i == 0:
            tag = component
        else:
            raise MalformedIdentityError(
                f"non-integer order component {component!r} in {content_id!r}",
                details={"id": content_id, "component": component},
            )

    if len(order) < MIN_ORDER_COMPONENTS:
        raise MalformedIdentityError(
            f"expected scenario.mission.order in {content_id!r}",
            details={"id": content_id, "components": len(order)},
        )

    return ContentID(
        raw=content_id,
        speed=get_speed(content_id),
        is_male=get_gender(content_id),
        tag=tag,
        order=tuple(order),
        chunk_index=chunk_index,
    )


def compare_ids(a: str, b: str) -> int:
    """Three-way comparison of two content IDs under the prefetch order."""
    ka = parse_content_id(a).sort_key
    kb = parse_content_id(b).sort_key
    return (ka > kb) - (ka < kb)
