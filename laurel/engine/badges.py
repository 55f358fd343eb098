"""
laurel.engine.badges — Badge Reference Normalization
=====================================================

Badge links arrive in several shapes: a raw id (``int`` / ``UUID``), a
string, a mapping such as ``{"id": ...}`` / ``{"_id": ...}``, or a record
object with an ``id`` attribute.  :func:`normalize_badge_ref` turns any of
them into a single ``str`` id (or ``None``) once, at the data-access
boundary, so nothing downstream re-inspects the shape.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping
from typing import Any

logger = logging.getLogger(__name__)

_ID_KEYS = ("id", "_id", "badge_id", "badgeId")


def normalize_badge_ref(ref: Any) -> str | None:
    """Return the badge id carried by *ref*, or ``None`` if unresolvable."""
    if ref is None or isinstance(ref, bool):
        return None

    if isinstance(ref, str):
        ref = ref.strip()
        return ref or None

    if isinstance(ref, int):
        return str(ref)

    if isinstance(ref, float):
        if not math.isfinite(ref):
            logger.debug("Non-finite badge id %r", ref)
            return None
        return str(int(ref))

    if isinstance(ref, Mapping):
        for key in _ID_KEYS:
            if key in ref:
                return normalize_badge_ref(ref[key])
        logger.debug("Badge mapping without an id key: %r", ref)
        return None

    for attr in _ID_KEYS:
        value = getattr(ref, attr, None)
        if value is not None:
            return normalize_badge_ref(value)

    # uuid.UUID, bson ObjectId and similar render their id via str()
    if hasattr(ref, "hex") or type(ref).__name__ == "ObjectId":
        return str(ref)

    logger.debug("Unable to extract badge id from %r", ref)
    return None
