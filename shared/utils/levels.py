"""
shared/utils/levels.py
Total order over class levels, used by tutor eligibility:
SECONDE (2nde) < PREMIERE (1ère) < TERMINALE.
"""

import logging
from typing import Union

from shared.models.models import ClassLevel

logger = logging.getLogger(__name__)

LEVEL_RANK = {
    ClassLevel.SECONDE: 1,
    ClassLevel.PREMIERE: 2,
    ClassLevel.TERMINALE: 3,
}

# Labels used on the wire and in the UI
LEVEL_LABELS = {
    ClassLevel.SECONDE: "2nde",
    ClassLevel.PREMIERE: "1ère",
    ClassLevel.TERMINALE: "Terminale",
}


def parse_class_level(value: Union[ClassLevel, str, None]) -> ClassLevel:
    """
    Decode a class level from its stored name ("PREMIERE") or its label ("1ère").

    Unrecognised input is not an error: it decodes to SECONDE, the most
    junior level, so an unknown requested level matches every tutor and an
    unknown tutor level only ever satisfies SECONDE requests.
    """
    if isinstance(value, ClassLevel):
        return value
    if value in ("SECONDE", "2nde"):
        return ClassLevel.SECONDE
    elif value in ("PREMIERE", "1ère"):
        return ClassLevel.PREMIERE
    elif value in ("TERMINALE", "Terminale"):
        return ClassLevel.TERMINALE
    else:
        logger.debug(f"Unknown class level {value!r}, defaulting to SECONDE")
        return ClassLevel.SECONDE


def rank(level: Union[ClassLevel, str, None]) -> int:
    return LEVEL_RANK[parse_class_level(level)]


def level_label(level: Union[ClassLevel, str, None]) -> str:
    return LEVEL_LABELS[parse_class_level(level)]


def is_senior_or_equal(tutor_level, requested_level) -> bool:
    """True if a tutor at tutor_level may help with requested_level."""
    return rank(tutor_level) >= rank(requested_level)
