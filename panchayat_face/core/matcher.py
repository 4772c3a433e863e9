import math
from typing import Iterable, NamedTuple, Optional, Sequence, Tuple

import numpy as np

from panchayat_face.config.settings import MATCH_POLICY, MATCH_THRESHOLD

FIRST_MATCH = "first"
NEAREST_MATCH = "nearest"


class MatchResult(NamedTuple):
    identity_id: str
    distance: float


def _as_vector(descriptor) -> Optional[np.ndarray]:
    if descriptor is None:
        return None
    try:
        vector = np.asarray(descriptor, dtype=float)
    except (TypeError, ValueError):
        return None
    if vector.ndim != 1 or vector.size == 0:
        return None
    return vector


def face_distance(descriptor1, descriptor2) -> float:
    """
    Euclidean distance between two face descriptors.

    Returns math.inf when either descriptor is missing, empty, not numeric
    or the lengths differ, so a degenerate descriptor never matches.
    """
    a = _as_vector(descriptor1)
    b = _as_vector(descriptor2)
    if a is None or b is None or a.shape != b.shape:
        return math.inf
    return float(np.sqrt(np.sum((a - b) ** 2)))


def find_match(probe: Sequence[float],
               candidates: Iterable[Tuple[str, Sequence[float]]],
               threshold: float = MATCH_THRESHOLD,
               policy: str = MATCH_POLICY) -> Optional[MatchResult]:
    """
    Match a probe descriptor against (identity_id, descriptor) candidates.

    With the "first" policy the first candidate strictly under the
    threshold wins and scanning stops. "nearest" scans every candidate and
    returns the closest one under the threshold.
    Candidates must already be limited to a single panchayat.
    """
    if policy not in (FIRST_MATCH, NEAREST_MATCH):
        raise ValueError(f"Unknown match policy: {policy}")

    best = None
    for identity_id, descriptor in candidates:
        distance = face_distance(probe, descriptor)
        if distance < threshold:
            if policy == FIRST_MATCH:
                return MatchResult(identity_id, distance)
            if best is None or distance < best.distance:
                best = MatchResult(identity_id, distance)
    return best
