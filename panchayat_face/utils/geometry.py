import numpy as np


def point_distance(a, b):
    """
    Euclidean distance between two 2-D points.
    """
    return float(np.hypot(a[0] - b[0], a[1] - b[1]))


def eye_aspect_ratio(eye_points):
    """
    Compute Eye Aspect Ratio (EAR).

    eye_points are ordered [outer, top1, top2, inner, bottom2, bottom1].
    Returns None when the eye corners coincide.
    """
    A = point_distance(eye_points[1], eye_points[5])
    B = point_distance(eye_points[2], eye_points[4])
    C = point_distance(eye_points[0], eye_points[3])
    if C <= 1e-9:
        return None
    return (A + B) / (2.0 * C)


def displacements(current, previous):
    """
    Per-point Euclidean displacement between two (N, 2) arrays.
    """
    current = np.asarray(current, dtype=float)
    previous = np.asarray(previous, dtype=float)
    return np.linalg.norm(current - previous, axis=1)
