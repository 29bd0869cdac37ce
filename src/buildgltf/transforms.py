"""Coordinate conversion between the host scene convention and glTF.

Hosts hand us right-handed, Z-up geometry in their own length unit (feet for the
BIM tools this exporter was first written for).  glTF is right-handed, Y-up and in
metres.  Everything that crosses that boundary goes through
:class:`CoordinateTransform` so points, directions and node matrices always agree.

Host matrices are plain 4x4 numpy arrays acting on column vectors
(``M @ [x, y, z, 1]``): the basis vectors live in the first three columns and the
origin in the last one.  glTF stores matrices column-major, so the 16 floats we
emit are ``M.T.flatten()``.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Iterable, List, Sequence

import numpy as np

log = logging.getLogger(__name__)

FEET_TO_METERS = 0.3048

# Z-up -> Y-up: (x, y, z) -> (x, z, -y)
_AXIS_SWAP = np.array(
    [
        [1.0, 0.0, 0.0],
        [0.0, 0.0, 1.0],
        [0.0, -1.0, 0.0],
    ],
    dtype=float,
)

IDENTITY = np.eye(4, dtype=float)


# ---------------- Matrix helpers ----------------

def as_matrix(value: Any) -> np.ndarray:
    """Return a 4x4 float matrix from a 4x4 array or 16 row-major values."""
    if value is None:
        return IDENTITY.copy()
    arr = np.array(value, dtype=float)
    if arr.shape == (4, 4):
        return arr
    if arr.size == 16:
        return arr.reshape(4, 4)
    if arr.shape == (3, 4):
        # 3x4 affine without the projective row
        out = IDENTITY.copy()
        out[:3, :] = arr
        return out
    raise ValueError(f"Invalid matrix data: {value!r}")


def is_identity(matrix: Any, atol: float = 1e-9) -> bool:
    """True when ``matrix`` is the 4x4 identity within ``atol``."""
    try:
        arr = as_matrix(matrix)
    except ValueError:
        return False
    return bool(np.allclose(arr, IDENTITY, atol=atol))


def to_column_major(matrix: np.ndarray) -> List[float]:
    """Flatten a 4x4 matrix into the 16 column-major floats glTF expects."""
    return [float(v) for v in np.asarray(matrix, dtype=np.float32).T.flatten()]


def make_quaternion(u: Sequence[float], v: Sequence[float]) -> List[float]:
    """Quaternion ``[x, y, z, w]`` of the rotation whose columns are u, v, u x v.

    ``u`` and ``v`` must be orthonormal.  Uses the trace branch when it is well
    conditioned and otherwise the largest diagonal term, then renormalises.
    """
    u = np.asarray(u, dtype=float)
    v = np.asarray(v, dtype=float)
    n = np.cross(u, v)
    tr = 1.0 + u[0] + v[1] + n[2]
    if tr > 1e-4:
        s = 2.0 * math.sqrt(tr)
        w = s / 4.0
        x = (v[2] - n[1]) / s
        y = (n[0] - u[2]) / s
        z = (u[1] - v[0]) / s
    elif u[0] > v[1] and u[0] > n[2]:
        s = 2.0 * math.sqrt(1.0 + u[0] - v[1] - n[2])
        w = (v[2] - n[1]) / s
        x = s / 4.0
        y = (u[1] + v[0]) / s
        z = (n[0] + u[2]) / s
    elif v[1] > n[2]:
        s = 2.0 * math.sqrt(1.0 - u[0] + v[1] - n[2])
        w = (n[0] - u[2]) / s
        x = (u[1] + v[0]) / s
        y = s / 4.0
        z = (v[2] + n[1]) / s
    else:
        s = 2.0 * math.sqrt(1.0 - u[0] - v[1] + n[2])
        w = (u[1] - v[0]) / s
        x = (n[0] + u[2]) / s
        y = (v[2] + n[1]) / s
        z = s / 4.0
    magnitude = math.sqrt(w * w + x * x + y * y + z * z)
    scale = 1.0 / magnitude
    return [float(x * scale), float(y * scale), float(z * scale), float(w * scale)]


def _normalized(vec: Iterable[float]) -> np.ndarray:
    arr = np.asarray(list(vec), dtype=float)
    length = float(np.linalg.norm(arr))
    if length <= 1e-12:
        raise ValueError("Cannot normalise a zero-length vector")
    return arr / length


# ---------------- Host -> glTF conversion ----------------

@dataclass(frozen=True)
class CoordinateTransform:
    """Map host Z-up coordinates in host units onto glTF Y-up metres.

    With ``bake=True`` (the default) positions are converted as they arrive and
    the root node stays untransformed.  With ``bake=False`` geometry and instance
    matrices are kept in host space and the root node carries
    :meth:`conversion_matrix` instead.
    """

    unit_scale: float = FEET_TO_METERS
    bake: bool = True

    def __post_init__(self) -> None:
        if not self.unit_scale or self.unit_scale <= 0.0:
            raise ValueError(f"unit_scale must be positive, got {self.unit_scale}")

    @property
    def _linear(self) -> np.ndarray:
        return _AXIS_SWAP * float(self.unit_scale)

    def conversion(self) -> np.ndarray:
        """4x4 matrix taking host coordinates to glTF coordinates."""
        out = IDENTITY.copy()
        out[:3, :3] = self._linear
        return out

    def conversion_matrix(self) -> List[float]:
        return to_column_major(self.conversion())

    def point(self, xyz: Sequence[float]) -> tuple[float, float, float]:
        x, y, z = (float(c) for c in xyz)
        if not self.bake:
            return (x, y, z)
        s = float(self.unit_scale)
        return (x * s, z * s, -y * s)

    def points(self, values: Any) -> np.ndarray:
        """Convert an ``(N, 3)`` array of host points into float32 glTF points."""
        arr = np.asarray(values, dtype=float).reshape(-1, 3)
        if not self.bake:
            return arr.astype(np.float32)
        return (arr @ self._linear.T).astype(np.float32)

    def directions(self, values: Any) -> np.ndarray:
        """Convert direction vectors (normals); axis swap only, no unit scale."""
        arr = np.asarray(values, dtype=float).reshape(-1, 3)
        if not self.bake:
            return arr.astype(np.float32)
        return (arr @ _AXIS_SWAP.T).astype(np.float32)

    def matrix(self, transform: Any) -> List[float]:
        """Host 4x4 transform -> glTF column-major node matrix."""
        host = as_matrix(transform)
        if not self.bake:
            return to_column_major(host)
        conv = self.conversion()
        return to_column_major(conv @ host @ np.linalg.inv(conv))

    def camera_rotation(self, forward: Sequence[float], up: Sequence[float]) -> List[float]:
        """Rotation quaternion of a glTF camera looking along ``forward``.

        glTF cameras look down -Z with +Y up, so the rotation's columns are
        ``(forward x up, up, -forward)`` expressed in glTF space.
        """
        fwd = _normalized(self.directions([forward])[0])
        upv = _normalized(self.directions([up])[0])
        right = np.cross(fwd, upv)
        return make_quaternion(right, upv)


__all__ = [
    "FEET_TO_METERS",
    "IDENTITY",
    "CoordinateTransform",
    "as_matrix",
    "is_identity",
    "make_quaternion",
    "to_column_major",
]
