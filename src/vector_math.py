"""
3D vector and 4x4 homogeneous transform primitives.

Vectors are small immutable values. Transforms wrap a row-major 4x4 matrix
(column-vector convention, p' = M @ [x, y, z, 1]) and use trimesh's
transformation helpers for construction and inversion.
"""
import math
from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple

import numpy as np
from trimesh import transformations as tf

# Differences below this are treated as zero in geometric comparisons.
EPSILON = 1e-9


@dataclass(frozen=True)
class Vector:
    """Immutable 3D vector.

    The zero vector is a valid value meaning "undefined direction"; it is
    what ``normalize`` returns for vectors too short to normalize.
    """
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    @classmethod
    def from_array(cls, values) -> "Vector":
        arr = np.asarray(values, dtype=float).reshape(-1)
        if arr.shape[0] != 3:
            raise ValueError(f"Expected 3 components, got {arr.shape[0]}")
        return cls(float(arr[0]), float(arr[1]), float(arr[2]))

    def as_array(self) -> np.ndarray:
        return np.array([self.x, self.y, self.z], dtype=float)

    def is_zero(self, eps: float = EPSILON) -> bool:
        return magnitude(self) < eps

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y, "z": self.z}

    def __add__(self, other: "Vector") -> "Vector":
        return add(self, other)

    def __sub__(self, other: "Vector") -> "Vector":
        return subtract(self, other)

    def __mul__(self, scalar: float) -> "Vector":
        return Vector(self.x * scalar, self.y * scalar, self.z * scalar)

    __rmul__ = __mul__

    def __neg__(self) -> "Vector":
        return Vector(-self.x, -self.y, -self.z)


ZERO = Vector()


def dot(a: Vector, b: Vector) -> float:
    return a.x * b.x + a.y * b.y + a.z * b.z


def cross(a: Vector, b: Vector) -> Vector:
    return Vector(
        a.y * b.z - a.z * b.y,
        a.z * b.x - a.x * b.z,
        a.x * b.y - a.y * b.x,
    )


def magnitude(v: Vector) -> float:
    return math.sqrt(v.x * v.x + v.y * v.y + v.z * v.z)


def normalize(v: Vector, eps: float = EPSILON) -> Vector:
    """Unit vector along ``v``, or the zero vector if ``|v| < eps``."""
    mag = magnitude(v)
    if mag < eps:
        return ZERO
    return Vector(v.x / mag, v.y / mag, v.z / mag)


def add(a: Vector, b: Vector) -> Vector:
    return Vector(a.x + b.x, a.y + b.y, a.z + b.z)


def subtract(a: Vector, b: Vector) -> Vector:
    return Vector(a.x - b.x, a.y - b.y, a.z - b.z)


def distance(a: Vector, b: Vector) -> float:
    return magnitude(subtract(a, b))


def plane_basis(normal: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Build an orthonormal (u, v) basis perpendicular to ``normal``.

    ``(u, v, normal)`` is right-handed.
    """
    n = np.asarray(normal, dtype=float)
    norm = np.linalg.norm(n)
    if norm < EPSILON:
        raise ValueError("Cannot build a plane basis from a zero normal")
    n = n / norm
    if abs(n[2]) < 0.9:
        ref = np.array([0.0, 0.0, 1.0])
    else:
        ref = np.array([1.0, 0.0, 0.0])
    u = np.cross(n, ref)
    u /= np.linalg.norm(u)
    v = np.cross(n, u)
    v /= np.linalg.norm(v)
    return u, v


# ─── Homogeneous transforms ──────────────────────────────────────────────────


class Transform:
    """Read-only 4x4 homogeneous transform."""

    __slots__ = ("_matrix",)

    def __init__(self, matrix=None):
        if matrix is None:
            m = np.eye(4)
        else:
            m = np.array(matrix, dtype=float)
            if m.shape == (16,):
                m = m.reshape(4, 4)
        if m.shape != (4, 4):
            raise ValueError(f"Transform needs a 4x4 matrix, got shape {m.shape}")
        if not np.all(np.isfinite(m)):
            raise ValueError("Transform matrix contains non-finite values")
        m.setflags(write=False)
        self._matrix = m

    @classmethod
    def identity(cls) -> "Transform":
        return cls()

    @classmethod
    def from_matrix(cls, values: Sequence) -> "Transform":
        """Build from 16 row-major values or a nested 4x4 sequence."""
        return cls(values)

    @classmethod
    def translation(cls, offset: Vector) -> "Transform":
        return cls(tf.translation_matrix(offset.as_array()))

    @classmethod
    def rotation(
        cls,
        angle_rad: float,
        axis: Vector,
        point: Optional[Vector] = None,
    ) -> "Transform":
        """Rotation by ``angle_rad`` about ``axis`` through ``point``."""
        if axis.is_zero():
            raise ValueError("Rotation axis must be non-zero")
        about = None if point is None else point.as_array()
        return cls(tf.rotation_matrix(angle_rad, axis.as_array(), about))

    @classmethod
    def from_basis(
        cls,
        origin: np.ndarray,
        u: np.ndarray,
        v: np.ndarray,
        n: np.ndarray,
    ) -> "Transform":
        """Map local (x, y, z) to ``origin + x*u + y*v + z*n``."""
        m = np.eye(4)
        m[:3, 0] = u
        m[:3, 1] = v
        m[:3, 2] = n
        m[:3, 3] = origin
        return cls(m)

    @property
    def matrix(self) -> np.ndarray:
        return self._matrix

    def transform_point(self, point: Vector) -> Vector:
        m = self._matrix
        return Vector(
            m[0, 0] * point.x + m[0, 1] * point.y + m[0, 2] * point.z + m[0, 3],
            m[1, 0] * point.x + m[1, 1] * point.y + m[1, 2] * point.z + m[1, 3],
            m[2, 0] * point.x + m[2, 1] * point.y + m[2, 2] * point.z + m[2, 3],
        )

    def transform_points(self, points: np.ndarray) -> np.ndarray:
        """Apply to an (N, 3) array of points."""
        pts = np.asarray(points, dtype=float).reshape(-1, 3)
        return tf.transform_points(pts, self._matrix)

    def transform_direction(self, direction: Vector) -> Vector:
        """Apply the linear part only (no translation)."""
        return Vector.from_array(self._matrix[:3, :3] @ direction.as_array())

    def inverse(self) -> "Transform":
        try:
            return Transform(tf.inverse_matrix(self._matrix))
        except np.linalg.LinAlgError as exc:
            raise ValueError("Transform is singular and has no inverse") from exc

    def compose(self, other: "Transform") -> "Transform":
        """Transform that applies ``other`` first, then ``self``."""
        return Transform(self._matrix @ other.matrix)

    __matmul__ = compose

    def is_identity(self, eps: float = EPSILON) -> bool:
        return bool(np.allclose(self._matrix, np.eye(4), rtol=0.0, atol=eps))

    def to_list(self):
        return self._matrix.tolist()

    def __eq__(self, other) -> bool:
        if not isinstance(other, Transform):
            return NotImplemented
        return bool(np.array_equal(self._matrix, other.matrix))

    def __hash__(self) -> int:
        return hash(self._matrix.tobytes())

    def __repr__(self) -> str:
        return f"Transform({self._matrix.tolist()!r})"


def transform_point(transform: Transform, point: Vector) -> Vector:
    return transform.transform_point(point)


def round_trip_error(
    forward: Transform,
    inverse: Transform,
    points: np.ndarray,
) -> float:
    """Largest ``|inverse(forward(p)) - p|`` over ``points``."""
    pts = np.asarray(points, dtype=float).reshape(-1, 3)
    if len(pts) == 0:
        return 0.0
    back = inverse.transform_points(forward.transform_points(pts))
    return float(np.max(np.linalg.norm(back - pts, axis=1)))
