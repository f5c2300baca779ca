"""Rotation, angle and frame helpers shared by the retargeting and IK code."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

import numpy as np


# ----------------------------------------------------------------------
# Scalar helpers (degrees)
# ----------------------------------------------------------------------
def delta_angle(current: float, target: float) -> float:
    """Shortest signed difference ``target - current`` in (-180, 180]."""

    delta = (float(target) - float(current)) % 360.0
    if delta > 180.0:
        delta -= 360.0
    return delta


def wrap_angle_deg(angle: float) -> float:
    return delta_angle(0.0, angle)


def clamp(value: float, lower: float, upper: float) -> float:
    return min(max(float(value), lower), upper)


def clamp01(value: float) -> float:
    return clamp(value, 0.0, 1.0)


def lerp(start: float, end: float, t: float) -> float:
    """Linear interpolation with ``t`` clamped to [0, 1]."""

    return start + (end - start) * clamp01(t)


def inverse_lerp(start: float, end: float, value: float) -> float:
    if start == end:
        return 0.0
    return clamp01((value - start) / (end - start))


# ----------------------------------------------------------------------
# Vector helpers
# ----------------------------------------------------------------------
def unit_axis(axis: str | Sequence[float]) -> np.ndarray:
    """Resolve ``"x"``/``"y"``/``"z"`` or an explicit vector to a unit vector."""

    if isinstance(axis, str):
        match axis.lower():
            case "x":
                return np.array([1.0, 0.0, 0.0])
            case "y":
                return np.array([0.0, 1.0, 0.0])
            case "z":
                return np.array([0.0, 0.0, 1.0])
            case _:
                raise ValueError(f"Unsupported axis {axis}")
    vec = np.asarray(axis, dtype=float).reshape(3)
    norm = np.linalg.norm(vec)
    if norm < 1e-12:
        raise ValueError("axis vector must be non-zero")
    return vec / norm


def axis_angle_matrix(axis: Sequence[float], angle_deg: float) -> np.ndarray:
    """Rodrigues rotation matrix for ``angle_deg`` about ``axis``."""

    k = unit_axis(axis)
    theta = np.deg2rad(angle_deg)
    c, s = np.cos(theta), np.sin(theta)
    x, y, z = k
    skew = np.array([[0.0, -z, y], [z, 0.0, -x], [-y, x, 0.0]])
    return np.eye(3) + s * skew + (1.0 - c) * (skew @ skew)


def project_on_plane(vector: np.ndarray, normal: np.ndarray) -> np.ndarray:
    normal = np.asarray(normal, dtype=float)
    denom = float(normal @ normal)
    if denom < 1e-12:
        return np.asarray(vector, dtype=float).copy()
    return vector - (float(vector @ normal) / denom) * normal


def signed_angle(from_vec: np.ndarray, to_vec: np.ndarray, axis: np.ndarray) -> float:
    """Angle in degrees from ``from_vec`` to ``to_vec``, signed about ``axis``."""

    cross = np.cross(from_vec, to_vec)
    unsigned = np.degrees(np.arctan2(np.linalg.norm(cross), float(from_vec @ to_vec)))
    return -unsigned if float(axis @ cross) < 0.0 else unsigned


# ----------------------------------------------------------------------
# Quaternions (w, x, y, z)
# ----------------------------------------------------------------------
def quaternion_multiply(q0: np.ndarray, q1: np.ndarray) -> np.ndarray:
    w0, x0, y0, z0 = q0
    w1, x1, y1, z1 = q1
    return np.array(
        [
            w0 * w1 - x0 * x1 - y0 * y1 - z0 * z1,
            w0 * x1 + x0 * w1 + y0 * z1 - z0 * y1,
            w0 * y1 - x0 * z1 + y0 * w1 + z0 * x1,
            w0 * z1 + x0 * y1 - y0 * x1 + z0 * w1,
        ]
    )


def quaternion_from_axis_angle(axis: Sequence[float], angle_deg: float) -> np.ndarray:
    k = unit_axis(axis)
    half = np.deg2rad(angle_deg) / 2.0
    return np.concatenate([[np.cos(half)], np.sin(half) * k])


def quaternion_to_matrix(quat: np.ndarray) -> np.ndarray:
    w, x, y, z = quat
    return np.array(
        [
            [1 - 2 * (y**2 + z**2), 2 * (x * y - z * w), 2 * (x * z + y * w)],
            [2 * (x * y + z * w), 1 - 2 * (x**2 + z**2), 2 * (y * z - x * w)],
            [2 * (x * z - y * w), 2 * (y * z + x * w), 1 - 2 * (x**2 + y**2)],
        ]
    )


def quaternion_from_matrix(matrix: np.ndarray) -> np.ndarray:
    m = matrix
    trace = m[0, 0] + m[1, 1] + m[2, 2]
    if trace > 0:
        s = 0.5 / np.sqrt(trace + 1.0)
        w = 0.25 / s
        x = (m[2, 1] - m[1, 2]) * s
        y = (m[0, 2] - m[2, 0]) * s
        z = (m[1, 0] - m[0, 1]) * s
    elif m[0, 0] > m[1, 1] and m[0, 0] > m[2, 2]:
        s = 2.0 * np.sqrt(1.0 + m[0, 0] - m[1, 1] - m[2, 2])
        w = (m[2, 1] - m[1, 2]) / s
        x = 0.25 * s
        y = (m[0, 1] + m[1, 0]) / s
        z = (m[0, 2] + m[2, 0]) / s
    elif m[1, 1] > m[2, 2]:
        s = 2.0 * np.sqrt(1.0 + m[1, 1] - m[0, 0] - m[2, 2])
        w = (m[0, 2] - m[2, 0]) / s
        x = (m[0, 1] + m[1, 0]) / s
        y = 0.25 * s
        z = (m[1, 2] + m[2, 1]) / s
    else:
        s = 2.0 * np.sqrt(1.0 + m[2, 2] - m[0, 0] - m[1, 1])
        w = (m[1, 0] - m[0, 1]) / s
        x = (m[0, 2] + m[2, 0]) / s
        y = (m[1, 2] + m[2, 1]) / s
        z = 0.25 * s
    quat = np.array([w, x, y, z])
    return quat / np.linalg.norm(quat)


@dataclass
class Orientation:
    """Unit quaternion sample delivered by a tracked source bone.

    Euler angles follow the tracking engine's convention: degrees applied
    about Z, then X, then Y (matrix ``Ry @ Rx @ Rz``).
    """

    quaternion: np.ndarray = field(default_factory=lambda: np.array([1.0, 0.0, 0.0, 0.0]))

    def __post_init__(self) -> None:
        quat = np.asarray(self.quaternion, dtype=float).reshape(4)
        norm = np.linalg.norm(quat)
        if norm < 1e-12:
            raise ValueError("quaternion must be non-zero")
        self.quaternion = quat / norm

    @classmethod
    def identity(cls) -> "Orientation":
        return cls()

    @classmethod
    def from_euler_deg(cls, x: float, y: float, z: float) -> "Orientation":
        qx = quaternion_from_axis_angle("x", x)
        qy = quaternion_from_axis_angle("y", y)
        qz = quaternion_from_axis_angle("z", z)
        return cls(quaternion_multiply(quaternion_multiply(qy, qx), qz))

    @classmethod
    def from_matrix(cls, matrix: np.ndarray) -> "Orientation":
        return cls(quaternion_from_matrix(np.asarray(matrix, dtype=float)))

    def matrix(self) -> np.ndarray:
        return quaternion_to_matrix(self.quaternion)

    def euler_deg(self) -> np.ndarray:
        """Euler angles (x, y, z) in (-180, 180], inverse of :meth:`from_euler_deg`."""

        m = self.matrix()
        sin_x = clamp(-m[1, 2], -1.0, 1.0)
        x = np.arcsin(sin_x)
        if abs(sin_x) < 1.0 - 1e-9:
            y = np.arctan2(m[0, 2], m[2, 2])
            z = np.arctan2(m[1, 0], m[1, 1])
        else:
            # gimbal lock: fold z into y
            y = np.arctan2(-m[2, 0], m[0, 0])
            z = 0.0
        return np.array([wrap_angle_deg(np.degrees(a)) for a in (x, y, z)])

    def inverse(self) -> "Orientation":
        w, x, y, z = self.quaternion
        return Orientation(np.array([w, -x, -y, -z]))

    def relative_to(self, reference: "Orientation") -> "Orientation":
        """Rotation that takes ``reference`` to ``self`` (``reference⁻¹ · self``)."""

        return Orientation(quaternion_multiply(reference.inverse().quaternion, self.quaternion))

    def twist_angle_deg(self, axis: Sequence[float]) -> float:
        """Swing-twist decomposition: signed rotation about ``axis`` in (-180, 180]."""

        k = unit_axis(axis)
        w = self.quaternion[0]
        along = float(self.quaternion[1:] @ k)
        if abs(along) < 1e-12 and abs(w) < 1e-12:
            return 0.0
        return wrap_angle_deg(np.degrees(2.0 * np.arctan2(along, w)))


@dataclass
class Pose:
    """Rigid frame (position + rotation matrix) in world coordinates."""

    position: np.ndarray = field(default_factory=lambda: np.zeros(3))
    rotation: np.ndarray = field(default_factory=lambda: np.eye(3))

    def __post_init__(self) -> None:
        self.position = np.asarray(self.position, dtype=float).reshape(3)
        self.rotation = np.asarray(self.rotation, dtype=float).reshape(3, 3)

    @classmethod
    def from_xyz_euler(cls, position: Sequence[float], euler_deg: Sequence[float]) -> "Pose":
        x, y, z = euler_deg
        return cls(np.asarray(position, dtype=float), Orientation.from_euler_deg(x, y, z).matrix())

    def transform_point(self, local: Sequence[float]) -> np.ndarray:
        return self.position + self.rotation @ np.asarray(local, dtype=float)

    def transform_direction(self, local: Sequence[float]) -> np.ndarray:
        return self.rotation @ np.asarray(local, dtype=float)

    def inverse_transform_point(self, world: Sequence[float]) -> np.ndarray:
        return self.rotation.T @ (np.asarray(world, dtype=float) - self.position)

    def inverse_transform_direction(self, world: Sequence[float]) -> np.ndarray:
        return self.rotation.T @ np.asarray(world, dtype=float)

    def as_matrix(self) -> np.ndarray:
        mat = np.eye(4)
        mat[:3, :3] = self.rotation
        mat[:3, 3] = self.position
        return mat
