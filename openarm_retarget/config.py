"""Shared defaults for the OpenArm retargeting core.

Robot-frame conventions: X forward, Y left, Z up, metres and degrees.
"""

from __future__ import annotations

# Fixed control tick (50 Hz). Smoothing and rate limits are tuned for this step.
FIXED_DELTA_TIME: float = 0.02

OPENARM_JOINT_COUNT: int = 7
ARM_SIDES: tuple[str, ...] = ("left", "right")

# Lateral distance from the torso centre to each arm base (left +Y, right -Y).
OPENARM_SHOULDER_HALF_WIDTH: float = 0.15

# Joint limits per OpenArm joint, base (shoulder) to wrist.
OPENARM_JOINT_LIMITS_DEG: tuple[tuple[float, float], ...] = (
    (-180.0, 180.0),  # J1 shoulder pitch
    (-90.0, 90.0),  # J2 shoulder roll
    (-180.0, 180.0),  # J3 upper-arm yaw
    (-180.0, 0.0),  # J4 elbow
    (-180.0, 180.0),  # J5 forearm yaw
    (-90.0, 90.0),  # J6 wrist roll
    (-180.0, 180.0),  # J7 wrist pitch
)

# Rotation axis of each joint in its own reference frame.
OPENARM_JOINT_AXES: tuple[str, ...] = ("y", "x", "z", "y", "z", "x", "y")

# Reference-pose link offsets for the left arm (joint i -> joint i+1, last -> end effector),
# arm hanging straight down. The right arm mirrors the Y component.
OPENARM_LINK_OFFSETS: tuple[tuple[float, float, float], ...] = (
    (0.0, 0.03, -0.06),
    (0.0, 0.0, -0.06),
    (0.0, 0.0, -0.24),
    (0.0, 0.0, -0.20),
    (0.0, 0.0, -0.04),
    (0.0, 0.0, -0.04),
    (0.0, 0.0, -0.08),
)

# Source-bone Euler axis read for each joint in single-joint mapping.
OPENARM_SOURCE_AXES: tuple[str, ...] = ("x", "z", "y", "x", "y", "z", "x")

# Joints 0..HYBRID_IK_JOINT_COUNT-1 (shoulder + elbow) follow IK in hybrid mode.
HYBRID_IK_JOINT_COUNT: int = 4

# Drive gains forwarded untouched to the actuation layer.
DEFAULT_STIFFNESS: float = 4000.0
DEFAULT_DAMPING: float = 300.0
DEFAULT_FORCE_LIMIT: float = 10000.0

# Per-joint mapping pipeline.
DEFAULT_DEAD_ZONE_DEG: float = 2.0
DEFAULT_HYSTERESIS_DEG: float = 1.5
DEFAULT_SMOOTH_ALPHA: float = 0.25
DEFAULT_RATE_LIMIT_DEG_PER_SEC: float = 180.0
DEFAULT_SOFT_LIMIT_MARGIN_DEG: float = 8.0

# CCD solver.
IK_MAX_ITERATIONS: int = 20
IK_TOLERANCE: float = 0.01
IK_LEARNING_RATE: float = 0.5
IK_MIN_PASSES: int = 5
IK_RELAXED_FACTOR: float = 2.0
IK_DEGENERATE_END_SQR: float = 1e-4
IK_DEGENERATE_PROJECTION_SQR: float = 1e-8
# Joints whose to-end and to-target directions are parallel get nudged by this much on a stalled pass.
IK_STALL_NUDGE_DEG: float = 10.0
# Damped least-squares polish for attempts whose CCD passes miss tolerance.
IK_POLISH_ITERATIONS: int = 30
IK_POLISH_DAMPING: float = 0.05
IK_MAX_STEP_DEG: float = 20.0
# Extra seeded starts tried when the warm start misses tolerance.
IK_RESTARTS: int = 8
IK_RESTART_SEED: int = 0

# Human-to-robot target mapping (robot base frame).
IK_POSITION_SMOOTH: float = 0.3
IK_CONSTRAINT_MIN: tuple[float, float, float] = (0.05, -0.5, -0.65)
IK_CONSTRAINT_MAX: tuple[float, float, float] = (0.7, 0.5, 0.4)

# Calibration snap.
CALIBRATION_TARGETS_DEG: tuple[float, ...] = (90.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0)
CALIBRATION_LOCK_HOLD_SECONDS: float = 0.5
MIN_CALIBRATION_LENGTH: float = 1e-4
