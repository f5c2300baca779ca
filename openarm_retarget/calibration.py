"""Operator calibration: neutral capture with a timed snap lock, and IK scale matching."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Iterable, Optional, Sequence

import numpy as np

from . import config
from .joint import JointChannel

if TYPE_CHECKING:
    from .orchestrator import Arm

LOGGER = logging.getLogger(__name__)


class Calibrator:
    """Snaps an arm to known target angles while the operator holds a reference pose.

    Each channel's neutral becomes the current source orientation, its offset is
    rewritten so the current pose maps onto the desired angle, and the joint is
    locked there until ``now + lock_hold_seconds``.
    """

    def __init__(
        self,
        desired_targets: Sequence[float] = config.CALIBRATION_TARGETS_DEG,
        lock_hold_seconds: float = config.CALIBRATION_LOCK_HOLD_SECONDS,
    ) -> None:
        if lock_hold_seconds < 0.0:
            raise ValueError("lock_hold_seconds must be non-negative")
        self.desired_targets = tuple(float(value) for value in desired_targets)
        self.lock_hold_seconds = float(lock_hold_seconds)

    def calibrate(
        self,
        joints: Iterable[JointChannel],
        now: float,
        desired_targets: Optional[Sequence[float]] = None,
        side: str = "arm",
    ) -> bool:
        joints = list(joints)
        count = config.OPENARM_JOINT_COUNT
        if len(joints) < count:
            LOGGER.warning("Calibrate %s: expected %d joints, got %d", side, count, len(joints))
            return False

        targets = tuple(desired_targets) if desired_targets is not None else self.desired_targets
        calibrated = joints[:count]
        for joint in calibrated:
            joint.calibrate_neutral()

        until = now + self.lock_hold_seconds
        for idx, joint in enumerate(calibrated):
            desired = float(targets[idx]) if idx < len(targets) else 0.0
            raw = joint.read_source_angle()
            if raw is not None:
                joint.mapping.offset_deg = desired - joint.mapping.scale * raw
            joint.lock(joint.clamp(desired), until=until)
            joint.hold_locked_target()

        LOGGER.info("Calibrate %s: locked for %.2f s", side, self.lock_hold_seconds)
        return True


def human_arm_length(arm: "Arm") -> Optional[float]:
    ik = arm.ik
    if ik.shoulder_source is None or ik.wrist_source is None:
        return None
    shoulder = ik.shoulder_source()
    wrist = ik.wrist_source()
    if shoulder is None or wrist is None:
        return None
    return float(np.linalg.norm(np.asarray(wrist, dtype=float) - np.asarray(shoulder, dtype=float)))


def calibrate_ik_scale(arm: "Arm") -> bool:
    """Match the operator's straight-arm reach to the robot chain length.

    Sets ``arm.ik.uniform_scale`` to robot length / human shoulder-to-wrist
    distance. Returns False, leaving the scale untouched, when either length is
    unavailable or too short.
    """

    if arm.solver is None:
        LOGGER.warning("IK scale %s: no solver bound", arm.name)
        return False
    human = human_arm_length(arm)
    if human is None:
        LOGGER.warning("IK scale %s: shoulder and wrist references are required", arm.name)
        return False
    robot = arm.solver.chain_length()
    if human <= config.MIN_CALIBRATION_LENGTH or robot <= config.MIN_CALIBRATION_LENGTH:
        LOGGER.warning("IK scale %s: invalid lengths human=%.3f robot=%.3f", arm.name, human, robot)
        return False

    arm.ik.uniform_scale = robot / human
    LOGGER.info(
        "IK scale %s: human=%.3f m robot=%.3f m scale=%.3f", arm.name, human, robot, arm.ik.uniform_scale
    )
    return True
