import numpy as np
import pytest

from openarm_retarget.calibration import Calibrator, calibrate_ik_scale
from openarm_retarget.geometry import Orientation
from openarm_retarget.joint import SimulatedDrive, openarm_channels
from openarm_retarget.orchestrator import Arm, IKTargetConfig
from openarm_retarget.retarget import JointRetargeter


def _channels(euler=(20.0, 0.0, 0.0)):
    orientation = Orientation.from_euler_deg(*euler)
    sources = [lambda: orientation for _ in range(7)]
    drives = [SimulatedDrive() for _ in range(7)]
    return openarm_channels("left", sources, drives)


def test_short_chain_is_rejected() -> None:
    joints = _channels()[:5]
    assert not Calibrator().calibrate(joints, now=0.0)
    assert not any(joint.is_locked for joint in joints)


def test_calibration_snaps_and_locks_targets() -> None:
    joints = _channels()
    assert Calibrator().calibrate(joints, now=1.0)

    assert [joint.locked_target for joint in joints] == [90.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0]
    assert all(joint.lock_until == pytest.approx(1.5) for joint in joints)
    assert joints[0].drive.last.target_deg == pytest.approx(90.0)
    assert joints[0].mapping.offset_deg == pytest.approx(90.0)


def test_offset_accounts_for_raw_angle_without_neutral() -> None:
    joints = _channels()
    joints[0].use_neutral_calibration = False
    Calibrator().calibrate(joints, now=0.0)
    assert joints[0].mapping.offset_deg == pytest.approx(70.0)


def test_retrigger_restarts_hold() -> None:
    joints = _channels()
    calibrator = Calibrator(lock_hold_seconds=0.5)
    calibrator.calibrate(joints, now=0.0)
    calibrator.calibrate(joints, now=0.3)
    assert joints[0].lock_until == pytest.approx(0.8)


def test_lock_holds_then_releases() -> None:
    joints = _channels()
    Calibrator().calibrate(joints, now=0.0)
    retargeter = JointRetargeter()
    assert retargeter.apply(joints[0], 0.02, now=0.25) == pytest.approx(90.0)
    retargeter.apply(joints[0], 0.02, now=0.6)
    assert not joints[0].is_locked
    assert joints[0].commanded_deg == pytest.approx(90.0)


def test_custom_targets_are_padded_with_zero() -> None:
    joints = _channels()
    Calibrator().calibrate(joints, now=0.0, desired_targets=[45.0, 10.0])
    assert [joint.locked_target for joint in joints[:3]] == [45.0, 10.0, 0.0]


def test_negative_hold_is_rejected() -> None:
    with pytest.raises(ValueError):
        Calibrator(lock_hold_seconds=-1.0)


def test_ik_scale_matches_robot_reach() -> None:
    ik = IKTargetConfig(
        shoulder_source=lambda: np.array([0.0, 0.2, 1.4]),
        wrist_source=lambda: np.array([0.5, 0.2, 1.4]),
    )
    arm = Arm.openarm("left", ik=ik)
    assert calibrate_ik_scale(arm)
    assert arm.ik.uniform_scale == pytest.approx(arm.solver.chain_length() / 0.5)


def test_ik_scale_rejects_degenerate_reach() -> None:
    point = np.array([0.0, 0.2, 1.4])
    arm = Arm.openarm("left", ik=IKTargetConfig(shoulder_source=lambda: point, wrist_source=lambda: point))
    assert not calibrate_ik_scale(arm)
    assert arm.ik.uniform_scale == 1.0

    no_shoulder = Arm.openarm("left", ik=IKTargetConfig(wrist_source=lambda: point))
    assert not calibrate_ik_scale(no_shoulder)
