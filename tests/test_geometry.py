import numpy as np
import pytest

from openarm_retarget.geometry import (
    Orientation,
    Pose,
    axis_angle_matrix,
    delta_angle,
    inverse_lerp,
    lerp,
    signed_angle,
    unit_axis,
)


def test_delta_angle_takes_shortest_path() -> None:
    assert delta_angle(10.0, 350.0) == pytest.approx(-20.0)
    assert delta_angle(350.0, 10.0) == pytest.approx(20.0)
    assert delta_angle(0.0, 180.0) == pytest.approx(180.0)
    assert delta_angle(0.0, -180.0) == pytest.approx(180.0)


def test_lerp_clamps_parameter() -> None:
    assert lerp(0.0, 10.0, 1.5) == pytest.approx(10.0)
    assert lerp(0.0, 10.0, -1.0) == pytest.approx(0.0)
    assert inverse_lerp(80.0, 90.0, 85.0) == pytest.approx(0.5)
    assert inverse_lerp(5.0, 5.0, 5.0) == 0.0


def test_unit_axis_rejects_unknown_names() -> None:
    assert np.allclose(unit_axis("Y"), [0.0, 1.0, 0.0])
    assert np.allclose(unit_axis((0.0, 0.0, 2.0)), [0.0, 0.0, 1.0])
    with pytest.raises(ValueError):
        unit_axis("w")


def test_axis_angle_matrix_rotates_about_axis() -> None:
    rot = axis_angle_matrix("z", 90.0)
    assert np.allclose(rot @ np.array([1.0, 0.0, 0.0]), [0.0, 1.0, 0.0], atol=1e-9)
    assert np.allclose(rot @ rot.T, np.eye(3), atol=1e-9)


def test_signed_angle_sign_follows_axis() -> None:
    a = np.array([1.0, 0.0, 0.0])
    b = np.array([0.0, 1.0, 0.0])
    assert signed_angle(a, b, np.array([0.0, 0.0, 1.0])) == pytest.approx(90.0)
    assert signed_angle(a, b, np.array([0.0, 0.0, -1.0])) == pytest.approx(-90.0)


def test_euler_extraction_inverts_construction() -> None:
    euler = Orientation.from_euler_deg(10.0, 20.0, 30.0).euler_deg()
    assert np.allclose(euler, [10.0, 20.0, 30.0], atol=1e-6)


def test_euler_matches_matrix_convention() -> None:
    orientation = Orientation.from_euler_deg(15.0, -40.0, 25.0)
    expected = (
        axis_angle_matrix("y", -40.0) @ axis_angle_matrix("x", 15.0) @ axis_angle_matrix("z", 25.0)
    )
    assert np.allclose(orientation.matrix(), expected, atol=1e-9)


def test_twist_angle_isolates_axis_component() -> None:
    assert Orientation.from_euler_deg(0.0, 40.0, 0.0).twist_angle_deg("y") == pytest.approx(40.0)
    assert Orientation.from_euler_deg(0.0, -120.0, 0.0).twist_angle_deg("y") == pytest.approx(-120.0)
    assert Orientation.from_euler_deg(30.0, 0.0, 0.0).twist_angle_deg("y") == pytest.approx(0.0, abs=1e-9)


def test_relative_to_self_is_identity() -> None:
    orientation = Orientation.from_euler_deg(12.0, 34.0, 56.0)
    relative = orientation.relative_to(orientation)
    assert np.allclose(relative.matrix(), np.eye(3), atol=1e-9)


def test_pose_inverse_transform_roundtrip() -> None:
    pose = Pose.from_xyz_euler((0.1, -0.2, 0.3), (10.0, 20.0, 30.0))
    point = np.array([0.4, 0.5, -0.6])
    assert np.allclose(pose.inverse_transform_point(pose.transform_point(point)), point)
    assert np.allclose(pose.as_matrix()[:3, 3], [0.1, -0.2, 0.3])
