import numpy as np
import pytest

from openarm_retarget.geometry import Orientation, Pose
from openarm_retarget.joint import JointChannel
from openarm_retarget.kinematics import (
    ArmChain,
    ChainIKSolver,
    ChainLayout,
    IKConfig,
    openarm_chain,
)


def _planar_solver(**ik) -> ChainIKSolver:
    joints = [JointChannel("shoulder", axis="z"), JointChannel("elbow", axis="z")]
    layout = ChainLayout.from_link_offsets([(0.3, 0.0, 0.0), (0.2, 0.0, 0.0)])
    return ChainIKSolver(ArmChain(joints, layout, name="planar"), IKConfig(**ik))


def test_link_offset_cache_is_idempotent() -> None:
    solver = ChainIKSolver(openarm_chain("left"))
    solver.initialize_link_offsets()
    first = solver.link_offsets
    solver.initialize_link_offsets()
    assert np.array_equal(first, solver.link_offsets)


def test_invalidate_rebuilds_on_demand() -> None:
    solver = ChainIKSolver(openarm_chain("left"))
    solver.initialize_link_offsets()
    solver.invalidate()
    assert not solver.is_cached
    solver.compute_end_effector_position(np.zeros(7))
    assert solver.is_cached


def test_forward_kinematics_at_zero_matches_layout() -> None:
    left = ChainIKSolver(openarm_chain("left"))
    right = ChainIKSolver(openarm_chain("right"))
    assert np.allclose(left.compute_end_effector_position(np.zeros(7)), [0.0, 0.03, -0.72])
    assert np.allclose(right.compute_end_effector_position(np.zeros(7)), [0.0, -0.03, -0.72])


def test_forward_kinematics_reproduces_rotated_layout() -> None:
    rotations = np.stack(
        [
            Orientation.from_euler_deg(0.0, 0.0, 0.0).matrix(),
            Orientation.from_euler_deg(30.0, 0.0, 0.0).matrix(),
            Orientation.from_euler_deg(30.0, 45.0, 0.0).matrix(),
        ]
    )
    positions = np.array([[0.1, 0.0, 0.0], [0.1, 0.0, -0.2], [0.2, 0.1, -0.3]])
    layout = ChainLayout(positions, rotations, end_effector=[0.25, 0.1, -0.45])
    joints = [JointChannel("a", axis="x"), JointChannel("b", axis="y"), JointChannel("c", axis="z")]
    solver = ChainIKSolver(ArmChain(joints, layout))

    points = solver.compute_joint_positions(np.zeros(3))
    assert np.allclose(points[:-1], positions)
    assert np.allclose(points[-1], [0.25, 0.1, -0.45])
    assert np.allclose(solver.compute_joint_rotation(np.zeros(3), 2), rotations[2])


def test_forward_kinematics_is_deterministic() -> None:
    solver = ChainIKSolver(openarm_chain("left"))
    angles = np.array([20.0, -10.0, 35.0, -70.0, 15.0, 30.0, -5.0])
    first = solver.compute_end_effector_position(angles)
    second = solver.compute_end_effector_position(angles)
    assert np.array_equal(first, second)
    assert np.allclose(solver.compute_joint_positions(angles)[-1], first)


def test_joint_rotations_are_orthonormal() -> None:
    solver = ChainIKSolver(openarm_chain("left"))
    angles = np.array([10.0, 20.0, 30.0, -40.0, 50.0, 60.0, 70.0])
    for idx in range(7):
        rot = solver.compute_joint_rotation(angles, idx)
        assert np.allclose(rot @ rot.T, np.eye(3), atol=1e-9)


def test_chain_length_sums_link_offsets() -> None:
    solver = ChainIKSolver(openarm_chain("left"))
    expected = np.hypot(0.03, 0.06) + 0.06 + 0.24 + 0.20 + 0.04 + 0.04 + 0.08
    assert solver.chain_length() == pytest.approx(expected)


def test_planar_two_link_reaches_target() -> None:
    solver = _planar_solver(max_iterations=20, tolerance=0.01)
    solution = solver.solve_ik([0.4, 0.0, 0.0])
    assert solution.converged
    assert solution.residual < 0.01
    reached = solver.compute_end_effector_position(solution.angles)
    assert np.linalg.norm(reached - np.array([0.4, 0.0, 0.0])) < 0.01
    assert np.allclose(reached, solution.position)


def test_straight_chain_is_nudged_off_the_line() -> None:
    solver = _planar_solver(restarts=0, polish_iterations=0)
    solution = solver.solve_ik([0.4, 0.0, 0.0], initial_angles=[0.0, 0.0])
    assert not np.allclose(solution.angles, [0.0, 0.0])
    assert solution.residual < 0.1


def test_round_trip_recovers_reachable_targets() -> None:
    chain = openarm_chain("left")
    solver = ChainIKSolver(chain)
    limits = chain.limits
    rng = np.random.default_rng(7)
    for _ in range(20):
        reference = limits[:, 0] + (limits[:, 1] - limits[:, 0]) * rng.random(7)
        target = solver.compute_end_effector_position(reference)
        solution = solver.solve_ik(target)
        assert solution.residual < solver.config.tolerance
        assert solution.converged


def test_restarts_are_deterministic() -> None:
    solver = ChainIKSolver(openarm_chain("left"))
    first = solver.solve_ik([0.3, 0.2, -0.3])
    second = solver.solve_ik([0.3, 0.2, -0.3])
    assert np.array_equal(first.angles, second.angles)


def test_unreachable_target_returns_best_effort() -> None:
    solver = _planar_solver()
    start = np.array([-30.0, 90.0])
    before = np.linalg.norm(solver.compute_end_effector_position(start) - np.array([5.0, 0.0, 0.0]))
    solution = solver.solve_ik([5.0, 0.0, 0.0], initial_angles=start)
    assert not solution.success
    assert not solution.converged
    assert solution.residual <= before
    assert np.all(np.abs(solution.angles) <= 180.0)


def test_solution_respects_joint_limits() -> None:
    chain = openarm_chain("left")
    solver = ChainIKSolver(chain)
    solution = solver.solve_ik([0.3, 0.2, -0.3])
    limits = chain.limits
    assert np.all(solution.angles >= limits[:, 0])
    assert np.all(solution.angles <= limits[:, 1])


def test_mismatched_initial_angles_fail_softly() -> None:
    solver = ChainIKSolver(openarm_chain("left"))
    solution = solver.solve_ik([0.3, 0.0, -0.3], initial_angles=[0.0, 0.0])
    assert not solution.success
    assert solution.iterations == 0
    assert np.allclose(solution.angles, np.zeros(7))


def test_mismatched_initial_angles_never_report_success() -> None:
    solver = ChainIKSolver(openarm_chain("left"))
    at_rest = solver.compute_end_effector_position(np.zeros(7))
    solution = solver.solve_ik(at_rest, initial_angles=[0.0] * 3)
    assert solution.residual == pytest.approx(0.0, abs=1e-9)
    assert not solution.success
    assert not solution.converged


def test_simple_solver_aims_shoulder() -> None:
    base = Pose(np.array([0.0, 0.15, 0.0]))
    solver = ChainIKSolver(openarm_chain("left", base=base))
    solution = solver.solve_ik_simple([0.3, 0.45, 0.0])
    assert solution.angles[0] == pytest.approx(45.0)
    assert solution.angles[1] == pytest.approx(0.0)
    assert solution.angles[2] == pytest.approx(0.0)


def test_layout_length_mismatch_is_rejected() -> None:
    joints = [JointChannel("a"), JointChannel("b")]
    layout = ChainLayout.from_link_offsets([(0.0, 0.0, -0.1)])
    with pytest.raises(ValueError):
        ArmChain(joints, layout)
    with pytest.raises(ValueError):
        ArmChain([], layout)
