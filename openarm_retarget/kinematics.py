"""Cached serial-chain kinematics and a CCD inverse-kinematics solver."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterator, Optional, Sequence

import numpy as np

from . import config
from .geometry import Pose, axis_angle_matrix, project_on_plane, signed_angle
from .joint import JointChannel, JointDrive, OrientationSource, openarm_channels

LOGGER = logging.getLogger(__name__)


@dataclass
class ChainLayout:
    """Reference-pose geometry of a chain, imported once from the physical arm.

    ``joint_positions`` and ``joint_rotations`` are world-frame values with every
    joint at zero; ``base_rotation`` is the frame the root joint hangs from.
    """

    joint_positions: np.ndarray
    joint_rotations: np.ndarray
    end_effector: np.ndarray
    base_rotation: np.ndarray = field(default_factory=lambda: np.eye(3))
    base_position: Optional[np.ndarray] = None

    def __post_init__(self) -> None:
        self.joint_positions = np.array(self.joint_positions, dtype=float).reshape(-1, 3)
        count = self.joint_positions.shape[0]
        if count == 0:
            raise ValueError("layout must contain at least one joint")
        self.joint_rotations = np.array(self.joint_rotations, dtype=float).reshape(count, 3, 3)
        self.end_effector = np.array(self.end_effector, dtype=float).reshape(3)
        self.base_rotation = np.array(self.base_rotation, dtype=float).reshape(3, 3)
        if self.base_position is None:
            self.base_position = self.joint_positions[0].copy()
        else:
            self.base_position = np.array(self.base_position, dtype=float).reshape(3)

    @property
    def joint_count(self) -> int:
        return int(self.joint_positions.shape[0])

    @classmethod
    def from_link_offsets(
        cls,
        link_offsets: Sequence[Sequence[float]],
        base: Optional[Pose] = None,
    ) -> "ChainLayout":
        """Lay out a chain whose joint frames all share the base orientation."""

        base = base or Pose()
        offsets = np.asarray(link_offsets, dtype=float).reshape(-1, 3)
        if offsets.shape[0] == 0:
            raise ValueError("link_offsets must not be empty")
        positions = [base.position.copy()]
        for offset in offsets:
            positions.append(positions[-1] + base.rotation @ offset)
        rotations = np.repeat(base.rotation[None, :, :], offsets.shape[0], axis=0)
        return cls(
            joint_positions=np.vstack(positions[:-1]),
            joint_rotations=rotations,
            end_effector=positions[-1],
            base_rotation=base.rotation,
            base_position=base.position,
        )


@dataclass
class IKConfig:
    max_iterations: int = config.IK_MAX_ITERATIONS
    tolerance: float = config.IK_TOLERANCE
    learning_rate: float = config.IK_LEARNING_RATE
    min_passes: int = config.IK_MIN_PASSES
    relaxed_factor: float = config.IK_RELAXED_FACTOR
    degenerate_end_sqr: float = config.IK_DEGENERATE_END_SQR
    degenerate_projection_sqr: float = config.IK_DEGENERATE_PROJECTION_SQR
    stall_nudge_deg: float = config.IK_STALL_NUDGE_DEG
    polish_iterations: int = config.IK_POLISH_ITERATIONS
    polish_damping: float = config.IK_POLISH_DAMPING
    max_step_deg: float = config.IK_MAX_STEP_DEG
    restarts: int = config.IK_RESTARTS
    restart_seed: int = config.IK_RESTART_SEED


@dataclass
class IKSolution:
    """Result of one :meth:`ChainIKSolver.solve_ik` call.

    ``success`` accepts residuals within ``relaxed_factor * tolerance``;
    ``converged`` is the strict ``residual < tolerance`` test.
    """

    angles: np.ndarray
    position: np.ndarray
    residual: float
    success: bool
    converged: bool
    iterations: int


class ArmChain:
    """Ordered joints (base to wrist) plus the layout their geometry was imported from."""

    def __init__(self, joints: Sequence[JointChannel], layout: ChainLayout, name: str = "arm") -> None:
        self.joints: list[JointChannel] = list(joints)
        if not self.joints:
            raise ValueError("an arm chain needs at least one joint")
        if layout.joint_count != len(self.joints):
            raise ValueError(
                f"layout describes {layout.joint_count} joints but {len(self.joints)} were given"
            )
        self.layout = layout
        self.name = name

    @classmethod
    def openarm(
        cls,
        side: str,
        joints: Sequence[JointChannel],
        base: Optional[Pose] = None,
    ) -> "ArmChain":
        """OpenArm geometry; the right arm mirrors the lateral offsets of the left."""

        mirror = -1.0 if side == "right" else 1.0
        offsets = [(x, mirror * y, z) for x, y, z in config.OPENARM_LINK_OFFSETS]
        return cls(joints, ChainLayout.from_link_offsets(offsets, base), name=side)

    def __len__(self) -> int:
        return len(self.joints)

    def __iter__(self) -> Iterator[JointChannel]:
        return iter(self.joints)

    @property
    def dof(self) -> int:
        return len(self.joints)

    @property
    def base_pose(self) -> Pose:
        return Pose(self.layout.base_position, self.layout.base_rotation)

    @property
    def axes(self) -> np.ndarray:
        return np.vstack([joint.axis for joint in self.joints])

    @property
    def limits(self) -> np.ndarray:
        return np.array([(joint.min_deg, joint.max_deg) for joint in self.joints], dtype=float)

    def current_angles(self) -> np.ndarray:
        return np.array([joint.commanded_deg for joint in self.joints], dtype=float)

    def clamp(self, angles: Sequence[float]) -> np.ndarray:
        limits = self.limits
        return np.clip(np.asarray(angles, dtype=float), limits[:, 0], limits[:, 1])


class ChainIKSolver:
    """Forward kinematics over cached link offsets and CCD inverse kinematics."""

    def __init__(self, chain: ArmChain, ik_config: Optional[IKConfig] = None) -> None:
        self.chain = chain
        self.config = ik_config or IKConfig()
        self._link_offsets: Optional[np.ndarray] = None
        self._rest_rotations: Optional[np.ndarray] = None

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------
    @property
    def is_cached(self) -> bool:
        return self._link_offsets is not None

    @property
    def link_offsets(self) -> np.ndarray:
        offsets, _ = self._ensure_cache()
        return offsets.copy()

    def initialize_link_offsets(self, layout: Optional[ChainLayout] = None, force: bool = False) -> None:
        """Build the link-offset cache from the chain layout.

        Passing a new ``layout`` replaces the chain's geometry and rebuilds.
        Without ``force`` an existing cache is kept as is.
        """

        if layout is not None:
            if layout.joint_count != self.chain.dof:
                raise ValueError("layout joint count does not match the chain")
            self.chain.layout = layout
            force = True
        if self.is_cached and not force:
            return

        layout = self.chain.layout
        count = layout.joint_count
        offsets = np.zeros((count, 3))
        rests = np.zeros((count, 3, 3))
        parent = layout.base_rotation
        for idx in range(count):
            rotation = layout.joint_rotations[idx]
            origin = layout.joint_positions[idx]
            child = layout.joint_positions[idx + 1] if idx + 1 < count else layout.end_effector
            offsets[idx] = rotation.T @ (child - origin)
            rests[idx] = parent.T @ rotation
            parent = rotation
        self._link_offsets = offsets
        self._rest_rotations = rests
        LOGGER.debug("%s: cached %d link offsets", self.chain.name, count)

    def invalidate(self) -> None:
        self._link_offsets = None
        self._rest_rotations = None

    def chain_length(self) -> float:
        offsets, _ = self._ensure_cache()
        return float(np.linalg.norm(offsets, axis=1).sum())

    def _ensure_cache(self) -> tuple[np.ndarray, np.ndarray]:
        if self._link_offsets is None or self._rest_rotations is None:
            self.initialize_link_offsets()
        return self._link_offsets, self._rest_rotations

    # ------------------------------------------------------------------
    # Forward kinematics
    # ------------------------------------------------------------------
    def _as_angles(self, angles: Sequence[float]) -> np.ndarray:
        arr = np.asarray(angles, dtype=float)
        if arr.shape != (self.chain.dof,):
            raise ValueError(f"angles must be a {self.chain.dof}-vector")
        return arr

    def _forward(self, angles: np.ndarray, count: int) -> tuple[list[np.ndarray], list[np.ndarray]]:
        """Positions of joints 0..count and frame rotations of joints 0..count-1."""

        offsets, rests = self._ensure_cache()
        axes = self.chain.axes
        position = self.chain.layout.joint_positions[0].copy()
        rotation = self.chain.layout.base_rotation.copy()
        positions = [position]
        rotations = []
        for idx in range(count):
            rotation = rotation @ rests[idx]
            world_axis = rotation @ axes[idx]
            rotation = axis_angle_matrix(world_axis, angles[idx]) @ rotation
            rotations.append(rotation)
            position = position + rotation @ offsets[idx]
            positions.append(position)
        return positions, rotations

    def compute_end_effector_position(self, angles: Sequence[float]) -> np.ndarray:
        arr = self._as_angles(angles)
        positions, _ = self._forward(arr, self.chain.dof)
        return positions[-1]

    def compute_joint_positions(self, angles: Sequence[float]) -> np.ndarray:
        """(N+1, 3) array: every joint origin followed by the end effector."""

        arr = self._as_angles(angles)
        positions, _ = self._forward(arr, self.chain.dof)
        return np.vstack(positions)

    def compute_joint_position(self, angles: Sequence[float], index: int) -> np.ndarray:
        arr = self._as_angles(angles)
        positions, _ = self._forward(arr, index)
        return positions[index]

    def compute_joint_rotation(self, angles: Sequence[float], index: int) -> np.ndarray:
        arr = self._as_angles(angles)
        _, rotations = self._forward(arr, index + 1)
        return rotations[index]

    # ------------------------------------------------------------------
    # Inverse kinematics
    # ------------------------------------------------------------------
    def solve_ik(
        self,
        target_position: Sequence[float],
        initial_angles: Optional[Sequence[float]] = None,
    ) -> IKSolution:
        """Cyclic coordinate descent toward ``target_position``.

        Starts from ``initial_angles`` or the joints' commanded angles. When that
        attempt misses tolerance, seeded restarts spread over the joint limits are
        tried in turn. The best vector seen is always returned and the starting
        vector is never beaten by a worse one. Never raises on non-convergence.
        """

        cfg = self.config
        target = np.asarray(target_position, dtype=float).reshape(3)
        start = self.chain.current_angles() if initial_angles is None else np.asarray(initial_angles, dtype=float)
        if start.shape != (self.chain.dof,):
            LOGGER.warning(
                "%s: initial angle vector has %d entries, expected %d",
                self.chain.name,
                start.size,
                self.chain.dof,
            )
            failed = self._solution(self.chain.current_angles(), target, iterations=0)
            failed.success = False
            failed.converged = False
            return failed

        start = self.chain.clamp(start)
        best_angles = start.copy()
        best_distance = self._distance(start, target)
        total = 0
        for attempt, seed in enumerate(self._seeds(start)):
            angles, distance, used = self._descend(seed, target)
            total += used
            if distance < best_distance:
                best_angles, best_distance = angles, distance
            if best_distance < cfg.tolerance:
                LOGGER.debug(
                    "%s: IK solved on attempt %d, residual %.4f m", self.chain.name, attempt, best_distance
                )
                break

        return self._solution(best_angles, target, iterations=total)

    def _distance(self, angles: np.ndarray, target: np.ndarray) -> float:
        positions, _ = self._forward(angles, self.chain.dof)
        return float(np.linalg.norm(positions[-1] - target))

    def _seeds(self, start: np.ndarray) -> Iterator[np.ndarray]:
        """Warm start, then the middle of the joint ranges, then seeded samples."""

        limits = self.chain.limits
        yield start
        if self.config.restarts <= 0:
            return
        yield self.chain.clamp(limits.mean(axis=1))
        rng = np.random.default_rng(self.config.restart_seed)
        for _ in range(self.config.restarts - 1):
            yield limits[:, 0] + (limits[:, 1] - limits[:, 0]) * rng.random(self.chain.dof)

    def _descend(self, seed: np.ndarray, target: np.ndarray) -> tuple[np.ndarray, float, int]:
        """One CCD attempt from ``seed`` followed by a least-squares polish."""

        cfg = self.config
        dof = self.chain.dof
        limits = self.chain.limits
        axes = self.chain.axes
        angles = seed.copy()
        previous = self._distance(angles, target)
        best_angles, best_distance = angles.copy(), previous

        passes = 0
        for iteration in range(cfg.max_iterations):
            passes = iteration + 1
            stalled = []
            for idx in reversed(range(dof)):
                positions, rotations = self._forward(angles, dof)
                end = positions[-1]
                distance = float(np.linalg.norm(end - target))
                if distance < cfg.tolerance:
                    return angles.copy(), distance, passes

                joint_pos = positions[idx]
                world_axis = rotations[idx] @ axes[idx]
                to_end = end - joint_pos
                to_target = target - joint_pos
                if float(to_end @ to_end) < cfg.degenerate_end_sqr:
                    continue
                proj_end = project_on_plane(to_end, world_axis)
                proj_target = project_on_plane(to_target, world_axis)
                if (
                    float(proj_end @ proj_end) < cfg.degenerate_projection_sqr
                    or float(proj_target @ proj_target) < cfg.degenerate_projection_sqr
                ):
                    continue

                correction = signed_angle(proj_end, proj_target, world_axis)
                if abs(correction) < 1e-6:
                    stalled.append(idx)
                    continue
                angles[idx] = np.clip(
                    angles[idx] + correction * cfg.learning_rate, limits[idx, 0], limits[idx, 1]
                )

            distance = self._distance(angles, target)
            if distance < best_distance:
                best_angles, best_distance = angles.copy(), distance
            if distance < previous - 1e-9:
                previous = distance
                continue
            if stalled:
                # straight-line configuration: no joint sees a rotation toward the target
                self._nudge(angles, stalled, limits)
                previous = self._distance(angles, target)
                continue
            if passes >= cfg.min_passes:
                LOGGER.debug("%s: no improvement in pass %d, stopping", self.chain.name, passes)
                break

        if best_distance >= cfg.tolerance and cfg.polish_iterations > 0:
            polished, distance, used = self._polish(best_angles, target)
            passes += used
            if distance < best_distance:
                best_angles, best_distance = polished, distance
        return best_angles, best_distance, passes

    def _nudge(self, angles: np.ndarray, joints: Sequence[int], limits: np.ndarray) -> None:
        step = self.config.stall_nudge_deg
        for idx in joints:
            lower, upper = limits[idx]
            if angles[idx] + step <= upper:
                angles[idx] += step
            else:
                angles[idx] = max(angles[idx] - step, lower)

    def _polish(self, seed: np.ndarray, target: np.ndarray) -> tuple[np.ndarray, float, int]:
        """Damped least-squares refinement on position; steps that do not help raise the damping."""

        cfg = self.config
        dof = self.chain.dof
        limits = self.chain.limits
        axes = self.chain.axes
        angles = seed.copy()
        positions, rotations = self._forward(angles, dof)
        distance = float(np.linalg.norm(positions[-1] - target))
        damping = cfg.polish_damping

        used = 0
        while used < cfg.polish_iterations and distance >= cfg.tolerance:
            used += 1
            end = positions[-1]
            jac = np.column_stack(
                [np.cross(rotations[idx] @ axes[idx], end - positions[idx]) for idx in range(dof)]
            )
            error = target - end
            delta = np.degrees(jac.T @ np.linalg.solve(jac @ jac.T + damping**2 * np.eye(3), error))
            largest = float(np.max(np.abs(delta)))
            if largest > cfg.max_step_deg:
                delta *= cfg.max_step_deg / largest

            trial = np.clip(angles + delta, limits[:, 0], limits[:, 1])
            trial_positions, trial_rotations = self._forward(trial, dof)
            trial_distance = float(np.linalg.norm(trial_positions[-1] - target))
            if trial_distance < distance:
                angles, positions, rotations, distance = trial, trial_positions, trial_rotations, trial_distance
                damping = max(damping * 0.5, 1e-3)
            else:
                damping *= 4.0
        return angles, distance, used

    def solve_ik_simple(self, target_position: Sequence[float]) -> IKSolution:
        """Quick positioning: aim joint 0 (azimuth) and joint 1 (elevation) at the target.

        Joint 2 is zeroed and the remaining joints keep their commanded angles.
        Azimuth and elevation are measured in the base frame (X forward, Z up).
        """

        target = np.asarray(target_position, dtype=float).reshape(3)
        angles = self.chain.current_angles()
        if self.chain.dof < 3:
            LOGGER.warning("%s: simple IK needs at least 3 joints", self.chain.name)
            return self._solution(angles, target, iterations=0)

        local = self.chain.base_pose.inverse_transform_point(target)
        azimuth = float(np.degrees(np.arctan2(local[1], local[0])))
        elevation = float(np.degrees(np.arctan2(local[2], np.hypot(local[0], local[1]))))
        angles[0] = azimuth
        angles[1] = elevation
        angles[2] = 0.0
        result = self._solution(self.chain.clamp(angles), target, iterations=1)
        result.success = True
        return result

    def _solution(self, angles: np.ndarray, target: np.ndarray, iterations: int) -> IKSolution:
        position = self.compute_end_effector_position(angles)
        residual = float(np.linalg.norm(position - target))
        tolerance = self.config.tolerance
        return IKSolution(
            angles=angles.copy(),
            position=position,
            residual=residual,
            success=residual < tolerance * self.config.relaxed_factor,
            converged=residual < tolerance,
            iterations=iterations,
        )


def openarm_chain(
    side: str,
    sources: Optional[Sequence[Optional[OrientationSource]]] = None,
    drives: Optional[Sequence[Optional[JointDrive]]] = None,
    base: Optional[Pose] = None,
) -> ArmChain:
    """Seven-joint OpenArm chain with channels, limits and reference geometry."""

    if side not in config.ARM_SIDES:
        raise ValueError(f"side must be one of {config.ARM_SIDES}")
    return ArmChain.openarm(side, openarm_channels(side, sources, drives), base)
