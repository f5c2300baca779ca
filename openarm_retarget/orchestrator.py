"""Per-tick control loop that drives both arms in single-joint, IK or hybrid mode."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, ClassVar, Dict, Optional, Sequence, Union

import numpy as np

from . import config
from .calibration import Calibrator
from .geometry import Pose
from .joint import JointChannel, JointDrive, OrientationSource
from .kinematics import ArmChain, ChainIKSolver, IKConfig, IKSolution, openarm_chain
from .retarget import JointRetargeter

LOGGER = logging.getLogger(__name__)

PositionSource = Callable[[], Optional[np.ndarray]]


@dataclass(frozen=True)
class SingleJointMode:
    """Every joint follows its own source bone through the filter pipeline."""

    label: ClassVar[str] = "single"


@dataclass(frozen=True)
class IKMode:
    """All joints follow the CCD solution for the wrist target."""

    label: ClassVar[str] = "ik"


@dataclass(frozen=True)
class HybridMode:
    """Shoulder and elbow follow IK, the wrist joints keep per-joint mapping."""

    ik_joint_count: int = config.HYBRID_IK_JOINT_COUNT
    label: ClassVar[str] = "hybrid"


ControlMode = Union[SingleJointMode, IKMode, HybridMode]

MODE_CYCLE: tuple[ControlMode, ...] = (SingleJointMode(), IKMode(), HybridMode())
MODES_BY_LABEL: Dict[str, ControlMode] = {mode.label: mode for mode in MODE_CYCLE}


@dataclass
class IKTargetConfig:
    """Maps tracked human shoulder/wrist positions onto a robot end-effector target."""

    wrist_source: Optional[PositionSource] = None
    shoulder_source: Optional[PositionSource] = None
    end_effector_offset: np.ndarray = field(default_factory=lambda: np.zeros(3))
    uniform_scale: float = 1.0
    position_smooth: float = config.IK_POSITION_SMOOTH
    use_position_constraint: bool = True
    constraint_min: np.ndarray = field(default_factory=lambda: np.array(config.IK_CONSTRAINT_MIN))
    constraint_max: np.ndarray = field(default_factory=lambda: np.array(config.IK_CONSTRAINT_MAX))
    smoothed_position: Optional[np.ndarray] = field(default=None, init=False)

    def __post_init__(self) -> None:
        self.end_effector_offset = np.asarray(self.end_effector_offset, dtype=float).reshape(3)
        self.constraint_min = np.asarray(self.constraint_min, dtype=float).reshape(3)
        self.constraint_max = np.asarray(self.constraint_max, dtype=float).reshape(3)
        if np.any(self.constraint_min > self.constraint_max):
            raise ValueError("constraint_min must not exceed constraint_max")

    def reset_smoothing(self) -> None:
        self.smoothed_position = None


@dataclass
class Arm:
    """One robot arm: its chain, solver and human-to-robot target mapping."""

    chain: ArmChain
    solver: Optional[ChainIKSolver] = None
    ik: IKTargetConfig = field(default_factory=IKTargetConfig)
    last_solution: Optional[IKSolution] = field(default=None, init=False)
    last_target: Optional[np.ndarray] = field(default=None, init=False)

    @property
    def name(self) -> str:
        return self.chain.name

    @property
    def joints(self) -> list[JointChannel]:
        return self.chain.joints

    def commanded_angles(self) -> np.ndarray:
        return self.chain.current_angles()

    @classmethod
    def openarm(
        cls,
        side: str,
        sources: Optional[Sequence[Optional[OrientationSource]]] = None,
        drives: Optional[Sequence[Optional[JointDrive]]] = None,
        base: Optional[Pose] = None,
        ik: Optional[IKTargetConfig] = None,
        ik_config: Optional[IKConfig] = None,
    ) -> "Arm":
        chain = openarm_chain(side, sources, drives, base)
        return cls(chain=chain, solver=ChainIKSolver(chain, ik_config), ik=ik or IKTargetConfig())


@dataclass
class ArmTickResult:
    name: str
    commanded: np.ndarray
    target: Optional[np.ndarray] = None
    solution: Optional[IKSolution] = None
    applied: bool = False


@dataclass
class TickReport:
    tick: int
    time: float
    mode: str
    arms: Dict[str, ArmTickResult]


class RetargetOrchestrator:
    """Owns both arms and advances them one fixed control tick at a time."""

    def __init__(
        self,
        arms: Sequence[Arm],
        mode: ControlMode = SingleJointMode(),
        retargeter: Optional[JointRetargeter] = None,
        calibrator: Optional[Calibrator] = None,
        auto_calibrate_on_start: bool = True,
    ) -> None:
        names = [arm.name for arm in arms]
        if len(set(names)) != len(names):
            raise ValueError("arm names must be unique")
        self.arms: Dict[str, Arm] = {arm.name: arm for arm in arms}
        self.mode: ControlMode = mode
        self.retargeter = retargeter or JointRetargeter()
        self.calibrator = calibrator or Calibrator()
        self.auto_calibrate_on_start = auto_calibrate_on_start
        self.time = 0.0
        self.tick_count = 0
        self.started = False

    # ------------------------------------------------------------------
    # High-level actions
    # ------------------------------------------------------------------
    def start(self) -> None:
        """Capture neutrals (when enabled) and prime each arm's target smoothing."""

        if self.auto_calibrate_on_start:
            self.calibrate_all_neutral()
        for arm in self.arms.values():
            arm.ik.reset_smoothing()
            if arm.solver is not None:
                arm.solver.initialize_link_offsets()
                self.compute_ik_target(arm, 0.0)
        self.started = True
        LOGGER.info("Retargeting started in %s mode", self.mode.label)

    def switch_mode(self) -> ControlMode:
        kinds = [type(mode) for mode in MODE_CYCLE]
        idx = kinds.index(type(self.mode))
        self.mode = MODE_CYCLE[(idx + 1) % len(MODE_CYCLE)]
        LOGGER.info("Switched to %s mode", self.mode.label)
        return self.mode

    def set_mode(self, mode: ControlMode | str) -> None:
        if isinstance(mode, str):
            if mode not in MODES_BY_LABEL:
                raise ValueError(f"mode must be one of {sorted(MODES_BY_LABEL)}")
            mode = MODES_BY_LABEL[mode]
        self.mode = mode
        LOGGER.info("Mode set to %s", self.mode.label)

    def calibrate_all_neutral(self) -> int:
        captured = 0
        for arm in self.arms.values():
            for joint in arm.joints:
                if joint.calibrate_neutral():
                    captured += 1
        LOGGER.info("Captured neutral orientation for %d joints", captured)
        return captured

    def calibrate(self, side: str, desired_targets: Optional[Sequence[float]] = None) -> bool:
        arm = self.arms.get(side)
        if arm is None:
            LOGGER.warning("Calibrate %s: no such arm", side)
            return False
        return self.calibrator.calibrate(arm.joints, self.time, desired_targets, side=side)

    def reset_to_home(self) -> None:
        for arm in self.arms.values():
            for joint in arm.joints:
                self.retargeter.set_target_direct(joint, 0.0)
            arm.ik.reset_smoothing()
        LOGGER.info("All joints sent home")

    # ------------------------------------------------------------------
    # Control loop
    # ------------------------------------------------------------------
    def tick(self, dt: float = config.FIXED_DELTA_TIME) -> TickReport:
        if not self.started:
            self.start()
        if dt > 0.0:
            self.time += dt
        self.tick_count += 1
        now = self.time

        for arm in self.arms.values():
            for joint in arm.joints:
                if joint.release_lock_if_expired(now):
                    LOGGER.debug("%s: calibration lock released", joint.name)

        results: Dict[str, ArmTickResult] = {}
        for arm in self.arms.values():
            match self.mode:
                case SingleJointMode():
                    results[arm.name] = self._tick_single(arm, dt, now)
                case IKMode():
                    results[arm.name] = self._tick_ik(arm, dt, now, arm.chain.dof)
                case HybridMode(ik_joint_count=count):
                    results[arm.name] = self._tick_ik(arm, dt, now, count)

        return TickReport(tick=self.tick_count, time=now, mode=self.mode.label, arms=results)

    def _tick_single(self, arm: Arm, dt: float, now: float) -> ArmTickResult:
        applied = False
        for joint in arm.joints:
            if self.retargeter.apply(joint, dt, now) is not None:
                applied = True
        return ArmTickResult(arm.name, arm.commanded_angles(), applied=applied)

    def _tick_ik(self, arm: Arm, dt: float, now: float, ik_count: int) -> ArmTickResult:
        if arm.solver is None or arm.ik.wrist_source is None:
            return ArmTickResult(arm.name, arm.commanded_angles())
        target = self.compute_ik_target(arm, dt)
        if target is None:
            return ArmTickResult(arm.name, arm.commanded_angles())

        solution = arm.solver.solve_ik(target)
        arm.last_solution = solution
        if not solution.success:
            LOGGER.debug("%s: IK residual %.4f m, holding previous angles", arm.name, solution.residual)
            return ArmTickResult(arm.name, arm.commanded_angles(), target, solution)

        for idx, joint in enumerate(arm.joints):
            if idx < ik_count:
                self.retargeter.set_target_direct(joint, solution.angles[idx])
            else:
                self.retargeter.apply(joint, dt, now)
        return ArmTickResult(arm.name, arm.commanded_angles(), target, solution, applied=True)

    def compute_ik_target(self, arm: Arm, dt: float) -> Optional[np.ndarray]:
        """World-frame end-effector target for ``arm``, smoothed across ticks.

        Returns None when the wrist reference has no sample this tick.
        """

        ik = arm.ik
        wrist = ik.wrist_source() if ik.wrist_source is not None else None
        if wrist is None:
            return None
        wrist = np.asarray(wrist, dtype=float).reshape(3)
        shoulder = ik.shoulder_source() if ik.shoulder_source is not None else None
        shoulder = wrist if shoulder is None else np.asarray(shoulder, dtype=float).reshape(3)

        base = arm.chain.base_pose
        local = base.inverse_transform_direction(wrist - shoulder) * ik.uniform_scale
        if ik.use_position_constraint:
            local = np.clip(local, ik.constraint_min, ik.constraint_max)
        local = local + ik.end_effector_offset
        world = base.transform_point(local)

        if ik.smoothed_position is None or dt <= 0.0:
            ik.smoothed_position = world
        else:
            alpha = float(np.clip(ik.position_smooth, 0.0, 1.0))
            ik.smoothed_position = ik.smoothed_position + (world - ik.smoothed_position) * alpha
        arm.last_target = ik.smoothed_position.copy()
        return arm.last_target

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------
    def status_text(self) -> Dict[str, str]:
        status = {
            "Mode": self.mode.label.upper(),
            "Time": f"{self.time:.2f} s",
        }
        for arm in self.arms.values():
            locked = sum(1 for joint in arm.joints if joint.is_locked)
            status[f"{arm.name.capitalize()} locked"] = f"{locked}/{arm.chain.dof}"
            if arm.last_solution is not None and not isinstance(self.mode, SingleJointMode):
                status[f"{arm.name.capitalize()} IK error"] = f"{arm.last_solution.residual * 1000.0:.1f} mm"
        return status


def build_openarm_rig(
    sources: Optional[Dict[str, Sequence[Optional[OrientationSource]]]] = None,
    drives: Optional[Dict[str, Sequence[Optional[JointDrive]]]] = None,
    ik_targets: Optional[Dict[str, IKTargetConfig]] = None,
    bases: Optional[Dict[str, Pose]] = None,
    **kwargs,
) -> RetargetOrchestrator:
    """Dual-arm OpenArm orchestrator; per-side mappings are keyed by ``"left"``/``"right"``."""

    sources = sources or {}
    drives = drives or {}
    ik_targets = ik_targets or {}
    bases = bases or {}
    arms = []
    for side in config.ARM_SIDES:
        lateral = config.OPENARM_SHOULDER_HALF_WIDTH if side == "left" else -config.OPENARM_SHOULDER_HALF_WIDTH
        base = bases.get(side) or Pose(np.array([0.0, lateral, 0.0]))
        arms.append(
            Arm.openarm(
                side,
                sources=sources.get(side),
                drives=drives.get(side),
                base=base,
                ik=ik_targets.get(side),
            )
        )
    return RetargetOrchestrator(arms, **kwargs)
