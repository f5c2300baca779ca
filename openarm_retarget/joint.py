"""Joint channel state, drive commands and source bindings."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Deque, Optional, Protocol, Sequence

import numpy as np

from . import config
from .geometry import Orientation, clamp, delta_angle, unit_axis

LOGGER = logging.getLogger(__name__)

OrientationSource = Callable[[], Optional[Orientation]]


class Axis(str, Enum):
    X = "x"
    Y = "y"
    Z = "z"

    @property
    def index(self) -> int:
        return "xyz".index(self.value)


@dataclass(frozen=True)
class DriveParameters:
    stiffness: float = config.DEFAULT_STIFFNESS
    damping: float = config.DEFAULT_DAMPING
    force_limit: float = config.DEFAULT_FORCE_LIMIT


@dataclass(frozen=True)
class DriveCommand:
    """One tick's output for a single joint drive."""

    target_deg: float
    stiffness: float
    damping: float
    force_limit: float


class JointDrive(Protocol):
    """Actuation collaborator. Fire-and-forget: nothing is reported back."""

    def command(self, command: DriveCommand) -> None:
        ...


@dataclass
class SimulatedDrive:
    """In-process drive that records the commands it receives."""

    history_size: int = 256
    history: Deque[DriveCommand] = field(init=False)

    def __post_init__(self) -> None:
        self.history = deque(maxlen=self.history_size)

    def command(self, command: DriveCommand) -> None:
        self.history.append(command)

    @property
    def last(self) -> Optional[DriveCommand]:
        return self.history[-1] if self.history else None

    @property
    def target_deg(self) -> float:
        last = self.last
        return last.target_deg if last is not None else 0.0


@dataclass
class RetargetConfig:
    """Static mapping parameters for one joint (``offset_deg`` is rewritten by calibration)."""

    scale: float = 1.0
    offset_deg: float = 0.0
    dead_zone: float = config.DEFAULT_DEAD_ZONE_DEG
    hysteresis: float = config.DEFAULT_HYSTERESIS_DEG
    dead_center: float = 0.0
    smooth_alpha: float = config.DEFAULT_SMOOTH_ALPHA
    rate_limit_deg_per_sec: float = config.DEFAULT_RATE_LIMIT_DEG_PER_SEC
    soft_limit_margin: float = config.DEFAULT_SOFT_LIMIT_MARGIN_DEG


@dataclass
class JointChannel:
    """One controllable robot joint together with its mapping and filter state."""

    name: str
    axis: np.ndarray | str = "x"
    min_deg: float = -180.0
    max_deg: float = 180.0
    mapping: RetargetConfig = field(default_factory=RetargetConfig)
    drive_params: DriveParameters = field(default_factory=DriveParameters)
    source: Optional[OrientationSource] = None
    source_axis: Axis | str = Axis.X
    use_neutral_calibration: bool = True
    use_swing_twist: bool = False
    drive: Optional[JointDrive] = None
    neutral: Optional[Orientation] = None

    commanded_deg: float = field(default=0.0, init=False)
    filtered_deg: float = field(default=0.0, init=False)
    last_cmd_deg: float = field(default=0.0, init=False)
    in_dead_hold: bool = field(default=False, init=False)
    is_locked: bool = field(default=False, init=False)
    locked_target: float = field(default=0.0, init=False)
    lock_until: Optional[float] = field(default=None, init=False)

    def __post_init__(self) -> None:
        self.axis = unit_axis(self.axis)
        self.source_axis = Axis(self.source_axis)
        if self.min_deg > self.max_deg:
            raise ValueError(f"{self.name}: min_deg must not exceed max_deg")
        rest = self.clamp(0.0)
        self.commanded_deg = rest
        self.filtered_deg = rest
        self.last_cmd_deg = rest

    # ------------------------------------------------------------------
    # Source reading
    # ------------------------------------------------------------------
    def sample_source(self) -> Optional[Orientation]:
        if self.source is None:
            return None
        return self.source()

    def calibrate_neutral(self) -> bool:
        """Capture the current source orientation as the zero reference."""

        sample = self.sample_source()
        if sample is None:
            LOGGER.debug("%s: no source sample, neutral unchanged", self.name)
            return False
        self.neutral = sample
        return True

    def read_source_angle(self, sample: Optional[Orientation] = None) -> Optional[float]:
        """Signed source angle about ``source_axis`` in (-180, 180], or None without a sample."""

        if sample is None:
            sample = self.sample_source()
        if sample is None:
            return None

        reference = self.neutral if self.use_neutral_calibration else None
        if self.use_swing_twist:
            rotation = sample.relative_to(reference) if reference is not None else sample
            return rotation.twist_angle_deg(self.source_axis.value)

        idx = self.source_axis.index
        raw = delta_angle(0.0, sample.euler_deg()[idx])
        if reference is not None:
            neutral_axis = delta_angle(0.0, reference.euler_deg()[idx])
            raw = delta_angle(neutral_axis, raw)
        return raw

    # ------------------------------------------------------------------
    # Limits, lock and drive output
    # ------------------------------------------------------------------
    def clamp(self, angle_deg: float) -> float:
        return clamp(angle_deg, self.min_deg, self.max_deg)

    def lock(self, target_deg: float, until: Optional[float] = None) -> None:
        self.is_locked = True
        self.locked_target = float(target_deg)
        self.lock_until = until

    def unlock(self) -> None:
        self.is_locked = False
        self.lock_until = None

    def release_lock_if_expired(self, now: float) -> bool:
        if self.is_locked and self.lock_until is not None and now >= self.lock_until:
            self.unlock()
            return True
        return False

    def hold_locked_target(self) -> float:
        """Pin command and filter state to the locked target and push it to the drive."""

        target = self.locked_target
        self.filtered_deg = target
        self.commanded_deg = target
        self.last_cmd_deg = target
        self.push_drive(target)
        return target

    def push_drive(self, target_deg: float) -> None:
        if self.drive is None:
            return
        params = self.drive_params
        self.drive.command(
            DriveCommand(
                target_deg=float(target_deg),
                stiffness=params.stiffness,
                damping=params.damping,
                force_limit=params.force_limit,
            )
        )


def openarm_channels(
    side: str,
    sources: Optional[Sequence[Optional[OrientationSource]]] = None,
    drives: Optional[Sequence[Optional[JointDrive]]] = None,
) -> list[JointChannel]:
    """Seven configured channels for one OpenArm, named ``<side>_joint_<n>``."""

    count = config.OPENARM_JOINT_COUNT
    sources = list(sources) if sources is not None else [None] * count
    drives = list(drives) if drives is not None else [None] * count
    if len(sources) != count or len(drives) != count:
        raise ValueError(f"sources and drives must contain {count} entries")

    channels = []
    for idx in range(count):
        lower, upper = config.OPENARM_JOINT_LIMITS_DEG[idx]
        channels.append(
            JointChannel(
                name=f"{side}_joint_{idx + 1}",
                axis=config.OPENARM_JOINT_AXES[idx],
                min_deg=lower,
                max_deg=upper,
                source=sources[idx],
                source_axis=config.OPENARM_SOURCE_AXES[idx],
                drive=drives[idx],
            )
        )
    return channels
