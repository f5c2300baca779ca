"""CLI entrypoint: headless retargeting session driven by a synthetic operator."""

from __future__ import annotations

import argparse
import json
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import numpy as np

from . import config
from .geometry import Orientation
from .joint import OrientationSource, SimulatedDrive
from .orchestrator import MODES_BY_LABEL, IKTargetConfig, PositionSource, build_openarm_rig

LOGGER = logging.getLogger(__name__)


@dataclass
class SyntheticOperator:
    """Tracked human whose bones sway sinusoidally and whose wrist circles in front of the chest."""

    amplitude_deg: float = 25.0
    frequency_hz: float = 0.25
    reach: float = 0.45
    time: float = 0.0

    def advance(self, dt: float) -> None:
        self.time += dt

    def _phase(self, offset: float = 0.0) -> float:
        return 2.0 * np.pi * self.frequency_hz * self.time + offset

    def bone_source(self, joint_index: int, source_axis: str) -> OrientationSource:
        def sample() -> Orientation:
            angle = self.amplitude_deg * np.sin(self._phase(0.7 * joint_index))
            euler = {"x": 0.0, "y": 0.0, "z": 0.0}
            euler[source_axis] = angle
            return Orientation.from_euler_deg(euler["x"], euler["y"], euler["z"])

        return sample

    def shoulder_source(self, side: str) -> PositionSource:
        lateral = 0.2 if side == "left" else -0.2

        def sample() -> np.ndarray:
            return np.array([0.0, lateral, 1.4])

        return sample

    def wrist_source(self, side: str) -> PositionSource:
        shoulder = self.shoulder_source(side)

        def sample() -> np.ndarray:
            phase = self._phase()
            offset = np.array(
                [0.6 * self.reach + 0.05 * np.sin(phase), 0.08 * np.cos(phase), -0.5 * self.reach]
            )
            return shoulder() + offset

        return sample


def run_session(
    duration: float,
    dt: float,
    mode: str,
    calibrate_at: float | None,
    log_path: Path | None,
    realtime: bool = False,
) -> list[dict[str, Any]]:
    if dt <= 0.0:
        raise ValueError("dt must be positive")
    if mode not in MODES_BY_LABEL:
        raise ValueError(f"mode must be one of {sorted(MODES_BY_LABEL)}")

    operator = SyntheticOperator()
    sources = {
        side: [operator.bone_source(idx, axis) for idx, axis in enumerate(config.OPENARM_SOURCE_AXES)]
        for side in config.ARM_SIDES
    }
    drives = {side: [SimulatedDrive() for _ in range(config.OPENARM_JOINT_COUNT)] for side in config.ARM_SIDES}
    ik_targets = {
        side: IKTargetConfig(
            wrist_source=operator.wrist_source(side),
            shoulder_source=operator.shoulder_source(side),
        )
        for side in config.ARM_SIDES
    }
    orchestrator = build_openarm_rig(sources, drives, ik_targets, mode=MODES_BY_LABEL[mode])

    log: list[dict[str, Any]] = []
    pending_calibration = calibrate_at is not None
    steps = max(1, int(round(duration / dt)))
    for _ in range(steps):
        operator.advance(dt)
        if pending_calibration and orchestrator.time >= calibrate_at:
            for side in config.ARM_SIDES:
                orchestrator.calibrate(side)
            pending_calibration = False

        report = orchestrator.tick(dt)
        entry: dict[str, Any] = {"tick": report.tick, "time": report.time, "mode": report.mode}
        for name, result in report.arms.items():
            entry[f"{name}_angles"] = [float(angle) for angle in result.commanded]
            if result.solution is not None:
                entry[f"{name}_residual"] = result.solution.residual
                entry[f"{name}_ik_success"] = result.solution.success
        log.append(entry)
        if realtime:
            time.sleep(dt)

    LOGGER.info("Session finished after %d ticks: %s", orchestrator.tick_count, orchestrator.status_text())
    if log_path:
        log_path.write_text(json.dumps(log, indent=2))
    return log


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="OpenArm headless retargeting session")
    parser.add_argument("--duration", type=float, default=5.0, help="Session duration [s]")
    parser.add_argument("--dt", type=float, default=config.FIXED_DELTA_TIME, help="Control tick [s]")
    parser.add_argument("--mode", choices=sorted(MODES_BY_LABEL), default="single", help="Control mode")
    parser.add_argument("--calibrate-at", type=float, default=None, help="Trigger calibration at this time [s]")
    parser.add_argument("--realtime", action="store_true", help="Sleep one tick per step")
    parser.add_argument("--log", type=Path, help="Optional JSON log output path")
    parser.add_argument("--log-level", default="INFO", help="Logging level (DEBUG, INFO, WARNING, ...)")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    run_session(args.duration, args.dt, args.mode, args.calibrate_at, args.log, args.realtime)


if __name__ == "__main__":
    main()
