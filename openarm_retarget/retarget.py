"""Per-joint mapping pipeline: dead zone, smoothing, soft limits and rate limiting."""

from __future__ import annotations

import logging
from typing import Optional

from .geometry import clamp, clamp01, inverse_lerp, lerp
from .joint import JointChannel, RetargetConfig

LOGGER = logging.getLogger(__name__)


def apply_dead_zone(channel: JointChannel, mapped: float) -> float:
    """Dead zone with a hysteresis latch; updates ``channel.in_dead_hold``."""

    cfg = channel.mapping
    center = cfg.dead_center
    offset = abs(mapped - center)
    if channel.in_dead_hold:
        if offset > cfg.dead_zone + cfg.hysteresis:
            channel.in_dead_hold = False
            return mapped
        return center
    if offset < cfg.dead_zone:
        channel.in_dead_hold = True
        return center
    return mapped


def shape_soft_limits(value: float, lower: float, upper: float, margin: float) -> float:
    """Pull values inside the last ``margin`` degrees back toward the soft boundary."""

    lower_soft = lower + margin
    upper_soft = upper - margin
    if upper_soft < value < upper:
        t = inverse_lerp(upper_soft, upper, value)
        return lerp(value, upper_soft, t)
    if lower < value < lower_soft:
        t = inverse_lerp(lower_soft, lower, value)
        return lerp(value, lower_soft, t)
    return value


def limit_rate(previous: float, target: float, cfg: RetargetConfig, dt: float) -> float:
    if cfg.rate_limit_deg_per_sec <= 0.0 or dt <= 0.0:
        return target
    max_step = cfg.rate_limit_deg_per_sec * dt
    return previous + clamp(target - previous, -max_step, max_step)


class JointRetargeter:
    """Turns raw source angles into safe drive targets.

    All state lives on the :class:`JointChannel`; the retargeter itself is
    stateless and can be shared by every joint of both arms.
    """

    def apply(self, channel: JointChannel, dt: float, now: Optional[float] = None) -> Optional[float]:
        """Read the channel's source and run the pipeline.

        Returns the commanded angle, or None when the channel has no drive or
        no source sample this tick (the channel is left untouched).
        """

        if channel.drive is None:
            LOGGER.debug("%s: no drive bound, skipping", channel.name)
            return None
        if self._holding_lock(channel, now):
            return channel.locked_target
        raw = channel.read_source_angle()
        if raw is None:
            LOGGER.debug("%s: no source sample, skipping", channel.name)
            return None
        return self.process(channel, raw, dt, now)

    def process(
        self,
        channel: JointChannel,
        raw_deg: float,
        dt: float,
        now: Optional[float] = None,
    ) -> float:
        """Run the mapping pipeline for a raw source angle and commit the result."""

        if self._holding_lock(channel, now):
            return channel.locked_target

        cfg = channel.mapping
        mapped = cfg.offset_deg + cfg.scale * float(raw_deg)
        mapped = apply_dead_zone(channel, mapped)

        channel.filtered_deg = lerp(channel.filtered_deg, mapped, clamp01(cfg.smooth_alpha))

        target = channel.clamp(channel.filtered_deg)
        target = shape_soft_limits(target, channel.min_deg, channel.max_deg, cfg.soft_limit_margin)
        target = limit_rate(channel.last_cmd_deg, target, cfg, dt)
        target = channel.clamp(target)

        self._commit(channel, target)
        return target

    def set_target_direct(self, channel: JointChannel, angle_deg: float) -> Optional[float]:
        """Drive the joint to ``angle_deg`` (clamped), bypassing the filter stages."""

        if channel.drive is None:
            return None
        if channel.is_locked:
            return channel.hold_locked_target()
        target = channel.clamp(angle_deg)
        self._commit(channel, target)
        return target

    # ------------------------------------------------------------------
    @staticmethod
    def _holding_lock(channel: JointChannel, now: Optional[float]) -> bool:
        if now is not None and channel.release_lock_if_expired(now):
            LOGGER.debug("%s: calibration lock released", channel.name)
        if not channel.is_locked:
            return False
        channel.hold_locked_target()
        return True

    @staticmethod
    def _commit(channel: JointChannel, target: float) -> None:
        channel.commanded_deg = target
        channel.last_cmd_deg = target
        channel.push_drive(target)
