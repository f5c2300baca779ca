"""openarm_retarget

Pose retargeting and CCD inverse kinematics for the dual 7-DOF OpenArm.
"""

from .calibration import Calibrator, calibrate_ik_scale
from .geometry import Orientation, Pose
from .joint import DriveCommand, JointChannel, RetargetConfig, SimulatedDrive
from .kinematics import ArmChain, ChainIKSolver, ChainLayout, IKConfig, IKSolution, openarm_chain
from .orchestrator import (
    MODE_CYCLE,
    Arm,
    HybridMode,
    IKMode,
    IKTargetConfig,
    RetargetOrchestrator,
    SingleJointMode,
    build_openarm_rig,
)
from .retarget import JointRetargeter

__all__ = [
    "Arm",
    "ArmChain",
    "Calibrator",
    "ChainIKSolver",
    "ChainLayout",
    "DriveCommand",
    "HybridMode",
    "IKConfig",
    "IKMode",
    "IKSolution",
    "IKTargetConfig",
    "JointChannel",
    "JointRetargeter",
    "MODE_CYCLE",
    "Orientation",
    "Pose",
    "RetargetConfig",
    "RetargetOrchestrator",
    "SimulatedDrive",
    "SingleJointMode",
    "build_openarm_rig",
    "calibrate_ik_scale",
    "openarm_chain",
]
