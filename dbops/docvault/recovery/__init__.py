"""
Recovery workflows for DocVault.

- verification: restore into a disposable database and smoke-check it
- orchestrator: select -> restore -> migrate -> verify against a target
- steps: external migration/check steps run as commands
"""

from .orchestrator import DisasterRecoveryOrchestrator, DisasterRecoveryRun, RunState, StepStatus
from .steps import CommandStep, RecoveryStep
from .verification import VerificationReport, VerificationRunner, run_smoke_checks

__all__ = [
    "DisasterRecoveryOrchestrator",
    "DisasterRecoveryRun",
    "RunState",
    "StepStatus",
    "CommandStep",
    "RecoveryStep",
    "VerificationReport",
    "VerificationRunner",
    "run_smoke_checks",
]
