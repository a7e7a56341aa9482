"""devhost modules - Self-contained bricks following the brick philosophy

Each module is a self-contained component with clear contracts:
- Command Runner: Execute host commands, record invocations, keep sudo warm
- Prerequisites Checker: Verify required tools before any mutating step
"""

from . import command_runner, prerequisites

__all__ = ["command_runner", "prerequisites"]
