"""
Control of the node's containers and of the full snapshot helper.

Invariants:
    - The node is stopped before monitoring and started before monitoring
    - Helper containers never outlive their run
"""

from .controller import ControllerState, NodeLifecycleController
from .helper import HelperProcessSupervisor, HelperState

__all__ = [
    "NodeLifecycleController",
    "ControllerState",
    "HelperProcessSupervisor",
    "HelperState",
]
