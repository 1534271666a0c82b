"""
Supervision des processus enfants.
"""

from .controller import ProcessController, select_controller
from .supervisor import ProcessSupervisor, ProcessPipes, stdio_stream_limit_bytes

__all__ = [
    "ProcessController",
    "select_controller",
    "ProcessSupervisor",
    "ProcessPipes",
    "stdio_stream_limit_bytes",
]
