"""回放引擎"""

from .context import DurableOrchestrationContext, EntityLock, ReplaySafeLogger
from .executor import TaskOrchestrationExecutor
from .orchestrator import Orchestrator, orchestrator

__all__ = [
    "DurableOrchestrationContext",
    "EntityLock",
    "Orchestrator",
    "ReplaySafeLogger",
    "TaskOrchestrationExecutor",
    "orchestrator",
]
