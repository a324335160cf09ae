from .types import JobContext, JobResult, JobError
from .execution_log import JobLogger
from .scheduling import ScheduleRegistry, JobDefinition, RetryPolicy
from .registry import JobRegistry, create_default_registry
from .monitoring import JobMonitor
from .analytics import JobAnalytics
from .scheduler import JobScheduler

__all__ = [
    "JobContext",
    "JobResult",
    "JobError",
    "JobLogger",
    "ScheduleRegistry",
    "JobDefinition",
    "RetryPolicy",
    "JobRegistry",
    "create_default_registry",
    "JobMonitor",
    "JobAnalytics",
    "JobScheduler",
]
