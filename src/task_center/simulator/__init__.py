"""Client-side run simulation with optimistic status and completion timers."""

from task_center.simulator.gateway import EngineGateway, HttpTaskGateway, TaskGateway
from task_center.simulator.run_simulator import RUN_COMPLETION_DELAY_S, RunSimulator, TaskShadow
from task_center.simulator.scheduler import AsyncioScheduler, Scheduler

__all__ = [
    "RUN_COMPLETION_DELAY_S",
    "AsyncioScheduler",
    "EngineGateway",
    "HttpTaskGateway",
    "RunSimulator",
    "Scheduler",
    "TaskGateway",
    "TaskShadow",
]
