from .billing_scheduler import BillingScheduler, run_billing_sweep, create_scheduler
from .config import scheduler_config, SchedulerConfig

__all__ = [
    "BillingScheduler",
    "run_billing_sweep",
    "create_scheduler",
    "scheduler_config",
    "SchedulerConfig",
]
