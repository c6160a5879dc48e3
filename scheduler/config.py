import os
from dataclasses import dataclass
from dotenv import load_dotenv

load_dotenv()


@dataclass
class SchedulerConfig:
    interval_seconds: float = float(os.getenv("BILLING_INTERVAL_SECONDS", "3600"))
    run_on_start: bool = os.getenv("BILLING_RUN_ON_START", "true").lower() == "true"
    sweep_concurrency: int = int(os.getenv("BILLING_SWEEP_CONCURRENCY", "1"))
    # Exactly one process per ledger may run the sweep.
    run_in_api: bool = os.getenv("RUN_BILLING_SCHEDULER", "true").lower() == "true"
    log_level: str = os.getenv("LOG_LEVEL", "INFO")


scheduler_config = SchedulerConfig()
