import os
from dataclasses import dataclass


MAX_IN_FLIGHT_PER_CPU = 64
MAX_IN_FLIGHT_CAP = 4096
CHANNEL_FLOOR = 256
CHANNEL_CEILING = 16384


@dataclass(frozen=True)
class ConcurrencyBudget:
    max_in_flight: int
    channel_capacity: int

    def __post_init__(self):
        if self.max_in_flight < 1 or self.channel_capacity < 1:
            raise ValueError("Concurrency budget values must be >= 1")
        if self.channel_capacity < self.max_in_flight:
            raise ValueError("channel_capacity must be >= max_in_flight")


def compute_concurrency(cpus):
    """Connect scans are latency-bound: 64 tasks per CPU, capped at 4096."""
    return min(max(1, int(cpus)) * MAX_IN_FLIGHT_PER_CPU, MAX_IN_FLIGHT_CAP)


def compute_channel_size(concurrency):
    return min(max(concurrency * 4, CHANNEL_FLOOR), CHANNEL_CEILING)


def budget_for(cpus, workers=None):
    if workers is not None:
        max_in_flight = min(max(1, int(workers)), MAX_IN_FLIGHT_CAP)
    else:
        max_in_flight = compute_concurrency(cpus)
    channel = max(compute_channel_size(max_in_flight), max_in_flight)
    return ConcurrencyBudget(max_in_flight=max_in_flight, channel_capacity=channel)


def detect_cpus():
    return os.cpu_count() or 1
