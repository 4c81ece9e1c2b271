"""
Métricas Prometheus do agente
"""
import time
from typing import Optional

from prometheus_client import Counter, Histogram

BLOCKED_REQUESTS = Counter('bearer_agent_blocked_requests_total', 'Requests refused because of a blocked domain')
RECORDS_SHIPPED = Counter('bearer_agent_records_shipped_total', 'Records delivered to the collector')
RECORDS_FAILED = Counter('bearer_agent_records_failed_total', 'Records lost in the telemetry path', ['reason'])
RECORDS_DROPPED = Counter('bearer_agent_records_dropped_total', 'Records discarded because the telemetry queue was full')
CONFIG_FETCH_FAILURES = Counter('bearer_agent_config_fetch_failures_total', 'Failed configuration fetches')

SANITIZATION_TIME = Histogram('bearer_agent_sanitization_seconds', 'Time spent sanitizing records')
SHIPPING_TIME = Histogram('bearer_agent_shipping_seconds', 'Time spent delivering records to the collector')


class PerformanceTimer:
    """Context manager para medir tempo de execução"""

    def __init__(self, histogram: Optional[Histogram] = None):
        self.histogram = histogram
        self.start_time = None
        self.end_time = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.end_time = time.perf_counter()
        if self.histogram is not None:
            self.histogram.observe(self.duration)

    @property
    def duration(self) -> float:
        """Retorna a duração em segundos"""
        if self.start_time is not None and self.end_time is not None:
            return self.end_time - self.start_time
        return 0.0
