"""Post-deploy health probe (Guardian contract).

Guardian itself is the long-lived runtime monitor inside the deployed
application; its remediation logic is not part of this package. The pipeline's
only contract with it is one bounded HTTP probe, made once after a short fixed
delay. A failed probe is reported, never retried.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import requests

logger = logging.getLogger(__name__)


@dataclass
class HealthProbeResult:
    """Outcome of the single post-deploy probe."""

    url: str
    healthy: bool
    status_code: Optional[int] = None
    latency_ms: Optional[int] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict:
        return dict(self.__dict__)


class HealthProbe:
    """One-shot HTTP health probe."""

    def __init__(
        self,
        url: str,
        delay_seconds: float = 5.0,
        timeout_seconds: float = 10.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize probe.

        Args:
            url: Health endpoint of the deployed application
            delay_seconds: Fixed wait after deploy before probing
            timeout_seconds: Request timeout
            sleep: Sleep function (injectable for tests)
        """
        self.url = url
        self.delay_seconds = delay_seconds
        self.timeout_seconds = timeout_seconds
        self._sleep = sleep

    def probe(self) -> HealthProbeResult:
        """Wait, then probe exactly once. Never raises."""
        if self.delay_seconds > 0:
            logger.info(f"[Guardian] Waiting {self.delay_seconds:g}s before health probe")
            self._sleep(self.delay_seconds)

        start = time.monotonic()
        try:
            response = requests.get(self.url, timeout=self.timeout_seconds)
        except requests.exceptions.RequestException as e:
            logger.warning(f"[Guardian] Health probe to {self.url} failed: {e}")
            return HealthProbeResult(url=self.url, healthy=False, error=str(e))

        latency_ms = int((time.monotonic() - start) * 1000)
        healthy = 200 <= response.status_code < 300
        result = HealthProbeResult(
            url=self.url,
            healthy=healthy,
            status_code=response.status_code,
            latency_ms=latency_ms,
            error=None if healthy else f"HTTP {response.status_code}",
        )

        if healthy:
            logger.info(f"[Guardian] {self.url} healthy ({response.status_code}, {latency_ms}ms)")
        else:
            logger.warning(f"[Guardian] {self.url} unhealthy: HTTP {response.status_code}")
        return result
