import asyncio
from typing import List, Optional

import aiohttp
from aiohttp import ClientTimeout

from ..logging import BaseLogger
from ..resilience.errors import CircuitOpenError, LifelineError
from .config import ProbeConfig
from .service import ResilienceService


class ProbeFailedError(LifelineError):
    def __init__(self, name: str, status: int):
        self.name = name
        self.status = status
        super().__init__(f"Probe {name} returned status {status}")


def is_retryable_probe_error(error: BaseException) -> bool:
    """Transport errors, timeouts and 5xx responses are worth retrying; anything else is not."""
    if isinstance(error, ProbeFailedError):
        return error.status >= 500
    return isinstance(error, (aiohttp.ClientConnectionError, asyncio.TimeoutError))


class DependencyProbe:
    """Periodically checks an HTTP dependency through the resilient executor."""

    def __init__(
        self,
        config: ProbeConfig,
        service: ResilienceService,
        session: aiohttp.ClientSession,
        logger: BaseLogger,
    ):
        self.config = config
        self.service = service
        self.session = session
        self.logger = logger
        self.last_status: Optional[int] = None

    @property
    def key(self) -> str:
        return f"probe:{self.config.name}"

    async def _request(self) -> int:
        async with self.session.get(
            self.config.url,
            timeout=ClientTimeout(total=self.config.timeout)
        ) as response:
            await response.read()
            if response.status >= 400:
                raise ProbeFailedError(self.config.name, response.status)
            return response.status

    async def check(self) -> bool:
        """Run one check. Returns whether the dependency answered successfully."""
        overrides = {"should_retry": is_retryable_probe_error}
        if self.config.retry is not None:
            overrides = {**{name: getattr(self.config.retry, name) for name in self.config.retry.model_fields_set}, **overrides}

        try:
            self.last_status = await self.service.execute_with_retry(
                self._request,
                overrides,
                key=self.key,
            )
        except CircuitOpenError as e:
            self.logger.log_debug(f"Skipping probe {self.config.name}: {str(e)}")
            return False
        except Exception as e:
            self.logger.log_warning(f"Probe {self.config.name} failed: {str(e)}")
            return False

        self.logger.log_debug(f"Probe {self.config.name} answered {self.last_status}")
        return True

    async def run(self) -> None:
        """Check the dependency every `interval` seconds until shutdown begins."""
        while not self.service.is_shutdown_in_progress():
            await self.check()
            await asyncio.sleep(self.config.interval)


class ProbeGroup:
    """Runs every configured probe on one shared HTTP session."""

    def __init__(self, configs: List[ProbeConfig], service: ResilienceService, logger: BaseLogger):
        self.configs = configs
        self.service = service
        self.logger = logger
        self.session: Optional[aiohttp.ClientSession] = None
        self.probes: List[DependencyProbe] = []
        self._tasks: List[asyncio.Task] = []

    async def start(self) -> None:
        if not self.configs:
            return
        self.session = aiohttp.ClientSession()
        self.probes = [
            DependencyProbe(config, self.service, self.session, self.logger)
            for config in self.configs
        ]
        self._tasks = [
            asyncio.create_task(probe.run(), name=probe.key)
            for probe in self.probes
        ]
        self.logger.log_info(f"Started {len(self.probes)} dependency probe(s)")

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        if self.session is not None:
            await self.session.close()
            self.session = None
