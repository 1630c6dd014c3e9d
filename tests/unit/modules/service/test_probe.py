import asyncio
from typing import List

import aiohttp
import pytest
from aiohttp import test_utils, web
from unittest.mock import Mock

from src.modules.resilience.config import RetryConfig
from src.modules.resilience.errors import LifelineError
from src.modules.service.config import ProbeConfig, ServiceConfig, ShutdownConfig
from src.modules.service.probe import (
    DependencyProbe,
    ProbeFailedError,
    ProbeGroup,
    is_retryable_probe_error,
)
from src.modules.service.service import ResilienceService


class FakeDependency:
    """Answers each request with the next configured status, repeating the last one."""

    def __init__(self, statuses: List[int]):
        self.statuses = list(statuses)
        self.requests = 0

    async def handle(self, request: web.Request) -> web.Response:
        self.requests += 1
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        return web.Response(status=status, text="ok" if status < 400 else "error")

    def server(self) -> test_utils.TestServer:
        app = web.Application()
        app.router.add_get("/health", self.handle)
        return test_utils.TestServer(app)


@pytest.fixture
def service(mock_logger):
    config = ServiceConfig(shutdown=ShutdownConfig(grace_period=None))
    return ResilienceService(config, mock_logger, terminate=Mock())


def probe_config(url: str, **kwargs) -> ProbeConfig:
    kwargs.setdefault("retry", RetryConfig(max_attempts=3, base_delay=0.01))
    return ProbeConfig(name="inventory", url=url, **kwargs)


def test_retryable_errors():
    assert is_retryable_probe_error(ProbeFailedError("db", 503))
    assert not is_retryable_probe_error(ProbeFailedError("db", 404))
    assert is_retryable_probe_error(aiohttp.ClientConnectionError())
    assert is_retryable_probe_error(asyncio.TimeoutError())
    assert not is_retryable_probe_error(ValueError("bad"))


def test_probe_failure_is_a_library_error():
    error = ProbeFailedError("db", 503)

    assert isinstance(error, LifelineError)
    assert str(error) == "Probe db returned status 503"
    assert error.status == 503


class TestDependencyProbe:
    """Test cases for DependencyProbe against a local HTTP dependency."""

    @pytest.mark.asyncio
    async def test_healthy_dependency(self, service, mock_logger):
        dependency = FakeDependency([200])
        async with dependency.server() as server, aiohttp.ClientSession() as session:
            probe = DependencyProbe(probe_config(str(server.make_url("/health"))), service, session, mock_logger)
            assert await probe.check() is True

        assert probe.key == "probe:inventory"
        assert probe.last_status == 200
        assert dependency.requests == 1
        assert service.get_circuit_breaker_state("probe:inventory") is None

    @pytest.mark.asyncio
    async def test_retries_server_errors(self, service, mock_logger):
        dependency = FakeDependency([503, 502, 200])
        async with dependency.server() as server, aiohttp.ClientSession() as session:
            probe = DependencyProbe(probe_config(str(server.make_url("/health"))), service, session, mock_logger)
            assert await probe.check() is True

        assert dependency.requests == 3
        assert service.get_circuit_breaker_state("probe:inventory").failure_count == 0

    @pytest.mark.asyncio
    async def test_client_errors_are_not_retried(self, service, mock_logger):
        dependency = FakeDependency([404])
        async with dependency.server() as server, aiohttp.ClientSession() as session:
            probe = DependencyProbe(probe_config(str(server.make_url("/health"))), service, session, mock_logger)
            assert await probe.check() is False

        assert dependency.requests == 1
        mock_logger.log_warning.assert_any_call("Probe inventory failed: Probe inventory returned status 404")
        assert service.get_circuit_breaker_state("probe:inventory").failure_count == 1

    @pytest.mark.asyncio
    async def test_open_circuit_skips_request(self, service, mock_logger):
        for _ in range(5):
            service.registry.record_failure("probe:inventory")

        dependency = FakeDependency([200])
        async with dependency.server() as server, aiohttp.ClientSession() as session:
            probe = DependencyProbe(probe_config(str(server.make_url("/health"))), service, session, mock_logger)
            assert await probe.check() is False

        assert dependency.requests == 0
        mock_logger.log_debug.assert_any_call(
            "Skipping probe inventory: Circuit breaker is open for operation: probe:inventory"
        )

    @pytest.mark.asyncio
    async def test_uses_service_retry_defaults_without_override(self, mock_logger):
        config = ServiceConfig(
            shutdown=ShutdownConfig(grace_period=None),
            retry=RetryConfig(max_attempts=2, base_delay=0.01),
        )
        service = ResilienceService(config, mock_logger, terminate=Mock())
        dependency = FakeDependency([500])

        async with dependency.server() as server, aiohttp.ClientSession() as session:
            probe = DependencyProbe(
                ProbeConfig(name="inventory", url=str(server.make_url("/health"))),
                service,
                session,
                mock_logger,
            )
            assert await probe.check() is False

        assert dependency.requests == 2

    @pytest.mark.asyncio
    async def test_run_stops_when_shutdown_begins(self, service, mock_logger):
        dependency = FakeDependency([200])
        async with dependency.server() as server, aiohttp.ClientSession() as session:
            probe = DependencyProbe(
                probe_config(str(server.make_url("/health")), interval=0.01), service, session, mock_logger
            )
            task = asyncio.create_task(probe.run())
            await asyncio.sleep(0.05)
            await service.trigger_shutdown("test")
            await asyncio.wait_for(task, timeout=1)

        assert dependency.requests >= 1


class TestProbeGroup:
    """Test cases for ProbeGroup."""

    @pytest.mark.asyncio
    async def test_no_probes_opens_no_session(self, service, mock_logger):
        group = ProbeGroup([], service, mock_logger)
        await group.start()

        assert group.session is None
        await group.stop()

    @pytest.mark.asyncio
    async def test_start_and_stop(self, service, mock_logger):
        dependency = FakeDependency([200])
        async with dependency.server() as server:
            group = ProbeGroup([probe_config(str(server.make_url("/health")), interval=10)], service, mock_logger)
            await group.start()
            session = group.session
            await asyncio.sleep(0.05)
            await group.stop()

        assert session.closed
        assert group.session is None
        assert dependency.requests == 1
        mock_logger.log_info.assert_any_call("Started 1 dependency probe(s)")
