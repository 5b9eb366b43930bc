"""HTTP client for the test runner running inside the guest."""

import asyncio
import logging
from collections.abc import AsyncGenerator, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

import aiohttp
from pydantic import BaseModel, ValidationError
from yarl import URL

from vm_test_manager.errors import ManagerError
from vm_test_manager.models.runner import (
    AppVersion,
    ExecRequest,
    ExecResult,
    HealthResponse,
    HttpGetRequest,
    HttpGetResult,
    OsInfo,
)

log = logging.getLogger(__name__)


class RunnerError(ManagerError):
    """Raised when the guest runner returns an error or cannot be reached."""


class RunnerNotReadyError(RunnerError):
    """Raised when the runner does not answer its health check in time."""


@dataclass(frozen=True, kw_only=True)
class RunnerClient:
    """Client for the guest runner API."""

    base_url: URL
    session: aiohttp.ClientSession = field(repr=False)

    @classmethod
    @asynccontextmanager
    async def from_url(
        cls, base_url: URL, request_timeout: float = 120
    ) -> AsyncGenerator["RunnerClient", None]:
        """Create a client with managed session lifecycle."""
        timeout = aiohttp.ClientTimeout(total=request_timeout)
        async with aiohttp.ClientSession(base_url=base_url, timeout=timeout) as session:
            yield cls(base_url=base_url, session=session)

    async def wait_ready(self, timeout: float = 300, poll_interval: float = 2) -> None:
        """Poll the health endpoint until the runner answers.

        Raises:
            RunnerNotReadyError: If the runner does not answer within ``timeout``
                seconds

        """
        deadline = asyncio.get_running_loop().time() + timeout

        while True:
            try:
                health = await self._request("GET", "/health", HealthResponse)
            except (
                RunnerError,
                aiohttp.ClientError,
                TimeoutError,
                ValidationError,
            ) as exc:
                log.debug("Runner not ready yet: %s", exc)
            else:
                log.info("Runner is ready (status=%s)", health.status)
                return

            if asyncio.get_running_loop().time() >= deadline:
                raise RunnerNotReadyError(
                    f"Runner at {self.base_url} did not become ready "
                    f"within {timeout} seconds"
                )

            await asyncio.sleep(poll_interval)

    async def get_os(self) -> OsInfo:
        """Operating system reported by the runner."""
        return await self._request("GET", "/os", OsInfo)

    async def get_app_version(self) -> str | None:
        """Installed app version, or None when the app is not installed."""
        async with self.session.get("/app/version") as response:
            if response.status == 404:
                return None
            await _raise_for_status(response)
            return AppVersion.model_validate(await response.json()).version

    async def exec(self, path: str, args: Sequence[str] = ()) -> ExecResult:
        """Run a program in the guest and wait for it to exit."""
        request = ExecRequest(path=path, args=args)
        return await self._request("POST", "/exec", ExecResult, request)

    async def http_get(self, url: str, proxy: str | None = None) -> HttpGetResult:
        """Fetch ``url`` from inside the guest."""
        request = HttpGetRequest(url=url, proxy=proxy)
        return await self._request("POST", "/http/get", HttpGetResult, request)

    async def _request[ResponseT: BaseModel](
        self,
        method: str,
        path: str,
        response_model: type[ResponseT],
        body: BaseModel | None = None,
    ) -> ResponseT:
        kwargs: dict[str, Any] = {}
        if body is not None:
            kwargs["json"] = body.model_dump(mode="json")
        try:
            async with self.session.request(method, path, **kwargs) as response:
                await _raise_for_status(response)
                data = await response.json()
        except aiohttp.ClientConnectionError as exc:
            raise RunnerError(f"Runner unreachable at {self.base_url}: {exc}") from exc
        return response_model.model_validate(data)


async def _raise_for_status(response: aiohttp.ClientResponse) -> None:
    if response.status >= 400:
        text = await response.text()
        raise RunnerError(
            f"Runner request {response.method} {response.url.path} failed: "
            f"{response.status} {text}"
        )
