"""HTTP readiness probing."""

from __future__ import annotations

import asyncio

import aiohttp
from loguru import logger

from cbtainers.exceptions import ServiceNotReady
from cbtainers.retry import DEFAULT_POLICY, RetryPolicy, with_retry

SERVICE_PORT = 8091
READINESS_PATH = "/ui/index.html"

log = logger.bind(component="probe")


async def _check(session: aiohttp.ClientSession, url: str) -> None:
    try:
        async with session.get(url) as resp:
            if resp.status != 200:
                raise ServiceNotReady(url, resp.status)
    except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
        raise ServiceNotReady(url) from e


async def wait_until_ready(
    host: str,
    *,
    port: int = SERVICE_PORT,
    path: str = READINESS_PATH,
    policy: RetryPolicy = DEFAULT_POLICY,
    timeout: float = 10.0,
) -> None:
    """Poll ``http://host:port/path`` until it answers HTTP 200.

    A reachable endpoint answering anything other than 200 counts as not
    ready and is retried like a refused connection.

    Raises:
        ServiceNotReady: The final attempt did not answer 200.
    """
    url = f"http://{host}:{port}{path}"
    log.info("Waiting for {url}", url=url)
    client_timeout = aiohttp.ClientTimeout(total=timeout)
    async with aiohttp.ClientSession(timeout=client_timeout) as session:
        await with_retry(
            lambda: _check(session, url),
            policy,
            on=ServiceNotReady,
            description=f"readiness of {url}",
        )
    log.info("{url} is ready", url=url)
