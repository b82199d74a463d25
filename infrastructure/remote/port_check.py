"""TCP reachability check."""

import asyncio
import logging

from core.utils.waiters import poll_until


logger = logging.getLogger(__name__)


async def port_is_open(host: str, port: int, connect_timeout: float = 5) -> bool:
    """One connection attempt; True when the handshake completes."""
    try:
        _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), connect_timeout)
    except (OSError, asyncio.TimeoutError):
        return False
    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return True


async def wait_for_port(
    host: str,
    port: int = 22,
    delay: float = 20,
    timeout: float = 320,
    poll_interval: float = 5,
) -> float:
    """Sleep ``delay`` then poll until ``host:port`` accepts connections.

    Raises TimeoutError when ``timeout`` (measured after the delay) elapses.
    """
    logger.info(f"Waiting for {host}:{port} (delay {delay}s, timeout {timeout}s)")
    if delay:
        await asyncio.sleep(delay)

    async def check() -> bool:
        return await port_is_open(host, port, connect_timeout=min(5, poll_interval or 5))

    return await poll_until(
        check, timeout, poll_interval, description=f"port {port} on {host}"
    )
