"""Change-feed observer — PG LISTEN/NOTIFY for contact mutations.

Learn: Alternative emission source to the synchronous notifier. The
0002 migration installs a trigger that NOTIFYs 'contact_changes' with
{op, record} on every insert/update/delete. This observer holds a
dedicated asyncpg connection, LISTENs on that channel, and publishes an
envelope per notification.

Failure policy:
- Not PostgreSQL → log a warning and return. Never crash the process.
- Connect failure / connection dropped → log, sleep a fixed backoff,
  reconnect. Retries are unbounded; realtime is an enhancement over the
  dashboard's polling fallback, not a correctness requirement.

Usage (wired in main.lifespan when TECHFLOW_REALTIME_MODE=feed):
    observer = ContactFeedObserver(notifier, settings.database_url)
    task = asyncio.create_task(observer.run())
    ...
    await observer.stop(); task.cancel()
"""

import asyncio
import json
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

import asyncpg
import structlog

from techflow.realtime.envelope import envelope_from_feed
from techflow.realtime.notifier import ChangeNotifier

logger = structlog.get_logger()

CHANNEL = "contact_changes"


def to_asyncpg_dsn(database_url: str) -> str:
    """Strip the SQLAlchemy driver suffix (postgresql+asyncpg:// → postgresql://)."""
    scheme, sep, rest = database_url.partition("://")
    return f"{scheme.split('+', 1)[0]}{sep}{rest}"


def supports_change_feed(database_url: str) -> bool:
    scheme = database_url.partition("://")[0].split("+", 1)[0]
    return scheme in ("postgresql", "postgres")


@dataclass
class FeedStats:
    """Runtime counters for monitoring."""
    received: int = 0
    published: int = 0
    errors: int = 0
    reconnects: int = 0


class ContactFeedObserver:
    """Publishes contact envelopes from the PostgreSQL change feed."""

    def __init__(
        self,
        notifier: ChangeNotifier,
        database_url: str,
        reconnect_delay: float = 5.0,
        connect: Optional[Callable[[str], Awaitable[asyncpg.Connection]]] = None,
    ):
        self.notifier = notifier
        self.database_url = database_url
        self.reconnect_delay = reconnect_delay
        self.stats = FeedStats()
        self._connect = connect or asyncpg.connect
        self._running = False
        self._lost: Optional[asyncio.Event] = None

    @property
    def supported(self) -> bool:
        return supports_change_feed(self.database_url)

    @property
    def running(self) -> bool:
        return self._running

    async def run(self) -> None:
        """Listen until stop() is called, reconnecting after every failure."""
        if not self.supported:
            logger.warning(
                "feed.unsupported",
                reason="change feed requires PostgreSQL LISTEN/NOTIFY",
                hint="use TECHFLOW_REALTIME_MODE=sync",
            )
            return

        self._running = True
        dsn = to_asyncpg_dsn(self.database_url)
        while self._running:
            try:
                await self._listen_once(dsn)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.stats.errors += 1
                logger.error("feed.subscription_failed", error=str(e))

            if not self._running:
                break
            self.stats.reconnects += 1
            logger.info("feed.reconnecting", delay=self.reconnect_delay)
            await asyncio.sleep(self.reconnect_delay)

        logger.info("feed.stopped", **vars(self.stats))

    async def stop(self) -> None:
        self._running = False
        if self._lost is not None:
            self._lost.set()

    async def _listen_once(self, dsn: str) -> None:
        conn = await self._connect(dsn)
        lost = asyncio.Event()
        self._lost = lost
        try:
            conn.add_termination_listener(lambda _conn: lost.set())
            await conn.add_listener(CHANNEL, self._on_notification)
            logger.info("feed.listening", channel=CHANNEL)
            await lost.wait()
        finally:
            self._lost = None
            if not conn.is_closed():
                await conn.close()

        if self._running:
            raise ConnectionError("change feed connection lost")

    def _on_notification(self, conn, pid, channel, payload) -> None:
        """asyncpg listener callback (synchronous)."""
        self.stats.received += 1
        try:
            data = json.loads(payload)
            envelope = envelope_from_feed(data["op"], data["record"])
            if envelope is None:
                logger.debug("feed.unhandled_op", op=data.get("op"))
                return
            self.notifier.publish(envelope)
            self.stats.published += 1
        except Exception:
            self.stats.errors += 1
            logger.exception("feed.notification_failed", channel=channel)
