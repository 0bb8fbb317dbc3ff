# File: src/rolemailer/infrastructure/sched/ticker.py
"""
DispatchTicker - runs `engine.run_pass` on a fixed interval.

A background thread hosts an asyncio event loop; each pass runs in the loop's
default executor so a slow SMTP server never blocks the loop itself. Passes
never overlap within one process, and the engine's lease covers the
multi-process case.
"""

import asyncio
import logging
import threading
from typing import TYPE_CHECKING, Optional

from rolemailer.domain.entities import DispatchReport

if TYPE_CHECKING:
    from rolemailer.application.engine import MailerEngine

log = logging.getLogger(__name__)


class DispatchTicker:
    def __init__(self, engine: "MailerEngine", interval_seconds: int = 600, initial_delay_seconds: float = 20.0):
        self.engine = engine
        self.interval_seconds = interval_seconds
        self.initial_delay_seconds = initial_delay_seconds
        self.last_report: Optional[DispatchReport] = None

        self._task: Optional[asyncio.Task] = None
        self._bg_thread: Optional[threading.Thread] = None
        self._bg_loop: Optional[asyncio.AbstractEventLoop] = None

    async def tick(self) -> DispatchReport:
        loop = asyncio.get_running_loop()
        report = await loop.run_in_executor(None, self.engine.run_pass)
        self.last_report = report
        if report.skipped:
            log.info(f"Dispatch pass skipped: {report.reason}")
        return report

    async def run_forever(self) -> None:
        await asyncio.sleep(self.initial_delay_seconds)
        while True:
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception:
                log.exception("Dispatch tick crashed; waiting for the next interval.")
            await asyncio.sleep(self.interval_seconds)

    # ---------------------------------------------------------------------
    # Background runner
    # ---------------------------------------------------------------------
    def start(self):
        """Start a background thread hosting an event loop that runs the ticker."""
        if self._bg_thread and self._bg_thread.is_alive():
            log.warning("DispatchTicker already running.")
            return

        def _bg_runner():
            try:
                loop = asyncio.new_event_loop()
                self._bg_loop = loop
                asyncio.set_event_loop(loop)
                self._task = loop.create_task(self.run_forever())
                loop.run_forever()
            except Exception:
                log.exception("DispatchTicker background runner crashed.")
            finally:
                if self._bg_loop is not None:
                    self._bg_loop.close()

        self._bg_thread = threading.Thread(target=_bg_runner, name="mailer-ticker", daemon=True)
        self._bg_thread.start()
        log.info(f"DispatchTicker started (every {self.interval_seconds}s).")

    def stop(self):
        """Stop the background loop (best-effort)."""
        try:
            if self._bg_loop and self._bg_loop.is_running():
                if self._task:
                    self._bg_loop.call_soon_threadsafe(self._task.cancel)
                self._bg_loop.call_soon_threadsafe(self._bg_loop.stop)
            if self._bg_thread:
                self._bg_thread.join(timeout=5.0)
        except Exception:
            log.exception("Error stopping DispatchTicker.")
