"""Background daemon for premortem."""

import asyncio
import signal
from collections.abc import Callable
from contextlib import aclosing
from dataclasses import dataclass

import structlog

from premortem import logging as console
from premortem.agent import generate_prompt, run_agent
from premortem.collector import SystemMetrics, fetch_system_metrics
from premortem.config import Config
from premortem.heartbeat import start_heartbeat, validate_heartbeat_endpoint
from premortem.monitor import ThresholdBreach, check_thresholds
from premortem.webhook import build_vitals_message, send_webhook

log = structlog.get_logger()


@dataclass
class DaemonState:
    """Runtime state of the daemon.

    agent_running is set before a diagnostic session is launched and cleared
    when its "result" message arrives or it fails. While it is set no other
    session may be launched.
    """

    running: bool = False
    agent_running: bool = False
    breach_detected: bool = False
    session_id: str | None = None

    def begin_session(self) -> None:
        """Mark a breach as being diagnosed."""
        self.breach_detected = True
        self.agent_running = True

    def end_session(self) -> None:
        """Clear breach and session tracking so a new breach can launch a session."""
        self.agent_running = False
        self.breach_detected = False
        self.session_id = None


class Daemon:
    """Polls system vitals and runs one diagnostic agent per breach."""

    def __init__(self, config: Config):
        if config.polling_interval < 1:
            raise ValueError(
                f"Polling interval must be at least 1ms, got {config.polling_interval}"
            )
        if config.heartbeat is not None and config.heartbeat.interval < 1:
            raise ValueError(
                f"Heartbeat interval must be at least 1ms, got {config.heartbeat.interval}"
            )

        self.config = config
        self.state = DaemonState()

        self._poll_task: asyncio.Task | None = None
        self._session_task: asyncio.Task | None = None
        self._heartbeat_cleanup: Callable[[], None] | None = None
        self._shutdown_event = asyncio.Event()
        self._signals_installed = False

    async def start(self) -> None:
        """Start the daemon.

        Validates the heartbeat endpoint first; if that fails the error
        propagates and no poll ever runs. Returns once the recurring poll is
        scheduled.
        """
        log.info("daemon_starting")
        console.daemon_starting()

        self.state = DaemonState(running=True)
        self._shutdown_event.clear()

        heartbeat = self.config.heartbeat
        if heartbeat is not None:
            try:
                await validate_heartbeat_endpoint(heartbeat.url, heartbeat.process_name)
            except Exception:
                self.state.running = False
                raise
            self._heartbeat_cleanup = start_heartbeat(
                heartbeat.url, heartbeat.process_name, heartbeat.interval
            )
            console.heartbeat_started(heartbeat.url, heartbeat.interval)

        # Initial check
        await self._poll()

        self._poll_task = asyncio.create_task(self._poll_loop())
        self._install_signal_handlers()

        log.info("daemon_started", polling_interval=self.config.polling_interval)
        console.daemon_started(self.config.polling_interval)

    async def stop(self) -> None:
        """Stop polling and heartbeats. Safe to call more than once.

        An in-flight diagnostic session is left to finish on its own.
        """
        if not self.state.running:
            return

        self.state.running = False

        if self._poll_task:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None

        if self._heartbeat_cleanup:
            self._heartbeat_cleanup()
            self._heartbeat_cleanup = None

        self._remove_signal_handlers()
        self._shutdown_event.set()

        log.info("daemon_stopped")
        console.daemon_stopped()

    async def wait_closed(self) -> None:
        """Wait until a shutdown signal arrives or stop() is called."""
        await self._shutdown_event.wait()

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, lambda s=sig: self._handle_signal(s))
        except (NotImplementedError, RuntimeError):
            # No signal support (non-main thread or platform without it)
            log.debug("signal_handlers_unavailable")
            return
        self._signals_installed = True

    def _remove_signal_handlers(self) -> None:
        if not self._signals_installed:
            return
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)
        self._signals_installed = False

    def _handle_signal(self, sig: signal.Signals) -> None:
        """Handle shutdown signals."""
        log.info("signal_received", signal=sig.name)
        console.signal_received(sig.name)
        self._shutdown_event.set()

    async def _poll_loop(self) -> None:
        """Poll at the configured interval until stopped."""
        interval = self.config.polling_interval / 1000
        while self.state.running:
            await asyncio.sleep(interval)
            await self._poll()

    async def _poll(self) -> None:
        """One monitoring tick: fetch, evaluate, maybe launch a session.

        The check of agent_running and the launch happen with no await in
        between, so two ticks can never both launch.
        """
        if not self.state.running:
            return

        try:
            metrics = await fetch_system_metrics()
            breach = check_thresholds(metrics, self.config.thresholds)
        except Exception as e:
            log.error("monitoring_failed", error=str(e))
            console.monitoring_failed(str(e))
            return

        if breach is None or self.state.agent_running:
            return

        log.warning(
            "threshold_breach",
            type=breach.type.value,
            current=breach.current_value,
            threshold=breach.threshold_value,
            metrics=metrics.to_dict(),
        )
        console.breach_detected(breach.type.value, breach.current_value, breach.threshold_value)

        self.state.begin_session()
        prompt = generate_prompt(breach, metrics, self.config.agent.custom_prompt)

        # Runs in the background; polling continues independently
        self._session_task = asyncio.create_task(self._run_session(prompt, breach, metrics))

    async def _run_session(
        self, prompt: str, breach: ThresholdBreach, metrics: SystemMetrics
    ) -> None:
        """Stream one diagnostic session to the webhook, then reset state."""
        webhook_url = self.config.webhook_url
        vitals_sent = False
        completed = False

        try:
            stream = run_agent(
                prompt,
                api_key=self.config.anthropic_api_key,
                config=self.config.agent,
                cwd=self.config.archive_dir,
            )
            async with aclosing(stream):
                async for msg in stream:
                    session_id = msg.get("session_id")
                    if isinstance(session_id, str):
                        self.state.session_id = session_id
                        if not vitals_sent:
                            vitals_sent = True
                            console.agent_started(session_id)
                            await send_webhook(
                                webhook_url, build_vitals_message(breach, metrics, session_id)
                            )

                    await send_webhook(webhook_url, msg)

                    if msg.get("type") == "result":
                        completed = True
                        break
        except Exception as e:
            log.exception("agent_failed", error=str(e))
            console.agent_failed(str(e))
            self.state.end_session()
            return

        if completed:
            log.info("agent_completed")
            console.agent_completed()
        else:
            log.warning("agent_stream_ended_without_result")
        self.state.end_session()


async def run_daemon(config: Config) -> None:
    """Run the daemon until a shutdown signal.

    Args:
        config: Loaded configuration
    """
    console.configure(config)

    daemon = Daemon(config)

    try:
        await daemon.start()
        await daemon.wait_closed()
    except Exception as e:
        log.exception("daemon_crashed", error=str(e))
        raise
    finally:
        await daemon.stop()
