#!/usr/bin/env python3
"""botgate: a chat-bot gateway with plugins and scheduled tasks.

Entry point. Wires config → session → plugin registry → scheduler.
Handles Unix signals and the main event loop.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import logging.handlers
import os
import signal
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

# Add botgate directory to path for imports
sys.path.insert(0, str(Path(__file__).parent))

from channels import Message, SessionEvent, create_session
from config import Config, ConfigError, load_config
from plugins import PluginRegistry
from plugins.registration import build_plugins, register_plugins
from providers import create_provider
from scheduler import Scheduler, TaskValidationError, validate_tasks
from threads import ThreadStore

log = logging.getLogger("botgate")


class GatewayDaemon:
    def __init__(self, config: Config):
        self.config = config
        self.tasks = validate_tasks(config.tasks)
        self.running = True
        self.start_time = datetime.now(timezone.utc)
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=1000)
        self.session: Any = None
        self.provider: Any = None
        self.thread_store: ThreadStore | None = None
        self.registry: PluginRegistry | None = None
        self.scheduler: Scheduler | None = None
        self._jobs_started = False

    def _setup_logging(self) -> None:
        """Configure logging to file + stderr."""
        log_file = self.config.log_file
        log_file.parent.mkdir(parents=True, exist_ok=True)

        fmt = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        fh = logging.handlers.RotatingFileHandler(
            log_file, maxBytes=self.config.log_max_bytes,
            backupCount=self.config.log_backup_count, encoding="utf-8",
        )
        fh.setFormatter(fmt)
        fh.setLevel(logging.DEBUG)

        sh = logging.StreamHandler(sys.stderr)
        sh.setFormatter(fmt)
        sh.setLevel(logging.INFO)

        root = logging.getLogger()
        root.setLevel(logging.DEBUG)
        root.addHandler(fh)
        root.addHandler(sh)

        # Silence noisy third-party loggers
        for name in ("httpx", "httpcore", "openai"):
            logging.getLogger(name).setLevel(logging.WARNING)

    def _init_provider(self) -> None:
        if not self.config.api_key("openai"):
            log.warning("No API key for the LLM provider, LLM plugins disabled")
            return
        self.thread_store = ThreadStore(self.config.threads_db)
        self.provider = create_provider(self.config, self.thread_store)
        log.info("Provider: %s / %s", self.config.llm_provider, self.config.llm_model)

    def _init_session(self) -> None:
        self.session = create_session(self.config)

    def _init_plugins(self) -> None:
        cfg = self.config
        self.registry = PluginRegistry(
            group_whitelist=cfg.group_whitelist,
            contact_whitelist=cfg.contact_whitelist,
            accepted_types=cfg.accepted_types,
        )
        register_plugins(self.registry, build_plugins(cfg, self.provider))

    def _init_scheduler(self) -> None:
        self.scheduler = Scheduler(self.session, self.tasks, self.config.scheduler_timezone)
        log.info("Scheduler: %d task(s) loaded", len(self.tasks))

    async def _session_reader(self) -> None:
        """Read events from the session and push them to the queue."""
        try:
            async for event in self.session.events():
                await self.queue.put(event)
        except asyncio.CancelledError:
            return
        except Exception as e:
            log.error("Session reader failed: %s", e)
        # Session exhausted (e.g., piped stdin EOF): signal shutdown
        await self.queue.put(None)

    async def _handle_event(self, event: SessionEvent) -> None:
        if event.kind == "message":
            message: Message = event.payload
            if message.date < self.start_time:
                log.debug("Ignoring message sent before start: %s", message)
                return
            log.debug("Message: %s", message)
            try:
                await self.registry.dispatch(message)
            except Exception:
                log.exception("Dispatch failed for %s", message)
        elif event.kind == "ready":
            log.info("Session ready")
            if not self._jobs_started:
                self.scheduler.start_all_jobs()
                self._jobs_started = True
        elif event.kind == "login":
            log.info("Logged in as %s", getattr(event.payload, "name", event.payload))
        elif event.kind == "logout":
            log.info("Logged out: %s", event.payload)
        elif event.kind == "error":
            log.error("Session error: %s", event.payload)
        else:
            log.info("Session event: %s", event.kind)

    async def _event_loop(self) -> None:
        """Main event loop: one event at a time."""
        while self.running:
            try:
                event = await asyncio.wait_for(self.queue.get(), timeout=1.0)
            except TimeoutError:
                continue
            except asyncio.CancelledError:
                break

            # Sentinel from session reader
            if event is None:
                self.running = False
                break
            await self._handle_event(event)

    def _setup_signals(self, loop: asyncio.AbstractEventLoop) -> None:
        """Register Unix signal handlers."""
        def handle_sigterm():
            log.info("Signal received: shutting down gracefully")
            self.running = False

        try:
            loop.add_signal_handler(signal.SIGTERM, handle_sigterm)
            loop.add_signal_handler(signal.SIGINT, handle_sigterm)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

    async def run(self) -> None:
        """Main entry point: starts all components and runs until stopped."""
        cfg = self.config
        self._setup_logging()
        log.info("Starting botgate for '%s'", cfg.bot_name)

        reader_task: asyncio.Task | None = None
        try:
            self._init_provider()
            self._init_session()
            self._init_plugins()
            self._init_scheduler()

            await self.session.start()
            log.info("Session started: %s", cfg.channel_type)

            self._setup_signals(asyncio.get_running_loop())
            reader_task = asyncio.create_task(self._session_reader())

            log.info("botgate running (PID %d)", os.getpid())
            await self._event_loop()

        except Exception as e:
            log.error("Fatal error: %s", e, exc_info=True)
            raise
        finally:
            if self.scheduler is not None:
                self.scheduler.stop_all_jobs()
            if reader_task is not None:
                reader_task.cancel()
                try:
                    await reader_task
                except asyncio.CancelledError:
                    pass
            if self.session is not None:
                try:
                    await self.session.stop()
                except Exception as e:
                    log.warning("Session stop failed: %s", e)
            if self.thread_store is not None:
                self.thread_store.close()
            log.info("botgate stopped")


# ─── CLI Entry Point ─────────────────────────────────────────────

def main():
    parser = argparse.ArgumentParser(
        description="botgate: a chat-bot gateway with plugins and scheduled tasks",
    )
    parser.add_argument(
        "-c", "--config",
        default=os.environ.get("BOTGATE_CONFIG", "./botgate.toml"),
        help="Path to config file (default: $BOTGATE_CONFIG or ./botgate.toml)",
    )
    parser.add_argument(
        "--channel",
        help="Override channel type (e.g., 'cli' for testing)",
    )
    args = parser.parse_args()

    overrides = {}
    if args.channel:
        overrides["channel.type"] = args.channel

    try:
        config = load_config(args.config, overrides=overrides)
        daemon = GatewayDaemon(config)
    except (ConfigError, TaskValidationError) as e:
        print(str(e), file=sys.stderr)
        sys.exit(1)

    try:
        asyncio.run(daemon.run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
