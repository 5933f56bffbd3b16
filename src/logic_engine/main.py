"""
Main entry point for the logic engine service.

Loads configuration, opens the SQLite store, seeds rules from the rules
directory, and serves the HTTP invocation surface until a shutdown signal.
"""

import asyncio
import os
import signal
import sys
from typing import Optional

import structlog
from dotenv import load_dotenv

from .api.server import ApiServer
from .api.service import LogicEngineService
from .core.config import ConfigLoader, EngineConfig
from .rules.actions import ActionDispatcher
from .rules.engine import LogicEngine
from .stores.sqlite import SqliteStore


def configure_logging() -> None:
    """Configure structured logging (JSON when LOG_FORMAT=json)."""
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer() if os.getenv("LOG_FORMAT") == "json"
            else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


logger = structlog.get_logger()


class Application:
    """Wires config, store, engine and HTTP server for one process."""

    def __init__(self):
        self.config: Optional[EngineConfig] = None
        self.store: Optional[SqliteStore] = None
        self.engine: Optional[LogicEngine] = None
        self.api_server: Optional[ApiServer] = None
        self._shutdown_event = asyncio.Event()

    async def start(self) -> None:
        """Load config, open the store, seed rules and start serving."""
        logger.info("logic_engine_starting")

        config_dir = os.getenv("CONFIG_DIR", "./config")
        config_path = os.getenv("CONFIG_PATH")
        loader = ConfigLoader(config_dir)
        self.config = loader.load_engine_config(config_path)

        data_dir = os.getenv("DATA_DIR")
        if data_dir:
            self.config.storage.database_path = os.path.join(data_dir, "logic_engine.db")

        self.store = SqliteStore(self.config.storage.database_path)
        await self.store.initialize()
        await self._seed_rules(loader)

        dispatcher = ActionDispatcher(
            incident_store=self.store,
            activity_log=self.store,
            webhook_config=self.config.webhook,
        )
        self.engine = LogicEngine(
            rule_store=self.store,
            dispatcher=dispatcher,
            config=self.config,
        )
        service = LogicEngineService(self.engine, rule_store=self.store)

        port = int(os.getenv("API_PORT", str(self.config.api.port)))
        self.api_server = ApiServer(service, host=self.config.api.host, port=port)
        await self.api_server.start()

        logger.info(
            "logic_engine_started",
            config_hash=self.config.config_hash(),
            database=self.config.storage.database_path,
        )

    async def _seed_rules(self, loader: ConfigLoader) -> None:
        """Create or refresh rules defined in the rules directory."""
        records = loader.load_rules(self.config.rules_directory)
        for record in records:
            if await self.store.get_rule(record.id) is None:
                await self.store.create_rule(record)
            else:
                await self.store.update_rule(
                    record.id,
                    **record.model_dump(exclude={"id", "created_at", "updated_at"}),
                )
        logger.info("rules_seeded", count=len(records))

    async def stop(self) -> None:
        """Stop serving and close the store."""
        logger.info("logic_engine_stopping")

        if self.api_server:
            await self.api_server.stop()

        if self.store:
            await self.store.close()

        logger.info("logic_engine_stopped")

    async def wait_for_shutdown(self) -> None:
        await self._shutdown_event.wait()

    def shutdown(self) -> None:
        self._shutdown_event.set()


async def main() -> None:
    load_dotenv()
    configure_logging()
    app = Application()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, app.shutdown)

    try:
        await app.start()
        await app.wait_for_shutdown()
    except Exception:
        logger.exception("logic_engine_failed")
        sys.exit(1)
    finally:
        await app.stop()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
