from __future__ import annotations

import atexit
import logging

from fastmcp import FastMCP
from starlette.requests import Request
from starlette.responses import JSONResponse

from speechflow.config import Settings, load_settings
from speechflow.db.database import Database
from speechflow.db.transcriptions import TranscriptionsRepository
from speechflow.mcp_tools import ToolRegistry
from speechflow.services.batch_client import BatchJobClient
from speechflow.services.pipeline import BatchTranscriptionService
from speechflow.services.poller import BatchPoller
from speechflow.services.storage import StorageService
from speechflow.worker import BackgroundWorker

logger = logging.getLogger(__name__)


class AppRuntime:
    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.database = Database(settings.database_path)
        self.transcriptions = TranscriptionsRepository(self.database)
        self.storage = StorageService(settings.data_dir)

        self.client = BatchJobClient(settings.batch, self.storage)
        self.poller = BatchPoller(
            self.client,
            poll_interval_seconds=settings.batch.poll_interval_seconds,
            max_attempts=settings.batch.max_attempts,
        )
        self.service = BatchTranscriptionService(
            transcriptions=self.transcriptions,
            client=self.client,
            poller=self.poller,
            storage=self.storage,
        )

        self.worker = BackgroundWorker(
            transcriptions=self.transcriptions,
            service=self.service,
            poll_interval_seconds=settings.poll_interval_seconds,
        )

    def close(self) -> None:
        self.worker.stop()
        self.client.close()
        self.database.close()


def create_app(runtime: AppRuntime) -> FastMCP:
    mcp = FastMCP(name="speechflow")

    tools = ToolRegistry(
        runtime.transcriptions,
        runtime.storage,
        runtime.service,
        default_language=runtime.settings.default_language,
    )
    tools.register(mcp)

    @mcp.custom_route(runtime.settings.health_path, methods=["GET"])
    async def health(_: Request) -> JSONResponse:
        return JSONResponse(
            {
                "ok": True,
                "worker_running": runtime.worker.is_running,
                "db_path": str(runtime.settings.database_path),
                "mcp_path": runtime.settings.mcp_path,
            }
        )

    return mcp


def cli() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")

    settings = load_settings()
    runtime = AppRuntime(settings)
    if settings.auto_process:
        runtime.worker.start()
    atexit.register(runtime.close)

    app = create_app(runtime)
    logger.info("Starting MCP server on %s:%s%s", settings.host, settings.port, settings.mcp_path)
    app.run(
        transport="http",
        host=settings.host,
        port=settings.port,
        path=settings.mcp_path,
    )


if __name__ == "__main__":
    cli()
