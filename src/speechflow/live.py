"""Live microphone transcription from the terminal.

Streams the default input device to Speechmatics and prints the running
caption. Stop with Ctrl-C; ``--save`` stores the final text as a realtime
transcription record.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys

from speechflow.config import Settings, load_settings
from speechflow.db.database import Database
from speechflow.db.transcriptions import TranscriptionsRepository
from speechflow.errors import SpeechflowError
from speechflow.realtime.capture import MicrophoneCapture
from speechflow.realtime.orchestrator import SessionOrchestrator
from speechflow.services.credentials import CredentialIssuer
from speechflow.services.pipeline import save_realtime_transcript
from speechflow.services.storage import StorageService
from speechflow.types import TranscriptSnapshot

logger = logging.getLogger(__name__)


def _print_caption(snapshot: TranscriptSnapshot) -> None:
    sys.stdout.write("\r\x1b[2K" + snapshot.text[-200:])
    sys.stdout.flush()


async def run_live(settings: Settings, language: str, device: int | str | None) -> TranscriptSnapshot:
    config = settings.realtime
    orchestrator = SessionOrchestrator(
        config,
        credentials=CredentialIssuer(config.api_key, config.auth_url),
        capture=MicrophoneCapture(sample_rate=config.sample_rate, block_size=config.block_size, device=device),
        language=language,
        on_update=_print_caption,
    )

    interrupted = asyncio.Event()
    loop = asyncio.get_running_loop()
    loop.add_signal_handler(signal.SIGINT, interrupted.set)
    try:
        await orchestrator.start()
        logger.info("Recording - speak now (Ctrl-C to stop)")

        waiter = asyncio.create_task(orchestrator.wait())
        interrupt = asyncio.create_task(interrupted.wait())
        await asyncio.wait({waiter, interrupt}, return_when=asyncio.FIRST_COMPLETED)
        interrupt.cancel()

        await orchestrator.stop()
        return await waiter
    finally:
        loop.remove_signal_handler(signal.SIGINT)
        await orchestrator.stop()
        sys.stdout.write("\n")


def cli() -> None:
    parser = argparse.ArgumentParser(description="Live speech transcription")
    parser.add_argument("--language", default=None, help="ISO language code (default: DEFAULT_LANGUAGE)")
    parser.add_argument("--device", default=None, help="Input device name or index")
    parser.add_argument("--save", action="store_true", help="Store the transcript when the session ends")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")

    settings = load_settings()
    language = args.language or settings.default_language
    device: int | str | None = int(args.device) if args.device and args.device.isdigit() else args.device

    try:
        snapshot = asyncio.run(run_live(settings, language, device))
    except SpeechflowError as exc:
        logger.error("%s", exc)
        raise SystemExit(1) from exc

    print(snapshot.text)
    if not args.save:
        return
    if not snapshot.text.strip():
        logger.warning("No text to save")
        return

    database = Database(settings.database_path)
    try:
        record = save_realtime_transcript(
            TranscriptionsRepository(database),
            StorageService(settings.data_dir),
            snapshot.text,
            language,
        )
    except ValueError as exc:
        logger.error("Transcript not saved: %s", exc)
        raise SystemExit(1) from exc
    finally:
        database.close()
    logger.info("Saved transcription %s", record["id"])


if __name__ == "__main__":
    cli()
