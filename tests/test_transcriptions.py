from pathlib import Path

import pytest

from speechflow.db.database import Database
from speechflow.db.transcriptions import TranscriptionsRepository


def _repo(tmp_path: Path) -> TranscriptionsRepository:
    return TranscriptionsRepository(Database(tmp_path / "test.sqlite3"))


def test_transcription_lifecycle(tmp_path: Path) -> None:
    repo = _repo(tmp_path)

    created = repo.create(filename="call.mp3", audio_ref="s3://bucket/call.mp3", file_size=10)
    assert created["status"] == "pending"
    assert created["language"] == "es"
    assert created["source"] == "batch"

    claimed = repo.claim_next()
    assert claimed is not None
    assert claimed["id"] == created["id"]
    assert claimed["status"] == "processing"
    assert repo.claim_next() is None

    repo.set_provider_job(str(created["id"]), "job-1")
    repo.mark_completed(str(created["id"]), "hola mundo", {"processingTime": 42}, result_path="/tmp/x")

    completed = repo.get(str(created["id"]))
    assert completed is not None
    assert completed["status"] == "completed"
    assert completed["provider_job_id"] == "job-1"
    assert completed["transcript_text"] == "hola mundo"
    assert completed["metadata"] == {"processingTime": 42}
    assert completed["completed_at"] is not None


def test_mark_processing_only_once(tmp_path: Path) -> None:
    repo = _repo(tmp_path)
    created = repo.create(filename="a.mp3", audio_ref="s3://b/a.mp3", file_size=1)

    assert repo.mark_processing(str(created["id"])) is True
    assert repo.mark_processing(str(created["id"])) is False


def test_mark_failed_records_error(tmp_path: Path) -> None:
    repo = _repo(tmp_path)
    created = repo.create(filename="a.mp3", audio_ref="s3://b/a.mp3", file_size=1)

    repo.mark_failed(str(created["id"]), "Transcription failed", {"processingTime": 5})

    failed = repo.get(str(created["id"]))
    assert failed is not None
    assert failed["status"] == "failed"
    assert failed["metadata"]["errorMessage"] == "Transcription failed"
    assert failed["metadata"]["processingTime"] == 5


def test_list_filters_and_orders_newest_first(tmp_path: Path) -> None:
    repo = _repo(tmp_path)
    first = repo.create(filename="1.mp3", audio_ref="s3://b/1.mp3", file_size=1)
    second = repo.create(filename="2.mp3", audio_ref="s3://b/2.mp3", file_size=1)
    repo.create_realtime("texto en vivo")

    batch = repo.list_transcriptions(source="batch")
    assert [item["id"] for item in batch] == [second["id"], first["id"]]

    completed = repo.list_transcriptions(status="completed")
    assert len(completed) == 1
    assert completed[0]["source"] == "realtime"

    assert len(repo.list_transcriptions(limit=1)) == 1


def test_search_finds_completed_text(tmp_path: Path) -> None:
    repo = _repo(tmp_path)
    created = repo.create(filename="demo.mp3", audio_ref="s3://b/demo.mp3", file_size=1)
    repo.mark_completed(str(created["id"]), "hello this is a transcription test", {})

    results = repo.search("transcription", limit=5)
    assert len(results) == 1
    assert results[0]["id"] == created["id"]
    assert "[transcription]" in results[0]["snippet"]


def test_create_realtime(tmp_path: Path) -> None:
    repo = _repo(tmp_path)

    record = repo.create_realtime("  hola mundo  ", "en")
    assert record["status"] == "completed"
    assert record["source"] == "realtime"
    assert record["transcript_text"] == "hola mundo"
    assert record["language"] == "en"
    assert record["filename"].startswith("realtime_")
    assert record["metadata"]["type"] == "realtime"
    assert repo.claim_next() is None


@pytest.mark.parametrize("text", ["", "   ", "x" * 10001])
def test_create_realtime_rejects_invalid_text(tmp_path: Path, text: str) -> None:
    repo = _repo(tmp_path)
    with pytest.raises(ValueError):
        repo.create_realtime(text)
    assert repo.list_transcriptions() == []
