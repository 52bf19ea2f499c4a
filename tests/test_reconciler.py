import threading

import pytest

from speechflow.errors import RecognitionError
from speechflow.realtime.reconciler import TranscriptReconciler
from speechflow.types import (
    Closed,
    EndOfUtterance,
    FinalTranscript,
    PartialTranscript,
    RecognitionFailed,
    Started,
)


def test_partials_replace_instead_of_concatenating() -> None:
    reconciler = TranscriptReconciler()
    for text in ("ho", "hola", "hola mun", "hola mundo"):
        snapshot = reconciler.apply(PartialTranscript(text))
        assert snapshot.partial_text == text
        assert snapshot.text == text
    assert reconciler.snapshot().final_text == ""


def test_final_appends_with_single_space() -> None:
    reconciler = TranscriptReconciler()
    assert reconciler.apply(FinalTranscript("hola")).final_text == "hola"
    assert reconciler.apply(FinalTranscript("mundo")).final_text == "hola mundo"


def test_final_clears_partial_and_empty_final_is_ignored() -> None:
    reconciler = TranscriptReconciler()
    reconciler.apply(PartialTranscript("hola"))
    snapshot = reconciler.apply(FinalTranscript(""))
    assert snapshot.partial_text == "hola"

    snapshot = reconciler.apply(FinalTranscript("hola"))
    assert snapshot.partial_text == ""
    assert snapshot.text == "hola"


def test_composed_text_shows_trailing_partial() -> None:
    reconciler = TranscriptReconciler()
    reconciler.apply(FinalTranscript("buenos días"))
    snapshot = reconciler.apply(PartialTranscript("cómo"))
    assert snapshot.text == "buenos días cómo"
    snapshot = reconciler.apply(PartialTranscript("cómo estás"))
    assert snapshot.text == "buenos días cómo estás"


def test_end_of_utterance_promotes_partial() -> None:
    promoted = TranscriptReconciler()
    promoted.apply(FinalTranscript("uno"))
    promoted.apply(PartialTranscript("dos"))
    promoted.apply(EndOfUtterance())

    confirmed = TranscriptReconciler()
    confirmed.apply(FinalTranscript("uno"))
    confirmed.apply(PartialTranscript("dos"))
    confirmed.apply(FinalTranscript("dos"))

    assert promoted.snapshot() == confirmed.snapshot()
    assert promoted.snapshot().partial_text == ""


def test_end_of_utterance_without_partial_is_noop() -> None:
    reconciler = TranscriptReconciler()
    reconciler.apply(FinalTranscript("uno"))
    before = reconciler.snapshot()
    assert reconciler.apply(EndOfUtterance()) == before


def test_hola_mundo_scenario() -> None:
    reconciler = TranscriptReconciler()
    reconciler.apply(PartialTranscript("hola"))
    reconciler.apply(FinalTranscript("hola mundo"))
    snapshot = reconciler.apply(EndOfUtterance())
    assert snapshot.text == "hola mundo"
    assert snapshot.partial_text == ""


def test_final_text_never_shrinks() -> None:
    reconciler = TranscriptReconciler()
    events = [
        Started(),
        PartialTranscript("a"),
        FinalTranscript("a"),
        PartialTranscript("b c"),
        EndOfUtterance(),
        PartialTranscript("d"),
        FinalTranscript(""),
        PartialTranscript(""),
        EndOfUtterance(),
        FinalTranscript("e"),
        Closed(),
    ]
    length = 0
    for event in events:
        snapshot = reconciler.apply(event)
        assert len(snapshot.final_text) >= length
        length = len(snapshot.final_text)
    assert reconciler.text == "a b c e"


def test_error_event_raises_and_keeps_state() -> None:
    reconciler = TranscriptReconciler()
    reconciler.apply(FinalTranscript("hola"))
    with pytest.raises(RecognitionError, match="quota_exceeded"):
        reconciler.apply(RecognitionFailed("quota_exceeded"))
    assert reconciler.text == "hola"


def test_concurrent_readers_see_whole_updates() -> None:
    reconciler = TranscriptReconciler()
    seen: list[str] = []
    done = threading.Event()

    def reader() -> None:
        while not done.is_set():
            seen.append(reconciler.snapshot().text)

    thread = threading.Thread(target=reader)
    thread.start()
    for i in range(500):
        reconciler.apply(PartialTranscript(f"p{i}"))
        reconciler.apply(FinalTranscript(f"w{i}"))
    done.set()
    thread.join()

    for text in seen:
        words = text.split()
        if words and words[-1].startswith("p"):
            words = words[:-1]
        assert words == [f"w{i}" for i in range(len(words))]
