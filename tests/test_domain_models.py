from __future__ import annotations

import pytest

from voice_note_relay.domain.errors import (
    FATAL_ERRORS,
    CleanupError,
    DecodeFailure,
    RelayError,
    SourceUnavailable,
    StreamError,
)
from voice_note_relay.domain.models import AudioJob, BlobLocation, JobId, Scope, UsageDelta


def test_audio_job_from_event_with_explicit_ids():
    job = AudioJob.from_event(
        {
            "bucket": "voice",
            "key": "u1/file_12.oga",
            "chatId": 555,
            "userId": "u1",
            "artifactId": "file_12",
            "messageId": "31",
            "startTime": 1_700_000_100,
        }
    )
    assert job.source == BlobLocation("voice", "u1/file_12.oga")
    assert job.job_id == JobId("u1", "file_12")
    assert job.chat_id == "555"
    assert job.display_message_id == 31
    assert job.started_at == 1_700_000_100.0


def test_audio_job_defaults_user_to_chat_and_artifact_to_key():
    job = AudioJob.from_event({"bucket": "b", "key": "k.ogg", "chatId": "9", "messageId": 1})
    assert job.user_id == "9"
    assert job.job_id.artifact_id == "k.ogg"


def test_audio_job_requires_core_keys():
    with pytest.raises(ValueError, match="messageId"):
        AudioJob.from_event({"bucket": "b", "key": "k", "chatId": "9"})


def test_scope_keys():
    assert Scope.global_scope().key == "GLOBAL"
    assert Scope.global_scope().is_global
    assert Scope.for_user("42").key == "USER:42"
    with pytest.raises(ValueError):
        Scope.for_user("")


def test_usage_delta_rejects_negative_values():
    with pytest.raises(ValueError):
        UsageDelta("en", -1.0, 0.0)
    with pytest.raises(ValueError):
        UsageDelta("", 1.0, 0.0)


def test_error_taxonomy_fatality():
    assert issubclass(SourceUnavailable, FATAL_ERRORS)
    assert issubclass(DecodeFailure, FATAL_ERRORS)
    assert issubclass(StreamError, FATAL_ERRORS)
    assert not issubclass(RelayError, FATAL_ERRORS)
    assert not issubclass(CleanupError, FATAL_ERRORS)


def test_error_message_includes_cause():
    err = StreamError("Cannot connect", ConnectionRefusedError("refused"))
    assert str(err) == "Cannot connect: refused"
    assert isinstance(err.cause, ConnectionRefusedError)
