"""Tests for per-file uploads: failure isolation, cancellation, retry."""
import asyncio

import pytest

from labcalendar.schemas.event import FileAttachment
from labcalendar.services.event_bus import EventBus, Topic
from labcalendar.services.uploads import UploadManager, UploadStatus


class StalledApi:
    """Upload call that never completes until cancelled."""

    def __init__(self):
        self.started = asyncio.Event()

    async def upload_document(self, owner_id, file_name, content, content_type, preset=False):
        self.started.set()
        await asyncio.Event().wait()


@pytest.mark.asyncio
async def test_one_failure_does_not_stop_the_others(lab, lab_api):
    lab.failing_files.add("broken.pdf")
    uploads = UploadManager(lab_api)
    good = uploads.enqueue("protocole.pdf", b"%PDF-1.4", "application/pdf")
    bad = uploads.enqueue("broken.pdf", b"%PDF-1.4", "application/pdf")

    await uploads.upload_all("evt-1")

    assert good.status == UploadStatus.done
    assert good.result.file_url == "/uploads/evt-1/protocole.pdf"
    assert bad.status == UploadStatus.failed
    assert "broken.pdf" in bad.error
    assert [a.file_name for a in uploads.attachments()] == ["protocole.pdf"]


@pytest.mark.asyncio
async def test_retry_after_failure(lab, lab_api):
    lab.failing_files.add("broken.pdf")
    uploads = UploadManager(lab_api)
    job = uploads.enqueue("broken.pdf", b"data")
    await uploads.upload_all("evt-1")
    assert job.status == UploadStatus.failed

    lab.failing_files.clear()
    await uploads.retry(job.upload_id, "evt-1")

    assert job.status == UploadStatus.done
    assert job.error is None
    assert isinstance(job.result, FileAttachment)


@pytest.mark.asyncio
async def test_cancel_aborts_in_flight_upload():
    api = StalledApi()
    bus = EventBus()
    statuses = []
    bus.subscribe(Topic.upload_status, lambda m: statuses.append(m.status))
    uploads = UploadManager(api, bus, session_id="tab-1")
    job = uploads.enqueue("video.mp4", b"\x00" * 10)

    task = uploads.start(job, "evt-1")
    await api.started.wait()
    assert uploads.cancel(job.upload_id) is True
    await asyncio.gather(task, return_exceptions=True)

    assert task.cancelled()
    assert job.status == UploadStatus.cancelled
    assert statuses == ["uploading", "cancelled"]
    assert uploads.cancel(job.upload_id) is False


@pytest.mark.asyncio
async def test_preset_documents_use_preset_path(lab, lab_api):
    uploads = UploadManager(lab_api)
    uploads.enqueue("fiche.pdf", b"data")
    await uploads.upload_all("preset-7", preset=True)
    assert ("POST", "/api/event-presets/preset-7/documents", {}) in lab.requests


class FlakyApi:
    """First call answers with something that is not a stored file, later calls succeed."""

    def __init__(self):
        self.calls = 0

    async def upload_document(self, owner_id, file_name, content, content_type, preset=False):
        self.calls += 1
        if self.calls == 1:
            raise ValueError("unexpected upload response")
        return FileAttachment(file_name=file_name, file_url=f"/uploads/{owner_id}/{file_name}")


@pytest.mark.asyncio
async def test_unexpected_error_marks_job_failed_and_retryable():
    bus = EventBus()
    statuses = []
    bus.subscribe(Topic.upload_status, lambda m: statuses.append(m.status))
    uploads = UploadManager(FlakyApi(), bus, session_id="tab-1")
    job = uploads.enqueue("notes.pdf", b"data")

    await uploads.upload_all("evt-1")

    assert job.status == UploadStatus.failed
    assert job.error == "unexpected upload response"
    assert statuses == ["uploading", "failed"]

    await uploads.retry(job.upload_id, "evt-1")
    assert job.status == UploadStatus.done
    assert [a.file_name for a in uploads.attachments()] == ["notes.pdf"]
