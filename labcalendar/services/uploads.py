"""Document uploads for events and presets.

Each file is its own job: a failure is recorded on that job only, other
uploads keep going, and any job can be cancelled (the in-flight request is
aborted) or retried by the user.
"""
import asyncio
import enum
import logging
import uuid
from dataclasses import dataclass, field
from typing import Optional

from labcalendar.schemas.event import FileAttachment
from labcalendar.services.event_bus import EventBus, UploadStatusChanged
from labcalendar.services.lab_api import LabApiClient, LabApiError

logger = logging.getLogger(__name__)


class UploadStatus(str, enum.Enum):
    pending = "pending"
    uploading = "uploading"
    done = "done"
    failed = "failed"
    cancelled = "cancelled"


@dataclass
class UploadJob:
    file_name: str
    content: bytes = field(repr=False)
    content_type: str = "application/octet-stream"
    upload_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: UploadStatus = UploadStatus.pending
    error: Optional[str] = None
    result: Optional[FileAttachment] = None
    task: Optional[asyncio.Task] = field(default=None, repr=False)

    @property
    def size(self) -> int:
        return len(self.content)


class UploadManager:
    def __init__(self, api: LabApiClient, bus: Optional[EventBus] = None, session_id: Optional[str] = None) -> None:
        self.api = api
        self.bus = bus
        self.session_id = session_id
        self._jobs: dict[str, UploadJob] = {}

    @property
    def jobs(self) -> list[UploadJob]:
        return list(self._jobs.values())

    def get(self, upload_id: str) -> Optional[UploadJob]:
        return self._jobs.get(upload_id)

    def enqueue(self, file_name: str, content: bytes, content_type: Optional[str] = None) -> UploadJob:
        job = UploadJob(file_name=file_name, content=content, content_type=content_type or "application/octet-stream")
        self._jobs[job.upload_id] = job
        return job

    def discard(self, upload_id: str) -> Optional[UploadJob]:
        job = self._jobs.pop(upload_id, None)
        if job is not None and job.task is not None and not job.task.done():
            job.task.cancel()
        return job

    def _set_status(self, job: UploadJob, status: UploadStatus, error: Optional[str] = None) -> None:
        job.status = status
        job.error = error
        if self.bus is not None:
            self.bus.publish(UploadStatusChanged(
                session_id=self.session_id,
                upload_id=job.upload_id,
                file_name=job.file_name,
                status=status.value,
                error=error,
            ))

    async def _run(self, job: UploadJob, owner_id: str, preset: bool) -> UploadJob:
        self._set_status(job, UploadStatus.uploading)
        try:
            job.result = await self.api.upload_document(
                owner_id, job.file_name, job.content, job.content_type, preset=preset,
            )
        except LabApiError as exc:
            logger.warning("Upload of %s to %s failed: %s", job.file_name, owner_id, exc.message)
            self._set_status(job, UploadStatus.failed, exc.message)
            return job
        except asyncio.CancelledError:
            logger.info("Upload of %s to %s cancelled", job.file_name, owner_id)
            raise
        except Exception as exc:
            logger.exception("Upload of %s to %s failed unexpectedly", job.file_name, owner_id)
            self._set_status(job, UploadStatus.failed, str(exc) or type(exc).__name__)
            return job
        self._set_status(job, UploadStatus.done)
        logger.info("Uploaded %s (%d bytes) to %s", job.file_name, job.size, owner_id)
        return job

    def start(self, job: UploadJob, owner_id: str, preset: bool = False) -> asyncio.Task:
        job.task = asyncio.create_task(self._run(job, owner_id, preset))
        return job.task

    async def upload_all(self, owner_id: str, preset: bool = False) -> list[UploadJob]:
        """Upload every job not yet done; waits for all of them, whatever their outcome."""
        tasks = [
            self.start(job, owner_id, preset)
            for job in self.jobs
            if job.status in (UploadStatus.pending, UploadStatus.failed)
        ]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        return self.jobs

    def cancel(self, upload_id: str) -> bool:
        job = self._jobs.get(upload_id)
        if job is None or job.task is None or job.task.done():
            return False
        job.task.cancel()
        self._set_status(job, UploadStatus.cancelled)
        return True

    def cancel_all(self) -> int:
        return sum(1 for upload_id in list(self._jobs) if self.cancel(upload_id))

    async def retry(self, upload_id: str, owner_id: str, preset: bool = False) -> UploadJob:
        job = self._jobs[upload_id]
        if job.status not in (UploadStatus.failed, UploadStatus.cancelled):
            return job
        return await self._run(job, owner_id, preset)

    def attachments(self) -> list[FileAttachment]:
        return [job.result for job in self.jobs if job.status == UploadStatus.done and job.result is not None]
