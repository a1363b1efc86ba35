"""
sessionscribe.upload.client - Recording bundle delivery.

Posts a finished session (audio, transcript, manifest) to the recordings API
as one multipart request, classifies failures as retryable or terminal and
retries the retryable ones with exponential backoff.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import time
from collections.abc import Callable, Iterator
from contextlib import ExitStack
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, BinaryIO

import requests
from pydantic import Field
from urllib3.fields import RequestField
from urllib3.filepost import choose_boundary

from sessionscribe.exceptions import UploadError
from sessionscribe.models import CamelModel, ManifestSegment, SessionManifest

logger = logging.getLogger(__name__)

ARTIFACT_FILENAMES = ("transcript.json", "transcript.md", "manifest.json")
CONTENT_TYPES = {
    ".wav": "audio/wav",
    ".json": "application/json",
    ".md": "text/markdown",
    ".txt": "text/plain",
}
ASSUMED_UPLOAD_BYTES_PER_SECOND = 1024 * 1024
CHUNK_SIZE = 64 * 1024


class UploadState(str, Enum):
    PENDING = "pending"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class BundleFile:
    path: Path
    relative_path: str
    size: int

    @property
    def content_type(self) -> str:
        return CONTENT_TYPES.get(self.path.suffix.lower(), "application/octet-stream")


@dataclass
class RecordingBundle:
    """Files of one session queued for upload."""

    root: Path
    files: list[BundleFile] = field(default_factory=list)

    @property
    def total_size(self) -> int:
        return sum(f.size for f in self.files)


class UploadMetadata(CamelModel):
    session_id: str
    recorded_at: str | None = None
    session_start_time: int | None = None
    session_end_time: int | None = None
    duration: int = 0
    participant_count: int = 0
    total_size: int = 0
    timing_estimated: bool = True
    format: str = "segmented"
    segments: list[ManifestSegment] = Field(default_factory=list)


@dataclass
class UploadProgress:
    uploaded_bytes: int
    total_bytes: int
    percentage: float
    current_file: str
    current_file_index: int
    total_files: int


ProgressCallback = Callable[[UploadProgress], None]


@dataclass
class UploadResult:
    success: bool
    state: UploadState = UploadState.PENDING
    recording_id: str | None = None
    download_urls: dict[str, list[str]] = field(default_factory=dict)
    view_url: str | None = None
    estimated_processing_time: str | None = None
    error: str | None = None
    status_code: int | None = None
    retryable: bool = False
    duplicate: bool = False
    attempts: int = 0

    @classmethod
    def failure(cls, error: UploadError) -> UploadResult:
        return cls(
            success=False,
            state=UploadState.FAILED,
            error=str(error),
            status_code=error.status_code,
            retryable=error.retryable,
        )


class _MultipartBody:
    """Streamed multipart/form-data request body.

    requests sends it with a Content-Length and the connection pulls it
    through ``read()``, so file parts come off disk in CHUNK_SIZE blocks
    instead of being encoded in memory first. ``on_sent(file_index, n)``
    fires as each block is handed to the connection.

    The socket timeout given to requests covers single reads and writes
    only; ``deadline`` (a ``clock()`` timestamp) caps the whole upload and
    a read past it raises a retryable UploadError.
    """

    def __init__(
        self,
        fields: list[tuple[str, str]],
        files: list[tuple[str, str, str, BinaryIO]],
        on_sent: Callable[[int, int], None] | None = None,
        deadline: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.boundary = choose_boundary()
        self._on_sent = on_sent
        self._deadline = deadline
        self._clock = clock
        self._pieces: list[bytes | tuple[int, BinaryIO]] = []
        self._length = 0

        for name, value in fields:
            self._add(self._part_header(name) + value.encode("utf-8") + b"\r\n")
        for index, (name, filename, content_type, fileobj) in enumerate(files):
            self._add(self._part_header(name, filename, content_type))
            self._pieces.append((index, fileobj))
            self._length += os.fstat(fileobj.fileno()).st_size
            self._add(b"\r\n")
        self._add(f"--{self.boundary}--\r\n".encode())

        self._chunks = self._iter_chunks()
        self._buffer = b""

    @property
    def content_type(self) -> str:
        return f"multipart/form-data; boundary={self.boundary}"

    def _part_header(
        self,
        name: str,
        filename: str | None = None,
        content_type: str | None = None,
    ) -> bytes:
        part = RequestField(name=name, data=b"", filename=filename)
        part.make_multipart(content_type=content_type)
        return f"--{self.boundary}\r\n{part.render_headers()}".encode()

    def _add(self, data: bytes) -> None:
        self._pieces.append(data)
        self._length += len(data)

    def _iter_chunks(self) -> Iterator[bytes]:
        for piece in self._pieces:
            if isinstance(piece, bytes):
                yield piece
                continue
            index, fileobj = piece
            for chunk in iter(lambda f=fileobj: f.read(CHUNK_SIZE), b""):
                if self._on_sent:
                    self._on_sent(index, len(chunk))
                yield chunk

    def read(self, size: int = -1) -> bytes:
        if self._deadline is not None and self._clock() > self._deadline:
            raise UploadError("Upload exceeded its time ceiling", retryable=True)
        while size < 0 or len(self._buffer) < size:
            chunk = next(self._chunks, None)
            if chunk is None:
                break
            self._buffer += chunk
        if size < 0:
            data, self._buffer = self._buffer, b""
        else:
            data, self._buffer = self._buffer[:size], self._buffer[size:]
        return data

    def __len__(self) -> int:
        return self._length

    def __iter__(self) -> Iterator[bytes]:
        return iter(lambda: self.read(CHUNK_SIZE), b"")


def build_bundle(session_dir: Path, manifest: SessionManifest | None = None) -> RecordingBundle:
    """Collect a session's audio and artifacts for upload.

    Audio comes from the manifest's segment list when given, otherwise every
    WAV below the session directory. Transcript and manifest files are
    appended when present.
    """
    if manifest is not None:
        audio_paths = [session_dir / seg.file_path for seg in manifest.segments]
    else:
        audio_paths = sorted(session_dir.rglob("*.wav"))

    files = []
    for path in audio_paths:
        if path.exists():
            files.append(
                BundleFile(
                    path=path,
                    relative_path=path.relative_to(session_dir).as_posix(),
                    size=path.stat().st_size,
                )
            )
        else:
            logger.warning(f"Bundle file missing, not uploading: {path}")

    for name in ARTIFACT_FILENAMES:
        path = session_dir / name
        if path.exists():
            files.append(BundleFile(path=path, relative_path=name, size=path.stat().st_size))

    return RecordingBundle(root=session_dir, files=files)


def metadata_from_manifest(
    manifest: SessionManifest,
    bundle: RecordingBundle | None = None,
) -> UploadMetadata:
    duration = 0
    if manifest.session_start_time is not None and manifest.session_end_time is not None:
        duration = manifest.session_end_time - manifest.session_start_time
    return UploadMetadata(
        session_id=manifest.session_id,
        recorded_at=manifest.created_at,
        session_start_time=manifest.session_start_time,
        session_end_time=manifest.session_end_time,
        duration=duration,
        participant_count=len(manifest.participants),
        total_size=bundle.total_size if bundle else sum(s.file_size for s in manifest.segments),
        timing_estimated=manifest.timing_estimated,
        segments=manifest.segments,
    )


def _error_message(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return f"API error: {response.status_code}"


def classify_response(response: requests.Response) -> None:
    """Raise UploadError for non-2xx responses.

    5xx is retryable; any 4xx is a client or validation error and is not.
    """
    status = response.status_code
    if status < 400:
        return
    message = _error_message(response)
    if status >= 500:
        raise UploadError(f"Server error {status}: {message}", retryable=True, status_code=status)
    raise UploadError(f"Client error {status}: {message}", retryable=False, status_code=status)


class RecordingUploader:
    """Client for the recordings API.

    ``timeout`` is both the per-read socket timeout handed to requests and
    the ceiling on one whole request body, counted on ``clock``.
    """

    def __init__(
        self,
        api_url: str,
        api_token: str | None = None,
        timeout: float = 300.0,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.api_token = api_token
        self.timeout = timeout
        self.session = session or requests.Session()
        self._sleep = sleep
        self._clock = clock
        self.state = UploadState.PENDING

    def _transition(self, state: UploadState) -> None:
        logger.debug(f"Upload state: {self.state.value} -> {state.value}")
        self.state = state

    def _headers(self) -> dict[str, str]:
        if self.api_token:
            return {"Authorization": f"Bearer {self.api_token}"}
        return {}

    def _body(
        self,
        fields: list[tuple[str, str]],
        files: list[tuple[str, str, str, BinaryIO]],
        on_sent: Callable[[int, int], None] | None = None,
    ) -> _MultipartBody:
        return _MultipartBody(
            fields,
            files,
            on_sent=on_sent,
            deadline=self._clock() + self.timeout,
            clock=self._clock,
        )

    def _post(self, url: str, body: _MultipartBody) -> requests.Response:
        try:
            response = self.session.post(
                url,
                data=body,
                headers={**self._headers(), "Content-Type": body.content_type},
                timeout=self.timeout,
            )
        except requests.Timeout as e:
            raise UploadError(f"Upload timed out after {self.timeout:.0f}s", retryable=True) from e
        except requests.RequestException as e:
            raise UploadError(
                f"No response from API - network issue or API is down: {e}", retryable=True
            ) from e
        classify_response(response)
        return response

    @staticmethod
    def _completed(response: requests.Response) -> UploadResult:
        try:
            body = response.json()
        except ValueError as e:
            raise UploadError(
                f"Unreadable API response: {e}", retryable=False, status_code=response.status_code
            ) from e
        recording = body.get("recording", body) if isinstance(body, dict) else {}
        return UploadResult(
            success=True,
            state=UploadState.COMPLETED,
            recording_id=recording.get("recordingId") or recording.get("id"),
            download_urls=recording.get("downloadUrls") or {},
            view_url=recording.get("viewUrl"),
            estimated_processing_time=recording.get("estimatedProcessingTime"),
            status_code=response.status_code,
        )

    def upload(
        self,
        bundle: RecordingBundle,
        metadata: UploadMetadata,
        on_progress: ProgressCallback | None = None,
    ) -> UploadResult:
        """Send one upload attempt.

        Never raises for transport or API failures; they come back as a
        failed UploadResult with ``retryable`` set. The uploader moves
        PENDING -> UPLOADING -> COMPLETED | FAILED.

        Args:
            bundle: Files to send
            metadata: Session metadata, sent as the ``metadata`` JSON part
            on_progress: Called as file blocks are handed to the connection.
                The final 100% report is held back until the API has
                accepted the bundle, so a failed attempt never reports it.

        Returns:
            UploadResult in state COMPLETED or FAILED
        """
        self._transition(UploadState.UPLOADING)
        result = self._send_bundle(bundle, metadata, on_progress)
        self._transition(result.state)
        return result

    def _send_bundle(
        self,
        bundle: RecordingBundle,
        metadata: UploadMetadata,
        on_progress: ProgressCallback | None,
    ) -> UploadResult:
        total_bytes = bundle.total_size
        total_files = len(bundle.files)
        sent = 0

        logger.info(
            f"Uploading {total_files} files ({total_bytes} bytes) for session "
            f"{metadata.session_id}"
        )

        def report(index: int, uploaded: int) -> None:
            if on_progress and bundle.files:
                on_progress(
                    UploadProgress(
                        uploaded_bytes=uploaded,
                        total_bytes=total_bytes,
                        percentage=round(uploaded / total_bytes * 100, 1) if total_bytes else 100.0,
                        current_file=bundle.files[index].relative_path,
                        current_file_index=index,
                        total_files=total_files,
                    )
                )

        def on_sent(index: int, n: int) -> None:
            nonlocal sent
            sent += n
            if sent < total_bytes:
                report(index, sent)

        try:
            with ExitStack() as stack:
                files = [
                    (
                        "files",
                        bundle_file.relative_path,
                        bundle_file.content_type,
                        stack.enter_context(open(bundle_file.path, "rb")),
                    )
                    for bundle_file in bundle.files
                ]
                body = self._body(
                    [("metadata", json.dumps(metadata.to_json_dict()))], files, on_sent
                )
                response = self._post(f"{self.api_url}/recordings", body)
        except UploadError as e:
            if e.status_code == 409:
                logger.info(f"Recording for {metadata.session_id} already exists on the platform")
                report(total_files - 1, total_bytes)
                return UploadResult(
                    success=True,
                    state=UploadState.COMPLETED,
                    status_code=409,
                    duplicate=True,
                    error="Recording already uploaded (duplicate session ID)",
                )
            logger.error(f"Upload failed for session {metadata.session_id}: {e}")
            return UploadResult.failure(e)
        except OSError as e:
            logger.error(f"Cannot read bundle file for {metadata.session_id}: {e}")
            return UploadResult.failure(UploadError(f"Cannot read bundle file: {e}", retryable=False))

        try:
            result = self._completed(response)
        except UploadError as e:
            return UploadResult.failure(e)

        report(total_files - 1, total_bytes)
        logger.info(f"Upload completed: recording {result.recording_id}")
        return result

    def _with_retry(
        self,
        attempt_upload: Callable[[], UploadResult],
        max_retries: int,
        label: str,
    ) -> UploadResult:
        result = UploadResult(success=False, state=UploadState.FAILED, error="No upload attempted")
        for attempt in range(1, max_retries + 1):
            logger.info(f"Upload attempt {attempt}/{max_retries} for {label}")
            result = attempt_upload()
            result.attempts = attempt

            if result.success:
                return result
            if not result.retryable:
                logger.error(f"Upload failed with client error, not retrying: {result.error}")
                return result
            if attempt < max_retries:
                self._transition(UploadState.PENDING)
                delay = 2**attempt
                logger.info(f"Upload failed, retrying in {delay}s...")
                self._sleep(delay)

        logger.error(f"All {max_retries} upload attempts failed for {label}")
        return result

    def upload_with_retry(
        self,
        bundle: RecordingBundle,
        metadata: UploadMetadata,
        max_retries: int = 3,
        on_progress: ProgressCallback | None = None,
    ) -> UploadResult:
        """Upload, retrying retryable failures with 2**attempt second backoff.

        ``max_retries`` is the total number of attempts. A client error stops
        immediately; when attempts run out the last failure is returned.
        """
        return self._with_retry(
            lambda: self.upload(bundle, metadata, on_progress),
            max_retries,
            f"session {metadata.session_id}",
        )

    def upload_segment(
        self,
        recording_id: str,
        path: Path,
        segment: ManifestSegment,
    ) -> UploadResult:
        """Attach one segment file to an existing recording."""
        try:
            with open(path, "rb") as fileobj:
                body = self._body(
                    [("metadata", json.dumps(segment.to_json_dict()))],
                    [("file", segment.file_name, "audio/wav", fileobj)],
                )
                response = self._post(f"{self.api_url}/recordings/{recording_id}/segments", body)
            result = self._completed(response)
        except UploadError as e:
            return UploadResult.failure(e)
        except OSError as e:
            return UploadResult.failure(UploadError(f"Cannot read {path}: {e}", retryable=False))

        result.recording_id = result.recording_id or recording_id
        return result

    def upload_segment_with_retry(
        self,
        recording_id: str,
        path: Path,
        segment: ManifestSegment,
        max_retries: int = 3,
    ) -> UploadResult:
        return self._with_retry(
            lambda: self.upload_segment(recording_id, path, segment),
            max_retries,
            f"{segment.speaker_name}/{segment.file_name}",
        )

    def check_status(self, recording_id: str) -> dict[str, Any] | None:
        """Fetch processing status of an uploaded recording; None on failure."""
        try:
            response = self.session.get(
                f"{self.api_url}/recordings/{recording_id}",
                headers=self._headers(),
                timeout=self.timeout,
            )
            classify_response(response)
            body = response.json()
        except (requests.RequestException, UploadError, ValueError) as e:
            logger.error(f"Failed to check status for recording {recording_id}: {e}")
            return None

        recording = body.get("recording", {}) if isinstance(body, dict) else {}
        status: dict[str, Any] = {"status": recording.get("status", "failed")}
        transcript = recording.get("transcript")
        if transcript:
            status["transcript"] = {
                "word_count": transcript.get("wordCount", 0),
                "confidence": transcript.get("confidence", 0.0),
            }
        return status


def estimate_upload_time(bundle: RecordingBundle) -> float:
    """Seconds to upload a bundle at a conservative 1 MB/s."""
    return bundle.total_size / ASSUMED_UPLOAD_BYTES_PER_SECOND


def cleanup_local_files(bundle: RecordingBundle) -> bool:
    """Delete the bundle's working directory.

    Failure is logged and reported as False; it never raises, so it cannot
    turn a completed upload into a failed one.
    """
    logger.info(f"Cleaning up local files in {bundle.root}")
    try:
        shutil.rmtree(bundle.root)
    except OSError as e:
        logger.error(f"Failed to cleanup local files in {bundle.root}: {e}")
        return False
    return True
