"""Pinata upload clients.

``PinataUploadClient`` posts a directory to the pinning API in-process and
retries transient failures with exponential backoff. ``HelperUploadClient``
delegates to an external upload helper that prints the pinning response as
its last stdout line.
"""

import asyncio
import json
import os
from pathlib import Path
from typing import Any, Awaitable, Callable, Protocol

import httpx

from pindeploy.config import Settings, subprocess_env
from pindeploy.core.exceptions import PreconditionError, UploadError, UploadErrorKind
from pindeploy.models.deployment import AttemptOutcome, PinResult, UploadAttempt
from pindeploy.utils.logging import SENSITIVE_PATTERN, get_logger, redact_text
from pindeploy.utils.process import kill_process

BACKOFF_BASE_MS = 1000
BACKOFF_CAP_MS = 10_000

CONTENT_ID_FIELD = "IpfsHash"

Sleep = Callable[[float], Awaitable[None]]


class Uploader(Protocol):
    async def upload(self, directory: Path, pin_name: str) -> PinResult: ...


def backoff_delay_ms(attempt: int) -> int:
    """Wait after ``attempt`` (1-based) failed: 1s, 2s, 4s, ... capped at 10s."""
    return min(BACKOFF_BASE_MS * 2 ** (attempt - 1), BACKOFF_CAP_MS)


def classify_failure(exc: BaseException) -> tuple[AttemptOutcome, UploadErrorKind]:
    """Decide whether a failed attempt is worth retrying."""
    if isinstance(exc, UploadError):
        return AttemptOutcome.FATAL, exc.kind
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        if status in (401, 403):
            return AttemptOutcome.FATAL, UploadErrorKind.AUTH
        if status == 429:
            return AttemptOutcome.RETRYABLE, UploadErrorKind.RATE_LIMITED
        if 400 <= status < 500:
            return AttemptOutcome.FATAL, UploadErrorKind.CLIENT
        return AttemptOutcome.RETRYABLE, UploadErrorKind.SERVER
    if isinstance(exc, (httpx.TimeoutException, TimeoutError)):
        return AttemptOutcome.RETRYABLE, UploadErrorKind.TIMEOUT
    if isinstance(exc, (httpx.NetworkError, httpx.RemoteProtocolError)):
        return AttemptOutcome.RETRYABLE, UploadErrorKind.NETWORK
    return AttemptOutcome.RETRYABLE, UploadErrorKind.UNEXPECTED


def _status_of(exc: BaseException) -> int | None:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    if isinstance(exc, UploadError):
        return exc.status_code
    return None


def collect_files(directory: Path) -> list[Path]:
    """Validate ``directory`` and list every file under it, sorted."""
    if not directory.exists():
        raise PreconditionError(
            f"Source directory does not exist: {directory}",
            {"directory": str(directory)},
        )
    if not directory.is_dir():
        raise PreconditionError(
            f"Source path is not a directory: {directory}",
            {"directory": str(directory)},
        )
    files = sorted(p for p in directory.rglob("*") if p.is_file())
    if not files:
        raise PreconditionError(
            f"No files found in source directory: {directory}",
            {"directory": str(directory)},
        )
    return files


def _error_message(response: httpx.Response) -> str:
    """Pull a human-readable message out of an error response."""
    body = response.text
    if not body:
        return response.reason_phrase or "Unknown error"
    try:
        payload = json.loads(body)
    except ValueError:
        return body[:200]
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        for key in ("message", "error", "reason"):
            if payload.get(key):
                return str(payload[key])
    return body[:200]


class PinataUploadClient:
    """Uploads a directory to Pinata's ``pinFileToIPFS`` endpoint."""

    def __init__(
        self,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.settings = settings
        self.transport = transport
        self.sleep = sleep
        self.attempts: list[UploadAttempt] = []
        self.logger = get_logger("upload")

    async def upload(self, directory: Path, pin_name: str) -> PinResult:
        """Upload every file in ``directory`` and return the pinned content id.

        Raises:
            PreconditionError: directory missing, not a directory, or empty.
            UploadError: fatal failure, or retries exhausted.
        """
        if not self.settings.has_credentials:
            raise PreconditionError("Required environment variable not set: PINATA_JWT")

        files = collect_files(directory)
        max_attempts = self.settings.upload_max_attempts
        self.attempts = []

        async with httpx.AsyncClient(
            transport=self.transport,
            timeout=httpx.Timeout(self.settings.upload_timeout_s),
        ) as client:
            for attempt in range(1, max_attempts + 1):
                self.logger.info(
                    "upload.attempt_started",
                    files=len(files),
                    attempt=attempt,
                    max_attempts=max_attempts,
                    pin_name=pin_name,
                )
                try:
                    async with asyncio.timeout(self.settings.upload_timeout_s):
                        payload = await self._send(client, directory, files, pin_name)
                except Exception as exc:
                    outcome, kind = classify_failure(exc)
                    status = _status_of(exc)
                    detail = self._describe(exc)
                    is_last = attempt == max_attempts
                    wait_ms = 0 if outcome is AttemptOutcome.FATAL or is_last else backoff_delay_ms(attempt)

                    self.attempts.append(
                        UploadAttempt(
                            attempt_number=attempt,
                            outcome=outcome,
                            http_status=status,
                            wait_before_next_ms=wait_ms,
                            detail=detail,
                        )
                    )
                    self.logger.error(
                        "upload.attempt_failed",
                        attempt=attempt,
                        max_attempts=max_attempts,
                        kind=kind.value,
                        status_code=status,
                        detail=detail,
                    )

                    if outcome is AttemptOutcome.FATAL or is_last:
                        raise UploadError(kind, detail, status_code=status, attempts=attempt) from exc

                    self.logger.info("upload.retry_scheduled", wait_ms=wait_ms)
                    await self.sleep(wait_ms / 1000)
                    continue

                self.attempts.append(UploadAttempt(attempt_number=attempt, outcome=AttemptOutcome.SUCCESS, http_status=200))
                self.logger.info(
                    "upload.completed",
                    content_id=payload[CONTENT_ID_FIELD],
                    attempts=attempt,
                )
                return PinResult(
                    content_id=payload[CONTENT_ID_FIELD],
                    raw_response=payload,
                    attempts=list(self.attempts),
                )

        raise UploadError(UploadErrorKind.UNEXPECTED, "no upload attempt was made", attempts=0)

    async def _send(
        self,
        client: httpx.AsyncClient,
        directory: Path,
        files: list[Path],
        pin_name: str,
    ) -> dict[str, Any]:
        multipart = [
            (
                "file",
                (f"{directory.name}/{path.relative_to(directory).as_posix()}", path.read_bytes()),
            )
            for path in files
        ]
        response = await client.post(
            self.settings.pinata_api_url,
            headers={"Authorization": f"Bearer {self.settings.pinata_jwt.get_secret_value()}"},
            data={"pinataMetadata": json.dumps({"name": pin_name})},
            files=multipart,
        )
        response.raise_for_status()

        payload = response.json()
        if not isinstance(payload, dict) or not payload.get(CONTENT_ID_FIELD):
            raise UploadError(
                UploadErrorKind.INVALID_RESPONSE,
                f"Invalid response from Pinata: {response.text[:200]}",
                status_code=response.status_code,
            )
        return payload

    def _describe(self, exc: BaseException) -> str:
        if isinstance(exc, UploadError):
            detail = exc.detail
        elif isinstance(exc, httpx.HTTPStatusError):
            response = exc.response
            detail = f"{response.status_code} {response.reason_phrase}: {_error_message(response)}"
        elif isinstance(exc, TimeoutError):
            detail = f"request exceeded {self.settings.upload_timeout_s:g}s"
        else:
            detail = f"{type(exc).__name__}: {exc}"
        return redact_text(detail, self.settings.secret_values())


def _failure_hint(output: str) -> str | None:
    """Suggest a fix for common helper failures."""
    lowered = output.lower()
    if "no_scopes_found" in lowered or "scopes" in lowered or ("403" in lowered and "forbidden" in lowered):
        return "PINATA_JWT is missing required scopes; enable 'pinFileToIPFS' for the API key."
    if "401" in lowered or "unauthorized" in lowered:
        return "Authentication failed; check that PINATA_JWT is valid."
    if "timeout" in lowered or "etimedout" in lowered:
        return "Upload timed out; try increasing PINATA_UPLOAD_TIMEOUT_MS."
    return None


def scrub_output(output: str, secrets: list[str]) -> list[str]:
    """Drop lines that may carry credentials, then redact known secrets."""
    return [
        redact_text(line, secrets)
        for line in output.splitlines()
        if not SENSITIVE_PATTERN.search(line)
    ]


class HelperUploadClient:
    """Runs an external upload helper: ``<helper> <directory> <pin_name>``.

    The helper owns its own retry policy. Its last stdout line must be the
    pinning service's JSON response.
    """

    def __init__(self, settings: Settings, helper: Path):
        self.settings = settings
        self.helper = helper
        self.logger = get_logger("upload.helper")

    async def upload(self, directory: Path, pin_name: str) -> PinResult:
        if not self.helper.is_file():
            raise PreconditionError(
                f"Upload script not found at: {self.helper}",
                {"helper": str(self.helper)},
            )
        if not os.access(self.helper, os.X_OK):
            raise PreconditionError(
                f"Upload script is not executable: {self.helper}",
                {"helper": str(self.helper)},
            )
        if not self.settings.has_credentials:
            raise PreconditionError("Required environment variable not set: PINATA_JWT")
        collect_files(directory)

        env = subprocess_env(
            PINATA_JWT=self.settings.pinata_jwt.get_secret_value(),
            PINATA_UPLOAD_TIMEOUT_MS=str(self.settings.pinata_upload_timeout_ms),
        )

        self.logger.info("upload.helper_started", helper=str(self.helper), pin_name=pin_name)
        process = await asyncio.create_subprocess_exec(
            str(self.helper),
            str(directory),
            pin_name,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=env,
        )
        try:
            stdout, stderr = await process.communicate()
        except BaseException:
            # Cancelled or interrupted: the helper must not outlive the run
            await kill_process(process)
            raise
        stdout_text = stdout.decode(errors="replace") if stdout else ""
        stderr_text = stderr.decode(errors="replace") if stderr else ""

        secrets = self.settings.secret_values()
        for line in scrub_output(stderr_text, secrets):
            self.logger.info("upload.helper_output", line=line)

        if process.returncode != 0:
            combined = f"{stdout_text}\n{stderr_text}"
            tail = scrub_output(combined, secrets)[-30:]
            hint = _failure_hint(combined)
            if hint:
                self.logger.warning("upload.helper_hint", hint=hint)
            raise UploadError(
                UploadErrorKind.HELPER_FAILED,
                f"exit code {process.returncode}: " + (" | ".join(tail[-5:]) or "no output"),
            )

        lines = [line for line in stdout_text.splitlines() if line.strip()]
        last_line = lines[-1] if lines else ""
        try:
            payload = json.loads(last_line)
        except ValueError:
            payload = None
        if not isinstance(payload, dict) or not payload.get(CONTENT_ID_FIELD):
            raise UploadError(
                UploadErrorKind.INVALID_RESPONSE,
                "Failed to parse IPFS hash from helper output: "
                + redact_text(last_line[:200], secrets),
            )

        self.logger.info("upload.completed", content_id=payload[CONTENT_ID_FIELD])
        return PinResult(content_id=payload[CONTENT_ID_FIELD], raw_response=payload)


def build_uploader(settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> Uploader:
    """Pick the helper when one is configured, otherwise upload in-process."""
    if settings.upload_script_path is not None:
        return HelperUploadClient(settings, settings.upload_script_path)
    return PinataUploadClient(settings, transport=transport)
