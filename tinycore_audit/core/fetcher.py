"""Fetcher: retrieves remote artifacts into local paths.

Single attempt per artifact with a hard post-condition: the destination
must exist and be non-empty. Required artifacts raise ``DownloadError``;
optional ones return a failed ``Outcome`` and are logged. Optional
downloads also run against a wall-clock deadline, since the socket timeout
only bounds each individual read.
"""

from __future__ import annotations

import http.client
import logging
import os
import time
import urllib.request
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import IO

from tinycore_audit.core.errors import DownloadError
from tinycore_audit.models.artifacts import RemoteArtifact
from tinycore_audit.models.reports import Outcome

logger = logging.getLogger(__name__)

Opener = Callable[..., IO[bytes]]

_CHUNK_SIZE = 64 * 1024

# Transport failures that never escape as anything but a failed fetch.
_FETCH_ERRORS = (OSError, ValueError, http.client.HTTPException)


class Fetcher:
    """Download artifacts with a bounded timeout.

    Parameters
    ----------
    timeout:
        Socket timeout in seconds for required artifacts.
    optional_timeout:
        Shorter ceiling for optional artifacts, applied both per read and
        to the whole download.
    opener:
        ``urllib.request.urlopen``-compatible callable. ``file://`` URLs work
        with the default opener.
    clock:
        Monotonic clock used for the optional-download deadline.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        optional_timeout: float = 3.0,
        *,
        opener: Opener | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.timeout = timeout
        self.optional_timeout = optional_timeout
        self._opener = opener or urllib.request.urlopen
        self._clock = clock

    # ------------------------------------------------------------------
    # Required artifacts
    # ------------------------------------------------------------------

    def fetch(self, artifact: RemoteArtifact) -> Path:
        """Fetch one required artifact, overwriting its destination."""
        try:
            self._download(artifact, self.timeout)
        except _FETCH_ERRORS as exc:
            raise DownloadError(f"Download of {artifact.url} failed: {exc}") from exc

        self._check_nonempty(artifact)
        logger.info(
            "Fetched %s (%d bytes)", artifact.name, artifact.destination.stat().st_size
        )
        return artifact.destination

    def fetch_all(self, artifacts: Iterable[RemoteArtifact]) -> list[Path]:
        """Fetch every artifact in order; the first required failure aborts."""
        paths: list[Path] = []
        for artifact in artifacts:
            if artifact.required:
                paths.append(self.fetch(artifact))
            else:
                outcome = self.fetch_optional(artifact)
                if outcome.ok:
                    paths.append(artifact.destination)
        return paths

    # ------------------------------------------------------------------
    # Optional artifacts
    # ------------------------------------------------------------------

    def fetch_optional(self, artifact: RemoteArtifact) -> Outcome:
        """Best-effort fetch. Never raises for network or empty-file failures."""
        if not artifact.url:
            return Outcome(name=artifact.name, ok=False, detail="no URL configured")
        try:
            self._download(artifact, self.optional_timeout, deadline=self.optional_timeout)
            self._check_nonempty(artifact)
        except _FETCH_ERRORS + (DownloadError,) as exc:
            logger.warning("Optional download %s skipped: %s", artifact.url, exc)
            artifact.destination.unlink(missing_ok=True)
            return Outcome(name=artifact.name, ok=False, detail=str(exc))

        if artifact.executable:
            mode = artifact.destination.stat().st_mode
            os.chmod(artifact.destination, mode | 0o111)
        logger.info("Fetched optional %s", artifact.name)
        return Outcome(name=artifact.name, ok=True, detail=str(artifact.destination))

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _download(
        self, artifact: RemoteArtifact, timeout: float, *, deadline: float | None = None
    ) -> None:
        artifact.destination.parent.mkdir(parents=True, exist_ok=True)
        logger.debug("GET %s -> %s", artifact.url, artifact.destination)
        started = self._clock()
        with self._opener(artifact.url, timeout=timeout) as response:
            with open(artifact.destination, "wb") as fh:
                while True:
                    chunk = response.read(_CHUNK_SIZE)
                    if not chunk:
                        break
                    fh.write(chunk)
                    if deadline is not None and self._clock() - started > deadline:
                        raise TimeoutError(f"download exceeded {deadline:g}s")

    @staticmethod
    def _check_nonempty(artifact: RemoteArtifact) -> None:
        dest = artifact.destination
        if not dest.is_file() or dest.stat().st_size == 0:
            raise DownloadError(f"Download of {artifact.url} produced an empty file: {dest}")
