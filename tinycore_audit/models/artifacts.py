"""Artifact models: inputs fetched from the mirror and outputs of a run."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict


class RemoteArtifact(BaseModel):
    """A URL and the local path it is fetched into.

    After a successful fetch the destination exists and is non-empty.
    Re-fetching overwrites the destination.
    """

    model_config = ConfigDict(frozen=True)

    url: str
    destination: Path
    required: bool = True
    executable: bool = False

    @property
    def name(self) -> str:
        return self.destination.name


class ArtifactRef(BaseModel):
    """A produced file with its size and content digest."""

    model_config = ConfigDict(frozen=True)

    name: str
    path: Path
    content_address: str  # "sha256:<hex>"
    size_bytes: int


class ArtifactSet(BaseModel):
    """The four files a successful run leaves in the output directory.

    Consumed, unmodified, by the separate install step.
    """

    model_config = ConfigDict(frozen=True)

    kernel: ArtifactRef
    original_initrd: ArtifactRef
    patched_initrd: ArtifactRef
    snippet: ArtifactRef

    def as_list(self) -> list[ArtifactRef]:
        return [self.kernel, self.original_initrd, self.patched_initrd, self.snippet]
