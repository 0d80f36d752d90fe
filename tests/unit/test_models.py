"""Tests for the Pydantic data models: immutability, defaults, transitions."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from tinycore_audit.models.artifacts import ArtifactRef, ArtifactSet, RemoteArtifact
from tinycore_audit.models.reports import ExtractionStatus, InstallReport, Outcome
from tinycore_audit.models.stages import VALID_TRANSITIONS, StageState


class TestStageModels:
    def test_terminal_states_have_no_transitions(self):
        for state in (StageState.PASSED, StageState.FAILED, StageState.BLOCKED):
            assert VALID_TRANSITIONS[state] == set()

    def test_not_started_can_run_or_block(self):
        assert VALID_TRANSITIONS[StageState.NOT_STARTED] == {
            StageState.RUNNING,
            StageState.BLOCKED,
        }


class TestArtifactModels:
    def test_remote_artifact_name(self, tmp_path: Path):
        artifact = RemoteArtifact(url="http://x/core.gz", destination=tmp_path / "core.gz")
        assert artifact.name == "core.gz"
        assert artifact.required is True
        assert artifact.executable is False

    def test_frozen(self, tmp_path: Path):
        artifact = RemoteArtifact(url="http://x/a", destination=tmp_path / "a")
        with pytest.raises(ValidationError):
            artifact.url = "http://y/a"

    def test_artifact_set_order(self, tmp_path: Path):
        refs = [
            ArtifactRef(name=n, path=tmp_path / n, content_address="sha256:00", size_bytes=1)
            for n in ("k", "o", "p", "s")
        ]
        artifact_set = ArtifactSet(
            kernel=refs[0], original_initrd=refs[1], patched_initrd=refs[2], snippet=refs[3]
        )
        assert [r.name for r in artifact_set.as_list()] == ["k", "o", "p", "s"]


class TestReportModels:
    def test_extraction_status_values(self):
        assert ExtractionStatus.PARTIAL == "partial"
        assert ExtractionStatus("unavailable") is ExtractionStatus.UNAVAILABLE
        assert ExtractionStatus("failed") is ExtractionStatus.FAILED

    def test_outcome_detail_defaults_empty(self):
        assert Outcome(name="busybox", ok=True).detail == ""

    def test_install_report_defaults(self):
        report = InstallReport()
        assert report.installed == []
        assert report.fragment_inserted is False
        assert report.regenerated_with == ""
