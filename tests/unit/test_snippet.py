"""Tests for GRUB fragment rendering and idempotent insertion."""

from __future__ import annotations

from pathlib import Path, PurePosixPath

import pytest
from pydantic import ValidationError

from tinycore_audit.core.errors import SnippetError
from tinycore_audit.core.snippet import (
    MARK_BEGIN,
    MARK_END,
    ConfigFragment,
    emit_fragment,
    fragment_paths,
    insert_block,
    insert_fragment,
    render_fragment,
)

TITLE = "TinyCore SSH Auto (SAFE PREVIEW)"


@pytest.fixture
def fragment() -> ConfigFragment:
    return ConfigFragment(
        title=TITLE,
        kernel_path=PurePosixPath("/boot/tinycore/vmlinuz64"),
        initrd_path=PurePosixPath("/boot/tinycore/corepure64-ssh.gz"),
    )


class TestRender:
    def test_menu_entry(self, fragment: ConfigFragment):
        assert fragment.render() == (
            f'menuentry "{TITLE}" {{\n'
            "    insmod part_gpt\n"
            "    insmod ext2\n"
            "    linux /boot/tinycore/vmlinuz64 console=ttyS0 quiet\n"
            "    initrd /boot/tinycore/corepure64-ssh.gz\n"
            "}\n"
        )

    def test_helper_matches_model(self, fragment: ConfigFragment):
        text = render_fragment(
            "/boot/tinycore/vmlinuz64", "/boot/tinycore/corepure64-ssh.gz", TITLE
        )
        assert text == fragment.render()

    def test_empty_kernel_args(self):
        text = render_fragment("/k", "/i", "T", kernel_args="")
        assert "    linux /k\n" in text

    @pytest.mark.parametrize("title", ["", 'say "hi"', "two\nlines"])
    def test_rejects_bad_titles(self, title: str):
        with pytest.raises(ValidationError):
            render_fragment("/k", "/i", title)

    def test_boot_paths_round_trip(self, fragment: ConfigFragment):
        assert fragment_paths(fragment.render()) == {
            "linux": "/boot/tinycore/vmlinuz64",
            "initrd": "/boot/tinycore/corepure64-ssh.gz",
        }

    def test_boot_paths_of_unrelated_text(self):
        assert fragment_paths("#!/bin/sh\nexec tail -n +3 $0\n") == {}

    def test_rejects_relative_paths(self):
        with pytest.raises(ValidationError):
            render_fragment("boot/k", "/i", "T")


class TestEmit:
    def test_writes_file(self, fragment: ConfigFragment, tmp_path: Path):
        path = emit_fragment(fragment, tmp_path / "out" / "40_custom_tinycore_snippet")
        assert path.read_text() == fragment.render()

    def test_unwritable_destination(self, fragment: ConfigFragment, tmp_path: Path):
        blocker = tmp_path / "out"
        blocker.write_text("a file where a directory should be")
        with pytest.raises(SnippetError):
            emit_fragment(fragment, blocker / "snippet")


class TestInsertion:
    def test_insert_twice_leaves_one_block(self, fragment: ConfigFragment, tmp_path: Path):
        config = tmp_path / "40_custom"
        config.write_text("#!/bin/sh\nexec tail -n +3 $0\n")

        assert insert_fragment(config, fragment.render(), fragment.identifier) is True
        assert insert_fragment(config, fragment.render(), fragment.identifier) is False

        text = config.read_text()
        assert text.count(MARK_BEGIN) == 1
        assert text.count(MARK_END) == 1
        assert text.count(f'menuentry "{TITLE}"') == 1
        assert text.startswith("#!/bin/sh\nexec tail -n +3 $0\n")

    def test_creates_missing_config(self, fragment: ConfigFragment, tmp_path: Path):
        config = tmp_path / "40_custom"
        assert insert_fragment(config, fragment.render(), fragment.identifier) is True
        assert config.read_text().startswith(MARK_BEGIN)

    def test_block_is_fenced(self):
        text, inserted = insert_block("header", "body\n", "body")
        assert inserted is False
        text, inserted = insert_block("header", "menuentry x\n", "x-id")
        assert inserted is True
        assert text == f"header\n\n{MARK_BEGIN}\nmenuentry x\n{MARK_END}\n"

    def test_existing_title_without_markers_counts(self, fragment: ConfigFragment):
        existing = f'menuentry "{TITLE}" {{\n}}\n'
        text, inserted = insert_block(existing, fragment.render(), fragment.identifier)
        assert inserted is False
        assert text == existing
