"""GRUB menu-entry fragment: rendering, emission, idempotent insertion.

The menu title is the idempotency key. Insertion is a substring check on
that title against the target config, so inserting the same fragment any
number of times leaves exactly one guarded block behind.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path, PurePosixPath

from pydantic import BaseModel, ConfigDict, field_validator

from tinycore_audit.core.errors import SnippetError

logger = logging.getLogger(__name__)

MARK_BEGIN = "# >>> TINYCORE SAFE ENTRY BEGIN >>>"
MARK_END = "# <<< TINYCORE SAFE ENTRY END <<<"

_BOOT_LINE = re.compile(r"^\s*(linux|initrd)\s+(\S+)", re.MULTILINE)


class ConfigFragment(BaseModel):
    """A named GRUB ``menuentry`` pointing at install-time paths."""

    model_config = ConfigDict(frozen=True)

    title: str
    kernel_path: PurePosixPath
    initrd_path: PurePosixPath
    kernel_args: str = "console=ttyS0 quiet"
    modules: tuple[str, ...] = ("part_gpt", "ext2")

    @field_validator("title")
    @classmethod
    def _check_title(cls, value: str) -> str:
        if not value.strip() or '"' in value or "\n" in value:
            raise ValueError(f"menu title must be a non-empty single line without quotes: {value!r}")
        return value

    @field_validator("kernel_path", "initrd_path")
    @classmethod
    def _check_absolute(cls, value: PurePosixPath) -> PurePosixPath:
        if not value.is_absolute():
            raise ValueError(f"install-time path must be absolute: {value}")
        return value

    @property
    def identifier(self) -> str:
        return self.title

    def render(self) -> str:
        lines = [f'menuentry "{self.title}" {{']
        lines += [f"    insmod {module}" for module in self.modules]
        lines += [
            f"    linux {self.kernel_path} {self.kernel_args}".rstrip(),
            f"    initrd {self.initrd_path}",
            "}",
        ]
        return "\n".join(lines) + "\n"


def render_fragment(
    kernel_path: PurePosixPath | str,
    initrd_path: PurePosixPath | str,
    title: str,
    kernel_args: str = "console=ttyS0 quiet",
) -> str:
    """Pure rendering helper: paths and title in, fragment text out."""
    return ConfigFragment(
        title=title,
        kernel_path=PurePosixPath(kernel_path),
        initrd_path=PurePosixPath(initrd_path),
        kernel_args=kernel_args,
    ).render()


def emit_fragment(fragment: ConfigFragment, path: Path) -> Path:
    """Write the rendered fragment to *path*. The only side effect."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(fragment.render(), encoding="utf-8")
    except OSError as exc:
        raise SnippetError(f"Cannot write GRUB snippet {path}: {exc}") from exc
    logger.info("Wrote GRUB snippet %s", path)
    return path


def fragment_paths(fragment_text: str) -> dict[str, str]:
    """Map ``linux`` and ``initrd`` to the first path each names in *fragment_text*."""
    paths: dict[str, str] = {}
    for keyword, path in _BOOT_LINE.findall(fragment_text):
        paths.setdefault(keyword, path)
    return paths


def guarded_block(fragment_text: str) -> str:
    """Wrap fragment text between the begin/end markers."""
    body = fragment_text if fragment_text.endswith("\n") else fragment_text + "\n"
    return f"{MARK_BEGIN}\n{body}{MARK_END}\n"


def insert_block(existing: str, fragment_text: str, identifier: str) -> tuple[str, bool]:
    """Return ``(new_text, inserted)``.

    If *identifier* already occurs in *existing*, the text is returned
    unchanged with ``inserted=False``.
    """
    if identifier in existing:
        return existing, False
    prefix = existing
    if prefix and not prefix.endswith("\n"):
        prefix += "\n"
    if prefix:
        prefix += "\n"
    return prefix + guarded_block(fragment_text), True


def insert_fragment(config_path: Path, fragment_text: str, identifier: str) -> bool:
    """Append the guarded fragment to *config_path* unless already present.

    Creates the file when missing. Returns whether anything was written.
    """
    existing = config_path.read_text(encoding="utf-8") if config_path.exists() else ""
    updated, inserted = insert_block(existing, fragment_text, identifier)
    if inserted:
        config_path.write_text(updated, encoding="utf-8")
        logger.info("Inserted menu entry %r into %s", identifier, config_path)
    else:
        logger.info("Menu entry %r already present in %s; skipping", identifier, config_path)
    return inserted
