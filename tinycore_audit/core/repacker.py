"""Archive repacker: WorkingTree back to a compressed newc stream.

The tree is enumerated deterministically (sorted, directories before
their contents), handed to ``cpio -o -H newc`` and recompressed with the
outer compression of the original download. The result is written under
a temporary name and renamed only after cpio succeeded and the optional
verification passed, so a failed repack never leaves a file that looks
final.

``verify_round_trip`` re-extracts an archive and compares every regular
file's digest with the tree it was built from.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from collections.abc import Callable, Iterator, Sequence
from pathlib import Path

from tinycore_audit.core import compression
from tinycore_audit.core.compression import Compression
from tinycore_audit.core.errors import RepackError, UnpackError
from tinycore_audit.core.extraction import DEVICE_PREFIX, ExtractionStrategy
from tinycore_audit.core.hasher import content_address, tree_manifest
from tinycore_audit.core.unpacker import ArchiveUnpacker
from tinycore_audit.models.reports import RepackReport

logger = logging.getLogger(__name__)


def enumerate_tree(root: Path) -> Iterator[str]:
    """Yield ``.`` then every entry under *root* as ``./rel/path``, sorted.

    Symlinks to directories are yielded but not descended into.
    """
    yield "."
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        rel_dir = Path(dirpath).relative_to(root)
        for name in sorted(dirnames + filenames):
            yield "./" + (rel_dir / name).as_posix()


class ArchiveRepacker:
    """Serialize *work_dir* into a compressed newc archive.

    Parameters
    ----------
    work_dir:
        Root of the patched tree.
    scratch_dir:
        Where the intermediate raw cpio stream is written.
    tool:
        Name of the cpio executable.
    """

    def __init__(self, work_dir: Path, scratch_dir: Path, *, tool: str = "cpio") -> None:
        self.work_dir = Path(work_dir)
        self.scratch_dir = Path(scratch_dir)
        self.tool = tool

    def repack(
        self,
        output: Path,
        *,
        original: Path | None = None,
        compression_kind: Compression = Compression.GZIP,
        verify: Callable[[Path], int] | None = None,
    ) -> RepackReport:
        """Write the archive to *output* and return its report.

        *verify* receives the not-yet-renamed archive and returns the number
        of files it checked. Raises ``RepackError`` if *output* would
        overwrite *original*, if the tool is missing or exits non-zero, if
        the result is empty, or if *verify* raises it. On any failure
        *output* does not exist afterwards.
        """
        output = Path(output)
        if original is not None and output.resolve() == Path(original).resolve():
            raise RepackError(f"Refusing to overwrite the pristine original {original}")
        if not self.work_dir.is_dir():
            raise RepackError(f"Working tree {self.work_dir} does not exist")
        if shutil.which(self.tool) is None:
            raise RepackError(f"{self.tool} not found; cannot build the newc archive")
        output.unlink(missing_ok=True)

        entries = list(enumerate_tree(self.work_dir))
        raw = self.scratch_dir / "repack.cpio"
        raw.parent.mkdir(parents=True, exist_ok=True)
        partial = output.with_name(output.name + ".partial")
        output.parent.mkdir(parents=True, exist_ok=True)

        listing = b"".join(e.encode("utf-8", errors="surrogateescape") + b"\0" for e in entries)
        cmd = [self.tool, "--null", "-o", "-H", "newc", "--quiet"]
        logger.debug("Running %s in %s (%d entries)", " ".join(cmd), self.work_dir, len(entries))
        with open(raw, "wb") as sink:
            proc = subprocess.run(
                cmd, input=listing, stdout=sink, stderr=subprocess.PIPE, cwd=self.work_dir
            )
        if proc.returncode != 0:
            raw.unlink(missing_ok=True)
            stderr = proc.stderr.decode("utf-8", errors="replace").strip()
            raise RepackError(f"{self.tool} exited with {proc.returncode}: {stderr}")

        try:
            compression.compress(raw, partial, compression_kind)
        except OSError as exc:
            partial.unlink(missing_ok=True)
            raise RepackError(f"Compressing {output.name} failed: {exc}") from exc
        finally:
            raw.unlink(missing_ok=True)

        if partial.stat().st_size == 0:
            partial.unlink()
            raise RepackError(f"Repacked archive {output} is empty")

        verified = 0
        if verify is not None:
            try:
                verified = verify(partial)
            except Exception:
                partial.unlink(missing_ok=True)
                raise
        os.replace(partial, output)

        size = output.stat().st_size
        logger.info(
            "Repacked %d entries into %s (%s, %d bytes)",
            len(entries),
            output.name,
            compression_kind.value,
            size,
        )
        return RepackReport(
            output=output,
            compression=compression_kind.value,
            entry_count=len(entries),
            size_bytes=size,
            content_address=content_address(output),
            verified_files=verified,
        )


def verify_round_trip(
    archive: Path,
    reference_tree: Path,
    scratch_dir: Path,
    strategies: Sequence[ExtractionStrategy],
    warnings_log: Path,
) -> int:
    """Extract *archive* into scratch and diff regular files against *reference_tree*.

    Device nodes are excluded on both sides. Returns the number of files
    verified; raises ``RepackError`` on any missing, extra, or changed file.
    """
    verify_dir = Path(scratch_dir) / "verify"
    unpacker = ArchiveUnpacker(verify_dir, scratch_dir, warnings_log, strategies)
    try:
        unpacker.unpack(archive)
        expected = tree_manifest(reference_tree, exclude=(DEVICE_PREFIX,))
        actual = tree_manifest(verify_dir, exclude=(DEVICE_PREFIX,))
    except UnpackError as exc:
        raise RepackError(f"Repacked archive {archive} does not unpack: {exc}") from exc
    finally:
        shutil.rmtree(verify_dir, ignore_errors=True)

    missing = sorted(set(expected) - set(actual))
    extra = sorted(set(actual) - set(expected))
    changed = sorted(p for p in set(expected) & set(actual) if expected[p] != actual[p])
    if missing or extra or changed:
        details = []
        if missing:
            details.append(f"missing {missing[:5]}")
        if extra:
            details.append(f"unexpected {extra[:5]}")
        if changed:
            details.append(f"changed {changed[:5]}")
        raise RepackError(f"Round-trip verification of {archive} failed: " + "; ".join(details))

    logger.info("Round trip verified: %d regular files match", len(expected))
    return len(expected)
