"""Safe startup-script template and the destructive-command denylist.

The patched ``bootlocal.sh`` is rendered from this template, never derived
from the archive's original script. Commands that wiped or repartitioned
disks in the historical script are kept only as ``#`` comments inside a
delimited block so the removal stays auditable.

``find_active_violations`` scans any script for denylisted commands that
are not commented out; the rendered template must produce none.
"""

from __future__ import annotations

import re
import shlex
from collections.abc import Iterable, Sequence

from pydantic import BaseModel, ConfigDict

TEMPLATE_VERSION = "2"

REMOVED_BLOCK_BEGIN = "# ===== DANGEROUS STEPS FROM ORIGINAL SCRIPT (COMMENTED OUT) ====="
REMOVED_BLOCK_END = "# ===== END DANGEROUS STEPS ====="
COMPLETE_MARKER = "SAFE MODE complete"
STARTED_MARKER = "Installation (SAFE MODE) started"

# Historical commands, preserved verbatim as inert commentary.
REMOVED_COMMANDS: tuple[str, ...] = (
    'sudo sh -c "wget --no-check-certificate -O grub.gz '
    'https://github.com/kmille36/CaiWindowsChoLinux/raw/refs/heads/main/grubsdbuefiwin.gz"',
    "sudo gunzip -c grub.gz | dd of=/dev/sda bs=4M",
    "echo formatting sda to GPT NTFS >> /srv/lab",
    "sudo sgdisk -d 2 /dev/sda",
    'sudo sgdisk -n 2:0:0 -t 2:0700 -c 2:"Data" /dev/sda',
    "sudo mkfs.ntfs -f /dev/sda2 -L DATA",
    'if [ -n "$GZ_LINK" ]; then',
    "  sudo sh -c '(wget --no-check-certificate -O- \"$GZ_LINK\" | gunzip | dd of=/dev/sdb bs=4M) &'",
    "fi",
    "",
    "sleep 1",
    "sudo reboot",
)


class DenyRule(BaseModel):
    """A class of destructive command, matched against active lines."""

    model_config = ConfigDict(frozen=True)

    name: str
    pattern: str

    def matches(self, line: str) -> bool:
        return re.search(self.pattern, line) is not None


DENYLIST: tuple[DenyRule, ...] = (
    DenyRule(name="raw block-device write", pattern=r"\bdd\b[^\n]*\bof=/dev/"),
    DenyRule(
        name="partition-table edit",
        pattern=r"\b(?:sgdisk|sfdisk|fdisk|cfdisk|gdisk|parted|wipefs)\b[^\n]*\s/dev/",
    ),
    DenyRule(
        name="filesystem format",
        pattern=r"\b(?:mkfs(?:\.[\w-]+)?|mke2fs|mkntfs|mkswap|mkdosfs)\b",
    ),
    DenyRule(name="reboot", pattern=r"\b(?:reboot|poweroff|halt|kexec)\b|\bshutdown\s+-[rh]"),
    DenyRule(
        name="unverified shortlink download",
        pattern=r"--no-check-certificate|\$\{?GZ_LINK\b",
    ),
)


class Violation(BaseModel):
    model_config = ConfigDict(frozen=True)

    lineno: int
    rule: str
    line: str


def is_comment(line: str) -> bool:
    stripped = line.strip()
    return not stripped or stripped.startswith("#")


def find_active_violations(
    text: str, rules: Iterable[DenyRule] = DENYLIST
) -> list[Violation]:
    """Return every denylisted command that appears in active form.

    Full-line comments and blank lines are ignored; the shebang counts as
    a comment. Anything else is active, including inline ``cmd  # note``.
    """
    rules = tuple(rules)
    violations: list[Violation] = []
    for lineno, line in enumerate(text.splitlines(), start=1):
        if is_comment(line):
            continue
        for rule in rules:
            if rule.matches(line):
                violations.append(Violation(lineno=lineno, rule=rule.name, line=line.strip()))
    return violations


def _comment_out(command: str) -> str:
    return f"# {command}" if command else "#"


def render_safe_script(
    *,
    packages: Sequence[str] = ("ntfs-3g", "gdisk", "openssh.tcz"),
    service_script: str = "/usr/local/etc/init.d/openssh",
    status_log: str = "/srv/lab",
    removed_commands: Sequence[str] = REMOVED_COMMANDS,
) -> str:
    """Render the safe ``bootlocal.sh``.

    Every network/package/service step is best-effort (``|| true``). The
    output is deterministic for a given set of arguments.
    """
    log = shlex.quote(status_log)
    lines: list[str] = [
        "#!/bin/sh",
        f"# SAFE bootlocal (template v{TEMPLATE_VERSION}): retains package loads,",
        "# comments out destructive steps.",
        "",
        "# Try to acquire DHCP (ignore failures)",
        "sudo udhcpc 2>/dev/null || true",
        "",
        f'echo "{STARTED_MARKER}" >> {log}',
        "",
        "# Optional: lightweight http server for status page (commented out by default)",
        '# su tc -c "sudo /srv/busybox httpd -p 80 -h /srv"',
        "",
        "# Load optional tools (ignore failures)",
    ]
    for package in packages:
        lines.append(f'su tc -c "tce-load -wi {package}" || true')
    lines += [
        "",
        "# Start service if available (ignore failures)",
        f"[ -x {shlex.quote(service_script)} ] && "
        f"sudo {shlex.quote(service_script)} start 2>/dev/null || true",
        "",
        REMOVED_BLOCK_BEGIN,
        "# The following commands modify the bootloader and DESTROY/REPARTITION DISKS.",
        "# They are **DISABLED** for safety. Review and enable only if you accept the risks.",
        "#",
    ]
    lines += [_comment_out(command) for command in removed_commands]
    lines += [
        REMOVED_BLOCK_END,
        "",
        f'echo "{COMPLETE_MARKER}" >> {log}',
    ]
    return "\n".join(lines) + "\n"
