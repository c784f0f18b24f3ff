"""User agent string for API requests."""

from __future__ import annotations

import platform
import sys

from lwskit import version

_ARCH_NAMES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "i386": "386",
    "i686": "386",
    "x86": "386",
    "armv7l": "arm",
    "armv6l": "arm",
    "ppc64le": "ppc64le",
    "ppc64": "ppc64",
    "s390x": "s390x",
    "riscv64": "riscv64",
}


def _os_name() -> str:
    plat = sys.platform
    if plat.startswith("linux"):
        return "linux"
    if plat.startswith("win"):
        return "windows"
    if plat.startswith("freebsd"):
        return "freebsd"
    return plat


def _arch_name() -> str:
    machine = platform.machine().lower()
    return _ARCH_NAMES.get(machine, machine or "unknown")


def adjust_commit(commit: str) -> str:
    """Shorten a commit hash to seven characters, or 'unknown' if empty."""
    if not commit:
        return "unknown"
    return commit[:7]


def default() -> str:
    """Return the default user agent string."""
    return (
        f"lws/{version.GIT_VERSION} ({_os_name()}/{_arch_name()}) "
        f"{adjust_commit(version.GIT_COMMIT)}"
    )