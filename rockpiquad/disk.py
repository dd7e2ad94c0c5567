"""SATA disk discovery, temperature readout and controller power-up."""

from __future__ import annotations

import subprocess
import threading
import time

from rockpiquad import logger
from rockpiquad.gpio import (
    GPIOError,
    normalize_chip_path,
    parse_line_number,
    request_output_line,
)

_RECHECK_INTERVAL = 30.0
_SATA_SETTLE_SECONDS = 2.0
_TEMPERATURE_FIELDS = ("Temperature_Celsius", "Airflow_Temperature_Cel")


class DiskError(Exception):
    """Raised when a disk temperature cannot be obtained."""


class _DiskListCache:
    """Remembers the detected disks; an empty result is re-checked at most every 30 s."""

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.disks: list[str] = []
        self.checked_at: float | None = None

    def clear(self) -> None:
        with self.lock:
            self.disks = []
            self.checked_at = None


_cache = _DiskListCache()


def get_sata_disks() -> list[str]:
    """Return the SATA disk devices (/dev/sdX), cached once found."""
    if _cache.disks:
        return list(_cache.disks)
    with _cache.lock:
        due = (
            _cache.checked_at is None
            or time.monotonic() - _cache.checked_at >= _RECHECK_INTERVAL
        )
        if not _cache.disks and due:
            _cache.disks = fetch_disk_list()
            _cache.checked_at = time.monotonic()
        return list(_cache.disks)


def fetch_disk_list() -> list[str]:
    """List whole-disk devices whose names start with "sd"."""
    try:
        result = subprocess.run(
            ["lsblk", "-d"],
            capture_output=True,
            text=True,
            errors="replace",
            check=True,
        )
    except (OSError, subprocess.CalledProcessError):
        return []
    return [
        "/dev/" + line.split()[0]
        for line in result.stdout.splitlines()
        if line.startswith("sd")
    ]


def parse_smartctl_temperature(output: str) -> float:
    """Find the raw value of a temperature attribute in `smartctl -A` output."""
    for line in output.splitlines():
        if not any(name in line for name in _TEMPERATURE_FIELDS):
            continue
        fields = line.split()
        if len(fields) >= 10:
            try:
                return float(fields[9])
            except ValueError:
                continue
    raise DiskError("no temperature field found in smartctl output")


def _attribute_190(output: str) -> float | None:
    rows = [line.split() for line in output.splitlines() if line.startswith("190")]
    if not rows:
        return None
    text = "\n".join(fields[9] if len(fields) >= 10 else "" for fields in rows).strip()
    if not text:
        raise DiskError("no temperature data from smartctl")
    try:
        return float(text)
    except ValueError as exc:
        raise DiskError(f"failed to parse temperature '{text}': {exc}") from exc


def get_temperature(device: str) -> float:
    """Read the temperature of *device* in degrees Celsius using smartctl."""
    try:
        result = subprocess.run(
            ["smartctl", "-A", device],
            capture_output=True,
            text=True,
            errors="replace",
        )
    except OSError as exc:
        raise DiskError(f"smartctl failed: {exc}") from exc
    temperature = _attribute_190(result.stdout)
    if temperature is not None:
        return temperature
    return parse_smartctl_temperature(result.stdout)


def enable_sata_controller(sata_chip: str, sata_line1: str, sata_line2: str) -> bool:
    """Drive the SATA power lines high when no disks are visible.

    Returns True when the enable sequence ran, False when it was skipped.
    """
    if get_sata_disks():
        logger.info("SATA disks detected, skipping SATA controller enable")
        return False

    if not sata_chip or not sata_line1 or not sata_line2:
        logger.info("SATA controller not configured")
        return False

    logger.info("No SATA disks detected, enabling SATA controller...")
    chip = normalize_chip_path(sata_chip)

    try:
        line1 = parse_line_number(sata_line1)
    except GPIOError:
        logger.error("Invalid SATA_LINE_1: %s", sata_line1)
        return False
    try:
        line2 = parse_line_number(sata_line2)
    except GPIOError:
        logger.error("Invalid SATA_LINE_2: %s", sata_line2)
        return False

    held = []
    for label, offset in (("SATA_LINE_1", line1), ("SATA_LINE_2", line2)):
        try:
            held.append(request_output_line(chip, offset, 1))
        except GPIOError as exc:
            logger.error("Failed to request %s (line %d): %s", label, offset, exc)
        else:
            logger.info("%s (line %d) set to HIGH", label, offset)

    try:
        time.sleep(_SATA_SETTLE_SECONDS)
        logger.info("SATA controller enabled")
    finally:
        for line in reversed(held):
            line.close()
    return True