"""System information and the pages shown on the OLED display."""

from __future__ import annotations

import re
import subprocess
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from rockpiquad import disk
from rockpiquad.config import Config

_DEFAULT_INTERFACES = ("eth0", "wlan0", "enp0s3")
_SECTOR_SIZE = 512
_MEBIBYTE = 1024 * 1024
_COUNTER_MODULUS = 1 << 64
_UPTIME_RE = re.compile(r".*up ([^,]*),.*")


class _FanSpeeds(Protocol):
    def fan_speeds(self) -> tuple[float, float]: ...


@dataclass(frozen=True)
class TextItem:
    x: int
    y: int
    text: str
    font_size: int = 11


@dataclass
class _IOSample:
    first: int
    second: int
    timestamp: float


def strip_device_name(device: str) -> str:
    """Drop "/dev/" and a trailing partition number: /dev/sda1 -> sda."""
    if not device.startswith("/dev/"):
        return device
    name = device[len("/dev/"):]
    stripped = name.rstrip("0123456789")
    return stripped if stripped else name


def _run(args: list[str]) -> str | None:
    try:
        result = subprocess.run(args, capture_output=True, text=True, errors="replace")
    except OSError:
        return None
    if result.returncode != 0:
        return None
    return result.stdout


def _second_line_fields(output: str | None) -> list[str]:
    if output is None:
        return []
    lines = output.splitlines()
    return lines[1].split() if len(lines) > 1 else []


def _read_uint(path: Path) -> int:
    try:
        return int(path.read_text().strip())
    except (OSError, ValueError):
        return 0


def _parse_uint(text: str) -> int:
    return int(text) if text.isdigit() else 0


class SystemInfo:
    """Collects the figures shown on the display pages."""

    net_root = "/sys/class/net"
    block_root = "/sys/block"
    thermal_path = "/sys/class/thermal/thermal_zone0/temp"

    def __init__(self, cfg: Config, fan_ctrl: _FanSpeeds | None = None) -> None:
        self.cfg = cfg
        self.fan_ctrl = fan_ctrl
        self.net_stats: dict[str, _IOSample] = {}
        self.disk_stats: dict[str, _IOSample] = {}
        self.temp_disk_devs: list[str] = []

    def fan_speeds(self) -> tuple[float, float]:
        """CPU and disk fan duty cycles in percent."""
        if self.fan_ctrl is None:
            return 0.0, 0.0
        return self.fan_ctrl.fan_speeds()

    def uptime(self) -> str:
        out = _run(["uptime"])
        if out is None:
            return "Uptime: N/A"
        text = "\n".join(_UPTIME_RE.sub(r"\1", line) for line in out.splitlines())
        return "Up: " + text.strip()

    def cpu_temp(self) -> str:
        try:
            temp = float(Path(self.thermal_path).read_text().strip()) / 1000.0
        except (OSError, ValueError):
            return "CPU: N/A"
        if self.cfg.oled.fahrenheit:
            return f"CPU: {temp * 1.8 + 32:.0f}°F"
        return f"CPU: {temp:.1f}°C"

    def ip_address(self) -> str:
        out = _run(["hostname", "-I"])
        fields = out.split() if out else []
        return "IP: " + fields[0] if fields else "IP: N/A"

    def cpu_load(self) -> str:
        out = _run(["uptime"])
        if out is None:
            return "CPU Load: N/A"
        lines = out.splitlines()
        fields = lines[0].split() if lines else []
        load = fields[-3] if len(fields) >= 3 else ""
        return "CPU: " + load.strip().removesuffix(",")

    def memory_usage(self) -> str:
        out = _run(["free", "-m"])
        if out is None:
            return "Mem: N/A"
        fields = _second_line_fields(out)
        used = fields[2] if len(fields) > 2 else ""
        total = fields[1] if len(fields) > 1 else ""
        return f"Mem: {used}/{total}MB" if fields else "Mem: "

    def disk_usage(self) -> list[str]:
        """Root usage first, then each configured mount's disk, sorted by name."""
        usage = []
        root_fields = _second_line_fields(_run(["df", "-h", "/"]))
        if len(root_fields) > 4 and root_fields[4]:
            usage.append("/ " + root_fields[4])

        by_disk: dict[str, str] = {}
        for mount in self.cfg.disk.space_usage_mount_points:
            fields = _second_line_fields(_run(["df", "-h", mount]))
            if len(fields) > 4:
                name = strip_device_name(fields[0])
                by_disk[name] = f"{name} {fields[4]}"
        usage.extend(by_disk[name] for name in sorted(by_disk))
        return usage

    def network_interfaces(self) -> list[str]:
        """Configured (or default) interfaces that exist on this system."""
        if self.cfg.network.skip_page:
            return []
        candidates = self.cfg.network.interfaces or list(_DEFAULT_INTERFACES)
        return [iface for iface in candidates if (Path(self.net_root) / iface).exists()]

    def _net_counters(self, iface: str) -> tuple[int, int]:
        stats = Path(self.net_root) / iface / "statistics"
        return _read_uint(stats / "rx_bytes"), _read_uint(stats / "tx_bytes")

    def update_network_stats(self) -> None:
        for iface in self.network_interfaces():
            rx, tx = self._net_counters(iface)
            self.net_stats[iface] = _IOSample(rx, tx, time.monotonic())

    def network_rate(self, iface: str) -> tuple[float, float]:
        """Receive and transmit rates in MiB/s since the last sample."""
        old = self.net_stats.get(iface)
        if old is None:
            self.update_network_stats()
            return 0.0, 0.0
        rx, tx = self._net_counters(iface)
        now = time.monotonic()
        elapsed = now - old.timestamp
        rx_rate = ((rx - old.first) % _COUNTER_MODULUS) / elapsed / _MEBIBYTE
        tx_rate = ((tx - old.second) % _COUNTER_MODULUS) / elapsed / _MEBIBYTE
        self.net_stats[iface] = _IOSample(rx, tx, now)
        return rx_rate, tx_rate

    def disk_name_from_mount(self, mount: str) -> str:
        """Disk (without partition number) backing *mount*, or "" if unknown."""
        out = _run(["df", mount])
        if out is None:
            return ""
        fields = _second_line_fields(out)
        return strip_device_name(fields[0]) if fields else ""

    def _disk_counters(self, disk_name: str) -> tuple[int, int] | None:
        try:
            fields = (Path(self.block_root) / disk_name / "stat").read_text().split()
        except OSError:
            return None
        if len(fields) < 10:
            return None
        return (
            _parse_uint(fields[2]) * _SECTOR_SIZE,
            _parse_uint(fields[6]) * _SECTOR_SIZE,
        )

    def update_disk_stats(self) -> None:
        for mount in self.cfg.disk.io_usage_mount_points:
            name = self.disk_name_from_mount(mount)
            if not name:
                continue
            counters = self._disk_counters(name)
            if counters is not None:
                self.disk_stats[name] = _IOSample(*counters, time.monotonic())

    def disk_rate(self, disk_name: str) -> tuple[float, float]:
        """Read and write rates in MiB/s since the last sample."""
        old = self.disk_stats.get(disk_name)
        if old is None:
            self.update_disk_stats()
            return 0.0, 0.0
        counters = self._disk_counters(disk_name)
        if counters is None:
            return 0.0, 0.0
        read, write = counters
        now = time.monotonic()
        elapsed = now - old.timestamp
        read_rate = ((read - old.first) % _COUNTER_MODULUS) / elapsed / _MEBIBYTE
        write_rate = ((write - old.second) % _COUNTER_MODULUS) / elapsed / _MEBIBYTE
        self.disk_stats[disk_name] = _IOSample(read, write, now)
        return read_rate, write_rate

    def init_temp_disks(self) -> None:
        if self.cfg.disk.disks_temperature:
            self.temp_disk_devs = disk.get_sata_disks()

    def disk_temperatures(self) -> list[str]:
        temps = []
        for device in self.temp_disk_devs:
            name = device.removeprefix("/dev/")
            try:
                temp = disk.get_temperature(device)
            except disk.DiskError:
                temp = 0.0
            temps.append(f"{name} {temp:.0f}°C" if temp > 0 else f"{name} --°C")
        return temps


_ROWS = (-2, 10, 21)
_GRID = tuple((x, y) for y in _ROWS for x in (0, 64))


@dataclass
class SystemInfoPage0:
    """Uptime, CPU temperature and IP address."""

    info: SystemInfo

    def text(self) -> list[TextItem]:
        return [
            TextItem(0, -2, self.info.uptime()),
            TextItem(0, 10, self.info.cpu_temp()),
            TextItem(0, 21, self.info.ip_address()),
        ]


@dataclass
class SystemInfoPage1:
    """Fan speeds, CPU load and memory usage."""

    info: SystemInfo

    def text(self) -> list[TextItem]:
        cpu_fan, disk_fan = self.info.fan_speeds()
        if cpu_fan == 0 and disk_fan == 0:
            fan_text = "Fan: off"
        else:
            fan_text = f"Fan: C-{cpu_fan:2.0f}%, D-{disk_fan:2.0f}%"
        return [
            TextItem(0, -2, fan_text),
            TextItem(0, 10, self.info.cpu_load()),
            TextItem(0, 21, self.info.memory_usage()),
        ]


@dataclass
class DiskUsagePage:
    """Space usage of the root file system and configured mounts."""

    info: SystemInfo

    def text(self) -> list[TextItem]:
        usage = self.info.disk_usage()
        if not usage:
            return []
        items = [TextItem(0, -2, "Usage:")]
        items += [TextItem(x, y, entry) for (x, y), entry in zip(_GRID[1:], usage)]
        return items


@dataclass
class NetworkIOPage:
    """Receive and transmit rates of one interface."""

    info: SystemInfo
    iface: str

    def text(self) -> list[TextItem]:
        rx, tx = self.info.network_rate(self.iface)
        return [
            TextItem(0, -2, f"Network ({self.iface}):"),
            TextItem(0, 10, f"Rx:{rx:10.6f} MB/s"),
            TextItem(0, 21, f"Tx:{tx:10.6f} MB/s"),
        ]


@dataclass
class DiskIOPage:
    """Read and write rates of one disk."""

    info: SystemInfo
    disk: str

    def text(self) -> list[TextItem]:
        read, write = self.info.disk_rate(self.disk)
        return [
            TextItem(0, -2, f"Disk ({self.disk}):"),
            TextItem(0, 10, f"R:{read:11.6f} MB/s"),
            TextItem(0, 21, f"W:{write:11.6f} MB/s"),
        ]


@dataclass
class DiskTempPage:
    """Temperatures of up to four disks."""

    info: SystemInfo
    _slots: tuple = field(default=_GRID[2:], repr=False)

    def text(self) -> list[TextItem]:
        temps = self.info.disk_temperatures()
        items = [TextItem(0, -2, "Disk Temps:")]
        items += [TextItem(x, y, entry) for (x, y), entry in zip(self._slots, temps)]
        return items


def generate_pages(info: SystemInfo) -> list:
    """The pages to cycle through, in display order."""
    cfg = info.cfg
    pages: list = [SystemInfoPage0(info), SystemInfoPage1(info)]
    if cfg.disk.space_usage_mount_points:
        pages.append(DiskUsagePage(info))
    pages += [NetworkIOPage(info, iface) for iface in info.network_interfaces()]
    for mount in cfg.disk.io_usage_mount_points:
        name = info.disk_name_from_mount(mount)
        if name:
            pages.append(DiskIOPage(info, name))
    if cfg.disk.disks_temperature:
        pages.append(DiskTempPage(info))
    return pages