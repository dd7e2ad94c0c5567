"""Configuration loaded from an INI file and the process environment."""

from __future__ import annotations

import configparser
import os
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

# Keys that appear before the first section header are collected here.
_ROOT_SECTION = "\x00root"
_UNUSED_DEFAULT_SECTION = "\x00default"

_TRUE_WORDS = frozenset(
    {"1", "t", "T", "true", "TRUE", "True", "YES", "yes", "Yes", "y", "ON", "on", "On"}
)
_FALSE_WORDS = frozenset(
    {"0", "f", "F", "false", "FALSE", "False", "NO", "no", "No", "n", "OFF", "off", "Off"}
)
_QUOTES = "\"'`"


class ConfigError(Exception):
    """Raised when the configuration file cannot be read or parsed."""


@dataclass
class EnvConfig:
    sda: str = ""
    scl: str = ""
    oled_reset: str = ""
    button_chip: str = ""
    button_line: str = ""
    fan_chip: str = ""
    fan_line: str = ""
    hardware_pwm: str = ""
    sata_chip: str = ""
    sata_line1: str = ""
    sata_line2: str = ""


@dataclass
class FanConfig:
    lv0: float = 0.0
    lv1: float = 0.0
    lv2: float = 0.0
    lv3: float = 0.0
    lv0c: float = 0.0
    lv1c: float = 0.0
    lv2c: float = 0.0
    lv3c: float = 0.0
    lv0f: float = 0.0
    lv1f: float = 0.0
    lv2f: float = 0.0
    lv3f: float = 0.0
    max_cpu_temp: float = 0.0
    max_disk_temp: float = 0.0
    linear: bool = False
    temp_disks: bool = False
    syslog: bool = False
    cpu_pwm_chip: str = ""
    cpu_pwm_channel: int = 0
    tb_pwm_chip: str = ""
    tb_pwm_channel: int = 0
    hardware_pwm: bool = False
    polarity: str = ""


@dataclass
class OLEDConfig:
    enabled: bool = False
    rotate: bool = False
    fahrenheit: bool = False


@dataclass
class DiskConfig:
    space_usage_mount_points: list[str] = field(default_factory=list)
    io_usage_mount_points: list[str] = field(default_factory=list)
    disks_temperature: bool = False


@dataclass
class NetworkConfig:
    interfaces: list[str] = field(default_factory=list)
    skip_page: bool = False


@dataclass
class KeyConfig:
    click: str = ""
    twice: str = ""
    press: str = ""


@dataclass
class SliderConfig:
    auto: bool = False
    time: int = 0


@dataclass
class TimeConfig:
    twice: float = 0.0
    press: float = 0.0


@dataclass
class Config:
    fan: FanConfig = field(default_factory=FanConfig)
    oled: OLEDConfig = field(default_factory=OLEDConfig)
    disk: DiskConfig = field(default_factory=DiskConfig)
    network: NetworkConfig = field(default_factory=NetworkConfig)
    key: KeyConfig = field(default_factory=KeyConfig)
    slider: SliderConfig = field(default_factory=SliderConfig)
    time: TimeConfig = field(default_factory=TimeConfig)
    env: EnvConfig = field(default_factory=EnvConfig)


def _clean_value(raw: str) -> str:
    """Strip surrounding quotes or a trailing inline comment from a raw value."""
    value = raw.strip()
    if len(value) >= 2 and value[0] in _QUOTES:
        closing = value.find(value[0], 1)
        if closing != -1:
            return value[1:closing]
    cut = min((i for i in (value.find("#"), value.find(";")) if i != -1), default=-1)
    if cut != -1:
        value = value[:cut]
    return value.strip()


def _parse_int(text: str) -> int:
    try:
        return int(text, 0)
    except ValueError:
        octal = re.fullmatch(r"([+-]?)0([0-7_]+)", text)
        if octal:
            return int(octal.group(1) + octal.group(2), 8)
        raise


def _atoi(text: str) -> int:
    return int(text) if re.fullmatch(r"[+-]?[0-9]+", text) else 0


class _Section:
    """Typed lookups with defaults over one INI section."""

    def __init__(self, values: Mapping[str, str]) -> None:
        self._values = values

    def text(self, key: str) -> str:
        return _clean_value(self._values.get(key, ""))

    def get_string(self, key: str, default: str) -> str:
        return self.text(key) or default

    def get_float(self, key: str, default: float) -> float:
        value = self.text(key)
        if not value or "_" in value:
            return default
        try:
            return float(value)
        except ValueError:
            return default

    def get_int(self, key: str, default: int) -> int:
        value = self.text(key)
        if not value:
            return default
        try:
            return _parse_int(value)
        except ValueError:
            return default

    def get_bool(self, key: str, default: bool) -> bool:
        value = self.text(key)
        if value in _TRUE_WORDS:
            return True
        if value in _FALSE_WORDS:
            return False
        return default


def _read_ini(path: str | os.PathLike[str]) -> configparser.ConfigParser:
    parser = configparser.ConfigParser(
        interpolation=None,
        strict=False,
        default_section=_UNUSED_DEFAULT_SECTION,
        comment_prefixes=("#", ";"),
        inline_comment_prefixes=None,
    )
    parser.optionxform = str  # keys are case sensitive
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"failed to load config file: {exc}") from exc
    try:
        parser.read_string(f"[{_ROOT_SECTION}]\n{text}", source=str(path))
    except configparser.Error as exc:
        raise ConfigError(f"failed to load config file: {exc}") from exc
    return parser


def _section(parser: configparser.ConfigParser, name: str) -> _Section:
    if not parser.has_section(name):
        return _Section({})
    return _Section(dict(parser.items(name, raw=True)))


def load(path: str | os.PathLike[str], environ: Mapping[str, str] | None = None) -> Config:
    """Load the configuration file at *path*, taking hardware settings from *environ*."""
    env_vars = os.environ if environ is None else environ

    def getenv(name: str) -> str:
        return env_vars.get(name, "")

    cfg = Config()
    cfg.env = EnvConfig(
        sda=getenv("SDA"),
        scl=getenv("SCL"),
        oled_reset=getenv("OLED_RESET"),
        button_chip=getenv("BUTTON_CHIP"),
        button_line=getenv("BUTTON_LINE"),
        fan_chip=getenv("FAN_CHIP"),
        fan_line=getenv("FAN_LINE"),
        hardware_pwm=getenv("HARDWARE_PWM"),
        sata_chip=getenv("SATA_CHIP"),
        sata_line1=getenv("SATA_LINE_1"),
        sata_line2=getenv("SATA_LINE_2"),
    )

    parser = _read_ini(path)

    fan_sec = _section(parser, "fan")
    fan = cfg.fan
    fan.lv0 = fan_sec.get_float("lv0", 35)
    fan.lv1 = fan_sec.get_float("lv1", 40)
    fan.lv2 = fan_sec.get_float("lv2", 45)
    fan.lv3 = fan_sec.get_float("lv3", 50)

    fan.lv0c = fan_sec.get_float("lv0c", fan.lv0)
    fan.lv1c = fan_sec.get_float("lv1c", fan.lv1)
    fan.lv2c = fan_sec.get_float("lv2c", fan.lv2)
    fan.lv3c = fan_sec.get_float("lv3c", fan.lv3)

    fan.lv0f = fan_sec.get_float("lv0f", fan.lv0)
    fan.lv1f = fan_sec.get_float("lv1f", fan.lv1)
    fan.lv2f = fan_sec.get_float("lv2f", fan.lv2)
    fan.lv3f = fan_sec.get_float("lv3f", fan.lv3)

    fan.max_cpu_temp = fan_sec.get_float("max_cpu_temp", 80.0)
    fan.max_disk_temp = fan_sec.get_float("max_disk_temp", 70.0)

    fan.linear = fan_sec.get_bool("linear", False)
    fan.temp_disks = fan_sec.get_bool("temp_disks", False)
    fan.syslog = fan_sec.get_bool("syslog", False)

    fan.hardware_pwm = getenv("HARDWARE_PWM") == "1"
    fan.cpu_pwm_chip = getenv("PWM_CHIP") or "pwmchip0"
    fan.cpu_pwm_channel = _atoi(getenv("PWM_CPU_FAN"))
    fan.tb_pwm_channel = _atoi(getenv("PWM_TB_FAN")) or fan.cpu_pwm_channel
    fan.tb_pwm_chip = fan.cpu_pwm_chip
    fan.polarity = getenv("POLARITY")

    oled_sec = _section(parser, "oled")
    cfg.oled.enabled = True
    cfg.oled.rotate = oled_sec.get_bool("rotate", False)
    cfg.oled.fahrenheit = oled_sec.get_bool("f-temp", False)

    disk_sec = _section(parser, "disk")
    mount_points = disk_sec.text("space_usage_mnt_points")
    if mount_points:
        cfg.disk.space_usage_mount_points = mount_points.split("|")
    io_points = disk_sec.text("io_usage_mnt_points")
    if io_points:
        cfg.disk.io_usage_mount_points = io_points.split("|")
    cfg.disk.disks_temperature = disk_sec.get_bool("disks_temp", False)

    net_sec = _section(parser, "network")
    interfaces = net_sec.text("interfaces")
    if interfaces:
        cfg.network.interfaces = interfaces.split(",")
    cfg.network.skip_page = net_sec.get_bool("skip_page", False)

    key_sec = _section(parser, "key")
    cfg.key.click = key_sec.get_string("click", "slider")
    cfg.key.twice = key_sec.get_string("twice", "switch")
    cfg.key.press = key_sec.get_string("press", "poweroff")

    time_sec = _section(parser, "time")
    cfg.time.twice = time_sec.get_float("twice", 0.7)
    cfg.time.press = time_sec.get_float("press", 1.8)

    slider_sec = _section(parser, "slider")
    cfg.slider.auto = slider_sec.get_bool("auto", True)
    cfg.slider.time = slider_sec.get_int("time", 5)

    return cfg