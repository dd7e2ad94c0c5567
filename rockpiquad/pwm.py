"""Fan PWM control through the Linux sysfs PWM interface."""

from __future__ import annotations

import errno
import os
from pathlib import Path

DEFAULT_PERIOD = 40000
SYSFS_PWM_ROOT = "/sys/class/pwm"


class PWMError(Exception):
    """Raised when a PWM channel cannot be exported or written."""


class PWM:
    """One sysfs PWM channel with a fixed period."""

    def __init__(
        self,
        chip: str,
        channel: int,
        sysfs_root: str | os.PathLike[str] = SYSFS_PWM_ROOT,
    ) -> None:
        self.chip = chip
        self.channel = channel
        self.period = DEFAULT_PERIOD
        self.inversed = False
        chip_dir = Path(sysfs_root) / chip
        self.base_path = chip_dir / f"pwm{channel}"

        if not self.base_path.exists():
            try:
                (chip_dir / "export").write_text(str(channel))
            except OSError as exc:
                if exc.errno != errno.EBUSY:
                    raise PWMError(f"failed to export PWM: {exc}") from exc

        self.write_attribute("period", str(self.period))
        self.write_attribute("enable", "1")

    def duty_value(self, duty_cycle: float) -> int:
        """Return the duty-cycle value in period units, honouring polarity."""
        if self.inversed:
            duty_cycle = 1.0 - duty_cycle
        return int(self.period * duty_cycle)

    def set_inversed(self, inversed: bool) -> None:
        """Set the output polarity; a write failure is ignored."""
        self.inversed = inversed
        try:
            self.write_attribute("polarity", "inversed" if inversed else "normal")
        except PWMError:
            pass

    def set_duty_cycle(self, duty_cycle: float) -> None:
        """Set the duty cycle as a fraction between 0 and 1."""
        self.write_attribute("duty_cycle", str(self.duty_value(duty_cycle)))

    def write_attribute(self, name: str, value: str) -> None:
        """Write *value* to the channel attribute file *name*."""
        path = self.base_path / name
        try:
            path.write_text(value)
        except OSError as exc:
            raise PWMError(f"failed to write {path}: {exc}") from exc

    def close(self) -> None:
        """Stop the output; errors are ignored."""
        try:
            self.set_duty_cycle(0)
        except PWMError:
            pass

    def __enter__(self) -> PWM:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()