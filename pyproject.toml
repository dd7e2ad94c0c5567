[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "rockpiquad"
version = "0.1.0"
description = "Fan, button and OLED display service for the ROCK Pi Quad SATA HAT"
requires-python = ">=3.10"
dependencies = [
    "pillow",
]
keywords = ["rockpi", "sata", "hat", "fan", "pwm", "oled", "ssd1306", "gpio"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: No Input/Output (Daemon)",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Hardware",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
rockpiquad = "rockpiquad.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["rockpiquad"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
