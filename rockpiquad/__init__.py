"""Fan control, button handling and OLED status pages for the ROCK Pi Quad SATA HAT."""

__version__ = "0.1.0"