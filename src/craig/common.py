"""Common utility functions for the project."""

import sys
from enum import Enum
from typing import (
    Any,
    TextIO,
)


class AnsiColors(Enum):
    """
    ANSI color codes for terminal output.
    """

    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[33m"
    BLUE = "\033[94m"


def colored_print(text: str, color: AnsiColors, *args: Any, **kwargs: Any) -> None:
    """
    Print text in color.

    Args:
        text: The text to print
        color: The color to use (AnsiColors enum)
        args: Additional positional arguments for print
        kwargs: Additional keyword arguments for print
    """
    print(f"{color.value}{text}\033[0m", *args, **kwargs)  # ANSI reset at the end


class ColoredChunkPrinter:
    """
    Text chunk listener that prints a streamed answer in color as it arrives.

    Call :meth:`finish` after the turn to end the line; it reports whether anything was printed so
    callers can fall back to printing the full answer for backends that do not stream.
    """

    def __init__(self, color: AnsiColors, stream: TextIO | None = None):
        self.color = color
        self.stream = stream or sys.stdout
        self.printed = False

    def on_text_chunk(self, chunk: str) -> None:
        self.stream.write(f"{self.color.value}{chunk}\033[0m")
        self.stream.flush()
        self.printed = True

    def finish(self) -> bool:
        printed = self.printed
        if printed:
            self.stream.write("\n")
            self.stream.flush()
        self.printed = False
        return printed
