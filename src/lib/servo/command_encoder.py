"""
Command Encoder
Formats and parses servo steps for the serial line protocol and the
sequence text files.

Line protocol (device-bound):
  <servo>,<angle>,<speed>\\n

Text file format:
  one step per line, blank lines ignored on import.
  Export separates groups with a blank line.
"""

import math
import re
from dataclasses import dataclass
from typing import Optional, List, Iterator, Tuple

from .exceptions import MalformedLineError

FIELD_SEPARATOR = ","
GROUP_SEPARATOR = "\n\n"

# Plain ASCII decimal: no underscores, no non-ASCII digits
_NUMBER_PATTERN = re.compile(r"[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?", re.ASCII)


def to_number(value):
    """
    Coerce a field to int (or finite float). Returns None when the value
    is missing or not numeric.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        return int(value) if value.is_integer() else value
    if isinstance(value, str):
        text = value.strip()
        if not _NUMBER_PATTERN.fullmatch(text):
            return None
        try:
            return int(text)
        except ValueError:
            pass
        try:
            number = float(text)
        except ValueError:
            return None
        return to_number(number)
    return None


@dataclass(frozen=True)
class Step:
    """One servo command. Fields are None when the source was not numeric."""
    servo: Optional[float]
    angle: Optional[float]
    speed: Optional[float]

    @property
    def valid(self) -> bool:
        return None not in (self.servo, self.angle, self.speed)

    @classmethod
    def from_mapping(cls, data) -> 'Step':
        """Build a Step from a client-submitted dict, keeping bad fields as None."""
        if not isinstance(data, dict):
            return cls(None, None, None)
        return cls(
            servo=to_number(data.get("servo")),
            angle=to_number(data.get("angle")),
            speed=to_number(data.get("speed")),
        )

    def to_dict(self) -> dict:
        return {"servo": self.servo, "angle": self.angle, "speed": self.speed}


def _format_step(step: Step) -> str:
    if not step.valid:
        raise MalformedLineError(f"Step has non-numeric fields: {step}")
    return f"{step.servo}{FIELD_SEPARATOR}{step.angle}{FIELD_SEPARATOR}{step.speed}"


def encode_step(step: Step) -> str:
    """
    Encode a step as a device command line.

    Raises:
        MalformedLineError: if any field is missing or non-numeric.
    """
    return _format_step(step) + "\n"


def decode_line(line: str) -> Optional[Step]:
    """
    Decode "servo,angle,speed" into a Step.

    Only the first three fields are read; extra fields are ignored.
    Returns None when fewer than three fields are present or any of them
    is not numeric.
    Blank lines must be filtered by the caller.
    """
    fields = line.strip().split(FIELD_SEPARATOR)
    if len(fields) < 3:
        return None

    servo, angle, speed = (to_number(f) for f in fields[:3])
    step = Step(servo, angle, speed)
    return step if step.valid else None


def encode_sequence_to_text(groups) -> str:
    """
    Encode groups of steps as text: steps of a group one per line,
    groups separated by a blank line. Invalid steps are left out.
    """
    blocks = []
    for group in groups:
        lines = [_format_step(step) for step in group if step.valid]
        blocks.append("\n".join(lines))
    return GROUP_SEPARATOR.join(blocks)


def non_blank_lines(text: str) -> List[str]:
    return [line for line in text.splitlines() if line.strip()]


def iter_decoded_lines(text: str) -> Iterator[Tuple[str, Optional[Step]]]:
    """
    Walk an imported text document line by line.

    Blank lines are dropped. Yields (line, step) in file order, with step
    None for a malformed line so the caller can still account for it.
    """
    for line in non_blank_lines(text):
        yield line, decode_line(line)
