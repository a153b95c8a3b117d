# instruction_processor.py
# Turns raw maneuver steps into a clean, ordered instruction list.

import html
import re
from typing import Iterable, List, Optional

from .models import Instruction, RawStep
from .nav_config import NavConfig

_TAG_RE = re.compile(r"<[^>]*>")
_SPACE_RE = re.compile(r"\s+")


def strip_markup(text: str) -> str:
    """Remove HTML tags and entities, collapse whitespace."""
    text = _TAG_RE.sub(" ", text or "")
    text = html.unescape(text)
    return _SPACE_RE.sub(" ", text).strip()


def describe_maneuver(maneuver_type: str, modifier: Optional[str], road_name: Optional[str]) -> str:
    """
    Human-readable instruction for services that send no instruction text.

    Args:
        maneuver_type: e.g. "depart", "turn", "arrive".
        modifier:      e.g. "left", "slight right"; may be None.
        road_name:     Name of the road the maneuver leads onto; may be None.

    Returns:
        Instruction sentence.
    """
    direction = modifier or "straight"
    onto = f" onto {road_name}" if road_name else ""

    if maneuver_type == "depart":
        return f"Head out{onto}" if onto else "Start navigation"
    if maneuver_type == "arrive":
        return "You have reached your destination"
    if maneuver_type in ("roundabout", "rotary"):
        return f"Enter the roundabout and exit{onto}"
    if maneuver_type in ("merge", "on ramp", "off ramp", "fork"):
        return f"Take the {maneuver_type} {direction}{onto}"
    if direction == "uturn":
        return f"Make a U-turn{onto}"
    if direction == "straight":
        return f"Continue straight{onto}"
    return f"Turn {direction}{onto}"


def icon_name(instruction: Instruction) -> str:
    """Icon key for the turn-icons feature, e.g. 'turn-slight-left', 'arrive'."""
    if instruction.maneuver_type in ("depart", "arrive"):
        return instruction.maneuver_type
    if instruction.modifier:
        return f"turn-{instruction.modifier.replace(' ', '-')}"
    return "continue"


class InstructionProcessor:
    """
    Filters and cleans the steps of a Route.

    Args:
        config: NavConfig instance (minimum step distance).
    """

    def __init__(self, config: Optional[NavConfig] = None) -> None:
        self.config = config or NavConfig()

    def process(self, steps: Iterable[RawStep]) -> List[Instruction]:
        """
        Derive the instruction list for a route.

        Steps shorter than config.min_step_distance_m are dropped; order,
        maneuver type and modifier are kept as the service sent them.

        Args:
            steps: Route.steps.

        Returns:
            Ordered list of Instruction.
        """
        instructions: List[Instruction] = []
        for step in steps:
            if step.distance_m < self.config.min_step_distance_m:
                continue
            text = strip_markup(step.instruction) or describe_maneuver(
                step.maneuver_type, step.modifier, step.road_name
            )
            instructions.append(Instruction(
                text=text,
                distance_m=step.distance_m,
                duration_s=step.duration_s,
                maneuver_type=step.maneuver_type,
                modifier=step.modifier,
            ))
        return instructions
