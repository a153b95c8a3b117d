# nav_logger.py
# Handles all file I/O for the tracking engine.
# Saves the active route and session events as JSON.

import json
import logging
import os
from datetime import datetime
from typing import List, Optional

from .models import Instruction, Route, SessionSnapshot
from .nav_config import NavConfig

# Standard Python logger, configure at app entry point if needed
logger = logging.getLogger(__name__)


class NavLogger:
    """
    Writes the active route and a per-update event trail to JSON files.

    Files are diagnostics for the current session only; nothing is read back.

    Args:
        config: NavConfig instance for file paths and directories.
    """

    def __init__(self, config: Optional[NavConfig] = None) -> None:
        self.config = config or NavConfig()
        os.makedirs(self.config.log_dir or ".", exist_ok=True)

    # ------------------------------------------------------------------
    # Route snapshot
    # ------------------------------------------------------------------

    def save_route(self, route: Route, instructions: List[Instruction]) -> bool:
        """
        Serialize the active route and its instructions.

        Args:
            route:        Route that just became active.
            instructions: Instructions derived from it.

        Returns:
            True on success, False on failure.
        """
        filepath = self.config.route_filepath
        try:
            data = {
                "saved_at": datetime.now().isoformat(),
                "route": route.to_dict(),
                "instruction_count": len(instructions),
                "instructions": [i.to_dict() for i in instructions],
            }
            with open(filepath, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
            logger.info(f"Route saved to {filepath} ({len(instructions)} instructions).")
            return True
        except OSError as e:
            logger.error(f"Failed to save route to {filepath}: {e}")
            return False

    # ------------------------------------------------------------------
    # Session event logging
    # ------------------------------------------------------------------

    def log_event(self, event: str, snapshot: SessionSnapshot) -> None:
        """
        Append a single session event to the JSONL log.

        Args:
            event:    Short event name ("fix", "route", "tick", "stop", ...).
            snapshot: Session state at the time of the event.
        """
        entry = {"timestamp": datetime.now().isoformat(), "event": event}
        entry.update(snapshot.to_dict())
        entry.pop("instructions", None)
        try:
            with open(self.config.events_filepath, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry, ensure_ascii=False) + "\n")
        except OSError as e:
            logger.error(f"Failed to write event log: {e}")
