# formatting.py
# Human-readable distance / duration strings for logs and the presentation layer.

from .models import Eta


def format_distance(meters: float) -> str:
    """'850 m' below one kilometre, '1.2 km' above."""
    if meters < 1000:
        return f"{int(round(meters))} m"
    return f"{meters / 1000:.1f} km"


def format_duration(seconds: float) -> str:
    """'45 s', '12 min' or '1 h 05 min'."""
    seconds = max(0.0, seconds)
    if seconds < 60:
        return f"{int(round(seconds))} s"
    total_min = int(round(seconds / 60))
    hours, minutes = divmod(total_min, 60)
    if hours:
        return f"{hours} h {minutes:02d} min"
    return f"{minutes} min"


def format_eta(eta: Eta) -> str:
    label = "~" if eta.is_estimate else ""
    return f"{label}{format_duration(eta.seconds)} (arrive {eta.arrival_at:%H:%M})"
