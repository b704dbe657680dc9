from .display import format_bytes, truncate_path_to_fit
from .memory import GcTicker

__all__ = ["format_bytes", "truncate_path_to_fit", "GcTicker"]
