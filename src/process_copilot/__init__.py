"""Process copilot: grounded answers and guided execution over process documents."""

from .config import CopilotConfig
from .errors import CopilotError

__all__ = ["CopilotConfig", "CopilotError"]
