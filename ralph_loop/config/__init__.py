from ralph_loop.config.config import LoopConfig
from ralph_loop.config.loader import load_config

__all__ = ["LoopConfig", "load_config"]
