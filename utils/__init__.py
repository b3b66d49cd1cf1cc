# utils/__init__.py

from utils.logger import logger, get_logger
from utils.config import load_cfg, get_in

__all__ = ["logger", "get_logger", "load_cfg", "get_in"]
