"""
Utility functions for Form Automation
"""
import logging
from pathlib import Path
from typing import Union


def setup_logging(level: Union[int, str] = logging.INFO) -> logging.Logger:
    """Setup logging configuration"""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    return logging.getLogger("form_automation")


def ensure_directories(*dirs: str) -> None:
    """Ensure required directories exist"""
    for d in dirs or ('uploads',):
        Path(d).mkdir(parents=True, exist_ok=True)
