"""
Diagnostics for SceneCast: Rich console logging and configuration display.

Usage:
    from scenecast.diagnostics import enable_diagnostics, print_active_configuration

    enable_diagnostics("DEBUG", log_file="scenecast.log")
    print_active_configuration()
"""

import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .config import CONFIG_CATEGORIES, Config, config

# Rich console for pretty output
console = Console(stderr=True)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
SECRET_SUFFIXES = ("_KEY", "_TOKEN", "_SECRET", "_PASSWORD")


def enable_diagnostics(
    level: str = "INFO",
    log_file: Optional[str] = None,
    use_rich: bool = True,
):
    """Configure root logging (Rich console handler plus optional file)."""
    log_level = getattr(logging, str(level).upper(), logging.INFO)

    if use_rich:
        handler = RichHandler(console=console, show_time=True, show_path=False)
        handler.setFormatter(logging.Formatter("%(message)s"))
    else:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for existing in list(root_logger.handlers):
        if getattr(existing, "_scenecast", False):
            root_logger.removeHandler(existing)

    handler._scenecast = True
    root_logger.addHandler(handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        file_handler._scenecast = True
        root_logger.addHandler(file_handler)

    logging.getLogger("scenecast").setLevel(log_level)
    # Third-party HTTP clients are noisy at DEBUG
    for name in ("httpx", "httpcore", "openai", "urllib3"):
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    logging.getLogger(__name__).debug(f"Diagnostics enabled (level: {level})")


def mask_value(key: str, value: str) -> str:
    """Hide secrets, keeping a short suffix for identification."""
    if not value:
        return "[dim]not set[/dim]"
    if key.endswith(SECRET_SUFFIXES):
        return "****" + value[-4:] if len(value) > 8 else "****"
    return value


def print_active_configuration(cfg: Optional[Config] = None):
    """Render the effective configuration as a Rich table."""
    cfg = cfg or config

    table = Table(title="SceneCast configuration", show_lines=False)
    table.add_column("Setting", style="cyan")
    table.add_column("Key", style="dim")
    table.add_column("Value", style="green")
    table.add_column("Description")

    for category, entries in CONFIG_CATEGORIES.items():
        table.add_row(f"[bold]{category}[/bold]", "", "", "")
        for key, label, desc in entries:
            table.add_row(f"  {label}", key, mask_value(key, cfg.get(key)), desc)

    Console().print(table)
    if cfg.env_file:
        Console().print(f"[dim]Loaded from {cfg.env_file}[/dim]")


__all__ = ["console", "enable_diagnostics", "mask_value", "print_active_configuration"]
