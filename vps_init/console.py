"""
Console output and logging helpers.

Nord-themed Rich console, pyfiglet banners, and the logging setup shared by
every step: a RichHandler on the terminal and a plain FileHandler that keeps the
full run log.
"""

import logging
import os
from pathlib import Path
from typing import Dict, List, Optional, Union

import pyfiglet
from rich.align import Align
from rich.box import ROUNDED
from rich.console import Console, Group
from rich.logging import RichHandler
from rich.panel import Panel
from rich.style import Style
from rich.table import Table
from rich.text import Text
from rich.theme import Theme

from .config import AppConfig


# ----------------------------------------------------------------
# Nord-Themed Colors and Rich Console
# ----------------------------------------------------------------
class NordColors:
    """Nord color palette for consistent theming throughout the application."""

    # Polar Night (dark background)
    POLAR_NIGHT_1: str = "#2E3440"
    POLAR_NIGHT_4: str = "#4C566A"

    # Snow Storm (light text)
    SNOW_STORM_1: str = "#D8DEE9"
    SNOW_STORM_2: str = "#E5E9F0"

    # Frost (blue accents)
    FROST_1: str = "#8FBCBB"
    FROST_2: str = "#88C0D0"
    FROST_3: str = "#81A1C1"
    FROST_4: str = "#5E81AC"

    # Aurora (other accents)
    RED: str = "#BF616A"
    ORANGE: str = "#D08770"
    YELLOW: str = "#EBCB8B"
    GREEN: str = "#A3BE8C"

    @classmethod
    def frost_gradient(cls) -> List[str]:
        return [cls.FROST_1, cls.FROST_2, cls.FROST_3, cls.FROST_4]


console = Console(
    theme=Theme(
        {
            "info": f"bold {NordColors.FROST_2}",
            "warning": f"bold {NordColors.YELLOW}",
            "error": f"bold {NordColors.RED}",
            "success": f"bold {NordColors.GREEN}",
            "section": f"{NordColors.FROST_3} bold",
            "step": f"{NordColors.FROST_2}",
            "path": f"italic {NordColors.FROST_1}",
        }
    )
)

logger = logging.getLogger("vps_init")


# ----------------------------------------------------------------
# Logging Setup
# ----------------------------------------------------------------
def setup_logging(
    log_file: Union[str, Path], debug: bool = False
) -> logging.Logger:
    """
    Configure logging with a Rich console handler and file output.

    Records already echoed by the print_* helpers are kept out of the console
    handler; the file receives everything.

    Args:
        log_file: Path of the run log
        debug: Show debug records on the console

    Returns:
        The package logger
    """
    log_path = Path(log_file)
    os.makedirs(log_path.parent, exist_ok=True)

    log_format = "%(asctime)s | %(levelname)s | %(message)s"
    date_format = "%Y-%m-%d %H:%M:%S"

    rich_handler = RichHandler(rich_tracebacks=True, markup=False, console=console)
    rich_handler.setLevel(logging.DEBUG if debug else logging.INFO)
    rich_handler.addFilter(lambda record: not getattr(record, "echoed", False))

    file_handler = logging.FileHandler(log_path)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(log_format, datefmt=date_format))

    logger.handlers.clear()
    logger.setLevel(logging.DEBUG)
    logger.addHandler(rich_handler)
    logger.addHandler(file_handler)
    logger.propagate = False

    logger.info("Logging initialized: %s", log_path)
    return logger


# ----------------------------------------------------------------
# Banner and Message Helpers
# ----------------------------------------------------------------
def create_header() -> Panel:
    """
    Create an ASCII art header using Pyfiglet with a Nord-themed gradient.

    Returns:
        Panel: A Rich Panel containing the styled header.
    """
    fonts = ["slant", "small", "standard"]
    ascii_art = ""
    width = min(console.width - 10, 80)

    for font in fonts:
        try:
            ascii_art = pyfiglet.Figlet(font=font, width=width).renderText(
                AppConfig.APP_NAME
            )
            if ascii_art.strip():
                break
        except pyfiglet.FigletError as e:
            logger.debug(f"Font {font} failed: {e}")

    if not ascii_art.strip():
        ascii_art = f"=== {AppConfig.APP_NAME} ===\n"

    lines = [line for line in ascii_art.splitlines() if line.strip()]
    colors = NordColors.frost_gradient()

    styled_text = ""
    for i, line in enumerate(lines):
        escaped_line = line.replace("[", "\\[").replace("]", "\\]")
        styled_text += f"[bold {colors[i % len(colors)]}]{escaped_line}[/]\n"

    border = f"[{NordColors.FROST_3}]{'━' * min(60, width - 5)}[/]"

    return Panel(
        Text.from_markup(f"{border}\n{styled_text}{border}"),
        border_style=Style(color=NordColors.FROST_1),
        padding=(1, 2),
        box=ROUNDED,
        title=f"[bold {NordColors.SNOW_STORM_2}]v{AppConfig.VERSION}[/]",
        title_align="right",
        subtitle=f"[bold {NordColors.SNOW_STORM_1}]{AppConfig.APP_SUBTITLE}[/]",
        subtitle_align="center",
    )


def print_message(
    text: str, style: str = NordColors.FROST_2, prefix: str = "•"
) -> None:
    """Print a styled message to the console."""
    console.print(f"[{style}]{prefix} {text}[/{style}]", highlight=False)


_ECHOED = {"echoed": True}


def print_step(text: str) -> None:
    print_message(text, NordColors.FROST_3, "➜")
    logger.info(text, extra=_ECHOED)


def print_success(text: str) -> None:
    print_message(text, NordColors.GREEN, "✓")
    logger.info(f"SUCCESS: {text}", extra=_ECHOED)


def print_warning(text: str) -> None:
    print_message(text, NordColors.YELLOW, "⚠")
    logger.warning(text, extra=_ECHOED)


def print_error(text: str) -> None:
    print_message(text, NordColors.RED, "✗")
    logger.error(text, extra=_ECHOED)


def print_section(title: str) -> None:
    """
    Print a section header using the Pyfiglet small font.

    Args:
        title: The section title to display
    """
    console.print()
    try:
        console.print(
            pyfiglet.figlet_format(title, font="small"),
            style=f"bold {NordColors.FROST_2}",
        )
    except pyfiglet.FigletError:
        console.print(f"[bold {NordColors.FROST_1}]== {title.upper()} ==[/]")

    console.print(f"[{NordColors.FROST_3}]{'─' * 60}[/]")
    logger.info(f"--- {title} ---", extra=_ECHOED)


def status_report(status: Dict[str, Dict[str, str]], title: str) -> None:
    """Display a table reporting the status of all setup steps."""
    icons = {
        "success": "✓",
        "skipped": "–",
        "degraded": "⚠",
        "failed": "✗",
        "pending": "?",
    }
    styles = {
        "success": "success",
        "skipped": "step",
        "degraded": "warning",
        "failed": "error",
        "pending": "step",
    }

    table = Table(
        show_header=True,
        header_style=f"bold {NordColors.FROST_1}",
        border_style=NordColors.FROST_3,
        box=ROUNDED,
        title=f"[bold {NordColors.FROST_2}]{title}[/]",
        title_justify="center",
        expand=True,
    )
    table.add_column("Step", style=f"bold {NordColors.FROST_2}")
    table.add_column("Status", justify="center")
    table.add_column("Message", style=NordColors.SNOW_STORM_1, ratio=3)

    counts: Dict[str, int] = {}
    for step, data in status.items():
        st = data["status"]
        counts[st] = counts.get(st, 0) + 1
        table.add_row(
            step.replace("_", " ").title(),
            f"[{styles.get(st, 'step')}]{icons.get(st, '?')} {st.upper()}[/]",
            data["message"],
        )

    summary = Text()
    summary.append("Status Summary: ", style=f"bold {NordColors.FROST_3}")
    summary.append(f"{counts.get('success', 0)} Succeeded", style=f"bold {NordColors.GREEN}")
    summary.append(" | ")
    summary.append(f"{counts.get('degraded', 0)} Degraded", style=f"bold {NordColors.YELLOW}")
    summary.append(" | ")
    summary.append(f"{counts.get('failed', 0)} Failed", style=f"bold {NordColors.RED}")
    summary.append(" | ")
    summary.append(
        f"{counts.get('skipped', 0)} Skipped", style=f"bold {NordColors.POLAR_NIGHT_4}"
    )

    console.print(
        Panel(
            Group(table, Align.center(summary)),
            border_style=Style(color=NordColors.FROST_4),
            padding=(0, 1),
            box=ROUNDED,
        )
    )


def summary_table(rows: List[tuple], title: Optional[str] = None) -> None:
    """Print a two-column key/value table."""
    table = Table(
        show_header=False,
        box=ROUNDED,
        border_style=NordColors.FROST_3,
        title=f"[bold {NordColors.FROST_2}]{title}[/]" if title else None,
    )
    table.add_column("Item", style=f"bold {NordColors.FROST_2}")
    table.add_column("Value", style=NordColors.SNOW_STORM_1)
    for key, value in rows:
        table.add_row(key, str(value))
    console.print(table)
