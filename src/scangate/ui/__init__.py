"""
scangate — user interface layer

File: src/scangate/ui/__init__.py

Purpose
- argparse command router and the CLI renderer.
"""

from scangate.ui.cli import CLIError, build_parser, run_cli
from scangate.ui.render import CLIRenderer, create_renderer

__all__ = ["CLIError", "CLIRenderer", "build_parser", "create_renderer", "run_cli"]
