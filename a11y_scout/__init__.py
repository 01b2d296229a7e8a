# a11y_scout/__init__.py
"""
A11yScout package initializer.
Defines package version and exposes the CLI.
"""
__version__ = "0.1.0"

from a11y_scout.cli import cli  # noqa: E402

__all__ = ["__version__", "cli"]
