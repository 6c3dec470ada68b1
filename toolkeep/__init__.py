"""toolkeep - Lifecycle manager for command-line developer tools.

Detects installed CLI tools, probes their versions, and installs, updates or
removes them through the package manager appropriate for the current platform.
"""

__version__ = "0.3.0"
__author__ = "toolkeep contributors"
__license__ = "MIT"

__all__ = ["__version__", "__author__", "__license__"]
