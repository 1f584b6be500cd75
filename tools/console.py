"""Console output helpers shared by the build tools.

Library stages never print; only the command-line entry points call into
this module.
"""

from __future__ import annotations

import sys
from datetime import datetime

LOG_FILE = None


def set_log_file(path):
    """Mirror every log() line into ``path`` (None disables)."""
    global LOG_FILE
    LOG_FILE = path


def log(msg: str, level: str = "INFO"):
    timestamp = datetime.now().strftime("%H:%M:%S")
    line = f"[{timestamp}] [{level}] {msg}"
    print(line, flush=True)
    if LOG_FILE:
        with open(LOG_FILE, "a", encoding="utf-8") as f:
            f.write(line + "\n")


def log_separator(title: str = ""):
    line = f"━━━ {title} " + "━" * max(0, 60 - len(title))
    log(line)


def abort(msg):
    """Print error and exit."""
    print(f"ERROR: {msg}", file=sys.stderr)
    sys.exit(1)


def warn(msg):
    """Print warning to stderr."""
    print(f"WARNING: {msg}", file=sys.stderr)


def info(msg):
    print(f"  {msg}")
