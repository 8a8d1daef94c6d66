"""Main entry point for running agentpr as a module.

Usage:
    python -m agentpr --help
    python -m agentpr run --repo owner/name --task "Add a health check"
    python -m agentpr serve
"""

from __future__ import annotations

from .cli import app

if __name__ == "__main__":
    app()
