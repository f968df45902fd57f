#!/usr/bin/env python3
"""Entry point for darwin_tracker package."""

from .cli import main


if __name__ == "__main__":
    main()
