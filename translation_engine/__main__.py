"""Entry point for running translation_engine as a module.

Usage:
    python -m translation_engine <command> [options]
"""
from .cli import main

if __name__ == "__main__":
    raise SystemExit(main())
