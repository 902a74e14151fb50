"""
Entry point for running the healer as a module.

Usage:
    python -m cluster_healer
    python -m cluster_healer --no-auto-fix
"""

from .main import main

if __name__ == "__main__":
    main()
