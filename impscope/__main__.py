"""
ImpScope Module Entry Point
============================

Allows running the ImpScope CLI via: python -m impscope
"""

from impscope.cli import main

if __name__ == "__main__":
    main()
