"""
Main entry point for running the package directly:
    python -m bmh_operator
"""

from .main import main

if __name__ == "__main__":
    main()
