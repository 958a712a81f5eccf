"""
Entry point for running mongospectre as a module.

Usage: python -m mongospectre [args]
"""

from mongospectre.cli import main

if __name__ == "__main__":
    main()
