"""
Main entry point for the Starfront server.

Usage:
    python -m server.main

Or:
    starfront-server
"""

from server.network.server import main


if __name__ == "__main__":
    main()
