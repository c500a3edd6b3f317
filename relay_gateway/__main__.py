"""
Entry point for ``python -m relay_gateway``.

Without a command the relay serves on the configured host and port until
SIGINT / SIGTERM, and exits with status 1 if the port cannot be bound.
"""

from relay_gateway.cli import main

if __name__ == "__main__":
    main()
