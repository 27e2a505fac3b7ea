"""Entry point for the File Mover Service.

Usage:
    python -m file_mover          Watch SRC and move new files to DEST
                                  (settings read from ./.env)
"""

import sys


def main() -> None:
    """Run the service and exit with its status code."""
    from file_mover.service import run

    sys.exit(run())


if __name__ == "__main__":
    main()
