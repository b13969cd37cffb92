"""Entry point for ``python -m photo_faces``."""

import sys

from .cli import main

if __name__ == "__main__":
    sys.exit(main())
