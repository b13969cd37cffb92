#!/usr/bin/env python3
"""Main entry point for photo face recognition.

Simplified entry point that delegates to the CLI module.

Usage:
    python main.py recognize photo.jpg
    python main.py batch ./photos --recursive
    python main.py people list
    python main.py serve

Or use the installed console script:
    photo-faces recognize photo.jpg
"""

import sys
from pathlib import Path


def main():
    """Main entry point - delegates to CLI."""
    if len(sys.argv) == 1:
        print(__doc__)
        print("Run 'python main.py --help' for more options")
        sys.exit(0)

    # Allow running from a source checkout without installing
    sys.path.insert(0, str(Path(__file__).parent / "src"))
    from photo_faces.cli import main as cli_main
    sys.exit(cli_main())


if __name__ == "__main__":
    main()
