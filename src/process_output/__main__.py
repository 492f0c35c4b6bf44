"""process-output entry point.

Supports: python -m process_output
"""

import sys

from .cli import main

if __name__ == "__main__":
    sys.exit(main())
