"""Allow ``python -m lpstream``."""

from __future__ import annotations

import sys

from lpstream.cli import main

if __name__ == "__main__":
    sys.exit(main())
