"""Allow running ephemstore as ``python -m ephemstore``."""

import sys

from ephemstore.cli import main

sys.exit(main())
