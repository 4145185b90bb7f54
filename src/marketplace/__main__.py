"""Allow ``python -m marketplace``."""

import sys

from .cli import main

sys.exit(main())
