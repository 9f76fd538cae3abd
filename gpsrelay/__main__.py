"""Allow ``python -m gpsrelay``."""

import sys

from .daemon import main

sys.exit(main())
