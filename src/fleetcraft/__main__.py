"""Allow ``python -m fleetcraft``."""
import sys

from .cli import main

sys.exit(main())
