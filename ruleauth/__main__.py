"""Allow ``python -m ruleauth``."""

import sys

from .cli import main


sys.exit(main())
