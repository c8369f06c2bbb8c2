"""Allow ``python -m bookhub``."""

import sys

from bookhub.cli import main

sys.exit(main())
