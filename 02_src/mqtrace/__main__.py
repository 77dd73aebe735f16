"""Entry point for python -m mqtrace."""

import sys

from .cli import main

sys.exit(main())
