"""Run sidring: python -m sidring"""

import sys

from sidring.cli import main

sys.exit(main())
