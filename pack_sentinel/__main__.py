"""Allow ``python -m pack_sentinel``."""

import sys

from pack_sentinel.cli import main

sys.exit(main())
