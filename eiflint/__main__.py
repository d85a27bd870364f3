"""Allow ``python -m eiflint``."""

import sys

from eiflint.main import main

sys.exit(main())
