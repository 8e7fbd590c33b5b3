"""Allow running as python -m zbxgpu."""

import sys

from zbxgpu.cli import main

sys.exit(main())
