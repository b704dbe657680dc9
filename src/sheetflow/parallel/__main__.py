"""``python -m sheetflow.parallel TASK_FILE``: process-driver worker entry."""

import sys

from .worker import main

sys.exit(main())
