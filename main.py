from __future__ import annotations

import logging
import sys

from pos_offline.entrypoints.main import main

if __name__ == "__main__":
    try:
        raise SystemExit(main())
    except Exception:  # noqa: BLE001
        logging.getLogger(__name__).exception("Unhandled error in entrypoint")
        print("An internal error occurred. Check the log files for details.", file=sys.stderr)
        raise
