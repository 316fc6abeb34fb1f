"""Run the housekeeping jobs (key expiry, refresh-token cleanup) as a standalone process.

Use together with RUN_MAINTENANCE_JOBS=false on the API processes so only one
process sweeps the database.
"""

import logging
import time

from gatekeeper.config import settings
from gatekeeper.services.maintenance_worker import maintenance_worker


def main() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    maintenance_worker.start()
    try:
        while maintenance_worker.is_running():
            time.sleep(1)
    except KeyboardInterrupt:
        maintenance_worker.stop()


if __name__ == "__main__":
    main()
