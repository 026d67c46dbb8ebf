from __future__ import annotations

import sys
import threading

from smartwake.bootstrap import build_app_system
from smartwake.logging_setup import setup_logging

TAG = __name__
logger = setup_logging()


def main() -> None:
    """
    Start the smart alarm runtime headless and run until interrupted.

    Notes
    -----
    - Loads configuration from `config.yaml` by default.
    - Optional CLI usage:
        python -m smartwake.dev.run_app --config path/to/config.yaml
    - Due alarms are logged by the lifecycle thread.
    """
    config_path = None
    if "--config" in sys.argv:
        i = sys.argv.index("--config")
        if i + 1 < len(sys.argv):
            config_path = sys.argv[i + 1]

    wiring = build_app_system(config_path=config_path)

    clock_24h = True
    for alarm in wiring.store.sorted_alarms():
        state = "on" if alarm.is_enabled else "off"
        smart = " smart" if alarm.smart_enabled else ""
        logger.bind(tag=TAG).info(
            f"{alarm.display_time(clock_24h)} {alarm.name!r} [{state}{smart}]"
        )
    logger.bind(tag=TAG).info(
        f"{len(wiring.store)} alarm(s) loaded; calculation service at "
        f"{wiring.config.calculation_service.url}"
    )

    wiring.runtime.start()

    stop = threading.Event()
    try:
        while not stop.wait(timeout=1.0):
            pass
    except KeyboardInterrupt:
        logger.bind(tag=TAG).info("shutting down")
    finally:
        wiring.runtime.stop()


if __name__ == "__main__":
    main()
