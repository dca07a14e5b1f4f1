from __future__ import annotations

import argparse
import logging

from cimis_irrigation.config import load_config, setup_logging
from cimis_irrigation.domain.exceptions import IrrigationError
from cimis_irrigation.services.irrigation_run import IrrigationRunService
from cimis_irrigation.utils.time import parse_run_time

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    """Run one irrigation cycle; meant to be triggered daily by cron or a systemd timer."""
    parser = argparse.ArgumentParser(prog="cimis-irrigation-run")
    parser.add_argument(
        "--ledger",
        help="Path of the irrigation ledger JSON file (default: IRRIGATION_LEDGER_PATH)",
    )
    parser.add_argument(
        "--run-date",
        help="Run as if it were this date, YYYY-MM-DD or ISO date-time (default: now)",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)

    try:
        config = load_config(debug=args.debug)
    except IrrigationError as e:
        setup_logging(debug=args.debug)
        logger.error("Invalid configuration: %s", e)
        return 1

    if args.ledger:
        config.ledger_path = args.ledger

    run_time = None
    if args.run_date:
        try:
            run_time = parse_run_time(args.run_date)
        except ValueError:
            logger.error("Invalid --run-date %r", args.run_date)
            return 2

    try:
        report = IrrigationRunService(config).run(run_time)
    except IrrigationError as e:
        logger.error("Irrigation run aborted: %s", e)
        return 1

    logger.debug("Run report: %s", report.to_dict())
    if report.timed_out_zones:
        logger.warning("No completion received from: %s", ", ".join(report.timed_out_zones))
    if not report.ledger_persisted:
        logger.error("Garden was watered but the irrigation ledger was not saved")
        return 1

    logger.info("Irrigation run complete")
    return 0


if __name__ == "__main__":
    import sys

    raise SystemExit(main(sys.argv[1:]))
