"""
CLI wrapper for analyze().

Usage:
    python -m bazi_engine.run --birth "YYYY-MM-DD HH:MM" --gender GENDER \
        --timezone ZONE [--longitude LON] [--latitude LAT] [--solar-hour] \
        [--day-boundary midnight|zi_hour] [--calendar lunar|ephemeris] \
        [--output PATH] [--verbose]

Either --timezone or both --latitude and --longitude are required.
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from bazi_engine.config import AnalysisConfig, DayBoundary
from bazi_engine.calendar_source import CALENDAR_SOURCES
from bazi_engine.create_chart import analyze, resolve_timezone
from bazi_engine.errors import BaziError

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Compute a BaZi (Four Pillars) chart analysis.")
    parser.add_argument("--birth", required=True, help='Local civil time, "YYYY-MM-DD HH:MM"')
    parser.add_argument("--gender", required=True, choices=["male", "female"])
    parser.add_argument("--timezone", default=None, help="IANA zone id, e.g. Europe/Moscow")
    parser.add_argument("--longitude", type=float, default=None)
    parser.add_argument("--latitude", type=float, default=None,
                        help="Only used to look up the timezone when --timezone is omitted")
    parser.add_argument("--solar-hour", dest="solar_hour", action="store_true", default=None,
                        help="Use true solar time for the hour pillar")
    parser.add_argument("--day-boundary", dest="day_boundary", default=None,
                        choices=[b.value for b in DayBoundary])
    parser.add_argument("--calendar", default=None, choices=sorted(CALENDAR_SOURCES))
    parser.add_argument("--output", default=None, help="Write the JSON here instead of stdout")
    parser.add_argument("--verbose", action="store_true")
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.timezone is None and (args.latitude is None or args.longitude is None):
        parser.error("--timezone is required unless --latitude and --longitude are given")

    config = AnalysisConfig.from_env().with_overrides(
        day_boundary=DayBoundary(args.day_boundary) if args.day_boundary else None,
        calendar=args.calendar,
    )

    try:
        timezone_id = args.timezone
        if timezone_id is None:
            timezone_id = resolve_timezone(args.latitude, args.longitude)
            logger.info("Resolved timezone %s from coordinates", timezone_id)

        result = analyze(
            birth_datetime=args.birth,
            gender=args.gender,
            timezone_id=timezone_id,
            longitude=args.longitude,
            use_true_solar_time_for_hour=args.solar_hour,
            config=config,
        )
    except BaziError as exc:
        logger.error("%s", exc)
        return 1

    output = json.dumps(result.to_dict(), indent=2, ensure_ascii=False)
    if args.output:
        path = Path(args.output)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(output + "\n", encoding="utf-8")
        logger.info("Saved chart to %s", path)
    else:
        print(output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
