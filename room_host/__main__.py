import argparse
import asyncio
import logging

from holdem.models import TableConfig
from .server import TableServer


def main() -> None:
    parser = argparse.ArgumentParser(description="Texas Hold'em room server")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=3001)
    parser.add_argument("--starting-chips", type=int, default=1_000)
    parser.add_argument("--small-blind", type=int, default=10)
    parser.add_argument("--big-blind", type=int, default=20)
    parser.add_argument(
        "--turn-time",
        type=int,
        default=30,
        help="Seconds per turn before an automatic fold (0 disables the timer)",
    )
    parser.add_argument("--all-in-delay-ms", type=int, default=2_000)
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args()

    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.INFO))

    config = TableConfig(
        starting_chips=args.starting_chips,
        small_blind=args.small_blind,
        big_blind=args.big_blind,
        turn_time_seconds=args.turn_time,
        all_in_reveal_delay_ms=args.all_in_delay_ms,
    )
    server = TableServer(config)
    asyncio.run(server.start(host=args.host, port=args.port))


if __name__ == "__main__":
    main()
