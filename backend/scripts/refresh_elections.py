import argparse
import asyncio
import json
import sys

from loguru import logger

from app.core.config import get_settings
from app.services.container import build_container


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run one election refresh pass and print the result as JSON")
    parser.add_argument("--state", default=None, help="Only print ratings for this state")
    parser.add_argument(
        "--no-slugs",
        action="store_true",
        help="Skip the direct Polymarket slug lookups and rely on topic probes only",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Override the soft timeout (seconds) for the refresh pass",
    )
    parser.add_argument("--indent", type=int, default=2, help="JSON indentation")
    return parser.parse_args()


async def _run(args: argparse.Namespace) -> str:
    overrides: dict[str, object] = {}
    if args.no_slugs:
        overrides["election_slug_fetch_enabled"] = False
    if args.timeout:
        overrides["refresh_timeout_seconds"] = args.timeout
    settings = get_settings().model_copy(update=overrides)

    container = build_container(settings)
    try:
        if args.state:
            result = await container.elections.get_state_data(args.state)
        else:
            result = await container.elections.refresh()
    finally:
        await container.aclose()
    return result.model_dump_json(indent=args.indent)


def main() -> None:
    args = parse_args()
    try:
        output = asyncio.run(_run(args))
    except Exception as exc:
        logger.error("Election refresh failed: {}", exc)
        sys.exit(1)
    print(output)
    if not args.state:
        summary = json.loads(output)
        logger.info(
            "Matched {} races from {} markets", summary["races_matched"], summary["market_count"]
        )


if __name__ == "__main__":
    main()
