import argparse
import json
import logging
import os
import sys
from dataclasses import asdict, is_dataclass
from pathlib import Path
from typing import Any, Sequence

from dotenv import load_dotenv
from rich.console import Console

# Ensure the src directory is on sys.path when running as a script
_SRC_DIR = Path(__file__).resolve().parents[1]
if str(_SRC_DIR) not in sys.path:
    sys.path.insert(0, str(_SRC_DIR))

from theway.bootstrap import create_story_engine
from theway.domain.errors import CapabilityGapError, NotFoundError
from theway.infrastructure.story_content_validator import validate_story_file
from theway.infrastructure.story_content_loader import story_content_path
from theway.presentation.console import render


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="theway", description="Merchant story and trade-access engine")
    parser.add_argument("--content", default=None, help="Story content JSON (defaults to THEWAY_STORY_CONTENT)")
    parser.add_argument("--pretty", action="store_true", help="Render results as rich panels and tables instead of JSON")
    commands = parser.add_subparsers(dest="command", required=True)

    node = commands.add_parser("node", help="Show a story node, filtered for a player when given")
    node.add_argument("node_id")
    node.add_argument("--player", default=None)

    access = commands.add_parser("trade-access", help="Resolve trust stage, permit tier and max grade")
    access.add_argument("player_id")
    access.add_argument("merchant_id")

    progress = commands.add_parser("progress", help="Complete a story node, optionally via a choice")
    progress.add_argument("player_id")
    progress.add_argument("node_id")
    progress.add_argument("--choice", default=None)
    progress.add_argument("--attempt", default=None)

    stage = commands.add_parser("stage-progress", help="Count a completed quest toward merchant trust")
    stage.add_argument("player_id")
    stage.add_argument("merchant_id")
    stage.add_argument("quest_id")

    upgrade = commands.add_parser("upgrade-permit", help="Exchange the held permit for the next tier")
    upgrade.add_argument("player_id")
    upgrade.add_argument("merchant_id")

    eligibility = commands.add_parser("trade-eligibility", help="Trade access plus distance to the merchant")
    eligibility.add_argument("player_id")
    eligibility.add_argument("merchant_id")
    eligibility.add_argument("latitude", type=float)
    eligibility.add_argument("longitude", type=float)

    trade = commands.add_parser("trade", help="Record a trade when the player may trade with the merchant")
    trade.add_argument("player_id")
    trade.add_argument("merchant_id")
    trade.add_argument("amount", type=int)
    trade.add_argument("--lat", type=float, required=True)
    trade.add_argument("--lng", type=float, required=True)

    chapters = commands.add_parser("chapters", help="List a merchant's story chapters for a player")
    chapters.add_argument("merchant_id")
    chapters.add_argument("player_id")

    commands.add_parser("validate", help="Validate the story content file")
    return parser


def _to_jsonable(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        payload = asdict(value)
        payload["result"] = type(value).__name__
        return payload
    if isinstance(value, list):
        return [_to_jsonable(row) for row in value]
    return value


def _emit(value: Any) -> None:
    print(json.dumps(_to_jsonable(value), indent=2, ensure_ascii=False, default=str))


def main(argv: Sequence[str] | None = None) -> int:
    load_dotenv()
    logging.basicConfig(level=os.getenv("THEWAY_LOG_LEVEL", "WARNING").upper())
    args = build_parser().parse_args(list(argv) if argv is not None else None)

    if args.command == "validate":
        errors = validate_story_file(args.content or story_content_path())
        if errors:
            print(f"Story content invalid ({len(errors)} errors):")
            for message in errors:
                print(f"- {message}")
            return 1
        print("Story content valid.")
        return 0

    service = create_story_engine(args.content).service
    emit = (lambda value: render(value, Console())) if args.pretty else _emit
    try:
        if args.command == "node":
            emit(service.get_story_node(args.node_id, player_id=args.player))
        elif args.command == "trade-access":
            emit(service.resolve_trade_access(args.player_id, args.merchant_id))
        elif args.command == "progress":
            emit(service.progress_story(args.player_id, args.node_id, choice_id=args.choice, attempt_id=args.attempt))
        elif args.command == "stage-progress":
            emit(service.record_stage_progress(args.player_id, args.merchant_id, args.quest_id))
        elif args.command == "upgrade-permit":
            emit(service.upgrade_permit(args.player_id, args.merchant_id))
        elif args.command == "trade-eligibility":
            emit(service.trade_eligibility(args.player_id, args.merchant_id, args.latitude, args.longitude))
        elif args.command == "trade":
            emit(service.record_trade(args.player_id, args.merchant_id, args.amount, latitude=args.lat, longitude=args.lng))
        elif args.command == "chapters":
            emit(service.list_story_chapters(args.merchant_id, args.player_id))
    except NotFoundError as exc:
        print(f"Not found: {exc.kind} {exc.identifier}", file=sys.stderr)
        return 2
    except CapabilityGapError as exc:
        print(
            f"Rejected: {exc.capability} requires {exc.required} (current {exc.current})",
            file=sys.stderr,
        )
        return 3
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
