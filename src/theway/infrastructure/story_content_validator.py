"""Validate authored story content.

Usage examples:
    python -m theway.infrastructure.story_content_validator
    python -m theway.infrastructure.story_content_validator --path data/story/story_nodes.json
"""

from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Sequence

from theway.application.services.story_graph_store import validate_story_catalog
from theway.infrastructure.story_content_loader import parse_story_content, story_content_path


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Validate story node JSON links and quest triggers")
    parser.add_argument(
        "--path",
        default=str(story_content_path()),
        help="Path to story content JSON file",
    )
    return parser


def validate_story_file(path: str | Path) -> list[str]:
    source = Path(path)
    if not source.exists():
        return [f"File not found: {source}"]

    try:
        payload = json.loads(source.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        return [f"Invalid JSON: {exc}"]

    try:
        content = parse_story_content(payload)
    except ValueError as exc:
        return [f"Invalid content: {exc}"]

    errors = validate_story_catalog(content.nodes, [quest.id for quest in content.quests])
    node_ids = {node.id for node in content.nodes}
    for merchant in content.merchants:
        if merchant.initial_story_node and merchant.initial_story_node not in node_ids:
            errors.append(
                f"merchants.{merchant.id}.initial_story_node references unknown node {merchant.initial_story_node}"
            )
        if merchant.has_active_story and not merchant.initial_story_node:
            errors.append(f"merchants.{merchant.id} has an active story but no initial_story_node")
    return errors


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    errors = validate_story_file(args.path)
    if errors:
        print(f"Story content invalid ({len(errors)} errors):")
        for message in errors:
            print(f"- {message}")
        return 1

    print("Story content valid.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
