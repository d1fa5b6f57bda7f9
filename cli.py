#!/usr/bin/env python3
"""
CLI for the LLM Chess Arena.

Commands:
- move: Ask a model for one move from a turn request (JSON)
- models: List the models offered at a base URL
- match: Play a full game between two models
- serve: Run the web API
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Optional

import aiohttp

from game.match_runner import MatchRunner
from game.models import PlayerConfig, ProviderConfig, TurnRequest
from game.turn_orchestrator import TurnOrchestrator, TurnPolicy
from llm.adapter import OPENROUTER_BASE_URL, OPENROUTER_HOST, list_models
from llm.errors import InvalidRequest, ProviderError
from settings import Settings, load_settings


def load_config(config_path: Optional[str]) -> Settings:
    """Load settings, optionally from an explicit YAML file."""
    return load_settings(Path(config_path) if config_path else None)


def read_turn_request(path: str) -> TurnRequest:
    """Read a turn request from a JSON file ("-" for stdin)."""
    if path == "-":
        text = sys.stdin.read()
    else:
        with open(path) as f:
            text = f.read()
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        raise InvalidRequest("Invalid JSON payload") from e
    return TurnRequest.from_payload(payload)


def resolve_player(color: str, args, settings: Settings) -> Optional[PlayerConfig]:
    """
    Build one side's player from CLI flags, falling back to the config file.

    The config file may hold a block such as::

        players:
          white: {model: gpt-4o, api_key: ..., base_url: https://api.openai.com/v1}
    """
    block = settings.players.get(color) or {}
    model = getattr(args, f"{color}_model") or block.get("model")
    if not model:
        return None

    base_url = getattr(args, f"{color}_base_url") or block.get("base_url")
    api_key = getattr(args, f"{color}_api_key") or block.get("api_key")
    if not api_key and base_url and OPENROUTER_HOST in base_url:
        api_key = settings.openrouter_api_key

    return PlayerConfig(
        player_id=block.get("name") or model,
        model_name=model,
        api_key=api_key,
        base_url=base_url,
    )


async def run_move(args) -> int:
    """Select one move and print the result payload."""
    settings = load_config(args.config)
    try:
        request = read_turn_request(args.request)
    except (OSError, InvalidRequest) as e:
        print(f"Error: {e}")
        return 1

    async with aiohttp.ClientSession() as session:
        orchestrator = TurnOrchestrator(
            policy=TurnPolicy(args.policy),
            settings=settings,
            session=session,
        )
        try:
            result = await orchestrator.select_move(request, client_id="cli")
        except ProviderError as e:
            print(json.dumps(e.to_payload(), indent=2))
            return 1

    print(json.dumps(result.to_json(), indent=2))
    return 0


async def show_models(args) -> int:
    """List models at a base URL."""
    settings = load_config(args.config)
    base_url = args.base_url or OPENROUTER_BASE_URL
    api_key = args.api_key
    if not api_key and OPENROUTER_HOST in base_url:
        api_key = settings.openrouter_api_key

    config = ProviderConfig(model="", api_key=api_key, base_url=base_url)
    try:
        entries = await list_models(config, settings=settings)
    except ProviderError as e:
        print(f"Error: Model listing failed: {e.message}")
        return 1

    if not entries:
        print(f"No models found at {config.base_url}")
        return 0

    print(f"\n{'ID':<50} {'Label':<40} {'Provider'}")
    print("-" * 110)
    for entry in entries:
        print(f"{entry.id:<50} {entry.label or '':<40} {entry.provider or ''}")
    print(f"\n{len(entries)} models")
    return 0


async def run_match(args) -> int:
    """Play one game between two models."""
    settings = load_config(args.config)

    white = resolve_player("white", args, settings)
    black = resolve_player("black", args, settings)
    if white is None or black is None:
        print("Error: both --white-model and --black-model are required (or a players block in the config)")
        return 1

    max_moves = args.max_moves or settings.max_moves
    print(f"White: {white.player_id}")
    print(f"Black: {black.player_id}")
    print(f"Policy: {args.policy}, max moves: {max_moves}")
    print()

    async with aiohttp.ClientSession() as session:
        orchestrator = TurnOrchestrator(
            policy=TurnPolicy(args.policy),
            settings=settings,
            session=session,
        )
        runner = MatchRunner(
            white=white,
            black=black,
            orchestrator=orchestrator,
            max_moves=max_moves,
            verbose=args.verbose,
        )
        try:
            result, pgn_str = await runner.play_game()
        except KeyboardInterrupt:
            print("\n\nInterrupted by user")
            return 1

    print()
    print("=" * 50)
    print(f"Result: {result.winner} ({result.termination})")
    print(f"Moves: {result.moves}")
    print(f"Attempts - White: {result.attempts_white}, Black: {result.attempts_black}")
    print(f"Fallback moves - White: {result.fallback_moves_white}, Black: {result.fallback_moves_black}")
    if result.error:
        print(f"Error: {result.error}")

    if args.pgn:
        Path(args.pgn).write_text(pgn_str + "\n")
        print(f"Saved to: {args.pgn}")
    else:
        print()
        print("PGN:")
        print(pgn_str)

    return 1 if result.termination == "provider_error" else 0


def run_server(args) -> int:
    """Run the Flask web API."""
    if args.config:
        os.environ["LLM_ARENA_CONFIG"] = args.config
    from web.app import app

    app.run(host=args.host, port=args.port, debug=args.debug)
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(description="LLM Chess Arena")
    parser.add_argument(
        "--config", "-c",
        default=None,
        help="Path to arena config file (default: config/arena.yaml or LLM_ARENA_CONFIG)",
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    policy_help = "strict surfaces provider errors, degrade falls back to a random legal move"

    # Move command
    move_parser = subparsers.add_parser("move", help="Select one move for a turn request")
    move_parser.add_argument(
        "request",
        nargs="?",
        default="-",
        help="Path to a turn request JSON file (default: stdin)",
    )
    move_parser.add_argument(
        "--policy",
        choices=[p.value for p in TurnPolicy],
        default=TurnPolicy.DEGRADE.value,
        help=policy_help,
    )

    # Models command
    models_parser = subparsers.add_parser("models", help="List models at a base URL")
    models_parser.add_argument(
        "--base-url",
        help=f"Provider base URL (default: {OPENROUTER_BASE_URL})",
    )
    models_parser.add_argument(
        "--api-key",
        help="API key (OpenRouter defaults to OPENROUTER_API_KEY)",
    )

    # Match command
    match_parser = subparsers.add_parser("match", help="Play a game between two models")
    for color in ("white", "black"):
        match_parser.add_argument(f"--{color}-model", help=f"{color.capitalize()} player model")
        match_parser.add_argument(f"--{color}-api-key", help=f"API key for {color}")
        match_parser.add_argument(f"--{color}-base-url", help=f"Provider base URL for {color}")
    match_parser.add_argument(
        "--max-moves",
        type=int,
        default=None,
        help="Maximum half-moves before a draw (default: config max_moves)",
    )
    match_parser.add_argument(
        "--policy",
        choices=[p.value for p in TurnPolicy],
        default=TurnPolicy.DEGRADE.value,
        help=policy_help,
    )
    match_parser.add_argument(
        "--pgn",
        help="Write the game PGN to this file",
    )
    match_parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Print moves as they happen",
    )

    # Serve command
    serve_parser = subparsers.add_parser("serve", help="Run the web API")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address")
    serve_parser.add_argument("--port", type=int, default=5000, help="Port")
    serve_parser.add_argument("--debug", action="store_true", help="Flask debug mode")

    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if getattr(args, "verbose", False) else logging.INFO)

    if args.command == "move":
        return asyncio.run(run_move(args))
    elif args.command == "models":
        return asyncio.run(show_models(args))
    elif args.command == "match":
        return asyncio.run(run_match(args))
    elif args.command == "serve":
        return run_server(args)
    else:
        parser.print_help()
        return 0


if __name__ == "__main__":
    sys.exit(main())
