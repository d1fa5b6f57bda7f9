"""Tests for the command-line entry points."""

import argparse
import json

import yaml

import cli
import game.turn_orchestrator
from settings import load_settings


def match_args(**overrides):
    values = {f"{color}_{field}": None for color in ("white", "black") for field in ("model", "api_key", "base_url")}
    values.update(overrides)
    return argparse.Namespace(**values)


def test_resolve_player_from_config(tmp_path):
    path = tmp_path / "arena.yaml"
    path.write_text(yaml.safe_dump({
        "openrouter": {"api_key": "or-key"},
        "players": {"white": {"model": "openai/gpt-4o", "name": "GPT", "base_url": "https://openrouter.ai/api/v1"}},
    }))
    settings = load_settings(path, environ={})

    white = cli.resolve_player("white", match_args(), settings)
    assert white.player_id == "GPT"
    assert white.api_key == "or-key"

    assert cli.resolve_player("black", match_args(), settings) is None
    black = cli.resolve_player("black", match_args(black_model="gpt-4o", black_api_key="k"), settings)
    assert black.player_id == "gpt-4o"


def test_move_command(tmp_path, start_board, monkeypatch, capsys):
    request_path = tmp_path / "turn.json"
    request_path.write_text(json.dumps({
        "turn": "white",
        "legalMoves": [{"from": [6, 4], "to": [4, 4]}],
        "board": [[None if p is None else p.model_dump() for p in row] for row in start_board],
        "model": "gpt-4o",
        "apiKey": "sk-test",
    }))

    async def issue(config, system_prompt, user_prompt, session=None, settings=None):
        return '{"from":[6,4],"to":[4,4]}'

    monkeypatch.setattr(game.turn_orchestrator, "issue_completion", issue)

    assert cli.main(["move", str(request_path), "--policy", "strict"]) == 0
    output = json.loads(capsys.readouterr().out)
    assert output == {"move": {"from": [6, 4], "to": [4, 4]}, "attemptsUsed": 1}


def test_move_command_rejects_bad_json(tmp_path, capsys):
    request_path = tmp_path / "turn.json"
    request_path.write_text("{not json")

    assert cli.main(["move", str(request_path)]) == 1
    assert "Invalid JSON payload" in capsys.readouterr().out


def test_match_requires_players(capsys):
    assert cli.main(["match"]) == 1
    assert "--white-model" in capsys.readouterr().out
