"""
Flask web application for the LLM chess arena.

Endpoints:
- POST /api/llm-move       -> one turn; provider errors are returned to the caller
- POST /api/llm-move/auto  -> one turn; always answers with a legal move
- POST /api/models         -> list models offered at a base URL
"""

import logging

from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

from game.models import ProviderConfig, TurnRequest
from game.turn_orchestrator import TurnOrchestrator, TurnPolicy
from llm.adapter import OPENROUTER_BASE_URL, list_models
from llm.errors import InvalidRequest, ProviderError
from settings import get_settings

app = Flask(__name__)

# Configure logging
logging.basicConfig(level=logging.INFO)


def client_identity() -> str:
    """Identify the caller for rate limiting (first X-Forwarded-For hop if proxied)."""
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded.strip():
        return forwarded.split(",")[0].strip()
    return request.remote_addr or "unknown"


def _json_payload() -> dict:
    payload = request.get_json(silent=True)
    if payload is None:
        raise InvalidRequest("Invalid JSON payload")
    return payload


@app.errorhandler(InvalidRequest)
def handle_invalid_request(error: InvalidRequest):
    return jsonify(error.to_payload()), error.response_status


@app.errorhandler(ProviderError)
def handle_provider_error(error: ProviderError):
    return jsonify(error.to_payload()), error.response_status


@app.errorhandler(Exception)
def handle_unexpected(error: Exception):
    if isinstance(error, HTTPException):
        return error
    app.logger.exception("Unexpected error while handling request")
    return jsonify({"error": f"Unexpected error: {error}"}), 500


async def _play_turn(policy: TurnPolicy):
    turn_request = TurnRequest.from_payload(_json_payload())
    orchestrator = TurnOrchestrator(policy=policy)
    result = await orchestrator.select_move(turn_request, client_id=client_identity())
    return jsonify(result.to_json())


@app.route("/api/llm-move", methods=["POST"])
async def llm_move():
    """Ask the configured model for a move, surfacing provider problems."""
    return await _play_turn(TurnPolicy.STRICT)


@app.route("/api/llm-move/auto", methods=["POST"])
async def llm_move_auto():
    """Ask the configured model for a move, degrading to a random legal move."""
    return await _play_turn(TurnPolicy.DEGRADE)


@app.route("/api/models", methods=["POST"])
async def models():
    """List models; without a base URL, lists OpenRouter models with the server key."""
    payload = request.get_json(silent=True) or {}
    settings = get_settings()

    base_url = (payload.get("baseUrl") or "").strip() or OPENROUTER_BASE_URL
    api_key = (payload.get("apiKey") or "").strip() or None
    if api_key is None and "openrouter.ai" in base_url:
        api_key = settings.openrouter_api_key

    config = ProviderConfig(model="", api_key=api_key, base_url=base_url)
    try:
        entries = await list_models(config, settings=settings)
    except ProviderError as e:
        return jsonify({"error": f"Model listing failed: {e.message}"}), e.response_status

    return jsonify({
        "baseUrl": config.base_url,
        "models": [entry.to_json() for entry in entries],
    })


if __name__ == "__main__":
    app.run(debug=True, port=5000)
