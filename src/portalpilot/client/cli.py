"""CLI client for the Portal Pilot API."""

from __future__ import annotations

import logging
from typing import (
    Any,
    Dict,
    Tuple,
    cast,
)

import httpx

from portalpilot.common import (
    AnsiColors,
    colored_print,
)
from portalpilot.config import settings

logger = logging.getLogger(__name__)

_MODE_COMMANDS = {"/chat": "chat", "/optimize": "optimize", "/audit": "audit"}


# ---------------------------------------------------------------------------
# CLI Client
# ---------------------------------------------------------------------------
def get_user_message() -> Tuple[str, bool]:
    """
    Get a message from the user via standard input.

    Returns:
        Tuple of (user_input, success_flag)
        The success_flag is False if input couldn't be read (e.g., Ctrl+C)
    """
    try:
        user_input = input().strip()
        return user_input, True
    except (EOFError, KeyboardInterrupt):
        return "", False


def call_api(
    client: httpx.Client, endpoint: str, data: Dict[str, Any], max_retries: int = 5
) -> Dict[str, Any]:
    """Make a POST request to the API and return the response, retrying while it starts up."""
    for attempt in range(max_retries):
        try:
            response = client.post(endpoint, json=data)
            response.raise_for_status()
            return cast(Dict[str, Any], response.json())
        except httpx.ConnectError as e:
            if attempt < max_retries - 1:
                retry_delay = 0.5 * (2**attempt)  # exponential backoff: 0.5s, 1s, 2s, 4s...
                logger.info(
                    "API not ready yet, retrying in %.1f seconds (attempt %d/%d)...",
                    retry_delay,
                    attempt + 1,
                    max_retries,
                )
                import time  # pylint: disable=import-outside-toplevel

                time.sleep(retry_delay)
                continue
            logger.error("API connection error: %s", e)
            return {"error": f"Error connecting to API: {e}"}
        except httpx.HTTPStatusError as e:
            try:
                detail = e.response.json().get("detail", str(e))
            except ValueError:
                detail = str(e)
            return {"error": f"API error: {detail}"}

    return {"error": f"Failed to connect to API after {max_retries} attempts"}


def render_turn(turn: Dict[str, Any]) -> None:
    """Print one conversation turn."""
    kind = turn.get("kind")
    if kind == "assistant":
        colored_print(turn.get("text", ""), AnsiColors.YELLOW)
        if turn.get("suggestions"):
            colored_print("  Try: " + " | ".join(turn["suggestions"]), AnsiColors.BLUE)
    elif kind == "tool":
        result = turn.get("result", {})
        color = AnsiColors.GREEN if result.get("status") == "success" else AnsiColors.RED
        colored_print(f"[{result.get('tool_name')}] {result.get('summary')}", color)


def render_response(response: Dict[str, Any]) -> None:
    """Print what one ``/agent`` call added, skipping the user turn already on screen."""
    if "error" in response and "status" not in response:
        colored_print(response["error"], AnsiColors.RED)
        return
    for turn in response.get("turns", [])[1:]:
        render_turn(turn)
    if response.get("status") == "failed":
        colored_print(response.get("error") or "AI generation failed.", AnsiColors.RED)


def run_cli() -> None:
    """Run the CLI client that communicates with the API."""
    with httpx.Client(base_url=f"http://localhost:{settings.API_PORT}", timeout=300.0) as client:
        session_id = call_api(client, "/sessions", {}).get("session_id")
        if not session_id:
            colored_print("Failed to create a session", AnsiColors.RED)
            return

        mode = "chat"
        colored_print(
            "\nCRM Co-Pilot - /chat, /optimize or /audit switch modes; 'exit' or Ctrl+C quits",
            AnsiColors.GREEN,
        )
        while True:
            colored_print(f"\n[{mode}] You: ", AnsiColors.BLUE, end="")
            user_msg, ok = get_user_message()
            if not ok or user_msg.lower() in {"exit", "quit"}:
                break
            if user_msg.lower() in _MODE_COMMANDS:
                mode = _MODE_COMMANDS[user_msg.lower()]
                continue
            if not user_msg:
                continue

            response = call_api(
                client, "/agent", {"message": user_msg, "session_id": session_id, "mode": mode}
            )
            render_response(response)


if __name__ == "__main__":
    run_cli()
