"""Shared helpers for MCP tool responses."""


def error_response(message: str, hint: str | None = None, **extra_fields) -> dict:
    """
    Build the error payload returned by grove tools and resources.

    Tools report failures as data rather than raising, so the calling agent
    sees ``error`` plus, where there is one, a ``hint`` it can act on.
    """
    response = {"error": message}
    if hint:
        response["hint"] = hint
    response.update(extra_fields)
    return response


# Recovery hints shared by several tools
HINTS = {
    "session_not_found": (
        "Run list_sessions to see tracked sessions, or reconcile_sessions to "
        "rescan agent logs for sessions that started without hooks"
    ),
    "invalid_status": "Valid statuses are: active, idle, attention, finished, closed",
}
