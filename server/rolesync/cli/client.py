"""HTTP access to the rolesync server for CLI commands."""

import os
import sys
from typing import Any

import httpx

from rolesync.cli.console import get_console

SERVICE_KEY_HEADER = "X-Service-Key"


def get_server_url() -> str:
    """Get server URL from environment."""
    return os.environ.get("ROLESYNC_SERVER", "http://localhost:8000")


def service_request(method: str, path: str, **kwargs: Any) -> Any:
    """Call a service-key protected endpoint and return the JSON body.

    Exits with status 1 on connection or HTTP errors.
    """
    console = get_console()
    server_url = get_server_url()
    headers = {SERVICE_KEY_HEADER: os.environ.get("ROLESYNC_AUTH__SERVICE_KEY", "")}

    try:
        response = httpx.request(
            method, f"{server_url}/api/v1{path}", headers=headers, timeout=120.0, **kwargs
        )
        response.raise_for_status()
        return response.json()
    except httpx.ConnectError:
        console.error(
            f"Could not connect to server at {server_url}",
            hint="Is the server running? Start it with: rolesync server",
        )
        sys.exit(1)
    except httpx.HTTPStatusError as e:
        detail = e.response.text
        try:
            body = e.response.json()
            detail = body.get("message") or body.get("detail", {}).get("message") or detail
        except (ValueError, AttributeError):
            pass
        console.error(f"Server error: {e.response.status_code} - {detail}")
        sys.exit(1)
