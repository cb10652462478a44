"""Status command - show a user's link."""

from rolesync.cli.client import service_request
from rolesync.cli.console import get_console


def status(user: str) -> None:
    """Show a user's Discord link and managed roles.

    Args:
        user: Internal user id.
    """
    console = get_console()
    data = service_request("GET", f"/link/discord/status/{user}")

    if not data["is_connected"]:
        console.warning(f"User {user} has no linked Discord account")
        return

    console.print(f"[bold]{data['username']}[/bold] [dim]({data['external_id']})[/dim]")
    console.print(f"  [dim]State:[/dim] {data['link_state']}")
    console.print(f"  [dim]Plan:[/dim] {data['plan']}")
    console.print(f"  [dim]Roles:[/dim] {', '.join(data['last_known_roles']) or '-'}")
    if data["needs_role_update"]:
        console.warning(f"Expected role {data['expected_role']} is not confirmed yet")
    if data.get("last_reconciled_at"):
        console.print(f"  [dim]Last reconciled:[/dim] {data['last_reconciled_at']}")
