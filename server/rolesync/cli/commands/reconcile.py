"""Reconcile and sweep commands."""

import sys

from rolesync.cli.client import service_request
from rolesync.cli.console import get_console


def reconcile(user: str, plan: str, *, timeout: float | None = None) -> None:
    """Reconcile one user's Discord roles to a plan.

    Args:
        user: Internal user id.
        plan: Plan tier (free, starter, pro, empire).
        timeout: Give up after this many seconds.
    """
    console = get_console()
    outcome = service_request(
        "POST", "/reconcile", json={"user_id": user, "plan": plan, "timeout": timeout}
    )

    status = outcome["status"]
    if status == "not_linked":
        console.warning(f"User {user} has no linked Discord account")
        return

    if status == "reconciled":
        console.success(f"Reconciled {user} to {outcome['plan']}")
    else:
        console.warning(f"Reconciled {user} to {outcome['plan']} with failures")

    if outcome["removed"]:
        console.print(f"  [dim]Removed:[/dim] {', '.join(outcome['removed'])}")
    if outcome["added"]:
        console.print(f"  [dim]Added:[/dim] {', '.join(outcome['added'])}")
    for failure in outcome["failures"]:
        console.print(
            f"  [red]Failed[/red] {failure['action']} {failure['role_id']}: {failure['message']}"
        )

    if outcome["failures"]:
        sys.exit(2)


def sweep() -> None:
    """Reconcile every linked account to its stored plan."""
    console = get_console()
    report = service_request("POST", "/reconcile/sweep")

    entries = report["entries"]
    if not entries:
        console.warning("No linked accounts to sweep")
        return

    console.table(
        entries,
        [("user_id", "User"), ("status", "Status"), ("error_code", "Error")],
        title="Sweep",
    )
    failed = [e for e in entries if e["status"] in ("failed", "partial_failure")]
    if failed:
        console.warning(f"{len(failed)} of {len(entries)} account(s) need attention")
        sys.exit(2)
    console.success(f"Swept {len(entries)} account(s)")
