"""Main CLI application using Cyclopts.

The CLI is a thin HTTP client - it talks to the server via REST API.
No internal DI needed since all business logic lives in the server.
"""

import cyclopts

from rolesync.cli.commands import reconcile, server, status

app = cyclopts.App(
    name="rolesync",
    help="Rolesync - keeps Discord roles in step with subscription plans",
)

app.command(server.app, name="server")
app.command(reconcile.reconcile, name="reconcile")
app.command(reconcile.sweep, name="sweep")
app.command(status.status, name="status")


if __name__ == "__main__":
    app()
