"""Server command - run the API in the foreground."""

import cyclopts
import uvicorn

app = cyclopts.App(name="server", help="Run the rolesync API server")


@app.default
def run(host: str = "0.0.0.0", port: int = 8000, reload: bool = False) -> None:
    """Run the API server.

    Configuration comes from ROLESYNC_* environment variables, a .env file,
    or the YAML file named by ROLESYNC_CONFIG_FILE.

    Args:
        host: Host to bind to.
        port: Port to listen on.
        reload: Restart on code changes (development only).
    """
    uvicorn.run(
        "rolesync.application.api.rest.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
    )
