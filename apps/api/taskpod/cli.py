"""CLI entrypoint (Typer).

- `taskpod serve`          start the API server
- `taskpod run <task-id>`  trigger an execution through the API and print its output
"""

from __future__ import annotations

import httpx
import typer

from taskpod.api.main import main as serve_api

app = typer.Typer(help="TaskPod CLI.")


@app.command()
def serve():
    """Start the TaskPod API server."""
    serve_api()


@app.command()
def run(
    task_id: str,
    api_url: str = typer.Option("http://localhost:8000", "--api", help="TaskPod API base URL"),
    timeout: float = typer.Option(330.0, help="Seconds to wait for the execution to finish"),
):
    """Run a task and print what its command wrote."""
    try:
        response = httpx.put(f"{api_url.rstrip('/')}/tasks/{task_id}/executions", timeout=timeout)
    except httpx.HTTPError as e:
        typer.echo(f"Request failed: {e}", err=True)
        raise typer.Exit(code=1)

    if not response.is_success:
        try:
            payload = response.json()
            message = f"{payload.get('error_code', response.status_code)}: {payload.get('detail')}"
        except (ValueError, AttributeError):
            message = f"HTTP {response.status_code}: {response.text[:200]}"
        typer.echo(message, err=True)
        raise typer.Exit(code=1)

    payload = response.json()
    execution = payload["execution"]
    for warning in payload.get("warnings", []):
        typer.echo(f"warning: {warning}", err=True)
    typer.echo(
        f"{execution['unit_name']} {execution['phase']} "
        f"{execution['start_time']} -> {execution['end_time']}",
        err=True,
    )
    typer.echo(execution["output"], nl=False)


if __name__ == "__main__":
    app()
