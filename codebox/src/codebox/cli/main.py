"""
Codebox CLI - Main entry point

Client for the Codebox HTTP API.
"""

import json
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import click
import requests

from codebox import __version__

# Default configuration
DEFAULT_API_URL = "http://localhost:8000"
REQUEST_TIMEOUT_SECONDS = 330  # longer than the server's maximum execution timeout


def get_api_url() -> str:
    """Get the API URL from environment or default."""
    return os.environ.get("CODEBOX_API_URL", DEFAULT_API_URL)


def get_headers() -> dict:
    """Get headers, including the acting user when configured."""
    headers = {"Content-Type": "application/json"}
    user_id = os.environ.get("CODEBOX_USER_ID")
    if user_id:
        headers["X-User-ID"] = user_id
    return headers


def api_request(method: str, endpoint: str, accept_statuses: Sequence[int] = (), **kwargs) -> dict:
    """Make an API request with helpful error messages."""
    url = f"{get_api_url()}{endpoint}"
    headers = get_headers()
    headers.update(kwargs.pop("headers", {}))

    try:
        response = requests.request(method, url, headers=headers, timeout=REQUEST_TIMEOUT_SECONDS, **kwargs)

        if response.status_code in accept_statuses:
            return response.json() if response.content else {}

        if response.status_code == 400:
            click.echo(f"Error: {_detail(response) or 'Invalid request.'}", err=True)
            sys.exit(1)

        elif response.status_code == 404:
            detail = _detail(response)
            click.echo(f"Error: {detail or f'Resource not found: {endpoint}'}", err=True)
            sys.exit(1)

        elif response.status_code == 409:
            click.echo(f"Error: {_detail(response)}", err=True)
            click.echo("Hint: create a new session with 'codebox-cli session create'.", err=True)
            sys.exit(1)

        elif response.status_code == 422:
            click.echo("Error: Invalid input data.", err=True)
            sys.exit(1)

        elif response.status_code == 503:
            click.echo(f"Error: Sandbox unavailable: {_detail(response) or 'service unavailable'}", err=True)
            click.echo("Check the container runtime: codebox-cli server health", err=True)
            sys.exit(1)

        elif response.status_code >= 500:
            click.echo("Error: Server error. Please try again later.", err=True)
            click.echo("If this persists, check the server logs.", err=True)
            sys.exit(1)

        response.raise_for_status()
        return response.json() if response.content else {}

    except requests.exceptions.ConnectionError:
        click.echo(f"Error: Could not connect to {url}", err=True)
        click.echo("Possible fixes:", err=True)
        click.echo("  1. Start the server: codebox-cli server start", err=True)
        click.echo("  2. Verify the API URL: export CODEBOX_API_URL=http://...", err=True)
        click.echo(f"  Current API URL: {get_api_url()}", err=True)
        sys.exit(1)

    except requests.exceptions.Timeout:
        click.echo("Error: Request timed out.", err=True)
        sys.exit(1)

    except requests.exceptions.HTTPError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


def _detail(response: Any) -> str:
    try:
        body = response.json()
    except ValueError:
        return ""
    if isinstance(body, dict):
        return str(body.get("detail", ""))
    return ""


def format_json(data: Any, pretty: bool = True) -> str:
    """Format data as JSON."""
    if pretty:
        return json.dumps(data, indent=2, default=str)
    return json.dumps(data, default=str)


def format_table(rows: list, headers: list) -> str:
    """Format data as ASCII table."""
    if not rows:
        return "No data"

    widths = [len(h) for h in headers]
    for row in rows:
        for i, cell in enumerate(row):
            widths[i] = max(widths[i], len(str(cell)))

    lines = []
    sep = "+" + "+".join("-" * (w + 2) for w in widths) + "+"
    lines.append(sep)
    lines.append("|" + "|".join(f" {h:<{widths[i]}} " for i, h in enumerate(headers)) + "|")
    lines.append(sep)
    for row in rows:
        lines.append("|" + "|".join(f" {str(c):<{widths[i]}} " for i, c in enumerate(row)) + "|")
    lines.append(sep)
    return "\n".join(lines)


def read_code(source: str) -> str:
    """Code from a file path, or from stdin when ``source`` is '-'."""
    if source == "-":
        return sys.stdin.read()
    return Path(source).read_text(encoding="utf-8")


def parse_files(specs: Sequence[str]) -> List[Dict[str, str]]:
    """Turn ``dest=local_path`` (or just ``local_path``) options into request files."""
    files = []
    for spec in specs:
        dest, sep, local = spec.partition("=")
        if not sep:
            dest, local = Path(spec).name, spec
        files.append({"path": dest, "content": Path(local).read_text(encoding="utf-8")})
    return files


def parse_env(pairs: Sequence[str]) -> Dict[str, str]:
    env = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected KEY=VALUE, got '{pair}'", param_hint="--env")
        env[key] = value
    return env


def build_execute_body(
    code: str,
    timeout: Optional[int],
    files: Sequence[str],
    env: Sequence[str],
    language: Optional[str] = None,
) -> Dict[str, Any]:
    body: Dict[str, Any] = {"code": code}
    if language:
        body["language"] = language
    if timeout is not None:
        body["timeout"] = timeout
    if files:
        body["files"] = parse_files(files)
    if env:
        body["env"] = parse_env(env)
    return body


def print_result(data: Dict[str, Any], as_json: bool) -> None:
    """Print an execution result; exit non-zero when the run failed."""
    if as_json:
        click.echo(format_json(data))
    else:
        output = data.get("output", "")
        if output:
            click.echo(output, nl=not output.endswith("\n"))
        if data.get("error"):
            click.echo(data["error"], err=True)

        artifacts = data.get("artifacts", [])
        status = "timed out" if data.get("timedOut") else ("ok" if data.get("success") else "failed")
        click.echo(
            f"[{status}] exit={data.get('exitCode')} time={data.get('executionTime', 0)}ms "
            f"artifacts={len(artifacts)} session={data.get('sessionId')}",
            err=True,
        )
    if not data.get("success"):
        sys.exit(1)


def _execute_options(func):
    func = click.option("--json", "as_json", is_flag=True, help="Output as JSON")(func)
    func = click.option("--env", "-e", multiple=True, help="Environment override KEY=VALUE")(func)
    func = click.option("--file", "-f", "files", multiple=True,
                        help="Auxiliary file as dest=local_path (or local_path)")(func)
    func = click.option("--timeout", "-t", type=int, help="Timeout in milliseconds")(func)
    return func


# ==================== Main CLI Group ====================

@click.group()
@click.version_option(version=__version__, prog_name="codebox-cli")
@click.option("--api-url", envvar="CODEBOX_API_URL", default=DEFAULT_API_URL,
              help="Codebox API URL")
@click.option("--user-id", envvar="CODEBOX_USER_ID", type=int, help="Acting user id (X-User-ID)")
@click.pass_context
def cli(ctx, api_url, user_id):
    """Codebox CLI - run code in the sandbox service."""
    ctx.ensure_object(dict)
    ctx.obj["api_url"] = api_url
    os.environ["CODEBOX_API_URL"] = api_url
    if user_id is not None:
        os.environ["CODEBOX_USER_ID"] = str(user_id)


# ==================== One-shot Execution ====================

@cli.command("exec")
@click.argument("language")
@click.argument("source", default="-")
@_execute_options
def exec_code(language, source, timeout, files, env, as_json):
    """Run SOURCE (file path, or '-' for stdin) once in a throwaway session."""
    body = build_execute_body(read_code(source), timeout, files, env, language=language)
    print_result(api_request("POST", "/sandbox/execute", json=body), as_json)


# ==================== Session Commands ====================

@cli.group()
def session():
    """Reusable sandbox sessions."""
    pass


@session.command("create")
@click.argument("language")
@click.option("--cpu", help="CPU share, e.g. 0.5")
@click.option("--memory", help="Memory ceiling, e.g. 512M")
@click.option("--timeout", type=int, help="Default timeout per execution (ms)")
@click.option("--disk", help="Disk quota, e.g. 100M")
@click.option("--network", type=click.Choice(["none", "internal", "external"]), default="none",
              help="Network policy")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def session_create(language, cpu, memory, timeout, disk, network, as_json):
    """Create a session for LANGUAGE."""
    limits = {
        key: value
        for key, value in (("cpu", cpu), ("memory", memory), ("timeout", timeout), ("diskSpace", disk))
        if value is not None
    }
    body: Dict[str, Any] = {"language": language, "networkPolicy": network}
    if limits:
        body["resourceLimits"] = limits

    data = api_request("POST", "/sandbox/session", json=body)
    if as_json:
        click.echo(format_json(data))
    else:
        info = data.get("session", {})
        click.echo(f"Session created: {info.get('id')}")
        click.echo(f"  Language: {info.get('language')}")
        click.echo(f"  Status:   {info.get('status')}")
        click.echo(f"  Network:  {info.get('networkPolicy')}")


@session.command("show")
@click.argument("session_id")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def session_show(session_id, as_json):
    """Show a session record."""
    data = api_request("GET", f"/sandbox/session/{session_id}")
    info = data.get("session", {})
    if as_json:
        click.echo(format_json(info))
        return

    limits = info.get("resourceLimits", {})
    click.echo(f"Session: {info.get('id')}")
    click.echo(f"  Language:  {info.get('language')}")
    click.echo(f"  Status:    {info.get('status')}{'' if info.get('live') else ' (not live)'}")
    click.echo(f"  Network:   {info.get('networkPolicy')}")
    click.echo(f"  Container: {info.get('containerId') or '-'}")
    click.echo(f"  Limits:    cpu={limits.get('cpu')} memory={limits.get('memory')} timeout={limits.get('timeout')}ms")
    click.echo(f"  Created:   {info.get('createdAt')}")
    if info.get("stoppedAt"):
        click.echo(f"  Stopped:   {info.get('stoppedAt')}")


@session.command("exec")
@click.argument("session_id")
@click.argument("source", default="-")
@_execute_options
def session_exec(session_id, source, timeout, files, env, as_json):
    """Run SOURCE inside an existing session."""
    body = build_execute_body(read_code(source), timeout, files, env)
    print_result(api_request("POST", f"/sandbox/session/{session_id}/execute", json=body), as_json)


@session.command("artifacts")
@click.argument("session_id")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def session_artifacts(session_id, as_json):
    """List the artifacts of a session's last execution."""
    data = api_request("GET", f"/sandbox/session/{session_id}/artifacts")
    artifacts = data.get("artifacts", [])
    if as_json:
        click.echo(format_json(artifacts))
        return

    rows = [
        [a.get("filePath"), a.get("fileType") or "-", a.get("fileSize"), (a.get("checksum") or "")[:16]]
        for a in artifacts
    ]
    click.echo(format_table(rows, ["Path", "Type", "Size", "SHA-256"]))


@session.command("delete")
@click.argument("session_id")
def session_delete(session_id):
    """Stop a session and remove its resources."""
    data = api_request("DELETE", f"/sandbox/session/{session_id}")
    if data.get("cleaned"):
        click.echo(f"Session {session_id} stopped and cleaned up.")
    else:
        click.echo(f"Session {session_id} was already stopped.")


# ==================== Server Commands ====================

@cli.group()
def server():
    """Server management commands."""
    pass


@server.command("start")
@click.option("--host", default="0.0.0.0", help="Host to bind to")  # nosec B104
@click.option("--port", default=8000, type=int, help="Port to bind to")
@click.option("--reload", is_flag=True, help="Enable auto-reload for development")
def server_start(host, port, reload):
    """Start the Codebox server."""
    from codebox.api.server import run_server
    click.echo(f"Starting Codebox server on {host}:{port}...")
    run_server(host=host, port=port, reload=reload)


@server.command("health")
def server_health():
    """Check server health."""
    data = api_request("GET", "/health", accept_statuses=(503,))
    click.echo(f"Status: {data.get('status', 'unknown')}")
    click.echo(f"Live sessions: {data.get('live_sessions', 0)}")

    components = data.get("components", {})
    if components:
        click.echo("\nComponents:")
        for name, status in components.items():
            icon = "✓" if status.get("healthy") else "✗"
            click.echo(f"  {icon} {name}: {status.get('message', '')}")

    if data.get("status") != "healthy":
        sys.exit(1)


@server.command("stats")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def server_stats(as_json):
    """Get execution statistics."""
    data = api_request("GET", "/sandbox/stats")
    if as_json:
        click.echo(format_json(data))
        return

    executions = data.get("executions", {})
    click.echo(f"Isolation: {data.get('isolation')}")
    click.echo(f"Live Sessions: {data.get('live_sessions', 0)}")
    click.echo(f"Executions: {executions.get('total_executions', 0)} "
               f"(ok {executions.get('successful', 0)}, failed {executions.get('failed', 0)}, "
               f"timeouts {executions.get('timeouts', 0)}, spawn errors {executions.get('spawn_errors', 0)})")


@server.command("sweep")
@click.option("--max-age", type=int, help="Override the maximum session age (seconds)")
def server_sweep(max_age):
    """Reclaim expired sessions now."""
    body = {"maxAgeSeconds": max_age} if max_age is not None else {}
    data = api_request("POST", "/sandbox/sweep", json=body)
    click.echo(f"Scanned {data.get('scanned', 0)}, reclaimed {data.get('reclaimed', 0)}, "
               f"failed {data.get('failed', 0)}")


# ==================== Entry Point ====================

def main():
    """Main entry point for codebox-cli."""
    cli(obj={})


if __name__ == "__main__":
    main()
