"""Command line client for a Brewlog server.

Reads go out unauthenticated. Writes carry the bearer token obtained with
``brewlog login``, stored in the click application directory or supplied
through ``BREWLOG_TOKEN``.
"""

import json
import logging
import os
import secrets
import threading
import webbrowser
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Dict, Optional
from urllib.parse import parse_qs, urlencode, urlsplit

import click
import requests

log = logging.getLogger("brewlog_client")

DEFAULT_SERVER = "http://localhost:8000"
LOGIN_TIMEOUT = 300


def credentials_path() -> str:
    return os.path.join(click.get_app_dir("brewlog"), "credentials.json")


def load_credentials() -> Dict[str, Any]:
    path = credentials_path()
    if not os.path.exists(path):
        return {}
    with open(path, encoding="utf-8") as handle:
        return json.load(handle)


def save_credentials(server: str, token: str) -> str:
    path = credentials_path()
    os.makedirs(os.path.dirname(path), exist_ok=True)
    # Owner-only; the file holds a live bearer token
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as handle:
        json.dump({"server": server, "token": token}, handle)
    return path


def clear_credentials() -> bool:
    path = credentials_path()
    if os.path.exists(path):
        os.remove(path)
        return True
    return False


class ApiError(click.ClickException):
    """Non-success response from the server."""

    def __init__(self, status_code: int, message: str):
        super().__init__(f"{message} (HTTP {status_code})")
        self.status_code = status_code


class BrewlogClient:
    """Thin wrapper around the JSON API."""

    def __init__(self, server: str, token: Optional[str] = None, timeout: int = 10):
        """Initialize BrewlogClient.

        Args:
            server: Base URL of the server
            token: Bearer token sent on every request when set
            timeout: Per-request timeout in seconds
        """
        self.server = server.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.session = requests.Session()

    def _request(self, method: str, path: str, **kwargs) -> Any:
        headers = kwargs.pop("headers", {})
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        try:
            response = self.session.request(
                method, f"{self.server}{path}", headers=headers, timeout=self.timeout, **kwargs
            )
        except requests.RequestException as e:
            raise click.ClickException(f"could not reach {self.server}: {e}")
        if response.status_code >= 400:
            try:
                message = response.json().get("error", response.reason)
            except ValueError:
                message = response.reason
            raise ApiError(response.status_code, message)
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    def get(self, path: str, **params) -> Any:
        return self._request("GET", path, params={k: v for k, v in params.items() if v is not None})

    def post(self, path: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        return self._request("POST", path, json=payload or {})

    def put(self, path: str, payload: Dict[str, Any]) -> Any:
        return self._request("PUT", path, json=payload)

    def delete(self, path: str) -> Any:
        return self._request("DELETE", path)

    def login_url(self, callback: str, state: str, token_name: str) -> str:
        query = urlencode({"cli_callback": callback, "state": state, "token_name": token_name})
        return f"{self.server}/login?{query}"


class _CallbackHandler(BaseHTTPRequestHandler):
    """Receives the browser redirect carrying the new token."""

    def do_GET(self):
        params = parse_qs(urlsplit(self.path).query)
        self.server.result = {
            "token": (params.get("token") or [None])[0],
            "state": (params.get("state") or [None])[0],
        }
        self.send_response(200)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.end_headers()
        self.wfile.write(b"<html><body><p>Login complete. You can close this window.</p></body></html>")

    def log_message(self, format, *args):
        log.debug("callback listener: " + format, *args)


def wait_for_callback(server: HTTPServer, timeout: int = LOGIN_TIMEOUT) -> Optional[Dict[str, Any]]:
    """Serve the listener until one callback arrives or ``timeout`` passes."""
    server.result = None
    server.timeout = 1
    stop = threading.Event()
    timer = threading.Timer(timeout, stop.set)
    timer.start()
    try:
        while server.result is None and not stop.is_set():
            server.handle_request()
    finally:
        timer.cancel()
        server.server_close()
    return server.result


def _client(ctx) -> BrewlogClient:
    return ctx.obj["client"]


def _echo_json(data) -> None:
    click.echo(json.dumps(data, indent=2))


@click.group()
@click.option("--server", envvar="BREWLOG_SERVER", default=None, help="Server base URL")
@click.option("--token", envvar="BREWLOG_TOKEN", default=None, help="Bearer token (overrides stored credentials)")
@click.option("-v", "--verbose", is_flag=True, help="Log HTTP details")
@click.pass_context
def cli(ctx, server, token, verbose):
    """Brewlog command line client."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    stored = load_credentials()
    server = server or stored.get("server") or DEFAULT_SERVER
    token = token or stored.get("token")
    ctx.obj = {"client": BrewlogClient(server, token)}


@cli.command()
@click.option("--token-name", default="cli", show_default=True, help="Name of the API token to create")
@click.option("--no-browser", is_flag=True, help="Print the login URL instead of opening a browser")
@click.pass_context
def login(ctx, token_name, no_browser):
    """Sign in with a passkey in the browser and store an API token."""
    client = _client(ctx)
    listener = HTTPServer(("127.0.0.1", 0), _CallbackHandler)
    callback = f"http://127.0.0.1:{listener.server_address[1]}/callback"
    state = secrets.token_urlsafe(16)
    url = client.login_url(callback, state, token_name)

    click.echo(f"Open this URL to sign in:\n  {url}")
    if not no_browser:
        webbrowser.open(url)

    result = wait_for_callback(listener)
    if result is None:
        raise click.ClickException("timed out waiting for the browser login")
    if not result.get("state") or not secrets.compare_digest(result["state"], state):
        raise click.ClickException("login callback state did not match; token discarded")
    if not result.get("token"):
        raise click.ClickException("login callback did not include a token")

    path = save_credentials(client.server, result["token"])
    click.echo(f"Logged in. Token stored in {path}")


@cli.command()
@click.pass_context
def logout(ctx):
    """Forget the stored token. It stays valid until revoked."""
    if clear_credentials():
        click.echo("Stored credentials removed")
    else:
        click.echo("No stored credentials")


@cli.command()
@click.pass_context
def whoami(ctx):
    _echo_json(_client(ctx).get("/api/me"))


@cli.group()
def tokens():
    """Manage API tokens."""


@tokens.command("list")
@click.pass_context
def tokens_list(ctx):
    for token in _client(ctx).get("/api/tokens")["tokens"]:
        status = "revoked" if token["revoked_at"] else "active"
        click.echo(f"{token['id']}\t{token['name']}\t{status}\t{token['last_used_at'] or '-'}")


@tokens.command("create")
@click.argument("name")
@click.pass_context
def tokens_create(ctx, name):
    """Create a token. The secret is printed once."""
    token = _client(ctx).post("/api/tokens", {"name": name})
    click.echo(token["token"])


@tokens.command("revoke")
@click.argument("token_id", type=int)
@click.pass_context
def tokens_revoke(ctx, token_id):
    _client(ctx).post(f"/api/tokens/{token_id}/revoke")
    click.echo(f"Token {token_id} revoked")


@cli.group()
def roasters():
    """Roasters."""


@roasters.command("list")
@click.option("--country", default=None)
@click.pass_context
def roasters_list(ctx, country):
    for roaster in _client(ctx).get("/api/roasters", country=country)["roasters"]:
        click.echo(f"{roaster['id']}\t{roaster['name']}\t{roaster['country']}")


@roasters.command("add")
@click.option("--name", required=True)
@click.option("--country", required=True)
@click.option("--city", default=None)
@click.option("--homepage", default=None)
@click.pass_context
def roasters_add(ctx, name, country, city, homepage):
    payload = {"name": name, "country": country, "city": city, "homepage": homepage}
    _echo_json(_client(ctx).post("/api/roasters", {k: v for k, v in payload.items() if v is not None}))


@roasters.command("delete")
@click.argument("roaster_id", type=int)
@click.pass_context
def roasters_delete(ctx, roaster_id):
    _client(ctx).delete(f"/api/roasters/{roaster_id}")
    click.echo(f"Roaster {roaster_id} deleted")


@cli.group()
def roasts():
    """Roasts."""


@roasts.command("list")
@click.option("--roaster-id", type=int, default=None)
@click.pass_context
def roasts_list(ctx, roaster_id):
    for roast in _client(ctx).get("/api/roasts", roaster_id=roaster_id)["roasts"]:
        click.echo(f"{roast['id']}\t{roast['roaster_slug']}\t{roast['name']}")


@roasts.command("add")
@click.option("--roaster-id", type=int, required=True)
@click.option("--name", required=True)
@click.option("--origin", default=None)
@click.option("--process", default=None)
@click.option("--note", "notes", multiple=True, help="Tasting note, repeatable")
@click.pass_context
def roasts_add(ctx, roaster_id, name, origin, process, notes):
    payload = {"roaster_id": roaster_id, "name": name, "origin": origin, "process": process,
               "tasting_notes": list(notes)}
    _echo_json(_client(ctx).post("/api/roasts", {k: v for k, v in payload.items() if v is not None}))


@cli.group()
def bags():
    """Bags of coffee."""


@bags.command("list")
@click.option("--open", "only_open", is_flag=True, help="Only bags that are not finished")
@click.pass_context
def bags_list(ctx, only_open):
    for bag in _client(ctx).get("/api/bags", closed="false" if only_open else None)["bags"]:
        click.echo(f"{bag['id']}\t{bag['roast_name']}\t{bag['remaining']:g}/{bag['amount']:g}g")


@bags.command("add")
@click.option("--roast-id", type=int, required=True)
@click.option("--amount", type=float, required=True, help="Grams in the bag")
@click.option("--roast-date", default=None, help="YYYY-MM-DD")
@click.pass_context
def bags_add(ctx, roast_id, amount, roast_date):
    payload = {"roast_id": roast_id, "amount": amount, "roast_date": roast_date}
    _echo_json(_client(ctx).post("/api/bags", {k: v for k, v in payload.items() if v is not None}))


@bags.command("finish")
@click.argument("bag_id", type=int)
@click.pass_context
def bags_finish(ctx, bag_id):
    _client(ctx).post(f"/api/bags/{bag_id}/finish")
    click.echo(f"Bag {bag_id} finished")


@cli.group()
def brews():
    """Brews."""


@brews.command("list")
@click.option("--bag-id", type=int, default=None)
@click.pass_context
def brews_list(ctx, bag_id):
    for brew in _client(ctx).get("/api/brews", bag_id=bag_id)["brews"]:
        click.echo(f"{brew['created_at']}\t{brew['roast_name']}\t{brew['coffee_weight']:g}g\t{brew['ratio']}")


@brews.command("add")
@click.option("--bag-id", type=int, required=True)
@click.option("--coffee", "coffee_weight", type=float, required=True, help="Grams of coffee")
@click.option("--water", "water_volume", type=int, required=True, help="Millilitres of water")
@click.option("--temp", "water_temp", type=float, required=True, help="Water temperature in Celsius")
@click.option("--grind", "grind_setting", type=float, required=True)
@click.option("--grinder", default=None)
@click.option("--brewer", default=None)
@click.option("--time", "brew_time", type=int, default=None, help="Brew time in seconds")
@click.option("--note", "quick_notes", multiple=True,
              type=click.Choice(["good", "too-fast", "too-slow", "too-hot", "under-extracted", "over-extracted"]))
@click.pass_context
def brews_add(ctx, bag_id, coffee_weight, water_volume, water_temp, grind_setting, grinder, brewer,
              brew_time, quick_notes):
    payload = {
        "bag_id": bag_id, "coffee_weight": coffee_weight, "water_volume": water_volume,
        "water_temp": water_temp, "grind_setting": grind_setting, "grinder": grinder,
        "brewer": brewer, "brew_time": brew_time, "quick_notes": list(quick_notes),
    }
    _echo_json(_client(ctx).post("/api/brews", {k: v for k, v in payload.items() if v is not None}))


@cli.command()
@click.option("--page", type=int, default=1, show_default=True)
@click.option("--per-page", type=int, default=20, show_default=True)
@click.pass_context
def timeline(ctx, page, per_page):
    """Show recent activity, newest first."""
    data = _client(ctx).get("/api/timeline", page=page, per_page=per_page)
    for event in data["events"]:
        click.echo(f"{event['occurred_at']}\t{event['entity_type']}\t{event['action']}\t{event['title']}")


if __name__ == "__main__":
    cli()
