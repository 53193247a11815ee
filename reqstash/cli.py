"""reqstash CLI - saved HTTP requests with chained responses."""

import json
import sys

import click

from reqstash import proxy
from reqstash.core import (
    configure_logging,
    load_config,
    load_env,
    resolve_config_path,
    resolve_store_path,
    resolve_timeout,
)
from reqstash.errors import NotFoundError
from reqstash.models import Variable
from reqstash.store import DocumentStore

TOOL_HELP = """\
reqstash - saved HTTP requests with variables and response chaining.

Requests, environments and groups live in one JSON file
(saved_requests.json in CWD unless configured otherwise).

\b
TEMPLATES
─────────
  {{key}}              variable from the current environment
                       (value "$NAME" reads the NAME environment variable)
  {{"Login".token}}    field of the last response recorded for "Login"
  {{"Login".response}} the whole last response body

  Inside a JSON body, "{{\\"Login\\".user}}" (quoted) splices the object
  itself instead of a string.

\b
EXAMPLES
────────
  reqstash request add Login https://api.example.com/login -X POST \\
      -b '{"user":"{{user}}","password":"{{password}}"}'
  reqstash env set user=admin password='$API_PASSWORD'
  reqstash send Login
  reqstash request add Me https://api.example.com/me \\
      -H 'Authorization: Bearer {{"Login".token}}'
  reqstash send Me

\b
CONFIG
──────
  .reqstash.yaml in CWD, then ~/.reqstash/config.yaml:

    defaults:
      store_file: saved_requests.json   # relative to the config file
      timeout: 30
      env_file: .env
      log_level: WARNING
"""


@click.group(help=TOOL_HELP, context_settings={"max_content_width": 88})
@click.option(
    "-c",
    "--config",
    "config_file",
    default=None,
    help="Config file path. Default: .reqstash.yaml in CWD, then ~/.reqstash/config.yaml.",
)
@click.option(
    "--store",
    "store_path",
    default=None,
    help="Document file. Default: store_file from config, else ./saved_requests.json.",
)
@click.option(
    "--log-level",
    default=None,
    help="Logging level (DEBUG, INFO, WARNING, ERROR). Default: WARNING.",
)
@click.pass_context
def main(ctx, config_file, store_path, log_level):
    config_path = resolve_config_path(config_file)
    config = load_config(config_path)
    defaults = config.get("defaults", {})

    configure_logging(log_level or defaults.get("log_level"))

    ctx.obj = {
        "store": DocumentStore(resolve_store_path(store_path, config)),
        "env": load_env(defaults.get("env_file")),
        "defaults": defaults,
    }


# ── Execution ────────────────────────────────────────────────────────────


@main.command("send")
@click.argument("name")
@click.option("--timeout", type=int, default=None, help="Request timeout in seconds. Default: 30.")
@click.option("--verbose", is_flag=True, default=False, help="Include response headers.")
@click.option("--raw", is_flag=True, default=False, help="Output the body only.")
@click.pass_obj
def send_cmd(obj, name, timeout, verbose, raw):
    """Resolve and send a saved request, recording its response."""
    result = proxy.send(
        obj["store"],
        name,
        timeout=resolve_timeout(timeout, obj["defaults"].get("timeout")),
        env=obj["env"],
    )
    _emit(result, verbose, raw)


@main.command("proxy")
@click.argument("method")
@click.argument("url")
@click.option("-H", "--header", multiple=True, help="HTTP header as 'Name: Value'. Repeatable.")
@click.option("-b", "--body", default=None, help="Request body.")
@click.option("--timeout", type=int, default=None, help="Request timeout in seconds. Default: 30.")
@click.option("--verbose", is_flag=True, default=False, help="Include response headers.")
@click.option("--raw", is_flag=True, default=False, help="Output the body only.")
@click.pass_obj
def proxy_cmd(obj, method, url, header, body, timeout, verbose, raw):
    """Send an ad-hoc request, resolving templates. Nothing is saved."""
    result = proxy.proxy(
        obj["store"],
        url,
        method=method.upper(),
        headers=_parse_headers(header),
        body=body,
        timeout=resolve_timeout(timeout, obj["defaults"].get("timeout")),
        env=obj["env"],
    )
    _emit(result, verbose, raw)


@main.command("resolve")
@click.argument("text")
@click.pass_obj
def resolve_cmd(obj, text):
    """Print TEXT with every template token resolved."""
    click.echo(proxy.resolve_text(obj["store"], text, env=obj["env"]))


# ── Requests ─────────────────────────────────────────────────────────────


@main.group("request")
def request_group():
    """Manage saved requests."""


@request_group.command("list")
@click.pass_obj
def request_list(obj):
    requests = obj["store"].list_requests()
    if not requests:
        click.echo("No saved requests.")
        return
    by_group = {}
    for req in requests:
        by_group.setdefault(req.group, []).append(req)
    for group, items in by_group.items():
        click.echo(f"{group}:")
        for req in items:
            marker = " *" if req.last_response is not None else ""
            click.echo(f"  {req.name}  {req.method:<6} {req.url}  ({req.id}){marker}")


@request_group.command("show")
@click.argument("name")
@click.pass_obj
def request_show(obj, name):
    req = proxy.find_saved(obj["store"], name)
    click.echo(json.dumps(req.to_dict(), indent=2, ensure_ascii=False))


@request_group.command("add")
@click.argument("name")
@click.argument("url")
@click.option("-X", "--method", default="GET", help="HTTP method. Default: GET.")
@click.option("-H", "--header", multiple=True, help="HTTP header as 'Name: Value'. Repeatable.")
@click.option("-b", "--body", default=None, help="Request body (JSON is stored structured).")
@click.option("-g", "--group", default="", help="Group name. Default: default.")
@click.option("-d", "--description", default="", help="Free-form description.")
@click.pass_obj
def request_add(obj, name, url, method, header, body, group, description):
    req = obj["store"].create_request(
        name,
        url,
        method=method.upper(),
        headers=_parse_headers(header),
        body=body,
        group=group,
        description=description,
    )
    click.echo(f"Saved {req.name} ({req.id})")


@request_group.command("update")
@click.argument("name")
@click.option("--name", "new_name", default=None, help="Rename the request.")
@click.option("--url", default=None, help="New URL.")
@click.option("-X", "--method", default=None, help="New HTTP method.")
@click.option("-H", "--header", multiple=True, help="Set header 'Name: Value'. Repeatable.")
@click.option("-b", "--body", default=None, help="New request body.")
@click.option("-g", "--group", default=None, help="Move to group.")
@click.option("-d", "--description", default=None, help="New description.")
@click.pass_obj
def request_update(obj, name, new_name, url, method, header, body, group, description):
    store = obj["store"]
    req = proxy.find_saved(store, name)
    headers = {**req.headers, **_parse_headers(header)}
    updated = store.update_request(
        req.id,
        new_name or req.name,
        url or req.url,
        method=(method or req.method).upper(),
        headers=headers,
        body=req.body if body is None else body,
        body_type=req.body_type,
        body_text=req.body_text,
        body_json=req.body_json,
        body_form=req.body_form,
        params=req.params,
        group=req.group if group is None else group,
        description=req.description if description is None else description,
    )
    click.echo(f"Updated {updated.name} ({updated.id})")


@request_group.command("rm")
@click.argument("name")
@click.pass_obj
def request_rm(obj, name):
    store = obj["store"]
    req = store.delete_request(proxy.find_saved(store, name).id)
    click.echo(f"Deleted {req.name}")


@request_group.command("dup")
@click.argument("name")
@click.pass_obj
def request_dup(obj, name):
    store = obj["store"]
    dup = store.duplicate_request(proxy.find_saved(store, name).id)
    click.echo(f"Duplicated as {dup.name} ({dup.id})")


# ── Environments ─────────────────────────────────────────────────────────


@main.group("env")
def env_group():
    """Manage environments and their variables."""


@env_group.command("list")
@click.pass_obj
def env_list(obj):
    environments, current = obj["store"].list_environments()
    for env in environments:
        marker = "*" if env.id == current else " "
        click.echo(f"{marker} {env.name}  ({env.id}, {len(env.variables)} vars)")


@env_group.command("add")
@click.argument("name")
@click.pass_obj
def env_add(obj, name):
    env = obj["store"].create_environment(name)
    click.echo(f"Created environment {env.name} ({env.id})")


@env_group.command("rename")
@click.argument("env")
@click.argument("name")
@click.pass_obj
def env_rename(obj, env, name):
    store = obj["store"]
    updated = store.update_environment(_env_id(store, env), name=name)
    click.echo(f"Renamed to {updated.name}")


@env_group.command("rm")
@click.argument("env")
@click.pass_obj
def env_rm(obj, env):
    store = obj["store"]
    removed = store.delete_environment(_env_id(store, env))
    click.echo(f"Deleted environment {removed.name}")


@env_group.command("use")
@click.argument("env")
@click.pass_obj
def env_use(obj, env):
    store = obj["store"]
    activated = store.activate_environment(_env_id(store, env))
    click.echo(f"Current environment: {activated.name}")


@env_group.command("copy")
@click.argument("target")
@click.argument("source")
@click.pass_obj
def env_copy(obj, target, source):
    """Replace TARGET's variables with a copy of SOURCE's."""
    store = obj["store"]
    updated = store.copy_environment(_env_id(store, target), _env_id(store, source))
    click.echo(f"Copied {len(updated.variables)} variables into {updated.name}")


@env_group.command("vars")
@click.pass_obj
def env_vars(obj):
    """List the current environment's variables with resolved values."""
    variables = obj["store"].list_variables(env=obj["env"])
    if not variables:
        click.echo("No variables.")
        return
    for v in variables:
        if v.is_env_var:
            click.echo(f"  {v.key} = {v.value} → {v.resolved_value}")
        else:
            click.echo(f"  {v.key} = {v.value}")


@env_group.command("set")
@click.argument("assignments", nargs=-1, required=True)
@click.option("--replace", is_flag=True, default=False, help="Drop variables not listed.")
@click.pass_obj
def env_set(obj, assignments, replace):
    """Set KEY=VALUE variables in the current environment."""
    store = obj["store"]
    variables = [] if replace else list(store.current_environment().variables)
    for spec in assignments:
        if "=" not in spec:
            raise click.BadParameter(f"expected KEY=VALUE, got {spec!r}")
        key, value = spec.split("=", 1)
        key = key.strip()
        for existing in variables:
            if existing.key == key:
                existing.value = value
                break
        else:
            variables.append(Variable(key=key, value=value))
    env = store.save_variables(variables)
    click.echo(f"Saved {len(env.variables)} variables to {env.name}")


@env_group.command("unset")
@click.argument("keys", nargs=-1, required=True)
@click.pass_obj
def env_unset(obj, keys):
    """Remove variables from the current environment."""
    store = obj["store"]
    variables = [v for v in store.current_environment().variables if v.key not in keys]
    env = store.save_variables(variables)
    click.echo(f"Saved {len(env.variables)} variables to {env.name}")


# ── Groups and settings ──────────────────────────────────────────────────


@main.group("group")
def group_group():
    """Manage request groups."""


@group_group.command("list")
@click.pass_obj
def group_list(obj):
    for group in obj["store"].list_groups():
        click.echo(f"  {group.name}  ({group.id})")


@group_group.command("add")
@click.argument("name")
@click.pass_obj
def group_add(obj, name):
    group = obj["store"].create_group(name)
    click.echo(f"Created group {group.name} ({group.id})")


@group_group.command("rm")
@click.argument("group")
@click.pass_obj
def group_rm(obj, group):
    store = obj["store"]
    removed = store.delete_group(_group_id(store, group))
    click.echo(f"Deleted group {removed.name}")


@main.command("word-wrap")
@click.argument("state", type=click.Choice(["on", "off"]))
@click.pass_obj
def word_wrap_cmd(obj, state):
    """Persist the UI word-wrap setting."""
    obj["store"].set_word_wrap(state == "on")
    click.echo(f"Word wrap {state}")


# ── Helpers ──────────────────────────────────────────────────────────────


def _emit(result, verbose, raw):
    if result.error:
        click.echo(f"ERROR: {result.error}", err=True)
        sys.exit(1)
    click.echo(_format_response(result, verbose=verbose, raw=raw))


def _format_response(result, verbose=False, raw=False):
    """STATUS / TIME / HEADERS / BODY block, or the bare body with raw."""
    value = result.body.to_raw()
    if raw:
        if isinstance(value, dict | list):
            return json.dumps(value, indent=2, ensure_ascii=False)
        return str(value)

    lines = [f"STATUS: {result.status or result.status_code}"]
    lines.append(f"TIME: {int(result.elapsed_ms)}ms")

    if verbose and result.headers:
        lines.append("HEADERS:")
        for key, val in result.headers.items():
            lines.append(f"  {key}: {val}")

    if value != "":
        lines.append("BODY:")
        if isinstance(value, dict | list):
            lines.append(json.dumps(value, indent=2, ensure_ascii=False))
        else:
            lines.append(str(value))

    return "\n".join(lines)


def _parse_headers(header_tuples):
    """Parse -H 'Name: Value' tuples into a dict."""
    headers = {}
    for h in header_tuples:
        if ":" in h:
            k, v = h.split(":", 1)
            headers[k.strip()] = v.strip()
    return headers


def _env_id(store, ref):
    """Accept an environment id or name."""
    environments, _ = store.list_environments()
    for env in environments:
        if env.id == ref:
            return env.id
    for env in environments:
        if env.name == ref:
            return env.id
    raise NotFoundError(f"Environment not found: {ref}")


def _group_id(store, ref):
    """Accept a group id or name."""
    groups = store.list_groups()
    for group in groups:
        if group.id == ref:
            return group.id
    for group in groups:
        if group.name == ref:
            return group.id
    raise NotFoundError("Group not found")
