#!/usr/bin/env python
# /// script
# requires-python = ">=3.8"
# dependencies = [
#     "click",
#     "python-dotenv",
#     "requests",
#     "rich",
#     "urllib3",
# ]
# ///

# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at http://mozilla.org/MPL/2.0/.

# Usage: uv run check_pingdom_aggregates.py -k APP_KEY [-w COUNT] [-c COUNT] [-t SECS] [-v]
#
# Monitoring check that alerts when too many Pingdom checks are down.

"""
Alerts if too many websites are down in the Pingdom account.
"""

from dataclasses import dataclass
import os
import sys
from typing import Any, Dict, List, Optional, Tuple

import click
from dotenv import load_dotenv
import requests
from rich.console import Console
from rich.table import Table
from urllib3.exceptions import ReadTimeoutError


load_dotenv()


PINGDOM_API_TOKEN = os.getenv("PINGDOM_API_TOKEN")

PINGDOM_API_URL = "https://api.pingdom.com/api/3.1"

CHECK_NAME = "CheckPingdomAggregates"

OK = 0
WARNING = 1
CRITICAL = 2
UNKNOWN = 3

STATUS_NAMES = {
    OK: "OK",
    WARNING: "WARNING",
    CRITICAL: "CRITICAL",
    UNKNOWN: "UNKNOWN",
}

# stdout belongs to the monitoring dispatcher
console = Console(stderr=True)


class PingdomAPIError(Exception):
    """Fetching the checks list failed; the message is what gets reported."""


@dataclass(frozen=True)
class ThresholdConfig:
    application_key: str
    warn: int = 1
    crit: int = 1
    timeout: int = 10
    verbose: bool = False
    debug: bool = False


def mask(token):
    if len(token) <= 4:
        return "*" * len(token)
    return f"{'*' * (len(token) - 4)}{token[-4:]}"


def _in_chain(exc, types):
    """Returns True if an exception of ``types`` is somewhere in the chain.

    requests wraps socket and urllib3 errors (MaxRetryError,
    NewConnectionError, ReadTimeoutError), so walk causes, contexts,
    ``reason`` and args.
    """
    seen = set()
    pending = [exc]
    while pending:
        item = pending.pop()
        if not isinstance(item, BaseException) or id(item) in seen:
            continue
        seen.add(id(item))
        if isinstance(item, types):
            return True
        pending.extend([item.__cause__, item.__context__, getattr(item, "reason", None)])
        pending.extend(item.args)
    return False


def api_call(config: ThresholdConfig) -> Dict[str, Any]:
    """
    Return the decoded body of GET /checks.

    :raises PingdomAPIError: if the request fails in any anticipated way
    """
    url = f"{PINGDOM_API_URL}/checks"
    headers = {
        "Authorization": f"Bearer {config.application_key}",
        "Accept-Encoding": "gzip",
    }

    if config.debug:
        console.print(f"Using: {url}")
        console.print(f"Using: {mask(config.application_key)}")

    try:
        resp = requests.get(url, headers=headers, timeout=config.timeout)
        resp.raise_for_status()
    except requests.exceptions.Timeout as exc:
        raise PingdomAPIError("Connection timeout") from exc
    except requests.exceptions.ConnectionError as exc:
        # a read timeout while streaming the body surfaces as ConnectionError
        if _in_chain(exc, (ReadTimeoutError, TimeoutError)):
            raise PingdomAPIError("Connection timeout") from exc
        if _in_chain(exc, ConnectionRefusedError):
            raise PingdomAPIError("Connection refused") from exc
        raise PingdomAPIError("Network unavailable") from exc
    except requests.exceptions.ChunkedEncodingError as exc:
        raise PingdomAPIError("Network unavailable") from exc
    except requests.exceptions.HTTPError as exc:
        status_code = exc.response.status_code
        if status_code == 401:
            raise PingdomAPIError("Missing or incorrect API credentials") from exc
        if status_code == 408:
            raise PingdomAPIError("Connection timed out") from exc
        raise PingdomAPIError("Request failed") from exc
    except requests.exceptions.RequestException as exc:
        # ContentDecodingError, TooManyRedirects and the like
        raise PingdomAPIError("Request failed") from exc

    if config.debug:
        console.print(f"HTTP {resp.status_code}")

    try:
        data = resp.json()
    except requests.exceptions.JSONDecodeError as exc:
        raise PingdomAPIError("API returned invalid JSON") from exc

    if not isinstance(data, dict) or not isinstance(data.get("checks"), list):
        raise PingdomAPIError("API returned invalid JSON")

    return data


def down_checks(config: ThresholdConfig) -> List[Dict[str, Any]]:
    checks = api_call(config)["checks"]

    if config.debug:
        table = Table()
        table.add_column("name")
        table.add_column("status")
        for check in checks:
            table.add_row(str(check.get("name")), str(check.get("status")))
        console.print(table)

    return [check for check in checks if check.get("status") == "down"]


def details(config: ThresholdConfig, down: List[Dict[str, Any]]) -> Optional[str]:
    if not config.verbose:
        return None
    return ":\n" + "\n".join(f"{check['name']} is down" for check in down)


def run(config: ThresholdConfig) -> Tuple[int, str]:
    """
    Fetch the checks once and compare the number down against the thresholds.

    Critical is evaluated before warning, so with ``warn > crit`` the warning
    tier can't be reached for counts at or above ``crit``.
    """
    try:
        down = down_checks(config)
    except PingdomAPIError as exc:
        return WARNING, str(exc)

    down_count = len(down)

    if down_count >= config.crit:
        return CRITICAL, f"There are {down_count} pingdom checks down{details(config, down) or ''}"
    if down_count >= config.warn:
        return WARNING, f"There are {down_count} pingdom checks down{details(config, down) or ''}"
    return OK, f"There are less than {config.warn} checks down"


@click.command()
@click.option("-k", "--application-key", metavar="APP_KEY", default=None)
@click.option("-w", "warn", metavar="COUNT", type=click.IntRange(min=0), default=1, show_default=True)
@click.option("-c", "crit", metavar="COUNT", type=click.IntRange(min=0), default=1, show_default=True)
@click.option("-t", "timeout", metavar="SECS", type=click.IntRange(min=1), default=10, show_default=True)
@click.option("-v", "verbose", is_flag=True, default=False)
@click.option("--debug/--no-debug", default=False)
@click.pass_context
def main(ctx, application_key, warn, crit, timeout, verbose, debug):
    """
    Alerts if too many websites are down in the Pingdom account.

    Exits 0 (ok), 1 (warning), 2 (critical) or 3 (unknown). Use -v to list
    the checks that are down.

    Create a Pingdom API token and pass it with -k or set this in the
    `.env` file:

    \b
    * PINGDOM_API_TOKEN
    """

    application_key = application_key or PINGDOM_API_TOKEN
    if not application_key:
        raise click.UsageError("No application key: pass -k or set PINGDOM_API_TOKEN")

    config = ThresholdConfig(
        application_key=application_key,
        warn=warn,
        crit=crit,
        timeout=timeout,
        verbose=verbose,
        debug=debug,
    )

    try:
        status, message = run(config)
    except Exception as exc:
        if debug:
            console.print_exception()
        status, message = UNKNOWN, f"Check failed to run: {exc}"

    click.echo(f"{CHECK_NAME} {STATUS_NAMES[status]}: {message}")
    ctx.exit(status)


def cli():
    """Console entry point; usage errors exit UNKNOWN instead of click's 2."""
    try:
        status = main.main(standalone_mode=False)
    except click.ClickException as exc:
        exc.show()
        status = UNKNOWN
    except click.Abort:
        click.echo("Aborted!", err=True)
        status = UNKNOWN
    sys.exit(status)


if __name__ == "__main__":
    cli()
