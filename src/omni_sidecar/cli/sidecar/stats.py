"""Fetching and reporting cache statistics before shutdown."""

from __future__ import annotations

import json

import httpx
from pydantic import ValidationError
from rich.table import Table

from omni_sidecar.cli.sidecar.address import base_url
from omni_sidecar.cli.sidecar.logging import SidecarLogComponent, get_logger
from omni_sidecar.cli.sidecar.runtime import ActionsRuntime, markdown_table
from omni_sidecar.constants import HTTP_TIMEOUT, METRICS_PATH, STATS_ACCEPT_HEADER
from omni_sidecar.models import CacheStats, format_count
from omni_sidecar.utils import console

logger = get_logger(SidecarLogComponent.STATS)

STATS_HEADING = "omni-cache Statistics"


def _get_metrics(host: str, client: httpx.Client | None) -> httpx.Response:
    url = f"{base_url(host)}{METRICS_PATH}"
    headers = {"Accept": STATS_ACCEPT_HEADER}
    if client is not None:
        return client.get(url, headers=headers)
    with httpx.Client(timeout=HTTP_TIMEOUT) as owned:
        return owned.get(url, headers=headers)


def render_stats_table(stats: CacheStats) -> Table:
    table = Table(title=STATS_HEADING, show_header=True, header_style="bold magenta")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right", style="green")
    for metric, value in stats.summary_rows():
        table.add_row(metric, value)
    return table


def report_stats(stats: CacheStats, runtime: ActionsRuntime | None = None) -> None:
    """Log the hit rate and record the Metric/Value table for the job."""
    logger.info(
        f"Cache hit rate: {stats.format_hit_rate()} "
        f"({format_count(stats.hits)} hits, {format_count(stats.misses)} misses)"
    )
    markdown = f"## {STATS_HEADING}\n\n" + markdown_table(
        ("Metric", "Value"), stats.summary_rows()
    )
    if runtime is None or not runtime.append_summary(markdown):
        console.print(render_stats_table(stats))


def fetch_stats(
    host: str,
    *,
    client: httpx.Client | None = None,
    runtime: ActionsRuntime | None = None,
) -> CacheStats | None:
    """Fetch ``/metrics/cache`` once; every failure degrades to a warning.

    Plain-text bodies are printed and yield None without a warning.
    """
    try:
        response = _get_metrics(host, client)
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        logger.warning(f"Could not fetch cache statistics: {e}")
        return None

    if not response.is_success:
        logger.warning(f"Failed to fetch stats: HTTP {response.status_code}")
        return None

    body = response.text.lstrip("\ufeff")
    trimmed = body.strip()
    if not trimmed:
        logger.debug("omni-cache stats endpoint returned empty response")
        return None

    logger.info(f"=== {STATS_HEADING} ===")
    logger.info(body.rstrip("\n"))

    if not trimmed.startswith(("{", "[")):
        return None

    try:
        data = json.loads(trimmed)
    except ValueError as e:
        logger.warning(f"Could not parse cache statistics JSON: {e}")
        return None

    if not isinstance(data, dict) or "hits" not in data or "misses" not in data:
        return None
    try:
        stats = CacheStats.model_validate(data)
    except ValidationError:
        logger.debug("Cache statistics carry non-numeric hits/misses")
        return None

    try:
        report_stats(stats, runtime)
    except OSError as e:
        logger.warning(f"Could not write cache statistics summary: {e}")
    return stats
