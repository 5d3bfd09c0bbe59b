"""
Citation history from a Google Scholar profile.

The most cited publication on the profile is looked up and its per-year
citation counts are read from the bar chart on its citation page.
"""

import logging
import re
from typing import Sequence

import numpy as np
import pandas as pd
import requests

from acfl_abundance.logging_utils import log_step_start, log_step_end


class CitationServiceError(Exception):
    """Raised when citation data cannot be retrieved or parsed."""
    pass


USER_AGENT = "Mozilla/5.0 (X11; Linux x86_64) acfl-abundance citation check"

PUBLICATION_ID = re.compile(r"citation_for_view=[^:&\"]+:([A-Za-z0-9_-]+)")
CHART_YEAR = re.compile(r'<span class="gsc_oci_g_t"[^>]*>\s*(\d{4})\s*</span>')
CHART_BAR = re.compile(r'<a[^>]*class="gsc_oci_g_a"[^>]*>.*?</a>', re.DOTALL)
BAR_INDEX = re.compile(r"z-index:\s*(\d+)")
BAR_VALUE = re.compile(r'<span class="gsc_oci_g_al"[^>]*>\s*([\d,]+)\s*</span>')


def fetch_page(url: str, params: dict, timeout: float = 30) -> str:
    """
    GET a page and return its body.

    Raises:
        CitationServiceError: On network failure or a non-2xx response.
    """
    try:
        response = requests.get(url, params=params, timeout=timeout,
                                headers={"User-Agent": USER_AGENT})
        response.raise_for_status()
    except requests.RequestException as e:
        raise CitationServiceError(f"Request to {url} failed: {e}") from e
    return response.text


def parse_publication_ids(html: str) -> list[str]:
    """Publication IDs on a profile page, in page order, without repeats."""
    seen = []
    for pub_id in PUBLICATION_ID.findall(html):
        if pub_id not in seen:
            seen.append(pub_id)
    return seen


def parse_citation_history(html: str) -> pd.DataFrame:
    """
    Per-year citation counts from a publication's citation page.

    Bars are matched to years through their z-index, which counts back from
    the most recent year. Years without a bar have zero citations.

    Raises:
        CitationServiceError: If the page has no citation chart.
    """
    years = [int(y) for y in CHART_YEAR.findall(html)]
    if not years:
        raise CitationServiceError("No citation chart found on the publication page")

    cites = dict.fromkeys(years, 0)
    for bar in CHART_BAR.findall(html):
        index = BAR_INDEX.search(bar)
        value = BAR_VALUE.search(bar)
        if index is None or value is None:
            raise CitationServiceError(f"Unrecognized citation bar: {bar[:120]}")
        z = int(index.group(1))
        if not 1 <= z <= len(years):
            raise CitationServiceError(f"Citation bar z-index {z} outside {len(years)} chart years")
        cites[years[len(years) - z]] = int(value.group(1).replace(",", ""))

    return pd.DataFrame({"year": list(cites), "cites": list(cites.values())}).astype("int64")


def get_citation_history(
    scholar_id: str,
    base_url: str = "https://scholar.google.com",
    timeout: float = 30,
    publication: int = 0,
    logger: logging.Logger | None = None,
) -> pd.DataFrame:
    """
    Citation history of one publication on a Scholar profile.

    Args:
        scholar_id: Profile user ID.
        base_url: Scholar host.
        timeout: Request timeout in seconds.
        publication: Position of the publication on the profile page
            (sorted by citations, so 0 is the most cited).

    Raises:
        CitationServiceError: On network or parse failure.
    """
    if logger:
        log_step_start(logger, "get_citation_history", scholar_id=scholar_id)

    profile = fetch_page(f"{base_url}/citations",
                         {"user": scholar_id, "hl": "en", "cstart": 0, "pagesize": 100},
                         timeout)
    pub_ids = parse_publication_ids(profile)
    if len(pub_ids) <= publication:
        raise CitationServiceError(
            f"Profile {scholar_id} lists {len(pub_ids)} publications; wanted position {publication}"
        )
    pub_id = pub_ids[publication]

    page = fetch_page(f"{base_url}/citations",
                      {"view_op": "view_citation", "hl": "en", "user": scholar_id,
                       "citation_for_view": f"{scholar_id}:{pub_id}"},
                      timeout)
    history = parse_citation_history(page)

    if logger:
        logger.info(f"Publication {pub_id}: {len(history)} years, {int(history['cites'].sum()):,} citations")
        log_step_end(logger, "get_citation_history", publication_id=pub_id, n_years=len(history))

    return history


def citation_statistics(history: pd.DataFrame, year_range: Sequence[int], recent_years: int = 5) -> dict:
    """
    Summary of citations within an inclusive year range.

    Returns:
        Dict with n_years, total_cites and mean_recent_cites (mean over
        the last ``recent_years`` years of the range).
    """
    lo, hi = int(year_range[0]), int(year_range[1])
    window = history[(history["year"] >= lo) & (history["year"] <= hi)].sort_values("year")
    recent = window["cites"].tail(recent_years)
    return {
        "n_years": int(len(window)),
        "total_cites": int(window["cites"].sum()),
        "mean_recent_cites": float(recent.mean()) if len(recent) else float(np.nan),
    }
