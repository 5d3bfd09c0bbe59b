"""
HTML report rendering.

The report is a single self-contained HTML file: narrative paragraphs,
tables rendered with pandas and figures embedded as base64 PNG.
"""

import base64
import html
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable

import pandas as pd

from acfl_abundance.qa import QAResult


STYLE = """
body { font-family: Georgia, serif; max-width: 60em; margin: 2em auto; line-height: 1.5; color: #222; }
h1, h2 { font-family: Helvetica, Arial, sans-serif; }
table.dataframe { border-collapse: collapse; margin: 1em 0; font-size: 0.9em; }
table.dataframe th, table.dataframe td { border: 1px solid #ccc; padding: 0.25em 0.6em; text-align: right; }
figure { margin: 1.5em 0; }
figure img { max-width: 100%; }
figcaption, .caption { font-style: italic; color: #555; }
.note { background: #fff8c5; padding: 0.5em 1em; border-left: 4px solid #d4a72c; }
"""


@dataclass
class ReportTable:
    caption: str
    data: pd.DataFrame
    float_format: str = "{:.4g}"


@dataclass
class ReportFigure:
    caption: str
    path: Path


@dataclass
class ReportSection:
    """One titled section of the report."""
    title: str
    paragraphs: list[str] = field(default_factory=list)
    tables: list[ReportTable] = field(default_factory=list)
    figures: list[ReportFigure] = field(default_factory=list)
    note: str | None = None


def embed_image(path: Path | str) -> str:
    """Data URI for a PNG file."""
    data = Path(path).read_bytes()
    return "data:image/png;base64," + base64.b64encode(data).decode("ascii")


def validation_table(results: Iterable[QAResult]) -> pd.DataFrame:
    """Expected-value check results as a table."""
    return pd.DataFrame(
        [{"check": r.check_name.removeprefix("expected_"), "result": "passed" if r.passed else "FAILED",
          "value": r.message} for r in results],
        columns=["check", "result", "value"],
    )


def _render_table(table: ReportTable) -> list[str]:
    body = table.data.to_html(
        index=False,
        border=0,
        float_format=lambda x: table.float_format.format(x),
        na_rep="",
    )
    return [f'<p class="caption">{html.escape(table.caption)}</p>', body]


def _render_figure(figure: ReportFigure) -> list[str]:
    return [
        "<figure>",
        f'<img src="{embed_image(figure.path)}" alt="{html.escape(figure.caption)}">',
        f"<figcaption>{html.escape(figure.caption)}</figcaption>",
        "</figure>",
    ]


def render_html(
    title: str,
    sections: Iterable[ReportSection],
    run_id: str | None = None,
) -> str:
    """Render sections into a complete HTML document."""
    generated = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")
    lines = [
        "<!DOCTYPE html>",
        '<html lang="en">',
        "<head>",
        '<meta charset="utf-8">',
        f"<title>{html.escape(title)}</title>",
        f"<style>{STYLE}</style>",
        "</head>",
        "<body>",
        f"<h1>{html.escape(title)}</h1>",
        f'<p class="caption">Generated {generated}' + (f" (run {html.escape(run_id)})" if run_id else "") + "</p>",
    ]

    for section in sections:
        lines.append(f"<h2>{html.escape(section.title)}</h2>")
        if section.note:
            lines.append(f'<p class="note">{html.escape(section.note)}</p>')
        for paragraph in section.paragraphs:
            lines.append(f"<p>{html.escape(paragraph)}</p>")
        for table in section.tables:
            lines.extend(_render_table(table))
        for figure in section.figures:
            lines.extend(_render_figure(figure))

    lines.extend(["</body>", "</html>"])
    return "\n".join(lines) + "\n"
