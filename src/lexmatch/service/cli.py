"""CLI tool for annotating text with a running lexmatch service.

Usage:
    lexmatch-query "NF-kappaB activity in T cells" -v genes --threshold 0.6 -i -H
    lexmatch-query "aspirin" -v drugs --threshold 1 --json
"""

from __future__ import annotations

import json
import sys
from typing import Any

import click
import httpx


def _format_table(text: str, denotations: list[dict[str, Any]]) -> str:
    """Format denotations as a terminal table."""
    if not denotations:
        return "No annotations found."

    lines = [
        "Begin  End    Score   Dictionary    Identifier    Span",
        "-----  ---    -----   ----------    ----------    ----",
    ]
    for d in denotations:
        begin, end = d["begin"], d["end"]
        span = text[begin:end]
        if len(span) > 40:
            span = span[:37] + "..."
        lines.append(
            f"{begin:<7}{end:<7}{d['score']:<8.4f}{d['dictionary'][:12]:<14}{d['identifier'][:12]:<14}{span}"
        )
    return "\n".join(lines)


@click.command()
@click.argument("text")
@click.option("--vocabulary", "-v", "vocabularies", multiple=True, required=True,
              help="Vocabulary to match against (repeatable)")
@click.option("--url", default="http://localhost:8000",
              help="Service URL (default: http://localhost:8000)")
@click.option("--threshold", type=float, default=None,
              help="Similarity threshold in (0, 1]; 1 means exact label match")
@click.option("--min-tokens", type=int, default=None)
@click.option("--max-tokens", type=int, default=None)
@click.option("--all", "keep_all", is_flag=True,
              help="Keep every hit above threshold instead of only the top-scoring ones")
@click.option("--tag", "tags", multiple=True, help="Required entry tag (repeatable)")
@click.option("--case-insensitive", "-i", is_flag=True)
@click.option("--replace-hyphen", "-H", is_flag=True)
@click.option("--stemming", is_flag=True)
@click.option("--json", "json_output", is_flag=True,
              help="Output raw JSON instead of formatted text")
def main(
    text: str,
    vocabularies: tuple[str, ...],
    url: str,
    threshold: float | None,
    min_tokens: int | None,
    max_tokens: int | None,
    keep_all: bool,
    tags: tuple[str, ...],
    case_insensitive: bool,
    replace_hyphen: bool,
    stemming: bool,
    json_output: bool,
) -> None:
    """Annotate TEXT with the lexmatch service."""
    payload: dict[str, Any] = {
        "text": text,
        "vocabularies": list(vocabularies),
        "ranking": "all" if keep_all else "top",
        "tags": list(tags),
        "case_insensitive": case_insensitive,
        "replace_hyphen": replace_hyphen,
        "stemming": stemming,
    }
    for key, value in (("threshold", threshold), ("min_tokens", min_tokens), ("max_tokens", max_tokens)):
        if value is not None:
            payload[key] = value

    try:
        response = httpx.post(f"{url}/annotate", json=payload, timeout=90)
        response.raise_for_status()
        data = response.json()
    except httpx.ConnectError:
        click.echo(f"Error: Could not connect to service at {url}", err=True)
        sys.exit(1)
    except httpx.TimeoutException:
        click.echo(f"Error: Request to {url} timed out", err=True)
        sys.exit(1)
    except httpx.HTTPStatusError as e:
        click.echo(f"Error: Service returned {e.response.status_code}: {e.response.text}", err=True)
        sys.exit(1)
    except json.JSONDecodeError:
        click.echo("Error: Invalid JSON response from service", err=True)
        sys.exit(1)

    if json_output:
        click.echo(json.dumps(data, indent=2))
    else:
        click.echo(_format_table(text, data.get("denotations", [])))


if __name__ == "__main__":
    main()
