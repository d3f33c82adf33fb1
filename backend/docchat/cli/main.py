"""CLI entrypoint for DocChat."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional

import requests
import typer

from docchat.rag.citations import Citation, dedupe_citations, render_references

app = typer.Typer(name="docchat", help="DocChat command-line interface")

DEFAULT_HOST = "http://127.0.0.1:8000"


def _resolve_host(override: Optional[str]) -> str:
    if override:
        return override.rstrip('/')
    env_host = os.environ.get("DOCCHAT_HOST")
    if env_host:
        return env_host.rstrip('/')
    return DEFAULT_HOST


def _request(method: str, path: str, host: Optional[str] = None, **kwargs) -> requests.Response:
    base = _resolve_host(host)
    url = f"{base}{path}"
    kwargs.setdefault("timeout", 60)
    resp = requests.request(method, url, **kwargs)
    if not resp.ok:
        try:
            detail = resp.json()
        except ValueError:
            detail = resp.text
        typer.echo(f"Request failed ({resp.status_code}): {detail}", err=True)
        raise typer.Exit(code=1)
    return resp


def iter_sse_events(lines: Iterable[str]) -> Iterator[tuple[str, Any]]:
    """Group ``event:``/``data:`` lines into ``(event, decoded data)`` pairs."""
    event = "message"
    data: list[str] = []
    for line in lines:
        if not line:
            if data:
                yield event, json.loads("\n".join(data))
            event, data = "message", []
            continue
        if line.startswith("event:"):
            event = line[len("event:") :].strip()
        elif line.startswith("data:"):
            data.append(line[len("data:") :].strip())
    if data:
        yield event, json.loads("\n".join(data))


@app.command()
def ingest(
    paths: list[Path] = typer.Argument(..., help="Markdown files, issue exports or directories"),
    base_url: Optional[str] = typer.Option(None, "--base-url", help="Public URL prefix used for citations"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Index local documentation."""
    body: dict[str, object] = {"paths": [str(path.expanduser().resolve()) for path in paths]}
    if base_url:
        body["base_url"] = base_url
    resp = _request("POST", "/ingest", host=host, json=body, timeout=None)
    typer.echo(json.dumps(resp.json(), indent=2))


@app.command()
def search(
    q: str = typer.Argument(..., help="Query text"),
    limit: int = typer.Option(10, "--limit", help="Number of results to return"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Search the documentation index."""
    resp = _request("POST", "/api/search", host=host, json={"query": q, "limit": limit})
    typer.echo(json.dumps(resp.json(), indent=2))


@app.command()
def chat(
    q: str = typer.Argument(..., help="Question to ask"),
    raw: bool = typer.Option(False, "--raw", help="Print answer deltas as they arrive, without reference remapping"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Ask a question and print the grounded answer with its sources."""
    payload = {"messages": [{"role": "user", "content": q}]}
    resp = _request("POST", "/api/chat", host=host, json=payload, stream=True, timeout=None)
    citations: list[Citation] = []
    answer: list[str] = []
    follow_ups: list[str] = []
    with resp:
        for event, data in iter_sse_events(resp.iter_lines(decode_unicode=True)):
            if event == "citations":
                citations = [Citation(**item) for item in data]
            elif event == "text":
                answer.append(data)
                if raw:
                    typer.echo(data, nl=False)
            elif event == "followUpPrompts":
                follow_ups = list(data)
            elif event == "error":
                typer.echo(f"\nError: {data.get('message')}", err=True)
                raise typer.Exit(code=1)

    if raw:
        typer.echo()
    else:
        typer.echo(render_references("".join(answer), citations))

    sources = dedupe_citations(citations)
    if sources:
        typer.echo("\nSources:")
        for citation in sources:
            typer.echo(f"  [{citation.index}] {citation.title} - {citation.url}")
    if follow_ups:
        typer.echo("\nYou might also ask:")
        for prompt in follow_ups:
            typer.echo(f"  - {prompt}")


@app.command()
def stats(
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Show document and embedding cache counts."""
    resp = _request("GET", "/stats", host=host)
    typer.echo(json.dumps(resp.json(), indent=2))


if __name__ == "__main__":
    app()
