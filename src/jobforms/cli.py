from __future__ import annotations
import json
import typer
from typing import Any, Dict, List, Optional
from pathlib import Path

from .config import Settings, load_settings
from .forms.classifier import FieldClassifier
from .forms.engine import FormDetectionEngine
from .forms.scorer import PageContext
from .forms.strategies.common import containers_with_fields, unique_containers
from .models import DetectedForm, FormChangeEvent, FormDetectionResult
from .monitor import ChangeHistory, FormMonitor, ManualScheduler, SyntheticFeed
from .snapshot import load_frame_trees, load_snapshot_tree
from .tracing import event, init_tracing, shutdown_tracing
from .tree import Node, PageTree, parse_html

app = typer.Typer(add_completion=False, no_args_is_help=True)

_STATE: Dict[str, Any] = {}


@app.callback()
def _root(
    trace: Optional[Path] = typer.Option(None, "--trace", help="Write eliot JSONL trace events to this file"),
    trace_level: Optional[str] = typer.Option(None, "--trace-level", help="TRACE, DEBUG or INFO"),
) -> None:
    settings = load_settings()
    _STATE["settings"] = settings
    path = trace or settings.trace_path
    if path:
        init_tracing(run_name="jobforms", log_path=path, min_level=trace_level or settings.trace_level)


def _settings() -> Settings:
    return _STATE.get("settings") or load_settings()


def _engine() -> FormDetectionEngine:
    s = _settings()
    return FormDetectionEngine(s.detection, s.platforms, s.weights)


def _load(html_file: Path, url: str, referrer: str) -> PageTree:
    if not html_file.exists():
        typer.echo(f"❌ File not found: {html_file}")
        raise typer.Exit(code=2)
    return parse_html(html_file.read_text(encoding="utf-8"), url=url, referrer=referrer)


def _print_result(result: FormDetectionResult, as_json: bool) -> None:
    if as_json:
        typer.echo(json.dumps(result.model_dump(mode="json"), indent=2))
        return
    data = result.platform_specific_data
    typer.echo(f"Platform: {data.get('detected_platform')}  method: {data.get('detection_method')}  success: {result.success}")
    if not result.forms:
        typer.echo("No application forms detected.")
    for form in result.forms:
        steps = f"  step {form.current_step}/{form.total_steps}" if form.is_multi_step else ""
        typer.echo(f"\n📋 {form.form_id}  confidence={form.confidence:.3f}  fields={len(form.fields)}{steps}")
        if form.job_context:
            typer.echo(f"   {form.job_context.title} @ {form.job_context.company}")
        for f in form.fields:
            req = "*" if f.required else " "
            mapped = f" -> {f.mapped_profile_field}" if f.mapped_profile_field else ""
            typer.echo(f"   {req} [{f.type.value}] {f.label} ({f.selector}){mapped}")
    for err in result.errors:
        typer.echo(f"⚠️  {err.code.value}: {err.message}")


@app.command()
def detect(
    html_file: Path = typer.Argument(..., help="Saved HTML page to analyse"),
    url: str = typer.Option("", "--url", help="URL the page was loaded from"),
    referrer: str = typer.Option("", "--referrer", help="Referrer of the page, if any"),
    as_json: bool = typer.Option(False, "--json", help="Print the full result as JSON"),
) -> None:
    """Detect job application forms in a saved HTML page."""
    tree = _load(html_file, url, referrer)
    result = _engine().detect(tree)
    _print_result(result, as_json)
    shutdown_tracing()


@app.command("detect-snapshot")
def detect_snapshot(
    directory: Path = typer.Argument(..., help="Snapshot directory containing manifest.json"),
    as_json: bool = typer.Option(False, "--json", help="Print results as JSON"),
) -> None:
    """Run detection on a saved snapshot, including its saved frames."""
    if not (directory / "manifest.json").exists():
        typer.echo(f"❌ manifest.json not found in {directory}")
        raise typer.Exit(code=2)
    tree, manifest = load_snapshot_tree(directory)
    engine = _engine()
    results = [("main", engine.detect(tree))]
    for i, frame_tree in enumerate(load_frame_trees(manifest)):
        results.append((f"frame[{i}]", engine.detect(frame_tree)))
    event("CLI", "INFO", "snapshot_detected", directory=str(directory), trees=len(results))
    if as_json:
        typer.echo(json.dumps({name: r.model_dump(mode="json") for name, r in results}, indent=2))
    else:
        for name, result in results:
            typer.echo(f"\n===== {name} =====")
            _print_result(result, False)
    shutdown_tracing()


@app.command()
def breakdown(
    html_file: Path = typer.Argument(..., help="Saved HTML page to analyse"),
    url: str = typer.Option("", "--url", help="URL the page was loaded from"),
) -> None:
    """Show the confidence factor breakdown for every candidate container."""
    tree = _load(html_file, url, "")
    engine = _engine()
    platform = engine.identify_platform(tree)
    page = PageContext.from_tree(tree)
    classifier = FieldClassifier(tree)
    candidates = unique_containers(containers_with_fields(tree.select("form, div, section, main, article"), 1))
    if not candidates:
        typer.echo("No candidate containers found.")
    for container in candidates:
        fields = classifier.classify_all(container)
        if not fields:
            continue
        b = engine.scorer.breakdown(container, fields, platform, page)
        ident = container.attr("id") or container.attr("class") or container.tag
        typer.echo(f"\n🔎 <{container.tag}> {ident}  platform={platform.value}  fields={len(fields)}  total={b.total_score:.3f}")
        for name, value in b.factors.model_dump().items():
            typer.echo(f"   {name:<16} {value:.3f}  weighted={b.weighted_scores[name]:.3f}")
    shutdown_tracing()


@app.command()
def platform(
    html_file: Path = typer.Argument(..., help="Saved HTML page to analyse"),
    url: str = typer.Option("", "--url", help="URL the page was loaded from"),
    referrer: str = typer.Option("", "--referrer", help="Referrer of the page, if any"),
) -> None:
    """Print the identified platform and per-platform detection stats."""
    tree = _load(html_file, url, referrer)
    stats = _engine().detection_stats(tree)
    typer.echo(json.dumps(stats, indent=2, default=str))
    shutdown_tracing()


def _parse_fills(fills: List[str]) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for item in fills:
        if "=" not in item:
            typer.echo(f"❌ Expected id=value, got: {item}")
            raise typer.Exit(code=2)
        key, value = item.split("=", 1)
        out[key.strip()] = value
    return out


def _locate(tree: PageTree, selector: str) -> Optional[Node]:
    if selector.startswith("#"):
        return tree.find_by_id(selector[1:])
    return tree.select_one(selector)


def _container_for(tree: PageTree, form: DetectedForm) -> Optional[Node]:
    """Smallest element holding every field of a detected form."""
    nodes = [n for n in (_locate(tree, f.selector) for f in form.fields) if n is not None]
    if not nodes:
        return None
    holder: Optional[Node] = nodes[0].closest("form") or nodes[0].parent
    while holder is not None and not all(holder.contains(n) for n in nodes):
        holder = holder.parent
    return holder


@app.command("monitor-demo")
def monitor_demo(
    html_file: Path = typer.Argument(..., help="Saved HTML page to monitor"),
    url: str = typer.Option("", "--url", help="URL the page was loaded from"),
    fill: List[str] = typer.Option([], "--fill", help="field_id=value to type into a monitored field (repeatable)"),
) -> None:
    """Monitor the detected forms while simulated input fills fields."""
    settings = _settings()
    tree = _load(html_file, url, "")
    result = _engine().detect(tree)
    feed = SyntheticFeed()
    scheduler = ManualScheduler()
    monitor = FormMonitor(tree, feed, scheduler, settings.monitor)
    history = ChangeHistory()
    changes: List[FormChangeEvent] = []
    monitor.add_change_listener(changes.append)
    monitor.add_change_listener(history.record)
    monitor.start_monitoring()

    for form in result.forms:
        container = _container_for(tree, form)
        if container is not None:
            monitor.add_form(container, form.form_id)

    wanted = _parse_fills(fill)
    for form in monitor.get_all_forms():
        for field_id, node in form.fields.items():
            if field_id in wanted:
                feed.focus(node)
                feed.type_text(node, wanted[field_id])
                feed.blur(node)
    scheduler.advance(settings.monitor.field_debounce + settings.monitor.rescan_debounce)

    typer.echo("Change events:")
    for c in changes:
        suffix = f" field={c.field_id}" if c.field_id else ""
        typer.echo(f"   {c.type.value} form={c.form_id}{suffix}")
    typer.echo("\nValidation states:")
    for form in monitor.get_all_forms():
        state = form.validation_state
        typer.echo(f"   {'✅' if state.is_valid else '❌'} {form.id}  required={state.required_fields}  completed={state.completed_fields}")
        for fid, errs in state.errors.items():
            typer.echo(f"      {fid}: {'; '.join(errs)}")
        analysis = history.analyze_changes(form.id)
        typer.echo(f"      mostly {analysis['change_type']}; next={analysis['predictions']['next_change']}")
    typer.echo(f"\nStats: {monitor.get_stats().model_dump()}")
    monitor.destroy()
    shutdown_tracing()


if __name__ == "__main__":
    app()
