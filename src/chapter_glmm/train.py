# ABOUTME: Provides the CLI entrypoint for the chapter panel GLMM batch run.
# ABOUTME: Loads configs, builds the panel, fits and ranks models, and predicts held-out scores.

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd
import typer
import yaml
from rich.console import Console
from rich.table import Table

from src.chapter_panel import (
    add_lag_features,
    aggregate_chapters,
    build_model_frame,
    deduplicate_attempts,
    describe_panel,
)
from src.common.data_pipeline import load_attempts, load_heldout

from .comparison import compare_models, select_model
from .fitter import FitReport, fit_models
from .heldout import format_submission, predict_heldout
from .model import GlmmConfig
from .specs import resolve_specs

console = Console()
app = typer.Typer(help="Fit and compare chapter-level GLMMs and score held-out students.")


@dataclass
class PipelineConfig:
    """Run configuration parsed from YAML."""

    attempts_path: Path
    heldout_path: Optional[Path] = None
    columns: Dict[str, str] = field(default_factory=dict)
    heldout_columns: Dict[str, str] = field(default_factory=dict)
    models: Optional[List[Any]] = None
    glmm: GlmmConfig = field(default_factory=GlmmConfig)
    rmse_include_random: bool = True
    output_dir: Path = Path("reports/chapter_glmm")


def load_pipeline_config(config_path: Path) -> PipelineConfig:
    with open(config_path) as f:
        cfg = yaml.safe_load(f) or {}

    data_cfg = cfg.get("data", {})
    if "attempts_path" not in data_cfg:
        raise ValueError(f"Config {config_path} must define data.attempts_path.")
    heldout_path = data_cfg.get("heldout_path")
    return PipelineConfig(
        attempts_path=Path(data_cfg["attempts_path"]),
        heldout_path=Path(heldout_path) if heldout_path else None,
        columns=dict(data_cfg.get("columns") or {}),
        heldout_columns=dict(data_cfg.get("heldout_columns") or {}),
        models=cfg.get("models"),
        glmm=GlmmConfig(**(cfg.get("glmm") or {})),
        rmse_include_random=bool(cfg.get("comparison", {}).get("rmse_include_random", True)),
        output_dir=Path(cfg.get("outputs", {}).get("dir", "reports/chapter_glmm")),
    )


def build_panel(attempts: pd.DataFrame):
    """Attempts -> (reduced items, lagged chapter summaries, model frame)."""

    reduced = deduplicate_attempts(attempts)
    print(f"[panel] Reduced {len(attempts)} attempts to {len(reduced)} item records")
    chapters = add_lag_features(aggregate_chapters(reduced))
    print(f"[panel] Built {len(chapters)} chapter summaries for {chapters['student_id'].nunique()} students")
    frame = build_model_frame(reduced, chapters)
    return reduced, chapters, frame


def run_pipeline(config: PipelineConfig) -> Dict[str, Any]:
    """Programmatic entrypoint mirrored by the Typer CLI."""

    attempts = load_attempts(config.attempts_path, config.columns)
    _, chapters, frame = build_panel(attempts)

    specs = resolve_specs(config.models)
    print(f"[glmm] Fitting {len(specs)} configurations (n_jobs={config.glmm.n_jobs}, seed={config.glmm.seed})")
    report = fit_models(frame, specs, config.glmm)
    ranking = compare_models(report.models, include_random=config.rmse_include_random)

    output_dir = config.output_dir
    output_dir.mkdir(parents=True, exist_ok=True)
    ranking.to_csv(output_dir / "comparison.csv", index=False)
    _coefficients(report).to_csv(output_dir / "coefficients.csv", index=False)

    results: Dict[str, Any] = {"chapters": chapters, "report": report, "ranking": ranking}
    if config.heldout_path is not None:
        heldout = load_heldout(config.heldout_path, config.heldout_columns)
        chosen = select_model(ranking, report.models, available_columns=heldout.columns)
        print(f"[heldout] Scoring {len(heldout)} rows with {chosen.name}")
        predictions = predict_heldout(chosen, heldout)
        submission = format_submission(predictions)
        submission.to_csv(output_dir / "heldout_predictions.csv", index=False)
        results["predictions"] = predictions
        results["chosen"] = chosen.name
    return results


def _coefficients(report: FitReport) -> pd.DataFrame:
    frames = []
    for model in report.models:
        table = model.coefficients.reset_index()
        table.insert(0, "model", model.name)
        frames.append(table)
    if not frames:
        return pd.DataFrame(columns=["model", "term", "estimate", "std_error", "z_value", "p_value"])
    return pd.concat(frames, ignore_index=True)


def _print_ranking(ranking: pd.DataFrame, report: FitReport) -> None:
    table = Table(show_header=True, header_style="bold magenta")
    for column in ("Rank", "Model", "Predictors", "n", "AIC", "BIC", "ΔAIC", "RMSE", "ECE", "Converged"):
        table.add_column(column)
    for _, row in ranking.iterrows():
        table.add_row(
            str(row["rank"]),
            row["model"],
            row["predictors"],
            str(row["n_obs"]),
            f"{row['aic']:.2f}",
            f"{row['bic']:.2f}",
            f"{row['delta_aic']:.2f}",
            f"{row['rmse']:.4f}",
            f"{row['ece']:.4f}",
            "yes" if row["converged"] else "[red]no[/red]",
        )
    console.print(table)
    for failure in report.failures:
        console.print(f"[red]{failure.name} failed:[/red] {failure.error}")


@app.command()
def run(config: Path = typer.Option(..., "--config", exists=True, dir_okay=False, help="Path to chapter_glmm config YAML.")) -> None:
    """Run the full batch: panel, model fits, ranking, held-out predictions."""

    try:
        cfg = load_pipeline_config(config)
        results = run_pipeline(cfg)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--config") from exc

    console.rule("[bold blue]Model comparison[/bold blue]")
    _print_ranking(results["ranking"], results["report"])
    if "chosen" in results:
        console.print(f"[bold green]Held-out predictions[/bold green] from {results['chosen']}: {len(results['predictions'])} rows")
    typer.echo(f"[glmm] Outputs written to {cfg.output_dir}")


@app.command()
def describe(config: Path = typer.Option(..., "--config", exists=True, dir_okay=False, help="Path to chapter_glmm config YAML.")) -> None:
    """Print per-chapter descriptives of the reduced panel."""

    try:
        cfg = load_pipeline_config(config)
        attempts = load_attempts(cfg.attempts_path, cfg.columns)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--config") from exc

    _, chapters, _ = build_panel(attempts)
    described = describe_panel(chapters)

    table = Table(show_header=True, header_style="bold magenta")
    for column in ("Chapter", "Students", "Score", "Completion", "Median min", "Attempts", "First", "Gaps"):
        table.add_column(column)
    for _, row in described.iterrows():
        table.add_row(
            f"{row['chapter']:g}",
            str(int(row["students"])),
            f"{row['mean_score']:.3f}",
            f"{row['mean_completion_rate']:.3f}",
            f"{row['median_time_spent']:.1f}",
            f"{row['mean_attempts']:.2f}",
            str(int(row["first_chapter_rows"])),
            str(int(row["gap_rows"])),
        )
    console.rule("[bold blue]Chapter panel[/bold blue]")
    console.print(table)


if __name__ == "__main__":
    app()
