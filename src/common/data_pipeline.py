# ABOUTME: Loads attempt-level and held-out tables into canonical column names.
# ABOUTME: Provides a CLI that reduces attempts to item records and chapter summaries.

from pathlib import Path
from typing import Dict, Iterable, Mapping, Optional

import pandas as pd
import pyarrow as pa
import pyarrow.csv as pv
import typer

from .schemas import ATTEMPT_COLUMNS, CHAPTER_KEY

ID_COLUMNS = ["book_id", "release_id", "institution_id", "class_id", "student_id", "item_id"]
REQUIRED_ATTEMPT_COLUMNS = CHAPTER_KEY + ["item_id", "attempt", "points_earned"]
OPTIONAL_ATTEMPT_COLUMNS = ["submitted_at", "started_at", "completed", "points_possible"]
REQUIRED_HELDOUT_COLUMNS = ["class_id", "student_id", "chapter", "book_id"]
SUPPORTED_SUFFIXES = {".csv", ".parquet"}

app = typer.Typer(help="Reduce attempt logs into item records and chapter summaries.")


@app.callback()
def cli() -> None:
    """Data preparation commands."""


def load_attempts(path: Path, columns: Optional[Mapping[str, str]] = None) -> pd.DataFrame:
    """
    Load attempt-level records and normalize them to the canonical schema.

    ``columns`` maps source column names to canonical names. Rows missing any
    grouping key are dropped; optional columns absent from the source are added
    as missing.
    """

    df = _read_table(path, columns or {})
    missing = [col for col in REQUIRED_ATTEMPT_COLUMNS if col not in df.columns]
    if missing:
        raise ValueError(f"Attempt table {path} is missing required columns: {', '.join(missing)}")

    for col in OPTIONAL_ATTEMPT_COLUMNS:
        if col not in df.columns:
            df[col] = pd.NA
    df["points_possible"] = df["points_possible"].fillna(1.0)

    df = _normalize_types(df)
    before = len(df)
    df = df.dropna(subset=CHAPTER_KEY + ["item_id"]).reset_index(drop=True)
    dropped = before - len(df)
    if dropped:
        print(f"[data] Dropped {dropped} attempt rows with missing grouping keys")
    return df[ATTEMPT_COLUMNS]


def load_heldout(path: Path, columns: Optional[Mapping[str, str]] = None) -> pd.DataFrame:
    """Load held-out records keyed by class, student, chapter and book."""

    df = _read_table(path, columns or {})
    missing = [col for col in REQUIRED_HELDOUT_COLUMNS if col not in df.columns]
    if missing:
        raise ValueError(f"Held-out table {path} is missing required columns: {', '.join(missing)}")
    return _normalize_types(df)


def _read_table(path: Path, columns: Mapping[str, str]) -> pd.DataFrame:
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix not in SUPPORTED_SUFFIXES:
        raise ValueError(f"Unsupported table format '{suffix}'. Expected one of: {', '.join(sorted(SUPPORTED_SUFFIXES))}.")

    if suffix == ".parquet":
        df = pd.read_parquet(path)
    else:
        source_names = _source_names(columns)
        column_types = {source_names.get(col, col): pa.string() for col in ID_COLUMNS}
        convert_options = pv.ConvertOptions(column_types=column_types, strings_can_be_null=True)
        table = pv.read_csv(path, convert_options=convert_options, read_options=pv.ReadOptions(block_size=1 << 22))
        df = table.to_pandas()
    return df.rename(columns=dict(columns))


def _source_names(columns: Mapping[str, str]) -> Dict[str, str]:
    return {canonical: source for source, canonical in columns.items()}


def _normalize_types(df: pd.DataFrame) -> pd.DataFrame:
    df = df.copy()
    for col in ID_COLUMNS:
        if col in df.columns:
            df[col] = df[col].astype("string")
    for col in ("chapter", "attempt", "points_possible", "points_earned"):
        if col in df.columns:
            df[col] = pd.to_numeric(df[col], errors="coerce")
    return df


def _write_outputs(frames: Iterable, out_dir: Path) -> None:
    out_dir.mkdir(parents=True, exist_ok=True)
    for name, frame in frames:
        target = out_dir / f"{name}.parquet"
        typer.echo(f"[data] Writing {len(frame)} rows to {target}")
        frame.to_parquet(target, index=False)


@app.command()
def build(
    attempts: Path = typer.Option(..., exists=True, dir_okay=False, help="Attempt-level CSV or parquet table."),
    out_dir: Path = typer.Option(Path("data/interim"), help="Directory for reduced item and chapter parquet files."),
) -> None:
    from src.chapter_panel import add_lag_features, aggregate_chapters, deduplicate_attempts

    typer.echo(f"[data] Loading attempts from {attempts}")
    try:
        raw = load_attempts(attempts)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--attempts") from exc

    reduced = deduplicate_attempts(raw)
    typer.echo(f"[data] Reduced {len(raw)} attempts to {len(reduced)} item records")
    chapters = add_lag_features(aggregate_chapters(reduced))
    typer.echo(f"[data] Built {len(chapters)} chapter summaries")
    _write_outputs([("reduced_items", reduced), ("chapter_summaries", chapters)], out_dir)


def main():
    app()


if __name__ == "__main__":
    main()
