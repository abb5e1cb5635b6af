"""Command-line interface for CellType-Transfer.

Provides CLI commands for classification, pruning, multi-reference
combination and reference matching.
"""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional, Sequence, Tuple

import click

from celltype_transfer import __version__
from celltype_transfer.errors import TransferError


def setup_logging(verbose: bool = False, debug: bool = False) -> logging.Logger:
    """Setup logging for CLI commands."""
    level = logging.DEBUG if debug else (logging.INFO if verbose else logging.WARNING)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )
    return logging.getLogger("celltype_transfer")


def _load_config(config: Optional[str]):
    from celltype_transfer.config import TransferConfig

    if config:
        return TransferConfig.from_yaml(Path(config))
    return TransferConfig()


def _run_logger(ctx: click.Context, command: str, out_dir: Path) -> Tuple[logging.Logger, Path]:
    from celltype_transfer.io import get_logger

    level = logging.DEBUG if ctx.obj.get("debug") else logging.INFO
    return get_logger(
        f"celltype_transfer.{command}",
        out_dir / f"{command}.log",
        level=level,
        console=bool(ctx.obj.get("verbose")),
    )


def _record_run(out_dir: Path, command: str, config, summary: dict, logger: logging.Logger) -> None:
    from celltype_transfer.io import close_logger, log_json, log_yaml

    log_yaml(out_dir / f"{command}.log", {"config": config.to_dict()}, logger=logger)
    log_json(
        out_dir / "runs.jsonl",
        {
            "command": command,
            "timestamp": datetime.now().isoformat(timespec="seconds"),
            "version": __version__,
            **summary,
        },
    )
    close_logger(logger)


def _fail(error: Exception) -> None:
    click.echo(f"Error: {error}", err=True)
    sys.exit(1)


@click.group()
@click.version_option(version=__version__, prog_name="celltype-transfer")
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
@click.option("--debug", is_flag=True, help="Enable debug output")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, debug: bool) -> None:
    """CellType-Transfer: reference-based cell-type annotation.

    Classifies single-cell expression data against labeled references,
    prunes low-confidence labels and combines several references.

    Examples:

        # Classify against one reference
        celltype-transfer classify -t test.csv -r ref.csv -l ref_labels.csv -o out/

        # Prune an existing score matrix
        celltype-transfer prune -s out/ref_scores.csv -l out/ref_labels.csv -o pruned/

        # Combine two references
        celltype-transfer combine -t test.csv -r a.csv -l a_labels.csv -r b.csv -l b_labels.csv -o out/

        # Match two references' vocabularies
        celltype-transfer match --ref-a a.csv --labels-a a.csv --ref-b b.csv --labels-b b.csv -o out/
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["debug"] = debug
    ctx.obj["logger"] = setup_logging(verbose, debug)


@cli.command()
@click.option("--test", "-t", "test_path", required=True, type=click.Path(exists=True),
              help="Test expression matrix (genes x cells CSV, or .h5ad)")
@click.option("--reference", "-r", "reference_path", required=True, type=click.Path(exists=True),
              help="Reference expression matrix (genes x samples CSV, or .h5ad)")
@click.option("--labels", "-l", "labels_path", type=click.Path(exists=True),
              help="Reference label CSV (sample id, label)")
@click.option("--label-column", default=None, help="Label column (obs key for .h5ad)")
@click.option("--name", default=None, help="Reference name (default: file stem)")
@click.option("--layer", default=None, help="AnnData layer to read")
@click.option("--config", "-c", type=click.Path(exists=True), help="Configuration file (YAML)")
@click.option("--out", "-o", "output_path", required=True, type=click.Path(), help="Output directory")
@click.option("--prune/--no-prune", default=True, help="Also prune the result")
@click.pass_context
def classify(
    ctx: click.Context,
    test_path: str,
    reference_path: str,
    labels_path: Optional[str],
    label_column: Optional[str],
    name: Optional[str],
    layer: Optional[str],
    config: Optional[str],
    output_path: str,
    prune: bool,
) -> None:
    """Classify test cells against one labeled reference."""
    from celltype_transfer.core.classification import ReferenceClassifier
    from celltype_transfer.core.pruning import ConfidencePruner
    from celltype_transfer.io import (
        ensure_output_dir,
        export_classification,
        export_pruning,
        load_expression_matrix,
        load_reference,
    )

    out_dir = ensure_output_dir(output_path)
    try:
        cfg = _load_config(config)
        logger, log_path = _run_logger(ctx, "classify", out_dir)
        test = load_expression_matrix(test_path, layer=layer)
        reference = load_reference(
            reference_path, name=name, labels_path=labels_path,
            label_column=label_column, layer=layer,
        )
        result = ReferenceClassifier(cfg.classification, logger=logger).classify(test, reference)
        export_classification(result, out_dir)
        n_pruned = None
        if prune:
            pruned = ConfidencePruner(cfg.pruning, logger=logger).prune(result)
            export_pruning(pruned, out_dir, prefix=f"{result.reference}_pruning")
            n_pruned = pruned.n_pruned
    except (TransferError, ValueError, FileNotFoundError) as e:
        _fail(e)
        return

    _record_run(
        out_dir, "classify", cfg,
        {"reference": result.reference, "n_cells": len(result.labels), "n_pruned": n_pruned},
        logger,
    )
    click.echo(f"Classified {len(result.labels)} cells against '{result.reference}'")
    if n_pruned is not None:
        click.echo(f"Pruned {n_pruned} low-confidence labels")
    click.echo(f"Log: {log_path}")


@cli.command()
@click.option("--scores", "-s", "scores_path", required=True, type=click.Path(exists=True),
              help="Score matrix CSV (cells x labels)")
@click.option("--labels", "-l", "labels_path", required=True, type=click.Path(exists=True),
              help="Assigned labels CSV (cell id first)")
@click.option("--label-column", default="label", help="Assigned label column")
@click.option("--delta-next-column", default=None, help="Column holding the tuning gap")
@click.option("--mode", type=click.Choice(["outlier", "threshold"]), default=None,
              help="Pruning mode (overrides config)")
@click.option("--nmads", type=float, default=None, help="MAD multiple for outlier mode")
@click.option("--min-diff-med", type=float, default=None, help="Fixed delta threshold")
@click.option("--min-diff-next", type=float, default=None, help="Fixed tuning-gap threshold")
@click.option("--config", "-c", type=click.Path(exists=True), help="Configuration file (YAML)")
@click.option("--out", "-o", "output_path", required=True, type=click.Path(), help="Output directory")
@click.pass_context
def prune(
    ctx: click.Context,
    scores_path: str,
    labels_path: str,
    label_column: str,
    delta_next_column: Optional[str],
    mode: Optional[str],
    nmads: Optional[float],
    min_diff_med: Optional[float],
    min_diff_next: Optional[float],
    config: Optional[str],
    output_path: str,
) -> None:
    """Prune low-confidence labels from an existing score matrix."""
    import pandas as pd

    from celltype_transfer.core.pruning import ConfidencePruner
    from celltype_transfer.io import ensure_output_dir, export_pruning

    out_dir = ensure_output_dir(output_path)
    try:
        cfg = _load_config(config)
        if mode is not None:
            cfg.pruning.mode = mode
        if nmads is not None:
            cfg.pruning.nmads = nmads
        if min_diff_med is not None:
            cfg.pruning.min_diff_med = min_diff_med
        if min_diff_next is not None:
            cfg.pruning.min_diff_next = min_diff_next
        logger, log_path = _run_logger(ctx, "prune", out_dir)

        scores = pd.read_csv(scores_path, index_col=0)
        scores.index = scores.index.astype(str)
        table = pd.read_csv(labels_path, index_col=0)
        table.index = table.index.astype(str)
        if label_column not in table.columns:
            raise ValueError(f"Label column `{label_column}` not in {labels_path}")
        delta_next = None
        if delta_next_column:
            if delta_next_column not in table.columns:
                raise ValueError(f"Column `{delta_next_column}` not in {labels_path}")
            delta_next = table[delta_next_column].astype(float)

        result = ConfidencePruner(cfg.pruning, logger=logger).prune(
            scores, labels=table[label_column], delta_next=delta_next
        )
        export_pruning(result, out_dir)
    except (TransferError, ValueError, FileNotFoundError) as e:
        _fail(e)
        return

    _record_run(out_dir, "prune", cfg, {"n_cells": len(result.labels), "n_pruned": result.n_pruned}, logger)
    click.echo(f"Pruned {result.n_pruned}/{len(result.labels)} cells")
    click.echo(f"Log: {log_path}")


def _parse_label_maps(values: Sequence[str]) -> dict:
    from celltype_transfer.io import load_label_map

    maps = {}
    for value in values:
        if "=" not in value:
            raise ValueError(f"--label-map expects NAME=PATH, got '{value}'")
        name, path = value.split("=", 1)
        maps[name] = load_label_map(path)
    return maps


@cli.command()
@click.option("--test", "-t", "test_path", required=True, type=click.Path(exists=True),
              help="Test expression matrix (genes x cells CSV, or .h5ad)")
@click.option("--reference", "-r", "reference_paths", required=True, multiple=True,
              type=click.Path(exists=True), help="Reference matrix (repeat, in tie-break order)")
@click.option("--labels", "-l", "labels_paths", multiple=True, type=click.Path(exists=True),
              help="Reference label CSV (repeat, paired with --reference)")
@click.option("--label-column", default=None, help="Label column (obs key for .h5ad)")
@click.option("--label-map", "label_maps", multiple=True,
              help="Harmonization map NAME=PATH (YAML/JSON/CSV)")
@click.option("--n-jobs", type=int, default=None, help="Parallel reference runs")
@click.option("--layer", default=None, help="AnnData layer to read")
@click.option("--config", "-c", type=click.Path(exists=True), help="Configuration file (YAML)")
@click.option("--out", "-o", "output_path", required=True, type=click.Path(), help="Output directory")
@click.pass_context
def combine(
    ctx: click.Context,
    test_path: str,
    reference_paths: Tuple[str, ...],
    labels_paths: Tuple[str, ...],
    label_column: Optional[str],
    label_maps: Tuple[str, ...],
    n_jobs: Optional[int],
    layer: Optional[str],
    config: Optional[str],
    output_path: str,
) -> None:
    """Annotate against several references and combine per cell."""
    from celltype_transfer.core.combination import MultiReferenceCombiner
    from celltype_transfer.io import (
        ensure_output_dir,
        export_combined,
        load_expression_matrix,
        load_reference,
    )

    out_dir = ensure_output_dir(output_path)
    try:
        if labels_paths and len(labels_paths) != len(reference_paths):
            raise ValueError("Give one --labels per --reference (or none for .h5ad references)")
        cfg = _load_config(config)
        if n_jobs is not None:
            cfg.combination.n_jobs = n_jobs
        logger, log_path = _run_logger(ctx, "combine", out_dir)

        test = load_expression_matrix(test_path, layer=layer)
        references = [
            load_reference(
                path,
                labels_path=labels_paths[i] if labels_paths else None,
                label_column=label_column,
                layer=layer,
            )
            for i, path in enumerate(reference_paths)
        ]
        maps = {**cfg.label_maps, **_parse_label_maps(label_maps)}

        combiner = MultiReferenceCombiner(
            cfg.combination,
            classification=cfg.classification,
            pruning=cfg.pruning,
            logger=logger,
        )
        result = combiner.run(test, references, label_maps=maps or None, test_id=Path(test_path).stem)
        export_combined(result, out_dir)
    except (TransferError, ValueError, FileNotFoundError) as e:
        _fail(e)
        return

    wins = result.reference.value_counts().to_dict()
    _record_run(
        out_dir, "combine", cfg,
        {"references": list(result.reference_order), "n_cells": len(result.labels), "wins": wins},
        logger,
    )
    click.echo(f"Combined {len(result.labels)} cells across {len(result.reference_order)} references")
    for name in result.reference_order:
        click.echo(f"  {name}: {wins.get(name, 0)} cells")
    click.echo(f"Log: {log_path}")


@cli.command()
@click.option("--ref-a", "ref_a_path", required=True, type=click.Path(exists=True), help="Reference A matrix")
@click.option("--labels-a", "labels_a_path", type=click.Path(exists=True), help="Reference A labels")
@click.option("--ref-b", "ref_b_path", required=True, type=click.Path(exists=True), help="Reference B matrix")
@click.option("--labels-b", "labels_b_path", type=click.Path(exists=True), help="Reference B labels")
@click.option("--label-column", default=None, help="Label column (obs key for .h5ad)")
@click.option("--min-prob", type=float, default=None, help="Mutual probability reported as a match")
@click.option("--config", "-c", type=click.Path(exists=True), help="Configuration file (YAML)")
@click.option("--out", "-o", "output_path", required=True, type=click.Path(), help="Output directory")
@click.pass_context
def match(
    ctx: click.Context,
    ref_a_path: str,
    labels_a_path: Optional[str],
    ref_b_path: str,
    labels_b_path: Optional[str],
    label_column: Optional[str],
    min_prob: Optional[float],
    config: Optional[str],
    output_path: str,
) -> None:
    """Tabulate label correspondences between two references."""
    from celltype_transfer.core.matching import match_references
    from celltype_transfer.io import ensure_output_dir, export_match, load_reference, write_dataframe

    out_dir = ensure_output_dir(output_path)
    try:
        cfg = _load_config(config)
        if min_prob is not None:
            cfg.matching.min_prob = min_prob
        logger, log_path = _run_logger(ctx, "match", out_dir)
        ref_a = load_reference(ref_a_path, labels_path=labels_a_path, label_column=label_column)
        ref_b = load_reference(ref_b_path, labels_path=labels_b_path, label_column=label_column)
        result = match_references(
            ref_a, ref_b, config=cfg.matching, classification=cfg.classification, logger=logger
        )
        export_match(result, out_dir)
        matches = result.best_matches(cfg.matching.min_prob)
        write_dataframe(matches, out_dir / "best_matches.csv", index=False)
    except (TransferError, ValueError, FileNotFoundError) as e:
        _fail(e)
        return

    unique = result.unique_labels(cfg.matching.max_prob)
    _record_run(
        out_dir, "match", cfg,
        {"a": result.name_a, "b": result.name_b, "n_matches": len(matches), "unique": unique},
        logger,
    )
    click.echo(f"{len(matches)} label pair(s) with mutual probability >= {cfg.matching.min_prob}")
    for _, row in matches.iterrows():
        click.echo(f"  {row[result.name_a]} <-> {row[result.name_b]}: {row['mutual']:.2f}")
    click.echo(f"Log: {log_path}")


def main() -> None:
    """Main entry point for CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
