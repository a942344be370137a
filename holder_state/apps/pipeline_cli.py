"""Holder state CLI (reconstruction run & observation audit).

Usage examples:
  python -m holder_state.apps.pipeline_cli run --config settings.yaml --observations data/balances.parquet --out reports/holder_state/2024_q1
  python -m holder_state.apps.pipeline_cli run --config settings.yaml --observations data/balances.csv --registry-dir registries --format parquet
  python -m holder_state.apps.pipeline_cli audit --config settings.yaml --observations data/balances.csv --out reports/data_quality
"""
from __future__ import annotations
import argparse
import json
from pathlib import Path
from dotenv import load_dotenv
from loguru import logger
import pandas as pd
from rich.console import Console
from rich.table import Table

from ..core.config import load_settings
from ..dq import normalizer, validators
from ..io.observation_source import load_observations, write_table
from ..pipeline import run_pipeline, default_oracle


def _ensure_dir(p: str):
    Path(p).mkdir(parents=True, exist_ok=True)


def _print_summary(result, out_dir: str):
    holders = result.holders
    t = Table(title=f"Holder state ({out_dir})")
    for col in ("period", "all_holders", "threshold_holders", "acquired", "churned", "holder_velocity"):
        t.add_column(col)
    for r in holders.tail(5).itertuples(index=False):
        vel = "-" if r.holder_velocity != r.holder_velocity else f"{r.holder_velocity:.4f}"
        t.add_row(str(r.period.date()), str(r.all_holders), str(r.threshold_holders),
                  str(r.acquired), str(r.churned), vel)
    Console().print(t)
    if len(result.diagnoses):
        Console().print(f"[yellow]{len(result.diagnoses)} diagnoses written to diagnostics[/yellow]")


def cmd_run(args):
    settings = load_settings(args.config)
    if args.registry_dir:
        settings.registry.dir_path = args.registry_dir
    fmt = args.format or settings.output.format
    out_dir = args.out or settings.output.dir
    _ensure_dir(out_dir)
    raw = load_observations(args.observations)
    result = run_pipeline(raw, settings, default_oracle(settings))
    for name, df in result.tables().items():
        write_table(df, out_dir, name, fmt)
    with open(Path(out_dir) / 'dq_summary.json', 'w', encoding='utf-8') as f:
        json.dump(result.report.summary(), f, indent=2, default=str)
    logger.info(f"run.complete out={out_dir} format={fmt} tables={len(result.tables())}")
    if not args.quiet:
        _print_summary(result, out_dir)
    return result


def cmd_audit(args):
    settings = load_settings(args.config)
    out_dir = args.out
    _ensure_dir(out_dir)
    cfg = settings.model_dump()
    obs = normalizer.to_canonical_observations(load_observations(args.observations), cfg)
    rep = validators.validate_observations_df(obs, cfg, settings.window.start_period, settings.window.end_period)
    summary = {"source": args.observations, **rep.summary()}
    with open(Path(out_dir) / 'dq_summary.json', 'w', encoding='utf-8') as f:
        json.dump(summary, f, indent=2, default=str)
    if rep.diagnoses:
        write_table(pd.DataFrame([d.as_row() for d in rep.diagnoses]), out_dir, 'diagnostics', 'csv')
    logger.info(f"audit.complete out={out_dir} ok={rep.ok} errors={len(rep.errors)} warnings={len(rep.warnings)}")
    return rep


def build_parser():
    p = argparse.ArgumentParser("holder_state")
    sub = p.add_subparsers(dest='cmd', required=True)
    pr = sub.add_parser('run')
    pr.add_argument('--config', default='settings.yaml')
    pr.add_argument('--observations', required=True)
    pr.add_argument('--out', default=None)
    pr.add_argument('--registry-dir', dest='registry_dir', default=None)
    pr.add_argument('--format', choices=['csv', 'parquet'], default=None)
    pr.add_argument('--quiet', action='store_true')
    pr.set_defaults(func=cmd_run)
    pa = sub.add_parser('audit')
    pa.add_argument('--config', default='settings.yaml')
    pa.add_argument('--observations', required=True)
    pa.add_argument('--out', required=True)
    pa.set_defaults(func=cmd_audit)
    return p


def main(argv=None):  # pragma: no cover
    load_dotenv()  # HOLDER_STATE_* overrides from .env
    parser = build_parser()
    args = parser.parse_args(argv)
    args.func(args)

if __name__ == '__main__':  # pragma: no cover
    main()
