#!/usr/bin/env python3
"""
Body-weight analysis

Runs the full lmm-jax workflow on a table of longitudinal weight records:
exploratory summaries, the two candidate mixed models, parametric bootstrap
intervals for their coefficients and an AIC/BIC comparison.

Usage:
    python examples/weight_analysis.py weights.csv --taxa EMAC VRUB --output-dir results
"""

import argparse
import sys

import lmm_jax
from lmm_jax import run_analysis
from lmm_jax.core.exceptions import LmmJaxError


def print_report(report):
    """Print the main tables of an analysis report."""
    print(f"\nObservations analysed: {len(report.data)}")
    print(f"Individuals: {report.data['dlc_id'].nunique()}")

    print("\nMean of per-individual maximum weight by taxon and sex:")
    print(report.summaries['mean_max_taxon_sex'].to_string(index=False))

    print("\nPredictors ranked by spread of group means:")
    print(report.predictor_ranking.to_string(index=False))

    for name, model in report.models.items():
        print(f"\n=== {name}: {model.spec.to_formula()} ===")
        print(model.coefficients.to_string(index=False))
        print(model.variance_components.to_string(index=False))
        if model.is_singular:
            print("  (singular fit)")
        print(report.bootstrap[name].ci_table.to_string(index=False))

    for name, error in report.failures.items():
        print(f"\nSkipped {name}: {error}")

    if report.interval_widths is not None:
        print("\nConfidence interval widths:")
        print(report.interval_widths.to_string(index=False))

    print(f"\nModel comparison ({report.comparison.criterion}):")
    print(report.comparison.table.to_string(index=False))

    name, rationale = report.preferred_model
    print(f"\nSuggested model: {name}")
    print(f"  {rationale}")


def main():
    parser = argparse.ArgumentParser(description='Mixed-model analysis of body-weight records')
    parser.add_argument('data_file', help='Delimited file of weight observations')
    parser.add_argument('--taxa', nargs='+', default=['EMAC', 'VRUB'],
                        help='Taxon codes to analyse')
    parser.add_argument('--simulations', type=int, default=None,
                        help='Bootstrap simulations per model')
    parser.add_argument('--seed', type=int, default=None,
                        help='Bootstrap random seed')
    parser.add_argument('--workers', type=int, default=None,
                        help='Threads used for bootstrap refits')
    parser.add_argument('--output-dir', default=None,
                        help='Write result tables as CSV files to this directory')
    args = parser.parse_args()

    config = lmm_jax.get_config()
    if args.output_dir:
        config.update(**{'report.export_directory': args.output_dir})

    try:
        report = run_analysis(
            args.data_file,
            args.taxa,
            config=config,
            n_simulations=args.simulations,
            random_seed=args.seed,
            max_workers=args.workers,
        )
    except LmmJaxError as e:
        print(f"Analysis failed:\n{e}", file=sys.stderr)
        return 1

    print_report(report)
    if args.output_dir:
        print(f"\nTables written to {args.output_dir}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
