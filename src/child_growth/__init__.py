"""
Child Growth - Mixed-Effects Analysis of Child Weight

Frequentist (REML) and Bayesian (HMC and Gibbs) mixed-effects models of
child weight on age, sex, mother's age and mother's literacy, with
diagnostics, method comparison and a rendered report.
"""

__version__ = "0.1.0"

# Data
from .data import (
    GrowthDataLoader,
    create_sample_growth_data,
    write_sample_growth_csv,
    clean_growth_data,
    standardize_growth_data,
    check_data_integrity,
    describe_growth_data,
)

# Frequentist model
from .frequentist import MixedModelConfig, FrequentistMixedModel

# Comparison and report
from .comparison import build_comparison_table, interval_agreement, write_narrative
from .report import ReportConfig, run_report

__all__ = [
    "GrowthDataLoader",
    "create_sample_growth_data",
    "write_sample_growth_csv",
    "clean_growth_data",
    "standardize_growth_data",
    "check_data_integrity",
    "describe_growth_data",
    "MixedModelConfig",
    "FrequentistMixedModel",
    "build_comparison_table",
    "interval_agreement",
    "write_narrative",
    "ReportConfig",
    "run_report",
]
