"""
Child Growth — Test Suite
=========================

Test modules:
- test_data.py: loading, cleaning, rescaling and integrity checks
- test_exploration.py: exploratory figures
- test_frequentist.py: REML mixed model, diagnostics, prediction
- test_bayesian.py: PyMC model structure and sampling (both backends)
- test_comparison.py: method comparison and narrative
- test_report.py: report configuration, rendering and CLI
"""
