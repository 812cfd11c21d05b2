"""
Verification Script for the child-growth analysis package
Run this to check every stage works before analysing real data.

Usage: python scripts/verify_installation.py
"""

print("=" * 70)
print("Child Growth Analysis - Installation Check")
print("=" * 70)
print()

# Test 1: Data
print("[1/4] Testing data generation and cleaning...")
try:
    from child_growth import (
        check_data_integrity,
        clean_growth_data,
        create_sample_growth_data,
        standardize_growth_data,
    )

    raw = create_sample_growth_data(n_children=40)
    clean = clean_growth_data(raw)
    scaled, scaling = standardize_growth_data(clean)
    checks = check_data_integrity(raw, clean, scaled)

    print(f"   ✓ Data stage working!")
    print(f"   - Records: {len(raw)} raw, {len(clean)} clean")
    print(f"   - Integrity checks passed: {sum(checks.values())}/{len(checks)}")
    print()
except Exception as e:
    print(f"   ✗ FAILED: {str(e)}\n")

# Test 2: Frequentist model
print("[2/4] Testing REML mixed model (statsmodels)...")
try:
    from child_growth import FrequentistMixedModel

    lmm = FrequentistMixedModel()
    lmm.fit(clean)
    age = lmm.coefficient_table().loc['age']

    print(f"   ✓ REML fit working!")
    print(f"   - Age slope: {age['estimate']:.3f} kg/month")
    print()
except Exception as e:
    print(f"   ✗ FAILED: {str(e)}\n")

# Test 3: Bayesian model
print("[3/4] Testing Bayesian model build (PyMC)...")
try:
    from child_growth.bayesian import BayesianMixedModel

    bayes = BayesianMixedModel()
    model = bayes.build_model(scaled)

    print(f"   ✓ Bayesian model builds!")
    print(f"   - Free variables: {[rv.name for rv in model.free_RVs]}")
    print()
except Exception as e:
    print(f"   ✗ FAILED: {str(e)}\n")

# Test 4: Report rendering
print("[4/4] Testing report rendering (frequentist only)...")
try:
    import tempfile
    from child_growth import ReportConfig, run_report

    with tempfile.TemporaryDirectory() as tmp:
        results = run_report(ReportConfig(n_children=40, output_dir=tmp, run_bayesian=False))
        print(f"   ✓ Report rendering working!")
        print(f"   - Outputs: {sorted(results['outputs'])}")
    print()
except Exception as e:
    print(f"   ✗ FAILED: {str(e)}\n")

print("=" * 70)
print("Verification complete")
print("=" * 70)
