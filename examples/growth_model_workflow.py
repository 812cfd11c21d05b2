"""
Child Growth — Step-by-Step Modelling Workflow
==============================================
Walks through the analysis one stage at a time instead of calling
run_report(): useful for interactive exploration of a single model.

Workflow:
1. Generate (or load) growth data and clean it
2. Fit the REML mixed model and inspect diagnostics
3. Fit the Bayesian model with NUTS on standardised data
4. Compare fixed effects between the two fits

Usage: python examples/growth_model_workflow.py
"""

from child_growth import (
    FrequentistMixedModel,
    build_comparison_table,
    clean_growth_data,
    create_sample_growth_data,
    interval_agreement,
    standardize_growth_data,
)
from child_growth.bayesian import BayesianConfig, BayesianMixedModel


def step1_data(n_children: int = 200, seed: int = 1234):
    print("\n" + "=" * 70)
    print("STEP 1: Data")
    print("=" * 70)
    raw = create_sample_growth_data(n_children=n_children, seed=seed)
    clean = clean_growth_data(raw)
    scaled, scaling = standardize_growth_data(clean)
    print(f"[Data] {clean['id'].nunique()} children, {len(clean)} weighed visits")
    return clean, scaled, scaling


def step2_reml(clean):
    print("\n" + "=" * 70)
    print("STEP 2: REML mixed model")
    print("=" * 70)
    lmm = FrequentistMixedModel()
    lmm.fit(clean)
    lmm.print_summary()

    diag = lmm.residual_diagnostics()
    print(f"\n[LMM] Breusch-Pagan p = {diag['breusch_pagan_p']:.3g}, "
          f"Shapiro-Wilk p = {diag['shapiro_p']:.3g}")
    lmm.plot_diagnostics(save_path='growth_reml')
    print("[LMM] Diagnostics saved to growth_reml_diagnostics.png")
    return lmm


def step3_bayes(scaled, scaling):
    print("\n" + "=" * 70)
    print("STEP 3: Bayesian mixed model (NUTS)")
    print("=" * 70)
    bayes = BayesianMixedModel(BayesianConfig(backend='hmc', n_chains=2,
                                              n_draws=500, n_tune=500))
    bayes.fit(scaled)
    coefs = bayes.original_scale_coefficients(scaling)

    print(f"\n{'Term':<16} {'Mean':>10} {'95% HDI':>24}")
    print("-" * 52)
    for term, row in coefs.iterrows():
        print(f"{term:<16} {row['mean']:>10.4f} [{row['ci_lower']:>9.4f}, {row['ci_upper']:>9.4f}]")
    return bayes, coefs


def step4_compare(lmm, coefs):
    print("\n" + "=" * 70)
    print("STEP 4: REML vs Bayes")
    print("=" * 70)
    table = build_comparison_table(lmm.coefficient_table(), {'hmc': coefs})
    print(interval_agreement(table).to_string(index=False))


if __name__ == '__main__':
    clean, scaled, scaling = step1_data()
    lmm = step2_reml(clean)
    bayes, coefs = step3_bayes(scaled, scaling)
    step4_compare(lmm, coefs)
