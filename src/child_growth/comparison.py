"""
Comparison of the REML and Bayesian fits, and the narrative interpretation
that goes into the report.
"""
import numpy as np
import pandas as pd
from typing import Dict, List, Optional

import matplotlib.pyplot as plt


METHOD_LABELS = {'reml': 'REML', 'hmc': 'Bayes (HMC)', 'gibbs': 'Bayes (Gibbs)'}

TERM_DESCRIPTIONS = {
    'Intercept': 'intercept',
    'sex': 'female vs male',
    'mage': "mother's age (per year)",
    'lit': 'literate vs illiterate mother',
    'age': 'age (per month)',
}


def term_key(term: str) -> str:
    """Strip patsy contrast suffixes: 'sex[T.female]' -> 'sex'."""
    return term.split('[')[0]


def build_comparison_table(freq_coefs: pd.DataFrame,
                           bayes_coefs: Optional[Dict[str, pd.DataFrame]] = None) -> pd.DataFrame:
    """Long table of fixed-effect estimates by method, on the original scale.

    Args:
        freq_coefs: FrequentistMixedModel.coefficient_table()
        bayes_coefs: backend -> BayesianMixedModel.original_scale_coefficients()

    Returns:
        DataFrame with columns term, method, estimate, ci_lower, ci_upper
    """
    rows = []
    for term, row in freq_coefs.iterrows():
        rows.append({
            'term': term_key(term),
            'method': 'reml',
            'estimate': float(row['estimate']),
            'ci_lower': float(row['ci_lower']),
            'ci_upper': float(row['ci_upper']),
        })

    fixed_terms = {r['term'] for r in rows}
    for backend, table in (bayes_coefs or {}).items():
        for term, row in table.iterrows():
            if term not in fixed_terms:
                continue
            rows.append({
                'term': term,
                'method': backend,
                'estimate': float(row['mean']),
                'ci_lower': float(row['ci_lower']),
                'ci_upper': float(row['ci_upper']),
            })

    return pd.DataFrame(rows, columns=['term', 'method', 'estimate', 'ci_lower', 'ci_upper'])


def interval_agreement(table: pd.DataFrame) -> pd.DataFrame:
    """Check the REML estimate against each Bayesian credible interval.

    Returns:
        One row per term: REML estimate, for each backend whether that
        estimate falls inside its interval, and whether every method agrees
        on the sign of the effect.
    """
    rows = []
    for term, grp in table.groupby('term', sort=False):
        by_method = grp.set_index('method')
        if 'reml' not in by_method.index:
            continue
        reml_est = float(by_method.loc['reml', 'estimate'])
        entry = {'term': term, 'reml_estimate': reml_est}
        for method in by_method.index:
            if method == 'reml':
                continue
            lo = by_method.loc[method, 'ci_lower']
            hi = by_method.loc[method, 'ci_upper']
            entry[f'reml_in_{method}_ci'] = bool(lo <= reml_est <= hi)
        signs = np.sign(by_method['estimate'].values)
        entry['sign_agreement'] = bool(np.all(signs == signs[0]))
        rows.append(entry)
    return pd.DataFrame(rows)


def _interval(lo: float, hi: float) -> str:
    return f"[{lo:.3f}, {hi:.3f}]"


def describe_effects(freq_coefs: pd.DataFrame, alpha: float = 0.05) -> List[str]:
    """One sentence per fixed effect in plain language."""
    level = f"{100 * (1 - alpha):.0f}% CI"
    sentences = []
    for term, row in freq_coefs.iterrows():
        key = term_key(term)
        if key == 'Intercept':
            continue
        est = row['estimate']
        ci = _interval(row['ci_lower'], row['ci_upper'])
        signif = ("statistically distinguishable from zero"
                  if row['p_value'] < alpha else "not statistically distinguishable from zero")
        if key == 'age':
            text = (f"Each additional month of age is associated with a change in weight of "
                    f"{est:+.3f} kg ({level} {ci}), {signif}.")
        elif key == 'sex':
            direction = 'lighter' if est < 0 else 'heavier'
            text = (f"Girls are on average {abs(est):.3f} kg {direction} than boys of the same age "
                    f"({level} {ci}), {signif}.")
        elif key == 'mage':
            text = (f"Each additional year of the mother's age changes the child's expected weight by "
                    f"{est:+.3f} kg ({level} {ci}), {signif}.")
        elif key == 'lit':
            direction = 'heavier' if est > 0 else 'lighter'
            text = (f"Children of literate mothers are {abs(est):.3f} kg {direction} than children of "
                    f"illiterate mothers ({level} {ci}), {signif}.")
        else:
            text = f"The coefficient for {term} is {est:+.3f} ({level} {ci}), {signif}."
        sentences.append(text)
    return sentences


def write_narrative(freq_coefs: pd.DataFrame,
                    variance: Optional[pd.DataFrame] = None,
                    residuals: Optional[Dict] = None,
                    collinearity: Optional[pd.DataFrame] = None,
                    agreement: Optional[pd.DataFrame] = None,
                    convergence: Optional[Dict[str, pd.DataFrame]] = None,
                    ppc: Optional[Dict[str, Dict]] = None,
                    alpha: float = 0.05) -> Dict[str, List[str]]:
    """Narrative interpretation for each report section.

    Modelling inadequacies found by the diagnostics are reported as
    findings rather than errors.

    Returns:
        section name -> list of paragraphs
    """
    narrative = {'effects': describe_effects(freq_coefs, alpha=alpha)}

    model_notes = []
    if variance is not None and not variance.empty:
        slope_rows = variance[variance['component'].str.startswith('var(') &
                              ~variance['component'].str.contains('Group')]
        resid_row = variance[variance['component'] == 'residual']
        if not slope_rows.empty:
            sd = float(slope_rows['sd'].iloc[0])
            model_notes.append(
                f"Children differ in their growth rate: the standard deviation of the "
                f"child-specific age slope is {sd:.3f} kg per month.")
        if not resid_row.empty:
            model_notes.append(
                f"The residual standard deviation within a child is "
                f"{float(resid_row['sd'].iloc[0]):.3f} kg.")
    if collinearity is not None and not collinearity.empty:
        worst = collinearity.loc[collinearity['vif'].idxmax()]
        if worst['vif'] > 5:
            model_notes.append(
                f"The predictor {worst['term']} shows notable collinearity "
                f"(VIF {worst['vif']:.1f}).")
        else:
            model_notes.append(
                f"Collinearity is not a concern (largest VIF {worst['vif']:.2f}).")
    narrative['model'] = model_notes

    diag_notes = []
    if residuals is not None:
        if residuals.get('heteroscedastic'):
            text = (f"The residual spread is not constant (Breusch-Pagan p = "
                    f"{residuals['breusch_pagan_p']:.3g})")
            trend = residuals.get('spread_fitted_corr')
            if trend is not None and np.isfinite(trend) and trend != 0:
                direction = 'grows' if trend > 0 else 'shrinks'
                text += (f"; the spread {direction} with fitted weight "
                         f"(rank correlation {trend:+.2f})")
            diag_notes.append(text + ", so standard errors should be read with care.")
        else:
            diag_notes.append(
                f"No evidence of heteroscedasticity (Breusch-Pagan p = "
                f"{residuals['breusch_pagan_p']:.3g}).")
        if residuals.get('non_normal'):
            tail = 'heavier' if residuals['excess_kurtosis'] > 0 else 'lighter'
            diag_notes.append(
                f"Residuals depart from normality (Shapiro-Wilk p = {residuals['shapiro_p']:.3g}) "
                f"with {tail} tails than a normal distribution "
                f"(excess kurtosis {residuals['excess_kurtosis']:.2f}).")
        else:
            diag_notes.append(
                f"Residuals are compatible with normality (Shapiro-Wilk p = "
                f"{residuals['shapiro_p']:.3g}).")
    narrative['diagnostics'] = diag_notes

    bayes_notes = []
    for backend, diag in (convergence or {}).items():
        label = METHOD_LABELS.get(backend, backend)
        max_rhat = float(diag['r_hat'].max())
        min_ess = float(diag['ess_bulk'].min())
        state = 'converged' if bool(diag['rhat_ok'].all()) else 'shows convergence problems'
        bayes_notes.append(
            f"{label} {state}: largest R-hat {max_rhat:.3f}, smallest bulk ESS {min_ess:.0f}.")
    for backend, check in (ppc or {}).items():
        label = METHOD_LABELS.get(backend, backend)
        bayes_notes.append(
            f"{label} posterior predictive p-values: mean {check['p_value_mean']:.2f}, "
            f"sd {check['p_value_sd']:.2f}.")
    narrative['bayesian'] = bayes_notes

    comparison_notes = []
    if agreement is not None and not agreement.empty:
        inside_cols = [c for c in agreement.columns if c.startswith('reml_in_')]
        for col in inside_cols:
            backend = col[len('reml_in_'):-len('_ci')]
            n_in = int(agreement[col].sum())
            comparison_notes.append(
                f"The REML estimate lies inside the {METHOD_LABELS.get(backend, backend)} "
                f"credible interval for {n_in} of {len(agreement)} terms.")
        disagree = agreement.loc[~agreement['sign_agreement'], 'term'].tolist()
        if disagree:
            comparison_notes.append(
                f"Methods disagree on the direction of: {', '.join(disagree)}.")
        elif inside_cols:
            comparison_notes.append("All methods agree on the direction of every effect.")
    narrative['comparison'] = comparison_notes

    return narrative


def plot_comparison(table: pd.DataFrame, save_path: Optional[str] = None):
    """Estimates and intervals per term, one marker per method."""
    terms = [t for t in table['term'].unique() if t != 'Intercept']
    methods = list(table['method'].unique())
    fig, axes = plt.subplots(1, len(terms), figsize=(3.2 * len(terms), 4), squeeze=False)

    for ax, term in zip(axes[0], terms):
        sub = table[table['term'] == term].set_index('method').reindex(methods)
        y = np.arange(len(methods))
        err = np.vstack([sub['estimate'] - sub['ci_lower'], sub['ci_upper'] - sub['estimate']])
        ax.errorbar(sub['estimate'], y, xerr=err, fmt='o', capsize=3)
        ax.axvline(0, color='k', lw=0.8, ls='--')
        ax.set_yticks(y)
        ax.set_yticklabels([METHOD_LABELS.get(m, m) for m in methods])
        ax.set_title(TERM_DESCRIPTIONS.get(term, term), fontsize=10)
    fig.suptitle('Fixed effects by method (original scale)')
    fig.tight_layout()
    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches='tight')
    return fig
