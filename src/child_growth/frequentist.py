"""
Child Growth — Frequentist Linear Mixed-Effects Model
======================================================
REML fit of weight on sex, mother's age, mother's literacy and age with a
per-child random intercept and slope on age (statsmodels MixedLM).

Model:
    wt_ij = β₀ + β₁·sex_i + β₂·mage_i + β₃·lit_i + β₄·age_ij
            + b₀ᵢ + b₁ᵢ·age_ij + ε_ij

    (b₀ᵢ, b₁ᵢ) ~ N(0, G),   ε_ij ~ N(0, σ²)

Diagnostics:
    - Residuals vs fitted, scale-location (heteroscedasticity)
    - Leverage / Cook's distance from the fixed-effects OLS fit
    - Variance inflation factors (collinearity)
    - Residual and random-effect Q-Q plots (normality)

Usage:
    from child_growth.frequentist import FrequentistMixedModel

    lmm = FrequentistMixedModel()
    lmm.fit(clean)
    print(lmm.coefficient_table())
    lmm.plot_diagnostics(save_path='figures/lmm')
    lmm.predict(new_children)
"""

import numpy as np
import pandas as pd
from dataclasses import dataclass, field
from typing import Dict, List, Optional
import warnings

import matplotlib.pyplot as plt
import patsy
import statsmodels.formula.api as smf
from scipy import stats
from statsmodels.stats.diagnostic import het_breuschpagan
from statsmodels.stats.outliers_influence import OLSInfluence, variance_inflation_factor
from statsmodels.tools.sm_exceptions import ConvergenceWarning


# ═══════════════════════════════════════════════════════════════
# Configuration
# ═══════════════════════════════════════════════════════════════

@dataclass
class MixedModelConfig:
    """Configuration for the REML mixed-model fit."""
    formula: str = 'wt ~ sex + mage + lit + age'
    group_col: str = 'id'
    re_formula: str = '~age'       # Random intercept + slope on age per child
    reml: bool = True
    methods: List[str] = field(default_factory=lambda: ['lbfgs', 'powell', 'nm'])
    maxiter: int = 500
    alpha: float = 0.05            # 1 - confidence level for intervals


def formula_predictors(formula: str) -> List[str]:
    """Variable names on the right-hand side of a patsy formula."""
    desc = patsy.ModelDesc.from_formula(formula)
    names = []
    for term in desc.rhs_termlist:
        for factor in term.factors:
            name = factor.name()
            if name not in names:
                names.append(name)
    return names


class FrequentistMixedModel:
    """REML linear mixed-effects model for child weight."""

    def __init__(self, config: Optional[MixedModelConfig] = None):
        self.config = config or MixedModelConfig()

        # Populated by fit()
        self.data = None
        self.result = None
        self.method_used = None
        self.fit_warnings: List[str] = []

    # ───────────────────────────────────────────────────────────
    # Fitting
    # ───────────────────────────────────────────────────────────

    def _fit_once(self, data: pd.DataFrame, re_formula: str, method: str):
        """Single MixedLM fit, recording convergence warnings."""
        warning_msgs = []
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always", ConvergenceWarning)
            model = smf.mixedlm(
                self.config.formula,
                data=data,
                groups=data[self.config.group_col],
                re_formula=re_formula,
            )
            result = model.fit(reml=self.config.reml, method=method,
                               maxiter=self.config.maxiter)
        for warn in caught:
            if issubclass(warn.category, ConvergenceWarning):
                warning_msgs.append(str(warn.message))
        return result, warning_msgs

    def fit(self, clean: pd.DataFrame):
        """Fit the mixed model, trying each optimiser until one converges.

        Args:
            clean: Output of clean_growth_data()

        Returns:
            statsmodels MixedLMResults
        """
        needed = formula_predictors(self.config.formula) + [self.config.group_col]
        missing = [c for c in needed if c not in clean.columns]
        if missing:
            raise ValueError(f"Missing columns for mixed model: {missing}")

        print(f"[LMM] Fitting {self.config.formula} | re: {self.config.re_formula} "
              f"by {self.config.group_col} ({'REML' if self.config.reml else 'ML'})")

        last_error = None
        result = None
        msgs: List[str] = []
        for method in self.config.methods:
            try:
                result, msgs = self._fit_once(clean, self.config.re_formula, method)
            except (np.linalg.LinAlgError, ValueError) as exc:
                last_error = str(exc)
                print(f"  ⚠ Optimiser '{method}' failed: {exc}")
                continue
            self.method_used = method
            if getattr(result, 'converged', False):
                break
            print(f"  ⚠ Optimiser '{method}' did not converge, trying next")

        if result is None:
            raise RuntimeError(f"MixedLM failed with every optimiser: {last_error}")

        self.data = clean
        self.result = result
        self.fit_warnings = msgs
        for msg in msgs:
            warnings.warn(f"[LMM] {msg}", ConvergenceWarning)

        print(f"[LMM] Fit complete (method={self.method_used}, "
              f"converged={bool(result.converged)}, groups={len(result.random_effects)})")
        return result

    def _require_fit(self):
        if self.result is None:
            raise ValueError("Model not fitted. Run fit() first.")

    # ───────────────────────────────────────────────────────────
    # Estimates
    # ───────────────────────────────────────────────────────────

    def coefficient_table(self, alpha: Optional[float] = None) -> pd.DataFrame:
        """Fixed-effect estimates with standard errors, z, p and CI."""
        self._require_fit()
        alpha = self.config.alpha if alpha is None else alpha

        fe = self.result.fe_params
        se = self.result.bse_fe
        z = fe / se
        p = 2 * stats.norm.sf(np.abs(z))
        ci = self.result.conf_int(alpha=alpha).loc[fe.index]

        return pd.DataFrame({
            'estimate': fe,
            'std_error': se,
            'z': z,
            'p_value': p,
            'ci_lower': ci.iloc[:, 0],
            'ci_upper': ci.iloc[:, 1],
        })

    def variance_components(self) -> pd.DataFrame:
        """Random-effect (co)variances and residual variance."""
        self._require_fit()
        cov_re = self.result.cov_re
        names = list(cov_re.index)
        rows = []
        for i, a in enumerate(names):
            rows.append({
                'component': f'var({a})',
                'variance': float(cov_re.iloc[i, i]),
                'sd': float(np.sqrt(max(cov_re.iloc[i, i], 0.0))),
                'correlation': np.nan,
            })
        for i in range(len(names)):
            for j in range(i + 1, len(names)):
                denom = np.sqrt(cov_re.iloc[i, i] * cov_re.iloc[j, j])
                rows.append({
                    'component': f'cov({names[i]},{names[j]})',
                    'variance': float(cov_re.iloc[i, j]),
                    'sd': np.nan,
                    'correlation': float(cov_re.iloc[i, j] / denom) if denom > 0 else np.nan,
                })
        rows.append({
            'component': 'residual',
            'variance': float(self.result.scale),
            'sd': float(np.sqrt(self.result.scale)),
            'correlation': np.nan,
        })
        return pd.DataFrame(rows)

    def random_effects_table(self) -> pd.DataFrame:
        """Predicted random effects (BLUPs), one row per child."""
        self._require_fit()
        re = pd.DataFrame(self.result.random_effects).T
        re.index.name = self.config.group_col
        return re

    def fit_statistics(self) -> Dict[str, float]:
        self._require_fit()
        return {
            'n_obs': int(self.result.nobs),
            'n_groups': int(len(self.result.random_effects)),
            'log_likelihood': float(self.result.llf),
            'aic': float(getattr(self.result, 'aic', np.nan)),
            'bic': float(getattr(self.result, 'bic', np.nan)),
            'converged': bool(self.result.converged),
            'method': self.method_used,
        }

    # ───────────────────────────────────────────────────────────
    # Diagnostics
    # ───────────────────────────────────────────────────────────

    def _ols_fit(self):
        """Fixed-effects-only OLS fit used for leverage and influence."""
        return smf.ols(self.config.formula, data=self.data).fit()

    def residual_diagnostics(self) -> Dict[str, float]:
        """Heteroscedasticity and normality checks on conditional residuals."""
        self._require_fit()
        resid = np.asarray(self.result.resid, dtype=np.float64)
        exog = self.result.model.exog

        bp_stat, bp_p, _, _ = het_breuschpagan(resid, exog)
        fitted = np.asarray(self.result.fittedvalues, dtype=np.float64)
        spread_corr, _ = stats.spearmanr(fitted, np.abs(resid))
        sw_stat, sw_p = stats.shapiro(resid)

        return {
            'breusch_pagan_stat': float(bp_stat),
            'breusch_pagan_p': float(bp_p),
            'spread_fitted_corr': float(spread_corr),   # > 0: spread grows with fitted weight
            'shapiro_stat': float(sw_stat),
            'shapiro_p': float(sw_p),
            'skewness': float(stats.skew(resid)),
            'excess_kurtosis': float(stats.kurtosis(resid)),
            'heteroscedastic': bool(bp_p < self.config.alpha),
            'non_normal': bool(sw_p < self.config.alpha),
        }

    def leverage_table(self) -> pd.DataFrame:
        """Hat values, studentised residuals and Cook's distance per record."""
        self._require_fit()
        infl = OLSInfluence(self._ols_fit())
        n, k = self.result.model.exog.shape
        table = pd.DataFrame({
            self.config.group_col: self.data[self.config.group_col].values,
            'leverage': infl.hat_matrix_diag,
            'studentized_resid': infl.resid_studentized_internal,
            'cooks_distance': infl.cooks_distance[0],
        }, index=self.data.index)
        table['high_leverage'] = table['leverage'] > 2.0 * k / n
        table['influential'] = table['cooks_distance'] > 4.0 / n
        return table

    def collinearity_table(self) -> pd.DataFrame:
        """Variance inflation factor for each non-intercept fixed effect."""
        self._require_fit()
        X = pd.DataFrame(self.result.model.exog, columns=self.result.model.exog_names)
        rows = []
        for i, col in enumerate(X.columns):
            if col.lower() in {'intercept', 'const'}:
                continue
            rows.append({'term': col, 'vif': float(variance_inflation_factor(X.values, i))})
        return pd.DataFrame(rows)

    def plot_diagnostics(self, save_path: Optional[str] = None):
        """Residual, leverage, collinearity and Q-Q diagnostic panels.

        Returns:
            matplotlib Figure (2 x 3 panels)
        """
        self._require_fit()
        fitted = np.asarray(self.result.fittedvalues, dtype=np.float64)
        resid = np.asarray(self.result.resid, dtype=np.float64)
        std_resid = resid / np.sqrt(self.result.scale)
        lev = self.leverage_table()
        vif = self.collinearity_table()
        re = self.random_effects_table()

        fig, axes = plt.subplots(2, 3, figsize=(15, 9))

        ax = axes[0, 0]
        ax.scatter(fitted, resid, s=10, alpha=0.5)
        ax.axhline(0, color='k', lw=1, ls='--')
        ax.set_xlabel('Fitted weight (kg)')
        ax.set_ylabel('Residual')
        ax.set_title('Residuals vs fitted')

        ax = axes[0, 1]
        ax.scatter(fitted, np.sqrt(np.abs(std_resid)), s=10, alpha=0.5)
        ax.set_xlabel('Fitted weight (kg)')
        ax.set_ylabel('√|standardised residual|')
        ax.set_title('Scale-location')

        ax = axes[0, 2]
        ax.scatter(lev['leverage'], lev['studentized_resid'], s=10, alpha=0.5,
                   c=lev['cooks_distance'], cmap='viridis')
        ax.axhline(0, color='k', lw=1, ls='--')
        ax.set_xlabel('Leverage (fixed effects)')
        ax.set_ylabel('Studentised residual')
        ax.set_title('Residuals vs leverage')

        ax = axes[1, 0]
        stats.probplot(resid, dist='norm', plot=ax)
        ax.set_title('Normal Q-Q: residuals')

        ax = axes[1, 1]
        for col in re.columns:
            (osm, osr), _ = stats.probplot(re[col].values, dist='norm')
            scale = np.std(osr) if np.std(osr) > 0 else 1.0
            ax.scatter(osm, (osr - np.mean(osr)) / scale, s=10, alpha=0.6, label=col)
        lim = ax.get_xlim()
        ax.plot(lim, lim, color='k', lw=1, ls='--')
        ax.set_xlabel('Theoretical quantiles')
        ax.set_ylabel('Standardised random effect')
        ax.set_title('Normal Q-Q: random effects')
        ax.legend(fontsize=8)

        ax = axes[1, 2]
        if not vif.empty:
            ax.barh(vif['term'], vif['vif'], color='steelblue')
        ax.axvline(5.0, color='red', lw=1, ls='--')
        ax.set_xlabel('VIF')
        ax.set_title('Collinearity')

        fig.tight_layout()
        if save_path:
            fig.savefig(f"{save_path}_diagnostics.png", dpi=150, bbox_inches='tight')
        return fig

    # ───────────────────────────────────────────────────────────
    # Prediction
    # ───────────────────────────────────────────────────────────

    def predict(self, new_data: Optional[pd.DataFrame] = None,
                include_random: bool = True) -> np.ndarray:
        """Predict weight.

        Population-level predictions come from the fixed effects. With
        ``include_random`` children seen during fitting also get their
        predicted intercept and age slope; unseen children get zero.

        Args:
            new_data: Rows with the formula predictors (and the group column
                when include_random). Defaults to the fitted data.
            include_random: Add child-specific random effects.

        Returns:
            [n] array of predicted weights (kg)
        """
        self._require_fit()
        if new_data is None:
            new_data = self.data

        needed = formula_predictors(self.config.formula)
        if include_random:
            needed = needed + [self.config.group_col]
        missing = [c for c in needed if c not in new_data.columns]
        if missing:
            raise ValueError(f"Missing columns for prediction: {missing}")

        pred = np.asarray(self.result.predict(exog=new_data), dtype=np.float64)

        if include_random:
            Z = patsy.dmatrix(self.config.re_formula, new_data, return_type='dataframe')
            re = self.random_effects_table()
            b = re.reindex(new_data[self.config.group_col].values).fillna(0.0).values
            pred = pred + (Z.values * b).sum(axis=1)

        return pred

    def compare_random_structures(self) -> pd.DataFrame:
        """Likelihood-ratio test: random intercept only vs configured structure.

        The p-value uses the 50:50 chi-square mixture for a variance
        parameter on the boundary.
        """
        self._require_fit()
        reduced, _ = self._fit_once(self.data, '1', self.method_used or 'lbfgs')

        k_full = self.result.cov_re.shape[0]
        df_diff = k_full * (k_full + 1) // 2 - 1
        lr = max(2.0 * (self.result.llf - reduced.llf), 0.0)
        if df_diff > 0:
            p = 0.5 * stats.chi2.sf(lr, df_diff) + 0.5 * stats.chi2.sf(lr, max(df_diff - 1, 1))
        else:
            p = np.nan

        return pd.DataFrame([
            {'model': 're: ~1', 'log_likelihood': float(reduced.llf),
             'n_cov_params': 1, 'lr_stat': np.nan, 'p_value': np.nan},
            {'model': f're: {self.config.re_formula}', 'log_likelihood': float(self.result.llf),
             'n_cov_params': k_full * (k_full + 1) // 2, 'lr_stat': lr, 'p_value': p},
        ])

    def print_summary(self):
        """Print coefficient and variance-component tables."""
        self._require_fit()
        print("\n" + "=" * 70)
        print("LINEAR MIXED MODEL (REML)" if self.config.reml else "LINEAR MIXED MODEL (ML)")
        print("=" * 70)
        coefs = self.coefficient_table()
        print(f"{'Term':<22} {'Estimate':>10} {'SE':>8} {'p':>8} {'95% CI':>22}")
        print("-" * 70)
        for term, row in coefs.iterrows():
            print(f"{term:<22} {row['estimate']:>10.4f} {row['std_error']:>8.4f} "
                  f"{row['p_value']:>8.4f} [{row['ci_lower']:>8.4f}, {row['ci_upper']:>8.4f}]")
        print("\nVariance components:")
        for _, row in self.variance_components().iterrows():
            print(f"  {row['component']:<22} {row['variance']:>10.4f}")
        print("=" * 70)
