"""
Child Growth — Bayesian Mixed-Effects Model
============================================
Bayesian counterpart of the REML mixed model, fitted with two sampling
backends on standardised data.

Key Features:
- Same fixed / random structure as the frequentist fit
  (per-child intercept and age slope, optionally correlated via LKJ)
- Two backends:
    'hmc'   : NUTS (Hamiltonian Monte Carlo)
    'gibbs' : compound step sweeping each free variable block in turn
              with a slice (or Metropolis) update (slice-within-Gibbs)
- Convergence diagnostics (R-hat, bulk/tail ESS, MCSE, divergences)
- Posterior predictive checks
- Coefficients mapped back to the original (kg, months, years) scale

Model (standardised scale):
    wt_ij ~ Normal(μ_ij, σ)
    μ_ij  = α + β·x_ij + u₀ᵢ + u₁ᵢ·age_ij
    u_i   = L·z_i,   z_i ~ Normal(0, I),   L = chol(Σ_u)

Usage:
    from child_growth.bayesian import BayesianMixedModel, BayesianConfig

    bayes = BayesianMixedModel(BayesianConfig(backend='hmc'))
    trace = bayes.fit(scaled)
    bayes.convergence_diagnostics()
    bayes.original_scale_coefficients(scaling)
"""

import numpy as np
import pandas as pd
from typing import Dict, List, Optional, Tuple
from dataclasses import dataclass
import warnings

import arviz as az
import pymc as pm


PREDICTORS = ('sex', 'mage', 'lit', 'age')
RANDOM_EFFECTS = ('Intercept', 'age')
BACKENDS = ('hmc', 'gibbs')


# ═══════════════════════════════════════════════════════════════
# Configuration
# ═══════════════════════════════════════════════════════════════

@dataclass
class PriorSpec:
    """Specification for a single parameter prior distribution."""
    name: str
    distribution: str  # 'normal', 'student_t', 'halfnormal', 'halfcauchy', 'exponential', 'uniform', 'gamma'
    params: Dict  # Distribution parameters (e.g., {'mu': 0, 'sigma': 1})
    bounds: Optional[Tuple[float, float]] = None  # Hard bounds (truncation, normal only)


@dataclass
class BayesianConfig:
    """Configuration for Bayesian MCMC inference."""
    backend: str = 'hmc'           # 'hmc' (NUTS) or 'gibbs' (component-wise)
    n_chains: int = 4              # Number of MCMC chains
    n_draws: int = 1000            # Samples per chain (post-burn-in)
    n_tune: int = 1000             # Burn-in / tuning steps
    target_accept: float = 0.9     # Target acceptance rate (NUTS)
    gibbs_step: str = 'slice'      # Block update for 'gibbs': 'slice' or 'metropolis'

    # Model structure
    response: str = 'wt'
    predictors: Tuple[str, ...] = PREDICTORS
    group_col: str = 'id'
    slope_col: str = 'age'
    correlated_effects: bool = True
    lkj_eta: float = 2.0

    # Computational
    cores: int = 1
    seed: int = 42
    progressbar: bool = False
    compute_log_likelihood: bool = True

    # Diagnostics
    check_convergence: bool = True
    rhat_threshold: float = 1.01
    min_ess_ratio: float = 0.1      # ESS / total draws
    credible_interval: float = 0.95


def get_default_priors() -> List[PriorSpec]:
    """Default priors on the standardised scale.

    With response and predictors at zero mean and unit variance these are
    weakly informative: they rule out implausibly large effects but let the
    data dominate.
    """
    return [
        PriorSpec(name='Intercept', distribution='normal', params={'mu': 0.0, 'sigma': 1.0}),
        PriorSpec(name='beta', distribution='normal', params={'mu': 0.0, 'sigma': 1.0}),
        PriorSpec(name='sigma', distribution='halfnormal', params={'sigma': 1.0}),
        PriorSpec(name='sd_re', distribution='halfnormal', params={'sigma': 1.0}),
    ]


_DISTRIBUTIONS = {
    'normal': pm.Normal,
    'student_t': pm.StudentT,
    'halfnormal': pm.HalfNormal,
    'halfcauchy': pm.HalfCauchy,
    'exponential': pm.Exponential,
    'uniform': pm.Uniform,
    'gamma': pm.Gamma,
}


def _prior_distribution(spec: PriorSpec):
    """Resolve a PriorSpec to (distribution class, keyword arguments)."""
    if spec.distribution not in _DISTRIBUTIONS:
        raise ValueError(f"Unknown distribution: {spec.distribution}")

    if spec.distribution == 'normal' and spec.bounds:
        lower, upper = spec.bounds
        return pm.TruncatedNormal, dict(spec.params, lower=lower, upper=upper)

    return _DISTRIBUTIONS[spec.distribution], dict(spec.params)


# ═══════════════════════════════════════════════════════════════
# Bayesian Mixed Model — Main Class
# ═══════════════════════════════════════════════════════════════

class BayesianMixedModel:
    """Bayesian linear mixed model for child weight via PyMC.

    The same class serves both backends; only the step method differs.
    NUTS explores the joint posterior with gradient information, the
    Gibbs-style backend updates one variable block at a time and typically
    needs more draws for the same effective sample size.
    """

    def __init__(self,
                 config: Optional[BayesianConfig] = None,
                 priors: Optional[List[PriorSpec]] = None):
        """
        Args:
            config: Bayesian MCMC configuration
            priors: List of prior specifications (uses defaults if None)
        """
        self.config = config or BayesianConfig()
        if self.config.backend not in BACKENDS:
            raise ValueError(f"Unknown backend '{self.config.backend}', expected one of {BACKENDS}")
        self.priors = priors or get_default_priors()

        # Model and trace (populated after inference)
        self.model = None
        self.trace = None
        self.data = None

        print(f"[Bayesian] Initialized with {len(self.priors)} parameter priors")
        print(f"[Bayesian] Backend: {self.config.backend}, Chains: {self.config.n_chains}")

    @property
    def main_var_names(self) -> List[str]:
        names = ['Intercept', 'beta', 'sigma', 'sd_re']
        if self.config.correlated_effects:
            names.append('corr_re')
        return names

    def _prior(self, name: str, **kwargs):
        """Create the model variable for a named prior."""
        spec = next((p for p in self.priors if p.name == name), None)
        if spec is None:
            raise ValueError(f"No prior specified for '{name}'")
        dist, params = _prior_distribution(spec)
        return dist(name, **params, **kwargs)

    def _prior_dist(self, name: str, shape: int):
        """Unnamed prior distribution (used inside LKJCholeskyCov)."""
        spec = next((p for p in self.priors if p.name == name), None)
        if spec is None:
            raise ValueError(f"No prior specified for '{name}'")
        dist, params = _prior_distribution(spec)
        return dist.dist(**params, shape=shape)

    def build_model(self, scaled: pd.DataFrame) -> pm.Model:
        """Build the PyMC model on standardised data.

        Args:
            scaled: Output of standardize_growth_data()

        Returns:
            PyMC model ready for sampling
        """
        cfg = self.config
        needed = [cfg.response, cfg.group_col, cfg.slope_col] + list(cfg.predictors)
        missing = [c for c in needed if c not in scaled.columns]
        if missing:
            raise ValueError(f"Missing columns for Bayesian model: {missing}")

        child_idx, child_ids = pd.factorize(scaled[cfg.group_col])
        X = scaled[list(cfg.predictors)].to_numpy(dtype=np.float64)
        slope = scaled[cfg.slope_col].to_numpy(dtype=np.float64)
        y = scaled[cfg.response].to_numpy(dtype=np.float64)

        coords = {
            'predictor': list(cfg.predictors),
            'child': [str(c) for c in child_ids],
            'effect': list(RANDOM_EFFECTS),
            'obs': np.arange(len(y)),
        }

        with pm.Model(coords=coords) as model:
            intercept = self._prior('Intercept')
            beta = self._prior('beta', dims='predictor')
            sigma = self._prior('sigma')

            # Non-centred per-child intercept and slope
            z_re = pm.Normal('z_re', mu=0.0, sigma=1.0, dims=('child', 'effect'))
            if cfg.correlated_effects:
                chol, corr, stds = pm.LKJCholeskyCov(
                    'chol_re', n=len(RANDOM_EFFECTS), eta=cfg.lkj_eta,
                    sd_dist=self._prior_dist('sd_re', len(RANDOM_EFFECTS)),
                    compute_corr=True,
                )
                pm.Deterministic('sd_re', stds, dims='effect')
                pm.Deterministic('corr_re', corr[0, 1])
                u = pm.Deterministic('u', pm.math.dot(z_re, chol.T), dims=('child', 'effect'))
            else:
                sd_re = self._prior('sd_re', dims='effect')
                u = pm.Deterministic('u', z_re * sd_re, dims=('child', 'effect'))

            mu = (intercept + pm.math.dot(X, beta)
                  + u[child_idx, 0] + u[child_idx, 1] * slope)
            pm.Normal('wt_obs', mu=mu, sigma=sigma, observed=y, dims='obs')

        self.model = model
        self.data = scaled
        return model

    def _step_methods(self):
        """Step methods for the configured backend (inside model context)."""
        if self.config.backend == 'hmc':
            return pm.NUTS(target_accept=self.config.target_accept)

        if self.config.gibbs_step == 'slice':
            return [pm.Slice([rv]) for rv in self.model.free_RVs]
        elif self.config.gibbs_step == 'metropolis':
            return [pm.Metropolis([rv]) for rv in self.model.free_RVs]
        raise ValueError(f"Unknown Gibbs step: {self.config.gibbs_step}")

    def fit(self, scaled: pd.DataFrame) -> az.InferenceData:
        """Build the model and sample from the posterior.

        Args:
            scaled: Output of standardize_growth_data()

        Returns:
            arviz.InferenceData object with posterior samples and sample stats
        """
        self.build_model(scaled)

        with self.model:
            print(f"[Bayesian] Starting MCMC sampling ({self.config.backend})...")
            print(f"  Chains: {self.config.n_chains}")
            print(f"  Draws per chain: {self.config.n_draws}")
            print(f"  Tuning steps: {self.config.n_tune}")

            step = self._step_methods()
            idata_kwargs = {'log_likelihood': True} if self.config.compute_log_likelihood else None

            self.trace = pm.sample(
                draws=self.config.n_draws,
                tune=self.config.n_tune,
                chains=self.config.n_chains,
                step=step,
                cores=self.config.cores,
                progressbar=self.config.progressbar,
                return_inferencedata=True,
                random_seed=self.config.seed,
                idata_kwargs=idata_kwargs,
            )

        if self.config.check_convergence:
            self.convergence_diagnostics(verbose=True)

        print("[Bayesian] Sampling complete!")
        return self.trace

    def _require_trace(self, trace: Optional[az.InferenceData]) -> az.InferenceData:
        if trace is None:
            trace = self.trace
        if trace is None:
            raise ValueError("No trace available. Run fit() first.")
        return trace

    # ───────────────────────────────────────────────────────────
    # Diagnostics and summaries
    # ───────────────────────────────────────────────────────────

    def convergence_diagnostics(self,
                                trace: Optional[az.InferenceData] = None,
                                verbose: bool = False) -> pd.DataFrame:
        """R-hat, ESS and MCSE for the population-level parameters.

        Returns:
            DataFrame indexed by parameter with r_hat, ess_bulk, ess_tail,
            mcse_mean, mcse_sd and pass/fail flags
        """
        trace = self._require_trace(trace)

        diag = az.summary(trace, var_names=self.main_var_names, kind='diagnostics')
        total_draws = trace.posterior.sizes['chain'] * trace.posterior.sizes['draw']
        diag['ess_ratio'] = diag['ess_bulk'] / total_draws
        diag['rhat_ok'] = diag['r_hat'] < self.config.rhat_threshold
        diag['ess_ok'] = diag['ess_ratio'] > self.config.min_ess_ratio

        n_divergent = self.divergences(trace)

        if verbose:
            print(f"\n[Bayesian] Convergence Diagnostics ({self.config.backend}):")
            print(f"  {'Parameter':<22} {'R-hat':>7} {'ESS bulk':>9} {'ESS tail':>9} {'MCSE':>8}")
            for name, row in diag.iterrows():
                status = "✓" if row['rhat_ok'] and row['ess_ok'] else "✗ WARNING"
                print(f"  {name:<22} {row['r_hat']:>7.3f} {row['ess_bulk']:>9.0f} "
                      f"{row['ess_tail']:>9.0f} {row['mcse_mean']:>8.4f} {status}")
            if n_divergent is not None:
                print(f"  Divergent transitions: {n_divergent}")

        bad_rhat = list(diag.index[~diag['rhat_ok']])
        if bad_rhat:
            warnings.warn(f"[Bayesian] R-hat above {self.config.rhat_threshold} "
                          f"for {bad_rhat} ({self.config.backend})")
        low_ess = list(diag.index[~diag['ess_ok']])
        if low_ess:
            warnings.warn(f"[Bayesian] Low effective sample size for {low_ess} "
                          f"({self.config.backend})")
        if n_divergent:
            warnings.warn(f"[Bayesian] {n_divergent} divergent transitions after tuning")

        return diag

    @staticmethod
    def divergences(trace: az.InferenceData) -> Optional[int]:
        """Number of divergent transitions (None when the sampler has no such stat)."""
        stats = getattr(trace, 'sample_stats', None)
        if stats is None or 'diverging' not in stats:
            return None
        return int(stats['diverging'].values.sum())

    def summarize_posterior(self,
                            trace: Optional[az.InferenceData] = None,
                            credible_interval: Optional[float] = None) -> Dict:
        """Generate summary statistics from posterior.

        Args:
            trace: InferenceData (uses self.trace if None)
            credible_interval: Credible interval width (0.95 = 95% HDI)

        Returns:
            Dict with mean, median, std, CI, R-hat and ESS for each parameter
        """
        trace = self._require_trace(trace)
        credible_interval = credible_interval or self.config.credible_interval

        az_summary = az.summary(trace, var_names=self.main_var_names,
                                hdi_prob=credible_interval,
                                stat_funcs={'median': np.median}, extend=True)
        hdi_cols = [c for c in az_summary.columns if c.startswith('hdi_')]

        summary = {}
        for var_name in az_summary.index:
            row = az_summary.loc[var_name]
            summary[var_name] = {
                'mean': float(row['mean']),
                'median': float(row['median']),
                'std': float(row['sd']),
                'ci_lower': float(row[hdi_cols[0]]),
                'ci_upper': float(row[hdi_cols[1]]),
                'rhat': float(row['r_hat']) if 'r_hat' in az_summary.columns else None,
                'ess': float(row['ess_bulk']) if 'ess_bulk' in az_summary.columns else None,
            }

        return summary

    def original_scale_coefficients(self,
                                    scaling: Dict[str, Tuple[float, float]],
                                    trace: Optional[az.InferenceData] = None,
                                    credible_interval: Optional[float] = None) -> pd.DataFrame:
        """Map posterior draws back to the original units.

        Slopes become kg per unit of the original predictor (per month of
        age, per year of mother's age, female vs male, literate vs
        illiterate). Standard deviations become kg (kg per month for the
        age slope). sd(Intercept) is the between-child spread at age 0, the
        quantity REML reports as var(Group), so it combines both standardised
        random-effect sds and their correlation.

        Args:
            scaling: column -> (mean, sd) from standardize_growth_data()

        Returns:
            DataFrame indexed by term with mean, sd, ci_lower, ci_upper
        """
        trace = self._require_trace(trace)
        credible_interval = credible_interval or self.config.credible_interval
        cfg = self.config

        missing = [c for c in (cfg.response, cfg.slope_col) + tuple(cfg.predictors)
                   if c not in scaling]
        if missing:
            raise ValueError(f"Scaling parameters missing for: {missing}")

        post = trace.posterior
        y_mean, y_sd = scaling[cfg.response]

        draws = {}
        intercept = y_mean + y_sd * post['Intercept'].values
        for p in cfg.predictors:
            x_mean, x_sd = scaling[p]
            b = post['beta'].sel(predictor=p).values * y_sd / x_sd
            draws[p] = b
            intercept = intercept - b * x_mean
        draws['Intercept'] = intercept

        # Random intercept at age 0: y_sd * (u0 - u1 * m / s)
        sd0 = post['sd_re'].sel(effect='Intercept').values
        sd1 = post['sd_re'].sel(effect=cfg.slope_col).values
        slope_mean, slope_sd = scaling[cfg.slope_col]
        shift = slope_mean / slope_sd
        rho = post['corr_re'].values if cfg.correlated_effects and 'corr_re' in post else 0.0
        var0 = sd0 ** 2 - 2.0 * rho * sd0 * sd1 * shift + (sd1 * shift) ** 2
        draws['sd(Intercept)'] = np.sqrt(np.maximum(var0, 0.0)) * y_sd
        draws[f'sd({cfg.slope_col})'] = sd1 * y_sd / slope_sd
        draws['sigma'] = post['sigma'].values * y_sd

        rows = []
        for term, values in draws.items():
            flat = np.ravel(values)
            lower, upper = az.hdi(flat, hdi_prob=credible_interval)
            rows.append({
                'term': term,
                'mean': float(flat.mean()),
                'sd': float(flat.std(ddof=1)),
                'ci_lower': float(lower),
                'ci_upper': float(upper),
            })
        return pd.DataFrame(rows).set_index('term')

    def posterior_predictive_check(self,
                                   trace: Optional[az.InferenceData] = None) -> Dict:
        """Run posterior predictive checks.

        Replicates the response from posterior draws and compares mean and
        standard deviation of replicated and observed data.

        Returns:
            dict with observed statistics, replicated means and Bayesian
            p-values P(T(rep) ≥ T(obs))
        """
        trace = self._require_trace(trace)
        if self.model is None:
            raise ValueError("No model available. Run fit() first.")

        with self.model:
            pm.sample_posterior_predictive(trace, extend_inferencedata=True,
                                           random_seed=self.config.seed,
                                           progressbar=self.config.progressbar)

        y_obs = trace.observed_data['wt_obs'].values
        y_rep = trace.posterior_predictive['wt_obs'].values
        y_rep = y_rep.reshape(-1, y_rep.shape[-1])

        rep_mean = y_rep.mean(axis=1)
        rep_sd = y_rep.std(axis=1, ddof=1)
        obs_mean = float(y_obs.mean())
        obs_sd = float(y_obs.std(ddof=1))

        return {
            'observed_mean': obs_mean,
            'observed_sd': obs_sd,
            'replicated_mean': float(rep_mean.mean()),
            'replicated_sd': float(rep_sd.mean()),
            'p_value_mean': float(np.mean(rep_mean >= obs_mean)),
            'p_value_sd': float(np.mean(rep_sd >= obs_sd)),
        }

    def information_criteria(self, trace: Optional[az.InferenceData] = None) -> Dict:
        """PSIS-LOO expected log predictive density."""
        trace = self._require_trace(trace)
        if 'log_likelihood' not in trace.groups():
            raise ValueError("Trace has no log_likelihood group "
                             "(set compute_log_likelihood=True)")
        loo = az.loo(trace)
        return {
            'elpd_loo': float(loo.elpd_loo),
            'se': float(loo.se),
            'p_loo': float(loo.p_loo),
        }

    # ───────────────────────────────────────────────────────────
    # Plots
    # ───────────────────────────────────────────────────────────

    def plot_trace(self, trace: Optional[az.InferenceData] = None,
                   save_path: Optional[str] = None):
        """Trace plot (chains over time + marginal densities)."""
        trace = self._require_trace(trace)
        axes = az.plot_trace(trace, var_names=self.main_var_names, compact=True,
                             figsize=(12, 10))
        fig = np.ravel(axes)[0].figure
        fig.suptitle(f"Trace plot ({self.config.backend})")
        fig.tight_layout()
        if save_path:
            fig.savefig(f"{save_path}_trace.png", dpi=150, bbox_inches='tight')
        return fig

    def plot_coefficients(self, trace: Optional[az.InferenceData] = None,
                          save_path: Optional[str] = None):
        """Forest plot of the fixed-effect coefficients (standardised)."""
        trace = self._require_trace(trace)
        axes = az.plot_forest(trace, var_names=['Intercept', 'beta'], combined=True,
                              hdi_prob=self.config.credible_interval, r_hat=True,
                              ess=True, figsize=(10, 5))
        fig = np.ravel(axes)[0].figure
        fig.suptitle(f"Standardised coefficients ({self.config.backend})")
        if save_path:
            fig.savefig(f"{save_path}_coefficients.png", dpi=150, bbox_inches='tight')
        return fig

    def plot_ppc(self, trace: Optional[az.InferenceData] = None,
                 save_path: Optional[str] = None):
        """Posterior predictive density overlay."""
        trace = self._require_trace(trace)
        if 'posterior_predictive' not in trace.groups():
            self.posterior_predictive_check(trace)
        ax = az.plot_ppc(trace, num_pp_samples=100, figsize=(8, 5))
        fig = np.ravel(ax)[0].figure
        if save_path:
            fig.savefig(f"{save_path}_ppc.png", dpi=150, bbox_inches='tight')
        return fig

    # ───────────────────────────────────────────────────────────
    # I/O
    # ───────────────────────────────────────────────────────────

    def save_trace(self, filepath: str):
        """Save MCMC trace to file."""
        if self.trace is None:
            raise ValueError("No trace to save")

        az.to_netcdf(self.trace, filepath)
        print(f"[Bayesian] Trace saved to {filepath}")

    @staticmethod
    def load_trace(filepath: str) -> az.InferenceData:
        """Load saved MCMC trace."""
        trace = az.from_netcdf(filepath)
        print(f"[Bayesian] Trace loaded from {filepath}")
        return trace


def compare_backends(models: Dict[str, BayesianMixedModel]) -> pd.DataFrame:
    """Side-by-side convergence summary of fitted backends.

    Returns:
        One row per backend: worst R-hat, smallest bulk ESS, mean MCSE,
        divergences and sampling time when recorded
    """
    rows = []
    for name, model in models.items():
        diag = model.convergence_diagnostics()
        stats = model.trace.sample_stats
        rows.append({
            'backend': name,
            'max_r_hat': float(diag['r_hat'].max()),
            'min_ess_bulk': float(diag['ess_bulk'].min()),
            'mean_mcse': float(diag['mcse_mean'].mean()),
            'divergences': model.divergences(model.trace),
            'sampling_time_s': float(stats.attrs['sampling_time']) if 'sampling_time' in stats.attrs else np.nan,
        })
    return pd.DataFrame(rows).set_index('backend')


def plot_backend_forest(models: Dict[str, BayesianMixedModel],
                        credible_interval: float = 0.95,
                        save_path: Optional[str] = None):
    """Forest plot of the standardised coefficients, one band per backend."""
    names = list(models)
    axes = az.plot_forest([models[n].trace for n in names], model_names=names,
                          var_names=['Intercept', 'beta', 'sd_re', 'sigma'],
                          combined=True, hdi_prob=credible_interval, figsize=(10, 7))
    fig = np.ravel(axes)[0].figure
    fig.suptitle('Posterior by sampling backend (standardised scale)')
    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches='tight')
    return fig
