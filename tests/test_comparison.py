"""Tests for method comparison and narrative interpretation."""
import numpy as np
import pandas as pd
import pytest

from child_growth.comparison import (
    build_comparison_table,
    describe_effects,
    interval_agreement,
    plot_comparison,
    term_key,
    write_narrative,
)


@pytest.fixture
def freq_coefs():
    return pd.DataFrame({
        'estimate': [3.5, -0.3, 0.02, 0.4, 0.2],
        'std_error': [0.3, 0.1, 0.01, 0.15, 0.005],
        'z': [11.7, -3.0, 2.0, 2.7, 40.0],
        'p_value': [0.0, 0.003, 0.2, 0.007, 0.0],
        'ci_lower': [2.9, -0.5, -0.01, 0.1, 0.19],
        'ci_upper': [4.1, -0.1, 0.04, 0.7, 0.21],
    }, index=['Intercept', 'sex[T.female]', 'mage', 'lit[T.literate]', 'age'])


def _bayes_table(shift=0.0, flip=None):
    terms = ['Intercept', 'sex', 'mage', 'lit', 'age', 'sd(Intercept)', 'sd(age)', 'sigma']
    means = np.array([3.5, -0.3, 0.02, 0.4, 0.2, 0.5, 0.03, 0.6]) + shift
    if flip:
        means[terms.index(flip)] *= -1
    return pd.DataFrame({
        'mean': means,
        'sd': 0.05,
        'ci_lower': means - 0.1,
        'ci_upper': means + 0.1,
    }, index=pd.Index(terms, name='term'))


@pytest.fixture
def bayes_coefs():
    return {'hmc': _bayes_table(), 'gibbs': _bayes_table(shift=0.5)}


class TestComparisonTable:

    def test_term_key(self):
        assert term_key('sex[T.female]') == 'sex'
        assert term_key('age') == 'age'

    def test_frequentist_only(self, freq_coefs):
        table = build_comparison_table(freq_coefs)
        assert list(table.columns) == ['term', 'method', 'estimate', 'ci_lower', 'ci_upper']
        assert set(table['method']) == {'reml'}
        assert list(table['term']) == ['Intercept', 'sex', 'mage', 'lit', 'age']

    def test_one_row_per_term_and_method(self, freq_coefs, bayes_coefs):
        table = build_comparison_table(freq_coefs, bayes_coefs)
        assert len(table) == 5 * 3
        # Random-effect sds and sigma are not fixed effects
        assert 'sigma' not in set(table['term'])
        row = table[(table['term'] == 'age') & (table['method'] == 'hmc')].iloc[0]
        assert row['estimate'] == pytest.approx(0.2)


class TestIntervalAgreement:

    def test_inside_and_outside(self, freq_coefs, bayes_coefs):
        agreement = interval_agreement(build_comparison_table(freq_coefs, bayes_coefs))
        agreement = agreement.set_index('term')
        assert agreement['reml_in_hmc_ci'].all()
        assert not agreement['reml_in_gibbs_ci'].any()
        assert agreement.loc['age', 'reml_estimate'] == pytest.approx(0.2)

    def test_sign_disagreement(self, freq_coefs):
        table = build_comparison_table(freq_coefs, {'hmc': _bayes_table(flip='lit')})
        agreement = interval_agreement(table).set_index('term')
        assert not agreement.loc['lit', 'sign_agreement']
        assert agreement.loc['age', 'sign_agreement']


class TestNarrative:

    def test_describe_effects(self, freq_coefs):
        sentences = describe_effects(freq_coefs)
        assert len(sentences) == 4
        text = ' '.join(sentences)
        assert 'Girls are on average 0.300 kg lighter' in text
        assert 'literate mothers are 0.400 kg heavier' in text
        assert 'not statistically distinguishable' in text

    def test_interval_level_follows_alpha(self, freq_coefs):
        text = ' '.join(describe_effects(freq_coefs, alpha=0.10))
        assert '90% CI' in text
        assert '95% CI' not in text
        assert '95% CI' in ' '.join(describe_effects(freq_coefs))

    @pytest.mark.parametrize("trend, word", [(0.35, 'grows'), (-0.35, 'shrinks')])
    def test_heteroscedasticity_direction(self, freq_coefs, trend, word):
        residuals = {'breusch_pagan_p': 1e-4, 'shapiro_p': 0.3, 'excess_kurtosis': 0.1,
                     'heteroscedastic': True, 'non_normal': False,
                     'spread_fitted_corr': trend}
        first = write_narrative(freq_coefs, residuals=residuals)['diagnostics'][0]
        assert f'the spread {word} with fitted weight' in first
        assert f'{trend:+.2f}' in first

    def test_heteroscedasticity_without_trend(self, freq_coefs):
        residuals = {'breusch_pagan_p': 1e-4, 'shapiro_p': 0.3, 'excess_kurtosis': 0.1,
                     'heteroscedastic': True, 'non_normal': False}
        first = write_narrative(freq_coefs, residuals=residuals)['diagnostics'][0]
        assert 'not constant' in first
        assert 'grows' not in first and 'shrinks' not in first

    def test_findings_reported(self, freq_coefs, bayes_coefs):
        variance = pd.DataFrame([
            {'component': 'var(Group)', 'variance': 0.25, 'sd': 0.5, 'correlation': np.nan},
            {'component': 'var(age)', 'variance': 0.0009, 'sd': 0.03, 'correlation': np.nan},
            {'component': 'cov(Group,age)', 'variance': 0.001, 'sd': np.nan, 'correlation': 0.07},
            {'component': 'residual', 'variance': 0.36, 'sd': 0.6, 'correlation': np.nan},
        ])
        residuals = {'breusch_pagan_p': 1e-5, 'shapiro_p': 1e-4, 'excess_kurtosis': 1.8,
                     'heteroscedastic': True, 'non_normal': True}
        collinearity = pd.DataFrame({'term': ['mage', 'age'], 'vif': [1.02, 1.01]})
        convergence = {'hmc': pd.DataFrame({
            'r_hat': [1.0, 1.002], 'ess_bulk': [900.0, 1200.0], 'rhat_ok': [True, True]})}
        ppc = {'hmc': {'p_value_mean': 0.5, 'p_value_sd': 0.45}}
        agreement = interval_agreement(build_comparison_table(freq_coefs, bayes_coefs))

        narrative = write_narrative(freq_coefs, variance=variance, residuals=residuals,
                                    collinearity=collinearity, agreement=agreement,
                                    convergence=convergence, ppc=ppc)

        assert set(narrative) == {'effects', 'model', 'diagnostics', 'bayesian', 'comparison'}
        diagnostics = ' '.join(narrative['diagnostics'])
        assert 'not constant' in diagnostics
        assert 'heavier tails' in diagnostics
        model = ' '.join(narrative['model'])
        assert '0.030 kg per month' in model
        assert 'Collinearity is not a concern' in model
        assert 'Bayes (HMC) converged' in narrative['bayesian'][0]
        comparison = ' '.join(narrative['comparison'])
        assert 'Bayes (HMC) credible interval for 5 of 5 terms' in comparison
        assert 'Bayes (Gibbs) credible interval for 0 of 5 terms' in comparison

    def test_frequentist_only_narrative(self, freq_coefs):
        narrative = write_narrative(freq_coefs)
        assert narrative['bayesian'] == []
        assert narrative['comparison'] == []
        assert len(narrative['effects']) == 4

    def test_clean_diagnostics(self, freq_coefs):
        residuals = {'breusch_pagan_p': 0.4, 'shapiro_p': 0.3, 'excess_kurtosis': 0.1,
                     'heteroscedastic': False, 'non_normal': False}
        narrative = write_narrative(freq_coefs, residuals=residuals)
        assert 'No evidence of heteroscedasticity' in narrative['diagnostics'][0]
        assert 'compatible with normality' in narrative['diagnostics'][1]


def test_plot_comparison(freq_coefs, bayes_coefs, tmp_path):
    table = build_comparison_table(freq_coefs, bayes_coefs)
    path = tmp_path / 'comparison.png'
    fig = plot_comparison(table, save_path=str(path))
    assert len(fig.axes) == 4
    assert path.exists()
