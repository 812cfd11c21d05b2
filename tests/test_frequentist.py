"""
Tests for the REML linear mixed-effects model.
"""
import numpy as np
import pandas as pd
import pytest

from child_growth.data import clean_growth_data, create_sample_growth_data
from child_growth.frequentist import (
    FrequentistMixedModel,
    MixedModelConfig,
    formula_predictors,
)


@pytest.fixture(scope="module")
def growth():
    return clean_growth_data(create_sample_growth_data(n_children=120, seed=21))


@pytest.fixture(scope="module")
def fitted(growth):
    lmm = FrequentistMixedModel()
    lmm.fit(growth)
    return lmm


class TestConfig:

    def test_defaults(self):
        cfg = MixedModelConfig()
        assert cfg.formula == 'wt ~ sex + mage + lit + age'
        assert cfg.re_formula == '~age'
        assert cfg.reml is True
        assert cfg.methods[0] == 'lbfgs'

    def test_formula_predictors(self):
        assert formula_predictors('wt ~ sex + mage + lit + age') == ['sex', 'mage', 'lit', 'age']
        assert formula_predictors('wt ~ age + sex:age') == ['age', 'sex']


class TestFit:

    def test_unfitted_raises(self):
        lmm = FrequentistMixedModel()
        with pytest.raises(ValueError, match="not fitted"):
            lmm.coefficient_table()
        with pytest.raises(ValueError):
            lmm.predict()

    def test_missing_column_raises(self, growth):
        lmm = FrequentistMixedModel()
        with pytest.raises(ValueError, match="mage"):
            lmm.fit(growth.drop(columns=['mage']))

    def test_fit_populates_state(self, fitted, growth):
        assert fitted.result is not None
        assert fitted.method_used in fitted.config.methods
        assert fitted.data is growth
        stats = fitted.fit_statistics()
        assert stats['n_obs'] == len(growth)
        assert stats['n_groups'] == growth['id'].nunique()

    def test_recovers_age_slope(self, fitted):
        coefs = fitted.coefficient_table()
        age = coefs.loc['age']
        assert 0.15 < age['estimate'] < 0.25
        assert age['ci_lower'] > 0
        assert age['p_value'] < 0.001

    def test_coefficient_table_layout(self, fitted):
        coefs = fitted.coefficient_table()
        assert list(coefs.columns) == ['estimate', 'std_error', 'z', 'p_value',
                                       'ci_lower', 'ci_upper']
        for term in ['Intercept', 'sex[T.female]', 'lit[T.literate]', 'mage', 'age']:
            assert term in coefs.index
        assert (coefs['ci_lower'] < coefs['estimate']).all()
        assert (coefs['estimate'] < coefs['ci_upper']).all()
        assert coefs['p_value'].between(0, 1).all()

    def test_wider_interval_at_lower_alpha(self, fitted):
        ci95 = fitted.coefficient_table(alpha=0.05)
        ci99 = fitted.coefficient_table(alpha=0.01)
        width95 = ci95['ci_upper'] - ci95['ci_lower']
        width99 = ci99['ci_upper'] - ci99['ci_lower']
        assert (width99 > width95).all()

    def test_variance_components(self, fitted):
        vc = fitted.variance_components().set_index('component')
        assert {'var(Group)', 'var(age)', 'cov(Group,age)', 'residual'} <= set(vc.index)
        assert vc.loc['residual', 'sd'] > 0
        assert vc.loc['var(Group)', 'variance'] >= 0
        corr = vc.loc['cov(Group,age)', 'correlation']
        assert np.isnan(corr) or -1.0 <= corr <= 1.0

    def test_random_effects_one_row_per_child(self, fitted, growth):
        re = fitted.random_effects_table()
        assert len(re) == growth['id'].nunique()
        assert re.shape[1] == 2


class TestDiagnostics:

    def test_residual_diagnostics(self, fitted):
        diag = fitted.residual_diagnostics()
        for key in ['breusch_pagan_stat', 'breusch_pagan_p', 'shapiro_stat', 'shapiro_p',
                    'skewness', 'excess_kurtosis', 'heteroscedastic', 'non_normal']:
            assert key in diag
        assert 0.0 <= diag['breusch_pagan_p'] <= 1.0
        assert 0.0 <= diag['shapiro_p'] <= 1.0
        assert isinstance(diag['heteroscedastic'], bool)

    def test_spread_trend(self, fitted):
        trend = fitted.residual_diagnostics()['spread_fitted_corr']
        assert -1.0 <= trend <= 1.0

    def test_leverage_table(self, fitted, growth):
        lev = fitted.leverage_table()
        assert len(lev) == len(growth)
        assert lev['leverage'].between(0, 1).all()
        assert (lev['cooks_distance'] >= 0).all()
        assert lev['influential'].dtype == bool

    def test_collinearity_table(self, fitted):
        vif = fitted.collinearity_table()
        assert len(vif) == 4
        assert 'Intercept' not in set(vif['term'])
        assert (vif['vif'] >= 1.0 - 1e-9).all()

    def test_plot_diagnostics(self, fitted, tmp_path):
        fig = fitted.plot_diagnostics(save_path=str(tmp_path / 'lmm'))
        assert len(fig.axes) >= 6
        assert (tmp_path / 'lmm_diagnostics.png').exists()

    def test_compare_random_structures(self, fitted):
        table = fitted.compare_random_structures()
        assert len(table) == 2
        full = table.iloc[1]
        assert full['lr_stat'] >= 0
        assert full['n_cov_params'] == 3
        assert 0.0 <= full['p_value'] <= 1.0


class TestPrediction:

    def test_default_predicts_fitted_rows(self, fitted, growth):
        pred = fitted.predict()
        assert pred.shape == (len(growth),)
        assert np.all(np.isfinite(pred))

    def test_population_prediction_matches_fixed_effects(self, fitted, growth):
        rows = growth.iloc[:5]
        pred = fitted.predict(rows, include_random=False)
        fe = fitted.result.fe_params
        expected = (fe['Intercept']
                    + fe['sex[T.female]'] * (rows['sex'] == 'female')
                    + fe['lit[T.literate]'] * (rows['lit'] == 'literate')
                    + fe['mage'] * rows['mage']
                    + fe['age'] * rows['age'])
        np.testing.assert_allclose(pred, expected.values, rtol=1e-8)

    def test_seen_child_gets_random_effects(self, fitted, growth):
        rows = growth.iloc[:10]
        with_re = fitted.predict(rows, include_random=True)
        without = fitted.predict(rows, include_random=False)
        assert not np.allclose(with_re, without)

    def test_unseen_child_gets_population_prediction(self, fitted, growth):
        rows = growth.iloc[:3].copy()
        rows['id'] = -1
        np.testing.assert_allclose(
            fitted.predict(rows, include_random=True),
            fitted.predict(rows, include_random=False),
        )

    def test_random_effects_closer_to_observed(self, fitted, growth):
        with_re = fitted.predict(growth, include_random=True)
        without = fitted.predict(growth, include_random=False)
        err_re = np.mean((growth['wt'].values - with_re) ** 2)
        err_fe = np.mean((growth['wt'].values - without) ** 2)
        assert err_re < err_fe

    def test_missing_columns_raise(self, fitted, growth):
        with pytest.raises(ValueError, match="Missing columns"):
            fitted.predict(growth.drop(columns=['age']))
        with pytest.raises(ValueError, match="id"):
            fitted.predict(growth.drop(columns=['id']), include_random=True)

    def test_population_prediction_without_id(self, fitted, growth):
        rows = growth.drop(columns=['id']).iloc[:4]
        assert fitted.predict(rows, include_random=False).shape == (4,)


def test_print_summary(fitted, capsys):
    fitted.print_summary()
    out = capsys.readouterr().out
    assert 'LINEAR MIXED MODEL (REML)' in out
    assert 'residual' in out
