"""Unit tests for growth data loading, cleaning and rescaling.

All tests are self-contained: CSV files are written via pytest's tmp_path
fixture from the deterministic sample dataset.
"""
import numpy as np
import pandas as pd
import pytest

from child_growth.data import (
    GrowthDataLoader,
    REQUIRED_COLUMNS,
    SCALED_COLUMNS,
    check_data_integrity,
    clean_growth_data,
    create_sample_growth_data,
    describe_growth_data,
    standardize_growth_data,
    write_sample_growth_csv,
)


# ─────────────────────────────────────────────────────────────
# Sample data
# ─────────────────────────────────────────────────────────────

class TestSampleData:

    def test_same_seed_same_table(self):
        a = create_sample_growth_data(n_children=30, seed=3)
        b = create_sample_growth_data(n_children=30, seed=3)
        pd.testing.assert_frame_equal(a, b)

    def test_different_seed_differs(self):
        a = create_sample_growth_data(n_children=30, seed=3)
        b = create_sample_growth_data(n_children=30, seed=4)
        assert not a['wt'].equals(b['wt'])

    def test_default_layout(self):
        df = create_sample_growth_data()
        assert len(df) == 200 * 5
        assert df['id'].nunique() == 200
        assert list(df.columns) == ['id', 'sex', 'wt', 'ht', 'mage', 'lit',
                                    'died', 'alive', 'age']
        assert (df.groupby('id').size() == 5).all()

    def test_visits_four_months_apart(self):
        df = create_sample_growth_data(n_children=20)
        gaps = df.groupby('id')['age'].diff().dropna()
        assert (gaps == 4).all()

    def test_missing_weight_rate(self):
        df = create_sample_growth_data(n_children=100, missing_rate=0.12)
        assert int(df['wt'].isna().sum()) == 60

    def test_codes_in_range(self):
        df = create_sample_growth_data(n_children=50)
        assert set(df['sex'].unique()) == {1, 2}
        assert set(df['lit'].unique()) == {0, 1}
        assert df['mage'].between(15, 48).all()

    def test_tiny_dataset_has_both_levels(self):
        df = create_sample_growth_data(n_children=2, missing_rate=0.0, seed=11)
        assert df['sex'].nunique() == 2
        assert df['lit'].nunique() == 2

    def test_weight_increases_with_age(self):
        df = create_sample_growth_data(n_children=200).dropna(subset=['wt'])
        slope = np.polyfit(df['age'], df['wt'], 1)[0]
        assert 0.1 < slope < 0.3


# ─────────────────────────────────────────────────────────────
# Loader
# ─────────────────────────────────────────────────────────────

class TestGrowthDataLoader:

    def test_round_trip_through_csv(self, tmp_path):
        csv_file = write_sample_growth_csv(str(tmp_path), n_children=25)
        loader = GrowthDataLoader(str(tmp_path))
        df = loader.load_csv(csv_file.name)
        assert len(df) == 125
        assert all(c in df.columns for c in REQUIRED_COLUMNS)
        assert df['wt'].isna().sum() == 15

    def test_absolute_path(self, tmp_path):
        csv_file = write_sample_growth_csv(str(tmp_path), n_children=10)
        loader = GrowthDataLoader(str(tmp_path))
        df = loader.load_csv(str(csv_file.resolve()))
        assert len(df) == 50

    def test_missing_file_raises(self, tmp_path):
        loader = GrowthDataLoader(str(tmp_path))
        with pytest.raises(FileNotFoundError):
            loader.load_csv('nope.csv')

    def test_missing_columns_raise(self, tmp_path):
        pd.DataFrame({'id': [1], 'wt': [3.2]}).to_csv(tmp_path / 'bad.csv', index=False)
        loader = GrowthDataLoader(str(tmp_path))
        with pytest.raises(ValueError, match="Missing required columns"):
            loader.load_csv('bad.csv')

    def test_missing_directory_warns(self, tmp_path):
        with pytest.warns(UserWarning, match="does not exist"):
            GrowthDataLoader(str(tmp_path / 'absent'))


# ─────────────────────────────────────────────────────────────
# Cleaning
# ─────────────────────────────────────────────────────────────

class TestCleaning:

    def test_no_missing_weight(self, raw_growth, clean_growth):
        assert raw_growth['wt'].isna().any()
        assert clean_growth['wt'].notna().all()

    def test_rows_not_increased(self, raw_growth, clean_growth):
        assert len(clean_growth) <= len(raw_growth)
        assert len(clean_growth) == int(raw_growth['wt'].notna().sum())

    def test_height_dropped(self, clean_growth):
        assert 'ht' not in clean_growth.columns

    def test_categoricals(self, clean_growth):
        assert isinstance(clean_growth['sex'].dtype, pd.CategoricalDtype)
        assert isinstance(clean_growth['lit'].dtype, pd.CategoricalDtype)
        assert list(clean_growth['sex'].cat.categories) == ['male', 'female']
        assert list(clean_growth['lit'].cat.categories) == ['illiterate', 'literate']
        assert clean_growth['sex'].nunique() == 2
        assert clean_growth['lit'].nunique() == 2

    def test_raw_untouched(self, raw_growth):
        before = raw_growth.copy()
        clean_growth_data(raw_growth)
        pd.testing.assert_frame_equal(raw_growth, before)

    def test_unknown_sex_code_raises(self, raw_growth):
        bad = raw_growth.copy()
        bad.loc[0, 'sex'] = 9
        bad.loc[0, 'wt'] = 5.0
        with pytest.raises(ValueError, match="sex"):
            clean_growth_data(bad)

    def test_missing_column_raises(self, raw_growth):
        with pytest.raises(ValueError):
            clean_growth_data(raw_growth.drop(columns=['lit']))


# ─────────────────────────────────────────────────────────────
# Rescaling and integrity checks
# ─────────────────────────────────────────────────────────────

class TestStandardize:

    def test_zero_mean_unit_sd(self, scaled_growth):
        scaled, _ = scaled_growth
        for col in SCALED_COLUMNS:
            values = scaled[col].astype(float)
            assert abs(values.mean()) < 1e-9
            assert values.std(ddof=1) == pytest.approx(1.0)

    def test_scaling_recovers_original(self, clean_growth, scaled_growth):
        scaled, scaling = scaled_growth
        mean, sd = scaling['age']
        np.testing.assert_allclose(scaled['age'] * sd + mean, clean_growth['age'])
        assert scaling['wt'][0] == pytest.approx(clean_growth['wt'].mean())

    def test_categorical_uses_codes(self, clean_growth, scaled_growth):
        _, scaling = scaled_growth
        female_share = (clean_growth['sex'] == 'female').mean()
        assert scaling['sex'][0] == pytest.approx(female_share)

    def test_other_columns_untouched(self, clean_growth, scaled_growth):
        scaled, _ = scaled_growth
        pd.testing.assert_series_equal(scaled['id'], clean_growth['id'])
        pd.testing.assert_series_equal(scaled['died'], clean_growth['died'])

    def test_constant_column_raises(self, clean_growth):
        const = clean_growth.copy()
        const['mage'] = 30
        with pytest.raises(ValueError, match="constant"):
            standardize_growth_data(const)

    def test_unknown_column_raises(self, clean_growth):
        with pytest.raises(ValueError):
            standardize_growth_data(clean_growth, columns=['height'])

    @pytest.mark.parametrize("col", ['sex', 'lit'])
    def test_missing_category_raises(self, raw_growth, col):
        raw = raw_growth.copy()
        row = raw.index[raw['wt'].notna()][0]
        raw.loc[row, col] = np.nan
        clean = clean_growth_data(raw)
        assert clean[col].isna().sum() == 1
        with pytest.raises(ValueError, match="missing"):
            standardize_growth_data(clean)

    def test_missing_numeric_raises(self, clean_growth):
        holes = clean_growth.copy()
        holes.loc[holes.index[0], 'mage'] = np.nan
        with pytest.raises(ValueError, match="'mage' has 1 missing"):
            standardize_growth_data(holes)


class TestIntegrity:

    def test_all_checks_pass(self, raw_growth, clean_growth, scaled_growth):
        scaled, _ = scaled_growth
        checks = check_data_integrity(raw_growth, clean_growth, scaled)
        assert all(checks.values())
        assert 'wt_mean_zero' in checks
        assert 'age_sd_one' in checks

    def test_single_level_warns(self, raw_growth, clean_growth):
        boys = clean_growth[clean_growth['sex'] == 'male']
        with pytest.warns(UserWarning, match="sex_two_levels"):
            checks = check_data_integrity(raw_growth, boys)
        assert checks['sex_two_levels'] is False

    def test_strict_raises(self, raw_growth, clean_growth):
        boys = clean_growth[clean_growth['sex'] == 'male']
        with pytest.raises(ValueError):
            check_data_integrity(raw_growth, boys, strict=True)

    def test_unscaled_frame_fails_scaling_checks(self, raw_growth, clean_growth):
        with pytest.warns(UserWarning):
            checks = check_data_integrity(raw_growth, clean_growth, clean_growth,
                                          scaled_columns=['wt', 'age'])
        assert checks['wt_mean_zero'] is False


class TestDescribe:

    def test_tables(self, clean_growth):
        desc = describe_growth_data(clean_growth)
        assert set(desc) == {'numeric', 'categorical', 'visits'}
        assert 'wt' in desc['numeric'].index
        assert len(desc['categorical']) == 4
        assert desc['visits']['n_children'].sum() == clean_growth['id'].nunique()
