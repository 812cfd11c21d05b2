"""
Child growth data loading, cleaning and rescaling.

Supports:
- CSV files with one row per child visit
- A deterministic in-memory sample dataset shaped like the Nepalese
  child-health survey subset (200 children, 5 visits each)

Expected CSV format:
    id,sex,wt,ht,mage,lit,died,alive,age
    120011,1,12.8,91.2,35,0,2,5,41
    120011,1,13.1,93.9,35,0,2,5,45
    ...

sex: 1 = male, 2 = female. lit: 0 = mother illiterate, 1 = literate.
wt may be missing; ht is carried in the raw data but not modelled.
"""
import numpy as np
import pandas as pd
from pathlib import Path
from typing import Dict, Iterable, Optional, Tuple
import warnings


REQUIRED_COLUMNS = ['id', 'sex', 'wt', 'mage', 'lit', 'died', 'alive', 'age']
UNUSED_COLUMNS = ['ht']

SEX_LEVELS = {1: 'male', 2: 'female'}
LITERACY_LEVELS = {0: 'illiterate', 1: 'literate'}

# Columns rescaled for the Bayesian stage (response first)
SCALED_COLUMNS = ('wt', 'sex', 'mage', 'lit', 'age')


class GrowthDataLoader:
    """Load and validate child growth records."""

    def __init__(self, data_dir: str = 'data'):
        """
        Args:
            data_dir: Directory containing growth CSV files
        """
        self.data_dir = Path(data_dir)
        if not self.data_dir.exists():
            warnings.warn(f"Data directory does not exist: {self.data_dir}")

    def load_csv(self, filename: str, delimiter: str = ',') -> pd.DataFrame:
        """Load raw growth records from CSV.

        Args:
            filename: Filename relative to data_dir, or absolute path.
            delimiter: Column delimiter.

        Returns:
            Raw DataFrame with at least REQUIRED_COLUMNS.
        """
        filepath = self.data_dir / filename if not Path(filename).is_absolute() else Path(filename)

        if not filepath.exists():
            raise FileNotFoundError(f"Growth data file not found: {filepath}")

        _engine = 'python' if len(delimiter) > 1 else 'c'
        df = pd.read_csv(filepath, sep=delimiter, engine=_engine)

        missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
        if missing:
            raise ValueError(f"Missing required columns in {filename}: {missing}")

        print(f"[Data] Loaded {len(df)} records for {df['id'].nunique()} children")
        print(f"  Missing weights: {int(df['wt'].isna().sum())}")

        return df


def create_sample_growth_data(n_children: int = 200,
                              n_visits: int = 5,
                              visit_interval_months: int = 4,
                              missing_rate: float = 0.12,
                              seed: int = 1234) -> pd.DataFrame:
    """Generate the fixed sample growth dataset.

    Children are followed for ``n_visits`` visits spaced
    ``visit_interval_months`` apart. Weight grows linearly with age with a
    child-specific intercept and slope; noise grows with age so the
    frequentist residuals show heteroscedasticity.

    Args:
        n_children: Number of children
        n_visits: Visits per child
        visit_interval_months: Months between visits
        missing_rate: Fraction of weights set to NaN
        seed: Random seed (same seed gives the same table)

    Returns:
        Raw DataFrame in the CSV layout described in the module docstring
    """
    rng = np.random.RandomState(seed)

    sexes = np.where(rng.rand(n_children) < 0.52, 1, 2)
    lits = np.where(rng.rand(n_children) < 0.18, 1, 0)
    # Both levels of each factor must be present
    if len(set(sexes)) < 2 and n_children > 1:
        sexes[0] = 3 - sexes[0]
    if len(set(lits)) < 2 and n_children > 1:
        lits[0] = 1 - lits[0]

    rows = []
    for i in range(n_children):
        child_id = 120011 + 10 * i
        sex = int(sexes[i])
        lit = int(lits[i])
        mage = int(np.clip(np.round(rng.normal(27.0, 5.5)), 15, 48))
        alive = int(np.clip(rng.poisson(1.0 + (mage - 15) / 6.0), 1, 12))
        died = int(rng.binomial(alive + 1, 0.12 if lit else 0.2))
        start_age = int(rng.randint(0, 60 - visit_interval_months * (n_visits - 1) + 1))

        # Child-specific growth curve
        intercept = (3.6 - 0.35 * (sex == 2) + 0.25 * lit + 0.015 * (mage - 27)
                     + rng.normal(0.0, 0.45))
        slope = 0.2 + rng.normal(0.0, 0.03)
        height0 = 52.0 + rng.normal(0.0, 2.0)

        for v in range(n_visits):
            age = start_age + v * visit_interval_months
            noise_sd = 0.25 + 0.012 * age
            wt = intercept + slope * age + rng.standard_t(5) * noise_sd
            ht = height0 + 0.9 * age - 0.004 * age ** 2 + rng.normal(0.0, 1.2)
            rows.append({
                'id': child_id,
                'sex': sex,
                'wt': round(max(wt, 1.5), 1),
                'ht': round(ht, 1),
                'mage': mage,
                'lit': lit,
                'died': died,
                'alive': alive,
                'age': age,
            })

    df = pd.DataFrame(rows, columns=['id', 'sex', 'wt', 'ht', 'mage', 'lit',
                                     'died', 'alive', 'age'])

    n_missing = int(round(missing_rate * len(df)))
    if n_missing > 0:
        idx = rng.choice(len(df), size=n_missing, replace=False)
        df.loc[idx, ['wt', 'ht']] = np.nan

    return df


def write_sample_growth_csv(output_dir: str = 'data',
                            filename: str = 'child_growth.csv',
                            **kwargs) -> Path:
    """Write the sample dataset to CSV and return its path.

    Extra keyword arguments are passed to create_sample_growth_data().
    """
    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)

    df = create_sample_growth_data(**kwargs)
    csv_file = output_path / filename
    df.to_csv(csv_file, index=False)
    print(f"[OK] Created growth data file: {csv_file} ({len(df)} rows)")
    return csv_file


def clean_growth_data(raw: pd.DataFrame) -> pd.DataFrame:
    """Drop missing weights and the unused height column, set categoricals.

    Returns a new DataFrame; ``raw`` is left untouched.
    """
    missing = [c for c in REQUIRED_COLUMNS if c not in raw.columns]
    if missing:
        raise ValueError(f"Missing required columns: {missing}")

    clean = raw.dropna(subset=['wt']).copy()
    clean = clean.drop(columns=[c for c in UNUSED_COLUMNS if c in clean.columns])

    unknown_sex = set(clean['sex'].dropna().unique()) - set(SEX_LEVELS)
    if unknown_sex:
        raise ValueError(f"Unexpected sex codes: {sorted(unknown_sex)}")
    unknown_lit = set(clean['lit'].dropna().unique()) - set(LITERACY_LEVELS)
    if unknown_lit:
        raise ValueError(f"Unexpected literacy codes: {sorted(unknown_lit)}")

    clean['sex'] = pd.Categorical(clean['sex'].map(SEX_LEVELS),
                                  categories=list(SEX_LEVELS.values()))
    clean['lit'] = pd.Categorical(clean['lit'].map(LITERACY_LEVELS),
                                  categories=list(LITERACY_LEVELS.values()))
    clean = clean.reset_index(drop=True)

    print(f"[Data] Cleaned: {len(raw)} -> {len(clean)} rows "
          f"({len(raw) - len(clean)} dropped for missing weight)")
    return clean


def standardize_growth_data(clean: pd.DataFrame,
                            columns: Iterable[str] = SCALED_COLUMNS
                            ) -> Tuple[pd.DataFrame, Dict[str, Tuple[float, float]]]:
    """Rescale columns to zero mean and unit sample standard deviation.

    Categorical columns are rescaled from their integer category codes
    (male=0/female=1, illiterate=0/literate=1). Missing values raise
    ValueError rather than being coded as a level.

    Returns:
        scaled: copy of ``clean`` with the listed columns rescaled
        scaling: column -> (mean, sd) on the unscaled numeric coding
    """
    scaled = clean.copy()
    scaling = {}

    for col in columns:
        if col not in scaled.columns:
            raise ValueError(f"Column '{col}' not found for rescaling")

        values = scaled[col]
        if isinstance(values.dtype, pd.CategoricalDtype):
            codes = pd.Series(values.cat.codes, index=values.index)
            values = codes.where(codes >= 0)
        values = values.astype(np.float64)
        if values.isna().any():
            raise ValueError(f"Column '{col}' has {int(values.isna().sum())} missing values; "
                             f"drop or impute them before rescaling")

        mean = float(values.mean())
        sd = float(values.std(ddof=1))
        if not np.isfinite(sd) or sd < 1e-12:
            raise ValueError(f"Column '{col}' is constant and cannot be rescaled")

        scaled[col] = (values - mean) / sd
        scaling[col] = (mean, sd)

    return scaled, scaling


def check_data_integrity(raw: pd.DataFrame,
                         clean: pd.DataFrame,
                         scaled: Optional[pd.DataFrame] = None,
                         scaled_columns: Iterable[str] = SCALED_COLUMNS,
                         tol: float = 1e-6,
                         strict: bool = False) -> Dict[str, bool]:
    """Run the data-hygiene checks on the cleaned (and rescaled) tables.

    Args:
        raw: Raw table as loaded
        clean: Output of clean_growth_data()
        scaled: Output of standardize_growth_data() (optional)
        scaled_columns: Columns expected to be rescaled
        tol: Tolerance for mean/sd checks
        strict: Raise ValueError on the first failing check instead of warning

    Returns:
        check name -> passed
    """
    checks = {
        'no_missing_weight': bool(clean['wt'].notna().all()),
        'rows_not_increased': len(clean) <= len(raw),
        'sex_two_levels': clean['sex'].nunique() == 2,
        'lit_two_levels': clean['lit'].nunique() == 2,
    }

    if scaled is not None:
        for col in scaled_columns:
            values = scaled[col].astype(np.float64)
            checks[f'{col}_mean_zero'] = abs(float(values.mean())) < tol
            checks[f'{col}_sd_one'] = abs(float(values.std(ddof=1)) - 1.0) < tol

    failed = [name for name, ok in checks.items() if not ok]
    if failed:
        msg = f"Data integrity checks failed: {failed}"
        if strict:
            raise ValueError(msg)
        warnings.warn(msg)
    else:
        print(f"[Data] All {len(checks)} integrity checks passed")

    return checks


def describe_growth_data(clean: pd.DataFrame) -> Dict[str, pd.DataFrame]:
    """Descriptive tables for the cleaned data.

    Returns:
        dict with 'numeric' (describe() of numeric columns), 'categorical'
        (counts per level) and 'visits' (children by number of visits)
    """
    numeric_cols = [c for c in ['wt', 'age', 'mage', 'died', 'alive'] if c in clean.columns]
    numeric = clean[numeric_cols].describe().T

    cat_rows = []
    for col in ['sex', 'lit']:
        counts = clean[col].value_counts(sort=False)
        children = clean.groupby(col, observed=False)['id'].nunique()
        for level, n in counts.items():
            cat_rows.append({
                'variable': col,
                'level': level,
                'n_records': int(n),
                'n_children': int(children.loc[level]),
                'mean_wt': float(clean.loc[clean[col] == level, 'wt'].mean()),
            })
    categorical = pd.DataFrame(cat_rows)

    visits_per_child = clean.groupby('id').size()
    visits = (visits_per_child.value_counts().sort_index()
              .rename_axis('n_visits').reset_index(name='n_children'))

    return {
        'numeric': numeric,
        'categorical': categorical,
        'visits': visits,
    }
