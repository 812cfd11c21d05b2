"""
Exploratory figures for the cleaned growth data.

Each builder returns a matplotlib Figure and, when ``save_path`` is given,
writes it as PNG. Figures are not closed here; callers that render many
figures (the report) close them once they are written out.
"""
import numpy as np
import pandas as pd
from pathlib import Path
from typing import Dict, Optional

import matplotlib.pyplot as plt
import seaborn as sns

sns.set_style('whitegrid')

SEX_PALETTE = {'male': '#1f77b4', 'female': '#d62728'}


def _save(fig, save_path: Optional[str]):
    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches='tight')
    return fig


def plot_weight_by_age(clean: pd.DataFrame, save_path: Optional[str] = None):
    """Weight against age, coloured by sex, with a linear trend per sex."""
    fig, ax = plt.subplots(figsize=(8, 5))
    sns.scatterplot(data=clean, x='age', y='wt', hue='sex', palette=SEX_PALETTE,
                    alpha=0.5, s=20, ax=ax)
    for level, grp in clean.groupby('sex', observed=True):
        sns.regplot(data=grp, x='age', y='wt', scatter=False, ax=ax,
                    color=SEX_PALETTE.get(level), label=f'{level} trend')
    ax.set_xlabel('Age (months)')
    ax.set_ylabel('Weight (kg)')
    ax.set_title('Weight by age and sex')
    ax.legend()
    return _save(fig, save_path)


def plot_growth_trajectories(clean: pd.DataFrame, save_path: Optional[str] = None):
    """One line per child (spaghetti plot), split by sex."""
    fig, axes = plt.subplots(1, 2, figsize=(12, 5), sharey=True)
    levels = list(clean['sex'].cat.categories)
    for ax, level in zip(axes, levels):
        grp = clean[clean['sex'] == level].sort_values(['id', 'age'])
        sns.lineplot(data=grp, x='age', y='wt', units='id', estimator=None,
                     color=SEX_PALETTE.get(level), alpha=0.3, lw=0.8, ax=ax)
        ax.set_title(f'Growth trajectories: {level} (n={grp["id"].nunique()})')
        ax.set_xlabel('Age (months)')
        ax.set_ylabel('Weight (kg)')
    fig.tight_layout()
    return _save(fig, save_path)


def plot_weight_by_literacy(clean: pd.DataFrame, save_path: Optional[str] = None):
    """Box plot of weight by mother's literacy, split by sex."""
    fig, ax = plt.subplots(figsize=(7, 5))
    sns.boxplot(data=clean, x='lit', y='wt', hue='sex', palette=SEX_PALETTE, ax=ax)
    ax.set_xlabel("Mother's literacy")
    ax.set_ylabel('Weight (kg)')
    ax.set_title("Weight by mother's literacy")
    return _save(fig, save_path)


def plot_weight_by_mother_age(clean: pd.DataFrame, save_path: Optional[str] = None):
    """Weight against mother's age with a lowess smoother."""
    fig, ax = plt.subplots(figsize=(7, 5))
    sns.regplot(data=clean, x='mage', y='wt', lowess=True, ax=ax,
                scatter_kws={'alpha': 0.4, 's': 15}, line_kws={'color': 'k'})
    ax.set_xlabel("Mother's age (years)")
    ax.set_ylabel('Weight (kg)')
    ax.set_title("Weight by mother's age")
    return _save(fig, save_path)


def plot_correlations(clean: pd.DataFrame, save_path: Optional[str] = None):
    """Correlation heatmap of the numeric columns (factors as 0/1 codes)."""
    numeric = clean[['wt', 'age', 'mage', 'died', 'alive']].copy()
    numeric['female'] = (clean['sex'] == 'female').astype(int)
    numeric['literate'] = (clean['lit'] == 'literate').astype(int)
    corr = numeric.corr()

    fig, ax = plt.subplots(figsize=(7, 6))
    mask = np.triu(np.ones_like(corr, dtype=bool), k=1)
    sns.heatmap(corr, mask=mask, annot=True, fmt='.2f', cmap='RdBu_r',
                vmin=-1, vmax=1, square=True, ax=ax)
    ax.set_title('Correlation matrix')
    fig.tight_layout()
    return _save(fig, save_path)


def plot_weight_distribution(clean: pd.DataFrame, save_path: Optional[str] = None):
    fig, ax = plt.subplots(figsize=(7, 5))
    sns.histplot(data=clean, x='wt', hue='sex', palette=SEX_PALETTE, kde=True,
                 element='step', ax=ax)
    ax.set_xlabel('Weight (kg)')
    ax.set_title('Weight distribution')
    return _save(fig, save_path)


def plot_all(clean: pd.DataFrame, output_dir: Optional[str] = None) -> Dict[str, plt.Figure]:
    """Build every exploratory figure.

    Args:
        clean: Output of clean_growth_data()
        output_dir: Directory for PNG files (nothing saved if None)

    Returns:
        figure name -> Figure
    """
    builders = {
        'weight_by_age': plot_weight_by_age,
        'growth_trajectories': plot_growth_trajectories,
        'weight_by_literacy': plot_weight_by_literacy,
        'weight_by_mother_age': plot_weight_by_mother_age,
        'correlations': plot_correlations,
        'weight_distribution': plot_weight_distribution,
    }

    out = None
    if output_dir:
        out = Path(output_dir)
        out.mkdir(parents=True, exist_ok=True)

    figures = {}
    for name, builder in builders.items():
        path = str(out / f"explore_{name}.png") if out is not None else None
        figures[name] = builder(clean, save_path=path)
        print(f"  ✓ {name}")
    return figures
