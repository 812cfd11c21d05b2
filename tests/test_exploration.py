"""Tests for the exploratory figure builders."""
import matplotlib.pyplot as plt
import pytest

from child_growth import exploration


BUILDERS = [
    exploration.plot_weight_by_age,
    exploration.plot_growth_trajectories,
    exploration.plot_weight_by_literacy,
    exploration.plot_weight_by_mother_age,
    exploration.plot_correlations,
    exploration.plot_weight_distribution,
]


@pytest.mark.parametrize("builder", BUILDERS, ids=lambda b: b.__name__)
def test_builder_returns_figure(builder, clean_growth, tmp_path):
    path = tmp_path / f"{builder.__name__}.png"
    fig = builder(clean_growth, save_path=str(path))
    assert isinstance(fig, plt.Figure)
    assert path.exists()
    assert path.stat().st_size > 0


def test_builder_without_path_saves_nothing(clean_growth, tmp_path):
    exploration.plot_weight_by_age(clean_growth)
    assert list(tmp_path.iterdir()) == []


def test_trajectories_one_panel_per_sex(clean_growth):
    fig = exploration.plot_growth_trajectories(clean_growth)
    titles = [ax.get_title() for ax in fig.axes]
    assert any('male' in t for t in titles)
    assert any('female' in t for t in titles)


def test_plot_all(clean_growth, tmp_path):
    figures = exploration.plot_all(clean_growth, output_dir=str(tmp_path / 'figs'))
    assert set(figures) == {
        'weight_by_age', 'growth_trajectories', 'weight_by_literacy',
        'weight_by_mother_age', 'correlations', 'weight_distribution',
    }
    pngs = sorted(p.name for p in (tmp_path / 'figs').glob('explore_*.png'))
    assert len(pngs) == 6
