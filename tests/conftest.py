"""
Pytest configuration and fixtures for reproducible testing.

This file provides centralized test configuration including:
- Random seed management for reproducibility
- Non-interactive matplotlib backend
- Shared sample-data fixtures
"""
import matplotlib
matplotlib.use('Agg')

import pytest
import numpy as np
import matplotlib.pyplot as plt

from child_growth.data import (
    clean_growth_data,
    create_sample_growth_data,
    standardize_growth_data,
)


def pytest_configure(config):
    config.addinivalue_line("markers", "slow: MCMC sampling and full report runs")


@pytest.fixture(scope="session", autouse=True)
def set_random_seeds():
    """Set random seeds at the start of test session for reproducibility."""
    np.random.seed(42)
    yield


@pytest.fixture(scope="function")
def reset_seeds():
    """Reset random seeds before each test function for isolation."""
    np.random.seed(42)
    yield


@pytest.fixture(autouse=True)
def close_figures():
    """Close every figure a test leaves open."""
    yield
    plt.close('all')


@pytest.fixture(scope="session")
def raw_growth():
    """Small sample dataset: 60 children, 5 visits each."""
    return create_sample_growth_data(n_children=60, seed=7)


@pytest.fixture
def clean_growth(raw_growth):
    return clean_growth_data(raw_growth)


@pytest.fixture
def scaled_growth(clean_growth):
    return standardize_growth_data(clean_growth)
