"""
Shared pytest fixtures for distupgma tests.
"""

import multiprocessing

import numpy as np
import pytest


@pytest.fixture
def start_method():
    """Cheapest available multiprocessing start method for worker group tests."""
    if "fork" in multiprocessing.get_all_start_methods():
        return "fork"
    return "spawn"


@pytest.fixture
def four_taxa():
    """Four taxa with a single well-defined UPGMA tree."""
    names = ["A", "B", "C", "D"]
    matrix = np.array([
        [0.0, 2.0, 4.0, 6.0],
        [2.0, 0.0, 4.0, 6.0],
        [4.0, 4.0, 0.0, 6.0],
        [6.0, 6.0, 6.0, 0.0],
    ])
    return names, matrix


@pytest.fixture
def tied_matrix():
    """Twelve taxa with small integer distances, so most rounds contain ties."""
    rng = np.random.default_rng(7)
    n = 12
    values = rng.integers(1, 6, size=(n, n)).astype(float)
    matrix = np.triu(values, k=1)
    matrix = matrix + matrix.T
    names = [f"T{i}" for i in range(n)]
    return names, matrix
