"""
Fake scorers for the decode loop tests. No model is ever loaded.
"""

import pytest
import torch

from specsampling.globals import Decoder
from specsampling.scorer import Scorer


class StaticScorer(Scorer):
    """Returns the same next-token distribution at every position."""

    def __init__(self, probs):
        self.probs = torch.as_tensor(probs, dtype=torch.float32)
        self.calls = 0
        self.lengths = []

    def score(self, x):
        self.calls += 1
        self.lengths.append(x.shape[1])
        return self.probs.expand(1, x.shape[1], -1).clone()


class BigramScorer(Scorer):
    """Next-token distribution depends on the current token: row i is table[x[i]]."""

    def __init__(self, table):
        self.table = torch.as_tensor(table, dtype=torch.float32)
        self.calls = 0

    def score(self, x):
        self.calls += 1
        return self.table[x[0]].unsqueeze(0)


class FailingScorer(Scorer):
    """Delegates to ``inner`` and raises on call number ``fail_at`` (1-based)."""

    def __init__(self, inner, fail_at=1):
        self.inner = inner
        self.fail_at = fail_at
        self.calls = 0

    def score(self, x):
        self.calls += 1
        if self.calls >= self.fail_at:
            raise RuntimeError("backend unavailable")
        return self.inner.score(x)


@pytest.fixture
def generator():
    g = torch.Generator()
    g.manual_seed(1234)
    return g


@pytest.fixture
def prefix():
    return torch.tensor([[0, 1, 2]], dtype=torch.long)


@pytest.fixture
def bigram_table():
    return [
        [0.10, 0.20, 0.30, 0.40],
        [0.25, 0.25, 0.25, 0.25],
        [0.70, 0.10, 0.10, 0.10],
        [0.05, 0.05, 0.45, 0.45],
    ]


@pytest.fixture(autouse=True)
def no_tokenizer():
    Decoder().set_tokenizer(None)
    yield
    Decoder().set_tokenizer(None)
