"""
Scorer interface for the decode loops.

A scorer maps a token sequence of shape (1, seq_len) to next-token
probabilities of shape (1, seq_len, vocab): row i is the distribution of the
token that follows position i. The decode loops only ever see this
interface, so any model family can be plugged in.
"""

import logging
from abc import ABC, abstractmethod

import torch

from specsampling.utils import norm_logits

logger = logging.getLogger(__name__)


class Scorer(ABC):

    @abstractmethod
    def score(self, x : torch.Tensor) -> torch.Tensor:
        """
        Args:
            x (torch.Tensor): token ids, (1, seq_len)

        Returns:
            torch.Tensor: probabilities, (1, seq_len, vocab)
        """

    def __call__(self, x : torch.Tensor) -> torch.Tensor:
        return self.score(x)


class ModelScorer(Scorer):
    """Wraps a causal LM (e.g. ``AutoModelForCausalLM``) returning ``.logits``."""

    def __init__(self, model : torch.nn.Module, temperature : float = 1, top_k : int = 0, top_p : float = 0) -> None:
        if temperature <= 0:
            raise ValueError(f"temperature must be positive, got {temperature}")
        self._model = model
        self._temperature = temperature
        self._top_k = top_k
        self._top_p = top_p

    @property
    def model(self) -> torch.nn.Module:
        return self._model

    @torch.no_grad()
    def score(self, x : torch.Tensor) -> torch.Tensor:
        if x.dim() != 2 or x.shape[0] != 1:
            raise ValueError(f"expected input of shape (1, seq_len), got {tuple(x.shape)}")
        if x.shape[1] == 0:
            raise ValueError("cannot score an empty sequence")

        logits = self._model(x).logits
        probs = torch.empty_like(logits, dtype=torch.float32)
        for i in range(logits.shape[1]):
            probs[:, i, :] = norm_logits(logits[:, i, :].float(),
                                         self._temperature, self._top_k, self._top_p)
        logger.debug("scored sequence of length %d", x.shape[1])
        return probs
