"""
Speculative sampling.

Fast Inference from Transformers via Speculative Decoding
https://arxiv.org/pdf/2211.17192.pdf

Accelerating Large Language Model Decoding with Speculative Sampling
https://arxiv.org/abs/2302.01318

Every outer iteration is a ``SpeculativeRound``, a small state machine:

    DRAFTING -> SCORING -> ACCEPTING -+-> RESAMPLING -> DONE
                              ^   |   |
                              +---+   +-> BONUS ------> DONE

ACCEPTING consumes one drafted token per step. The first rejected token sends
the round to RESAMPLING, which draws from norm(max(0, q - p)) and drops the
rest of the draft. If every drafted token was accepted the round goes to
BONUS and draws one more token from the target distribution.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Tuple

import torch
from colorama import Fore, Style
from tqdm import tqdm

from specsampling.globals import Decoder
from specsampling.scorer import Scorer
from specsampling.utils import max_fn, sample

logger = logging.getLogger(__name__)


class DecodeState(Enum):
    DRAFTING = "drafting"
    SCORING = "scoring"
    ACCEPTING = "accepting"
    RESAMPLING = "resampling"
    BONUS = "bonus"
    DONE = "done"


def accept_probability(p : float, q : float) -> float:
    """min(1, q / p). A token the draft gives zero mass is never accepted."""
    if p <= 0:
        return 0.0
    return min(1.0, q / p)


class SpeculativeRound:
    """
    One outer iteration of speculative sampling on top of ``prefix``.

    After ``run()``, ``accepted`` holds the drafted tokens that passed the
    acceptance test and ``token`` the single resampled or bonus token, so a
    round always emits ``len(accepted) + 1`` tokens.
    """

    def __init__(self, prefix : torch.Tensor, approx_model : Scorer, target_model : Scorer,
                 gamma : int, generator : torch.Generator = None) -> None:
        self.prefix = prefix
        self.approx_model = approx_model
        self.target_model = target_model
        self.gamma = gamma
        self.generator = generator

        self.draft_tokens: List[int] = []
        # p: draft distributions at the drafted positions, (gamma, vocab)
        # q: target distributions at the drafted positions plus the bonus one, (gamma + 1, vocab)
        self.p = None
        self.q = None
        self.accepted: List[int] = []
        self.token = None
        self._drafted = prefix
        self.draft_calls = 0
        self.target_calls = 0

        self.state = DecodeState.DRAFTING
        self.history = [self.state]

    @classmethod
    def from_distributions(cls, draft_tokens : List[int], p : torch.Tensor, q : torch.Tensor,
                           generator : torch.Generator = None) -> "SpeculativeRound":
        """A round that starts at ACCEPTING with already known p and q."""
        draft_tokens = list(draft_tokens)
        k = len(draft_tokens)
        assert q.dim() == 2 and q.shape[0] == k + 1, f"q must have {k + 1} rows, got {tuple(q.shape)}"
        assert p.dim() == 2 and p.shape[0] >= k, f"p must have at least {k} rows, got {tuple(p.shape)}"

        rnd = cls(None, None, None, k, generator)
        rnd.draft_tokens = draft_tokens
        rnd.p = p
        rnd.q = q
        rnd.state = DecodeState.ACCEPTING
        rnd.history = [rnd.state]
        return rnd

    @property
    def tokens(self) -> List[int]:
        assert self.state is DecodeState.DONE, "round has not finished"
        return self.accepted + [self.token]

    @property
    def rejected(self) -> bool:
        return DecodeState.RESAMPLING in self.history

    def _goto(self, state : DecodeState):
        self.state = state
        self.history.append(state)

    def step(self) -> DecodeState:
        handler = {
            DecodeState.DRAFTING: self._draft,
            DecodeState.SCORING: self._score,
            DecodeState.ACCEPTING: self._accept,
            DecodeState.RESAMPLING: self._resample,
            DecodeState.BONUS: self._bonus,
        }.get(self.state)
        if handler is None:
            raise RuntimeError("round is already done")
        handler()
        return self.state

    def run(self) -> "SpeculativeRound":
        while self.state is not DecodeState.DONE:
            self.step()
        return self

    def _draft(self):
        x = self.prefix
        for _ in range(self.gamma):
            probs = self.approx_model(x)
            self.draft_calls += 1
            next_tok = sample(probs[:, -1, :], generator=self.generator)
            x = torch.cat((x, next_tok.to(x.dtype)), dim=1)
            self.draft_tokens.append(next_tok.item())
        self._drafted = x
        self._goto(DecodeState.SCORING)

    def _score(self):
        x = self._drafted
        # row prefix_len - 1 predicts the first drafted token
        start = self.prefix.shape[1] - 1

        q = self.target_model(x)
        self.target_calls += 1
        self.q = q[0, start:, :]

        if self.gamma > 0:
            p = self.approx_model(x)
            self.draft_calls += 1
            self.p = p[0, start:start + self.gamma, :]
        else:
            self.p = self.q.new_zeros((0, self.q.shape[-1]))

        assert self.q.shape[0] == self.gamma + 1, f"target returned {self.q.shape[0]} rows, expected {self.gamma + 1}"
        self._goto(DecodeState.ACCEPTING)

    def _accept(self):
        i = len(self.accepted)
        if i == len(self.draft_tokens):
            self._goto(DecodeState.BONUS)
            return

        j = self.draft_tokens[i]
        r = torch.rand(1, generator=self.generator, device=self.q.device).item()
        if r < accept_probability(self.p[i, j].item(), self.q[i, j].item()):
            self.accepted.append(j)
        else:
            self._goto(DecodeState.RESAMPLING)

    def _resample(self):
        n = len(self.accepted)
        residual = self.q[n] - self.p[n]
        if (residual > 0).any():
            t = sample(max_fn(residual), generator=self.generator)
        else:
            # q <= p everywhere with equal mass, so q == p
            t = sample(self.q[n], generator=self.generator)
        self.token = t.item()
        self._goto(DecodeState.DONE)

    def _bonus(self):
        t = sample(self.q[-1], generator=self.generator)
        self.token = t.item()
        self._goto(DecodeState.DONE)


def verify_draft(draft_tokens : List[int], p : torch.Tensor, q : torch.Tensor,
                 generator : torch.Generator = None) -> SpeculativeRound:
    """
    Run the accept / resample / bonus steps on explicit distributions.

    Args:
        draft_tokens (List[int]): the k drafted tokens
        p (torch.Tensor): draft distributions, (k, vocab)
        q (torch.Tensor): target distributions, (k + 1, vocab)
        generator (torch.Generator, optional): randomness source

    Returns:
        SpeculativeRound: the finished round
    """
    return SpeculativeRound.from_distributions(draft_tokens, p, q, generator).run()


@dataclass
class SpeculativeStats:
    """
    Counters of a speculative decode.

    ``acceptance_rate`` is the strict one: drafted tokens that passed the
    min(1, q/p) test divided by drafted tokens. ``tokens_per_round`` is the
    figure usually reported as "acceptance": every emitted token, including
    resampled and bonus ones, per outer iteration.
    """
    rounds: int = 0
    drafted: int = 0
    accepted: int = 0
    resampled: int = 0
    bonus: int = 0
    draft_calls: int = 0
    target_calls: int = 0

    @property
    def generated(self) -> int:
        return self.accepted + self.resampled + self.bonus

    @property
    def acceptance_rate(self) -> float:
        return self.accepted / self.drafted if self.drafted else 0.0

    @property
    def tokens_per_round(self) -> float:
        return self.generated / self.rounds if self.rounds else 0.0

    def update(self, rnd : SpeculativeRound):
        self.rounds += 1
        self.drafted += len(rnd.draft_tokens)
        self.accepted += len(rnd.accepted)
        if rnd.rejected:
            self.resampled += 1
        else:
            self.bonus += 1
        self.draft_calls += rnd.draft_calls
        self.target_calls += rnd.target_calls


def _trace(rnd : SpeculativeRound, position : int):
    decoder = Decoder()
    for j in rnd.accepted:
        logger.debug(f"approx guess accepted {j}: {Fore.RED}{decoder.decode([j])}{Style.RESET_ALL}")
    if rnd.rejected:
        logger.debug(f"target resamples at position {position + len(rnd.accepted)}: "
                     f"{Fore.BLUE}{decoder.decode([rnd.token])}{Style.RESET_ALL}")
    else:
        logger.debug(f"target samples {position + len(rnd.accepted)}: "
                     f"{Fore.MAGENTA}{decoder.decode([rnd.token])}{Style.RESET_ALL}")


@torch.no_grad()
def speculative_generate(prefix : torch.Tensor, approx_model : Scorer, target_model : Scorer,
                         max_len : int, gamma : int = 4, generator : torch.Generator = None,
                         verbose : bool = False, progress : bool = False) -> Tuple[torch.Tensor, SpeculativeStats]:
    """
    Speculative sampling, returning the counters alongside the tokens.

    Args:
        prefix (torch.Tensor): input sequence, (1, prefix_seqlen)
        approx_model (Scorer): approx model, the small one
        target_model (Scorer): target model, the large one
        max_len (int): the number of tokens to generate
        gamma (int): the token number small model guesses.
        generator (torch.Generator, optional): randomness source. Defaults to torch's global one.
        verbose (bool, optional): log every emitted token at DEBUG. Defaults to False.
        progress (bool, optional): show a tqdm progress bar. Defaults to False.

    Returns:
        Tuple[torch.Tensor, SpeculativeStats]: generated tokens (1, prefix_seqlen + max_len) and counters
    """
    if max_len < 0:
        raise ValueError(f"max_len must be non-negative, got {max_len}")
    if gamma < 0:
        raise ValueError(f"gamma must be non-negative, got {gamma}")
    assert prefix.shape[0] == 1, "input batch size must be 1"
    if prefix.shape[1] == 0:
        raise ValueError("prefix must hold at least one token")

    seq_len = prefix.shape[1]
    T = seq_len + max_len
    stats = SpeculativeStats()

    with tqdm(total=max_len, desc="speculative sampling", disable=not progress) as pbar:
        while prefix.shape[1] < T:
            prefix_len = prefix.shape[1]
            # a round emits at most k + 1 tokens
            k = min(gamma, T - prefix_len - 1)

            rnd = SpeculativeRound(prefix, approx_model, target_model, k, generator).run()
            stats.update(rnd)
            if verbose:
                _trace(rnd, prefix_len)

            t = torch.tensor([rnd.tokens], dtype=prefix.dtype, device=prefix.device)
            prefix = torch.cat((prefix, t), dim=1)
            assert prefix.shape[1] <= T, f"overshot target length {T}: {prefix.shape[1]}"
            pbar.update(t.shape[1])

    if verbose:
        logger.info(f"generated tokens numbers {stats.generated}, accepted_count {stats.accepted}, "
                    f"target_sample_count {stats.bonus}, resample_count {stats.resampled}, "
                    f"acceptance rate {stats.acceptance_rate:.3f}, tokens per round {stats.tokens_per_round:.3f}")
    return prefix, stats


def speculative_sampling(prefix : torch.Tensor, approx_model : Scorer, target_model : Scorer,
                         max_len : int, gamma : int = 4, generator : torch.Generator = None,
                         verbose : bool = False, progress : bool = False) -> torch.Tensor:
    """Same as ``speculative_generate`` without the counters."""
    output, _ = speculative_generate(prefix, approx_model, target_model, max_len, gamma,
                                     generator=generator, verbose=verbose, progress=progress)
    return output
