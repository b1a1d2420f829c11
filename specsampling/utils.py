import torch
from torch.nn import functional as F


class InvalidDistributionError(ValueError):
    """A probability row that cannot be sampled from."""


def check_distribution(probs : torch.Tensor):
    """
    Reject rows that are not a usable distribution over the vocabulary
    (last dim): non-finite values, negative mass or a zero sum.
    """
    if not torch.isfinite(probs).all():
        raise InvalidDistributionError("distribution contains non-finite values")
    if (probs < 0).any():
        raise InvalidDistributionError("distribution contains negative values")
    if (probs.sum(dim=-1) <= 0).any():
        raise InvalidDistributionError("distribution sums to zero")


def top_k_top_p_filter(logits : torch.Tensor, top_k : int = 0, top_p : float = 0.0) -> torch.Tensor:
    """

    Args:
        logits (torch.Tensor): 2D tensor with shape (batch, vocab)
        top_k (int, optional): top_k. Defaults to 0.
        top_p (float, optional): top_p. Defaults to 0.0.

    Returns:
        torch.Tensor: a renormalized logits
    """
    if top_k > 0:
        kth = torch.topk(logits, min(top_k, logits.size(-1)))[0][:, [-1]]
        logits = logits.masked_fill(logits < kth, float('-inf'))
    if top_p > 0.0:
        sorted_logits, sorted_indices = torch.sort(logits, descending=True)
        cumulative_probs = torch.cumsum(F.softmax(sorted_logits, dim=-1), dim=-1)
        remove = cumulative_probs > top_p
        # shift right so the first token over the threshold is kept
        remove[..., 1:] = remove[..., :-1].clone()
        remove[..., 0] = False
        indices_to_remove = remove.scatter(1, sorted_indices, remove)
        logits = logits.masked_fill(indices_to_remove, float('-inf'))
    return logits


def norm_logits(logits : torch.Tensor, temperature : float, top_k : int, top_p : float) -> torch.Tensor:
    """

    Args:
        logits (torch.Tensor): shape (batch, vocab)
        temperature (float): temperature
        top_k (int): top_k
        top_p (float): top_p

    Returns:
        torch.Tensor: next token probabilities, shape (batch, vocab)
    """
    assert logits.dim() == 2
    if temperature <= 0:
        raise ValueError(f"temperature must be positive, got {temperature}")
    logits = logits / temperature
    logits = top_k_top_p_filter(logits, top_k=top_k, top_p=top_p)
    return F.softmax(logits, dim=1)


def sample(probs : torch.Tensor, num_samples : int = 1, generator : torch.Generator = None) -> torch.Tensor:
    check_distribution(probs)
    if probs.dim() == 1:
        probs = probs.unsqueeze(0)
    return torch.multinomial(probs, num_samples=num_samples, generator=generator)


def max_fn(x : torch.Tensor) -> torch.Tensor:
    """
        norm(max (x, 0))
    """
    x_max = torch.where(x > 0, x, torch.zeros_like(x))
    x_max_sum = torch.sum(x_max, dim=-1, keepdim=True)
    if (x_max_sum <= 0).any():
        raise InvalidDistributionError("residual distribution has no positive mass")
    return x_max / x_max_sum
