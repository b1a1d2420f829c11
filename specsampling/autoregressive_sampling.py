import logging

import torch
from tqdm import tqdm

from specsampling.scorer import Scorer
from specsampling.utils import sample

logger = logging.getLogger(__name__)


@torch.no_grad()
def autoregressive_sampling(x : torch.Tensor, model : Scorer, N : int,
                            generator : torch.Generator = None, progress : bool = False) -> torch.Tensor:
    """
    Plain autoregressive sampling, one scorer call per generated token.

    Args:
        x (torch.Tensor): input sequence, (1, prefix_seqlen)
        model (Scorer): the scorer to sample from
        N (int): number of tokens to generate
        generator (torch.Generator, optional): randomness source. Defaults to torch's global one.
        progress (bool, optional): show a tqdm progress bar. Defaults to False.

    Returns:
        torch.Tensor: generated tokens (1, prefix_seqlen + N)
    """
    if N < 0:
        raise ValueError(f"N must be non-negative, got {N}")
    assert x.shape[0] == 1, "input batch size must be 1"

    n = x.shape[1]
    T = n + N

    with tqdm(total=N, desc="autoregressive sampling", disable=not progress) as pbar:
        while n < T:
            probs = model(x)
            idx_next = sample(probs[:, -1, :], generator=generator)
            x = torch.cat((x, idx_next.to(x.dtype)), dim=1)
            n += 1
            pbar.update(1)

    logger.debug("autoregressive sampling generated %d tokens", N)
    return x
