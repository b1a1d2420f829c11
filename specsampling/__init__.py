from specsampling.speculative_sampling import (DecodeState, SpeculativeRound, SpeculativeStats,
                                               speculative_generate, speculative_sampling, verify_draft)
from specsampling.autoregressive_sampling import autoregressive_sampling
from specsampling.scorer import ModelScorer, Scorer
from specsampling.utils import InvalidDistributionError

__all__ = ["speculative_sampling", "speculative_generate", "autoregressive_sampling", "verify_draft",
           "SpeculativeRound", "SpeculativeStats", "DecodeState", "Scorer", "ModelScorer",
           "InvalidDistributionError"]
