from typing import List, Union

import torch


class Singleton(type):
    _instances = {}

    def __call__(cls, *args, **kwargs):
        if cls not in cls._instances:
            cls._instances[cls] = super().__call__(*args, **kwargs)
        return cls._instances[cls]


class Decoder(metaclass=Singleton):
    def __init__(self):
        self.tokenizer = None

    def set_tokenizer(self, tokenizer):
        self.tokenizer = tokenizer

    def encode(self, s: str, return_tensors='pt') -> torch.Tensor:
        if self.tokenizer is None:
            raise RuntimeError("Decoder has no tokenizer, call set_tokenizer first")
        return self.tokenizer.encode(s, return_tensors=return_tensors)

    def decode(self, t: Union[torch.Tensor, List[int]]) -> str:
        if isinstance(t, torch.Tensor):
            t = t.reshape(-1).tolist()
        if self.tokenizer is None:
            # no tokenizer in unit tests, show raw ids
            return " ".join(str(i) for i in t)
        return self.tokenizer.decode(t, skip_special_tokens=True)
