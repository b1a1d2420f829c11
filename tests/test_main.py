"""
Tests for the demo entry point helpers. No model is downloaded.
"""

import pytest
import torch

import main
from specsampling.globals import Decoder


class TestArguments:

    def test_defaults(self):
        args = main.parse_arguments([])
        assert args.max_tokens == 40
        assert args.gamma == 4
        assert args.seed is None
        assert not args.verbose
        assert not args.benchmark

    def test_overrides(self):
        args = main.parse_arguments(["--input", "hello", "-M", "12", "-g", "0", "-s", "5",
                                     "--approx_model_name", "355M", "--target_model_name", "774M"])
        assert args.input == "hello"
        assert args.max_tokens == 12
        assert args.gamma == 0
        assert args.seed == 5
        assert main.resolve_model_name(args.approx_model_name) == "gpt2-medium"
        assert main.resolve_model_name(args.target_model_name) == "gpt2-large"

    @pytest.mark.parametrize("argv", [["--max_tokens", "-1"], ["--gamma", "-2"]])
    def test_negative_values_rejected(self, argv):
        with pytest.raises(SystemExit):
            main.parse_arguments(argv)


class TestHelpers:

    def test_unknown_model_name_is_a_path(self):
        assert main.resolve_model_name("/models/my-gpt") == "/models/my-gpt"

    def test_seeded_generator(self):
        a = torch.rand(4, generator=main.make_generator("cpu", 9))
        b = torch.rand(4, generator=main.make_generator("cpu", 9))
        assert torch.equal(a, b)


class TestDecoder:

    def test_singleton(self):
        assert Decoder() is Decoder()

    def test_without_tokenizer(self):
        assert Decoder().decode(torch.tensor([[4, 5, 6]])) == "4 5 6"
        with pytest.raises(RuntimeError):
            Decoder().encode("hi")

    def test_with_tokenizer(self):
        class Tokenizer:
            def decode(self, ids, skip_special_tokens=False):
                return "|".join(str(i) for i in ids)

        Decoder().set_tokenizer(Tokenizer())
        assert Decoder().decode([1, 2]) == "1|2"
