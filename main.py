import logging
import torch
import argparse
import contexttimer
from colorama import Fore, Style
from transformers import AutoTokenizer, AutoModelForCausalLM

from specsampling import ModelScorer, autoregressive_sampling, speculative_generate
from specsampling.globals import Decoder

# gpt-2 checkpoints share one tokenizer, so any pair works as approx / target
MODELZOO = {
    "124M": "gpt2",
    "355M": "gpt2-medium",
    "774M": "gpt2-large",
    "1558M": "gpt2-xl",
}

logger = logging.getLogger(__name__)


def parse_arguments(argv=None):
    parser = argparse.ArgumentParser(description='args for main.py')

    parser.add_argument('--input', type=str, default="Alan Turing theorized that computers would one day become")
    parser.add_argument('--approx_model_name', type=str, default="124M", help='model size in MODELZOO or a model path')
    parser.add_argument('--target_model_name', type=str, default="1558M", help='model size in MODELZOO or a model path')
    parser.add_argument('--max_tokens', '-M', type=int, default=40, help='number of tokens to generate')
    parser.add_argument('--gamma', '-g', type=int, default=4, help='tokens guessed by the approx model per round')
    parser.add_argument('--temperature', type=float, default=1.0)
    parser.add_argument('--top_k', type=int, default=0)
    parser.add_argument('--top_p', type=float, default=0.0)
    parser.add_argument('--verbose', '-v', action='store_true', default=False, help='enable verbose mode')
    parser.add_argument('--seed', '-s', type=int, default=None, help='set a random seed')
    parser.add_argument('--benchmark', '-b', action='store_true', default=False, help='time repeated runs')
    parser.add_argument('--profile', action='store_true', default=False, help='run the benchmark under torch.profiler')
    args = parser.parse_args(argv)
    if args.max_tokens < 0:
        parser.error("--max_tokens must be non-negative")
    if args.gamma < 0:
        parser.error("--gamma must be non-negative")
    return args


def resolve_model_name(name : str) -> str:
    return MODELZOO.get(name, name)


def make_generator(device, seed=None) -> torch.Generator:
    generator = torch.Generator(device=device)
    if seed is None:
        generator.seed()
    else:
        generator.manual_seed(seed)
    return generator


def benchmark(fn, print_prefix, use_profiler=True, *args, **kwargs):
    TEST_TIME = 10
    profile_filename = f"./profile_logs/{print_prefix}"

    with contexttimer.Timer() as t:
        if use_profiler:
            with torch.profiler.profile(
                activities=[torch.profiler.ProfilerActivity.CPU] + ([torch.profiler.ProfilerActivity.CUDA] if torch.cuda.is_available() else []),
                schedule=torch.profiler.schedule(wait=0, warmup=1, active=2, repeat=1, skip_first=0),
                on_trace_ready=torch.profiler.tensorboard_trace_handler(profile_filename),
                record_shapes=False,
                profile_memory=False,
            ) as prof:
                for _ in range(TEST_TIME):
                    output = fn(*args, **kwargs)
                    prof.step()
        else:
            for _ in range(TEST_TIME):
                output = fn(*args, **kwargs)

    if isinstance(output, tuple):
        output = output[0]
    print(f"\n [benchmark] {print_prefix}, tokens/sec: {len(output[0]) / t.elapsed / TEST_TIME}, {t.elapsed / TEST_TIME} sec generates {len(output[0])} tokens")


def generate(input_text, approx_model_name, target_model_name, num_tokens=40, gamma=4,
             temperature=1.0, top_k=0, top_p=0.0,
             random_seed=None, verbose=False, use_benchmark=False, use_profiler=False):
    # NOTE() approx_model_name and target_model_name should use the same tokenizer!
    approx_model_name = resolve_model_name(approx_model_name)
    target_model_name = resolve_model_name(target_model_name)

    torch_device = 'cuda' if torch.cuda.is_available() else 'cpu'

    tokenizer = AutoTokenizer.from_pretrained(approx_model_name)
    Decoder().set_tokenizer(tokenizer)

    logger.info(f"begin loading models: {approx_model_name}, {target_model_name}")
    small_model = AutoModelForCausalLM.from_pretrained(approx_model_name).to(torch_device).eval()
    large_model = AutoModelForCausalLM.from_pretrained(target_model_name).to(torch_device).eval()
    logger.info("finish loading models")

    approx = ModelScorer(small_model, temperature, top_k, top_p)
    target = ModelScorer(large_model, temperature, top_k, top_p)

    input_ids = tokenizer.encode(input_text, return_tensors='pt').to(torch_device)

    with contexttimer.Timer() as t:
        output = autoregressive_sampling(input_ids, target, num_tokens,
                                         generator=make_generator(torch_device, random_seed), progress=True)
    generated_text = Decoder().decode(output)
    print(f"{Fore.GREEN}large (target) model autoregressive_sampling{Style.RESET_ALL}: {generated_text}")
    print(f"{Fore.YELLOW}time: {t.elapsed:.3f}s{Style.RESET_ALL}")

    with contexttimer.Timer() as t:
        output, stats = speculative_generate(input_ids, approx, target, num_tokens, gamma=gamma,
                                             generator=make_generator(torch_device, random_seed),
                                             verbose=verbose, progress=True)
    generated_text = Decoder().decode(output)
    print(f"{Fore.GREEN}speculative_sampling{Style.RESET_ALL}: {generated_text}")
    print(f"{Fore.YELLOW}time: {t.elapsed:.3f}s{Style.RESET_ALL}")
    print(f"target calls {stats.target_calls}, draft calls {stats.draft_calls}, "
          f"acceptance rate (accepted / drafted) {stats.acceptance_rate:.3f}, "
          f"tokens per round (incl. resampled and bonus) {stats.tokens_per_round:.3f}")

    if use_benchmark:
        benchmark(autoregressive_sampling, "AS_large", use_profiler,
                  input_ids, target, num_tokens, generator=make_generator(torch_device, random_seed))
        benchmark(autoregressive_sampling, "AS_small", use_profiler,
                  input_ids, approx, num_tokens, generator=make_generator(torch_device, random_seed))
        benchmark(speculative_generate, "SP", use_profiler,
                  input_ids, approx, target, num_tokens, gamma=gamma,
                  generator=make_generator(torch_device, random_seed))


if __name__ == "__main__":
    args = parse_arguments()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    if args.verbose:
        logging.getLogger("specsampling").setLevel(logging.DEBUG)

    generate(args.input, args.approx_model_name, args.target_model_name, num_tokens=args.max_tokens,
             gamma=args.gamma, temperature=args.temperature, top_k=args.top_k, top_p=args.top_p,
             random_seed=args.seed, verbose=args.verbose,
             use_benchmark=args.benchmark, use_profiler=args.profile)
