"""Word Error Rate (WER) utilities.

Builds on `aligner.align` for the word-level alignment and adds the caller
side: text normalization, the WER division and a small CLI. Exported:

  wer(reference: str, hypothesis: str) -> float
  word_error_rate(alignment: Alignment) -> float
  corpus_wer(pairs) -> float

WER is undefined for an empty reference; every function here raises
`UndefinedMetric` in that case instead of returning inf or NaN.
"""
from __future__ import annotations

import argparse
import sys
from typing import Iterable, List, Optional, Tuple

from aligner import Alignment, align

# Sentence read aloud when recording test utterances.
GROUND_TRUTH = (
    "the quick brown fox jumps over the lazy dog the dog yawned and "
    "catherine baked a cake for yelena's boston shake off car honks sounded um "
    "through the green glassed window miss mississippi missed my message by a "
    "minute the plane flew under the bridge but the ship sailed through the sand"
)


class UndefinedMetric(ValueError):
    """WER requested for a reference with no words."""


def normalize(text: str) -> str:
    # lower-case and drop periods; other punctuation is kept as part of the word
    return text.lower().replace(".", "")


def tokenize(text: str) -> List[str]:
    return normalize(text).split()


def word_error_rate(alignment: Alignment) -> float:
    """WER = (S + I + D) / N where N is the number of reference words."""
    if alignment.reference_length == 0:
        raise UndefinedMetric(
            f"WER is undefined for an empty reference "
            f"({alignment.num_insertions} hypothesis words)"
        )
    return alignment.num_errors / alignment.reference_length


def wer(reference: str, hypothesis: str) -> float:
    """Calculate Word Error Rate (WER) between two raw texts.

    Both texts go through `tokenize` first. Raises UndefinedMetric if the
    reference has no words, including when both texts are empty.
    """
    return word_error_rate(align(tokenize(reference), tokenize(hypothesis)))


def corpus_wer(pairs: Iterable[Tuple[str, str]]) -> float:
    """Pooled WER over many (reference, hypothesis) utterance pairs.

    Errors and reference words are summed before dividing, so long utterances
    weigh more than short ones. Pairs with an empty reference still contribute
    their insertions.
    """
    errors = 0
    words = 0
    for reference, hypothesis in pairs:
        alignment = align(tokenize(reference), tokenize(hypothesis))
        errors += alignment.num_errors
        words += alignment.reference_length
    if words == 0:
        raise UndefinedMetric("WER is undefined: no reference words in corpus")
    return errors / words


def _read_text(path: str) -> str:
    with open(path, encoding="utf-8") as f:
        return f.read()


def report(alignment: Alignment, show_alignment: bool = False) -> int:
    """Print the WER line (and optionally the alignment); return an exit code."""
    if show_alignment:
        print(alignment.format())
        print(
            f"matches={alignment.num_matches} substitutions={alignment.num_substitutions} "
            f"insertions={alignment.num_insertions} deletions={alignment.num_deletions} "
            f"reference_words={alignment.reference_length}"
        )
    try:
        score = word_error_rate(alignment)
    except UndefinedMetric:
        print('WER: undefined (empty reference)')
        return 1
    print(f'WER: {score:.3f}')
    return 0


def cli(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description='Compute WER between reference and hypothesis')
    parser.add_argument('texts', nargs='*', metavar='TEXT',
                        help='[reference] hypothesis (quoted); with one text the built-in ground truth is the reference')
    parser.add_argument('--ref-file', help='Read the reference text from a file')
    parser.add_argument('--hyp-file', help='Read the hypothesis text from a file')
    parser.add_argument('--show-alignment', action='store_true', help='Print the aligned words and counts')
    args = parser.parse_args(argv)

    texts = list(args.texts)
    try:
        hypothesis = _read_text(args.hyp_file) if args.hyp_file else (texts.pop() if texts else None)
        reference = _read_text(args.ref_file) if args.ref_file else (texts.pop() if texts else GROUND_TRUTH)
    except OSError as e:
        print("Failed to read input file:", e, file=sys.stderr)
        return 2
    if hypothesis is None or texts:
        parser.print_usage(sys.stderr)
        print('Expected a hypothesis and at most one reference', file=sys.stderr)
        return 2

    alignment = align(tokenize(reference), tokenize(hypothesis))
    return report(alignment, show_alignment=args.show_alignment)


if __name__ == '__main__':
    sys.exit(cli())
