"""Word sequence alignment.

Aligns a reference word sequence against a hypothesis word sequence using
word-level Levenshtein distance (unit costs) and classifies every column of
the alignment as a match, substitution, deletion or insertion. Exported:

  align(reference, hypothesis) -> Alignment
  SequenceAligner().align(reference, hypothesis) -> Alignment

Tokens are compared by exact equality. Normalization (case folding,
punctuation) is left to the caller, see `wer.normalize`.

When several minimum-cost paths exist the backtrace prefers the diagonal
(match/substitution), then the vertical step (deletion), then the horizontal
step (insertion).
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

MATCH = "match"
SUBSTITUTION = "sub"
DELETION = "del"
INSERTION = "ins"

_MARKERS = {MATCH: " ", SUBSTITUTION: "S", DELETION: "D", INSERTION: "I"}


@dataclass(frozen=True)
class Alignment:
    """Result of aligning a reference against a hypothesis.

    `reference` and `hypothesis` hold the aligned columns; `None` marks a gap
    (an inserted word has no reference word, a deleted word no hypothesis word).
    """
    num_matches: int
    num_substitutions: int
    num_insertions: int
    num_deletions: int
    reference_length: int
    reference: Tuple[Optional[str], ...] = ()
    hypothesis: Tuple[Optional[str], ...] = ()
    operations: Tuple[str, ...] = ()

    @property
    def hypothesis_length(self) -> int:
        return self.num_matches + self.num_substitutions + self.num_insertions

    @property
    def num_errors(self) -> int:
        return self.num_substitutions + self.num_insertions + self.num_deletions

    def format(self) -> str:
        """Render the aligned columns as REF/HYP/op lines."""
        ref_cells = []
        hyp_cells = []
        op_cells = []
        for ref_word, hyp_word, op in zip(self.reference, self.hypothesis, self.operations):
            width = max(len(ref_word or ""), len(hyp_word or ""), 1)
            ref_cells.append(("*" * width if ref_word is None else ref_word).ljust(width))
            hyp_cells.append(("*" * width if hyp_word is None else hyp_word).ljust(width))
            op_cells.append(_MARKERS[op].ljust(width))
        return "\n".join([
            "REF: " + " ".join(ref_cells),
            "HYP: " + " ".join(hyp_cells),
            "     " + " ".join(op_cells),
        ]).rstrip()


def cost_matrix(reference: Sequence[str], hypothesis: Sequence[str]) -> List[List[int]]:
    """Fill the (m+1) x (n+1) edit distance matrix for the two sequences."""
    m = len(reference)
    n = len(hypothesis)

    dp = [[0] * (n + 1) for _ in range(m + 1)]
    for i in range(1, m + 1):
        dp[i][0] = i
    for j in range(1, n + 1):
        dp[0][j] = j

    for i in range(1, m + 1):
        for j in range(1, n + 1):
            if reference[i - 1] == hypothesis[j - 1]:
                dp[i][j] = dp[i - 1][j - 1]
            else:
                dp[i][j] = 1 + min(dp[i - 1][j - 1], dp[i - 1][j], dp[i][j - 1])
    return dp


def _backtrace(
    dp: List[List[int]], reference: Sequence[str], hypothesis: Sequence[str]
) -> List[Tuple[str, Optional[int], Optional[int]]]:
    """Walk the matrix from the last cell back to the origin.

    Returns the path as (op, ref_index, hyp_index) tuples in reading order.
    """
    path: List[Tuple[str, Optional[int], Optional[int]]] = []
    i, j = len(reference), len(hypothesis)
    while i > 0 or j > 0:
        if i > 0 and j > 0:
            same = reference[i - 1] == hypothesis[j - 1]
            if dp[i][j] == dp[i - 1][j - 1] + (0 if same else 1):
                path.append((MATCH if same else SUBSTITUTION, i - 1, j - 1))
                i -= 1
                j -= 1
                continue
        if i > 0 and dp[i][j] == dp[i - 1][j] + 1:
            path.append((DELETION, i - 1, None))
            i -= 1
        else:
            path.append((INSERTION, None, j - 1))
            j -= 1
    path.reverse()
    return path


def align(reference: Sequence[str], hypothesis: Sequence[str]) -> Alignment:
    """Align `hypothesis` against `reference` and count each operation.

    Both sequences may be empty. The result satisfies
    matches + substitutions + deletions == len(reference) and
    matches + substitutions + insertions == len(hypothesis).
    """
    dp = cost_matrix(reference, hypothesis)
    path = _backtrace(dp, reference, hypothesis)

    counts = {MATCH: 0, SUBSTITUTION: 0, DELETION: 0, INSERTION: 0}
    ref_column: List[Optional[str]] = []
    hyp_column: List[Optional[str]] = []
    for op, ri, hj in path:
        counts[op] += 1
        ref_column.append(reference[ri] if ri is not None else None)
        hyp_column.append(hypothesis[hj] if hj is not None else None)

    return Alignment(
        num_matches=counts[MATCH],
        num_substitutions=counts[SUBSTITUTION],
        num_insertions=counts[INSERTION],
        num_deletions=counts[DELETION],
        reference_length=len(reference),
        reference=tuple(ref_column),
        hypothesis=tuple(hyp_column),
        operations=tuple(op for op, _, _ in path),
    )


class SequenceAligner:
    """Stateless aligner; one instance can be shared between threads."""

    def align(self, reference: Sequence[str], hypothesis: Sequence[str]) -> Alignment:
        return align(reference, hypothesis)
