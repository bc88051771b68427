"""
Model selection utilities.

This module handles:
- F-test p-values for nested piecewise-linear models
- Correction of those p-values for the vertex placement search
- Parsimony-favoring choice among the elimination trace
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np
from scipy import special, stats

from .exceptions import ModelSelectionDegenerateError
from .series import CandidateModel

logger = logging.getLogger(__name__)

# RSS differences below this are numerical noise for [0, 1] probabilities
RSS_TOLERANCE = 1e-10


def _f_test(reduction: float, rss: float, dfn: int, dfd: int) -> float:
    if dfn <= 0 or dfd <= 0 or reduction <= RSS_TOLERANCE:
        return 1.0
    if rss <= RSS_TOLERANCE:
        return 0.0
    f_stat = (reduction / dfn) / (rss / dfd)
    return float(stats.f.sf(f_stat, dfn, dfd))


def improvement_p_value(simple: CandidateModel, complex_: CandidateModel) -> float:
    """
    Significance of the RSS reduction bought by the extra vertices.

    F = ((RSS_s - RSS_c) / (p_c - p_s)) / (RSS_c / (n - p_c))

    Parameters
    ----------
    simple : CandidateModel
        Model with fewer vertices
    complex_ : CandidateModel
        Model with more vertices, fitted to the same observations

    Returns
    -------
    float
        p-value in [0, 1]; 1.0 when nothing improves or no residual
        degrees of freedom remain, 0.0 for an exact fit
    """
    return _f_test(
        reduction=simple.rss - complex_.rss,
        rss=complex_.rss,
        dfn=complex_.n_params - simple.n_params,
        dfd=complex_.n_obs - complex_.n_params,
    )


def model_p_value(candidate: CandidateModel, tss: float) -> float:
    """p-value of a model against the constant-mean model (total sum of squares ``tss``)."""
    return _f_test(
        reduction=tss - candidate.rss,
        rss=candidate.rss,
        dfn=candidate.n_params - 1,
        dfd=candidate.n_obs - candidate.n_params,
    )


def placement_count(n_obs: int, max_interior: int) -> float:
    """
    Number of interior vertex placements a search over ``n_obs`` points could try.

    Endpoints are fixed, so every model with 1 to ``max_interior`` interior
    vertices picks them among the ``n_obs - 2`` inner observations.
    """
    n_inner = max(n_obs - 2, 0)
    return float(sum(
        special.comb(n_inner, k, exact=True)
        for k in range(1, min(max_interior, n_inner) + 1)
    ))


def search_adjusted(p_value: float, n_tests: float) -> float:
    """Bonferroni correction of ``p_value`` for ``n_tests`` searched alternatives."""
    if np.isnan(p_value):
        return p_value
    return min(1.0, p_value * max(n_tests, 1.0))


@dataclass(frozen=True)
class Selection:
    """Chosen model plus the diagnostics of every candidate (simplest first)."""
    candidate: CandidateModel
    candidates: Tuple[CandidateModel, ...]
    improvement_p_values: Tuple[float, ...]
    p_value: float
    model_p_values: Tuple[float, ...] = ()


class ModelSelector:
    """
    Pick the simplest adequate model from an elimination trace.

    Vertex positions are chosen by searching the data, so raw F-test
    p-values overstate significance. Every p-value is therefore
    Bonferroni-corrected for the placements the search could have tried:
    a model with interior vertices against the reference model counts all
    placements of up to the trace's largest vertex set, and one added
    vertex counts the free positions left for it.

    A multi-segment model is admissible only when its corrected p-value
    against the reference is below ``pval_threshold``. The reference is
    the constant-mean model when ``tss`` is given, else the simplest
    candidate. With no admissible model the selector falls back to one
    segment.

    Among admissible models, walking from the most complex one, a segment
    is dropped as long as its corrected improvement is not significant.
    Any model whose RSS is within ``best_model_proportion`` of the best RSS
    (``rss * proportion <= best``) is an equally acceptable, simpler
    answer; the simpler of the two choices wins.
    """

    def __init__(self, pval_threshold: float = 0.1, best_model_proportion: float = 0.75):
        self.pval_threshold = pval_threshold
        self.best_model_proportion = best_model_proportion

    def select(
        self,
        candidates: Sequence[CandidateModel],
        tss: Optional[float] = None
    ) -> Selection:
        """
        Choose among candidate models of increasing complexity.

        Parameters
        ----------
        candidates : sequence of CandidateModel
            Elimination trace, in any order
        tss : float, optional
            Total sum of squares of the observations. Models are then
            tested against the constant mean; otherwise against the
            simplest candidate, and the reported p-value is NaN.

        Returns
        -------
        Selection
            ``improvement_p_values`` and ``model_p_values`` are the
            search-corrected values, simplest model first
        """
        if not candidates:
            raise ValueError("No candidate models to select from")

        ordered = sorted(candidates, key=lambda c: c.n_segments)
        p_values = [np.nan] + [
            search_adjusted(
                improvement_p_value(ordered[i - 1], ordered[i]),
                ordered[i].n_obs - ordered[i].n_segments,
            )
            for i in range(1, len(ordered))
        ]
        model_p_values = self._model_p_values(ordered, tss)

        try:
            self._check_degenerate(ordered)
        except ModelSelectionDegenerateError as e:
            logger.debug(f"{e}; keeping the simplest model")
            chosen = 0
        else:
            admissible = [0] + [
                i for i in range(1, len(ordered))
                if ordered[i].n_segments > 1 and model_p_values[i] < self.pval_threshold
            ]
            if len(admissible) == 1:
                logger.debug("No multi-segment model beats the flat model; keeping one segment")
            chosen = min(
                self._significance_walk(p_values, admissible),
                self._near_best(ordered, admissible),
            )

        candidate = ordered[chosen]
        p_value = model_p_values[chosen] if tss is not None else np.nan

        return Selection(
            candidate=candidate,
            candidates=tuple(ordered),
            improvement_p_values=tuple(p_values),
            p_value=p_value,
            model_p_values=tuple(model_p_values),
        )

    @staticmethod
    def _model_p_values(ordered, tss):
        n_tests = placement_count(ordered[-1].n_obs, ordered[-1].n_segments - 1)
        if tss is not None:
            reference_rss, reference_params = tss, 1
        else:
            reference_rss, reference_params = ordered[0].rss, ordered[0].n_params

        p_values = []
        for cand in ordered:
            p = _f_test(
                reduction=reference_rss - cand.rss,
                rss=cand.rss,
                dfn=cand.n_params - reference_params,
                dfd=cand.n_obs - cand.n_params,
            )
            # a single segment has no interior vertex to place
            p_values.append(search_adjusted(p, n_tests) if cand.n_segments > 1 else p)
        return p_values

    def _significance_walk(self, p_values, admissible) -> int:
        k = admissible[-1]
        while k > 0 and (k not in admissible or p_values[k] >= self.pval_threshold):
            k -= 1
        return k

    def _near_best(self, ordered, admissible) -> int:
        best = min(ordered[i].rss for i in admissible)
        for i in admissible:
            if ordered[i].rss * self.best_model_proportion <= best + RSS_TOLERANCE:
                return i
        return admissible[-1]

    @staticmethod
    def _check_degenerate(ordered):
        if len(ordered) < 2:
            return
        rss = np.array([c.rss for c in ordered])
        if np.all(np.abs(rss - rss[0]) <= RSS_TOLERANCE):
            raise ModelSelectionDegenerateError(
                f"All {len(ordered)} candidate models have the same RSS ({rss[0]:.3g})"
            )
