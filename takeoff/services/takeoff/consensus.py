"""Cross-provider consensus for one batch.

When several providers analysed the same batch, their takeoff items are
clustered by canonical unit, location and fuzzy name similarity. Each
cluster keeps a single item. Quantities are never averaged: the agreement
score only decides whether the kept item is boosted or annotated with a
conflict entry.
"""

import statistics
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from rapidfuzz import fuzz

from takeoff.models.job_models import ProviderOutput
from takeoff.models.takeoff_models import AnalysisItem, TakeoffItem
from takeoff.services.takeoff.normalization import (
    item_location,
    normalize_location,
    normalize_name,
    normalize_unit,
)
from takeoff.utils.logging import get_logger

LOGGER = get_logger(__name__)


@dataclass
class _Cluster:
    name: str
    unit: str
    location: str
    members: List[TakeoffItem] = field(default_factory=list)

    @property
    def providers(self) -> List[str]:
        return [item.provider or "" for item in self.members]


@dataclass
class ConsensusResult:
    items: List[TakeoffItem] = field(default_factory=list)
    conflicts: List[AnalysisItem] = field(default_factory=list)
    agreed: int = 0


class ConsensusEngine:
    """Reconciles the outputs of several providers for the same batch."""

    def __init__(
        self,
        consensus_threshold: float = 0.6,
        similarity_threshold: float = 0.7,
        quantity_tolerance: float = 0.2,
    ):
        """Initialize the engine.

        Args:
            consensus_threshold: Minimum agreement score to accept a cluster
            similarity_threshold: Minimum name similarity (0-1) to cluster items
            quantity_tolerance: Relative distance from the cluster median
                within which a provider's quantity counts as agreeing
        """
        self.consensus_threshold = consensus_threshold
        self.similarity_threshold = similarity_threshold
        self.quantity_tolerance = quantity_tolerance

    def reconcile(self, outputs: List[ProviderOutput]) -> ConsensusResult:
        """Reduce several provider outputs to one item list.

        Outputs must already be in canonical order; with a single output the
        items pass through untouched.
        """
        if len(outputs) <= 1:
            return ConsensusResult(items=list(outputs[0].items) if outputs else [])

        provider_names = [output.provider for output in outputs]
        clusters = self._cluster(outputs)

        result = ConsensusResult()
        for cluster in clusters:
            kept, conflict, agreed = self._resolve(cluster, provider_names)
            result.items.append(kept)
            if conflict is not None:
                result.conflicts.append(conflict)
            if agreed:
                result.agreed += 1

        LOGGER.debug(
            f"Consensus over {len(outputs)} providers: {len(clusters)} clusters, "
            f"{len(result.conflicts)} conflicts",
            extra={"providers": provider_names}
        )
        return result

    def _cluster(self, outputs: List[ProviderOutput]) -> List[_Cluster]:
        clusters: List[_Cluster] = []
        cutoff = self.similarity_threshold * 100

        for output in outputs:
            for item in output.items:
                item = item.model_copy(update={"provider": item.provider or output.provider})
                name = normalize_name(item.name)
                unit = normalize_unit(item.unit)
                location = normalize_location(item_location(item))

                match = None
                for cluster in clusters:
                    if cluster.unit != unit or item.provider in cluster.providers:
                        continue
                    if cluster.location and location and cluster.location != location:
                        continue
                    if fuzz.token_sort_ratio(cluster.name, name) >= cutoff:
                        match = cluster
                        break

                if match is None:
                    clusters.append(_Cluster(name=name, unit=unit, location=location, members=[item]))
                else:
                    match.members.append(item)
        return clusters

    def agreement_score(self, quantities: List[float], provider_count: int) -> float:
        """Fraction of providers whose quantity is within tolerance of the median."""
        if not quantities or provider_count <= 0:
            return 0.0
        median = statistics.median(quantities)
        if median == 0:
            agreeing = sum(1 for q in quantities if q == 0)
        else:
            agreeing = sum(
                1 for q in quantities
                if abs(q - median) <= self.quantity_tolerance * abs(median)
            )
        return agreeing / provider_count

    def _resolve(
        self,
        cluster: _Cluster,
        provider_names: List[str],
    ) -> Tuple[TakeoffItem, Optional[AnalysisItem], bool]:
        rank = {name: position for position, name in enumerate(provider_names)}
        best = min(
            cluster.members,
            key=lambda item: (-item.confidence, rank.get(item.provider, len(rank))),
        )
        quantities = [item.quantity for item in cluster.members]
        score = self.agreement_score(quantities, len(provider_names))

        if score >= self.consensus_threshold:
            boost = min(score * 0.2, 0.2)
            kept = best.model_copy(update={
                "confidence": min(best.confidence + boost, 1.0),
                "notes": _append_note(
                    best.notes,
                    f"Consensus from {', '.join(cluster.providers)} ({score:.2f} agreement)",
                ),
            })
            return kept, None, True

        reported = {item.provider: item.quantity for item in cluster.members}
        votes = [
            f"{provider}: {_format_qty(reported[provider])}" if provider in reported
            else f"{provider}: not reported"
            for provider in provider_names
        ]
        kept = best.model_copy(update={
            "notes": _append_note(best.notes, f"Providers disagree ({score:.2f} agreement): {'; '.join(votes)}"),
        })
        conflict = AnalysisItem(
            type="conflict",
            title=f"Quantity disagreement for {best.name}",
            description=f"Providers disagree on {best.name} ({normalize_unit(best.unit)}): {'; '.join(votes)}",
            pages=sorted({ref.page for item in cluster.members for ref in item.page_refs}),
            severity="medium",
            recommendation="Verify the quantity against the drawings before pricing.",
            confidence=round(score, 4),
            source_chunk_index=best.source_chunk_index,
            segment_industry=best.segment_industry,
        )
        return kept, conflict, False


def _format_qty(quantity: float) -> str:
    return f"{quantity:g}"


def _append_note(existing: Optional[str], note: str) -> str:
    return f"{existing} | {note}" if existing else note
