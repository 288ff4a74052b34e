"""Unit tests for cross-provider consensus."""

import pytest

from takeoff.models.job_models import ProviderOutput
from takeoff.services.takeoff.consensus import ConsensusEngine


@pytest.fixture
def engine():
    return ConsensusEngine(consensus_threshold=0.6, similarity_threshold=0.7, quantity_tolerance=0.2)


class TestConsensus:

    def test_single_provider_passes_through(self, engine, item_factory):
        items = [item_factory(), item_factory(name="sill plate", quantity=60, unit="lf")]

        result = engine.reconcile([ProviderOutput(provider="openai", items=items)])

        assert result.items == items
        assert result.conflicts == []

    def test_agreeing_providers_boost_confidence(self, engine, item_factory):
        outputs = [
            ProviderOutput(provider="openai", items=[item_factory(quantity=48, confidence=0.8)]),
            ProviderOutput(provider="gemini", items=[item_factory(name="2x4 studs", quantity=50, confidence=0.7)]),
        ]

        result = engine.reconcile(outputs)

        assert len(result.items) == 1
        kept = result.items[0]
        assert kept.quantity == 48
        assert kept.provider == "openai"
        assert kept.confidence == pytest.approx(1.0)
        assert "Consensus from openai, gemini" in kept.notes
        assert result.conflicts == []
        assert result.agreed == 1

    def test_quantities_are_never_averaged(self, engine, item_factory):
        outputs = [
            ProviderOutput(provider="openai", items=[item_factory(quantity=48, confidence=0.6)]),
            ProviderOutput(provider="gemini", items=[item_factory(quantity=52, confidence=0.9)]),
        ]

        kept = engine.reconcile(outputs).items[0]

        assert kept.quantity == 52
        assert kept.provider == "gemini"

    def test_disagreement_produces_conflict(self, engine, item_factory):
        outputs = [
            ProviderOutput(provider="openai", items=[item_factory(quantity=48)]),
            ProviderOutput(provider="gemini", items=[item_factory(quantity=100)]),
            ProviderOutput(provider="mistral", items=[item_factory(name="roof truss", quantity=12)]),
        ]

        result = engine.reconcile(outputs)

        stud_conflicts = [c for c in result.conflicts if c.title == "Quantity disagreement for 2x4 stud"]
        assert len(stud_conflicts) == 1
        conflict = stud_conflicts[0]
        assert conflict.type == "conflict"
        assert conflict.severity == "medium"
        assert "openai: 48; gemini: 100; mistral: not reported" in conflict.description
        assert conflict.pages == [1]
        stud = next(i for i in result.items if i.name == "2x4 stud")
        assert stud.confidence == pytest.approx(0.8)

    def test_different_units_stay_separate(self, engine, item_factory):
        outputs = [
            ProviderOutput(provider="openai", items=[item_factory(unit="ea")]),
            ProviderOutput(provider="gemini", items=[item_factory(unit="lf")]),
        ]

        assert len(engine.reconcile(outputs).items) == 2

    def test_different_locations_stay_separate(self, engine, item_factory):
        outputs = [
            ProviderOutput(provider="openai", items=[item_factory(location="Level 1")]),
            ProviderOutput(provider="gemini", items=[item_factory(location="Level 2")]),
        ]

        assert len(engine.reconcile(outputs).items) == 2

    def test_agreement_score(self, engine):
        assert engine.agreement_score([48, 50, 100], 3) == pytest.approx(2 / 3)
        assert engine.agreement_score([0, 0], 2) == 1.0
        assert engine.agreement_score([], 2) == 0.0
