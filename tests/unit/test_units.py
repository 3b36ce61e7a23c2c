"""Unit tests for the unit contract and the default units."""

import asyncio
import json

import pytest

from transcript_agents.agents.base import InvalidOutputError
from transcript_agents.agents.units import (
    AccessorialParserUnit,
    CarrierInformationUnit,
    ClassificationUnit,
    ConditionalAgreementUnit,
    RateNegotiationUnit,
    ReferenceResolutionUnit,
    SpeakerIdentificationUnit,
    ValidationUnit,
    create_default_units,
)
from transcript_agents.config import prompts
from transcript_agents.llm import GenerationError, GenerationResult, ResponseParseError
from transcript_agents.models import (
    AccessorialOutput,
    AccessorialWarning,
    CallType,
    ClassificationOutput,
    ConfidenceScore,
    ErrorCode,
    ExecutionResult,
    IssueSeverity,
    Load,
    LoadOutput,
    NegotiationOutput,
    NegotiationStatus,
    SpeakerRole,
    UnitStatus,
)


def _record(context, name, output):
    context.record_result(name, ExecutionResult(unit_name=name, status=UnitStatus.COMPLETED, output=output))


class TestErrorClassification:
    """Tests for BaseUnit.classify_error."""

    @pytest.fixture
    def unit(self, stub_generation):
        return ClassificationUnit(generation=stub_generation)

    @pytest.mark.parametrize(
        "error,code,recoverable",
        [
            (asyncio.TimeoutError(), ErrorCode.TIMEOUT, True),
            (InvalidOutputError("bad"), ErrorCode.INVALID_OUTPUT, True),
            (ResponseParseError("no json"), ErrorCode.PARSE_ERROR, True),
            (json.JSONDecodeError("x", "doc", 0), ErrorCode.PARSE_ERROR, True),
            (GenerationError("HTTP 503 from upstream"), ErrorCode.TRANSIENT, True),
            (ConnectionError("connection reset by peer"), ErrorCode.TRANSIENT, True),
            (GenerationError("model not found"), ErrorCode.API_ERROR, False),
            (RuntimeError("boom"), ErrorCode.UNKNOWN, False),
        ],
    )
    def test_mapping(self, unit, error, code, recoverable):
        classified = unit.classify_error(error)
        assert classified.code == code
        assert classified.recoverable is recoverable


class TestBaseHelpers:
    """Tests for the helpers units share."""

    def test_parse_output_cleans_placeholders(self, stub_generation):
        unit = CarrierInformationUnit(generation=stub_generation)
        result = GenerationResult(
            data={"carrier_name": "N/A", "mc_number": "123456", "equipment": ["reefer", "none"], "confidence": 0.7},
            model="stub",
            prompt_tokens=3,
            completion_tokens=2,
        )
        output = unit.parse_output(result)
        assert output.carrier_name is None
        assert output.equipment == ["reefer"]
        assert output.confidence.value == 0.7
        assert output.tokens_used == 5

    def test_parse_output_defaults_bad_confidence(self, stub_generation):
        unit = CarrierInformationUnit(generation=stub_generation)
        output = unit.parse_output(GenerationResult(data={"confidence": "high"}, model="stub"))
        assert output.confidence.value == 0.5

    def test_default_output(self, stub_generation):
        output = CarrierInformationUnit(generation=stub_generation).get_default_output()
        assert output.kind == "carrier"
        assert output.confidence.value == 0.0

    def test_classification_default_is_low_confidence_check_call(self, stub_generation):
        output = ClassificationUnit(generation=stub_generation).get_default_output()
        assert output.primary_type == CallType.CHECK_CALL
        assert output.confidence.value == 0.3

    def test_calculate_confidence(self):
        score = ClassificationUnit.calculate_confidence({"a": 1.0, "b": 0.5})
        assert score.value == 0.75
        assert score.factors == ["a", "b"]

    def test_unit_without_generation_fails(self, context):
        with pytest.raises(Exception, match="no generation service"):
            asyncio.run(CarrierInformationUnit().execute(context))

    def test_catalogue(self, stub_generation):
        names = [unit.name for unit in create_default_units(stub_generation)]
        assert names[0] == "classification"
        assert len(names) == len(set(names)) == 13


class TestExtractionUnits:
    """Tests for the LLM-backed units against the stub service."""

    def test_classification_blends_keyword_agreement(self, context, stub_generation):
        output = asyncio.run(ClassificationUnit(generation=stub_generation).execute(context))
        assert output.primary_type == CallType.CARRIER_QUOTE
        # model 0.9 and a keyword match ("posted") average to 0.95
        assert output.confidence.value == 0.95
        assert "posted" in output.indicators

    def test_unknown_category_maps_to_unknown(self, context, make_stub):
        stub = make_stub({prompts.CLASSIFICATION_SYSTEM_PROMPT: {"primary_type": "sales_pitch", "confidence": 0.8}})
        output = asyncio.run(ClassificationUnit(generation=stub).execute(context))
        assert output.primary_type == CallType.UNKNOWN

    def test_speaker_roles_shared(self, context, stub_generation):
        output = asyncio.run(SpeakerIdentificationUnit(generation=stub_generation).execute(context))
        assert output.role_of("Carrier") == SpeakerRole.CARRIER
        assert context.get_shared("speaker_roles") == {"Broker": "broker", "Carrier": "carrier"}

    def test_speaker_missing_labels_added(self, context, make_stub):
        stub = make_stub({prompts.SPEAKER_SYSTEM_PROMPT: {"speakers": [{"label": "Broker", "role": "broker"}]}})
        output = asyncio.run(SpeakerIdentificationUnit(generation=stub).execute(context))
        assert output.role_of("Carrier") == SpeakerRole.UNKNOWN
        assert any("Carrier" in note for note in output.processing_notes)

    def test_carrier_mc_number_from_transcript(self, context, make_stub):
        stub = make_stub({prompts.CARRIER_SYSTEM_PROMPT: {"carrier_name": "Swift Lane Trucking", "confidence": 0.8}})
        output = asyncio.run(CarrierInformationUnit(generation=stub).execute(context))
        assert output.mc_number == "123456"

    def test_references_from_pattern(self, context, make_stub):
        stub = make_stub({prompts.REFERENCE_SYSTEM_PROMPT: {"references": [], "confidence": 0.6}})
        output = asyncio.run(ReferenceResolutionUnit(generation=stub).execute(context))
        values = {(r.kind, r.value) for r in output.references}
        assert ("load", "48213") in values
        assert context.get_shared("load_references") == ["48213"]

    def test_agreement_without_rate_is_pending(self, context, make_stub):
        stub = make_stub({prompts.NEGOTIATION_SYSTEM_PROMPT: {"status": "agreed", "confidence": 0.8}})
        output = asyncio.run(RateNegotiationUnit(generation=stub).execute(context))
        assert output.status == NegotiationStatus.PENDING

    def test_conditions_need_a_negotiation(self, context, stub_generation):
        unit = ConditionalAgreementUnit(generation=stub_generation)
        assert not unit.should_execute(context)

        _record(context, "rate_negotiation", NegotiationOutput(
            status=NegotiationStatus.NO_NEGOTIATION, confidence=ConfidenceScore.from_value(0.9)
        ))
        assert not unit.should_execute(context)

        _record(context, "rate_negotiation", NegotiationOutput(
            status=NegotiationStatus.AGREED, agreed_rate=2200, confidence=ConfidenceScore.from_value(0.9)
        ))
        assert unit.should_execute(context)


class TestAccessorialParserUnit:
    """Tests for accessorial extraction and market comparison."""

    CHARGES = {
        "accessorials": [
            {"type": "detention", "calculation": {"method": "hourly", "rate": 110, "unit": "hour"},
             "status": "additional", "confidence": 0.9, "raw_text": "110 an hour detention"},
            {"type": "tonu", "amount": 450, "status": "additional", "confidence": 0.8},
            {"type": "lumper", "amount": 150, "status": "included", "confidence": 0.7},
        ],
        "special_provisions": [{"description": "driver assist at delivery"}],
        "confidence": 0.8,
    }

    def test_runs_for_quotes_and_bookings(self, context):
        unit = AccessorialParserUnit()
        assert not unit.should_execute(context)

        _record(context, "classification", ClassificationOutput(
            primary_type=CallType.CHECK_CALL, confidence=ConfidenceScore.from_value(0.9)
        ))
        assert not unit.should_execute(context)

        _record(context, "classification", ClassificationOutput(
            primary_type=CallType.NEW_BOOKING, confidence=ConfidenceScore.from_value(0.9)
        ))
        assert unit.should_execute(context)

    def test_charges_compared_with_market(self, context, make_stub):
        stub = make_stub({prompts.ACCESSORIAL_SYSTEM_PROMPT: self.CHARGES})

        output = asyncio.run(AccessorialParserUnit(generation=stub).execute(context))

        assert [c.type for c in output.accessorials] == ["detention", "tonu", "lumper"]
        assert output.accessorials[0].id == "acc_1"
        assert output.market_comparison.detention == "above_market"
        assert output.market_comparison.tonu == "above_market"
        assert output.market_comparison.overall == "broker_favorable"
        assert [(w.type, w.accessorial_type) for w in output.warnings] == [
            ("missing_terms", "detention"),
            ("high_rate", "detention"),
            ("high_rate", "tonu"),
        ]
        assert output.total_impact.estimated_charges == 135.0
        assert output.total_impact.worst_case == 450
        assert output.total_impact.included_in_rate == ["lumper"]
        assert output.total_impact.additional == ["detention", "tonu"]
        assert output.special_provisions == ["driver assist at delivery"]
        # detection 0.8, terms 11/12 and market 0.8
        assert output.confidence.value == pytest.approx(0.8389, abs=1e-4)
        assert output.tokens_used == 15

    def test_no_charges(self, context, stub_generation):
        output = asyncio.run(AccessorialParserUnit(generation=stub_generation).execute(context))
        assert output.accessorials == []
        assert output.market_comparison is None
        assert output.warnings == []
        assert output.total_impact.estimated_charges == 0.0

    def test_malformed_entries_skipped(self, context, make_stub):
        stub = make_stub({prompts.ACCESSORIAL_SYSTEM_PROMPT: {
            "accessorials": ["detention", {"type": "Layover", "amount": "n/a", "confidence": 4}],
        }})
        output = asyncio.run(AccessorialParserUnit(generation=stub).execute(context))
        assert len(output.accessorials) == 1
        assert output.accessorials[0].type == "layover"
        assert output.accessorials[0].amount is None
        assert output.accessorials[0].confidence == 1.0

    def test_default_output(self):
        output = AccessorialParserUnit().get_default_output()
        assert output.confidence.value == 0.3
        assert output.accessorials == []


class TestValidationUnit:
    """Tests for the deterministic validation unit."""

    def test_clean_context_is_valid(self, context):
        _record(context, "classification", ClassificationOutput(
            primary_type=CallType.CARRIER_QUOTE, confidence=ConfidenceScore.from_value(0.9)
        ))
        output = asyncio.run(ValidationUnit().execute(context))
        assert output.is_valid
        assert not output.requires_review
        assert output.issues == []

    def test_delivery_before_pickup_is_critical(self, context):
        _record(context, "load_extraction", LoadOutput(
            loads=[Load(load_id="48213", pickup_date="2026-03-13", delivery_date="2026-03-11")],
            confidence=ConfidenceScore.from_value(0.9),
        ))
        output = asyncio.run(ValidationUnit().execute(context))
        assert not output.is_valid
        assert output.requires_review
        assert output.issues[0].severity == IssueSeverity.CRITICAL

    def test_rate_outside_offers(self, context):
        _record(context, "rate_negotiation", NegotiationOutput(
            status=NegotiationStatus.AGREED,
            initial_offer=2000,
            counter_offers=[2400],
            agreed_rate=2600,
            confidence=ConfidenceScore.from_value(0.9),
        ))
        output = asyncio.run(ValidationUnit().execute(context))
        assert output.is_valid
        assert any("outside the offers" in issue.message for issue in output.issues)

    def test_new_booking_without_load(self, context):
        _record(context, "classification", ClassificationOutput(
            primary_type=CallType.NEW_BOOKING, confidence=ConfidenceScore.from_value(0.9)
        ))
        output = asyncio.run(ValidationUnit().execute(context))
        assert output.requires_review

    def test_failed_units_are_reported(self, context):
        context.record_result("summary", ExecutionResult(unit_name="summary", status=UnitStatus.FAILED))
        output = asyncio.run(ValidationUnit().execute(context))
        assert output.issues[0].unit == "summary"
        assert output.issues[0].severity == IssueSeverity.WARNING

    def test_accessorial_warnings_are_informational(self, context):
        _record(context, "accessorial_parser", AccessorialOutput(
            confidence=ConfidenceScore.from_value(0.8),
            warnings=[AccessorialWarning(
                type="high_rate", accessorial_type="tonu", description="TONU charge of $450 is above market",
            )],
        ))
        output = asyncio.run(ValidationUnit().execute(context))
        assert output.is_valid
        assert not output.requires_review
        issue = next(i for i in output.issues if i.unit == "accessorial_parser")
        assert issue.severity == IssueSeverity.INFO
        assert "above market" in issue.message
