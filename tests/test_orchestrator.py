"""Tests for the two-track detection orchestrator."""

import json

import pytest

from arbiter.configuration.app_configuration import DetectionSettings
from arbiter.core.errors import UnverifiableEvidence, UpstreamUnavailable
from arbiter.datatypes.detection_datatypes import DetectionKind
from arbiter.detection.content_analyzer import ContentAnalyzer
from arbiter.detection.contradiction_validator import ContradictionValidator
from arbiter.detection.orchestrator import DetectionOrchestrator, locate_evidence
from arbiter.resilience.concurrency_gate import PriorityClass
from arbiter.services.web_search_client import WebAnswer
from fakes import FakeGeneration, FakeWeb, PurposeGeneration


class FakeHistory:
    def __init__(self, records):
        self.records = records

    async def fetch_user_messages_for_detection(self, record, limit=50):
        return list(self.records)


def contradiction_reply(evidence, verdict="yes"):
    return json.dumps({"contradiction": verdict, "reason": "flat versus round", "evidence": evidence})


def make_orchestrator(generation, web=None, history=None, **settings):
    return DetectionOrchestrator(
        generation,
        web or FakeWeb(),
        ContentAnalyzer(),
        ContradictionValidator(),
        DetectionSettings(**settings),
        history=history,
    )


@pytest.mark.asyncio
async def test_contradiction_confirmed_with_deep_link(make_record):
    prior = make_record("The earth is flat", minutes=1)
    current = make_record("The earth is round", minutes=2)
    generation = FakeGeneration([contradiction_reply("The earth is flat")])
    orchestrator = make_orchestrator(generation)

    result = await orchestrator.run_contradiction(current, [prior], "cid")

    assert result is not None
    assert result.kind is DetectionKind.CONTRADICTION
    assert result.evidence_quote == "The earth is flat"
    assert result.evidence_message_id == prior.id
    assert result.evidence_url == f"https://discord.com/channels/g1/c1/{prior.id}"
    _, purpose, priority = generation.calls[0]
    assert purpose == "contradiction"
    assert priority is PriorityClass.BACKGROUND


@pytest.mark.asyncio
async def test_evidence_not_in_history_is_discarded(make_record):
    prior = make_record("The earth is flat")
    current = make_record("The earth is round")
    generation = FakeGeneration([contradiction_reply("Birds are not real")])

    assert await make_orchestrator(generation).run_contradiction(current, [prior]) is None


@pytest.mark.asyncio
async def test_validator_can_reject_model_verdict(make_record):
    prior = make_record("The earth is round")
    current = make_record("The earth is a globe")
    generation = FakeGeneration([contradiction_reply("The earth is round")])

    assert await make_orchestrator(generation).run_contradiction(current, [prior]) is None


@pytest.mark.asyncio
async def test_no_generation_call_without_substantive_history(make_record):
    current = make_record("The earth is round")
    generation = FakeGeneration()
    orchestrator = make_orchestrator(generation)

    assert await orchestrator.run_contradiction(current, [make_record("lol")]) is None
    assert await orchestrator.run_contradiction(current, []) is None
    assert generation.calls == []


@pytest.mark.asyncio
async def test_duplicate_of_latest_prior_is_skipped(make_record):
    generation = FakeGeneration()
    current = make_record("The earth is flat")
    prior = make_record(" The earth is flat ")

    assert await make_orchestrator(generation).run_contradiction(current, [prior]) is None
    assert generation.calls == []


@pytest.mark.asyncio
async def test_unparseable_reply_is_negative(make_record):
    generation = FakeGeneration(["I refuse to answer in JSON"])
    current = make_record("The earth is round")

    assert await make_orchestrator(generation).run_contradiction(current, [make_record("The earth is flat")]) is None


@pytest.mark.asyncio
async def test_run_raises_and_check_absorbs_upstream_failure(make_record):
    error = UpstreamUnavailable("generation", "all models down")
    current = make_record("The earth is round")
    prior = [make_record("The earth is flat")]

    with pytest.raises(UpstreamUnavailable):
        await make_orchestrator(FakeGeneration([error])).run_contradiction(current, prior)

    assert await make_orchestrator(FakeGeneration([error])).check_contradiction(current, prior) is None


@pytest.mark.asyncio
async def test_misinformation_flagged_with_cleaned_url(make_record):
    web = FakeWeb(WebAnswer("The earth is an oblate spheroid.", ["https://nasa.gov/earth"]))
    reply = json.dumps(
        {"misinformation": "yes", "reason": "contradicts consensus", "url": " https://example.org/shape). "}
    )
    generation = FakeGeneration([reply])

    result = await make_orchestrator(generation, web).run_misinformation(make_record("The earth is flat"))

    assert result.kind is DetectionKind.MISINFORMATION
    assert result.evidence_url == "https://example.org/shape"
    assert generation.calls[0][2] is PriorityClass.FACT_CHECK


@pytest.mark.asyncio
async def test_misinformation_url_falls_back_to_answer_source(make_record):
    web = FakeWeb(WebAnswer("The earth is an oblate spheroid.", ["https://nasa.gov/earth"]))
    generation = FakeGeneration([json.dumps({"misinformation": "yes", "reason": "wrong"})])

    result = await make_orchestrator(generation, web).run_misinformation(make_record("The earth is flat"))

    assert result.evidence_url == "https://nasa.gov/earth"


@pytest.mark.asyncio
async def test_misinformation_requires_grounding(make_record):
    generation = FakeGeneration()
    web = FakeWeb(WebAnswer("No relevant results found.", []))

    assert await make_orchestrator(generation, web).run_misinformation(make_record("The earth is flat")) is None
    assert generation.calls == []


@pytest.mark.asyncio
async def test_misinformation_checks_clipped_long_content(make_record):
    claim = "Vaccines do not work and cause autism."
    message = make_record(claim + " More words follow here." * 25)
    generation = FakeGeneration(
        [json.dumps({"misinformation": "yes", "reason": "debunked", "evidence": "No link exists.", "url": ""})]
    )
    web = FakeWeb(WebAnswer("No link between vaccines and autism exists.", ["https://who.int/vaccines"]))
    orchestrator = make_orchestrator(generation, web, max_factcheck_chars=len(claim))

    result = await orchestrator.run_misinformation(message)

    assert web.queries == [claim]
    assert result is not None
    assert result.evidence_url == "https://who.int/vaccines"
    prompt = generation.calls[0][0]
    assert claim in prompt
    assert "More words follow" not in prompt


@pytest.mark.asyncio
async def test_contradiction_prompt_uses_clipped_message(make_record):
    prior = make_record("The earth is flat")
    current = make_record("The earth is round" + " and the horizon curves away" * 30)
    generation = FakeGeneration([contradiction_reply("", verdict="no")])
    orchestrator = make_orchestrator(generation, max_factcheck_chars=len("The earth is round"))

    assert await orchestrator.run_contradiction(current, [prior]) is None

    prompt = generation.calls[0][0]
    assert "The earth is round" in prompt
    assert "horizon curves away" not in prompt


@pytest.mark.asyncio
async def test_detect_runs_both_tracks(make_record):
    prior = make_record("The earth is flat")
    current = make_record("The earth is round")
    generation = PurposeGeneration(
        {
            "contradiction": contradiction_reply("The earth is flat"),
            "misinformation": json.dumps({"misinformation": "no", "reason": "accurate"}),
        }
    )
    web = FakeWeb(WebAnswer("The earth is round.", ["https://nasa.gov/earth"]))
    orchestrator = make_orchestrator(generation, web, history=FakeHistory([prior]))

    outcome = await orchestrator.detect(current)

    assert outcome.contradiction is not None
    assert outcome.misinformation is None
    assert outcome.has_findings


@pytest.mark.asyncio
async def test_detect_never_raises(make_record):
    generation = PurposeGeneration({"contradiction": RuntimeError("boom")})
    web = FakeWeb(UpstreamUnavailable("web_search", "down"))
    orchestrator = make_orchestrator(generation, web, history=FakeHistory([make_record("The earth is flat")]))

    outcome = await orchestrator.detect(make_record("The earth is round"))

    assert not outcome.has_findings


def test_locate_evidence_prefers_exact_then_containment(make_record):
    a = make_record("I said the earth is flat, fight me")
    b = make_record("the earth is flat")

    assert locate_evidence("the earth is flat", [a, b]) is b
    assert locate_evidence("the earth is flat, fight me", [a]) is a

    with pytest.raises(UnverifiableEvidence):
        locate_evidence("", [a])
