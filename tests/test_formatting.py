from arbiter.bot.formatting import format_detection_alert, format_sources, truncate_message
from arbiter.datatypes.detection_datatypes import DetectionKind, DetectionOutcome, DetectionResult

CONTRADICTION = DetectionResult(
    kind=DetectionKind.CONTRADICTION,
    verdict="yes",
    reason="Flat and round cannot both hold.",
    evidence_quote="The earth is flat",
    evidence_url="https://discord.com/channels/g1/c1/m1",
    evidence_message_id="m1",
)
MISINFORMATION = DetectionResult(
    kind=DetectionKind.MISINFORMATION,
    verdict="yes",
    reason="Satellite imagery shows a sphere.",
    evidence_quote="The earth is an oblate spheroid.",
    evidence_url="https://nasa.gov/earth",
)


def test_no_findings_means_no_alert():
    assert format_detection_alert(DetectionOutcome(), "anything") is None


def test_contradiction_alert_quotes_both_statements():
    text = format_detection_alert(DetectionOutcome(contradiction=CONTRADICTION), "The earth is round")

    assert text.startswith("**CONTRADICTION DETECTED**")
    assert "```The earth is flat```" in text
    assert "```The earth is round```" in text
    assert text.endswith("Flat and round cannot both hold.")


def test_misinformation_alert_cites_source():
    text = format_detection_alert(DetectionOutcome(misinformation=MISINFORMATION), "The earth is flat")

    assert text.startswith("**MISINFORMATION DETECTED**")
    assert "Source: <https://nasa.gov/earth>" in text


def test_combined_alert():
    outcome = DetectionOutcome(contradiction=CONTRADICTION, misinformation=MISINFORMATION)
    text = format_detection_alert(outcome, "The earth is flat")

    assert text.startswith("**CONTRADICTION & MISINFORMATION DETECTED**")
    assert "**False claim:** The earth is flat" in text


def test_truncate_message_prefers_word_boundary():
    long_text = "word " * 500

    truncated = truncate_message(long_text)

    assert truncated.endswith("... [truncated]")
    assert len(truncated) <= 1950 + len("... [truncated]")
    assert truncate_message("short") == "short"


def test_format_sources_limits_and_wraps():
    urls = [f"https://s.example/{i}" for i in range(7)]

    text = format_sources(urls)

    assert text.count("- <https://s.example/") == 5
    assert format_sources([]) == ""
