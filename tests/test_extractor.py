import json

import pytest

from gabriel_pipeline.extractor import ResponseExtractor, find_citations, merge_references
from gabriel_pipeline.models import ExtractionTier

FIELDS = ("title", "introduction", "points", "conclusion")


def _complete(doc):
    assert doc.title.strip()
    assert doc.introduction.strip()
    assert doc.conclusion.strip()
    assert doc.points
    for p in doc.points:
        assert p.title.strip()
        assert p.content.strip()
    assert doc.references


def test_markdown_sections_are_strict():
    raw = "## Introduction\nContext here.\n## 1. Grace\nBody text.\n## Conclusion\nFinal words."
    doc = ResponseExtractor().extract(raw, "John 3:16")

    assert doc.introduction == "Context here."
    assert [(p.title, p.content) for p in doc.points] == [("Grace", "Body text.")]
    assert doc.conclusion == "Final words."
    assert doc.references == ["John 3:16"]
    assert all(w.tier is ExtractionTier.STRICT for w in doc.extraction_warnings)
    # No title heading: the first section leads.
    assert doc.title == "Context here"
    assert doc.raw_text == raw


def test_full_markdown_sermon_with_title_heading():
    raw = (
        "# Loved Beyond Measure\n\n"
        "## Introduction\nGod's love is the foundation of the gospel.\n\n"
        "## 1. The Giver\nGod so loved that He gave, as in Romans 5:8.\n\n"
        "## 2. The Gift\nHis only Son, the Word made flesh.\n\n"
        "## Conclusion\nReceive the gift today.\n\n"
        "## Scripture References\n- Romans 5:8\n- 1 John 4:9-10\n"
    )
    doc = ResponseExtractor().extract(raw, "John 3:16")

    assert doc.title == "Loved Beyond Measure"
    assert [p.title for p in doc.points] == ["The Giver", "The Gift"]
    assert doc.references == ["John 3:16", "Romans 5:8", "1 John 4:9-10"]
    assert all(doc.tier_for(name) is ExtractionTier.STRICT for name in FIELDS)


def test_caller_title_is_preferred():
    raw = "# Model Title\n## Introduction\nContext here, enough.\n## Conclusion\nFinal words here."
    doc = ResponseExtractor().extract(raw, "Psalm 23", title="The Shepherd")
    assert doc.title == "The Shepherd"
    assert doc.tier_for("title") is ExtractionTier.STRICT


@pytest.mark.parametrize("raw", ["", "   \n\n ", None, "ok", "{not json"])
def test_degenerate_input_still_yields_complete_document(raw):
    doc = ResponseExtractor().extract(raw, "Romans 8:28")
    _complete(doc)
    assert doc.references[0] == "Romans 8:28"


def test_empty_input_is_fully_synthesized():
    doc = ResponseExtractor().extract("", "Romans 8:28")
    assert doc.title == "Sermon on Romans 8:28"
    assert doc.conclusion == "May God bless you as you apply the teachings from Romans 8:28."
    assert all(doc.tier_for(name) is ExtractionTier.SYNTHESIZED for name in FIELDS)


def test_blank_subject_falls_back_to_default_anchor():
    doc = ResponseExtractor().extract("", "  ")
    assert doc.references == ["Scripture"]


def test_plain_paragraphs_are_positional():
    raw = (
        "Walking by Faith\n\n"
        "Faith is the substance of things hoped for.\n\n"
        "Trust in the Lord\nProverbs 3:5 calls us to lean not on our own understanding.\n\n"
        "Obedience follows belief and shapes our daily walk.\n\n"
        "In conclusion, let us walk by faith and not by sight."
    )
    doc = ResponseExtractor().extract(raw, "Hebrews 11:1")

    assert doc.title == "Walking by Faith"
    assert doc.introduction == "Faith is the substance of things hoped for."
    assert doc.conclusion == "let us walk by faith and not by sight."
    assert doc.points[0].title == "Trust in the Lord"
    assert doc.points[1].title == "Point 2"
    assert doc.points[1].content == "Obedience follows belief and shapes our daily walk."
    assert all(doc.tier_for(name) is ExtractionTier.POSITIONAL for name in FIELDS)
    assert doc.tier_for("points[1].title") is ExtractionTier.SYNTHESIZED
    assert doc.references == ["Hebrews 11:1", "Proverbs 3:5"]


def test_single_paragraph_becomes_introduction():
    doc = ResponseExtractor().extract("A single reflection on mercy and grace.", "Micah 6:8")
    assert doc.introduction == "A single reflection on mercy and grace."
    assert doc.tier_for("introduction") is ExtractionTier.POSITIONAL
    assert doc.tier_for("conclusion") is ExtractionTier.SYNTHESIZED


def test_fields_come_from_different_tiers():
    raw = "A paragraph outside any heading.\n\n## Introduction\nContext for the passage."
    doc = ResponseExtractor().extract(raw, "Ruth 1:16")
    assert doc.introduction == "Context for the passage."
    assert doc.tier_for("introduction") is ExtractionTier.STRICT
    assert doc.conclusion == "A paragraph outside any heading."
    assert doc.tier_for("conclusion") is ExtractionTier.POSITIONAL
    assert doc.tier_for("points") is ExtractionTier.SYNTHESIZED


def test_json_payload_is_strict():
    raw = json.dumps(
        {
            "title": "Hope Anchored",
            "introduction": "Hope is an anchor for the soul.",
            "mainPoints": [{"title": "Anchor", "content": "Steady in storms."}],
            "conclusion": "Hold fast to hope.",
            "scriptureReferences": ["Hebrews 6:19", "hebrews 6:19", "Romans 15:13"],
        }
    )
    doc = ResponseExtractor().extract(f"```json\n{raw}\n```", "Hebrews 6:19")
    assert doc.title == "Hope Anchored"
    assert doc.points[0].title == "Anchor"
    assert doc.references == ["Hebrews 6:19", "Romans 15:13"]
    assert all(doc.tier_for(name) is ExtractionTier.STRICT for name in FIELDS)


def test_partial_json_keeps_valid_fields():
    raw = json.dumps({"title": "Half Done", "introduction": "An opening that parsed.", "mainPoints": []})
    doc = ResponseExtractor().extract(raw, "James 1:2")
    assert doc.title == "Half Done"
    assert doc.introduction == "An opening that parsed."
    assert doc.tier_for("introduction") is ExtractionTier.STRICT
    assert doc.tier_for("conclusion") is ExtractionTier.SYNTHESIZED
    _complete(doc)


def test_titled_point_without_body_gets_synthesized_content():
    raw = (
        "## Introduction\nA fitting introduction.\n"
        "## 1. Love\nLove is patient and kind.\n"
        "## 2. Joy\n"
        "## Conclusion\nGo in peace and love."
    )
    doc = ResponseExtractor().extract(raw, "1 Corinthians 13:4")
    assert [p.title for p in doc.points] == ["Love", "Joy"]
    assert doc.points[1].content
    assert doc.tier_for("points[1].content") is ExtractionTier.SYNTHESIZED


def test_merge_references_dedupes_and_keeps_subject_first():
    refs = merge_references("John 3:16", ["john  3:16", "Romans 5:8"], ["Romans 5:8", "Ephesians 2:8-9"])
    assert refs == ["John 3:16", "Romans 5:8", "Ephesians 2:8-9"]


def test_find_citations_skips_non_book_words():
    assert find_citations("See Point 2:3 and 1 Peter 5:7 with Psalm 46:1-3.") == ["1 Peter 5:7", "Psalm 46:1-3"]


def test_failing_strategy_degrades_to_synthesized_document():
    class Broken:
        tier = ExtractionTier.STRICT

        def extract(self, ctx):
            raise RuntimeError("boom")

    doc = ResponseExtractor(strategies=[Broken()]).extract("## Introduction\nSomething.", "Acts 2:38")
    _complete(doc)
    assert doc.tier_for("title") is ExtractionTier.SYNTHESIZED


def test_dedicated_title_heading_beats_leading_line():
    raw = "## Introduction\nContext here.\n# Grace Abounds\n## 1. Grace\nBody text."
    doc = ResponseExtractor().extract(raw, "John 3:16")
    assert doc.title == "Grace Abounds"
    assert doc.tier_for("title") is ExtractionTier.STRICT


def test_find_citations_ignores_clock_times():
    assert find_citations("Join us Sunday 10:30 and Wednesday 7:15 for prayer.") == []
    assert find_citations("Read Rom. 5:8 before service at 9:30.") == ["Rom 5:8"]
