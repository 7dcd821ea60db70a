"""
Turn freeform model output into a complete ``StructuredDocument``.

Extraction runs an ordered list of strategies. Each one returns a partial result
tagged with its tier, and fields are merged independently: the first strategy to
fill a field wins. The last strategy synthesizes text from the subject, so every
field is filled for any input string.
"""

from __future__ import annotations

import json
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Protocol

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .metrics import extraction_tiers_total
from .models import DocumentPoint, ExtractionTier, ExtractionWarning, StructuredDocument

log = structlog.get_logger()

MIN_SECTION_CHARS = 8
TITLE_MAX_CHARS = 120
DEFAULT_SUBJECT = "Scripture"

DOCUMENT_FIELDS = ("title", "introduction", "points", "conclusion")

_HEADING_RE = re.compile(r"^[ \t]{0,3}(#{1,6})[ \t]*(.*?)[ \t#]*$")
_BOLD_LINE_RE = re.compile(r"^[ \t]*\*\*(?P<text>[^*\n]+?)\*\*[ \t]*:?[ \t]*$")
_BLANK_LINE_RE = re.compile(r"\n[ \t]*\n")
_FENCE_RE = re.compile(r"```(?:json)?[ \t]*\n?(.*?)```", re.DOTALL | re.IGNORECASE)

_INTRO_RE = re.compile(r"^(?:introduction|intro|opening(?: remarks)?|background)\b", re.IGNORECASE)
_CONCLUSION_RE = re.compile(
    r"^(?:conclusion|in conclusion|closing(?: thoughts| remarks)?|final thoughts|summary)\b",
    re.IGNORECASE,
)
_REFERENCES_RE = re.compile(
    r"^(?:(?:supporting |additional |bible |scripture )?references|scriptures?(?: references)?)\b",
    re.IGNORECASE,
)
_POINT_RE = re.compile(
    r"^(?:(?:main\s+)?point\s+(?P<word_num>\d+)\s*[:.)\-–—]?|(?P<num>\d+)\s*[.):\-–—])\s*(?P<title>.*)$",
    re.IGNORECASE,
)
_TITLE_PREFIX_RE = re.compile(r"^\[?\s*title\s*:\s*", re.IGNORECASE)
_LABEL_PREFIX_RE = re.compile(r"^(?:in conclusion[,:]?|conclusion\s*:|introduction\s*:)\s*", re.IGNORECASE)

_CITATION_RE = re.compile(
    r"(?<![\w])(?:(?P<num>[1-3])\s?)?(?P<book>[A-Z][a-z]+(?:\s+of\s+[A-Z][a-z]+)?)\.?\s+"
    r"(?P<chapter>\d{1,3}):(?P<verse>\d{1,3})(?:\s*[-–—]\s*(?P<end>\d{1,3}))?"
)
_BOOKS = frozenset(
    {
        "Genesis", "Exodus", "Leviticus", "Numbers", "Deuteronomy", "Joshua", "Judges", "Ruth", "Samuel",
        "Kings", "Chronicles", "Ezra", "Nehemiah", "Esther", "Job", "Psalm", "Psalms", "Proverbs",
        "Ecclesiastes", "Song of Solomon", "Song of Songs", "Isaiah", "Jeremiah", "Lamentations", "Ezekiel",
        "Daniel", "Hosea", "Joel", "Amos", "Obadiah", "Jonah", "Micah", "Nahum", "Habakkuk", "Zephaniah",
        "Haggai", "Zechariah", "Malachi", "Matthew", "Mark", "Luke", "John", "Acts", "Romans", "Corinthians",
        "Galatians", "Ephesians", "Philippians", "Colossians", "Thessalonians", "Timothy", "Titus", "Philemon",
        "Hebrews", "James", "Peter", "Jude", "Revelation",
        # Common abbreviations
        "Gen", "Exod", "Deut", "Ps", "Prov", "Isa", "Jer", "Matt", "Rom", "Cor", "Gal", "Eph", "Phil", "Col",
        "Heb", "Rev",
    }
)


class SermonPointPayload(BaseModel):
    title: str = ""
    content: str = ""


class SermonPayload(BaseModel):
    """JSON shape requested from the model for sermon documents."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    title: str = Field(min_length=1)
    introduction: str = Field(min_length=1)
    main_points: list[SermonPointPayload] = Field(alias="mainPoints", min_length=1)
    conclusion: str = Field(min_length=1)
    scripture_references: list[str] = Field(default_factory=list, alias="scriptureReferences")


def _json_candidate(text: str) -> str:
    fenced = _FENCE_RE.search(text)
    return (fenced.group(1) if fenced else text).strip()


def parse_sermon_json(text: str) -> SermonPayload:
    """Strictly validate a JSON sermon; raises ``pydantic.ValidationError``."""
    return SermonPayload.model_validate_json(_json_candidate(text))


def _clean_inline(value: str) -> str:
    value = value.strip().strip("*_").strip()
    value = _TITLE_PREFIX_RE.sub("", value)
    return value.strip().strip("[]").strip().strip("\"'").strip()


def _adequate(value: str | None) -> bool:
    return value is not None and len(value.strip()) >= MIN_SECTION_CHARS


def _leading_line(text: str) -> str | None:
    line = _clean_inline(text.strip().splitlines()[0]).rstrip(".:;,").strip()
    return line[:TITLE_MAX_CHARS].rstrip() or None


def _citation_key(value: str) -> str:
    return re.sub(r"[\s.]", "", value.replace("–", "-").replace("—", "-")).casefold()


def find_citations(text: str) -> list[str]:
    found: list[str] = []
    for m in _CITATION_RE.finditer(text):
        if m.group("book") not in _BOOKS:
            continue
        ref = f"{m.group('book')} {m.group('chapter')}:{m.group('verse')}"
        if m.group("num"):
            ref = f"{m.group('num')} {ref}"
        if m.group("end"):
            ref = f"{ref}-{m.group('end')}"
        found.append(ref)
    return found


def merge_references(subject: str, *groups: Sequence[str]) -> list[str]:
    out = [subject]
    seen = {_citation_key(subject)}
    for group in groups:
        for ref in group:
            ref = " ".join(ref.split())
            key = _citation_key(ref)
            if not ref or key in seen:
                continue
            seen.add(key)
            out.append(ref)
    return out


@dataclass
class PartialDocument:
    tier: ExtractionTier
    title: str | None = None
    introduction: str | None = None
    points: list[DocumentPoint] | None = None
    conclusion: str | None = None
    references: list[str] = field(default_factory=list)
    # Text no section claimed, handed to later strategies. None leaves it unchanged.
    unclaimed: list[str] | None = None


@dataclass
class ExtractionContext:
    text: str
    subject: str
    title: str | None = None
    introduction: str | None = None
    points: list[DocumentPoint] | None = None
    conclusion: str | None = None
    unclaimed: list[str] = field(default_factory=list)

    def missing(self, name: str) -> bool:
        return not getattr(self, name)


class ExtractionStrategy(Protocol):
    tier: ExtractionTier

    def extract(self, ctx: ExtractionContext) -> PartialDocument: ...


class JsonPayloadStrategy:
    """A response that is already a valid JSON sermon is taken as-is."""

    tier = ExtractionTier.STRICT

    def extract(self, ctx: ExtractionContext) -> PartialDocument:
        candidate = _json_candidate(ctx.text)
        if not candidate.startswith("{"):
            return PartialDocument(tier=self.tier)
        try:
            payload = parse_sermon_json(ctx.text)
        except ValidationError as e:
            log.debug("extraction_json_rejected", errors=e.error_count())
            return self._salvage(candidate)
        return PartialDocument(
            tier=self.tier,
            title=_clean_inline(payload.title),
            introduction=payload.introduction.strip(),
            points=[DocumentPoint(title=p.title.strip(), content=p.content.strip()) for p in payload.main_points],
            conclusion=payload.conclusion.strip(),
            references=list(payload.scripture_references),
            unclaimed=[],
        )

    def _salvage(self, candidate: str) -> PartialDocument:
        """Keep the well-typed fields of parseable JSON that failed the schema."""
        try:
            data = json.loads(candidate)
        except ValueError:
            return PartialDocument(tier=self.tier)
        if not isinstance(data, dict):
            return PartialDocument(tier=self.tier)

        def text_field(name: str) -> str | None:
            value = data.get(name)
            return value.strip() if isinstance(value, str) and value.strip() else None

        points: list[DocumentPoint] = []
        for item in data.get("mainPoints") or []:
            if isinstance(item, dict):
                title, content = item.get("title"), item.get("content")
                points.append(
                    DocumentPoint(
                        title=title.strip() if isinstance(title, str) else "",
                        content=content.strip() if isinstance(content, str) else "",
                    )
                )
        refs = data.get("scriptureReferences")
        return PartialDocument(
            tier=self.tier,
            title=_clean_inline(text_field("title") or "") or None,
            introduction=text_field("introduction"),
            points=points or None,
            conclusion=text_field("conclusion"),
            references=[r for r in refs if isinstance(r, str)] if isinstance(refs, list) else [],
            unclaimed=[],
        )


@dataclass
class _Segment:
    heading: str | None
    level: int
    body: str


def split_segments(text: str) -> list[_Segment]:
    segments: list[_Segment] = []
    heading: str | None = None
    level = 0
    body: list[str] = []
    for line in text.splitlines():
        match = _HEADING_RE.match(line)
        bold = None if match else _BOLD_LINE_RE.match(line)
        if match or bold:
            if heading is not None or "".join(body).strip():
                segments.append(_Segment(heading, level, "\n".join(body).strip()))
            if match:
                heading, level = _clean_inline(match.group(2)), len(match.group(1))
            else:
                heading, level = _clean_inline(bold.group("text")), 6
            body = []
        else:
            body.append(line)
    if heading is not None or "".join(body).strip():
        segments.append(_Segment(heading, level, "\n".join(body).strip()))
    return segments


class HeadingStrategy:
    """Markdown headings matched against section keywords and numbered points."""

    tier = ExtractionTier.STRICT

    def extract(self, ctx: ExtractionContext) -> PartialDocument:
        segments = split_segments(ctx.text)
        if not any(s.heading is not None for s in segments):
            return PartialDocument(tier=self.tier)

        out = PartialDocument(tier=self.tier)
        unclaimed: list[str] = []
        short_points: list[tuple[int, _Segment, str]] = []
        points: list[tuple[int, DocumentPoint]] = []
        claimed: list[str] = []

        for index, seg in enumerate(segments):
            heading = seg.heading
            if heading is None:
                unclaimed.append(seg.body)
                continue
            if _INTRO_RE.match(heading):
                if out.introduction is None and _adequate(seg.body):
                    out.introduction = seg.body
                    claimed.append(seg.body)
                else:
                    unclaimed.append(seg.body)
                continue
            if _CONCLUSION_RE.match(heading):
                if out.conclusion is None and _adequate(seg.body):
                    out.conclusion = seg.body
                    claimed.append(seg.body)
                else:
                    unclaimed.append(seg.body)
                continue
            if _REFERENCES_RE.match(heading):
                continue
            point = _POINT_RE.match(heading)
            if point:
                title = _clean_inline(point.group("title")).rstrip(":").strip()
                if _adequate(seg.body):
                    points.append((index, DocumentPoint(title=title, content=seg.body)))
                    claimed.append(seg.body)
                else:
                    short_points.append((index, seg, title))
                continue
            if out.title is None and len(heading) <= TITLE_MAX_CHARS and (seg.level == 1 or index == 0):
                out.title = heading
                unclaimed.append(seg.body)
                continue
            unclaimed.append(f"{heading}\n{seg.body}".strip())

        if points:
            # A titled point without body keeps its slot; content is synthesized later.
            for index, _seg, title in short_points:
                if title:
                    points.append((index, DocumentPoint(title=title, content="")))
            out.points = [p for _, p in sorted(points, key=lambda item: item[0])]
        else:
            for _index, seg, title in short_points:
                unclaimed.append(f"{title}\n{seg.body}".strip())

        if out.title is None and claimed:
            out.title = _leading_line(claimed[0])

        out.unclaimed = [u for u in unclaimed if u.strip()]
        return out


class PositionalStrategy:
    """Blank-line blocks in order: first is introduction, last conclusion, rest points."""

    tier = ExtractionTier.POSITIONAL

    @staticmethod
    def _strip_heading(line: str) -> str:
        match = _HEADING_RE.match(line)
        return _clean_inline(match.group(2)) if match else line

    def _blocks(self, chunks: Sequence[str]) -> list[str]:
        blocks: list[str] = []
        for chunk in chunks:
            for block in _BLANK_LINE_RE.split(chunk):
                lines = [self._strip_heading(line) for line in block.splitlines()]
                block = "\n".join(line for line in lines if line.strip()).strip()
                if _adequate(block):
                    blocks.append(block)
        return blocks

    @staticmethod
    def _is_title_line(line: str) -> bool:
        line = line.strip()
        return bool(line) and len(line) <= 80 and not line.endswith((".", ",", ";", "!", "?"))

    def _point_from_block(self, block: str) -> DocumentPoint:
        first, _, rest = block.partition("\n")
        if rest.strip() and self._is_title_line(first):
            match = _POINT_RE.match(first.strip())
            title = match.group("title") if match else first
            return DocumentPoint(title=_clean_inline(title).rstrip(":").strip(), content=rest.strip())
        return DocumentPoint(title="", content=block)

    @staticmethod
    def _is_conclusion_label(block: str) -> bool:
        return bool(_LABEL_PREFIX_RE.match(block)) and not block.lower().startswith("introduction")

    def extract(self, ctx: ExtractionContext) -> PartialDocument:
        blocks = self._blocks(ctx.unclaimed)
        out = PartialDocument(tier=self.tier, unclaimed=[])
        if not blocks:
            return out

        if ctx.missing("title") and "\n" not in blocks[0] and self._is_title_line(blocks[0]):
            out.title = _clean_inline(blocks.pop(0))

        if ctx.missing("conclusion") and blocks:
            labelled = [b for b in blocks if self._is_conclusion_label(b)]
            chosen: str | None = None
            if labelled:
                chosen = labelled[-1]
            elif len(blocks) > 1 or not ctx.missing("introduction"):
                # A lone block goes to the introduction instead.
                chosen = blocks[-1]
            if chosen is not None:
                blocks.remove(chosen)
                out.conclusion = _LABEL_PREFIX_RE.sub("", chosen).strip() or chosen

        if ctx.missing("introduction") and blocks:
            first = blocks.pop(0)
            out.introduction = _LABEL_PREFIX_RE.sub("", first).strip() or first

        if ctx.missing("points") and blocks:
            out.points = [self._point_from_block(b) for b in blocks]
            blocks = []

        out.unclaimed = blocks
        return out


class SynthesizedStrategy:
    """Deterministic fallback text anchored on the subject."""

    tier = ExtractionTier.SYNTHESIZED

    def extract(self, ctx: ExtractionContext) -> PartialDocument:
        subject = ctx.subject
        return PartialDocument(
            tier=self.tier,
            title=f"Sermon on {subject}",
            introduction=f"This message introduces {subject} and what it teaches believers today.",
            points=[
                DocumentPoint(
                    title=f"The Message of {subject}",
                    content=f"Reflection on the meaning and application of {subject}.",
                )
            ],
            conclusion=f"May God bless you as you apply the teachings from {subject}.",
            unclaimed=[],
        )


DEFAULT_STRATEGIES: tuple[ExtractionStrategy, ...] = (
    JsonPayloadStrategy(),
    HeadingStrategy(),
    PositionalStrategy(),
    SynthesizedStrategy(),
)


class ResponseExtractor:
    def __init__(self, strategies: Sequence[ExtractionStrategy] | None = None):
        chain = list(strategies or DEFAULT_STRATEGIES)
        if not any(s.tier is ExtractionTier.SYNTHESIZED for s in chain):
            chain.append(SynthesizedStrategy())
        self.strategies: tuple[ExtractionStrategy, ...] = tuple(chain)

    def extract(self, text: str | None, subject: str | None, *, title: str | None = None) -> StructuredDocument:
        raw = text if isinstance(text, str) else ""
        anchor = (subject or "").strip() or DEFAULT_SUBJECT
        try:
            return self._extract(raw, anchor, title)
        except Exception:
            log.exception("extraction_failed", subject=anchor, raw_chars=len(raw))
            return self._extract("", anchor, title)

    def _extract(self, raw: str, subject: str, title: str | None) -> StructuredDocument:
        ctx = ExtractionContext(text=raw, subject=subject, unclaimed=[raw] if raw.strip() else [])
        tiers: dict[str, ExtractionTier] = {}
        references: list[str] = []

        if title and title.strip():
            ctx.title = title.strip()
            tiers["title"] = ExtractionTier.STRICT

        for strategy in self.strategies:
            if all(not ctx.missing(name) for name in DOCUMENT_FIELDS):
                break
            partial = strategy.extract(ctx)
            references.extend(partial.references)
            for name in DOCUMENT_FIELDS:
                value = getattr(partial, name)
                if ctx.missing(name) and value:
                    setattr(ctx, name, value)
                    tiers[name] = partial.tier
            if partial.unclaimed is not None:
                ctx.unclaimed = partial.unclaimed

        warnings = [ExtractionWarning(field=name, tier=tiers[name]) for name in DOCUMENT_FIELDS]
        points = self._normalize_points(ctx.points or [], subject, warnings)

        for warning in warnings:
            extraction_tiers_total.labels(field=warning.field.split("[")[0], tier=warning.tier.value).inc()
        log.debug("extraction_tiers", subject=subject, tiers={w.field: w.tier.value for w in warnings})

        return StructuredDocument(
            title=ctx.title or f"Sermon on {subject}",
            introduction=ctx.introduction or "",
            points=points,
            conclusion=ctx.conclusion or "",
            references=merge_references(subject, references, find_citations(raw)),
            raw_text=raw,
            extraction_warnings=warnings,
        )

    @staticmethod
    def _normalize_points(
        points: Sequence[DocumentPoint],
        subject: str,
        warnings: list[ExtractionWarning],
    ) -> list[DocumentPoint]:
        out: list[DocumentPoint] = []
        for i, point in enumerate(points):
            title = point.title.strip()
            content = point.content.strip()
            if not title:
                title = f"Point {i + 1}"
                warnings.append(ExtractionWarning(field=f"points[{i}].title", tier=ExtractionTier.SYNTHESIZED))
            if not content:
                content = f"This point reflects on what {subject} teaches and how to live it out."
                warnings.append(ExtractionWarning(field=f"points[{i}].content", tier=ExtractionTier.SYNTHESIZED))
            out.append(DocumentPoint(title=title, content=content))
        return out
