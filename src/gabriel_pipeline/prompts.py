from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

GABRIEL_CHAT_SYSTEM_PROMPT = (
    "You are Gabriel, a compassionate spiritual guide that offers biblical wisdom and spiritual advice. "
    "Your responses should be grounded in scripture, offer comfort, provide practical guidance, and maintain "
    "a warm, supportive tone. When appropriate, refer to relevant Bible passages to support your guidance. "
    "You should be non-judgmental and respectful of diverse faith backgrounds. "
    "Be concise but thorough, focusing on being helpful rather than preachy."
)

BIBLE_CHAT_SYSTEM_PROMPT = (
    "You are a biblical expert with deep knowledge of Scripture, theology, history, and biblical languages. "
    "Provide accurate biblical information, scriptural analysis, historical context, and theological insights. "
    "When appropriate, reference relevant verses and include historical background. "
    "Be respectful of diverse Christian traditions while remaining faithful to the biblical text.\n\n"
    "Formatting: respond in well-structured paragraphs, not bullet points or numbered lists, "
    "in a conversational, scholarly tone."
)

BIBLE_CHAT_INSTRUCTIONS = (
    "Answer only questions about the Bible: its text, history, languages and theology. "
    "If the question is unrelated to Scripture, gently steer the conversation back to the Bible."
)

SERMON_SYSTEM_PROMPT = (
    "You are an experienced pastor and theologian who creates biblically sound, engaging, and applicable "
    "sermons. Follow the requested structure exactly."
)

SERMON_MARKDOWN_INSTRUCTIONS = """Generate a detailed, comprehensive sermon on the requested Bible passage.

Format exactly as:
# Title
## Introduction
## 1. First Point Title
## 2. Second Point Title
## 3. Third Point Title
## Conclusion
## Scripture References

Write full paragraphs in every section. Focus on biblical accuracy, theological depth and practical application."""

SERMON_JSON_FORMAT = """{
  "title": "Sermon title",
  "introduction": "Opening paragraph introducing the topic",
  "mainPoints": [
    {"title": "Point 1 Title", "content": "Detailed explanation of point 1"}
  ],
  "conclusion": "Concluding thoughts",
  "scriptureReferences": ["Scripture references used"]
}"""

SERMON_JSON_INSTRUCTIONS = (
    "You are generating a sermon. Your response MUST be a single valid JSON object with exactly this structure:\n\n"
    + SERMON_JSON_FORMAT
    + "\n\nDo not wrap it in markdown and do not add any text before or after the JSON."
)


class SermonRequest(BaseModel):
    bible_passage: str
    theme: str
    title: str | None = None
    audience_type: str = "General congregation"
    length_minutes: int = Field(default=20, ge=1, le=120)
    additional_notes: str | None = None

    @field_validator("bible_passage", "theme")
    @classmethod
    def _require_text(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank.")
        return v

    def point_range(self) -> str:
        if self.length_minutes <= 15:
            return "2-3"
        if self.length_minutes <= 30:
            return "3-4"
        return "4-5"

    def depth(self) -> str:
        if self.length_minutes <= 15:
            return "concise and focused"
        if self.length_minutes <= 30:
            return "moderately detailed"
        return "comprehensive and detailed"


def sermon_prompt(req: SermonRequest, *, json_output: bool = False) -> str:
    lines = [
        "Please create a sermon with the following specifications:",
        f"Title: {req.title} (or suggest a better one if appropriate)" if req.title else "Please suggest an appropriate title.",
        f"Bible Passage: {req.bible_passage}",
        f"Theme: {req.theme}",
        f"Target Audience: {req.audience_type}",
        f"Approximate Length: {req.length_minutes} minutes",
    ]
    if req.additional_notes:
        lines.append(f"Additional Notes: {req.additional_notes}")
    lines += [
        "",
        "The sermon should include:",
        "1. A compelling introduction that explains the context of the scripture",
        f"2. {req.point_range()} main points with Biblical support and explanation",
        "3. Practical applications for daily life",
        "4. A powerful conclusion with a call to action",
        "5. Additional scripture references that support the message",
        "",
        f"For a {req.length_minutes} minute sermon the content should be {req.depth()}.",
    ]
    if json_output:
        lines += ["", "RESPONSE FORMAT: a valid JSON object with this structure:", SERMON_JSON_FORMAT]
    else:
        lines += ["", SERMON_MARKDOWN_INSTRUCTIONS]
    return "\n".join(lines)


def corrective_prompt(problem: str) -> str:
    return (
        "Your previous response could not be used because it was not valid JSON for the required structure "
        f"({problem}). Reply again with only the JSON object, exactly in this structure:\n\n{SERMON_JSON_FORMAT}"
    )
