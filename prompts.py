from typing import List

from pydantic import BaseModel, Field


# -----------------------------
# Request model
# -----------------------------
class GenerateRequest(BaseModel):
    useCase: str = Field(default="", max_length=200)
    tone: str = Field(default="", max_length=200)
    topic: str = Field(default="", max_length=4000)
    extra: str = Field(default="", max_length=8000)
    outLang: str = Field(default="de", max_length=10)
    boost: bool = False

    # honeypot: real clients never fill this
    hp: str = Field(default="", max_length=200)

    # BYOK fallback when the client cannot set headers
    apiKey: str = Field(default="", max_length=300)

    @property
    def lang(self) -> str:
        return "en" if (self.outLang or "").strip().lower() == "en" else "de"


SYSTEM_CHAT = (
    "You are Prompt Studio, a copywriter. Follow the rules in the user prompt strictly "
    "and output only the finished text."
)


# -----------------------------
# Builders
# -----------------------------
def build_master_prompt(req: GenerateRequest) -> str:
    use_case = req.useCase.strip() or "General"
    tone = req.tone.strip() or "Neutral"
    topic = req.topic.strip() or "(no topic given)"
    extra = req.extra.strip() or "(no format given)"

    return f"""
You are a copywriter. You deliver finished copy.
No meta commentary, no follow-up questions, no apologies.

Target language: {req.lang.upper()}
Use case: {use_case}
Tone: {tone}

HARD RULES:
- No lead-in sentences ("Here is...", "Sure...", "I'm sorry...").
- German output uses informal "du" or neutral phrasing, never "Sie".
- No emojis.
- No buzzwords or filler ("premium", "effortless", "revolutionary").
- Be concrete: what, for whom, which result, in plain words.
- Keep any call to action neutral, no imperatives.

TOPIC:
{topic}

FORMAT / REQUIREMENTS:
{extra}

Output only the finished copy.
""".strip()


def build_repair_prompt(req: GenerateRequest, bad_output: str, hits: List[str], stems: List[str]) -> str:
    banned = ", ".join(stems) or "(none)"
    hit_list = ", ".join(hits) or "(none)"

    return f"""
You are a strict copy editor. You deliver FINISHED copy, no meta, no apologies.
Target language: {req.lang.upper()}
Use case: {req.useCase.strip() or "General"}
Tone: {req.tone.strip() or "Neutral"}
Topic: {req.topic.strip()}

QUALITY GATE:
1) Rewrite from scratch. Do not rephrase or reuse the old text.
2) No lead-in sentences, no explanations.
3) No apologies, no "I need more information", no "I can't".
4) No filler and no marketing pathos. Short, clear, concrete.
5) German output uses informal "du" or neutral phrasing, never "Sie".
6) FORBIDDEN: none of these word parts may appear anywhere in your answer:
{banned}
7) The last output contained: {hit_list}. These must go.
8) Keep the call to action neutral, no imperatives.
9) Never mention the forbidden list.

FORMAT / REQUIREMENTS (follow exactly):
{req.extra.strip()}

Old output (analysis only, DO NOT reuse):
\"\"\"
{(bad_output or "")[:2000]}
\"\"\"
""".strip()
