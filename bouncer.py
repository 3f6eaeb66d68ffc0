import logging
import re
import unicodedata
from typing import Callable, Iterable, List, Optional

from errors import ApiError


logger = logging.getLogger("prompt_studio.bouncer")


# =============================================================================
# Bouncer: server-side quality gate for generated copy
# - Scan: normalized text vs. banned word stems (substring match, spaces removed)
# - Rewrite: bounded number of repair passes through the model
# - Polish: CTA line, hot-stem sanitizer, "link in bio" removal
# - Hard fail (422) if stems survive all of the above
# =============================================================================

# Meta answers / apologies / "need more info". Always active.
REQUIRED_BANNED_STEMS = [
    "tutmirleid",
    "bittegib",
    "benoetig",
    "mehrinformation",
    "ichkann",
    "imsorry",
    "cantcomply",
    "cannotcomply",
]

# Marketing filler. Replaced wholesale by BOUNCER_BANNED_STEMS.
DEFAULT_BANNED_STEMS = [
    "optimier",
    "steiger",
    "verbesser",
    "erleb",
    "profit",
    "verpass",
    "chance",
    "exklus",
    "konkurrenz",
    "agentur",
    "erfolg",
    "nutz",
    "vorteil",
    "vorsp",
    "sicher",
    "leader",
    "luxus",
    "strateg",
]

_TRANSLIT = (("ä", "ae"), ("ö", "oe"), ("ü", "ue"), ("ß", "ss"))

NEUTRAL_CTA = {
    "de": "Zur Warteliste.",
    "en": "Join the waitlist.",
}

_HOT_STEM_REPLACEMENTS = [
    (re.compile(r"\b(nutz\w*)\b", re.I), "Content erstellen"),
    (re.compile(r"\b(vorsprung\w*|vorsp\w*)\b", re.I), "klarer Schritt nach vorn"),
    (re.compile(r"\b(sicher\w*)\b", re.I), "jetzt"),
    (re.compile(r"\b(optimier\w*|steiger\w*|verbesser\w*)\b", re.I), "reduzieren"),
    (re.compile(r"\b(erfolg\w*)\b", re.I), "Ergebnis"),
    (
        re.compile(
            r"\b(chanc\w*|verpass\w*|profit\w*|exklus\w*|konkurrenz\w*|agentur\w*|leader\w*|luxus\w*|strateg\w*)\b",
            re.I,
        ),
        "",
    ),
    (re.compile(r"\b(hochwertig\w*|blitzschnell\w*|revolution\w*|premium\w*)\b", re.I), ""),
]

_CTA_LINE = re.compile(r"^(\s*(?:\d+\)\s*)?)(CTA(?:-Zeile)?\s*:)\s*(.*)$", re.I)
_LINK_IN_BIO_LINE = re.compile(r"^\s*link\s+in\s+(?:der\s+|meiner\s+)?bio\s*$", re.I | re.M)
_LINK_IN_BIO = re.compile(r"\blink\s+in\s+(?:der\s+|meiner\s+)?bio\b", re.I)


# -----------------------------
# Scan
# -----------------------------
def normalize_for_scan(text: str) -> str:
    s = (text or "").lower()
    for src, dst in _TRANSLIT:
        s = s.replace(src, dst)
    s = unicodedata.normalize("NFD", s)
    s = "".join(ch for ch in s if not unicodedata.combining(ch))
    s = re.sub(r"[^a-z0-9]+", " ", s)
    return re.sub(r"\s+", " ", s).strip()


def _compact(text: str) -> str:
    return normalize_for_scan(text).replace(" ", "")


def _dedupe(items: Iterable[str]) -> List[str]:
    seen = set()
    out: List[str] = []
    for item in items:
        key = (item or "").strip()
        if not key or key in seen:
            continue
        seen.add(key)
        out.append(key)
    return out


def active_stems(override: Optional[List[str]] = None) -> List[str]:
    base = list(override) if override else DEFAULT_BANNED_STEMS
    return _dedupe(_compact(stem) for stem in _dedupe(base + REQUIRED_BANNED_STEMS))


def find_stem_violations(text: str, stems: List[str]) -> List[str]:
    hay = _compact(text)
    if not hay:
        return []
    return _dedupe(stem for stem in stems if stem and stem in hay)


# -----------------------------
# Last-mile polish
# -----------------------------
def detect_cta_label(extra: str) -> Optional[str]:
    s = extra or ""
    if re.search(r"CTA-Zeile", s, re.I):
        return "CTA-Zeile"
    if re.search(r"CTA\s*:", s, re.I):
        return "CTA"
    return None


def enforce_neutral_cta(output: str, extra: str, lang: str = "de") -> str:
    """
    Replace every CTA line with a neutral one. The label follows the format
    when it names one; otherwise the model's own label is kept. A CTA line is
    appended only when the format asks for one and the model forgot it.
    """
    want = detect_cta_label(extra)
    chosen = NEUTRAL_CTA.get(lang, NEUTRAL_CTA["de"])
    lines = []
    found = False
    for line in (output or "").splitlines():
        m = _CTA_LINE.match(line)
        if m:
            found = True
            label = f"{want}:" if want else m.group(2).replace(" ", "")
            line = f"{m.group(1)}{label} {chosen}"
        lines.append(line)

    out = "\n".join(lines)
    if want and not found:
        out = f"{out}\n\n{want}: {chosen}"
    return out


def strip_hot_stems(output: str) -> str:
    s = output or ""
    for rx, repl in _HOT_STEM_REPLACEMENTS:
        s = rx.sub(repl, s)
    s = re.sub(r"[ \t]{2,}", " ", s)
    s = re.sub(r"\n{3,}", "\n\n", s)
    return s.strip()


def clean_output(output: str) -> str:
    s = output or ""
    s = _LINK_IN_BIO_LINE.sub("", s)
    s = _LINK_IN_BIO.sub("", s)
    s = re.sub(r"\n{3,}", "\n\n", s)
    s = re.sub(r"[ \t]{2,}", " ", s)
    s = re.sub(r"[ \t]+([,.;:!?])", r"\1", s)
    return s.strip()


# -----------------------------
# Gate
# -----------------------------
Rewrite = Callable[[List[str], str], str]


class Bouncer:
    def __init__(self, stems: List[str], max_passes: int = 0, enabled: bool = False):
        self.stems = stems
        self.max_passes = max(0, int(max_passes))
        self.enabled = enabled

    @classmethod
    def from_settings(cls, settings) -> "Bouncer":
        return cls(
            stems=active_stems(settings.bouncer_banned_stems),
            max_passes=settings.bouncer_max_passes,
            enabled=settings.bouncer_enabled,
        )

    def scan(self, text: str) -> List[str]:
        return find_stem_violations(text, self.stems)

    def enforce(self, output: str, rewrite: Rewrite, extra: str = "", lang: str = "de") -> str:
        """
        Run the rewrite loop, polish, and rescan.

        rewrite(hits, bad_output) must return a fresh model output. It is called
        at most max_passes times and only while hits remain.
        """
        if self.enabled:
            for i in range(self.max_passes):
                hits = self.scan(output)
                if not hits:
                    break
                logger.info("Bouncer rewrite %d/%d, hits: %s", i + 1, self.max_passes, ", ".join(hits))
                output = rewrite(hits, output)

        output = enforce_neutral_cta(output, extra, lang)
        if self.enabled:
            output = strip_hot_stems(output)
        output = clean_output(output)

        if self.enabled:
            hits = self.scan(output)
            if hits:
                logger.warning("Bouncer rejected output, hits: %s", ", ".join(hits))
                raise ApiError(
                    422,
                    "content_policy",
                    message="Output still contained banned terms after rewrites.",
                    hits=hits,
                )
        return output
