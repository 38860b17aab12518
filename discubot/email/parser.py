"""
Figma notification email parsing.

Extracts the comment text, links and Figma file key from a Mailgun-shaped
email payload (``body-html``, ``body-plain``, ``stripped-text``, ``from``,
``subject``, ``timestamp``).
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, TypeVar
from urllib.parse import unquote

from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

FILE_KEY_PATTERNS = [
    re.compile(r"figma\.com/file/([a-zA-Z0-9]+)"),
    re.compile(r"figma\.com/design/([a-zA-Z0-9]+)"),
    re.compile(r"figma\.com/proto/([a-zA-Z0-9]+)"),
    re.compile(r"api-cdn\.figma\.com/resize/images/(\d+)/"),
    re.compile(r"figma\.com/board/([a-zA-Z0-9]+)"),
]

_SENDER_KEY = re.compile(r"comments-([a-zA-Z0-9]+)@", re.IGNORECASE)
_CLICK_LINK = re.compile(r'href="(https?://click\.figma\.com[^"]+)"')
_UPLOAD_HASH = re.compile(r"figma\.com/uploads/([a-zA-Z0-9]+)", re.IGNORECASE)
_HEX_KEY = re.compile(r"[a-f0-9]{40}", re.IGNORECASE)
_FIGBOT_MENTION = re.compile(r"@figbot(?:\s+[^<>@]*)?", re.IGNORECASE)
_ANY_MENTION = re.compile(r"@[A-Za-z0-9_]+(?:\s+[^<>@]*)?")
_TD_MENTION = re.compile(r"<td[^>]*>([^<]*@[A-Za-z0-9_]+[^<]*)</td>", re.IGNORECASE)
_TAG = re.compile(r"<[^>]*>")
_ENTITY = re.compile(r"&[a-z]+;", re.IGNORECASE)
_SPACE = re.compile(r"\s+")

_CSS_AT_RULES = ("@font", "@media", "@import", "@keyframes", "@charset", "@supports")
_CONTEXT_NOISE = (
    "font-family", "font-size", "font-face", "padding", "margin",
    "unsubscribe", "Figma, Inc", "View in Figma", "commented on",
)
_COMMENT_SELECTORS = (
    ".comment-body",
    ".comment-text",
    'td[class*="comment"]',
    'div[style*="color"]',
    'td[style*="padding"]',
    "p",
)


@dataclass
class ParsedEmail:
    """Result of parsing a Figma notification email."""
    text: str
    html: Optional[str] = None
    file_key: Optional[str] = None
    author: Optional[str] = None
    links: List[str] = field(default_factory=list)
    figma_link: Optional[str] = None
    subject: Optional[str] = None
    timestamp: Optional[datetime] = None
    file_url: Optional[str] = None
    email_type: str = "unknown"


def _clean(text: str) -> str:
    return _SPACE.sub(" ", _ENTITY.sub(" ", text)).strip()


def extract_file_key_from_url(url: str) -> Optional[str]:
    for pattern in FILE_KEY_PATTERNS:
        match = pattern.search(url)
        if match:
            return match.group(1)
    return None


def _filter_css_rules(mentions: List[str]) -> List[str]:
    kept = []
    for mention in mentions:
        lowered = mention.lower()
        if lowered.startswith(_CSS_AT_RULES):
            continue
        if "@mentions" in mention or "@email" in mention or "@mail" in mention:
            continue
        kept.append(mention)
    return kept


def _table_cell_mention(html: str) -> Optional[str]:
    for match in _TD_MENTION.finditer(html):
        cell = _clean(match.group(1))
        lowered = cell.lower()
        if (
            "@" in cell
            and "mobile app" not in lowered
            and "stay on top" not in lowered
            and "unsubscribe" not in cell
            and "privacy" not in cell
            and "View in Figma" not in cell
            and len(cell) < 500
            and re.search(r"@[A-Za-z0-9_]+", cell)
        ):
            return cell
    return None


def _mention_with_context(html: str, mention: str) -> Optional[str]:
    match = re.search(rf"(.{{0,100}})({re.escape(mention)})(.{{0,100}})", html, re.IGNORECASE)
    if not match:
        return None
    text = _clean(_TAG.sub(" ", "".join(match.groups())))
    if 5 < len(text) < 500 and not any(noise in text for noise in _CONTEXT_NOISE):
        return text
    return None


def extract_text_from_html(html: str) -> str:
    """Find the comment body in a Figma notification's HTML.

    Tries @Figbot mentions, mention table cells, other @mentions with
    surrounding context, comment CSS selectors and finally the first
    substantial body line.
    """
    figbot = sorted(_FIGBOT_MENTION.findall(html), key=len, reverse=True)
    if figbot:
        return figbot[0].strip()

    cell = _table_cell_mention(html)
    if cell:
        logger.debug("Found comment in table cell")
        return cell

    mentions = _filter_css_rules(_ANY_MENTION.findall(html))
    for mention in mentions:
        context = _mention_with_context(html, mention)
        if context:
            return context
    for mention in mentions:
        if len(mention) > 2:
            return mention.strip()

    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "head"]):
        tag.decompose()

    for selector in _COMMENT_SELECTORS:
        element = soup.select_one(selector)
        if element is not None:
            text = element.get_text().strip()
            if len(text) > 5:
                logger.debug(f"Found comment text using selector {selector}")
                return text

    body = soup.body or soup
    lines = [line.strip() for line in body.get_text().split("\n") if line.strip()]
    for line in lines:
        lowered = line.lower()
        if (
            len(line) > 10
            and not line.startswith("http")
            and "@" not in line
            and "unsubscribe" not in lowered
            and "figma" not in lowered
        ):
            return line

    return body.get_text().strip()


def extract_links_from_html(html: str) -> List[str]:
    """All http links, with comment-position preview images first."""
    soup = BeautifulSoup(html, "html.parser")
    priority: List[str] = []
    links: List[str] = []

    for anchor in soup.find_all("a", href=True):
        href = anchor["href"]
        if href.startswith("http"):
            links.append(href)

    for image in soup.find_all("img", src=True):
        src = image["src"]
        if src.startswith("http") and "figma.com" in src:
            if "commentx=" in src and "commenty=" in src:
                priority.append(src)
            else:
                links.append(src)

    return list(dict.fromkeys(priority + links))


def extract_figma_link(html: str) -> Optional[str]:
    """Best "open this comment in Figma" link in the email."""
    soup = BeautifulSoup(html, "html.parser")

    universal = soup.find("a", attrs={"universal": "true"})
    if universal is not None and universal.get("href", "").startswith("http"):
        return universal["href"]

    anchors = [a for a in soup.find_all("a", href=True) if a["href"].startswith("http")]
    for anchor in anchors:
        text = anchor.get_text().strip().lower()
        if "view in figma" in text or "open in figma" in text:
            return anchor["href"]

    file_link = None
    for anchor in anchors:
        href = anchor["href"]
        if "click.figma.com" in href:
            return href
        if file_link is None and any(p in href for p in ("figma.com/file/", "figma.com/design/", "figma.com/proto/")):
            file_link = href
    return file_link


def determine_email_type(subject: str) -> str:
    lowered = subject.lower()
    if "comment" in lowered or "mentioned you" in lowered:
        return "comment"
    if "invited" in lowered or "invitation" in lowered or "shared" in lowered:
        return "invitation"
    return "unknown"


def _find_file_key(from_address: str, html: str, links: List[str]) -> Optional[str]:
    match = _SENDER_KEY.search(from_address or "")
    if match:
        return match.group(1)

    if html:
        click = _CLICK_LINK.search(html)
        if click:
            decoded = unquote(click.group(1))
            file_match = re.search(r"figma\.com/file/([a-zA-Z0-9]+)", decoded)
            if file_match:
                return file_match.group(1)

    for link in links:
        key = extract_file_key_from_url(link)
        if key:
            return key

    if html:
        for upload in _UPLOAD_HASH.finditer(html):
            upload_hash = upload.group(1)
            if len(upload_hash) >= 40:
                return upload_hash[:40]

        hex_key = _HEX_KEY.search(html)
        if hex_key:
            return hex_key.group(0)

    return None


def parse_email(email_data: Dict[str, Any]) -> ParsedEmail:
    """Parse a Mailgun-shaped email into text, links and Figma metadata."""
    html = email_data.get("body-html") or ""
    plain = (email_data.get("stripped-text") or email_data.get("body-plain") or "").strip()

    text = plain or (extract_text_from_html(html) if html else "")
    links = extract_links_from_html(html) if html else []
    file_key = _find_file_key(email_data.get("from") or "", html, links)
    if not file_key:
        logger.debug("No Figma file key found in email")

    timestamp = None
    raw_ts = email_data.get("timestamp")
    if raw_ts:
        try:
            timestamp = datetime.utcfromtimestamp(float(raw_ts))
        except (TypeError, ValueError, OverflowError):
            logger.debug(f"Ignoring unparseable email timestamp: {raw_ts}")

    file_url = next(
        (l for l in links if "figma.com" in l and any(p in l for p in ("/file/", "/design/", "/proto/"))),
        None,
    )
    if file_url:
        file_key = extract_file_key_from_url(file_url) or file_key

    subject = email_data.get("subject")
    return ParsedEmail(
        text=text,
        html=html or None,
        file_key=file_key,
        author=email_data.get("from"),
        links=links,
        figma_link=extract_figma_link(html) if html else None,
        subject=subject,
        timestamp=timestamp,
        file_url=file_url,
        email_type=determine_email_type(subject) if subject else "unknown",
    )


def normalize_text(text: str) -> str:
    return _SPACE.sub(" ", text.lower()).strip()


def levenshtein_distance(first: str, second: str) -> int:
    if len(first) < len(second):
        first, second = second, first
    previous = list(range(len(second) + 1))
    for i, c1 in enumerate(first, start=1):
        current = [i]
        for j, c2 in enumerate(second, start=1):
            cost = 0 if c1 == c2 else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def text_similarity(first: str, second: str) -> float:
    """1.0 for equal strings, length ratio on containment, else normalized Levenshtein."""
    if first == second:
        return 1.0
    if first in second or second in first:
        return min(len(first), len(second)) / max(len(first), len(second))
    longest = max(len(first), len(second))
    return 1 - levenshtein_distance(first, second) / longest


T = TypeVar("T")


def find_comment_by_text(search_text: str, comments: Sequence[T], threshold: float = 0.8, key=None) -> Optional[T]:
    """Return the comment whose message best matches ``search_text``.

    ``key`` extracts the message text; by default ``comment["message"]``.
    """
    key = key or (lambda c: c.get("message", ""))
    needle = normalize_text(search_text)
    best, best_score = None, 0.0
    for comment in comments:
        score = text_similarity(needle, normalize_text(key(comment) or ""))
        if score > best_score and score >= threshold:
            best, best_score = comment, score
    logger.debug(f"Fuzzy comment match score={best_score:.2f} found={best is not None}")
    return best
