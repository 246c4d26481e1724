from __future__ import annotations

import re
from typing import NamedTuple
from urllib.parse import urlparse

_URL_RE = re.compile(r"https?://[^\s]+")
# hiragana, katakana and CJK ideographs are valid hashtag characters upstream
_HASHTAG_RE = re.compile(r"#[\w぀-ゟ゠-ヿ一-龯]+")

POST_HOSTS = {"twitter.com", "x.com", "mobile.twitter.com", "www.twitter.com", "www.x.com"}


class PermalinkParts(NamedTuple):
    author_id: str
    post_id: str


def extract_urls(text: str) -> list[str]:
    """Return every http(s) URL in `text`, in order of appearance."""
    if not text:
        return []
    return _URL_RE.findall(text)


def extract_hashtags(text: str) -> list[str]:
    if not text:
        return []
    seen: set[str] = set()
    tags: list[str] = []
    for tag in _HASHTAG_RE.findall(text):
        if tag in seen:
            continue
        seen.add(tag)
        tags.append(tag)
    return tags


def parse_permalink(raw_url: str | None) -> PermalinkParts | None:
    """Split `https://x.com/<author>/status/<id>` into its author and post id."""
    if not raw_url:
        return None
    parsed = urlparse(raw_url.strip())
    if (parsed.hostname or "").lower() not in POST_HOSTS:
        return None

    parts = [part for part in parsed.path.split("/") if part]
    try:
        status_index = parts.index("status")
    except ValueError:
        return None
    if status_index == 0 or status_index == len(parts) - 1:
        return None
    author_id = parts[status_index - 1]
    post_id = parts[status_index + 1]
    if not author_id or not post_id:
        return None
    return PermalinkParts(author_id=author_id, post_id=post_id)


def is_post_url(raw_url: str) -> bool:
    return (urlparse(raw_url).hostname or "").lower() in POST_HOSTS
