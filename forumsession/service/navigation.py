from __future__ import annotations

from typing import List, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

TOKEN_PARAM = "token"


class PageLocation:
    """The page's visible address plus the history and navigation it performed."""

    def __init__(self, href: str) -> None:
        self.href = href
        self.history: List[str] = [href]
        self.navigated_to: Optional[str] = None

    @property
    def pathname(self) -> str:
        return urlsplit(self.href).path or "/"

    def replace_state(self, url: str) -> None:
        """Rewrite the current history entry without navigating."""
        self.href = url
        self.history[-1] = url

    def assign(self, url: str) -> None:
        """Full page navigation; the running page is about to be discarded."""
        self.navigated_to = url


def token_from_url(href: str) -> Optional[str]:
    """Return the bearer token carried by the fragment, else by the query string."""
    parts = urlsplit(href)
    for source in (parts.fragment, parts.query):
        if not source:
            continue
        for name, value in parse_qsl(source, keep_blank_values=False):
            if name == TOKEN_PARAM and value:
                return value
    return None


def strip_token(href: str) -> str:
    """Drop ``token`` from both fragment and query, keeping everything else."""
    parts = urlsplit(href)
    query = _without_token(parts.query)
    fragment = _without_token(parts.fragment)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, fragment))


def _without_token(component: str) -> str:
    if not component:
        return component
    pairs = parse_qsl(component, keep_blank_values=True)
    if not any(name == TOKEN_PARAM for name, _ in pairs):
        return component
    return urlencode([(name, value) for name, value in pairs if name != TOKEN_PARAM])
