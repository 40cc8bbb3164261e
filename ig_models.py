#!/usr/bin/env python3
"""
Records produced by the Instagram comment pipeline.
"""

from dataclasses import asdict, dataclass, field
from typing import List, Optional, Tuple


@dataclass(frozen=True)
class Comment:
    username: str
    text: str

    @property
    def key(self) -> Tuple[str, str]:
        return (self.username, self.text)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class Post:
    id: Optional[str] = None
    shortcode: Optional[str] = None
    caption: Optional[str] = None
    like_count: Optional[int] = None
    comment_count: Optional[int] = None
    timestamp: Optional[int] = None
    owner_username: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ParseResult:
    post: Optional[Post] = None
    comments: List[Comment] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return self.post is None and not self.comments


@dataclass
class FetchOutcome:
    comments: List[Comment] = field(default_factory=list)
    blocked: bool = False
    exhausted: bool = False
    # "graphql:<doc_id>", "rest", "html" or None
    strategy: Optional[str] = None
    requests: int = 0


def dedupe_comments(comments: List[Comment], limit: Optional[int] = None) -> List[Comment]:
    """Drop repeated (username, text) pairs, keeping first-seen order. A falsy or non-positive limit means no cap."""
    seen = set()
    unique: List[Comment] = []
    for comment in comments:
        if comment.key in seen:
            continue
        seen.add(comment.key)
        unique.append(comment)
        if limit and limit > 0 and len(unique) >= limit:
            break
    return unique
