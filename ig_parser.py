#!/usr/bin/env python3
"""
Schema-tolerant parsing of Instagram pages and API payloads.

Instagram ships the same post data under several embedding conventions
(inline globals, JSON script tags, function-call wrappers, XHR JSON) and
renames fields between them. Parsing goes from cheap and precise to
expensive and forgiving:

1. the whole body as JSON,
2. candidate blobs located in the HTML, each re-validated with ``json``,
3. known key paths, then a depth-bounded deep search inside each blob,
4. a regex scan for bare ``"text":"..."`` fields.
"""

import json
import logging
import re
from html import unescape as html_unescape
from typing import Any, Iterator, List, Optional

from ig_models import Comment, ParseResult, Post, dedupe_comments

logger = logging.getLogger(__name__)

MAX_DEPTH = 14
MAX_DEEP_COMMENTS = 500
MAX_BLOB_LENGTH = 512 * 1024
MAX_CANDIDATES = 64
DIRTY_TEXT_MAX_LENGTH = 400
DIRTY_TEXT_MAX_RAW = 4000

GLOBAL_ASSIGNMENT_RE = re.compile(
    r"window\.(?:_sharedData|__initialData|__INITIAL_STATE__|__APOLLO_STATE__)\s*=\s*(?=\{)"
)
JSON_SCRIPT_RE = re.compile(
    r"<script\b([^>]*\btype=[\"']application/json[\"'][^>]*)>([\s\S]{0,%d}?)</script>" % MAX_BLOB_LENGTH,
    re.IGNORECASE,
)
WRAPPER_CALL_RE = re.compile(
    r"(?<![\w$.])([A-Za-z_$][\w$]*(?:\.[A-Za-z_$][\w$]*)*)\(\s*"
    r"(?:(?:'[^'\n]{0,300}'|\"[^\"\n]{0,300}\"|\d+)\s*,\s*)?(?=[\[{])"
)
NAMED_COMPONENT_RE = re.compile(
    r"\"([A-Za-z0-9_]*(?:Manager|Root)[A-Za-z0-9_]*|xdt_api__v1__media__shortcode__web_info)\"\s*[:,]\s*(?=\{)"
)
TITLE_RE = re.compile(r"<title[^>]*>([\s\S]{0,500}?)</title>", re.IGNORECASE)
LOGIN_TITLE_RE = re.compile(
    r"(?:log\s*in|sign\s*up)(?:\s*[•·|-]\s*instagram)?",
    re.IGNORECASE,
)
DIRTY_TEXT_RE = re.compile(r"\"text\"\s*:\s*\"((?:[^\"\\\n]|\\.){1,%d})\"" % DIRTY_TEXT_MAX_RAW)
UNICODE_ESCAPE_RE = re.compile(r"\\u([0-9a-fA-F]{4})")

JS_KEYWORDS = {"if", "for", "while", "switch", "function", "return", "catch", "with"}

UI_BOILERPLATE = frozenset({
    "log in",
    "login",
    "sign up",
    "signup",
    "instagram",
    "create account",
    "create new account",
    "open in app",
    "open instagram",
    "forgot password?",
    "not now",
    "see translation",
    "view all comments",
    "load more comments",
    "switch accounts",
    "meta",
})

KNOWN_MEDIA_PATHS = [
    ["graphql", "shortcode_media"],
    ["data", "shortcode_media"],
    ["data", "xdt_shortcode_media"],
    ["shortcode_media"],
    ["items", 0],
    ["props", "pageProps", "shortcode_media"],
    ["props", "pageProps", "graphql", "shortcode_media"],
    ["entry_data", "PostPage", 0, "graphql", "shortcode_media"],
    ["entry_data", "PostPage", 0, "items", 0],
    ["data", "xdt_api__v1__media__shortcode__web_info", "items", 0],
]

MEDIA_COMMENT_PATHS = [
    ["edge_media_to_parent_comment", "edges"],
    ["edge_media_to_comment", "edges"],
    ["edge_media_preview_comment", "edges"],
    ["comments"],
    ["preview_comments"],
]

# Inline replies nested under a comment node.
REPLY_PATHS = [
    ["edge_threaded_comments", "edges"],
    ["preview_child_comments"],
]

COMMENT_LIST_KEYS = ("comments", "preview_comments", "edges")
USER_KEYS = ("owner", "user", "from")
MEDIA_HINT_KEYS = (
    "owner",
    "user",
    "taken_at_timestamp",
    "taken_at",
    "edge_media_to_parent_comment",
    "edge_media_to_comment",
)
# REST captions carry a user and would otherwise pass as comments.
SKIP_KEYS = {"caption", "edge_media_to_caption"}


class LoginWallDetected(Exception):
    """Raised when a fetched page is the login/sign-up wall instead of content."""


def deep_get(data: Any, path: List[Any]) -> Any:
    cur = data
    for key in path:
        if isinstance(cur, dict) and key in cur:
            cur = cur[key]
            continue
        if isinstance(cur, list) and isinstance(key, int) and 0 <= key < len(cur):
            cur = cur[key]
            continue
        return None
    return cur


def pick_first_path(data: Any, paths: List[List[Any]]) -> Any:
    for path in paths:
        value = deep_get(data, path)
        if value is not None:
            return value
    return None


def safe_json_loads(raw: Optional[str]) -> Any:
    if not raw:
        return None
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, TypeError, ValueError):
        return None


def detect_login_wall(html: str) -> bool:
    match = TITLE_RE.search(html or "")
    if not match:
        return False
    title = html_unescape(match.group(1)).strip()
    return bool(LOGIN_TITLE_RE.fullmatch(title))


def slice_balanced(text: str, start: int, max_length: int = MAX_BLOB_LENGTH) -> Optional[str]:
    """Return the ``{...}`` or ``[...]`` literal opening at ``start``.

    Brackets inside double-quoted strings are ignored. Returns None when the
    literal is unbalanced or does not close within ``max_length`` characters.
    """
    if start >= len(text) or text[start] not in "{[":
        return None
    closers = {"{": "}", "[": "]"}
    stack = []
    in_string = False
    escaped = False
    end = min(len(text), start + max_length)
    for index in range(start, end):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in closers:
            stack.append(closers[char])
        elif char in "}]":
            if not stack or stack.pop() != char:
                return None
            if not stack:
                return text[start:index + 1]
    return None


def _global_assignment_blobs(html: str) -> Iterator[str]:
    for match in GLOBAL_ASSIGNMENT_RE.finditer(html):
        blob = slice_balanced(html, match.end())
        if blob:
            yield blob


def _json_script_blobs(html: str) -> Iterator[str]:
    matches = list(JSON_SCRIPT_RE.finditer(html))
    # __NEXT_DATA__ first, the rest in document order.
    matches.sort(key=lambda m: 0 if "__NEXT_DATA__" in m.group(1) else 1)
    for match in matches:
        body = match.group(2).strip()
        if body:
            yield body


def _wrapper_call_blobs(html: str) -> Iterator[str]:
    for match in WRAPPER_CALL_RE.finditer(html):
        if match.group(1) in JS_KEYWORDS:
            continue
        blob = slice_balanced(html, match.end())
        if blob:
            yield blob


def _named_component_blobs(html: str) -> Iterator[str]:
    for match in NAMED_COMPONENT_RE.finditer(html):
        blob = slice_balanced(html, match.end())
        if blob:
            yield blob


def find_embedded_blobs(html: str) -> List[str]:
    """Locate candidate JSON substrings in ``html``, most likely first.

    Candidates are lexical guesses only; callers must parse each one and move
    on to the next when it is not valid JSON.
    """
    if not html:
        return []
    if detect_login_wall(html):
        raise LoginWallDetected("login wall detected in page title")

    candidates: List[str] = []
    seen = set()
    for source in (_global_assignment_blobs, _json_script_blobs, _wrapper_call_blobs, _named_component_blobs):
        for blob in source(html):
            if blob in seen:
                continue
            seen.add(blob)
            candidates.append(blob)
            if len(candidates) >= MAX_CANDIDATES:
                return candidates
    return candidates


def comment_from_node(node: Any) -> Optional[Comment]:
    if not isinstance(node, dict):
        return None
    text = node.get("text")
    if not isinstance(text, str) or not text.strip():
        return None
    for key in USER_KEYS:
        user = node.get(key)
        if isinstance(user, dict):
            username = user.get("username")
            if isinstance(username, str) and username:
                return Comment(username=username, text=text)
    return None


def _unwrap_node(item: Any) -> Any:
    if isinstance(item, dict) and isinstance(item.get("node"), dict):
        return item["node"]
    return item


def _comment_lists(node: dict) -> Iterator[list]:
    for key in COMMENT_LIST_KEYS:
        value = node.get(key)
        if isinstance(value, list) and value:
            yield value
        elif isinstance(value, dict) and isinstance(value.get("edges"), list) and value["edges"]:
            yield value["edges"]
    # GraphQL connection objects under any other key.
    for key, value in node.items():
        if key in COMMENT_LIST_KEYS or key in SKIP_KEYS:
            continue
        if isinstance(value, dict) and isinstance(value.get("edges"), list) and value["edges"]:
            yield value["edges"]


def _merge_children(children: List[Any], depth: int, max_depth: int, limit: Optional[int]) -> List[Comment]:
    merged: List[Comment] = []
    seen = set()
    for child in children:
        if not isinstance(child, (dict, list)):
            continue
        for comment in deep_search_comments(child, depth + 1, max_depth, limit):
            if comment.key in seen:
                continue
            seen.add(comment.key)
            merged.append(comment)
            if limit and len(merged) >= limit:
                return merged
    return merged


def deep_search_comments(
    value: Any,
    depth: int = 0,
    max_depth: int = MAX_DEPTH,
    limit: Optional[int] = MAX_DEEP_COMMENTS,
) -> List[Comment]:
    """Recover comments from JSON of unknown shape.

    An object that is itself a comment node wins over any arrays it carries.
    Otherwise known comment arrays and edge connections are tried, and only
    when they yield nothing are all children searched. ``limit`` caps the
    merged result of each call; a falsy limit disables the cap.
    """
    if depth > max_depth:
        return []
    if isinstance(value, list):
        return _merge_children(value, depth, max_depth, limit)
    if not isinstance(value, dict):
        return []

    comment = comment_from_node(value)
    if comment:
        return [comment]

    for items in _comment_lists(value):
        found: List[Comment] = []
        for item in items:
            found.extend(deep_search_comments(_unwrap_node(item), depth + 1, max_depth, limit))
        found = dedupe_comments(found, limit or None)
        if found:
            return found

    children = [child for key, child in value.items() if key not in SKIP_KEYS]
    return _merge_children(children, depth, max_depth, limit)


def find_media_node(value: Any, depth: int = 0, max_depth: int = MAX_DEPTH) -> Optional[dict]:
    if depth > max_depth:
        return None
    if isinstance(value, dict):
        if isinstance(value.get("shortcode") or value.get("code"), str) and any(key in value for key in MEDIA_HINT_KEYS):
            return value
        children = list(value.values())
    elif isinstance(value, list):
        children = value
    else:
        return None
    for child in children:
        if isinstance(child, (dict, list)):
            media = find_media_node(child, depth + 1, max_depth)
            if media is not None:
                return media
    return None


def find_known_media(data: Any) -> Optional[dict]:
    for path in KNOWN_MEDIA_PATHS:
        media = deep_get(data, path)
        if isinstance(media, dict):
            return media
    return None


def build_post(media: dict) -> Post:
    media_id = media.get("id") or media.get("pk")
    caption = media.get("caption")
    if not isinstance(caption, str):
        caption = pick_first_path(media, [
            ["edge_media_to_caption", "edges", 0, "node", "text"],
            ["caption", "text"],
        ])
    return Post(
        id=str(media_id) if media_id is not None else None,
        shortcode=media.get("shortcode") or media.get("code"),
        caption=caption,
        like_count=pick_first_path(media, [
            ["edge_media_preview_like", "count"],
            ["edge_liked_by", "count"],
            ["like_count"],
        ]),
        comment_count=pick_first_path(media, [
            ["edge_media_to_parent_comment", "count"],
            ["edge_media_to_comment", "count"],
            ["comment_count"],
        ]),
        timestamp=pick_first_path(media, [["taken_at_timestamp"], ["taken_at"]]),
        owner_username=pick_first_path(media, [["owner", "username"], ["user", "username"]]),
    )


def comments_from_items(items: Any) -> List[Comment]:
    """Comments from a list of edges or bare nodes, inline replies included."""
    if not isinstance(items, list):
        return []
    comments: List[Comment] = []
    for item in items:
        node = _unwrap_node(item)
        comment = comment_from_node(node)
        if comment:
            comments.append(comment)
        if not isinstance(node, dict):
            continue
        for reply_path in REPLY_PATHS:
            replies = deep_get(node, reply_path)
            if not isinstance(replies, list):
                continue
            for reply_item in replies:
                reply = comment_from_node(_unwrap_node(reply_item))
                if reply:
                    comments.append(reply)
    return dedupe_comments(comments)


def media_comments(media: dict) -> List[Comment]:
    for path in MEDIA_COMMENT_PATHS:
        comments = comments_from_items(deep_get(media, path))
        if comments:
            return comments
    return []


def parse_json_payload(
    data: Any,
    max_depth: int = MAX_DEPTH,
    max_deep_comments: Optional[int] = MAX_DEEP_COMMENTS,
) -> ParseResult:
    media = find_known_media(data)
    if media is None:
        media = find_media_node(data, max_depth=max_depth)

    post = build_post(media) if media is not None else None
    comments = media_comments(media) if media is not None else []
    if not comments:
        comments = deep_search_comments(data, max_depth=max_depth, limit=max_deep_comments)
    return ParseResult(post=post, comments=comments)


def unescape_text(raw: str) -> str:
    try:
        return json.loads('"' + raw + '"', strict=False)
    except json.JSONDecodeError:
        pass
    text = UNICODE_ESCAPE_RE.sub(lambda m: chr(int(m.group(1), 16)), raw)
    try:
        text = text.encode("utf-16", "surrogatepass").decode("utf-16")
    except UnicodeError:
        pass
    text = text.replace('\\"', '"').replace("\\/", "/").replace("\\n", "\n")
    return text.replace("\\\\", "\\")


def extract_dirty_text_comments(html: str, max_length: int = DIRTY_TEXT_MAX_LENGTH) -> List[Comment]:
    """Last resort: bare ``"text":"..."`` fields with no known username."""
    comments: List[Comment] = []
    seen = set()
    for match in DIRTY_TEXT_RE.finditer(html or ""):
        text = unescape_text(match.group(1))
        stripped = text.strip()
        if not stripped or len(text) > max_length:
            continue
        if stripped.lower() in UI_BOILERPLATE:
            continue
        if text in seen:
            continue
        seen.add(text)
        comments.append(Comment(username="", text=text))
    return comments


def parse_response(
    body: str,
    max_depth: int = MAX_DEPTH,
    max_deep_comments: Optional[int] = MAX_DEEP_COMMENTS,
    dirty_text_max_length: int = DIRTY_TEXT_MAX_LENGTH,
) -> ParseResult:
    """Turn a fetched page body (JSON or HTML) into a ParseResult.

    Raises LoginWallDetected when the page is the login wall.
    """
    if not body:
        return ParseResult()

    stripped = body.strip()
    if stripped[:1] in ("{", "["):
        direct = safe_json_loads(stripped)
        if direct is not None:
            return parse_json_payload(direct, max_depth, max_deep_comments)

    fallback_post: Optional[Post] = None
    parsed_any = False
    for index, blob in enumerate(find_embedded_blobs(body)):
        data = safe_json_loads(blob)
        if data is None:
            logger.debug("Candidate %d is not valid JSON, skipping", index)
            continue
        parsed_any = True
        result = parse_json_payload(data, max_depth, max_deep_comments)
        if result.comments:
            if result.post is None:
                result.post = fallback_post
            return result
        if result.post is not None and fallback_post is None:
            fallback_post = result.post

    if fallback_post is not None:
        return ParseResult(post=fallback_post)
    if parsed_any:
        logger.debug("Embedded JSON parsed but held no post or comments")
    return ParseResult(comments=extract_dirty_text_comments(body, dirty_text_max_length))
