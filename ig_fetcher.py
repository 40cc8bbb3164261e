#!/usr/bin/env python3
"""
Comment acquisition over Instagram's private endpoints.

Strategies are tried strictly in order, one request at a time:

    GraphQL (each doc_id in turn) -> REST comments pagination -> exhausted

A blocked doc_id only ends that doc_id's attempt; doc_ids are deprecated
independently, so the next one may still work.
"""

import json
import logging
import random
import time
from typing import Any, Callable, List, Optional, Tuple

import requests

from ig_models import Comment, FetchOutcome
from ig_parser import (
    MAX_DEEP_COMMENTS,
    MAX_DEPTH,
    comments_from_items,
    deep_get,
    deep_search_comments,
    safe_json_loads,
)

logger = logging.getLogger(__name__)

GRAPHQL_URL = "https://www.instagram.com/graphql/query/"
REST_COMMENTS_URL = "https://www.instagram.com/api/v1/media/shortcode/{shortcode}/comments/"
GRAPHQL_DOC_IDS = [
    "7742571219201978",
    "8845758582119845",
    "17873440459141021",
]
GRAPHQL_MAX_PAGES = 40
REST_MAX_PAGES = 20
BLOCKED_STATUSES = {403, 429}
LOGIN_PATH_MARKER = "login"

COMMENT_CONNECTION_PATHS = [
    ["data", "xdt_api__v1__media__media_id__comments__connection"],
    ["data", "xdt_shortcode_media", "edge_media_to_parent_comment"],
    ["data", "shortcode_media", "edge_media_to_parent_comment"],
    ["data", "xdt_shortcode_media", "edge_media_to_comment"],
    ["data", "shortcode_media", "edge_media_to_comment"],
    ["shortcode_media", "edge_media_to_parent_comment"],
    ["shortcode_media", "edge_media_to_comment"],
]


def find_connection_in_data(payload: Any, suffixes: List[str]) -> Optional[dict]:
    data = payload.get("data") if isinstance(payload, dict) else None
    if not isinstance(data, dict):
        return None
    for key, value in data.items():
        if not isinstance(value, dict):
            continue
        for suffix in suffixes:
            if key.endswith(suffix):
                return value
    return None


def extract_comment_connection(payload: Any) -> Optional[dict]:
    for path in COMMENT_CONNECTION_PATHS:
        connection = deep_get(payload, path)
        if isinstance(connection, dict):
            return connection
    return find_connection_in_data(payload, ["__comments__connection"])


def parse_graphql_page(
    payload: Any,
    max_depth: int = MAX_DEPTH,
    max_deep_comments: Optional[int] = MAX_DEEP_COMMENTS,
) -> Tuple[List[Comment], bool, Optional[str]]:
    """Return (comments, has_next_page, end_cursor) for one GraphQL page."""
    connection = extract_comment_connection(payload)
    if connection is None:
        # Unknown schema: take whatever comments are there, no pagination.
        return deep_search_comments(payload, max_depth=max_depth, limit=max_deep_comments), False, None

    page_info = connection.get("page_info") or connection.get("pageInfo") or {}
    has_next = page_info.get("has_next_page")
    if has_next is None:
        has_next = page_info.get("hasNextPage")
    end_cursor = page_info.get("end_cursor") or page_info.get("endCursor")
    if not isinstance(end_cursor, str):
        end_cursor = None
    return comments_from_items(connection.get("edges")), bool(has_next), end_cursor


def parse_rest_page(payload: dict) -> Tuple[List[Comment], bool, Optional[str]]:
    """Return (comments, has_more, next_min_id) for one REST page."""
    has_more = payload.get("has_more_comments")
    if has_more is None:
        has_more = payload.get("has_more_headload_comments")
    next_id = payload.get("next_min_id") or payload.get("next_max_id")
    if not isinstance(next_id, str):
        next_id = None
    return comments_from_items(payload.get("comments")), bool(has_more), next_id


def is_blocked_response(response: Any) -> bool:
    status = response.status_code
    if status in BLOCKED_STATUSES:
        return True
    if status == 302:
        location = response.headers.get("Location") or response.headers.get("location") or ""
        return LOGIN_PATH_MARKER in location
    return False


class CommentFetcher:
    def __init__(
        self,
        session: Any,
        doc_ids: Optional[List[str]] = None,
        graphql_url: str = GRAPHQL_URL,
        rest_url: str = REST_COMMENTS_URL,
        timeout: float = 30,
        graphql_max_pages: int = GRAPHQL_MAX_PAGES,
        rest_max_pages: int = REST_MAX_PAGES,
        requests_per_minute: float = 0,
        jitter_ratio: float = 0.0,
        proxy_provider: Optional[Callable[[], Optional[str]]] = None,
        response_hook: Optional[Callable[[str, str, dict, Any], None]] = None,
        max_depth: int = MAX_DEPTH,
        max_deep_comments: Optional[int] = MAX_DEEP_COMMENTS,
    ):
        self.session = session
        self.doc_ids = list(doc_ids) if doc_ids else list(GRAPHQL_DOC_IDS)
        self.graphql_url = graphql_url
        self.rest_url = rest_url
        self.timeout = timeout
        self.graphql_max_pages = graphql_max_pages
        self.rest_max_pages = rest_max_pages
        self.requests_per_minute = requests_per_minute
        self.jitter_ratio = jitter_ratio
        self.proxy_provider = proxy_provider
        self.response_hook = response_hook
        self.max_depth = max_depth
        self.max_deep_comments = max_deep_comments
        self._last_request_ts = 0.0

    def rate_limit_check(self) -> None:
        if not self.requests_per_minute or self.requests_per_minute <= 0:
            return
        min_interval = 60.0 / float(self.requests_per_minute)
        elapsed = time.time() - self._last_request_ts
        if elapsed < min_interval:
            time.sleep(min_interval - elapsed)
        # Add jitter to avoid fixed intervals
        jitter = random.uniform(0, min_interval * max(0.0, min(self.jitter_ratio, 1.0)))
        time.sleep(jitter)
        self._last_request_ts = time.time()

    def _proxies(self) -> Optional[dict]:
        if not self.proxy_provider:
            return None
        proxy_url = self.proxy_provider()
        if not proxy_url:
            return None
        return {"http": proxy_url, "https": proxy_url}

    def send(self, method: str, url: str, label: str, **kwargs) -> Optional[Any]:
        """Issue one request. Returns None on a transient network failure."""
        self.rate_limit_check()
        try:
            response = self.session.request(
                method,
                url,
                timeout=self.timeout,
                allow_redirects=False,
                proxies=self._proxies(),
                **kwargs,
            )
        except requests.RequestException as exc:
            logger.warning("%s request error: %s", label, exc)
            return None
        if self.response_hook:
            self.response_hook(label, url, kwargs, response)
        return response

    def _graphql_headers(self) -> dict:
        headers = {"Content-Type": "application/x-www-form-urlencoded"}
        cookies = getattr(self.session, "cookies", None)
        csrf_token = cookies.get("csrftoken") if cookies is not None else None
        if csrf_token:
            headers["X-CSRFToken"] = csrf_token
        return headers

    def fetch(self, shortcode: str, max_comments: Optional[int] = None) -> FetchOutcome:
        """Run the strategy chain for one post until a strategy yields comments."""
        if max_comments is not None and max_comments <= 0:
            max_comments = None
        requests_made = 0
        blocked_doc_ids = []

        for doc_id in self.doc_ids:
            attempt = self.fetch_graphql(shortcode, doc_id, max_comments)
            requests_made += attempt.requests
            if attempt.blocked:
                blocked_doc_ids.append(doc_id)
            if attempt.comments:
                attempt.requests = requests_made
                logger.info("GraphQL strategy succeeded for %s (doc_id=%s, %d comments)", shortcode, doc_id, len(attempt.comments))
                return attempt

        rest = self.fetch_rest(shortcode, max_comments)
        requests_made += rest.requests
        rest.requests = requests_made
        if rest.comments:
            logger.info("REST strategy succeeded for %s (%d comments)", shortcode, len(rest.comments))
            return rest

        all_graphql_blocked = bool(self.doc_ids) and len(blocked_doc_ids) == len(self.doc_ids)
        logger.warning("All comment fetch strategies exhausted for %s", shortcode)
        return FetchOutcome(
            blocked=rest.blocked or all_graphql_blocked,
            exhausted=True,
            requests=requests_made,
        )

    def fetch_graphql(self, shortcode: str, doc_id: str, max_comments: Optional[int] = None) -> FetchOutcome:
        outcome = FetchOutcome(strategy=f"graphql:{doc_id}")
        collected: List[Comment] = []
        seen = set()
        cursor = None
        page_size = min(50, max(10, max_comments or 50))

        for page in range(self.graphql_max_pages):
            if max_comments and len(collected) >= max_comments:
                break
            variables = {"shortcode": shortcode, "first": page_size}
            if cursor:
                variables["after"] = cursor
            data = {
                "doc_id": doc_id,
                "variables": json.dumps(variables, separators=(",", ":"), ensure_ascii=False),
            }

            response = self.send("POST", self.graphql_url, "graphql", data=data, headers=self._graphql_headers())
            outcome.requests += 1
            if response is None:
                break
            if is_blocked_response(response):
                logger.warning("GraphQL blocked for %s (doc_id=%s, HTTP %s)", shortcode, doc_id, response.status_code)
                outcome.blocked = True
                break

            payload = safe_json_loads(response.text)
            if not isinstance(payload, (dict, list)):
                logger.warning("GraphQL returned non-JSON for %s (doc_id=%s, HTTP %s)", shortcode, doc_id, response.status_code)
                break

            comments, has_next, end_cursor = parse_graphql_page(payload, self.max_depth, self.max_deep_comments)
            logger.debug("GraphQL page %d for %s (doc_id=%s): %d comments", page + 1, shortcode, doc_id, len(comments))
            if not comments and page == 0:
                logger.info("GraphQL doc_id %s returned no comments for %s", doc_id, shortcode)
                break

            for comment in comments:
                if comment.key not in seen:
                    seen.add(comment.key)
                    collected.append(comment)

            if not has_next or not end_cursor:
                outcome.exhausted = True
                break
            if end_cursor == cursor:
                logger.warning("GraphQL cursor stalled for %s (doc_id=%s)", shortcode, doc_id)
                break
            cursor = end_cursor

        outcome.comments = collected[:max_comments] if max_comments else collected
        return outcome

    def fetch_rest(self, shortcode: str, max_comments: Optional[int] = None) -> FetchOutcome:
        outcome = FetchOutcome(strategy="rest")
        url = self.rest_url.format(shortcode=shortcode)
        collected: List[Comment] = []
        seen = set()
        cursor = None

        for page in range(self.rest_max_pages):
            if max_comments and len(collected) >= max_comments:
                break
            params = {"can_support_threading": "true", "permalink_enabled": "true"}
            if cursor:
                params["min_id"] = cursor

            response = self.send("GET", url, "rest", params=params, headers={"Accept": "application/json"})
            outcome.requests += 1
            if response is None:
                break
            status = response.status_code
            if status == 404:
                logger.info("REST comments not found for %s", shortcode)
                break
            if status in (401, 403):
                logger.warning("REST comments blocked for %s (HTTP %s) - session may be invalid", shortcode, status)
                outcome.blocked = True
                break
            if status != 200:
                logger.warning("REST comments unexpected status for %s (HTTP %s)", shortcode, status)
                break

            payload = safe_json_loads(response.text)
            if not isinstance(payload, dict):
                logger.warning("REST comments returned non-JSON for %s", shortcode)
                break

            comments, has_more, next_id = parse_rest_page(payload)
            logger.debug("REST page %d for %s: %d comments", page + 1, shortcode, len(comments))
            for comment in comments:
                if comment.key not in seen:
                    seen.add(comment.key)
                    collected.append(comment)

            if not has_more or not next_id:
                outcome.exhausted = True
                break
            if next_id == cursor:
                logger.warning("REST cursor stalled for %s", shortcode)
                break
            cursor = next_id

        outcome.comments = collected[:max_comments] if max_comments else collected
        return outcome
