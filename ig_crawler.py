#!/usr/bin/env python3
"""
Instagram single-post comments crawler.
"""

import json
import logging
import os
import random
import re
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, List, Optional, Tuple

import requests

from config_loader import ConfigLoader
from ig_fetcher import CommentFetcher, is_blocked_response
from ig_models import Comment, FetchOutcome, ParseResult, dedupe_comments
from ig_parser import LoginWallDetected, parse_response, safe_json_loads

logger = logging.getLogger(__name__)

ACCEPT_LANGUAGES = ["en-US,en;q=0.9", "en-US,en;q=0.8", "en-GB,en;q=0.8"]


def extract_shortcode(post_url: str) -> Optional[str]:
    match = re.search(r"instagram\.com/(p|reel|reels|tv)/([^/?#]+)/?", post_url)
    if not match:
        return None
    return match.group(2)


def shortcode_to_media_id(shortcode: str) -> Optional[str]:
    alphabet = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_"
    media_id = 0
    try:
        for char in shortcode:
            media_id = media_id * 64 + alphabet.index(char)
    except ValueError:
        return None
    return str(media_id)


def parse_timestamp(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc).replace(tzinfo=None).isoformat() + "Z"
    if isinstance(value, str):
        return value
    return None


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def limit_comments(comments: List[Comment], max_comments: Optional[int]) -> List[Comment]:
    return dedupe_comments(comments, max_comments)


def stop_reason_for(outcome: FetchOutcome) -> str:
    if outcome.comments:
        return (outcome.strategy or "unknown").split(":", 1)[0]
    if outcome.blocked:
        return "blocked"
    return "exhausted"


class IGCrawler:
    def __init__(
        self,
        data_dir: str = "crawler_data",
        config_file: str = "config.json",
        session: Optional[Any] = None,
        proxy_provider: Optional[Callable[[], Optional[str]]] = None,
    ):
        self.data_dir = Path(os.getenv("DATA_DIR", data_dir))
        (self.data_dir / "ig_comments").mkdir(parents=True, exist_ok=True)
        (self.data_dir / "raw_responses").mkdir(parents=True, exist_ok=True)
        (self.data_dir / "debug_html").mkdir(parents=True, exist_ok=True)

        self.config_loader = ConfigLoader(config_file)
        self.config_loader.validate()
        self.config = self.config_loader.config.get("instagram", {})

        settings = self.config.get("settings", {})
        self.requests_per_minute = settings.get("requests_per_minute", 8)
        self.request_jitter_ratio = settings.get("request_jitter_ratio", 0.2)
        self.timeout = settings.get("timeout", 30)
        self.max_comments = settings.get("max_comments", 400)
        self.graphql_max_pages = settings.get("graphql_max_pages", 40)
        self.rest_max_pages = settings.get("rest_max_pages", 20)
        self.deep_search_max_depth = settings.get("deep_search_max_depth", 14)
        self.deep_search_max_comments = settings.get("deep_search_max_comments", 500)
        self.dirty_text_max_length = settings.get("dirty_text_max_length", 400)
        self.html_fallback = settings.get("html_fallback", True)
        self.save_debug_html = settings.get("save_debug_html", True)
        self.save_raw_mode = settings.get("save_raw_responses", "errors")
        self.raw_keep = settings.get("raw_responses_keep", 200)

        endpoints = self.config.get("endpoints", {})
        graphql = endpoints.get("graphql", {})
        self.post_page_url = endpoints.get("post_page", {}).get("url", "https://www.instagram.com/p/{shortcode}/")

        self.session = session if session is not None else requests.Session()
        self.setup_session()

        self.fetcher = CommentFetcher(
            self.session,
            doc_ids=graphql.get("doc_ids"),
            graphql_url=graphql.get("url", "https://www.instagram.com/graphql/query/"),
            rest_url=endpoints.get("rest_comments", {}).get(
                "url", "https://www.instagram.com/api/v1/media/shortcode/{shortcode}/comments/"
            ),
            timeout=self.timeout,
            graphql_max_pages=self.graphql_max_pages,
            rest_max_pages=self.rest_max_pages,
            requests_per_minute=self.requests_per_minute,
            jitter_ratio=self.request_jitter_ratio,
            proxy_provider=proxy_provider,
            response_hook=self.save_raw_response,
            max_depth=self.deep_search_max_depth,
            max_deep_comments=self.deep_search_max_comments,
        )

    def setup_session(self) -> None:
        headers = self.config.get("authentication", {}).get("headers", {})
        self.session.headers.update({
            "Accept": "*/*",
            "Accept-Language": random.choice(ACCEPT_LANGUAGES),
        })
        for key, value in headers.items():
            if value and not str(value).startswith("YOUR_"):
                self.session.headers[key] = value

        cookies = self.config.get("authentication", {}).get("cookies", {})
        for key, value in cookies.items():
            if value and not str(value).startswith("YOUR_"):
                self.session.cookies.set(key, value)

        proxy_settings = self.config_loader.get_proxy_settings()
        if proxy_settings:
            self.session.proxies = proxy_settings

    def save_raw_response(self, label: str, url: str, request_kwargs: dict, response: Any) -> None:
        mode = str(self.save_raw_mode or "errors").lower()
        if mode in {"none", "off", "false", "0"}:
            return
        status = response.status_code
        if mode in {"errors", "error"} and status == 200:
            return
        timestamp = utc_now().strftime("%Y%m%d_%H%M%S_%f")[:-3]
        path = self.data_dir / "raw_responses" / f"{timestamp}_{label}.json"
        text = response.text or ""
        payload = {
            "url": url,
            "timestamp": utc_now().isoformat() + "Z",
            "status": status,
            "params": {"params": request_kwargs.get("params"), "data": request_kwargs.get("data")},
            "data": safe_json_loads(text) or {"error": text[:2000]},
        }
        path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
        self.cleanup_raw_responses()

    def cleanup_raw_responses(self) -> None:
        raw_dir = self.data_dir / "raw_responses"
        if self.raw_keep is None or self.raw_keep < 0 or not raw_dir.exists():
            return
        files = sorted(raw_dir.glob("*.json"), key=lambda p: p.stat().st_mtime, reverse=True)
        for path in files[self.raw_keep:]:
            path.unlink(missing_ok=True)

    def fetch_post_page(self, shortcode: str) -> Tuple[Optional[str], bool]:
        """Fetch the public post page. Returns (html, blocked)."""
        url = self.post_page_url.format(shortcode=shortcode)
        response = self.fetcher.send("GET", url, "post_page", headers={"Accept": "text/html,application/xhtml+xml"})
        if response is None:
            return None, False
        if is_blocked_response(response):
            logger.warning("Post page blocked for %s (HTTP %s)", shortcode, response.status_code)
            return None, True
        if response.status_code != 200:
            logger.warning("Post page unexpected status for %s (HTTP %s)", shortcode, response.status_code)
            return None, False
        return response.text, False

    def collect_comments(self, shortcode: str, max_comments: Optional[int] = None) -> Tuple[ParseResult, FetchOutcome]:
        """Run the strategy chain, then the post page HTML unless the chain was blocked.

        Comments in the returned pair are deduplicated and bounded by
        ``max_comments``; both objects share the same list.
        """
        outcome = self.fetcher.fetch(shortcode, max_comments)
        result = ParseResult(comments=outcome.comments)
        html = None

        if not outcome.comments and not outcome.blocked and self.html_fallback:
            html, page_blocked = self.fetch_post_page(shortcode)
            outcome.requests += 1
            if page_blocked:
                outcome.blocked = True
            elif html:
                try:
                    result = parse_response(
                        html,
                        max_depth=self.deep_search_max_depth,
                        max_deep_comments=self.deep_search_max_comments,
                        dirty_text_max_length=self.dirty_text_max_length,
                    )
                except LoginWallDetected:
                    logger.warning("Login wall detected on post page for %s", shortcode)
                    outcome.blocked = True
                else:
                    if result.comments:
                        outcome.strategy = "html"
                        outcome.exhausted = False
                        logger.info("HTML fallback returned %d comments for %s", len(result.comments), shortcode)

        result.comments = limit_comments(result.comments, max_comments)
        outcome.comments = result.comments

        if not result.comments:
            logger.warning("Zero comments found for %s (blocked=%s)", shortcode, outcome.blocked)
            if html and self.save_debug_html:
                self.save_debug_page(shortcode, html)
        return result, outcome

    def crawl_post_comments(self, post_url: str, max_comments: Optional[int] = None) -> dict:
        logger.info("Start: %s", post_url)
        shortcode = extract_shortcode(post_url)
        if not shortcode:
            raise ValueError("Invalid Instagram post URL")

        max_comments = max_comments if max_comments is not None else self.max_comments
        start_time = time.monotonic()
        result, outcome = self.collect_comments(shortcode, max_comments)

        post_info = result.post.to_dict() if result.post else {}
        post_info.update({
            "url": post_url,
            "shortcode": post_info.get("shortcode") or shortcode,
            "media_id": post_info.get("id") or shortcode_to_media_id(shortcode),
            "taken_at": parse_timestamp(post_info.get("timestamp")),
        })

        data = {
            "post": post_info,
            "comment_count": len(result.comments),
            "fetched_at": utc_now().isoformat() + "Z",
            "comments": [comment.to_dict() for comment in result.comments],
            "strategy": outcome.strategy,
            "blocked": outcome.blocked,
            "exhausted": outcome.exhausted,
            "requests": outcome.requests,
            "stop_reason": stop_reason_for(outcome),
        }

        output_path = self.save_output(shortcode, data)
        data["output_path"] = str(output_path)
        logger.info(
            "Saved %d comments for %s to %s (%s, %.2fs)",
            data["comment_count"],
            shortcode,
            output_path,
            data["stop_reason"],
            time.monotonic() - start_time,
        )
        return data

    def crawl_posts(
        self,
        post_urls: Iterable[str],
        max_comments: Optional[int] = None,
        max_total_comments: Optional[int] = None,
    ) -> List[dict]:
        """Crawl posts one after another until the total comment target is met."""
        results: List[dict] = []
        total = 0
        per_post = max_comments if max_comments is not None else self.max_comments
        for post_url in post_urls:
            post_limit = per_post
            if max_total_comments:
                remaining = max_total_comments - total
                if remaining <= 0:
                    logger.info("Stop: total comment target reached (%d)", total)
                    break
                post_limit = min(per_post, remaining) if per_post and per_post > 0 else remaining
            try:
                result = self.crawl_post_comments(post_url, max_comments=post_limit)
            except ValueError as exc:
                logger.warning("Skipping %s: %s", post_url, exc)
                continue
            total += result["comment_count"]
            results.append(result)
        return results

    def save_output(self, shortcode: str, data: dict) -> Path:
        timestamp = utc_now().strftime("%Y%m%d_%H%M%S")
        filename = f"{shortcode}_{timestamp}.json"
        path = self.data_dir / "ig_comments" / filename
        path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
        return path

    def save_debug_page(self, shortcode: str, html: str) -> Path:
        timestamp = utc_now().strftime("%Y%m%d_%H%M%S")
        path = self.data_dir / "debug_html" / f"{shortcode}_{timestamp}.html"
        path.write_text(html, encoding="utf-8")
        logger.warning("Saved page HTML for inspection: %s", path)
        return path
