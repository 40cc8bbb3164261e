#!/usr/bin/env python3
"""
CLI entry for Instagram crawler.
"""

import argparse
from pathlib import Path

from ig_crawler import IGCrawler
from ig_parser import LoginWallDetected, parse_response
from logging_config import setup_logging


def parse_html_file(path: str) -> int:
    html = Path(path).read_text(encoding="utf-8", errors="replace")
    try:
        result = parse_response(html)
    except LoginWallDetected:
        print(f"Login wall: {path}")
        return 1
    if result.post:
        print(f"Post: {result.post.shortcode} by {result.post.owner_username}")
    print(f"Comments: {len(result.comments)}")
    for comment in result.comments:
        print(f"  @{comment.username or '?'}: {comment.text}")
    return 0


def main() -> int:
    parser = argparse.ArgumentParser()
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--post-url", action="append", help="Instagram post URL (repeatable)")
    source.add_argument("--html-file", help="Parse a saved post page instead of crawling")
    parser.add_argument("--config", default="config.json", help="Config file path")
    parser.add_argument("--max-comments", type=int, default=None, help="Stop after N unique comments per post")
    parser.add_argument("--max-total-comments", type=int, default=None, help="Stop crawling once N comments are collected")
    parser.add_argument("--log-level", default="INFO", help="Logging level")
    parser.add_argument("--log-file", default=None, help="Also write logs to this file")
    args = parser.parse_args()

    setup_logging(args.log_level, args.log_file)

    if args.html_file:
        return parse_html_file(args.html_file)

    crawler = IGCrawler(config_file=args.config)
    results = crawler.crawl_posts(
        args.post_url,
        max_comments=args.max_comments,
        max_total_comments=args.max_total_comments,
    )

    for result in results:
        print(f"Saved: {result.get('output_path')}")
        print(f"Comments: {result.get('comment_count')} ({result.get('stop_reason')})")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
