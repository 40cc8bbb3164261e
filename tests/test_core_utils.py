from ig_crawler import extract_shortcode, limit_comments, parse_timestamp, shortcode_to_media_id, stop_reason_for
from ig_models import Comment, FetchOutcome, ParseResult, Post
from ig_parser import deep_get, pick_first_path


def test_extract_shortcode_supports_post_reel_tv():
    assert extract_shortcode("https://www.instagram.com/p/ABC123xyz/") == "ABC123xyz"
    assert extract_shortcode("https://www.instagram.com/reel/REEL9_-/") == "REEL9_-"
    assert extract_shortcode("https://www.instagram.com/reels/REELS42/") == "REELS42"
    assert extract_shortcode("https://www.instagram.com/tv/TVcode99/?utm_source=test") == "TVcode99"


def test_extract_shortcode_invalid_url_returns_none():
    assert extract_shortcode("https://www.instagram.com/explore/") is None
    assert extract_shortcode("https://example.com/p/ABC123/") is None


def test_shortcode_to_media_id_known_value():
    assert shortcode_to_media_id("ABC123xyz") == "4593314372787"


def test_shortcode_to_media_id_invalid_character_returns_none():
    assert shortcode_to_media_id("BAD:CODE") is None


def test_parse_timestamp_from_unix_seconds():
    assert parse_timestamp(1700000000) == "2023-11-14T22:13:20Z"


def test_parse_timestamp_passes_strings_and_drops_other_types():
    assert parse_timestamp("2025-01-01T00:00:00Z") == "2025-01-01T00:00:00Z"
    assert parse_timestamp(None) is None
    assert parse_timestamp({"ts": 1}) is None


def test_deep_get_walks_dicts_and_list_indexes():
    data = {"items": [{"caption": {"text": "hi"}}]}
    assert deep_get(data, ["items", 0, "caption", "text"]) == "hi"
    assert deep_get(data, ["items", 3]) is None
    assert deep_get(data, ["items", "0"]) is None


def test_pick_first_path_skips_missing_paths():
    data = {"like_count": 0, "edge_liked_by": {}}
    assert pick_first_path(data, [["edge_liked_by", "count"], ["like_count"]]) == 0


def test_limit_comments_dedupes_before_bounding():
    comments = [
        Comment("a", "one"),
        Comment("a", "one"),
        Comment("b", "two"),
        Comment("c", "three"),
    ]
    assert limit_comments(comments, 2) == [Comment("a", "one"), Comment("b", "two")]
    assert len(limit_comments(comments, None)) == 3
    assert len(limit_comments(comments, 0)) == 3
    assert len(limit_comments(comments, -1)) == 3


def test_same_text_from_different_users_is_kept():
    comments = [Comment("a", "nice"), Comment("b", "nice")]
    assert limit_comments(comments, None) == comments


def test_parse_result_is_empty():
    assert ParseResult().is_empty
    assert not ParseResult(post=Post()).is_empty
    assert not ParseResult(comments=[Comment("", "x")]).is_empty


def test_stop_reason_for_outcomes():
    assert stop_reason_for(FetchOutcome(comments=[Comment("a", "b")], strategy="graphql:123")) == "graphql"
    assert stop_reason_for(FetchOutcome(comments=[Comment("a", "b")], strategy="rest")) == "rest"
    assert stop_reason_for(FetchOutcome(blocked=True, exhausted=True)) == "blocked"
    assert stop_reason_for(FetchOutcome(exhausted=True)) == "exhausted"
