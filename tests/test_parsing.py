import json

import pytest

from ig_models import Comment, ParseResult, Post
from ig_parser import (
    LoginWallDetected,
    deep_search_comments,
    detect_login_wall,
    extract_dirty_text_comments,
    find_embedded_blobs,
    parse_json_payload,
    parse_response,
    slice_balanced,
)

MEDIA = {
    "id": "3141592653",
    "shortcode": "POST123",
    "taken_at_timestamp": 1700000000,
    "owner": {"id": "42", "username": "shop_owner"},
    "edge_media_to_caption": {"edges": [{"node": {"text": "New drop"}}]},
    "edge_media_preview_like": {"count": 87},
    "edge_media_to_parent_comment": {
        "count": 2,
        "page_info": {"has_next_page": False, "end_cursor": None},
        "edges": [
            {"node": {"id": "1", "text": "DM me the price", "owner": {"username": "buyer1"}}},
            {
                "node": {
                    "id": "2",
                    "text": "Love it ❤",
                    "owner": {"username": "fan"},
                    "edge_threaded_comments": {
                        "edges": [{"node": {"id": "3", "text": "Thanks!", "owner": {"username": "shop_owner"}}}]
                    },
                }
            },
        ],
    },
}

EXPECTED = ParseResult(
    post=Post(
        id="3141592653",
        shortcode="POST123",
        caption="New drop",
        like_count=87,
        comment_count=2,
        timestamp=1700000000,
        owner_username="shop_owner",
    ),
    comments=[
        Comment("buyer1", "DM me the price"),
        Comment("fan", "Love it ❤"),
        Comment("shop_owner", "Thanks!"),
    ],
)

COMMENT_NODE = {"text": "deep comment", "owner": {"username": "digger"}}


def page(body_html, title="Instagram post by shop_owner • Instagram"):
    return f"<html><head><title>{title}</title></head><body>{body_html}</body></html>"


def nest(node, depth):
    for _ in range(depth):
        node = {"child": node}
    return node


def embeddings():
    media = json.dumps(MEDIA)
    return {
        "shared_data": page(
            '<script type="text/javascript">window._sharedData = '
            '{"config": {"viewer": null}, "entry_data": {"PostPage": [{"graphql": {"shortcode_media": %s}}]}};'
            "</script>" % media
        ),
        "next_data": page(
            '<script id="__NEXT_DATA__" type="application/json">'
            '{"props": {"pageProps": {"shortcode_media": %s}}}</script>' % media
        ),
        "additional_data": page(
            "<script>window.__additionalDataLoaded('/p/POST123/',"
            '{"graphql": {"shortcode_media": %s}});</script>' % media
        ),
        "xhr_json": json.dumps({"data": {"shortcode_media": MEDIA}, "status": "ok"}),
        "root_component": page(
            '<script>var bootstrap = {"PolarisPostRootManager": {"graphql": {"shortcode_media": %s}}, '
            '"ready": true};</script>' % media
        ),
    }


@pytest.mark.parametrize("convention", sorted(embeddings()))
def test_same_post_parses_identically_in_every_embedding(convention):
    assert parse_response(embeddings()[convention]) == EXPECTED


def test_nested_relay_payload_found_by_media_search():
    payload = {
        "require": [
            ["ScheduledServerJS", "handle", None, [{"__bbox": {"result": {"data": {"xdt_shortcode_media": MEDIA}}}}]]
        ]
    }
    html = page('<script type="application/json" data-sjs>%s</script>' % json.dumps(payload))
    assert parse_response(html) == EXPECTED


def test_find_embedded_blobs_priority_order():
    html = page(
        '<script>requireLazy(["A"], function(){});</script>'
        '<script type="application/json" data-sjs>{"b": 2}</script>'
        '<script type="application/json" id="__NEXT_DATA__">{"c": 3}</script>'
        '<script>window._sharedData = {"a": 1};</script>'
        '<script>var x = {"SomethingRoot": {"d": 4}};</script>'
    )
    assert find_embedded_blobs(html) == ['{"a": 1}', '{"c": 3}', '{"b": 2}', '["A"]', '{"d": 4}']


def test_slice_balanced_ignores_brackets_inside_strings():
    text = 'window._sharedData = {"t": "a};b", "n": [1, {"x": "]"}]};rest'
    start = text.index("{")
    assert slice_balanced(text, start) == '{"t": "a};b", "n": [1, {"x": "]"}]}'


def test_slice_balanced_rejects_unterminated_and_oversized():
    assert slice_balanced('{"a": [1, 2}', 0) is None
    assert slice_balanced('{"a": "' + "x" * 100 + '"}', 0, max_length=20) is None
    assert slice_balanced("no brace", 0) is None


def test_malformed_candidate_is_skipped():
    html = page(
        "<script>window._sharedData = {not: 'json'};</script>"
        '<script id="__NEXT_DATA__" type="application/json">{"props": {"pageProps": {"shortcode_media": %s}}}</script>'
        % json.dumps(MEDIA)
    )
    assert parse_response(html) == EXPECTED


def test_post_from_first_blob_and_comments_from_later_blob():
    media = {key: value for key, value in MEDIA.items() if key != "edge_media_to_parent_comment"}
    html = page(
        '<script id="__NEXT_DATA__" type="application/json">{"props": {"pageProps": {"shortcode_media": %s}}}</script>'
        '<script>handlePayload({"comments": [{"text": "first!", "user": {"username": "early"}}]});</script>'
        % json.dumps(media)
    )
    result = parse_response(html)
    assert result.post.shortcode == "POST123"
    assert result.post.comment_count is None
    assert result.comments == [Comment("early", "first!")]


def test_post_without_comments_is_returned_without_dirty_text():
    media = {key: value for key, value in MEDIA.items() if key != "edge_media_to_parent_comment"}
    html = page('<script>window._sharedData = {"graphql": {"shortcode_media": %s}};</script>' % json.dumps(media))
    result = parse_response(html)
    assert result.post.caption == "New drop"
    assert result.comments == []


def test_deep_search_within_depth_bound():
    assert deep_search_comments(nest(COMMENT_NODE, 13)) == [Comment("digger", "deep comment")]


def test_deep_search_beyond_depth_bound_returns_nothing():
    assert deep_search_comments(nest(COMMENT_NODE, 20)) == []


def test_deep_search_respects_custom_depth():
    assert deep_search_comments(nest(COMMENT_NODE, 6), max_depth=5) == []
    assert deep_search_comments(nest(COMMENT_NODE, 5), max_depth=5) == [Comment("digger", "deep comment")]


def test_very_deep_non_matching_document_terminates():
    document = nest({"leaf": 1}, 5000)
    assert deep_search_comments(document) == []
    assert parse_json_payload(document) == ParseResult()


def test_comment_node_wins_over_its_edges():
    node = {
        "text": "parent",
        "owner": {"username": "a"},
        "edges": [{"node": {"text": "child", "owner": {"username": "b"}}}],
    }
    assert deep_search_comments(node) == [Comment("a", "parent")]


def test_deep_search_unwraps_edge_connections_under_unknown_keys():
    payload = {
        "payload": {
            "threads": [
                {"comment_list": {"edges": [{"node": {"text": "hello", "user": {"username": "x"}}}]}},
                {"comment_list": {"edges": [{"node": {"text": "hello", "user": {"username": "x"}}}]}},
                {"other": {"text": "hey", "from": {"username": "y"}}},
            ]
        }
    }
    result = parse_json_payload(payload)
    assert result.post is None
    assert result.comments == [Comment("x", "hello"), Comment("y", "hey")]


def test_deep_search_ignores_text_without_username():
    payload = {"items": [{"text": "no owner"}, {"text": "", "user": {"username": "z"}}, {"text": "ok", "user": {}}]}
    assert deep_search_comments(payload) == []


def test_deep_search_merge_ceiling():
    nodes = [{"text": f"comment {index}", "user": {"username": f"u{index}"}} for index in range(30)]
    assert len(deep_search_comments({"bucket": nodes}, limit=10)) == 10
    assert len(deep_search_comments({"bucket": nodes}, limit=None)) == 30


def test_rest_caption_is_not_a_comment():
    payload = {
        "items": [
            {
                "pk": 77,
                "code": "REST1",
                "taken_at": 1700000000,
                "like_count": 5,
                "comment_count": 0,
                "user": {"username": "owner"},
                "caption": {"text": "my caption", "user": {"username": "owner"}},
            }
        ]
    }
    result = parse_json_payload(payload)
    assert result.post == Post(
        id="77",
        shortcode="REST1",
        caption="my caption",
        like_count=5,
        comment_count=0,
        timestamp=1700000000,
        owner_username="owner",
    )
    assert result.comments == []


def test_dirty_html_excludes_ui_boilerplate():
    html = page('<div>"text":"Log In"</div><div>"text":"DM me the price"</div>')
    assert parse_response(html) == ParseResult(comments=[Comment("", "DM me the price")])


def test_dirty_text_unescapes_and_dedupes():
    html = r'"text":"café \"nice\"" "text":"café \"nice\"" "text":"\ud83d\udd25 fire" "text":"a\\b"'
    assert extract_dirty_text_comments(html) == [
        Comment("", 'café "nice"'),
        Comment("", "\U0001f525 fire"),
        Comment("", "a\\b"),
    ]


def test_dirty_text_length_and_boilerplate_filters():
    html = '"text":"%s" "text":"%s" "text":"SIGN UP" "text":"Open in app" "text":"   "' % ("x" * 401, "y" * 400)
    assert extract_dirty_text_comments(html) == [Comment("", "y" * 400)]
    assert extract_dirty_text_comments('"text":"short"', max_length=3) == []


def test_login_wall_title_raises():
    html = page('"text":"hello"', title="Login • Instagram")
    assert detect_login_wall(html)
    with pytest.raises(LoginWallDetected):
        find_embedded_blobs(html)
    with pytest.raises(LoginWallDetected):
        parse_response(html)


def test_post_title_is_not_a_login_wall():
    assert not detect_login_wall(page(""))
    assert not detect_login_wall("<html><body>no title</body></html>")
    assert detect_login_wall(page("", title="Log in &bull; Instagram"))
    assert detect_login_wall(page("", title="Sign up | Instagram"))


def test_account_names_starting_with_login_words_are_not_a_login_wall():
    for title in (
        'Sign Up Deals on Instagram: "new drop"',
        "Login Tips (@logintips) • Instagram photos and videos",
        'signup.co on Instagram: "price?"',
    ):
        html = page('"text":"DM me the price"', title=title)
        assert not detect_login_wall(html)
        assert parse_response(html).comments == [Comment("", "DM me the price")]


def test_empty_body():
    assert parse_response("") == ParseResult()
    assert find_embedded_blobs("") == []
