"""Style sheet and markup composition."""

import random

from csswaf.challenge import PermutationChallenge
from csswaf.render import image_url, render_css, render_page, render_status_badge

SID = "AAAAAAAAAAAAAAAAAAAAAA"


def make_plan():
    gen = PermutationChallenge(("A", "B", "C", "D", "E", "F"), ("article",), rng=random.Random(5))
    return gen.issue(3.5)


def test_honeypot_rule_is_unconditional():
    css = render_css(SID, make_plan(), "/_csswaf")
    head, keyframes = css.split("@keyframes csswaf-load", 1)
    assert f"content: url('/_csswaf/img/article?sid={SID}&from=css_content_url');" in head
    assert "article" not in keyframes.split("}\n}", 1)[0]


def test_keyframes_follow_permutation():
    plan = make_plan()
    css = render_css(SID, plan, "/_csswaf")
    positions = []
    for rule in plan.rules:
        line = f"{rule.percent}% {{ content: url('/_csswaf/img/{rule.token}?sid={SID}'); }}"
        assert line in css
        positions.append(css.index(line))
    assert positions == sorted(positions)
    assert "animation: csswaf-load 3.5s" in css


def test_markup_has_no_script_and_reloads():
    page = render_page(SID, make_plan(), "/_csswaf", 5.5)
    assert "<script" not in page
    assert '<meta http-equiv="refresh" content="6">' in page
    assert "Challenge: please wait for 5.5 seconds" in page
    assert "This Challenge is NoJS friendly" in page
    assert f"Session ID: {SID}" in page
    # the honeypot selector must not match anything in the document
    assert 'class="honeypot"' not in page
    assert 'class="csswaf-hidden"' in page


def test_image_url_quotes_values():
    assert image_url("/p", "a b", "x&y") == "/p/img/a%20b?sid=x%26y"


def test_status_badge_swaps_after_status_window():
    css = render_css(SID, make_plan(), "/_csswaf", status_seconds=4.0)
    assert "animation: show-pensive 4.0s steps(1, end) forwards;" in css
    assert "animation: show-mysession 4.0s steps(1, end) forwards;" in css
    assert "0% { opacity: 1; content: url('/_csswaf/res/pensive'); }" in css
    assert f"100% {{ opacity: 1; content: url('/_csswaf/res/sessionstatus?sid={SID}'); }}" in css


def test_markup_has_status_elements():
    page = render_page(SID, make_plan(), "/_csswaf", 5.5)
    assert '<div class="pensive"></div>' in page
    assert '<div class="mysession"></div>' in page


def test_status_badges():
    assert "Verified" in render_status_badge("validated")
    assert "Blocked" in render_status_badge("poisoned")
    assert "No session" in render_status_badge("something-else")
    assert render_status_badge("pending").startswith("<svg")
