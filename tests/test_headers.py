import random

from paywall_proxy.models import SitePolicy
from paywall_proxy.core.headers import BASE_HEADERS, REFERERS, USER_AGENTS, build_headers


def test_baseline_without_policy():
    assert build_headers(None) == BASE_HEADERS
    assert build_headers(None)["Connection"] == "keep-alive"


def test_googlebot_and_google_referer():
    policy = SitePolicy(name="G", domain="g.com", user_agent="googlebot", referer="google")
    headers = build_headers(policy)
    assert headers["User-Agent"] == USER_AGENTS["googlebot"]
    assert "Googlebot/2.1" in headers["User-Agent"]
    assert headers["Referer"] == "https://www.google.com/"
    assert "X-Forwarded-For" not in headers


def test_bingbot_and_facebook_referer():
    policy = SitePolicy(name="B", domain="b.com", user_agent="bingbot", referer="facebook")
    headers = build_headers(policy)
    assert "Bingbot/2.0" in headers["User-Agent"]
    assert headers["Referer"] == REFERERS["facebook"]


def test_plain_policy_adds_nothing():
    assert build_headers(SitePolicy(name="P", domain="p.com")) == BASE_HEADERS


def test_forwarded_for_is_a_valid_ipv4():
    policy = SitePolicy(name="R", domain="r.com", random_ip=True)
    for seed in range(50):
        octets = build_headers(policy, random.Random(seed))["X-Forwarded-For"].split(".")
        assert len(octets) == 4
        assert all(0 <= int(o) <= 255 for o in octets)


def test_seeded_rng_is_deterministic():
    policy = SitePolicy(name="R", domain="r.com", random_ip=True, user_agent="googlebot")
    first = build_headers(policy, random.Random(7))
    second = build_headers(policy, random.Random(7))
    assert first == second
