import pytest

from domains2providers.classify import DISCARD, Classified, classify, strip_known_prefix


@pytest.mark.parametrize(
    "line",
    ["# comment", "", "   ", "regexp:^ad\\.", "localhost", "! adblock header", "payload:"],
)
def test_discarded_lines(line):
    assert classify(line, "domain") is DISCARD


@pytest.mark.parametrize(
    "line, expected",
    [
        ("full:ads.example.com", "ads.example.com"),
        (".example.org", "example.org"),
        ("domain:example.com", "example.com"),
        ("domain:example.com:@cn", "example.com"),
        ("full:www.example.net:@ads", "www.example.net"),
        ("127.0.0.1 tracker.example.com", "tracker.example.com"),
        ("127.0.0.1\tads.example.com", "ads.example.com"),
        ("127.0.0.1  ads.example.com", "ads.example.com"),
        ('- "+.example.com"', "example.com"),
        ("- '+.example.com'", "example.com"),
        ("+.example.com", "example.com"),
        ("  Example.COM  ", "example.com"),
        ("qq.com", "qq.com"),
    ],
)
def test_domain_lines(line, expected):
    assert classify(line, "domain") == Classified("domain", expected)


def test_only_one_prefix_is_stripped():
    # "domain:" wins, the remaining "full:" leaves a colon behind
    assert classify("domain:full:example.com", "domain") is DISCARD
    assert strip_known_prefix("domain:full:example.com") == "full:example.com"


@pytest.mark.parametrize(
    "line",
    ["domain:", "full:", "+.", ".", "keyword:google", "0.0.0.0 ads.example.com", '"'],
)
def test_domain_lines_that_become_empty_or_invalid(line):
    assert classify(line, "domain") is DISCARD


def test_localhost_in_hosts_line_is_discarded():
    assert classify("127.0.0.1 localhost", "domain") is DISCARD


def test_ipcidr_passthrough():
    assert classify("192.168.0.0/16", "ipcidr") == Classified("ipcidr", "192.168.0.0/16")
    assert classify("  10.0.0.0/8 ", "ipcidr").value == "10.0.0.0/8"


@pytest.mark.parametrize("line", ["2001:db8::/32", "1.2.3.0/24:@cn", "# 1.1.1.1", ""])
def test_ipcidr_discards(line):
    assert classify(line, "ipcidr") is DISCARD


def test_unknown_behavior():
    with pytest.raises(ValueError):
        classify("example.com", "classical")


def test_loopback_prefix_needs_whitespace():
    assert strip_known_prefix("127.0.0.1\t\tads.example.com") == "ads.example.com"
    assert strip_known_prefix("127.0.0.1.example.com") == "127.0.0.1.example.com"
