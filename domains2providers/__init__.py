"""Build mihomo/Clash rule-provider files from remote lists and domain-list-community."""

__version__ = "1.0.0"
