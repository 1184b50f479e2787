from .common import DEFAULT_PORT, Endpoint, expected_version, parse_connect_string, parse_endpoint

__all__ = ["DEFAULT_PORT", "Endpoint", "expected_version", "parse_connect_string", "parse_endpoint"]
