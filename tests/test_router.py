from __future__ import annotations

import random

import pytest

from zkwire.core.router import EnsembleRouter
from zkwire.protocol.errors import BadArgumentsError
from zkwire.utils import Endpoint, expected_version, parse_connect_string, parse_endpoint

A = Endpoint("a", 2181)
B = Endpoint("b", 2181)
C = Endpoint("c", 2181)


def _router(**kwargs) -> EnsembleRouter:
    return EnsembleRouter([A, B, C], rng=random.Random(7), **kwargs)


def test_each_cycle_visits_every_member():
    router = _router()
    for _ in range(3):
        assert {router.next() for _ in range(3)} == {A, B, C}


def test_failed_members_move_to_the_back():
    router = _router()
    for _ in range(3):
        router.next()
    router.record_failure(A)
    router.record_failure(B)

    cycle = [router.next() for _ in range(3)]
    assert cycle[0] == C
    assert set(cycle[1:]) == {A, B}

    router.record_success(A)
    assert router.failures(A) == 0
    assert router.failures(B) == 1


def test_no_member_is_ever_excluded():
    router = _router()
    for _ in range(10):
        router.record_failure(A)
        router.record_failure(B)
        router.record_failure(C)
    assert {router.next() for _ in range(3)} == {A, B, C}


def test_backoff_grows_and_is_capped():
    router = _router(base_backoff=0.1, max_backoff=1.0)
    assert router.backoff(A) == 0.0
    router.record_failure(A)
    assert 0.05 <= router.backoff(A) <= 0.1
    for _ in range(100):
        router.record_failure(A)
    assert 0.5 <= router.backoff(A) <= 1.0


def test_update_keeps_surviving_failure_counts():
    router = _router()
    router.record_failure(A)
    router.record_failure(C)
    router.update([A, B, A])
    assert len(router) == 2
    assert router.endpoints == [A, B]
    assert router.failures(A) == 1
    assert router.failures(C) == 0
    with pytest.raises(BadArgumentsError):
        router.update([])


def test_parse_endpoint():
    assert parse_endpoint("zk1") == Endpoint("zk1", 2181)
    assert parse_endpoint(" zk1:2182 ") == Endpoint("zk1", 2182)
    assert parse_endpoint("[::1]:2183") == Endpoint("::1", 2183)
    assert str(Endpoint("::1", 2183)) == "[::1]:2183"
    for bad in ("", ":2181", "zk:abc", "zk:70000", "[::1"):
        with pytest.raises(BadArgumentsError):
            parse_endpoint(bad)


def test_parse_connect_string():
    endpoints, root = parse_connect_string("a:1,b:2/app/prod")
    assert endpoints == [Endpoint("a", 1), Endpoint("b", 2)]
    assert root == "/app/prod"
    assert parse_connect_string("a:1/") == ([Endpoint("a", 1)], None)
    with pytest.raises(BadArgumentsError):
        parse_connect_string("a:1/bad/")
    with pytest.raises(BadArgumentsError):
        parse_connect_string(",/app")


def test_expected_version():
    assert expected_version(None) == -1
    assert expected_version(0) == 0
    assert expected_version(7) == 7
