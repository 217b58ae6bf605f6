import itertools

from dnssec_exporter.expiry import earliest_signature

from helpers import sig


def test_picks_earliest_expiration():
    sigs = [
        sig("example.org.", "SOA", 2000),
        sig("example.org.", "NS", 1000),
        sig("www.example.org.", "A", 3000),
    ]
    best = earliest_signature(sigs)
    assert best == sig("example.org.", "NS", 1000)


def test_selection_is_permutation_invariant():
    sigs = [
        sig("example.org.", "SOA", 5000),
        sig("example.org.", "NS", 4000),
        sig("www.example.org.", "A", 4000),
        sig("mail.example.org.", "MX", 0),
        sig("example.org.", "DNSKEY", 7000),
    ]
    selected = {earliest_signature(p) for p in itertools.permutations(sigs)}
    assert len(selected) == 1
    (best,) = selected
    assert best.expiration == 4000


def test_zero_expiration_never_wins():
    sigs = [sig("example.org.", "SOA", 0), sig("example.org.", "NS", 9000)]
    assert earliest_signature(sigs) == sig("example.org.", "NS", 9000)
    assert earliest_signature(reversed(sigs)) == sig("example.org.", "NS", 9000)


def test_zero_expiration_alone_is_unset():
    assert earliest_signature([sig("example.org.", "SOA", 0)]) is None


def test_no_signatures_is_unset():
    assert earliest_signature([]) is None
