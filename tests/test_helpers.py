import re

from kanzey.helpers import (
    extract_ticket_id, new_event_id, new_ticket_id, new_transaction_id, to_iso,
)


def test_transaction_id_format():
    txid = new_transaction_id()
    assert re.fullmatch(r"KANZ-\d+-[0-9a-f]{10}", txid)


def test_ticket_id_format():
    tid = new_ticket_id()
    assert re.fullmatch(r"TKT-\d+-[0-9A-F]{8}", tid)


def test_ids_are_unique():
    assert len({new_transaction_id() for _ in range(500)}) == 500
    assert len({new_ticket_id() for _ in range(500)}) == 500
    assert len({new_event_id() for _ in range(500)}) == 500


def test_extract_from_verify_url():
    url = "https://kanzey.co/verify-ticket/TKT-1700000000000-ABCD1234"
    assert extract_ticket_id(url) == "TKT-1700000000000-ABCD1234"


def test_extract_strips_query_and_fragment():
    url = "https://kanzey.co/verify-ticket/TKT-1-AB/?src=qr#top"
    assert extract_ticket_id(url) == "TKT-1-AB"


def test_extract_bare_id():
    assert extract_ticket_id("  TKT-1-AB  ") == "TKT-1-AB"


def test_extract_other_url_with_ticket_segment():
    assert extract_ticket_id("https://x.example/t/TKT-9-FF") == "TKT-9-FF"


def test_extract_rejects_garbage():
    assert extract_ticket_id("") is None
    assert extract_ticket_id(None) is None
    assert extract_ticket_id("hello world") is None
    assert extract_ticket_id("https://x.example/t/12345") is None


def test_to_iso():
    assert to_iso(None) is None
    assert to_iso(0).startswith("1970-01-01T00:00:00")
