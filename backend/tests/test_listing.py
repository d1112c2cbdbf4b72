from datetime import datetime, timezone, timedelta
from email.utils import format_datetime

from app.utils.listing import (
    canonicalize_timestamp, iso_z, compute_etag, make_cached_list_response, handle_conditional, respond,
)

TS = datetime(2024, 5, 1, 12, 30, 15, 987654, tzinfo=timezone.utc)


def test_canonicalize_and_iso():
    naive = datetime(2024, 5, 1, 12, 30, 15, 5)
    assert canonicalize_timestamp(naive) == datetime(2024, 5, 1, 12, 30, 15, tzinfo=timezone.utc)
    assert iso_z(TS).endswith('Z')
    assert iso_z(None) is None


def test_etag_changes_with_inputs():
    base = compute_etag(['a', 'b'], 2, 50, 0, '2024')
    assert base == compute_etag(['a', 'b'], 2, 50, 0, '2024')
    assert base != compute_etag(['b', 'a'], 2, 50, 0, '2024')
    assert base != compute_etag(['a', 'b'], 2, 50, 0, '2025')


def test_if_none_match_precedes_if_modified_since(app_instance):
    old = format_datetime(TS - timedelta(days=1), usegmt=True)
    with app_instance.test_request_context(headers={'If-None-Match': '"nope"', 'If-Modified-Since': old}):
        assert handle_conditional('etag1', TS) is None
    with app_instance.test_request_context(headers={'If-None-Match': '"etag1"'}):
        resp = handle_conditional('etag1', TS)
        assert resp.status_code == 304
        assert resp.headers['X-Poll-Interval'] == '30'


def test_if_modified_since_tolerance(app_instance):
    same_second = format_datetime(canonicalize_timestamp(TS), usegmt=True)
    with app_instance.test_request_context(headers={'If-Modified-Since': same_second}):
        assert handle_conditional('x', TS).status_code == 304
    with app_instance.test_request_context(headers={'If-Modified-Since': '2024-05-01T12:30:00Z'}):
        assert handle_conditional('x', TS) is None
    with app_instance.test_request_context(headers={'If-Modified-Since': 'garbage'}):
        assert handle_conditional('x', TS) is None


def test_list_response_and_head(app_instance):
    with app_instance.test_request_context():
        resp, etag = make_cached_list_response([{'id': 1}], 1, 50, 0, TS)
        assert resp.headers['ETag'] == etag
        assert resp.headers['X-Last-Modified-ISO'] == '2024-05-01T12:30:15Z'
        assert resp.get_json()['pagination']['returned'] == 1
        head = respond(resp, etag, TS, head=True)
        assert head.get_data() == b''
