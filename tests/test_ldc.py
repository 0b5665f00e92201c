from __future__ import annotations

from unittest import mock

import pytest
import requests

from aim_sample import ldc
from aim_sample.errors import InputReadFailure


def _session(*pages):
    session = mock.MagicMock()
    responses = []
    for page in pages:
        resp = mock.MagicMock()
        resp.json.return_value = page
        responses.append(resp)
    session.get.side_effect = responses
    return session


def test_fetch_pages_until_short_page():
    session = _session(
        [{"rid": 1, "PrimaryKey": "a"}, {"rid": 2, "PrimaryKey": "b"}],
        [{"rid": 3, "PrimaryKey": "c"}],
    )
    df = ldc.fetch_headers(take=2, delay=0, session=session)

    assert df["PrimaryKey"].tolist() == ["a", "b", "c"]
    first, second = session.get.call_args_list
    assert first.args[0] == "https://api.landscapedatacommons.org/api/v1/dataHeader"
    assert first.kwargs["params"] == {"take": 2}
    assert second.kwargs["params"] == {"take": 2, "cursor": 2}
    session.close.assert_not_called()


def test_fetch_network_error():
    session = mock.MagicMock()
    session.get.side_effect = requests.ConnectionError("offline")
    with pytest.raises(InputReadFailure, match="offline"):
        ldc.fetch_headers(delay=0, session=session)


def test_fetch_rejects_non_list_payload():
    session = _session({"error": "bad request"})
    with pytest.raises(InputReadFailure):
        ldc.fetch_headers(delay=0, session=session)


def test_fetch_needs_cursor_to_continue():
    session = _session([{"PrimaryKey": "a"}])
    with pytest.raises(InputReadFailure, match="rid"):
        ldc.fetch_headers(take=1, delay=0, session=session)


def test_unknown_data_type():
    with pytest.raises(ValueError):
        ldc.fetch_ldc("plots", session=mock.MagicMock())
