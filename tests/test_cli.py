from unittest.mock import Mock

import pytest
import requests

from main import APIClient


def response(status=200, body=None):
    r = Mock()
    r.json = Mock(return_value=body or {})
    if status >= 400:
        r.raise_for_status = Mock(side_effect=requests.HTTPError(f"{status} Server Error"))
    return r


class TestChatHistory:
    def test_successful_turn_is_remembered(self):
        client = APIClient("http://test:3001/")
        client.http = Mock()
        client.http.post = Mock(return_value=response(body={"message": "Done"}))

        assert client.chat("Set exposure to 15") == "Done"
        assert client.messages == [
            {"role": "user", "content": "Set exposure to 15"},
            {"role": "assistant", "content": "Done"},
        ]
        url = client.http.post.call_args.args[0]
        assert url == "http://test:3001/api/chat"

    def test_failed_request_leaves_history_untouched(self):
        client = APIClient("http://test:3001")
        client.messages = [{"role": "user", "content": "hi"}, {"role": "assistant", "content": "hello"}]
        client.http = Mock()
        client.http.post = Mock(return_value=response(status=500))

        with pytest.raises(requests.HTTPError):
            client.chat("Open the dialog")
        assert len(client.messages) == 2

        client.http.post = Mock(return_value=response(body={"message": "Opened"}))
        client.chat("Open the dialog")
        sent = client.http.post.call_args.kwargs["json"]["messages"]
        assert [m["role"] for m in sent] == ["user", "assistant", "user"]

    def test_connection_error_leaves_history_untouched(self):
        client = APIClient("http://test:3001")
        client.http = Mock()
        client.http.post = Mock(side_effect=requests.ConnectionError("refused"))

        with pytest.raises(requests.ConnectionError):
            client.chat("hello")
        assert client.messages == []
