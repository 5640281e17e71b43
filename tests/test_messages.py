"""
Tests for Request/Response values
"""
import dataclasses
import unittest

from multidict import CIMultiDict

from mockhttp import ConnectionContext, Request, RequestHead, Response


class TestRequest(unittest.TestCase):
    def setUp(self):
        self.request = Request.build(
            "post", "/items?page=2",
            headers=[("Host", "127.0.0.1:8080"), ("Accept", "text/html"),
                     ("accept", "application/json")],
            body=b"payload",
        )

    def test_headers_are_case_insensitive_ordered_multimap(self):
        """Test duplicate headers are kept in order under any case"""
        self.assertEqual(self.request.headers.getall("ACCEPT"),
                         ["text/html", "application/json"])
        self.assertEqual(list(self.request.headers.keys())[0], "Host")

    def test_method_is_normalized(self):
        self.assertEqual(self.request.method, "POST")

    def test_request_is_immutable(self):
        """Test neither the value nor its headers can be mutated in place"""
        with self.assertRaises(dataclasses.FrozenInstanceError):
            self.request.body = b"other"
        with self.assertRaises(dataclasses.FrozenInstanceError):
            self.request.head.uri = "/other"
        with self.assertRaises(TypeError):
            self.request.headers["X-New"] = "1"

    def test_request_is_unhashable(self):
        """Test equal requests compare equal but cannot be hashed"""
        self.assertEqual(self.request, self.request.replace())
        with self.assertRaises(TypeError):
            hash(self.request)
        with self.assertRaises(TypeError):
            hash(self.request.head)

    def test_replace_returns_new_value(self):
        rewritten = self.request.replace(uri="https://example.com/items", body=b"new")
        self.assertEqual(rewritten.uri, "https://example.com/items")
        self.assertEqual(rewritten.body, b"new")
        self.assertEqual(rewritten.method, "POST")
        self.assertEqual(self.request.uri, "/items?page=2")
        self.assertEqual(self.request.body, b"payload")

    def test_replace_headers_accepts_mutable_multidict(self):
        headers = CIMultiDict(self.request.headers)
        headers["X-Extra"] = "1"
        rewritten = self.request.replace(headers=headers)
        headers["X-Later"] = "2"
        self.assertEqual(rewritten.headers["x-extra"], "1")
        self.assertNotIn("X-Later", rewritten.headers)

    def test_replace_rejects_unknown_fields(self):
        with self.assertRaises(TypeError):
            self.request.replace(status=200)

    def test_with_headers_appends_values(self):
        rewritten = self.request.with_headers({"Accept": "text/plain"}, X_Test="1")
        self.assertEqual(rewritten.headers.getall("Accept"),
                         ["text/html", "application/json", "text/plain"])
        self.assertEqual(rewritten.headers["X_Test"], "1")
        self.assertEqual(len(self.request.headers.getall("Accept")), 2)

    def test_url_from_origin_form_target(self):
        url = self.request.url
        self.assertEqual(str(url), "http://127.0.0.1:8080/items?page=2")
        self.assertEqual(url.query["page"], "2")

    def test_url_uses_connection_scheme(self):
        request = self.request.replace(context=ConnectionContext(scheme="https"))
        self.assertEqual(request.url.scheme, "https")

    def test_url_of_absolute_target(self):
        request = self.request.replace(uri="http://origin.test:9000/a?b=c")
        self.assertEqual(request.url.host, "origin.test")
        self.assertEqual(request.url.port, 9000)

    def test_head_equality(self):
        head = RequestHead("GET", "/", headers={"A": "1"})
        self.assertEqual(head, RequestHead("get", "/", headers=[("A", "1")]))

    def test_context_equality_ignores_client(self):
        a = ConnectionContext(connection_id="c1", client=object())
        b = ConnectionContext(connection_id="c1", client=None)
        self.assertEqual(a, b)


class TestResponse(unittest.TestCase):
    def test_defaults(self):
        """Test a fresh response has no status and no body"""
        response = Response()
        self.assertIsNone(response.status)
        self.assertEqual(response.status_code, 200)
        self.assertIsNone(response.body)
        self.assertEqual(len(response.headers), 0)

    def test_headers_are_mutable_multimap(self):
        response = Response(headers={"Set-Cookie": "a=1"})
        response.headers.add("set-cookie", "b=2")
        self.assertEqual(response.headers.getall("Set-Cookie"), ["a=1", "b=2"])

    def test_json_helpers(self):
        response = Response(body=b'{"a": [1, 2]}')
        self.assertEqual(response.json(), {"a": [1, 2]})
        response.set_json({"response": response.json()})
        self.assertEqual(response.json(), {"response": {"a": [1, 2]}})
        self.assertEqual(response.headers["Content-Type"], "application/json")

    def test_json_of_empty_body(self):
        self.assertIsNone(Response().json())

    def test_reset(self):
        response = Response(201, {"X-A": "1"}, b"body")
        response.reset()
        self.assertIsNone(response.status)
        self.assertEqual(len(response.headers), 0)
        self.assertIsNone(response.body)


if __name__ == '__main__':
    unittest.main()
