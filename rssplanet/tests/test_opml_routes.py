"""
Tests for the /opml/ routes.
"""

import re

import pytest

from rssplanet.option import Option

OPML = b"""<?xml version="1.0" encoding="UTF-8"?>
<opml version="1.0">
  <head><title>Subscriptions</title></head>
  <body>
    <outline text="News">
      <outline text="Example" xmlUrl="https://example.com/feed.xml" htmlUrl="https://example.com/"/>
    </outline>
  </body>
</opml>"""

ID_PATTERN = re.compile(r"ID: ([0-9a-f-]{36})")


def upload(client, mode="rewrite", content=OPML, filename="feeds.opml", key="test-key"):
    return client.post(
        f"/opml/?key={key}",
        data={"mode": mode},
        files={"opml": (filename, content, "text/x-opml")},
    )


def save(client, **kwargs):
    response = upload(client, mode="save", **kwargs)
    assert response.status_code == 200
    return ID_PATTERN.search(response.text).group(1)


class TestOPMLPage:
    def test_key_form_without_key(self, client):
        response = client.get("/opml/")
        assert response.status_code == 200
        assert "Please enter your API Key" in response.text
        assert 'type="file"' not in response.text

    def test_invalid_key_shows_key_form(self, client):
        response = client.get("/opml/?key=wrong")
        assert "Please enter your API Key" in response.text

    def test_upload_form_with_key(self, client):
        response = client.get("/opml/?key=test-key")
        assert response.status_code == 200
        assert "RSS THE PLANET: OPML Rewriter" in response.text
        assert 'name="opml"' in response.text
        assert "No OPML Files Saved." in response.text


class TestOPMLRewrite:
    """Tests for the rewrite-now mode."""

    def test_rewrite_returns_attachment(self, client, codec):
        response = upload(client)
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/x-opml")
        assert response.headers["content-disposition"] == 'attachment; filename="rewritten_feeds.opml"'
        assert "https://example.com/feed.xml" not in response.text
        assert codec.encode_inline("https://example.com/feed.xml", Option.FEED).replace("&", "&amp;") in response.text

    def test_rewrite_requires_key(self, client):
        assert upload(client, key="wrong").status_code == 401

    def test_rewrite_rejects_invalid_xml(self, client):
        response = upload(client, content=b"<opml><body>")
        assert response.status_code == 400
        assert "Invalid OPML/XML format" in response.text

    def test_missing_file(self, client):
        response = client.post("/opml/?key=test-key", data={"mode": "rewrite"})
        assert response.status_code == 400
        assert "No OPML file provided" in response.text

    def test_key_in_form_body(self, client):
        """The key may come from the multipart form instead of the query."""
        response = client.post(
            "/opml/",
            data={"mode": "rewrite", "key": "test-key"},
            files={"opml": ("feeds.opml", OPML, "text/x-opml")},
        )
        assert response.status_code == 200


class TestOPMLStorage:
    """Tests for saved files."""

    def test_save_shows_id_and_count(self, client):
        response = upload(client, mode="save")
        assert response.status_code == 200
        assert "File Saved" in response.text
        assert "1 feed found." in response.text
        assert ID_PATTERN.search(response.text)

    def test_save_rejects_non_opml(self, client):
        response = upload(client, mode="save", content=b"<rss><channel/></rss>")
        assert response.status_code == 400

    def test_saved_file_listed(self, client):
        entry_id = save(client)
        response = client.get("/opml/?key=test-key")
        assert entry_id in response.text
        assert "feeds.opml" in response.text
        assert f"/opml/{entry_id}/convert?key=test-key" in response.text

    def test_download_original(self, client):
        entry_id = save(client)
        response = client.get(f"/opml/{entry_id}/download?key=test-key")
        assert response.status_code == 200
        assert response.content == OPML
        assert response.headers["content-disposition"] == 'attachment; filename="feeds.opml"'

    def test_convert(self, client, codec):
        entry_id = save(client)
        response = client.get(f"/opml/{entry_id}/convert?key=test-key")
        assert response.status_code == 200
        assert response.headers["content-disposition"] == 'attachment; filename="proxied_feeds.opml"'
        assert codec.encode_inline("https://example.com/", Option.AUTO).replace("&", "&amp;") in response.text

    def test_stored_encrypted(self, client, backend):
        entry_id = save(client)
        record = backend._records[entry_id]
        assert record.value.startswith("v1:")
        assert record.metadata == {"name": "feeds.opml", "service": "OPML", "owner": "test-key"}

    def test_other_key_cannot_read(self, client):
        """Files are private to the key that saved them."""
        entry_id = save(client)
        assert client.get(f"/opml/{entry_id}/download?key=other-key").status_code == 404
        assert entry_id not in client.get("/opml/?key=other-key").text

    def test_unknown_id(self, client):
        response = client.get("/opml/does-not-exist/download?key=test-key")
        assert response.status_code == 404
        assert "File not found" in response.text

    def test_delete(self, client):
        entry_id = save(client)
        response = client.get(f"/opml/{entry_id}/delete?key=test-key", follow_redirects=False)
        assert response.status_code == 302
        assert response.headers["location"] == "/opml/?key=test-key"
        assert client.get(f"/opml/{entry_id}/download?key=test-key").status_code == 404

    def test_delete_by_other_key_is_noop(self, client):
        entry_id = save(client)
        client.get(f"/opml/{entry_id}/delete?key=other-key", follow_redirects=False)
        assert client.get(f"/opml/{entry_id}/download?key=test-key").status_code == 200

    @pytest.mark.parametrize("action", ["download", "convert", "delete"])
    def test_actions_require_key(self, client, action):
        assert client.get(f"/opml/some-id/{action}").status_code == 401