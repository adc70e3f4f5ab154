import pytest

from mediaflow.dependencies import (
    extract_media_url,
    extract_transcript,
    iter_tokens,
    make_token,
    parse_token,
    resolve_params,
)
from mediaflow.errors import ExtractionError


class TestTokens:
    """Dependency token format"""

    def test_round_trip(self):
        token = make_token("image", "job2")
        assert token == "_imageJobDependency:job2"
        assert parse_token(token) == ("image", "job2")

    @pytest.mark.parametrize("value", [
        "https://x/a.png",
        "_imageJobDependency:",
        "_textJobDependency:job1",
        None,
        42,
        ["_imageJobDependency:job1"],
    ])
    def test_non_tokens(self, value):
        """Test plain values and malformed tokens are not parsed"""
        assert parse_token(value) is None

    def test_iter_tokens_walks_containers(self):
        value = {
            "layers": [{"media": ["https://x/a.mp4", make_token("video", "job1")]}],
            "background": make_token("image", "job2"),
            "style": "bold",
        }
        assert sorted(iter_tokens(value)) == [("image", "job2"), ("video", "job1")]


class TestExtractMediaUrl:
    """URL extraction from a completed result"""

    @pytest.mark.parametrize("result,expected", [
        ("https://x/raw.mp4", "https://x/raw.mp4"),
        ({"image": "https://x/i.png", "url": "https://x/u.png"}, "https://x/i.png"),
        ({"url": "https://x/u.mp4", "output": "https://x/o.mp4"}, "https://x/u.mp4"),
        ({"output": "https://x/o.mp4"}, "https://x/o.mp4"),
        ({"imageUrl": "https://x/iu.png"}, "https://x/iu.png"),
        ({"outputs": [{"url": "https://x/first.mp4"}, {"url": "https://x/second.mp4"}]}, "https://x/first.mp4"),
    ])
    def test_field_order(self, result, expected):
        assert extract_media_url(result, "job1") == expected

    @pytest.mark.parametrize("result", [None, "", {}, {"outputs": []}, {"url": 5}, ["https://x/a.mp4"]])
    def test_nothing_to_extract(self, result):
        """Test an unusable result raises ExtractionError naming the job"""
        with pytest.raises(ExtractionError, match="dependency job7"):
            extract_media_url(result, "job7")


class TestExtractTranscript:

    def test_list_used_as_is(self):
        chunks = [{"timestamp": [0, 1], "text": "hi"}]
        assert extract_transcript(chunks) is chunks

    def test_fields(self):
        assert extract_transcript({"transcript": [1]}) == [1]
        assert extract_transcript({"chunks": [2]}) == [2]

    def test_missing(self):
        with pytest.raises(ExtractionError):
            extract_transcript({"text": "no chunks"}, "job2")


class TestResolveParams:
    """Token replacement in job params"""

    def test_replaces_tokens(self):
        """Test media and transcript tokens resolve; other values pass through"""
        results = {
            "job1": {"url": "https://x/face.png", "outputs": []},
            "job2": {"transcript": [{"text": "hi"}]},
        }
        params = {
            "image": make_token("image", "job1"),
            "transcript": make_token("transcript", "job2"),
            "style": "bold",
        }
        assert resolve_params(params, results) == {
            "image": "https://x/face.png",
            "transcript": [{"text": "hi"}],
            "style": "bold",
        }

    def test_unresolved_dependency(self):
        """Test a token for a job without a result raises"""
        with pytest.raises(ExtractionError, match="Dependency job3 referenced by 'video'"):
            resolve_params({"video": make_token("video", "job3")}, {})

    def test_nested_tokens(self):
        """Test tokens inside lists and dicts are replaced"""
        params = {
            "background": ["https://x/sky.png", make_token("image", "job1")],
            "layers": [{"media": [make_token("video", "job2")], "placement": "pip"}],
        }
        results = {"job1": {"url": "https://x/beach.png"}, "job2": "https://x/host.mp4"}
        assert resolve_params(params, results) == {
            "background": ["https://x/sky.png", "https://x/beach.png"],
            "layers": [{"media": ["https://x/host.mp4"], "placement": "pip"}],
        }

    def test_nested_unresolved(self):
        with pytest.raises(ExtractionError, match="referenced by 'layers'"):
            resolve_params({"layers": [{"media": make_token("video", "job4")}]}, {})

    def test_does_not_mutate(self):
        params = {"audio": make_token("audio", "job1")}
        resolve_params(params, {"job1": "https://x/a.mp3"})
        assert params == {"audio": "_audioJobDependency:job1"}
