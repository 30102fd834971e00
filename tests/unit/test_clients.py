from __future__ import annotations

import base64
import json

import httpx
import pytest

from app.core.constants import MediaStatus
from app.core.errors import UpstreamServiceError
from app.schemas.config import ImageConfig, ScriptConfig, SpeechConfig, VideoConfig
from app.services.clients import (
    IdeaClient,
    ImageClient,
    ScriptClient,
    SpeechClient,
    VideoClient,
    extract_first_json_array,
    map_remote_status,
    parse_llm_text,
    parse_script_segments,
    parse_video_ideas,
)


def test_parse_llm_text_from_choices_message() -> None:
    payload = {"choices": [{"message": {"role": "assistant", "content": "  answer  "}}]}
    assert parse_llm_text(payload) == "answer"


def test_extract_first_json_array_from_fenced_block() -> None:
    text = '```json\n[{"order": 1, "script": "hi", "videoPrompt": "sea"}]\n```'
    assert extract_first_json_array(text) == [{"order": 1, "script": "hi", "videoPrompt": "sea"}]


def test_extract_first_json_array_from_wrapped_object_and_prose() -> None:
    assert extract_first_json_array('{"segments": [{"script": "a"}]}') == [{"script": "a"}]
    assert extract_first_json_array('Sure! Here it is: [{"script": "b"}] enjoy') == [{"script": "b"}]
    with pytest.raises(ValueError):
        extract_first_json_array("no json here")


def test_parse_script_segments_renumbers_and_skips_empty() -> None:
    drafts = parse_script_segments(
        [
            {"order": 7, "script": "one", "videoPrompt": "shot one"},
            {"order": 8, "script": "", "videoPrompt": ""},
            "junk",
            {"order": 9, "script": "two", "video_prompt": "shot two"},
        ]
    )
    assert [(d.order, d.script, d.video_prompt) for d in drafts] == [
        (1, "one", "shot one"),
        (2, "two", "shot two"),
    ]
    with pytest.raises(ValueError):
        parse_script_segments([])


def test_map_remote_status() -> None:
    assert map_remote_status("Completed") == MediaStatus.COMPLETED
    assert map_remote_status("running") == MediaStatus.PROCESSING
    assert map_remote_status("cancelled") == MediaStatus.FAILED
    assert map_remote_status(None) == MediaStatus.PENDING
    assert map_remote_status("mystery") == MediaStatus.PENDING


def test_script_client_posts_chat_completion() -> None:
    seen: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        content = json.dumps([{"order": 1, "script": "hello", "videoPrompt": "sunrise"}])
        return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})

    cfg = ScriptConfig(api_key="sk-test", base_url="https://llm.local/")
    drafts = ScriptClient(cfg, transport=httpx.MockTransport(handler)).generate("Coffee", "", "system rules")

    assert seen["url"] == "https://llm.local/v1/chat/completions"
    assert seen["auth"] == "Bearer sk-test"
    assert seen["body"]["messages"][0] == {"role": "system", "content": "system rules"}
    assert "Coffee" in seen["body"]["messages"][1]["content"]
    assert drafts[0].video_prompt == "sunrise"


def test_script_client_errors_are_upstream_errors() -> None:
    with pytest.raises(UpstreamServiceError):
        ScriptClient(ScriptConfig()).generate("t", "", "s")

    transport = httpx.MockTransport(lambda request: httpx.Response(500, text="down"))
    with pytest.raises(UpstreamServiceError):
        ScriptClient(ScriptConfig(api_key="k"), transport=transport).generate("t", "", "s")

    garbage = httpx.MockTransport(
        lambda request: httpx.Response(200, json={"choices": [{"message": {"content": "sorry"}}]})
    )
    with pytest.raises(UpstreamServiceError):
        ScriptClient(ScriptConfig(api_key="k"), transport=garbage).generate("t", "", "s")


def test_speech_client_returns_audio_bytes() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(200, content=b"ID3data"))
    payload = SpeechClient(SpeechConfig(api_key="k"), transport=transport).synthesize("hello", "nova")
    assert payload.data == b"ID3data"
    assert payload.suffix == ".mp3"
    assert payload.metadata["voice"] == "nova"


def test_image_client_handles_inline_and_hosted_images() -> None:
    encoded = base64.b64encode(b"png-bytes").decode()
    inline = httpx.MockTransport(lambda request: httpx.Response(200, json={"data": [{"b64_json": encoded}]}))
    payload = ImageClient(ImageConfig(api_key="k"), transport=inline).generate("a cat")
    assert payload.data == b"png-bytes"
    assert payload.metadata["aspect_ratio"] == "9:16"

    hosted = httpx.MockTransport(
        lambda request: httpx.Response(200, json={"data": [{"url": "https://cdn/cat.png"}]})
    )
    payload = ImageClient(ImageConfig(api_key="k"), transport=hosted).generate("a cat", aspect_ratio="1:1")
    assert payload.url == "https://cdn/cat.png"
    assert payload.data is None


def test_video_submit_payload_shape() -> None:
    client = VideoClient(VideoConfig(model="kling", version="2.1", default_mode="std"))
    payload = client.build_submit_payload(
        image_url="https://cdn/img.png",
        prompt="slow pan",
        duration=5,
        negative_prompt=None,
        mode=None,
    )
    assert payload["model"] == "kling"
    assert payload["task_type"] == "video_generation"
    assert payload["input"] == {
        "version": "2.1",
        "image_url": "https://cdn/img.png",
        "prompt": "slow pan",
        "duration": 5,
        "mode": "std",
    }


def test_video_client_submit_and_poll() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["X-API-Key"] == "key"
        if request.method == "POST":
            return httpx.Response(200, json={"code": 200, "data": {"task_id": "t-1", "status": "pending"}})
        return httpx.Response(
            200,
            json={
                "data": {
                    "task_id": "t-1",
                    "status": "completed",
                    "output": {"works": [{"video": {"resource_without_watermark": "https://cdn/v.mp4"}}]},
                }
            },
        )

    client = VideoClient(VideoConfig(api_key="key"), transport=httpx.MockTransport(handler))
    submission = client.submit("https://cdn/img.png", "pan", 5)
    assert submission.task_id == "t-1"
    assert submission.status == MediaStatus.PENDING

    state = client.poll("t-1")
    assert state.status == MediaStatus.COMPLETED
    assert state.video_url == "https://cdn/v.mp4"


def test_parse_task_state_reads_error_message() -> None:
    state = VideoClient.parse_task_state(
        "t-2", {"data": {"status": "failed", "error": {"message": "nsfw"}, "progress": "30"}}
    )
    assert state.status == MediaStatus.FAILED
    assert state.error == "nsfw"
    assert state.progress == 30


def test_video_cancel_reports_rejection() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(409, json={"message": "done"}))
    assert VideoClient(VideoConfig(api_key="k"), transport=transport).cancel("t-1") is False


@pytest.mark.parametrize(
    "body",
    [
        {"text": "<html>gateway hiccup</html>"},
        {"json": [{"status": "completed"}]},
    ],
)
def test_unreadable_bodies_are_upstream_errors(body: dict[str, object]) -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(200, **body))

    video = VideoClient(VideoConfig(api_key="k"), transport=transport)
    with pytest.raises(UpstreamServiceError):
        video.poll("t-1")
    with pytest.raises(UpstreamServiceError):
        video.submit("https://cdn/img.png", "pan", 5)
    with pytest.raises(UpstreamServiceError):
        ScriptClient(ScriptConfig(api_key="k"), transport=transport).generate("t", "", "s")
    with pytest.raises(UpstreamServiceError):
        ImageClient(ImageConfig(api_key="k"), transport=transport).generate("a cat")


def test_parse_video_ideas_drops_known_and_repeated_titles() -> None:
    ideas = parse_video_ideas(
        [
            {"title": "The Bloop", "description": "old", "isFactBased": True},
            {"title": "Upsweep", "description": "NOAA recording", "isFactBased": True},
            {"title": "upsweep ", "description": "again"},
            {"title": "", "description": "untitled"},
            "junk",
            {"title": "Skyquakes", "description": "booms", "isFactBased": "false"},
            {"title": "Taos Hum", "description": "hum"},
        ],
        existing_topics=["the bloop"],
        limit=2,
    )
    assert [(i.title, i.is_fact_based) for i in ideas] == [("Upsweep", True), ("Skyquakes", False)]


def test_idea_client_sends_topic_and_existing_titles() -> None:
    seen: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        content = json.dumps(
            {"ideas": [{"title": "Upsweep", "description": "NOAA recording", "isFactBased": True}]}
        )
        return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})

    cfg = ScriptConfig(api_key="sk-test", model="gpt-4o-mini")
    client = IdeaClient(cfg, transport=httpx.MockTransport(handler))
    ideas = client.generate_ideas("mystery sounds", 3, ["The Bloop"], model="gpt-4o")

    body = seen["body"]
    assert body["model"] == "gpt-4o"
    assert "existingTopics" in body["messages"][0]["content"]
    assert json.loads(body["messages"][1]["content"]) == {
        "topic": "mystery sounds",
        "count": 3,
        "existingTopics": ["The Bloop"],
    }
    assert [i.title for i in ideas] == ["Upsweep"]


def test_idea_client_rejects_prose_answer() -> None:
    transport = httpx.MockTransport(
        lambda request: httpx.Response(200, json={"choices": [{"message": {"content": "no ideas today"}}]})
    )
    with pytest.raises(UpstreamServiceError):
        IdeaClient(ScriptConfig(api_key="k"), transport=transport).generate_ideas("sounds", 5, [])
