from types import SimpleNamespace

import fitz

from core import config
from ingestion.vision import VisionDescriber, parse_page_type, vision_enabled


class FakeCompletions:
    def __init__(self, fail_on=()):
        self.fail_on = set(fail_on)
        self.calls = 0

    def create(self, model, messages, max_tokens, temperature):
        self.calls += 1
        url = messages[0]["content"][1]["image_url"]["url"]
        assert url.startswith("data:image/png;base64,")
        if self.calls in self.fail_on:
            raise RuntimeError("upstream 500")
        text = "**Page Type**: Floor Plan\n**Area/Location**: First Floor"
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=text))])


class FakeOpenAI:
    def __init__(self, fail_on=()):
        self.chat = SimpleNamespace(completions=FakeCompletions(fail_on))


def _pdf(pages):
    doc = fitz.open()
    for _ in range(pages):
        doc.new_page()
    data = doc.tobytes()
    doc.close()
    return data


def test_parse_page_type():
    assert parse_page_type("**Page Type**: Electrical Plan\nmore") == "Electrical Plan"
    assert parse_page_type("Page Type: Site Plan") == "Site Plan"
    assert parse_page_type("Elevation looking north") == "Elevation"
    assert parse_page_type("Nothing useful") is None


def test_vision_requires_flag_and_key(monkeypatch):
    monkeypatch.setattr(config.settings, "enable_vision_descriptions", True)
    monkeypatch.setattr(config.settings, "openai_api_key", "")
    assert not vision_enabled()
    monkeypatch.setattr(config.settings, "openai_api_key", "key")
    assert vision_enabled()


def test_failed_pages_become_warnings(monkeypatch):
    monkeypatch.setattr(config.settings, "vision_batch_size", 1)
    monkeypatch.setattr(config.settings, "vision_max_pages", 20)
    describer = VisionDescriber(client=FakeOpenAI(fail_on={2}))

    descriptions, warnings = describer.describe_pages(_pdf(3), [1, 2, 3])

    assert [d.page_number for d in descriptions] == [1, 3]
    assert descriptions[0].page_type == "Floor Plan"
    assert warnings == ["Page 2: upstream 500"]


def test_page_count_is_capped(monkeypatch):
    monkeypatch.setattr(config.settings, "vision_batch_size", 3)
    monkeypatch.setattr(config.settings, "vision_max_pages", 2)
    client = FakeOpenAI()
    descriptions, warnings = VisionDescriber(client=client).describe_pages(_pdf(4), [1, 2, 3, 4])
    assert len(descriptions) == 2
    assert client.chat.completions.calls == 2
    assert warnings == []
