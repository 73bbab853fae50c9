import fitz
import pytest
from azure.core.exceptions import HttpResponseError

from ingestion.di_client import OCRClient, pages_from_result


class FakePoller:
    def __init__(self, result):
        self._result = result

    def result(self):
        return self._result


class FakeDIClient:
    def __init__(self, reject_types=(), reject_first_images=0):
        self.reject_types = set(reject_types)
        self.reject_first_images = reject_first_images
        self.calls = []

    def begin_analyze_document(self, model_id, body, content_type):
        self.calls.append(content_type)
        if content_type in self.reject_types:
            raise HttpResponseError(message="(InvalidContentLength) The input image is too large.")
        if content_type == "image/png" and self.reject_first_images > 0:
            self.reject_first_images -= 1
            raise HttpResponseError(message="InvalidContentLength")
        return FakePoller(
            {
                "pages": [
                    {
                        "pageNumber": 1,
                        "lines": [
                            {"content": "PANEL LP-1", "polygon": [10, 20, 110, 20, 110, 40, 10, 40]},
                            {"content": "42 RECEPTACLES"},
                        ],
                    }
                ]
            }
        )


def _pdf(pages=1):
    doc = fitz.open()
    for _ in range(pages):
        doc.new_page()
    data = doc.tobytes()
    doc.close()
    return data


def test_pages_from_result_builds_text_items():
    pages = OCRClient(client=FakeDIClient()).extract_pages(_pdf())
    assert pages[0].page_number == 1
    assert pages[0].text == "PANEL LP-1\n42 RECEPTACLES"
    item = pages[0].source_text_items[0]
    assert (item.x, item.y, item.width, item.height) == (10.0, 20.0, 100.0, 20.0)


def test_blank_pages_are_skipped():
    assert pages_from_result({"pages": [{"pageNumber": 1, "lines": []}]}) == []


def test_oversized_document_falls_back_to_page_images():
    client = FakeDIClient(reject_types={"application/pdf"}, reject_first_images=2)
    pages = OCRClient(client=client).extract_pages(_pdf(pages=2))
    assert [page.page_number for page in pages] == [1, 2]
    assert client.calls.count("image/png") == 4


def test_other_errors_propagate():
    class BrokenClient(FakeDIClient):
        def begin_analyze_document(self, model_id, body, content_type):
            raise HttpResponseError(message="(Unauthorized) bad key")

    with pytest.raises(HttpResponseError):
        OCRClient(client=BrokenClient()).extract_pages(_pdf())
