from collections.abc import Generator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

import app as app_module
from paths import downloads_dir, tmp_dir

SOURCE_PAGES = [
    [
        "GRUPO: 10 - TOOLS",
        "12345 WIDGET BLUE 3",
        "22222 HAMMER 1",
        "2 - PAINT",
        "55555 PRIMER 12",
    ]
]
DESTINATION_PAGES = [
    [
        "GRUPO: 10 - TOOLS",
        "22222 HAMMER 4",
        "33333 SAW 2",
    ]
]


@pytest.fixture
def client() -> Generator[TestClient, None, None]:
    with TestClient(app_module.app) as test_client:
        yield test_client


def _pdf_file(path: Path) -> tuple[str, bytes, str]:
    return (path.name, path.read_bytes(), "application/pdf")


def test_healthz(client: TestClient) -> None:
    assert client.get("/healthz").json() == {"status": "ok"}


def test_compare_requires_both_files(client: TestClient, listing_pdf) -> None:
    source = listing_pdf("source.pdf", SOURCE_PAGES)
    resp = client.post("/compare", files={"source": _pdf_file(source)})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Send both files: source and destination"

    resp = client.post("/compare")
    assert resp.status_code == 400


def test_compare_reports_missing_items(client: TestClient, listing_pdf) -> None:
    source = listing_pdf("source.pdf", SOURCE_PAGES)
    destination = listing_pdf("destination.pdf", DESTINATION_PAGES)
    resp = client.post(
        "/compare",
        files={"source": _pdf_file(source), "destination": _pdf_file(destination)},
    )
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["categories"] == ["10 - TOOLS", "2 - PAINT"]
    assert [r["code"] for r in body["missing_at_destination"]["10 - TOOLS"]] == ["12345"]
    assert [r["code"] for r in body["missing_at_source"]["10 - TOOLS"]] == ["33333"]
    assert [r["code"] for r in body["missing_at_destination"]["2 - PAINT"]] == ["55555"]
    assert body["missing_at_source"]["2 - PAINT"] == []
    assert body["destination"]["10 - TOOLS"][0] == {
        "code": "22222",
        "description": "HAMMER",
        "quantity": 4,
        "category": "10 - TOOLS",
    }


def test_compare_leaves_no_temp_files(client: TestClient, listing_pdf) -> None:
    source = listing_pdf("source.pdf", SOURCE_PAGES)
    destination = listing_pdf("destination.pdf", DESTINATION_PAGES)
    client.post(
        "/compare",
        files={"source": _pdf_file(source), "destination": _pdf_file(destination)},
    )
    assert list(tmp_dir().iterdir()) == []


def test_compare_undecodable_pdf_is_processing_failure(client: TestClient, listing_pdf) -> None:
    destination = listing_pdf("destination.pdf", DESTINATION_PAGES)
    resp = client.post(
        "/compare",
        files={
            "source": ("source.pdf", b"definitely not a pdf", "application/pdf"),
            "destination": _pdf_file(destination),
        },
    )
    assert resp.status_code == 500
    assert resp.json()["detail"].startswith("Failed to process PDFs: ")


def test_transfer_pdf_requires_items(client: TestClient) -> None:
    resp = client.post("/transfer-pdf", json={"items": [], "title": "Loja"})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "No items selected"

    resp = client.post("/transfer-pdf", json={})
    assert resp.status_code == 400


def test_transfer_pdf_stores_and_serves_document(client: TestClient) -> None:
    resp = client.post(
        "/transfer-pdf",
        json={
            "title": "Transferência Centro -> Norte",
            "items": [
                {"code": 12345, "description": "WIDGET BLUE", "quantity": "3"},
                {"code": "55555", "description": "PRIMER", "quantity": 12},
            ],
        },
    )
    assert resp.status_code == 200, resp.text
    url = resp.json()["url"]
    assert url.startswith("/downloads/transfer_")
    assert url.endswith(".pdf")

    stored = downloads_dir() / url.rsplit("/", 1)[-1]
    assert stored.exists()

    served = client.get(url)
    assert served.status_code == 200
    assert served.content == stored.read_bytes()
    assert served.content.startswith(b"%PDF")


def test_metrics_exposes_compare_counters(client: TestClient) -> None:
    client.post("/transfer-pdf", json={"items": [{"code": "1", "quantity": 1}]})
    text = client.get("/metrics").text
    assert "stockdiff_compare_requests_total" in text
    assert "stockdiff_transfer_pdfs_total" in text


def test_diagnostics_lists_recent_errors(client: TestClient) -> None:
    client.post(
        "/compare",
        files={
            "source": ("a.pdf", b"junk", "application/pdf"),
            "destination": ("b.pdf", b"junk", "application/pdf"),
        },
    )
    entries = client.get("/diagnostics", params={"limit": 5}).json()["entries"]
    assert entries
    assert entries[0]["level"] == "ERROR"
    assert entries[0]["logger"] == "stockdiff.backend"


def test_transfer_pdf_accepts_item_without_code(client: TestClient) -> None:
    resp = client.post("/transfer-pdf", json={"items": [{"description": "X", "quantity": 1}]})
    assert resp.status_code == 200, resp.text
    assert resp.json()["url"].startswith("/downloads/transfer_")
