import threading
from io import BytesIO

import pytest
from fastapi import UploadFile

import app as app_module
from paths import tmp_dir


@pytest.mark.asyncio
async def test_extract_pair_parses_both_sides(listing_pdf) -> None:
    source = listing_pdf("source.pdf", [["1 - A", "11111 ALPHA 1", "22222 BETA 2"]])
    destination = listing_pdf("destination.pdf", [["GRUPO: 1 - A", "22222 BETA 5"]])

    src_groups, dst_groups = await app_module.extract_pair(source.read_bytes(), destination.read_bytes())

    assert [r.code for r in src_groups["1 - A"]] == ["11111", "22222"]
    assert [r.code for r in dst_groups["1 - A"]] == ["22222"]
    assert list(tmp_dir().iterdir()) == []


@pytest.mark.asyncio
async def test_extract_pair_propagates_decode_errors(listing_pdf) -> None:
    good = listing_pdf("good.pdf", [["1 - A"]])
    with pytest.raises(Exception):
        await app_module.extract_pair(good.read_bytes(), b"not a pdf")
    assert list(tmp_dir().iterdir()) == []


@pytest.mark.asyncio
async def test_compare_reads_uploads_off_the_event_loop(listing_pdf, monkeypatch: pytest.MonkeyPatch) -> None:
    source = listing_pdf("source.pdf", [["1 - A", "11111 ALPHA 1"]])
    destination = listing_pdf("destination.pdf", [["1 - A", "22222 BETA 2"]])
    loop_thread = threading.get_ident()
    reader_threads: list[int] = []
    real_read_side = app_module._read_side

    def _recording_read_side(side: str, upload: UploadFile) -> bytes:
        reader_threads.append(threading.get_ident())
        return real_read_side(side, upload)

    monkeypatch.setattr(app_module, "_read_side", _recording_read_side)

    result = await app_module.compare(
        source=UploadFile(filename="source.pdf", file=BytesIO(source.read_bytes())),
        destination=UploadFile(filename="destination.pdf", file=BytesIO(destination.read_bytes())),
    )

    assert len(reader_threads) == 2
    assert loop_thread not in reader_threads
    assert [r.code for r in result.missing_at_destination["1 - A"]] == ["11111"]
