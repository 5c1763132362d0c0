import io

import pytest

from tunesnow.core.exceptions import ExtractionError
from tunesnow.services.metadata_extractor import MutagenExtractor, parse_position
from tests.utils.media import flac_bytes, png_bytes


@pytest.mark.parametrize(
    "raw,expected",
    [("3", 3), ("3/12", 3), ("03", 3), (" 7 / 9", 7), ("0", None), ("A", None), (None, None), ("", None)],
)
def test_parse_position(raw, expected):
    assert parse_position(raw) == expected


def test_extracts_vorbis_comments_from_flac():
    data = flac_bytes(
        {
            "title": "  Giant Steps ",
            "artist": "John Coltrane",
            "album": "Giant Steps",
            "tracknumber": "1/7",
            "discnumber": "1",
            "genre": "Jazz; Hard Bop",
            "isrc": "USAT29900609",
        },
        seconds=4,
    )
    md = MutagenExtractor().extract(io.BytesIO(data))

    assert md.title == "Giant Steps"
    assert md.artist == "John Coltrane"
    assert md.album == "Giant Steps"
    assert md.track_number == 1
    assert md.disc_number == 1
    assert md.duration_ms == 4000
    assert md.genres == ["Jazz", "Hard Bop"]
    assert md.natural_key() == "ext:isrc:USAT29900609"


def test_missing_title_is_an_extraction_error():
    data = flac_bytes({"artist": "Nobody"})
    with pytest.raises(ExtractionError, match="title"):
        MutagenExtractor().extract(io.BytesIO(data))


def test_not_audio_is_an_extraction_error():
    with pytest.raises(ExtractionError):
        MutagenExtractor().extract(io.BytesIO(png_bytes(8, 8)))


def test_truncated_container_is_an_extraction_error():
    data = flac_bytes({"title": "x", "artist": "y"})[:20]
    with pytest.raises(ExtractionError):
        MutagenExtractor().extract(io.BytesIO(data))
