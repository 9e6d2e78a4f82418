"""
Tests for census_atlas.encoding module.
"""

import pytest

from census_atlas.config import EncodingConfig
from census_atlas.encoding import decode_smart, detect_encoding, score_text

HEADER = "KEY_CODE,市区町村コード,町丁字コード,男女,総数\n272110010,27211,0010,総数,120\n"


class TestScoreText:
    """Tests for score_text()."""

    def test_keywords_add_weight(self):
        assert score_text("市区町村コード") == 6.0
        assert score_text("市区町村コード,町丁字コード,地域階層レベル") == 15.0

    def test_replacement_chars_penalized(self):
        text = "KEY_CODE" + "�" * 1000
        assert score_text(text) == pytest.approx(6.0 - 0.5)

    def test_empty_text_scores_below_anything(self):
        assert score_text("") == -1.0
        assert score_text("no keywords here") == 0.0

    def test_custom_keywords(self):
        config = EncodingConfig(keywords=(("店名", 2.0),))
        assert score_text("店名,住所", config) == 2.0


class TestDecodeSmart:
    """Tests for decode_smart() and detect_encoding()."""

    def test_utf8_bytes(self):
        buf = HEADER.encode("utf-8")
        assert decode_smart(buf) == HEADER
        assert detect_encoding(buf) == "utf-8"

    def test_cp932_bytes(self):
        buf = HEADER.encode("cp932")
        assert decode_smart(buf) == HEADER
        assert detect_encoding(buf) == "cp932"

    def test_utf8_bom_removed(self):
        buf = HEADER.encode("utf-8-sig")
        assert decode_smart(buf) == HEADER

    def test_tie_goes_to_utf8(self):
        buf = "abc,def\n1,2\n".encode("ascii")
        assert detect_encoding(buf) == "utf-8"

    def test_cp932_without_keywords_decided_by_replacement_penalty(self):
        buf = "店名,住所\nA亭,茨木市\n".encode("cp932")
        assert detect_encoding(buf) == "cp932"

    def test_empty_bytes(self):
        assert decode_smart(b"") == ""

    def test_logs_choice(self, caplog):
        import logging
        logger = logging.getLogger("test_encoding")
        with caplog.at_level(logging.DEBUG, logger="test_encoding"):
            decode_smart(HEADER.encode("cp932"), logger=logger)
        assert any("cp932" in r.getMessage() for r in caplog.records)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
