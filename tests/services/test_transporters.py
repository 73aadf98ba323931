"""Tests for transporter detection and tracking links."""

import pytest

from tracksync.services.transporters import Transporter, determine_transporter, tracking_link


class TestDetermineTransporter:
    """determine_transporter()."""

    @pytest.mark.parametrize(
        "method,expected",
        [
            ("postnord_mypack", Transporter.POSTNORD),
            ("Instabox Express", Transporter.INSTABOX),
            ("bring_home_delivery", Transporter.BRING),
            ("posten_pakke_i_postkassen", Transporter.POSTEN),
            ("HELTHJEM", Transporter.HELTHJEM),
            ("flat_rate", None),
        ],
    )
    def test_detects_from_method(self, method, expected):
        assert determine_transporter(method) is expected

    def test_any_field_matches(self):
        assert determine_transporter("flat_rate:3", None, "Bring Pakke") is Transporter.BRING

    def test_no_fields(self):
        assert determine_transporter() is None
        assert determine_transporter(None, "") is None


class TestTrackingLink:
    """tracking_link()."""

    def test_postnord_embeds_language(self):
        assert tracking_link("AB123", "postnord", "no") == "https://tracking.postnord.com/no/tracking?id=AB123"
        assert tracking_link("AB123", "postnord") == "https://tracking.postnord.com/en/tracking?id=AB123"

    def test_bring_and_posten_english_param(self):
        assert tracking_link("370", "bring") == "https://sporing.bring.no/sporing/370?lang=en"
        assert tracking_link("370", "bring", "nb") == "https://sporing.bring.no/sporing/370"
        assert tracking_link("370", "posten", "en_US") == "https://sporing.posten.no/sporing/370?lang=en"

    def test_instabox_and_helthjem(self):
        assert tracking_link("IB1", "instabox") == "https://track.instabox.io/IB1"
        assert tracking_link("HH1", "helthjem") == "https://helthjem.no/sporing/HH1"

    def test_number_is_escaped(self):
        assert tracking_link("A B/1", "instabox") == "https://track.instabox.io/A+B%2F1"

    @pytest.mark.parametrize(
        "number,method",
        [(None, "bring"), ("", "bring"), ("370", None), ("370", "flat_rate")],
    )
    def test_missing_or_unsupported(self, number, method):
        assert tracking_link(number, method) is None
