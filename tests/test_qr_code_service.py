"""
Tests for participant ticket QR payloads and rendering.
"""

import json

from eventgate.services.payload_validator import validate_payload
from eventgate.services.qr_code_service import build_ticket_payload, render_qr_png
from eventgate.utils.result import Ok


class TestTicketPayload:

    def test_payload_fields(self):
        payload = json.loads(build_ticket_payload("E1", "U1", event_title="Youth Summer Camp", user_name="Ada"))

        assert payload["eventId"] == "E1"
        assert payload["userId"] == "U1"
        assert payload["eventTitle"] == "Youth Summer Camp"
        assert payload["userName"] == "Ada"
        assert payload["timestamp"]

    def test_issued_ticket_is_accepted_at_the_door(self):
        result = validate_payload(build_ticket_payload("E1", "U1"), "E1")

        assert isinstance(result, Ok)
        assert result.value.user_id == "U1"


class TestRender:

    def test_render_png(self):
        buf = render_qr_png(build_ticket_payload("E1", "U1"))

        assert buf.read(8) == b"\x89PNG\r\n\x1a\n"
