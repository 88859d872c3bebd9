from app.observability.logging import redact_secrets


class TestRedactSecrets:

    def test_masks_credentials(self):
        event = {"event": "manus_request", "api_key": "sk-live", "signature": "abc", "company": "dpm"}
        assert redact_secrets(None, "info", event) == {
            "event": "manus_request", "api_key": "***", "signature": "***", "company": "dpm",
        }

    def test_leaves_empty_values(self):
        assert redact_secrets(None, "info", {"authorization": None}) == {"authorization": None}
