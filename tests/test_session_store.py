"""Tests for the connector-owned session store."""

from dbconnector.core.session import SessionStore


class TestSessionStore:
    """Test token storage keyed by provider."""

    def setup_method(self):
        """Set up test fixtures."""
        self.store = SessionStore()

    def test_token_key(self):
        assert SessionStore.token_key("firebase") == "firebase_token"

    def test_set_get_clear(self):
        self.store.set_token("azure", "key-1")

        assert self.store.get_token("azure") == "key-1"
        assert "azure_token" in self.store
        assert self.store.get("azure_token") == "key-1"

        self.store.clear_token("azure")
        assert self.store.get_token("azure") is None
        assert len(self.store) == 0

    def test_clear_missing_token_is_noop(self):
        self.store.clear_token("supabase")
        assert len(self.store) == 0

    def test_providers_do_not_clobber_each_other(self):
        self.store.set_token("firebase", "fb")
        self.store.set_token("supabase", "sb")
        self.store.clear_token("firebase")

        assert self.store.get_token("supabase") == "sb"
        assert list(self.store.keys()) == ["supabase_token"]

    def test_initial_values_are_copied(self):
        initial = {"azure_token": "k"}
        store = SessionStore(initial)
        store.clear()

        assert initial == {"azure_token": "k"}
        assert len(store) == 0

    def test_refresh_entries(self):
        self.store.set_token("firebase", "id-1")
        self.store.set_refresh("firebase", "refresh-1", 1700000000.5)

        assert self.store.get_refresh("firebase") == "refresh-1"
        assert self.store.get_expiry("firebase") == 1700000000.5
        assert set(self.store.keys()) == {
            "firebase_token", "firebase_refresh_token", "firebase_token_expires_at"
        }

    def test_clear_token_drops_refresh_entries(self):
        self.store.set_token("firebase", "id-1")
        self.store.set_refresh("firebase", "refresh-1", 1.0)
        self.store.set_token("supabase", "sb")

        self.store.clear_token("firebase")

        assert self.store.get_expiry("firebase") is None
        assert list(self.store.keys()) == ["supabase_token"]
