import json
import tempfile
import unittest
from pathlib import Path

from s3_ufs.profiles import DEFAULT_REGION, ConnectionProfile, ProfileStorage


class FakeKeychain:
    def __init__(self):
        self.secrets = {}
        self.set_calls = []
        self.delete_calls = []

    def get_secret(self, profile_name: str) -> str:
        return self.secrets.get(profile_name, "")

    def set_secret(self, profile_name: str, secret_key: str) -> None:
        self.set_calls.append((profile_name, secret_key))
        self.secrets[profile_name] = secret_key

    def delete_secret(self, profile_name: str) -> None:
        self.delete_calls.append(profile_name)
        self.secrets.pop(profile_name, None)


class ProfileStorageTests(unittest.TestCase):
    def test_load_migrates_plaintext_secrets(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "connections.json"
            payload = [
                {
                    "name": "alpha",
                    "endpoint_url": "https://one",
                    "access_key": "a",
                    "secret_key": "secret",
                }
            ]
            path.write_text(json.dumps(payload), encoding="utf-8")
            fake_keychain = FakeKeychain()
            storage = ProfileStorage(path, keychain=fake_keychain)

            profiles = storage.load()

            self.assertEqual("secret", profiles[0].secret_key)
            self.assertEqual(DEFAULT_REGION, profiles[0].region)
            self.assertEqual([("alpha", "secret")], fake_keychain.set_calls)
            sanitized = json.loads(path.read_text(encoding="utf-8"))
            self.assertNotIn("secret_key", sanitized[0])

    def test_load_uses_keychain_when_secret_missing(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "connections.json"
            payload = [
                {
                    "name": "alpha",
                    "endpoint_url": "https://one",
                    "access_key": "a",
                    "region": "eu-west-1",
                }
            ]
            path.write_text(json.dumps(payload), encoding="utf-8")
            fake_keychain = FakeKeychain()
            fake_keychain.secrets["alpha"] = "stored-secret"
            storage = ProfileStorage(path, keychain=fake_keychain)

            profiles = storage.load()

            self.assertEqual("stored-secret", profiles[0].secret_key)
            self.assertEqual("eu-west-1", profiles[0].region)
            self.assertEqual([], fake_keychain.set_calls)

    def test_load_skips_incomplete_entries(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "connections.json"
            payload = [
                {"name": "broken"},
                "not-a-profile",
                {"name": "ok", "endpoint_url": "https://one", "access_key": "a"},
            ]
            path.write_text(json.dumps(payload), encoding="utf-8")
            storage = ProfileStorage(path, keychain=FakeKeychain())

            self.assertEqual(["ok"], [profile.name for profile in storage.load()])

    def test_get_by_name(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "connections.json"
            payload = [{"name": "alpha", "endpoint_url": "https://one", "access_key": "a"}]
            path.write_text(json.dumps(payload), encoding="utf-8")
            storage = ProfileStorage(path, keychain=FakeKeychain())

            self.assertEqual("https://one", storage.get("alpha").endpoint_url)
            with self.assertRaises(ValueError):
                storage.get("missing")

    def test_save_deletes_removed_keychain_entries(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "connections.json"
            payload = [
                {"name": "alpha", "endpoint_url": "https://one", "access_key": "a"},
                {"name": "beta", "endpoint_url": "https://two", "access_key": "b"},
            ]
            path.write_text(json.dumps(payload), encoding="utf-8")
            fake_keychain = FakeKeychain()
            storage = ProfileStorage(path, keychain=fake_keychain)

            profiles = [
                ConnectionProfile(name="alpha", endpoint_url="https://one", access_key="a", secret_key="secret"),
            ]
            storage.save(profiles)

            self.assertEqual(["beta"], fake_keychain.delete_calls)
            self.assertEqual([("alpha", "secret")], fake_keychain.set_calls)
            saved = json.loads(path.read_text(encoding="utf-8"))
            self.assertEqual(["alpha"], [entry["name"] for entry in saved])
            self.assertNotIn("secret_key", saved[0])


if __name__ == "__main__":
    unittest.main()
