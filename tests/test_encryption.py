import unittest

from encryption import decrypt, derive_key, encrypt


class TestEncryption(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        cls.key = derive_key("hunter2", "test-salt")
        cls.other_key = derive_key("hunter3", "test-salt")

    def test_key_derivation_is_deterministic(self) -> None:
        self.assertEqual(derive_key("hunter2", "test-salt"), self.key)
        self.assertNotEqual(self.key, self.other_key)

    def test_ciphertext_hides_plaintext_and_decrypts(self) -> None:
        token = encrypt("Dentist at 3", self.key)
        self.assertNotIn("Dentist", token)
        self.assertEqual(decrypt(token, self.key), "Dentist at 3")

    def test_decrypt_falls_back_to_input(self) -> None:
        token = encrypt("secret", self.key)
        self.assertEqual(decrypt(token, self.other_key), token)
        self.assertEqual(decrypt("legacy plaintext ü", self.key), "legacy plaintext ü")
        self.assertEqual(decrypt(token, None), token)
        self.assertEqual(decrypt(token, "not-a-fernet-key"), token)
        self.assertIsNone(decrypt(None, self.key))
        self.assertEqual(decrypt("", self.key), "")


if __name__ == "__main__":
    unittest.main(verbosity=2)
