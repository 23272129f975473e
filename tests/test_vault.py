import pytest

from twofactor.exceptions import EncodingError
from twofactor.mfa.vault import SecretVault, hash_backup_code, normalize_backup_code

SECRET = "3132333435363738393031323334353637383930"


class TestSecretVault:
    def test_round_trip(self, vault: SecretVault) -> None:
        ciphertext = vault.encrypt_secret(SECRET)
        assert SECRET not in ciphertext
        assert vault.decrypt_secret(ciphertext) == SECRET

    def test_fresh_iv_per_encryption(self, vault: SecretVault) -> None:
        assert vault.encrypt_secret(SECRET) != vault.encrypt_secret(SECRET)

    def test_tampered_ciphertext(self, vault: SecretVault) -> None:
        ciphertext = vault.encrypt_secret(SECRET)
        replacement = "A" if ciphertext[20] != "A" else "B"
        tampered = ciphertext[:20] + replacement + ciphertext[21:]

        with pytest.raises(EncodingError):
            vault.decrypt_secret(tampered)

    def test_truncated_ciphertext(self, vault: SecretVault) -> None:
        ciphertext = vault.encrypt_secret(SECRET)
        with pytest.raises(EncodingError):
            vault.decrypt_secret(ciphertext[:-10])

    @pytest.mark.parametrize("garbage", ["", "not-a-token", "ünïcode"])
    def test_garbage(self, vault: SecretVault, garbage: str) -> None:
        with pytest.raises(EncodingError):
            vault.decrypt_secret(garbage)

    def test_other_key_cannot_decrypt(self, vault: SecretVault) -> None:
        other = SecretVault("another-encryption-passphrase", "twofactor-test-salt")
        with pytest.raises(EncodingError):
            other.decrypt_secret(vault.encrypt_secret(SECRET))

    def test_empty_key_rejected(self) -> None:
        with pytest.raises(ValueError):
            SecretVault("", "salt")


class TestBackupCodeHash:
    def test_sha256_hex(self) -> None:
        digest = hash_backup_code("a1b2c3d4")
        assert len(digest) == 64
        assert digest != "a1b2c3d4"

    def test_normalization(self) -> None:
        assert normalize_backup_code("A1B2-C3D4") == "a1b2c3d4"
        assert hash_backup_code("A1B2-C3D4") == hash_backup_code("a1b2c3d4")
        assert hash_backup_code(" a1b2 c3d4 ") == hash_backup_code("a1b2c3d4")

    def test_distinct_codes_distinct_hashes(self) -> None:
        assert hash_backup_code("a1b2c3d4") != hash_backup_code("a1b2c3d5")
