"""Ethereum key material via eth-account."""

from eth_account import Account
from eth_keys import keys as eth_keys

from errors import InvalidKeyMaterial
from models import WalletKeys

# Required to use mnemonic derivation in eth-account
Account.enable_unaudited_hdwallet_features()

# First account on the standard Ethereum path, same as most wallets
DEFAULT_DERIVATION_PATH = "m/44'/60'/0'/0/0"


class EthereumKeyProvider:
    """Generates and derives keypairs. Never logs secrets."""

    def __init__(self, derivation_path: str = DEFAULT_DERIVATION_PATH):
        self.derivation_path = derivation_path

    def generate(self) -> WalletKeys:
        """Fresh 12-word mnemonic and the account derived from it."""
        acct, mnemonic = Account.create_with_mnemonic(
            num_words=12, account_path=self.derivation_path
        )
        return self._to_keys(acct, mnemonic)

    def from_private_key(self, private_key: str) -> WalletKeys:
        key = (private_key or "").strip()
        if not key:
            raise InvalidKeyMaterial("Private key is empty")
        if key[:2].lower() == "0x":
            key = key[2:]
        key = "0x" + key
        try:
            acct = Account.from_key(key)
        except Exception as exc:
            raise InvalidKeyMaterial(
                f"Failed to create wallet from private key: {exc}"
            ) from exc
        return self._to_keys(acct, "")

    def from_mnemonic(self, mnemonic: str) -> WalletKeys:
        phrase = " ".join((mnemonic or "").split())
        if not phrase:
            raise InvalidKeyMaterial("Mnemonic is empty")
        try:
            acct = Account.from_mnemonic(phrase, account_path=self.derivation_path)
        except Exception as exc:
            raise InvalidKeyMaterial(
                f"Failed to create wallet from mnemonic: {exc}"
            ) from exc
        return self._to_keys(acct, phrase)

    @staticmethod
    def _to_keys(acct, mnemonic: str) -> WalletKeys:
        raw = bytes(acct.key)
        # Uncompressed SEC1 form: 0x04 || X || Y
        public = eth_keys.PrivateKey(raw).public_key.to_bytes()
        return WalletKeys(
            address=acct.address,
            public_key="0x04" + public.hex(),
            private_key="0x" + raw.hex(),
            mnemonic=mnemonic,
        )
