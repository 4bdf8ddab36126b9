"""Error taxonomy shared by the registry, the data client and the HTTP layer.

Every error carries the ``category`` string and HTTP status used in the
``{success: false, error, message}`` envelope.
"""


class PlutoError(Exception):
    category = "internal_error"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(PlutoError):
    category = "validation_error"
    status_code = 400


class UnknownWallet(PlutoError):
    category = "unknown_wallet"
    status_code = 404

    def __init__(self, address: str):
        super().__init__(f"Wallet {address} not found")
        self.address = address


class InvalidKeyMaterial(PlutoError):
    category = "invalid_key_material"
    status_code = 400


class UpstreamServiceFailure(PlutoError):
    category = "upstream_failure"
    status_code = 500


class DataFetchFailed(UpstreamServiceFailure):
    category = "data_fetch_failed"


class UnknownToken(PlutoError):
    category = "unknown_token"
    status_code = 404

    def __init__(self, contract: str):
        super().__init__(f"No ERC-20 token found at {contract}")
        self.contract = contract
