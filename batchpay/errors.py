"""Typed failures raised by batchpay. Every error keeps enough context to
diagnose a failed disbursement without re-reading logs."""


class BatchPayError(Exception):
    # set by BatchDisburser: state is FAILED, failed_in is the step that raised
    state = None
    failed_in = None


# ---- caller input ----

class ValidationError(BatchPayError):
    pass


class EmptyRecipientList(ValidationError):
    def __init__(self):
        super().__init__("No recipient addresses provided")


class LengthMismatch(ValidationError):
    def __init__(self, recipients: int, amounts: int):
        self.recipients = recipients
        self.amounts = amounts
        super().__init__(
            f"Recipients and amounts must have the same length "
            f"(recipients={recipients}, amounts={amounts})"
        )


class InvalidAddress(ValidationError):
    def __init__(self, address, index=None):
        self.address = address
        self.index = index
        where = f" at index {index}" if index is not None else ""
        super().__init__(f"Invalid address{where}: {address!r}")


class InvalidAmount(ValidationError):
    def __init__(self, amount, reason: str, index=None):
        self.amount = amount
        self.index = index
        where = f" at index {index}" if index is not None else ""
        super().__init__(f"Invalid amount{where}: {amount!r} ({reason})")


class AmountOverflow(ValidationError):
    def __init__(self, total: int, limit: int):
        self.total = total
        self.limit = limit
        super().__init__(f"Total {total} exceeds uint256 max {limit}")


class InvalidWallet(ValidationError):
    def __init__(self, address, derived, reason=None):
        self.address = address
        self.derived = derived
        if reason is None:
            reason = f"does not match key (derives {derived})"
        super().__init__(f"Stored address {address}: {reason}")


class NotAdmin(ValidationError):
    def __init__(self, address, contract):
        self.address = address
        self.contract = contract
        super().__init__(f"{address} is not an admin of {contract}")


class UnknownNetworkProfile(ValidationError):
    def __init__(self, name, known):
        self.name = name
        self.known = tuple(known)
        super().__init__(f"Unknown gas profile {name!r} (known: {', '.join(self.known)})")


# ---- csv records ----

class RecordError(BatchPayError):
    pass


class MalformedRecord(RecordError):
    def __init__(self, path, line: int, column: str):
        self.path = str(path)
        self.line = line
        self.column = column
        super().__init__(f"{self.path}:{line}: missing column {column!r}")


class SchemaMismatch(RecordError):
    def __init__(self, index: int, expected, found):
        self.index = index
        self.expected = list(expected)
        self.found = list(found)
        super().__init__(f"Row {index} has columns {self.found}, expected {self.expected}")


# ---- wallets ----

class ExhaustedRetries(BatchPayError):
    def __init__(self, max_retries: int, attempts: int):
        self.max_retries = max_retries
        self.attempts = attempts
        super().__init__(
            f"Max retries reached ({max_retries}). Unable to create a clean wallet "
            f"after {attempts} attempts."
        )


# ---- network / chain ----

class NetworkError(BatchPayError):
    def __init__(self, operation: str, cause=None):
        self.operation = operation
        self.cause = cause
        super().__init__(f"RPC call failed during {operation}: {cause!r}")


class ConfirmationTimeout(BatchPayError):
    def __init__(self, tx_hash: str, confirmations: int, timeout: float):
        self.tx_hash = tx_hash
        self.confirmations = confirmations
        self.timeout = timeout
        super().__init__(f"{tx_hash} not confirmed ({confirmations} blocks) within {timeout}s")


class ConfirmationCancelled(BatchPayError):
    def __init__(self, tx_hash: str):
        self.tx_hash = tx_hash
        super().__init__(f"Wait for {tx_hash} was cancelled")


class TransactionFailed(BatchPayError):
    def __init__(self, tx_hash: str, receipt=None, message=None):
        self.tx_hash = tx_hash
        self.receipt = receipt
        super().__init__(message or f"Transaction failed: {tx_hash}")


class TransactionReverted(TransactionFailed):
    def __init__(self, tx_hash: str, receipt=None):
        super().__init__(tx_hash, receipt, f"Transaction reverted: {tx_hash}")


class BalanceMismatch(BatchPayError):
    def __init__(self, address: str, index, expected: int, actual: int):
        self.address = address
        self.index = index
        self.expected = expected
        self.actual = actual
        who = "sender" if index is None else f"recipient {index}"
        super().__init__(
            f"Balance delta mismatch for {who} {address}: expected {expected}, got {actual}"
        )


# ---- configuration ----

class ConfigError(BatchPayError):
    pass
