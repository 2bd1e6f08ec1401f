"""Exceptions raised by the MultiPushDrop template and spend validator."""


class MultiPushDropError(Exception):
    """Base class for MultiPushDrop template errors."""


class EmptyCounterpartyList(MultiPushDropError, ValueError):
    """Lock was requested with no counterparties."""


class MalformedScriptStructure(MultiPushDropError, ValueError):
    """Script does not have the MultiPushDrop key/program/field/drop layout."""


class KeyNotFound(MultiPushDropError, LookupError):
    """Signer's derived key is not among the script's locking keys."""


class MissingSigningContext(MultiPushDropError, ValueError):
    """Input lacks the source txid, satoshis or locking script needed to sign."""


class ScriptExecutionError(Exception):
    """Error raised when an error is encountered during script execution."""


class InvalidStackOperation(ScriptExecutionError):
    pass


class InvalidOpcode(ScriptExecutionError):
    pass


class VerifyFailed(ScriptExecutionError):
    pass


class CheckSigVerifyFailed(ScriptExecutionError):
    pass


class CleanStackError(ScriptExecutionError):
    pass


def vert(condition: bool, message: str = '') -> None:
    """Raises MalformedScriptStructure with the given message if the
        condition check fails.
    """
    if condition:
        return
    raise MalformedScriptStructure(message)
