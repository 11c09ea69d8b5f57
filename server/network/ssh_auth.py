"""
SSH authentication policy.

The credential decision is pluggable: a CredentialChecker says yes or no to
a username/password or username/key pair. SSHAuthenticator wraps a checker
with the per-connection limits (failed attempts and total auth requests)
and keeps the bookkeeping in an SSHAuthState, one per connection.
"""

import logging
from dataclasses import dataclass
from typing import Any

from shared.constants import SSH_AUTH_MAX_MESSAGES, SSH_MAX_AUTH_ATTEMPTS
from shared.enums import SSHAuthMethod


logger = logging.getLogger(__name__)


@dataclass
class SSHAuthState:
    """Authentication progress for one SSH connection."""
    username: str | None = None
    method: SSHAuthMethod | None = None
    failed_attempts: int = 0
    messages: int = 0
    authenticated: bool = False


class CredentialChecker:
    """Decides whether a credential is acceptable."""

    name = "base"

    def check_password(self, username: str, password: str) -> bool:
        raise NotImplementedError

    def check_public_key(self, username: str, key: Any) -> bool:
        raise NotImplementedError


class PermissiveCredentialChecker(CredentialChecker):
    """
    Development policy: any non-empty password and any offered key.

    Not suitable for a public deployment.
    """

    name = "permissive"

    def check_password(self, username: str, password: str) -> bool:
        return bool(password)

    def check_public_key(self, username: str, key: Any) -> bool:
        return key is not None


class DenyAllCredentialChecker(CredentialChecker):
    """Refuses every credential; useful to close the SSH door without unbinding it."""

    name = "deny"

    def check_password(self, username: str, password: str) -> bool:
        return False

    def check_public_key(self, username: str, key: Any) -> bool:
        return False


_CHECKERS = {
    PermissiveCredentialChecker.name: PermissiveCredentialChecker,
    DenyAllCredentialChecker.name: DenyAllCredentialChecker,
}


def make_credential_checker(policy: str) -> CredentialChecker:
    """Build the checker named by the SSH_AUTH_POLICY setting."""
    try:
        return _CHECKERS[policy.lower()]()
    except KeyError:
        raise ValueError(
            f"Unknown SSH auth policy '{policy}' (expected one of: {', '.join(sorted(_CHECKERS))})"
        ) from None


class SSHAuthenticator:
    """
    Applies a CredentialChecker under per-connection limits.

    Once a connection has failed max_attempts times, every further attempt
    is denied whatever the credential. Once it has sent max_messages auth
    requests in total, it is exhausted and should be disconnected.
    """

    def __init__(
        self,
        checker: CredentialChecker,
        max_attempts: int = SSH_MAX_AUTH_ATTEMPTS,
        max_messages: int = SSH_AUTH_MAX_MESSAGES
    ):
        self.checker = checker
        self.max_attempts = max_attempts
        self.max_messages = max_messages

    def exhausted(self, auth: SSHAuthState) -> bool:
        """True when the connection may not authenticate any more."""
        if auth.authenticated:
            return False
        return auth.failed_attempts >= self.max_attempts or auth.messages >= self.max_messages

    def _begin(self, auth: SSHAuthState, username: str, method: SSHAuthMethod) -> bool:
        """Count a request. Returns False if the request must be denied outright."""
        auth.messages += 1
        auth.username = username
        auth.method = method
        if auth.messages > self.max_messages:
            logger.warning(f"SSH auth message limit reached for '{username}'")
            return False
        if auth.failed_attempts >= self.max_attempts:
            logger.warning(f"SSH auth attempts exhausted for '{username}'")
            return False
        return True

    def _finish(self, auth: SSHAuthState, accepted: bool) -> bool:
        if accepted:
            self.confirm(auth)
        else:
            auth.failed_attempts += 1
            logger.info(
                f"SSH {auth.method.value} auth failed for '{auth.username}' "
                f"({auth.failed_attempts}/{self.max_attempts})"
            )
        return accepted

    def attempt_none(self, auth: SSHAuthState, username: str) -> bool:
        """The 'none' method is always refused but still counts as a request."""
        auth.messages += 1
        auth.username = username
        return False

    def attempt_password(self, auth: SSHAuthState, username: str, password: str) -> bool:
        if not self._begin(auth, username, SSHAuthMethod.PASSWORD):
            return False
        return self._finish(auth, self.checker.check_password(username, password))

    def attempt_public_key(self, auth: SSHAuthState, username: str, key: Any) -> bool:
        """
        Decide whether a key is acceptable.

        Acceptance does not authenticate the connection: the client still has
        to prove it holds the key, after which confirm() is called.
        """
        if not self._begin(auth, username, SSHAuthMethod.PUBKEY):
            return False
        if not self.checker.check_public_key(username, key):
            return self._finish(auth, False)
        return True

    def confirm(self, auth: SSHAuthState) -> None:
        """Mark the connection authenticated once the transport reports it."""
        if not auth.authenticated:
            auth.authenticated = True
            logger.info(f"SSH user '{auth.username}' authenticated via {auth.method.value}")
