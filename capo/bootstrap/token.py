"""Bootstrap credential issuer.

Mints a cluster bootstrap token (``<id>.<secret>``) for a node that joins
without a pre-baked identity, and stores it as a short-lived secret in the
bootstrap-token format understood by the cluster's token authenticator.
"""

from __future__ import annotations

import re
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Final

from loguru import logger

from capo.api.model import Secret
from capo.api.ports import SecretStore
from capo.core.exceptions import TokenIssueError

log = logger.bind(component="bootstrap-token")

TOKEN_SECRET_TYPE: Final = "bootstrap.kubernetes.io/token"
TOKEN_SECRET_PREFIX: Final = "bootstrap-token-"
TOKEN_ID_KEY: Final = "token-id"
TOKEN_SECRET_KEY: Final = "token-secret"
EXPIRATION_KEY: Final = "expiration"
DEFAULT_EXTRA_GROUPS: Final = "system:bootstrappers:kubeadm:default-node-token"

_ALPHABET: Final = "abcdefghijklmnopqrstuvwxyz0123456789"
TOKEN_PATTERN: Final = re.compile(r"^([a-z0-9]{6})\.([a-z0-9]{16})$")


@dataclass(frozen=True, slots=True)
class BootstrapToken:
    id: str
    secret: str
    expiration: datetime

    def __str__(self) -> str:
        return f"{self.id}.{self.secret}"


def _random_string(length: int) -> str:
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def generate_token(ttl: timedelta, *, now: datetime | None = None) -> BootstrapToken:
    """Generate a fresh token pair expiring ``ttl`` after ``now`` (UTC)."""
    issued = now or datetime.now(UTC)
    return BootstrapToken(
        id=_random_string(6),
        secret=_random_string(16),
        expiration=issued + ttl,
    )


def token_secret(token: BootstrapToken, namespace: str) -> Secret:
    """Build the secret record that backs ``token``."""
    expiration = token.expiration.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")
    data = {
        TOKEN_ID_KEY: token.id,
        TOKEN_SECRET_KEY: token.secret,
        EXPIRATION_KEY: expiration,
        "usage-bootstrap-authentication": "true",
        "usage-bootstrap-signing": "true",
        "auth-extra-groups": DEFAULT_EXTRA_GROUPS,
        "description": "Bootstrap token minted for a joining machine",
    }
    return Secret(
        name=f"{TOKEN_SECRET_PREFIX}{token.id}",
        namespace=namespace,
        data={k: v.encode() for k, v in data.items()},
        type=TOKEN_SECRET_TYPE,
    )


class TokenIssuer:
    """Mints and persists bootstrap tokens.

    Args:
        store: Store the token secret is created in.
        ttl: Token lifetime.
        namespace: Namespace for token secrets.
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        store: SecretStore,
        ttl: timedelta,
        namespace: str,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._ttl = ttl
        self._namespace = namespace
        self._clock = clock or (lambda: datetime.now(UTC))

    async def issue(self) -> str:
        """Mint a token, store its secret, and return ``<id>.<secret>``.

        Raises:
            TokenIssueError: If generation or persistence fails.
        """
        try:
            token = generate_token(self._ttl, now=self._clock())
            record = token_secret(token, self._namespace)
        except Exception as e:
            raise TokenIssueError(f"unable to generate bootstrap token: {e}") from e

        try:
            stored = await self._store.create_secret(record)
        except Exception as e:
            raise TokenIssueError(f"unable to store bootstrap token secret: {e}") from e

        log.info(
            "Issued bootstrap token {id} expiring {exp}",
            id=token.id, exp=record.data[EXPIRATION_KEY].decode(),
        )
        return f"{stored.data[TOKEN_ID_KEY].decode()}.{stored.data[TOKEN_SECRET_KEY].decode()}"
