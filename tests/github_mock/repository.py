"""Mock GitHub repository serving the environments and secrets API.

Secrets are opened with the private half of the environment key, so tests
can assert on the plaintext GitHub would store.
"""

from __future__ import annotations

import json
from base64 import b64decode
from typing import Any

import httpx
from nacl import encoding, public


class MockGitHubRepository:
    """Stateful stand-in for ``/repos/{owner}/{repo}/environments``.

    Failure injection:
    - ``environment_status`` answers environment PUTs with that status when
      it is 400 or above
    """

    def __init__(self, owner: str = "acme", repo: str = "web") -> None:
        self.owner = owner
        self.repo = repo
        self.private_key = public.PrivateKey.generate()
        self.environments: dict[str, dict[str, Any]] = {}
        self.secrets: dict[tuple[str, str], str] = {}
        self.environment_status = 200
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        parts = request.url.path.strip("/").split("/")
        # repos/{owner}/{repo}/environments/{name}[/secrets/...]
        if len(parts) < 5 or parts[:4] != ["repos", self.owner, self.repo, "environments"]:
            return _not_found()
        name = parts[4]
        rest = parts[5:]

        if not rest and request.method == "PUT":
            if self.environment_status >= 400:
                return httpx.Response(
                    self.environment_status, json={"message": "Validation Failed"}
                )
            self.environments[name] = json.loads(request.content)
            return httpx.Response(200, json={"name": name})

        if name not in self.environments:
            return _not_found()

        if rest == ["secrets", "public-key"] and request.method == "GET":
            key = self.private_key.public_key.encode(encoding.Base64Encoder).decode()
            return httpx.Response(200, json={"key_id": "k1", "key": key})

        if len(rest) == 2 and rest[0] == "secrets" and request.method == "PUT":
            body = json.loads(request.content)
            sealed = b64decode(body["encrypted_value"])
            value = public.SealedBox(self.private_key).decrypt(sealed).decode()
            existed = (name, rest[1]) in self.secrets
            self.secrets[(name, rest[1])] = value
            return httpx.Response(204 if existed else 201)

        return _not_found()

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


def _not_found() -> httpx.Response:
    return httpx.Response(404, json={"message": "Not Found"})
