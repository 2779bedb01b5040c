"""Classification of request paths for the access gate."""

from __future__ import annotations

import posixpath
from enum import Enum
from typing import Iterable
from urllib.parse import unquote


class RouteClass(str, Enum):
    exempt = "exempt"
    protected = "protected"
    public = "public"


def normalize_path(path: str) -> str:
    """Reduce a request target to the absolute, decoded path it resolves to."""
    path = unquote(path.split("?", 1)[0].split("#", 1)[0])
    return posixpath.normpath("/" + path.lstrip("/"))


def _matches(path: str, prefix: str) -> bool:
    prefix = prefix.rstrip("/")
    return path == prefix or path.startswith(prefix + "/")


class RouteProtection:
    """Decide whether a path needs a granted gate decision.

    Exempt prefixes (webhook receivers) win over protected ones and bypass
    identity and gate checks entirely. Paths are percent-decoded and dot
    segments resolved before matching, so traversal out of an exempt prefix
    lands on the path actually served.
    """

    def __init__(self, protected_prefixes: Iterable[str], exempt_prefixes: Iterable[str]) -> None:
        self._protected = tuple(protected_prefixes)
        self._exempt = tuple(exempt_prefixes)

    def classify(self, path: str) -> RouteClass:
        path = normalize_path(path)
        if any(_matches(path, prefix) for prefix in self._exempt):
            return RouteClass.exempt
        if any(_matches(path, prefix) for prefix in self._protected):
            return RouteClass.protected
        return RouteClass.public
