"""Space address resolution.

Users type a Space address in one of four forms::

    http://localhost:7860                              (local / tunnelled gradio app)
    https://owner-repo_name.hf.space/                  (gradio app subdomain)
    https://huggingface.co/spaces/owner/repo_name      (huggingface page)
    owner/repo_name                                    (shorthand)

``resolve_address`` classifies the text with ordered rules (first match wins)
and returns an immutable :class:`EndpointDescriptor`.  It never touches the
network and never guesses: anything ambiguous raises :class:`AddressError`.

HuggingFace pages and hf.space subdomains disagree on the repo separator —
the page path uses underscores, the subdomain uses hyphens — so the repo name
is rewritten in both directions when building the canonical URLs.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum

from harp.errors import AddressError, AddressErrorKind

logger = logging.getLogger(__name__)

HUGGINGFACE_SPACES_PREFIX = "https://huggingface.co/spaces/"
HF_SPACE_DOMAIN = ".hf.space"

# Four dot-separated groups, a colon, then a port ("*.*.*.*:*").
_IPV4_WITH_PORT = re.compile(r"[^.\s]+\.[^.\s]+\.[^.\s]+\.[^.:\s]+:\S*")


class EndpointKind(str, Enum):
    LOCALHOST = "localhost"
    HUGGINGFACE = "huggingface"
    GRADIO = "gradio"


@dataclass(frozen=True)
class EndpointDescriptor:
    """Where jobs are sent (``canonical_url``) and what to show the user."""

    kind: EndpointKind
    canonical_url: str
    display_url: str
    owner_name: str | None = None
    repo_name: str | None = None
    user_input: str = ""

    @property
    def is_remote(self) -> bool:
        return self.kind is not EndpointKind.LOCALHOST

    @property
    def space_id(self) -> str | None:
        """``owner/repo`` for hosted Spaces, None for local apps."""
        if self.owner_name and self.repo_name:
            return f"{self.owner_name}/{self.repo_name}"
        return None


def _is_local(address: str) -> bool:
    return (
        "localhost" in address
        or "gradio.live" in address
        or _IPV4_WITH_PORT.search(address) is not None
    )


def _split_huggingface_url(address: str) -> tuple[str, str]:
    path = address.split(HUGGINGFACE_SPACES_PREFIX, 1)[1]
    parts = [p for p in path.split("/") if p]
    if len(parts) < 2:
        raise AddressError(
            AddressErrorKind.MALFORMED_HUGGINGFACE_URL,
            address,
            f"Detected huggingface.co URL but could not parse owner and repo. "
            f"Too few parts in {address}",
        )
    return parts[0], parts[1]


def _split_gradio_url(address: str) -> tuple[str, str]:
    without_scheme = address.split("://", 1)[1] if "://" in address else address
    subdomain = without_scheme.split(HF_SPACE_DOMAIN, 1)[0]
    owner, sep, repo = subdomain.partition("-")
    if not sep or not owner or not repo:
        raise AddressError(
            AddressErrorKind.MALFORMED_GRADIO_URL,
            address,
            f"Detected hf.space URL but could not parse owner and repo. "
            f"No hyphen found in the subdomain: {subdomain}",
        )
    return owner, repo


def _split_shorthand(address: str) -> tuple[str, str]:
    parts = address.split("/")
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise AddressError(
            AddressErrorKind.MALFORMED_SHORTHAND,
            address,
            f"Detected owner/repo address but could not parse owner and repo. "
            f"Too many/few slashes in {address}",
        )
    return parts[0], parts[1]


def resolve_address(address: str) -> EndpointDescriptor:
    """Classify ``address`` and build its canonical endpoint descriptor.

    Raises:
        AddressError: the address is malformed or matches no known form.
    """
    text = address.strip()

    if text and _is_local(text):
        logger.debug("Resolved %r as a local gradio app", text)
        return EndpointDescriptor(
            kind=EndpointKind.LOCALHOST,
            canonical_url=text,
            display_url=text,
            user_input=address,
        )

    if HUGGINGFACE_SPACES_PREFIX in text:
        owner, repo = _split_huggingface_url(text)
        kind = EndpointKind.HUGGINGFACE
    elif "hf.space" in text:
        owner, repo = _split_gradio_url(text)
        kind = EndpointKind.GRADIO
    elif "/" in text and "http" not in text:
        owner, repo = _split_shorthand(text)
        kind = EndpointKind.HUGGINGFACE
    else:
        raise AddressError(
            AddressErrorKind.UNRECOGNIZED_FORMAT,
            address,
            f"Invalid URL: {address}. URL does not match any of the expected patterns.",
        )

    page_repo = repo.replace("-", "_")
    subdomain_repo = page_repo.replace("_", "-")
    descriptor = EndpointDescriptor(
        kind=kind,
        canonical_url=f"https://{owner}-{subdomain_repo}.hf.space",
        display_url=f"{HUGGINGFACE_SPACES_PREFIX}{owner}/{page_repo}",
        owner_name=owner,
        repo_name=subdomain_repo,
        user_input=address,
    )
    logger.debug(
        "Resolved %r: owner=%s repo=%s gradio=%s huggingface=%s",
        address, owner, subdomain_repo, descriptor.canonical_url, descriptor.display_url,
    )
    return descriptor
