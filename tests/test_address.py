"""Tests for harp.core.address — Space address classification and canonical URLs."""
from __future__ import annotations

import dataclasses

import pytest

from harp.core.address import EndpointKind, resolve_address
from harp.errors import AddressError, AddressErrorKind, ExitCode


# ---------------------------------------------------------------------------
# Hosted Spaces: every spelling lands on the same canonical endpoint
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "address, kind",
    [
        ("https://huggingface.co/spaces/hugggof/pitch_shifter", EndpointKind.HUGGINGFACE),
        ("https://huggingface.co/spaces/hugggof/pitch-shifter/", EndpointKind.HUGGINGFACE),
        ("https://hugggof-pitch-shifter.hf.space", EndpointKind.GRADIO),
        ("https://hugggof-pitch-shifter.hf.space/", EndpointKind.GRADIO),
        ("hugggof/pitch_shifter", EndpointKind.HUGGINGFACE),
        ("  hugggof/pitch-shifter\n", EndpointKind.HUGGINGFACE),
    ],
)
def test_hosted_forms_resolve_to_same_endpoint(address: str, kind: EndpointKind) -> None:
    endpoint = resolve_address(address)

    assert endpoint.kind is kind
    assert endpoint.owner_name == "hugggof"
    assert endpoint.repo_name == "pitch-shifter"
    assert endpoint.canonical_url == "https://hugggof-pitch-shifter.hf.space"
    assert endpoint.display_url == "https://huggingface.co/spaces/hugggof/pitch_shifter"
    assert endpoint.space_id == "hugggof/pitch-shifter"
    assert endpoint.is_remote
    assert endpoint.user_input == address


def test_gradio_subdomain_splits_on_first_hyphen() -> None:
    endpoint = resolve_address("https://teamx-vocal-remover-v2.hf.space")

    assert endpoint.owner_name == "teamx"
    assert endpoint.repo_name == "vocal-remover-v2"
    assert endpoint.display_url == "https://huggingface.co/spaces/teamx/vocal_remover_v2"


def test_canonical_url_round_trips_through_resolver() -> None:
    first = resolve_address("hugggof/pitch_shifter")
    again = resolve_address(first.canonical_url)

    assert (again.owner_name, again.repo_name) == (first.owner_name, first.repo_name)
    assert again.canonical_url == first.canonical_url


# ---------------------------------------------------------------------------
# Local / tunnelled apps are used verbatim
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "address",
    [
        "http://localhost:7860",
        "http://localhost:7860/",
        "https://1a2b3c4d5e.gradio.live",
        "http://127.0.0.1:7860",
        "http://192.168.1.20:8080/",
    ],
)
def test_local_addresses_are_verbatim(address: str) -> None:
    endpoint = resolve_address(address)

    assert endpoint.kind is EndpointKind.LOCALHOST
    assert endpoint.canonical_url == address
    assert endpoint.display_url == address
    assert endpoint.owner_name is None
    assert endpoint.space_id is None
    assert not endpoint.is_remote


# ---------------------------------------------------------------------------
# Malformed input
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "address, kind",
    [
        ("https://huggingface.co/spaces/hugggof", AddressErrorKind.MALFORMED_HUGGINGFACE_URL),
        ("https://huggingface.co/spaces/", AddressErrorKind.MALFORMED_HUGGINGFACE_URL),
        ("https://pitchshifter.hf.space", AddressErrorKind.MALFORMED_GRADIO_URL),
        ("a/b/c", AddressErrorKind.MALFORMED_SHORTHAND),
        ("/pitch_shifter", AddressErrorKind.MALFORMED_SHORTHAND),
        ("hugggof/", AddressErrorKind.MALFORMED_SHORTHAND),
        ("https://example.com/spaces/x", AddressErrorKind.UNRECOGNIZED_FORMAT),
        ("pitch_shifter", AddressErrorKind.UNRECOGNIZED_FORMAT),
        ("", AddressErrorKind.UNRECOGNIZED_FORMAT),
    ],
)
def test_malformed_addresses_raise(address: str, kind: AddressErrorKind) -> None:
    with pytest.raises(AddressError) as exc_info:
        resolve_address(address)

    assert exc_info.value.kind is kind
    assert exc_info.value.address == address
    assert exc_info.value.exit_code is ExitCode.USER_ERROR


def test_unrecognized_message_names_the_input() -> None:
    with pytest.raises(AddressError, match="does not match any of the expected patterns"):
        resolve_address("https://nowhere.example.com")


def test_descriptor_is_immutable() -> None:
    endpoint = resolve_address("hugggof/pitch_shifter")

    with pytest.raises(dataclasses.FrozenInstanceError):
        endpoint.canonical_url = "https://elsewhere.hf.space"  # type: ignore[misc]
