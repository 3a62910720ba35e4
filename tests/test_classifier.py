"""Tests for send outcome classification."""

import errno
import socket

import pytest

from reminder_service.services.classifier import classify
from reminder_service.services.outcomes import DeliveryClass, SendOutcome, error_code_for


def test_success_classifies_as_success() -> None:
    result = classify(SendOutcome.sent("<abc@example.com>"))

    assert result.kind == DeliveryClass.SUCCESS
    assert result.code is None


@pytest.mark.parametrize("status_code", [421, 450, 451, 452])
def test_smtp_temporary_codes_are_transient(status_code: int) -> None:
    result = classify(SendOutcome.failed(status_code=status_code, error_text="try later"))

    assert result.kind == DeliveryClass.TRANSIENT
    assert result.code == f"smtp_{status_code}"


def test_552_is_permanent() -> None:
    result = classify(SendOutcome.failed(status_code=552, error_text="mailbox full"))

    assert result.kind == DeliveryClass.PERMANENT
    assert result.code == "smtp_552"
    assert result.message == "mailbox full"


def test_status_code_wins_over_network_text() -> None:
    outcome = SendOutcome.failed(
        status_code=554,
        error_code="ECONNRESET",
        error_text="socket closed after rejection",
    )

    assert classify(outcome).kind == DeliveryClass.PERMANENT


def test_other_4xx_is_transient() -> None:
    assert classify(SendOutcome.failed(status_code=429)).kind == DeliveryClass.TRANSIENT


def test_permanence_hint_overrides_status_code() -> None:
    transient = classify(SendOutcome.failed(status_code=550, permanent=False))
    permanent = classify(SendOutcome.failed(status_code=421, permanent=True))

    assert transient.kind == DeliveryClass.TRANSIENT
    assert transient.code == "adapter_transient"
    assert permanent.kind == DeliveryClass.PERMANENT
    assert permanent.code == "adapter_permanent"


@pytest.mark.parametrize(
    "error_code", ["ECONNRESET", "ETIMEDOUT", "ECONNREFUSED", "EAI_AGAIN", "ENOTFOUND"]
)
def test_network_codes_are_transient(error_code: str) -> None:
    result = classify(SendOutcome.failed(error_code=error_code, error_text="boom"))

    assert result.kind == DeliveryClass.TRANSIENT
    assert result.code == error_code


def test_network_text_is_transient() -> None:
    result = classify(SendOutcome.failed(error_text="Network is unreachable"))

    assert result.kind == DeliveryClass.TRANSIENT
    assert result.code == "network"


def test_network_signal_beats_recipient_text() -> None:
    outcome = SendOutcome.failed(error_code="ETIMEDOUT", error_text="recipient lookup timed out")

    assert classify(outcome).kind == DeliveryClass.TRANSIENT


@pytest.mark.parametrize(
    "text",
    ["No recipients defined", "EENVELOPE", "invalid address", "Recipient rejected"],
)
def test_recipient_problems_are_permanent(text: str) -> None:
    result = classify(SendOutcome.failed(error_text=text))

    assert result.kind == DeliveryClass.PERMANENT
    assert result.code == "format"


def test_unknown_failure_defaults_to_transient() -> None:
    result = classify(SendOutcome.failed(error_text="something odd"))

    assert result.kind == DeliveryClass.TRANSIENT
    assert result.code == "unknown"


def test_error_code_for_maps_low_level_exceptions() -> None:
    assert error_code_for(TimeoutError("slow")) == "ETIMEDOUT"
    assert error_code_for(ConnectionRefusedError(errno.ECONNREFUSED, "refused")) == "ECONNREFUSED"
    assert error_code_for(socket.gaierror(socket.EAI_AGAIN, "again")) == "EAI_AGAIN"
    assert error_code_for(socket.gaierror(socket.EAI_NONAME, "no name")) == "ENOTFOUND"
    assert error_code_for(ValueError("bad")) == "ValueError"
