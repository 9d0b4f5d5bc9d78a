import pytest

from studio_scheduler.core.errors import ConfigurationError
from studio_scheduler.services.authorization import (
    CAPABILITIES,
    Operation,
    Principal,
    ResourceKind,
    Role,
    authorize,
    ensure_capabilities_complete,
)


def test_admin_may_do_everything():
    admin = Principal.build("admin")
    for kind in ResourceKind:
        for operation in Operation:
            assert authorize(admin, operation, kind)


def test_trainer_manages_sessions_and_own_profile_only():
    trainer = Principal.build("trainer", 7)
    assert authorize(trainer, Operation.write, ResourceKind.session, 7)
    assert authorize(trainer, Operation.write, ResourceKind.booking, 3)
    assert authorize(trainer, Operation.read, ResourceKind.trainer_profile, 3)
    assert authorize(trainer, Operation.write, ResourceKind.trainer_profile, 7)
    assert not authorize(trainer, Operation.write, ResourceKind.trainer_profile, 3)
    assert not authorize(trainer, Operation.read, ResourceKind.payment)


def test_member_reads_only_own_bookings():
    member = Principal.build("member", 11)
    assert authorize(member, Operation.read, ResourceKind.booking, 11)
    decision = authorize(member, Operation.read, ResourceKind.booking, 12)
    assert not decision
    assert "own" in decision.reason
    assert not authorize(member, Operation.write, ResourceKind.session, 11)


def test_anonymous_is_denied_everything():
    anonymous = Principal.anonymous()
    for kind in ResourceKind:
        for operation in Operation:
            assert not authorize(anonymous, operation, kind)


def test_unknown_role_is_configuration_error():
    with pytest.raises(ConfigurationError):
        Principal.build("janitor")
    with pytest.raises(ConfigurationError):
        authorize(Principal(role="janitor"), Operation.read, ResourceKind.session)


def test_capability_table_covers_every_role(monkeypatch):
    ensure_capabilities_complete()
    trimmed = {role: kinds for role, kinds in CAPABILITIES.items() if role is not Role.member}
    monkeypatch.setattr("studio_scheduler.services.authorization.CAPABILITIES", trimmed)
    with pytest.raises(ConfigurationError):
        ensure_capabilities_complete()
