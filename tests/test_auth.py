import pytest

from resumedb.auth import Role, resolve_principal
from resumedb.config import settings


@pytest.fixture
def member_tokens(monkeypatch):
    monkeypatch.setattr(settings.auth, "member_tokens", {"alice": "alice-token", "bob": "bob-token"})


def test_admin_and_shared_member_tokens():
    admin = resolve_principal("admin-token")
    assert admin.identity == "admin"
    assert admin.is_admin

    member = resolve_principal("member-token")
    assert member.identity == "member"
    assert member.role == Role.MEMBER


def test_member_tokens_carry_their_own_identity(member_tokens):
    assert resolve_principal("alice-token").identity == "alice"
    assert resolve_principal("bob-token").identity == "bob"
    assert resolve_principal("bob-token").role == Role.MEMBER


def test_unknown_token(member_tokens):
    assert resolve_principal("nope") is None
    assert resolve_principal("") is None
