from types import SimpleNamespace

from app.services.visibility import can_modify, can_view, is_elevated


def actor(id, role):
    return SimpleNamespace(id=id, role=role)


def record(visibility, created_by=1):
    return SimpleNamespace(visibility=visibility, created_by=created_by)


def test_public_visible_to_everyone():
    assert can_view(record("public"), actor(9, "student"))


def test_private_visible_to_owner_only():
    assert can_view(record("private"), actor(1, "trainer"))
    assert not can_view(record("private"), actor(2, "trainer"))
    assert not can_view(record("private"), actor(2, "admin"))


def test_shared_visible_to_staff_not_students():
    assert can_view(record("shared"), actor(2, "trainer"))
    assert can_view(record("shared"), actor(3, "admin"))
    assert not can_view(record("shared"), actor(4, "student"))


def test_modify_requires_owner_or_staff():
    assert can_modify(record("private"), actor(1, "student"))
    assert can_modify(record("public"), actor(2, "admin"))
    assert not can_modify(record("public"), actor(5, "student"))


def test_elevated_roles():
    assert is_elevated(actor(1, "trainer"))
    assert is_elevated(actor(1, "admin"))
    assert not is_elevated(actor(1, "student"))
