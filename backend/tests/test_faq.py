import uuid

from sqlalchemy import func, select

from conftest import create_user
from learnhub.db.session import SessionLocal
from learnhub.models.security_audit import SecurityAuditEvent
from learnhub.models.user import UserRole


def _create_entry(client, admin, **payload) -> str:
    payload.setdefault("title", f"Entry {uuid.uuid4().hex[:6]}")
    r = client.post("/admin/faq", json=payload, headers=admin.headers)
    assert r.status_code == 200
    return r.json()["id"]


def _create_group(client, admin, member_ids) -> str:
    r = client.post(
        "/admin/groups",
        json={"name": f"kb_{uuid.uuid4().hex[:8]}", "member_ids": [str(m) for m in member_ids]},
        headers=admin.headers,
    )
    assert r.status_code == 200
    return r.json()["id"]


def _ids(client, headers, **params) -> set:
    r = client.get("/faq", params=params, headers=headers)
    assert r.status_code == 200
    return {i["id"] for i in r.json()["items"]}


def _knowledge_base(client, admin):
    hr = _create_entry(client, admin, title="HR", is_section=True)
    it = _create_entry(client, admin, title="IT", is_section=True)
    vpn = _create_entry(client, admin, title="VPN setup", parent_id=it, pdf_url="https://files.example.com/vpn.pdf")
    sub = _create_entry(client, admin, title="Laptops", parent_id=it, is_section=True)
    deep = _create_entry(client, admin, title="Laptop return", parent_id=sub)
    loose = _create_entry(client, admin, title="Code of conduct")
    return {"hr": hr, "it": it, "vpn": vpn, "sub": sub, "deep": deep, "loose": loose}


def test_everything_is_visible_outside_groups(client):
    admin = create_user(role=UserRole.admin)
    user = create_user()
    kb = _knowledge_base(client, admin)

    top = _ids(client, user.headers)
    assert {kb["hr"], kb["it"], kb["loose"]} <= top
    assert kb["vpn"] not in top

    assert _ids(client, user.headers, section_id=kb["it"]) == {kb["vpn"], kb["sub"]}
    assert _ids(client, user.headers, section_id=kb["sub"]) == {kb["deep"]}

    r = client.get(f"/faq/{kb['vpn']}", headers=user.headers)
    assert r.status_code == 200
    assert r.json()["pdf_url"] == "https://files.example.com/vpn.pdf"
    assert r.json()["parent_id"] == kb["it"]


def test_group_members_see_granted_sections_only(client):
    admin = create_user(role=UserRole.admin)
    member = create_user()
    kb = _knowledge_base(client, admin)
    group_id = _create_group(client, admin, [member.id])

    r = client.post(f"/admin/faq/{kb['it']}/access/{group_id}", headers=admin.headers)
    assert r.status_code == 200
    assert r.json()["created"] is True

    top = _ids(client, member.headers)
    assert {kb["it"], kb["loose"]} <= top
    assert kb["hr"] not in top

    # Nested entries follow their top-level section.
    assert client.get(f"/faq/{kb['deep']}", headers=member.headers).status_code == 200
    assert client.get(f"/faq/{kb['hr']}", headers=member.headers).status_code == 404
    assert client.get("/faq", params={"section_id": kb["hr"]}, headers=member.headers).status_code == 404

    assert kb["hr"] in _ids(client, admin.headers)

    r = client.delete(f"/admin/faq/{kb['it']}/access/{group_id}", headers=admin.headers)
    assert r.json()["deleted"] == 1
    assert kb["it"] not in _ids(client, member.headers)


def test_search_matches_title_and_description(client):
    admin = create_user(role=UserRole.admin)
    user = create_user()
    marker = uuid.uuid4().hex[:10]
    by_title = _create_entry(client, admin, title=f"Expenses {marker}")
    section = _create_entry(client, admin, title="Finance", is_section=True)
    by_description = _create_entry(client, admin, title="Travel", description=f"see {marker.upper()}", parent_id=section)
    _create_entry(client, admin, title="Unrelated")

    assert _ids(client, user.headers, q=marker) == {by_title, by_description}
    assert _ids(client, user.headers, q=marker, section_id=section) == {by_description}


def test_access_is_granted_on_top_level_sections(client):
    admin = create_user(role=UserRole.admin)
    kb = _knowledge_base(client, admin)
    group_id = _create_group(client, admin, [])

    assert client.post(f"/admin/faq/{kb['sub']}/access/{group_id}", headers=admin.headers).status_code == 400
    assert client.post(f"/admin/faq/{kb['loose']}/access/{group_id}", headers=admin.headers).status_code == 400


def test_faq_authoring_is_admin_only(client):
    user = create_user()
    assert client.post("/admin/faq", json={"title": "x"}, headers=user.headers).status_code == 403


def test_parent_must_be_a_section(client):
    admin = create_user(role=UserRole.admin)
    doc = _create_entry(client, admin, title="Plain document")
    r = client.post("/admin/faq", json={"title": "child", "parent_id": doc}, headers=admin.headers)
    assert r.status_code == 400


def test_collaborative_notes(client):
    admin = create_user(role=UserRole.admin)
    author = create_user()
    reader = create_user()
    doc = _create_entry(client, admin, title="Onboarding checklist")

    r = client.post(f"/faq/{doc}/notes", json={"note": "  Bring your badge  "}, headers=author.headers)
    assert r.status_code == 200
    note = r.json()
    assert note["note"] == "Bring your badge"
    assert note["can_edit"] is True

    client.post(f"/faq/{doc}/notes", json={"note": "Parking is on level 2"}, headers=reader.headers)

    r = client.get(f"/faq/{doc}/notes", headers=reader.headers)
    assert r.status_code == 200
    items = r.json()["items"]
    assert {i["note"] for i in items} == {"Bring your badge", "Parking is on level 2"}
    mine = {i["note"]: i["can_edit"] for i in items}
    assert mine == {"Bring your badge": False, "Parking is on level 2": True}

    assert client.patch(f"/faq/notes/{note['id']}", json={"note": "hijack"}, headers=reader.headers).status_code == 403
    assert client.delete(f"/faq/notes/{note['id']}", headers=reader.headers).status_code == 403

    r = client.patch(f"/faq/notes/{note['id']}", json={"note": "Bring your badge and ID"}, headers=author.headers)
    assert r.status_code == 200
    assert r.json()["note"] == "Bring your badge and ID"


def test_admin_can_remove_any_note_and_is_audited(client):
    admin = create_user(role=UserRole.admin)
    author = create_user()
    doc = _create_entry(client, admin)
    note_id = client.post(f"/faq/{doc}/notes", json={"note": "off-topic"}, headers=author.headers).json()["id"]

    assert client.delete(f"/faq/notes/{note_id}", headers=admin.headers).status_code == 200
    assert client.get(f"/faq/{doc}/notes", headers=author.headers).json()["items"] == []

    with SessionLocal() as db:
        n = db.scalar(
            select(func.count(SecurityAuditEvent.id)).where(
                SecurityAuditEvent.actor_user_id == admin.id,
                SecurityAuditEvent.target_user_id == author.id,
                SecurityAuditEvent.event_type == "admin_delete_faq_note",
            )
        )
    assert n == 1


def test_notes_on_hidden_entries_look_missing(client):
    admin = create_user(role=UserRole.admin)
    member = create_user()
    kb = _knowledge_base(client, admin)
    group_id = _create_group(client, admin, [member.id])
    client.post(f"/admin/faq/{kb['it']}/access/{group_id}", headers=admin.headers)

    assert client.post(f"/faq/{kb['hr']}/notes", json={"note": "hi"}, headers=member.headers).status_code == 404
    assert client.get(f"/faq/{kb['hr']}/notes", headers=member.headers).status_code == 404


def test_empty_note_is_rejected(client):
    admin = create_user(role=UserRole.admin)
    user = create_user()
    doc = _create_entry(client, admin)
    assert client.post(f"/faq/{doc}/notes", json={"note": "   "}, headers=user.headers).status_code == 400
    assert client.post(f"/faq/{doc}/notes", json={"note": ""}, headers=user.headers).status_code == 422
