import asyncio
import io
from concurrent.futures import ThreadPoolExecutor

import pytest
from openpyxl import load_workbook

from app.core.config import settings
from app.services.mapping_engine import ExportFormat, ExportInProgressError, SourceDataset
from app.services.mapping_session import mapping_session_service


BASE = "/api/mapping"

SOURCE_CSV = (
    "Full Name,Mail,Country\n"
    "Ana,ana@x.sk,SK\n"
    "Petr,petr@x.cz,CZ\n"
    "Ján,jan@x.sk,SK\n"
).encode("utf-8")


def upload(client, session_id, kind, content, filename):
    return client.post(
        f"{BASE}/sessions/{session_id}/{kind}",
        files={"file": (filename, content, "application/octet-stream")},
    )


@pytest.fixture
def session_id(client):
    response = client.post(f"{BASE}/sessions")
    assert response.status_code == 201
    return response.json()["session_id"]


@pytest.fixture
def loaded_session(client, session_id):
    assert upload(client, session_id, "target", b"Name,Email\n", "target.csv").status_code == 200
    assert upload(client, session_id, "source", SOURCE_CSV, "source.csv").status_code == 200
    return session_id


def assign_source(client, session_id, target, source_header):
    return client.put(
        f"{BASE}/sessions/{session_id}/assignments/source",
        json={"target": target, "source_header": source_header},
    )


def assign_literal(client, session_id, target, value):
    return client.put(
        f"{BASE}/sessions/{session_id}/assignments/literal",
        json={"target": target, "value": value},
    )


def assignment(state, target):
    return next(a for a in state["assignments"] if a["target"] == target)


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_unknown_session(client):
    assert client.get(f"{BASE}/sessions/nope").status_code == 404


def test_upload_populates_state(client, loaded_session):
    state = client.get(f"{BASE}/sessions/{loaded_session}").json()

    assert state["target_headers"] == ["Name", "Email"]
    assert state["source_headers"] == ["Full Name", "Mail", "Country"]
    assert state["total_rows"] == 3
    assert state["filtered_rows"] == 3
    assert state["has_mappings"] is False
    assert state["restored_from_cache"] is False
    assert [a["kind"] for a in state["assignments"]] == ["unassigned", "unassigned"]


def test_malformed_target_keeps_previous_state(client, loaded_session):
    assign_source(client, loaded_session, "Name", "Full Name")

    response = upload(client, loaded_session, "target", b"", "target.csv")

    assert response.status_code == 400
    state = client.get(f"{BASE}/sessions/{loaded_session}").json()
    assert state["target_headers"] == ["Name", "Email"]
    assert assignment(state, "Name")["source_header"] == "Full Name"


def test_unsupported_upload(client, session_id):
    response = upload(client, session_id, "target", b"Name", "target.txt")
    assert response.status_code == 400


def test_assignment_before_target_upload(client, session_id):
    assert assign_source(client, session_id, "Name", "Full Name").status_code == 400


def test_duplicate_source_assignment_is_ignored(client, loaded_session):
    assign_source(client, loaded_session, "Name", "Full Name")

    response = assign_source(client, loaded_session, "Email", "Full Name")

    assert response.status_code == 200
    state = response.json()
    assert assignment(state, "Name")["source_header"] == "Full Name"
    assert assignment(state, "Email")["kind"] == "unassigned"


def test_literal_replaces_source_mapping(client, loaded_session):
    assign_source(client, loaded_session, "Email", "Mail")

    state = assign_literal(client, loaded_session, "Email", "  n/a  ").json()

    email = assignment(state, "Email")
    assert email["kind"] == "literal"
    assert email["literal_value"] == "n/a"
    assert email["source_header"] is None


def test_clear_assignment(client, loaded_session):
    assign_source(client, loaded_session, "Name", "Full Name")

    response = client.delete(f"{BASE}/sessions/{loaded_session}/assignments", params={"target": "Name"})

    assert response.status_code == 200
    assert response.json()["has_mappings"] is False


def test_source_field_search(client, loaded_session):
    assign_source(client, loaded_session, "Name", "Full Name")

    fields = client.get(f"{BASE}/sessions/{loaded_session}/source/fields").json()
    assert fields == [
        {"header": "Full Name", "mapped": True},
        {"header": "Mail", "mapped": False},
        {"header": "Country", "mapped": False},
    ]

    fields = client.get(f"{BASE}/sessions/{loaded_session}/source/fields", params={"q": "MAIL"}).json()
    assert [f["header"] for f in fields] == ["Mail"]


def test_saved_configuration_is_restored_for_same_target(client, loaded_session):
    assign_source(client, loaded_session, "Name", "Full Name")
    assign_literal(client, loaded_session, "Email", "n/a")

    other = client.post(f"{BASE}/sessions").json()["session_id"]
    state = upload(client, other, "target", b"Name,Email\n", "again.csv").json()

    assert state["restored_from_cache"] is True
    assert assignment(state, "Name")["source_header"] == "Full Name"
    assert assignment(state, "Email")["literal_value"] == "n/a"


def test_saved_configuration_is_not_applied_to_other_target(client, loaded_session):
    assign_source(client, loaded_session, "Name", "Full Name")

    other = client.post(f"{BASE}/sessions").json()["session_id"]
    state = upload(client, other, "target", b"Email,Name\n", "reordered.csv").json()

    assert state["restored_from_cache"] is False
    assert all(a["kind"] == "unassigned" for a in state["assignments"])


def test_loading_another_target_replaces_saved_configuration(client, session_id):
    upload(client, session_id, "target", b"A\n", "t1.csv")
    assign_literal(client, session_id, "A", "x")
    upload(client, session_id, "target", b"B\n", "t2.csv")

    state = upload(client, session_id, "target", b"A\n", "t1.csv").json()

    assert state["restored_from_cache"] is False
    assert assignment(state, "A")["kind"] == "unassigned"


def test_concurrent_filter_additions_get_distinct_ids(client, loaded_session):
    def add(_):
        return client.post(f"{BASE}/sessions/{loaded_session}/filters").json()["id"]

    with ThreadPoolExecutor(max_workers=8) as pool:
        ids = list(pool.map(add, range(20)))

    assert len(set(ids)) == 20
    state = client.get(f"{BASE}/sessions/{loaded_session}").json()
    assert sorted(rule["id"] for rule in state["filters"]) == sorted(ids)


def test_filter_workflow(client, loaded_session):
    rule = client.post(f"{BASE}/sessions/{loaded_session}/filters").json()
    assert rule["is_active"] is False

    rule = client.put(
        f"{BASE}/sessions/{loaded_session}/filters/{rule['id']}/column",
        json={"column": "Country"},
    ).json()
    assert rule["values"] == []

    domain = client.get(
        f"{BASE}/sessions/{loaded_session}/filters/domain", params={"column": "Country"}
    ).json()
    assert domain["values"] == ["CZ", "SK"]

    rule = client.put(
        f"{BASE}/sessions/{loaded_session}/filters/{rule['id']}/values",
        json={"values": ["SK"]},
    ).json()
    assert rule["is_active"] is True

    state = client.get(f"{BASE}/sessions/{loaded_session}").json()
    assert state["filtered_rows"] == 2

    state = client.delete(f"{BASE}/sessions/{loaded_session}/filters/{rule['id']}").json()
    assert state["filters"] == []
    assert state["filtered_rows"] == 3


def test_unknown_filter_rule(client, loaded_session):
    response = client.put(
        f"{BASE}/sessions/{loaded_session}/filters/42/column", json={"column": "Country"}
    )
    assert response.status_code == 404


def test_new_source_resets_filters(client, loaded_session):
    client.post(f"{BASE}/sessions/{loaded_session}/filters")

    state = upload(client, loaded_session, "source", SOURCE_CSV, "source.csv").json()

    assert state["filters"] == []


def test_export_csv(client, loaded_session):
    assign_source(client, loaded_session, "Name", "Full Name")
    assign_literal(client, loaded_session, "Email", "n/a")
    rule = client.post(f"{BASE}/sessions/{loaded_session}/filters").json()
    client.put(f"{BASE}/sessions/{loaded_session}/filters/{rule['id']}/column", json={"column": "Country"})
    client.put(f"{BASE}/sessions/{loaded_session}/filters/{rule['id']}/values", json={"values": ["SK"]})

    response = client.post(f"{BASE}/sessions/{loaded_session}/export", params={"format": "csv"})

    assert response.status_code == 200
    assert 'filename="mapped_data.csv"' in response.headers["content-disposition"]
    lines = response.content.decode("utf-8-sig").splitlines()
    assert lines == ["Name,Email", "Ana,n/a", "Ján,n/a"]


def test_export_xlsx(client, loaded_session):
    assign_source(client, loaded_session, "Name", "Full Name")

    response = client.post(f"{BASE}/sessions/{loaded_session}/export")

    assert response.status_code == 200
    assert 'filename="mapped_data.xlsx"' in response.headers["content-disposition"]
    sheet = load_workbook(io.BytesIO(response.content)).active
    rows = [list(row) for row in sheet.iter_rows(values_only=True)]
    assert rows[0] == ["Name", "Email"]
    assert [row[0] for row in rows[1:]] == ["Ana", "Petr", "Ján"]


def test_export_without_assignments(client, loaded_session):
    before = client.get(f"{BASE}/sessions/{loaded_session}").json()

    response = client.post(f"{BASE}/sessions/{loaded_session}/export", params={"format": "csv"})

    assert response.status_code == 400
    assert client.get(f"{BASE}/sessions/{loaded_session}").json() == before


def test_second_export_while_busy_is_rejected(db, monkeypatch):
    monkeypatch.setattr(settings, "EXPORT_MIN_LATENCY_MS", 50)
    session = mapping_session_service.create_session()
    mapping_session_service.load_target(db, session, ("Name",))
    mapping_session_service.load_source(session, SourceDataset(headers=["n"], rows=[{"n": "Ana"}]))
    mapping_session_service.assign_from_source(db, session, "Name", "n")

    async def run_both():
        return await asyncio.gather(
            mapping_session_service.export(session, ExportFormat.csv),
            mapping_session_service.export(session, ExportFormat.csv),
            return_exceptions=True,
        )

    first, second = asyncio.run(run_both())

    assert first[1] == "mapped_data.csv"
    assert isinstance(second, ExportInProgressError)
    assert session.is_exporting is False
