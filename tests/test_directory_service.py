"""目录树业务逻辑测试：直接调用服务层并使用 SQLite 会话。"""

import random

import pytest
from sqlalchemy import func
from sqlalchemy.exc import OperationalError

from app.packages.wiki.core.exceptions import ConflictError, InternalError, NotFoundError, ValidationError
from app.packages.wiki.crud.directory import directory_crud
from app.packages.wiki.models.directory import Directory
from app.packages.wiki.models.document import Document
from app.packages.wiki.services.directory_service import _transaction, directory_service


def _create(db, name, parent_id=None):
    return directory_service.create_directory(db, name=name, parent_id=parent_id)["data"]


def _children(db, parent_id=None):
    return directory_service.list_directories(db, parent_id=parent_id)["data"]


def _names(db, parent_id=None):
    return [item["name"] for item in _children(db, parent_id)]


def _path(db, directory_id):
    return directory_service.get_directory(db, directory_id)["data"]["path"]


def test_docs_api_guides_scenario(db_session_fixture):
    db = db_session_fixture
    docs = _create(db, "Docs")
    api = _create(db, "API", docs["id"])
    guides = _create(db, "Guides", docs["id"])

    assert docs["order_index"] == 1000
    assert api["order_index"] == 1000
    assert guides["order_index"] == 2000
    assert api["path"] == f"/{docs['id']}/{api['id']}/"

    response = directory_service.reorder_directories(db, parent_id=docs["id"], ordered_ids=[guides["id"], api["id"]])

    assert [item["name"] for item in response["data"]] == ["Guides", "API"]
    assert _names(db, docs["id"]) == ["Guides", "API"]
    assert [item["order_index"] for item in _children(db, docs["id"])] == [1000, 2000]


def test_create_rejects_duplicate_sibling_name(db_session_fixture):
    db = db_session_fixture
    docs = _create(db, "Docs")
    _create(db, "API", docs["id"])

    with pytest.raises(ConflictError):
        _create(db, "API", docs["id"])
    with pytest.raises(ConflictError):
        _create(db, "Docs")

    # 名称区分大小写，且只在同级范围内唯一
    _create(db, "api", docs["id"])
    _create(db, "API")
    assert _names(db, docs["id"]) == ["API", "api"]


def test_create_validates_name_and_parent(db_session_fixture):
    db = db_session_fixture
    with pytest.raises(ValidationError):
        _create(db, "   ")
    with pytest.raises(ValidationError):
        _create(db, "x" * 256)
    with pytest.raises(NotFoundError):
        _create(db, "Orphan", 99999)
    assert db.query(func.count(Directory.id)).scalar() == 0


def test_get_directory_returns_breadcrumb(db_session_fixture):
    db = db_session_fixture
    docs = _create(db, "Docs")
    api = _create(db, "API", docs["id"])
    v1 = _create(db, "V1", api["id"])

    detail = directory_service.get_directory(db, v1["id"])["data"]

    assert [crumb["name"] for crumb in detail["breadcrumb"]] == ["根目录", "Docs", "API", "V1"]
    assert detail["breadcrumb"][0]["id"] == 0
    assert detail["depth"] == 3

    with pytest.raises(NotFoundError):
        directory_service.get_directory(db, 99999)


def test_list_directories_recursive_and_unknown_parent(db_session_fixture):
    db = db_session_fixture
    docs = _create(db, "Docs")
    api = _create(db, "API", docs["id"])
    _create(db, "V1", api["id"])
    _create(db, "Blog")

    tree = directory_service.list_directories(db, recursive=True)["data"]
    assert [node["name"] for node in tree] == ["Docs", "Blog"]
    assert tree[0]["children"][0]["name"] == "API"
    assert tree[0]["children"][0]["children"][0]["name"] == "V1"

    subtree = directory_service.list_directories(db, parent_id=docs["id"], recursive=True)["data"]
    assert [node["name"] for node in subtree] == ["API"]

    assert directory_service.list_directories(db, parent_id=99999)["data"] == []
    assert directory_service.list_directories(db, parent_id=99999, recursive=True)["data"] == []


def test_update_directory_renames_only(db_session_fixture):
    db = db_session_fixture
    docs = _create(db, "Docs")
    api = _create(db, "API", docs["id"])
    _create(db, "Guides", docs["id"])

    renamed = directory_service.update_directory(db, api["id"], name="Reference")["data"]
    assert renamed["name"] == "Reference"
    assert renamed["path"] == api["path"]
    assert renamed["order_index"] == api["order_index"]

    with pytest.raises(ConflictError):
        directory_service.update_directory(db, api["id"], name="Guides")
    with pytest.raises(NotFoundError):
        directory_service.update_directory(db, 99999, name="Nope")


def test_move_rewrites_subtree_paths(db_session_fixture):
    db = db_session_fixture
    docs = _create(db, "Docs")
    api = _create(db, "API", docs["id"])
    v1 = _create(db, "V1", api["id"])
    v2 = _create(db, "V2", api["id"])

    result = directory_service.move_directory(db, api["id"], new_parent_id=None)["data"]

    assert result["directory"]["parent_id"] is None
    assert result["directory"]["path"] == f"/{api['id']}/"
    assert result["directory"]["order_index"] == 2000
    assert sorted(result["changed_descendant_ids"]) == sorted([v1["id"], v2["id"]])
    assert _path(db, v1["id"]) == f"/{api['id']}/{v1['id']}/"
    assert _path(db, v2["id"]) == f"/{api['id']}/{v2['id']}/"
    assert _names(db) == ["Docs", "API"]
    assert _children(db, docs["id"]) == []


def test_move_rejects_cycles_and_leaves_tree_unchanged(db_session_fixture):
    db = db_session_fixture
    docs = _create(db, "Docs")
    api = _create(db, "API", docs["id"])
    v1 = _create(db, "V1", api["id"])

    with pytest.raises(ConflictError):
        directory_service.move_directory(db, docs["id"], new_parent_id=docs["id"])
    with pytest.raises(ConflictError):
        directory_service.move_directory(db, docs["id"], new_parent_id=v1["id"])
    with pytest.raises(ConflictError):
        directory_service.move_directory(db, api["id"], new_parent_id=v1["id"])

    assert _path(db, docs["id"]) == docs["path"]
    assert _path(db, api["id"]) == api["path"]
    assert _path(db, v1["id"]) == v1["path"]


def test_move_rejects_duplicate_name_and_unknown_target(db_session_fixture):
    db = db_session_fixture
    docs = _create(db, "Docs")
    nested_api = _create(db, "API", docs["id"])
    _create(db, "API")

    with pytest.raises(ConflictError):
        directory_service.move_directory(db, nested_api["id"], new_parent_id=None)
    with pytest.raises(NotFoundError):
        directory_service.move_directory(db, nested_api["id"], new_parent_id=99999)
    with pytest.raises(NotFoundError):
        directory_service.move_directory(db, 99999, new_parent_id=docs["id"])
    assert _path(db, nested_api["id"]) == nested_api["path"]


def test_move_to_position_uses_midpoint(db_session_fixture):
    db = db_session_fixture
    _create(db, "A")
    _create(db, "B")
    c = _create(db, "C")

    moved = directory_service.move_directory(db, c["id"], new_parent_id=None, position=0)["data"]

    assert moved["directory"]["order_index"] == 500
    assert moved["changed_descendant_ids"] == []
    assert _names(db) == ["C", "A", "B"]


def test_move_renumbers_siblings_when_gap_is_exhausted(db_session_fixture):
    db = db_session_fixture
    a = _create(db, "A")
    b = _create(db, "B")
    c = _create(db, "C")
    db.query(Directory).filter(Directory.id == a["id"]).update({"order_index": 1})
    db.query(Directory).filter(Directory.id == b["id"]).update({"order_index": 2})
    db.commit()

    directory_service.move_directory(db, c["id"], new_parent_id=None, position=1)

    children = _children(db)
    assert [item["name"] for item in children] == ["A", "C", "B"]
    assert [item["order_index"] for item in children] == [1000, 2000, 3000]


def test_move_rejects_invalid_position(db_session_fixture):
    db = db_session_fixture
    docs = _create(db, "Docs")
    _create(db, "API", docs["id"])
    blog = _create(db, "Blog")

    with pytest.raises(ValidationError):
        directory_service.move_directory(db, blog["id"], new_parent_id=docs["id"], position=5)
    with pytest.raises(ValidationError):
        directory_service.move_directory(db, blog["id"], new_parent_id=docs["id"], position=-1)
    assert _path(db, blog["id"]) == blog["path"]
    assert _names(db, docs["id"]) == ["API"]


@pytest.mark.parametrize(
    "ordering",
    [
        lambda a, b, c: [c, a],
        lambda a, b, c: [c, a, b, 99999],
        lambda a, b, c: [a, a, b, c],
        lambda a, b, c: [],
    ],
)
def test_reorder_requires_exact_permutation(db_session_fixture, ordering):
    db = db_session_fixture
    docs = _create(db, "Docs")
    a = _create(db, "A", docs["id"])["id"]
    b = _create(db, "B", docs["id"])["id"]
    c = _create(db, "C", docs["id"])["id"]

    with pytest.raises(ValidationError):
        directory_service.reorder_directories(db, parent_id=docs["id"], ordered_ids=ordering(a, b, c))

    assert _names(db, docs["id"]) == ["A", "B", "C"]
    assert [item["order_index"] for item in _children(db, docs["id"])] == [1000, 2000, 3000]


def test_reorder_roots_and_unknown_parent(db_session_fixture):
    db = db_session_fixture
    a = _create(db, "A")
    b = _create(db, "B")

    directory_service.reorder_directories(db, parent_id=None, ordered_ids=[b["id"], a["id"]])
    assert _names(db) == ["B", "A"]

    with pytest.raises(NotFoundError):
        directory_service.reorder_directories(db, parent_id=99999, ordered_ids=[])


def test_delete_without_cascade_requires_empty_directory(db_session_fixture, make_document):
    db = db_session_fixture
    docs = _create(db, "Docs")
    api = _create(db, "API", docs["id"])
    blog = _create(db, "Blog")
    make_document("Post", directory_id=blog["id"])
    archive = _create(db, "Archive")
    make_document("Old", directory_id=archive["id"], status="deleted")

    with pytest.raises(ConflictError):
        directory_service.delete_directory(db, docs["id"])
    with pytest.raises(ConflictError):
        directory_service.delete_directory(db, blog["id"])

    result = directory_service.delete_directory(db, archive["id"])["data"]
    assert result["deleted_directory_ids"] == [archive["id"]]
    assert result["deleted_document_ids"] == []

    directory_service.delete_directory(db, api["id"])
    assert db.query(func.count(Directory.id)).scalar() == 2

    with pytest.raises(NotFoundError):
        directory_service.delete_directory(db, 99999)


def test_cascade_delete_removes_subtree_and_marks_documents(db_session_fixture, make_document):
    db = db_session_fixture
    docs = _create(db, "Docs")
    api = _create(db, "API", docs["id"])
    v1 = _create(db, "V1", api["id"])
    keep = _create(db, "Keep")
    in_docs = make_document("Intro", directory_id=docs["id"]).id
    in_v1 = make_document("Endpoints", directory_id=v1["id"]).id
    already_deleted = make_document("Gone", directory_id=api["id"], status="deleted").id
    elsewhere = make_document("Other", directory_id=keep["id"]).id

    result = directory_service.delete_directory(db, docs["id"], cascade=True)["data"]

    assert result["cascade"] is True
    assert result["deleted_directory_ids"][0] == docs["id"]
    assert sorted(result["deleted_directory_ids"]) == sorted([docs["id"], api["id"], v1["id"]])
    assert sorted(result["deleted_document_ids"]) == sorted([in_docs, in_v1])

    remaining = db.query(Directory.id).all()
    assert [row[0] for row in remaining] == [keep["id"]]
    statuses = dict(db.query(Document.id, Document.status).all())
    assert statuses[in_docs] == "deleted"
    assert statuses[in_v1] == "deleted"
    assert statuses[already_deleted] == "deleted"
    assert statuses[elsewhere] == "active"


def test_directory_stats(db_session_fixture, make_document):
    db = db_session_fixture
    docs = _create(db, "Docs")
    api = _create(db, "API", docs["id"])
    _create(db, "Blog")
    make_document("Intro", directory_id=docs["id"])
    make_document("Auth", directory_id=api["id"])
    make_document("Users", directory_id=api["id"])
    make_document("Removed", directory_id=api["id"], status="deleted")
    make_document("Loose")

    stats = directory_service.get_directory_stats(db, docs["id"])["data"]
    assert stats == {
        "directory_id": docs["id"],
        "direct_child_count": 1,
        "direct_document_count": 1,
        "total_directory_count": 1,
        "total_document_count": 3,
    }

    overall = directory_service.get_directory_stats(db)["data"]
    assert overall["root_directory_count"] == 2
    assert overall["total_directory_count"] == 3
    assert overall["total_document_count"] == 4
    assert overall["direct_document_count"] == 1
    assert overall["max_depth"] == 2

    with pytest.raises(NotFoundError):
        directory_service.get_directory_stats(db, 99999)


def test_check_delete_status(db_session_fixture, make_document):
    db = db_session_fixture
    docs = _create(db, "Docs")
    api = _create(db, "API", docs["id"])
    make_document("Auth", directory_id=api["id"])

    report = directory_service.check_delete_status(db, docs["id"])["data"]
    assert report["can_delete"] is False
    assert report["has_children"] is True
    assert report["has_documents"] is False
    assert report["total_document_count"] == 1
    assert len(report["warnings"]) == 2

    empty = _create(db, "Empty")
    report = directory_service.check_delete_status(db, empty["id"])["data"]
    assert report["can_delete"] is True
    assert report["warnings"] == []


def _assert_tree_consistent(db):
    db.expire_all()
    nodes = {node.id: node for node in db.query(Directory).all()}
    for node in nodes.values():
        if node.parent_id is None:
            assert node.path == f"/{node.id}/"
        else:
            assert node.parent_id in nodes
            assert node.path == f"{nodes[node.parent_id].path}{node.id}/"
        assert node.id not in node.ancestor_ids

        seen = set()
        current = node
        while current.parent_id is not None:
            assert current.id not in seen
            seen.add(current.id)
            current = nodes[current.parent_id]


def test_random_moves_never_create_cycles(db_session_fixture):
    db = db_session_fixture
    rng = random.Random(20240611)
    ids = []
    for index in range(15):
        parent_id = rng.choice(ids) if ids and rng.random() < 0.7 else None
        ids.append(_create(db, f"D{index}", parent_id)["id"])

    moved = 0
    for _ in range(200):
        directory_id = rng.choice(ids)
        new_parent_id = None if rng.random() < 0.2 else rng.choice(ids)
        try:
            directory_service.move_directory(db, directory_id, new_parent_id=new_parent_id)
            moved += 1
        except (ConflictError, NotFoundError, ValidationError):
            pass
        _assert_tree_consistent(db)

    assert moved > 0
    assert db.query(func.count(Directory.id)).scalar() == len(ids)


def test_storage_failure_becomes_internal_error(db_session_fixture, monkeypatch):
    db = db_session_fixture

    def broken_lookup(*args, **kwargs):
        raise OperationalError("SELECT directories", {}, Exception("disk I/O error"))

    monkeypatch.setattr(directory_crud, "get_sibling_by_name", broken_lookup)

    with pytest.raises(InternalError):
        _create(db, "Docs")
    assert db.query(func.count(Directory.id)).scalar() == 0


def test_non_name_integrity_error_is_not_reported_as_duplicate(db_session_fixture):
    db = db_session_fixture
    docs = _create(db, "Docs")

    with pytest.raises(InternalError):
        with _transaction(db):
            node = db.get(Directory, docs["id"])
            node.parent_id = node.id
            db.flush()

    db.expire_all()
    assert db.get(Directory, docs["id"]).parent_id is None


def test_unique_name_violation_is_reported_as_duplicate(db_session_fixture):
    db = db_session_fixture
    _create(db, "Docs")

    with pytest.raises(ConflictError):
        with _transaction(db):
            db.add(Directory(name="Docs", parent_id=None, order_index=5000, path="/"))
            db.flush()

    assert _names(db) == ["Docs"]
